# capture_config.py
"""
Job configuration for the C64 capture tools.

Everything one run needs is resolved up front into a frozen CaptureJob.
All validation happens here, before any external process is started, so a
usage error never leaves a display or an emulator behind.
"""

import argparse
import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

# =============================================================================
#  CONFIGURATION
# =============================================================================

DEFAULT_WAIT_SECONDS = 5.0
DEFAULT_DURATION_SECONDS = 10.0
DEFAULT_FPS = 50  # PAL
DEFAULT_SCALE = 2
MIN_SCALE, MAX_SCALE = 1, 4
DEFAULT_JOYSTICK_PORT = 2
DEFAULT_CYCLES = 5_000_000  # ~5 seconds of PAL CPU time
DEFAULT_DISPLAY_NUM = 99

# VICE draws the PAL screen with borders at 384x272 per scale step
PAL_VISIBLE_WIDTH = 384
PAL_VISIBLE_HEIGHT = 272

# Extra wall-clock time the emulator gets beyond wait + duration
EMULATOR_SAFETY_MARGIN_SECONDS = 10.0

# Tool name -> environment variable that may point at a replacement binary
TOOL_ENV = {
    "acme": "C64_ACME",
    "x64sc": "C64_VICE",
    "Xvfb": "C64_XVFB",
    "openbox": "C64_WM",
    "ffmpeg": "C64_FFMPEG",
    "xdotool": "C64_XDOTOOL",
    "pactl": "C64_PACTL",
    "pulseaudio": "C64_PULSEAUDIO",
}

VIDEO_USAGE = "Usage: c64-video INPUT OUTPUT [OPTIONS]"
SCREENSHOT_USAGE = "Usage: c64-screenshot INPUT OUTPUT [OPTIONS]"


class CaptureError(Exception):
    """Base class for every fatal error of a capture run."""


class UsageError(CaptureError):
    """Bad command line: missing arguments, missing files, malformed values."""


def find_tool(name: str) -> Optional[str]:
    """Resolve an external tool, honouring its C64_* override variable."""
    override = os.environ.get(TOOL_ENV.get(name, ""), "")
    return shutil.which(override or name)


# =============================================================================
#  JOB
# =============================================================================

@dataclass(frozen=True)
class CaptureJob:
    """One capture run, immutable once parsed."""
    input_path: Path
    output_path: Path
    wait_seconds: float = DEFAULT_WAIT_SECONDS
    duration_seconds: float = DEFAULT_DURATION_SECONDS
    fps: int = DEFAULT_FPS
    scale: int = DEFAULT_SCALE
    joystick_port: int = DEFAULT_JOYSTICK_PORT
    input_script: Optional[Path] = None
    defines: tuple[str, ...] = ()
    cycles: int = DEFAULT_CYCLES
    keybuf: Optional[str] = None
    display_num: int = DEFAULT_DISPLAY_NUM
    strict: bool = False
    log_file: Optional[Path] = None

    @property
    def is_source(self) -> bool:
        return self.input_path.suffix.lower() == ".asm"

    @property
    def display_name(self) -> str:
        return f":{self.display_num}"

    @property
    def nominal_size(self) -> tuple[int, int]:
        """Expected emulator window size at the chosen scale."""
        return PAL_VISIBLE_WIDTH * self.scale, PAL_VISIBLE_HEIGHT * self.scale

    @property
    def emulator_timeout(self) -> float:
        return self.wait_seconds + self.duration_seconds + EMULATOR_SAFETY_MARGIN_SECONDS


# =============================================================================
#  ARGUMENT PARSING
# =============================================================================

class CaptureArgumentParser(argparse.ArgumentParser):
    """argparse that raises UsageError instead of exiting with status 2."""

    def error(self, message):
        raise UsageError(message)


def _non_negative_float(text: str) -> float:
    try:
        value = float(text)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected a number, got '{text}'")
    if value < 0:
        raise argparse.ArgumentTypeError(f"must not be negative: {text}")
    return value


def _positive_float(text: str) -> float:
    value = _non_negative_float(text)
    if value == 0:
        raise argparse.ArgumentTypeError("must be greater than zero")
    return value


def _positive_int(text: str) -> int:
    try:
        value = int(text)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected an integer, got '{text}'")
    if value <= 0:
        raise argparse.ArgumentTypeError(f"must be greater than zero: {text}")
    return value


def _scale(text: str) -> int:
    value = _positive_int(text)
    if not MIN_SCALE <= value <= MAX_SCALE:
        raise argparse.ArgumentTypeError(f"scale must be {MIN_SCALE}-{MAX_SCALE}, got {value}")
    return value


def _define(text: str) -> str:
    name, sep, _ = text.partition("=")
    if not sep or not name.strip():
        raise argparse.ArgumentTypeError(f"define must look like NAME=VALUE, got '{text}'")
    return text


def _add_common_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--define", "-D", dest="defines", action="append", type=_define,
                        default=None, metavar="K=V",
                        help="Pass define to assembler (can repeat)")
    parser.add_argument("--display", type=_positive_int, default=DEFAULT_DISPLAY_NUM, metavar="N",
                        help=f"X display number for the virtual framebuffer (default: {DEFAULT_DISPLAY_NUM})")
    parser.add_argument("--strict", action="store_true",
                        help="Treat missing emulator window / audio stream as fatal")
    parser.add_argument("--log", type=Path, default=None, metavar="FILE",
                        help="Also write all output to FILE")


def build_video_parser() -> CaptureArgumentParser:
    parser = CaptureArgumentParser(
        prog="c64-video",
        description="Capture video from a C64 program with input injection.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Input scripts:
  *.sh              run with bash, VICE_WINDOW holds the emulator window id
  anything else     key script, e.g.
                      activate
                      key space
                      sleep 0.5
                      repeat 3
                        key z
                        sleep 0.25
                      end

Joystick mapping: arrow keys for directions, Right Ctrl for fire.

Examples:
  c64-video game.asm gameplay.mp4
  c64-video game.asm demo.mp4 --wait 3 --duration 20
  c64-video game.asm demo.gif --input inputs/symphony-demo.keys
  c64-video game.asm demo.mp4 --define SCREENSHOT_MODE=1
        """,
    )
    parser.add_argument("input", nargs="?", help=".asm or .prg file")
    parser.add_argument("output", nargs="?", help="Output video file (mp4, webm, gif)")
    parser.add_argument("--wait", type=_non_negative_float, default=DEFAULT_WAIT_SECONDS, metavar="SECONDS",
                        help="Wait before recording (default: 5)")
    parser.add_argument("--duration", type=_positive_float, default=DEFAULT_DURATION_SECONDS, metavar="SECONDS",
                        help="Recording length (default: 10)")
    parser.add_argument("--fps", type=_positive_int, default=DEFAULT_FPS, metavar="N",
                        help="Frame rate (default: 50)")
    parser.add_argument("--scale", type=_scale, default=DEFAULT_SCALE, metavar="N",
                        help="Scale factor 1-4 (default: 2)")
    parser.add_argument("--input", dest="input_script", type=Path, default=None, metavar="SCRIPT",
                        help="Input script for key injection")
    parser.add_argument("--joystick", type=int, choices=[1, 2], default=DEFAULT_JOYSTICK_PORT, metavar="PORT",
                        help="Joystick port 1 or 2 (default: 2)")
    _add_common_options(parser)
    return parser


def build_screenshot_parser() -> CaptureArgumentParser:
    parser = CaptureArgumentParser(
        prog="c64-screenshot",
        description="Capture a screenshot from a C64 program.\n"
                    "INPUT can be .asm (will be assembled) or .prg (used directly).",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  c64-screenshot game.asm screenshot.png
  c64-screenshot game.asm screenshot.png --define SCREENSHOT_MODE=1
  c64-screenshot game.asm screenshot.png --define SCREENSHOT_MODE=1 --cycles 7000000
        """,
    )
    parser.add_argument("input", nargs="?", help=".asm or .prg file")
    parser.add_argument("output", nargs="?", help="Output PNG file path")
    parser.add_argument("--cycles", type=_positive_int, default=DEFAULT_CYCLES, metavar="N",
                        help="CPU cycles before capture (default: 5000000)")
    parser.add_argument("--keybuf", type=str, default=None, metavar="S",
                        help="Inject keystrokes (deprecated, use --define)")
    parser.add_argument("--scale", type=_scale, default=DEFAULT_SCALE, metavar="N",
                        help="Integer upscale factor 1-4 (default: 2)")
    _add_common_options(parser)
    return parser


def _resolve_paths(args: argparse.Namespace) -> tuple[Path, Path]:
    if not args.input or not args.output:
        raise UsageError("INPUT and OUTPUT files required")
    input_path = Path(args.input)
    if not input_path.is_file():
        raise UsageError(f"Input file not found: {input_path}")
    return input_path, Path(args.output)


def parse_video_job(argv: Optional[list[str]] = None) -> CaptureJob:
    args = build_video_parser().parse_intermixed_args(argv)
    input_path, output_path = _resolve_paths(args)
    if args.input_script is not None and not args.input_script.is_file():
        raise UsageError(f"Input script not found: {args.input_script}")
    return CaptureJob(
        input_path=input_path,
        output_path=output_path,
        wait_seconds=args.wait,
        duration_seconds=args.duration,
        fps=args.fps,
        scale=args.scale,
        joystick_port=args.joystick,
        input_script=args.input_script,
        defines=tuple(args.defines or ()),
        display_num=args.display,
        strict=args.strict,
        log_file=args.log,
    )


def parse_screenshot_job(argv: Optional[list[str]] = None) -> CaptureJob:
    args = build_screenshot_parser().parse_intermixed_args(argv)
    input_path, output_path = _resolve_paths(args)
    return CaptureJob(
        input_path=input_path,
        output_path=output_path,
        scale=args.scale,
        defines=tuple(args.defines or ()),
        cycles=args.cycles,
        keybuf=args.keybuf,
        display_num=args.display,
        strict=args.strict,
        log_file=args.log,
    )

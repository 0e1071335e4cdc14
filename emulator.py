# emulator.py
"""
VICE (x64sc) invocation for both capture workflows.

Video mode runs the emulator in the background with its SID output recorded
to a WAV file and a wall-clock watchdog. Screenshot mode runs it in the
foreground with -limitcycles/-exitscreenshot, where VICE quits on its own
and dumps the framebuffer as a side effect.
"""

import os
import shutil
import subprocess
from pathlib import Path
from typing import Optional

from audio_utils import SINK_INPUT_SEARCH_ATTEMPTS, SINK_INPUT_SEARCH_INTERVAL
from capture_config import CaptureError, CaptureJob, find_tool
from process_registry import ManagedProcess, ProcessRegistry
from virtual_display import VirtualDisplay
from window_utils import WINDOW_SEARCH_ATTEMPTS, WINDOW_SEARCH_INTERVAL

ROM_SOURCE_DIR = Path(os.environ.get("C64_ROM_SOURCE", "/roms"))
ROM_TARGET_DIR = Path(os.environ.get("C64_ROM_DIR", "/usr/share/vice/C64"))

KEYBOARD_JOYSTICK_DEVICE = 5  # arrow keys + Right Ctrl
AUDIO_SAMPLE_RATE = 48000
PAL_CPU_HZ = 985248
SCREENSHOT_TIMEOUT_MARGIN_SECONDS = 30.0
# The watchdog starts at launch, before the audio stream and window are looked up
DISCOVERY_BUDGET_SECONDS = (WINDOW_SEARCH_ATTEMPTS * WINDOW_SEARCH_INTERVAL
                            + SINK_INPUT_SEARCH_ATTEMPTS * SINK_INPUT_SEARCH_INTERVAL)


class EmulatorError(CaptureError):
    """VICE is missing or died before it could do its job."""


def require_vice() -> str:
    vice = find_tool("x64sc")
    if vice is None:
        raise EmulatorError("x64sc (VICE) not found on PATH")
    return vice


def install_roms(source: Path = ROM_SOURCE_DIR, target: Path = ROM_TARGET_DIR) -> int:
    """Copy mounted ROM images into VICE's data dir. Returns how many were copied."""
    if not source.is_dir():
        return 0
    copied = 0
    for rom in sorted(source.iterdir()):
        if not rom.is_file():
            continue
        try:
            shutil.copy2(rom, target / rom.name)
            copied += 1
        except OSError as e:
            print(f"WARNING: Could not copy ROM {rom.name} to {target}: {e}")
    if copied:
        print(f"[VICE] Installed {copied} ROM image(s) from {source}")
    return copied


def joystick_args(port: int) -> list[str]:
    return [f"-joydev{port}", str(KEYBOARD_JOYSTICK_DEVICE)]


def video_command(vice: str, program: Path, audio_path: Path, joystick_port: int) -> list[str]:
    return [
        vice,
        "-sound",
        "-sounddev", "wav",
        "-soundarg", str(audio_path),
        "-soundrate", str(AUDIO_SAMPLE_RATE),
        "+VICIIshowstatusbar",  # no status bar in the captured frame
        "-autostartprgmode", "1",
        *joystick_args(joystick_port),
        str(program),
    ]


def screenshot_command(vice: str, program: Path, output_path: Path, cycles: int,
                       keybuf: Optional[str] = None) -> list[str]:
    command = [
        vice,
        "-limitcycles", str(cycles),
        "-exitscreenshot", str(output_path),
        "-autostartprgmode", "1",
        "+sound",
    ]
    if keybuf:
        command.extend(["-keybuf", keybuf])
    command.append(str(program))
    return command


def screenshot_timeout(cycles: int) -> float:
    return cycles / PAL_CPU_HZ + SCREENSHOT_TIMEOUT_MARGIN_SECONDS


def launch_for_video(registry: ProcessRegistry, display: VirtualDisplay, job: CaptureJob,
                     program: Path, audio_path: Path, sink_name: str) -> ManagedProcess:
    vice = require_vice()
    env = display.env()
    env["PULSE_SINK"] = sink_name
    print("[VICE] Starting emulator...")
    managed = registry.spawn("x64sc", video_command(vice, program, audio_path, job.joystick_port), env=env)
    registry.start_watchdog(managed, job.emulator_timeout + DISCOVERY_BUDGET_SECONDS)
    return managed


def run_for_screenshot(registry: ProcessRegistry, display: VirtualDisplay, job: CaptureJob,
                       program: Path) -> Optional[int]:
    """
    Run VICE until it hits the cycle limit and writes job.output_path.

    Returns:
        VICE's exit code, or None if it had to be killed. VICE exits with 1
        after -limitcycles, so the code is informational only.
    """
    vice = require_vice()
    command = screenshot_command(vice, program, job.output_path, job.cycles, job.keybuf)
    print(f"[VICE] Running {job.cycles} cycles...")
    managed = registry.spawn("x64sc", command, env=display.env())
    timeout = screenshot_timeout(job.cycles)
    try:
        return managed.popen.wait(timeout=timeout)
    except subprocess.TimeoutExpired:
        print(f"WARNING: VICE did not exit within {timeout:.0f}s, killing it")
        registry.stop(managed, grace_seconds=1.0)
        return None

# video_encoder.py
"""
ffmpeg for the video workflow: grab a rectangle of the virtual display,
then mux the SID recording in (or not) to produce the final file.

Output formats are chosen by the output file's extension; each maps to a
fixed parameter set.
"""

import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from capture_config import CaptureError, find_tool

# Ensure even dimensions, h264 and vp9 reject odd ones
EVEN_CROP = "crop=trunc(iw/2)*2:trunc(ih/2)*2"
# A WAV with nothing but its RIFF header carries no audio
WAV_HEADER_BYTES = 44
FFMPEG_ERROR_TAIL_LINES = 20


class EncoderError(CaptureError):
    """ffmpeg is missing or failed."""


@dataclass(frozen=True)
class EncoderProfile:
    """Fixed ffmpeg parameter set for one output container."""
    name: str
    muxer: str
    video_args: tuple[str, ...]
    audio_args: tuple[str, ...] = ()

    @property
    def supports_audio(self) -> bool:
        return bool(self.audio_args)


PROFILES = {
    "mp4": EncoderProfile(
        "mp4", "mp4",
        ("-vf", EVEN_CROP, "-c:v", "libx264", "-preset", "fast", "-crf", "18", "-pix_fmt", "yuv420p"),
        ("-c:a", "aac", "-b:a", "192k"),
    ),
    "webm": EncoderProfile(
        "webm", "webm",
        ("-vf", EVEN_CROP, "-c:v", "libvpx-vp9", "-crf", "30", "-b:v", "0"),
        ("-c:a", "libopus", "-b:a", "128k"),
    ),
    # GIF: halve the frame rate, downscale, one palette per clip; no audio track
    "gif": EncoderProfile(
        "gif", "gif",
        ("-vf", "fps=25,scale=320:-2:flags=lanczos,split[a][b];[a]palettegen[p];[b][p]paletteuse"),
    ),
}
DEFAULT_PROFILE = "mp4"


def select_profile(output_path: Path) -> EncoderProfile:
    extension = output_path.suffix.lower().lstrip(".")
    profile = PROFILES.get(extension)
    if profile is None:
        print(f"WARNING: Unknown output format '{extension}', using {DEFAULT_PROFILE} settings")
        return PROFILES[DEFAULT_PROFILE]
    return profile


@dataclass(frozen=True)
class CaptureRegion:
    left: int
    top: int
    width: int
    height: int


def clamp_region(region: CaptureRegion, screen_width: int, screen_height: int) -> CaptureRegion:
    """x11grab refuses rectangles that leave the screen; pull them back in."""
    left = min(max(region.left, 0), screen_width - 1)
    top = min(max(region.top, 0), screen_height - 1)
    width = max(1, min(region.width, screen_width - left))
    height = max(1, min(region.height, screen_height - top))
    return CaptureRegion(left, top, width, height)


def _seconds(value: float) -> str:
    return f"{value:g}"


def grab_command(ffmpeg: str, display_name: str, region: CaptureRegion, fps: int, duration: float,
                 profile: EncoderProfile, output: Path) -> list[str]:
    return [
        ffmpeg, "-y",
        "-f", "x11grab",
        "-framerate", str(fps),
        "-video_size", f"{region.width}x{region.height}",
        "-i", f"{display_name}+{region.left},{region.top}",
        "-t", _seconds(duration),
        *profile.video_args,
        "-f", profile.muxer,
        str(output),
    ]


def merge_command(ffmpeg: str, video: Path, audio: Path, profile: EncoderProfile, output: Path) -> list[str]:
    return [
        ffmpeg, "-y",
        "-i", str(video),
        "-i", str(audio),
        "-c:v", "copy",
        *profile.audio_args,
        "-shortest",
        "-f", profile.muxer,
        str(output),
    ]


def has_audio(audio_path: Optional[Path]) -> bool:
    return (audio_path is not None and audio_path.is_file()
            and audio_path.stat().st_size > WAV_HEADER_BYTES)


class VideoEncoder:
    """
    Manages the ffmpeg runs of one capture: the screen grab and the final mux.
    """
    def __init__(self, profile: EncoderProfile,
                 runner: Optional[Callable[..., subprocess.CompletedProcess]] = None):
        self.profile = profile
        self.runner = runner or subprocess.run
        self.ffmpeg = find_tool("ffmpeg")
        if self.ffmpeg is None:
            raise EncoderError("ffmpeg not found on PATH")

    def _run(self, command: list[str], label: str):
        result = self.runner(command, stdin=subprocess.DEVNULL, stdout=subprocess.DEVNULL,
                             stderr=subprocess.PIPE)
        if result.returncode != 0:
            error_message = (result.stderr or b"").decode('utf-8', errors='ignore')
            tail = "\n".join(error_message.strip().splitlines()[-FFMPEG_ERROR_TAIL_LINES:])
            if tail:
                print(f"--- FFMPEG Error Output ---\n{tail}\n---------------------------")
            raise EncoderError(f"ffmpeg {label} failed with code {result.returncode}")

    def record(self, display_name: str, region: CaptureRegion, fps: int, duration: float,
               output: Path) -> Path:
        command = grab_command(self.ffmpeg, display_name, region, fps, duration, self.profile, output)
        self._run(command, "capture")
        if not output.is_file():
            raise EncoderError(f"ffmpeg produced no capture file: {output}")
        return output

    def finalize(self, video_path: Path, audio_path: Optional[Path], output_path: Path) -> bool:
        """
        Produce output_path from the captured video and, when there is any, the audio.

        Returns:
            True if audio was merged in, False for a video-only output.
        """
        output_path.parent.mkdir(parents=True, exist_ok=True)
        audio_present = has_audio(audio_path)

        if audio_present and self.profile.supports_audio:
            print("[Capture] Merging video with SID audio...")
            try:
                self._run(merge_command(self.ffmpeg, video_path, audio_path, self.profile, output_path),
                          "merge")
            except EncoderError:
                # ffmpeg may have left a truncated container behind
                output_path.unlink(missing_ok=True)
                raise
            video_path.unlink(missing_ok=True)
            audio_path.unlink(missing_ok=True)
            return True

        if audio_present:
            print(f"WARNING: {self.profile.name} output cannot carry audio, using video only")
        else:
            print("WARNING: No audio recorded, using video only")
        shutil.move(str(video_path), str(output_path))
        if audio_path is not None:
            audio_path.unlink(missing_ok=True)
        return False

# c64_video.py
"""
c64-video: record a C64 program running in VICE to mp4, webm or gif.

The emulator runs headless on a private Xvfb display with openbox for window
management. Its SID output is written to a WAV file by VICE itself and muxed
into the final video; an optional input script drives the emulator through
xdotool while it runs.
"""

import sys
import time
from pathlib import Path
from typing import Callable, Optional

from assembler import prepare_program
from audio_utils import CAPTURE_SINK_NAME, AudioRoutingError, PulseAudioRouter
from capture_config import (EMULATOR_SAFETY_MARGIN_SECONDS, VIDEO_USAGE, CaptureError, CaptureJob, UsageError,
                            parse_video_job)
from emulator import EmulatorError, install_roms, launch_for_video
from input_scripts import POST_SCRIPT_SETTLE_SECONDS, InputScript, load_input_script
from log_utils import format_size, tee_output, warn_or_raise
from process_registry import ProcessRegistry, install_signal_handlers
from video_encoder import CaptureRegion, VideoEncoder, clamp_region, select_profile
from virtual_display import VirtualDisplay, video_screen_size
from window_utils import WindowNotFoundError, X11WindowFinder, wait_for_window

# Let VICE flush its WAV writer before and after it is stopped
AUDIO_FLUSH_SECONDS = 1.0


def capture_region(job: CaptureJob, finder: X11WindowFinder, window) -> CaptureRegion:
    """Where to grab: the window's current geometry, else the nominal size at the origin."""
    info = finder.geometry(window.window_id, window.title) if window is not None else None
    if info is None:
        width, height = job.nominal_size
        print(f"[Window] Using nominal capture area {width}x{height} at 0,0")
        return CaptureRegion(0, 0, width, height)
    print(f"[Window] Capture area {info.width}x{info.height} at {info.left},{info.top}")
    return CaptureRegion(info.left, info.top, info.width, info.height)


def record_video(job: CaptureJob, input_script: Optional[InputScript] = None,
                 sleep: Callable[[float], None] = time.sleep) -> Path:
    # Fail on a missing ffmpeg before anything is spawned
    profile = select_profile(job.output_path)
    encoder = VideoEncoder(profile)

    with ProcessRegistry() as registry:
        scratch = registry.make_scratch_dir("c64video_")
        program = prepare_program(job, scratch)
        install_roms()

        width, height = video_screen_size(job)
        display = VirtualDisplay(registry, job.display_num, width, height).start()
        display.start_window_manager(job.strict)

        router = PulseAudioRouter(registry, CAPTURE_SINK_NAME)
        audio_routed = router.setup(job.strict)
        audio_path = scratch / "audio.wav"

        vice = launch_for_video(registry, display, job, program, audio_path, CAPTURE_SINK_NAME)

        if audio_routed and router.redirect_emulator_audio() is None:
            warn_or_raise(AudioRoutingError("Could not find VICE audio stream, live audio not redirected"),
                          job.strict)

        finder = X11WindowFinder(display.name)
        registry.register("window finder", finder.close)
        print("[Window] Waiting for VICE window...")
        window = wait_for_window(finder)
        if window is None:
            warn_or_raise(WindowNotFoundError("Could not find VICE window, input injection may not work"),
                          job.strict)
        else:
            print(f"[Window] Found '{window.title}' (id {window.window_id})")

        print(f"[Capture] Waiting {job.wait_seconds:g}s for the program to boot...")
        sleep(job.wait_seconds)
        if not vice.is_running():
            raise EmulatorError(f"VICE exited early with code {vice.popen.returncode}")

        if input_script is not None:
            print(f"[Input] Running {input_script.path}")
            input_script.run(registry, window.window_id if window else None, display.env())
            sleep(POST_SCRIPT_SETTLE_SECONDS)

        # Input scripts may run for any length of time; the recording window starts now
        registry.start_watchdog(vice, job.duration_seconds + EMULATOR_SAFETY_MARGIN_SECONDS)
        region = clamp_region(capture_region(job, finder, window), width, height)
        intermediate = scratch / f"video.{profile.muxer}"
        print(f"[Capture] Recording {job.duration_seconds:g}s at {job.fps} fps...")
        encoder.record(display.name, region, job.fps, job.duration_seconds, intermediate)

        sleep(AUDIO_FLUSH_SECONDS)
        registry.stop(vice)
        sleep(AUDIO_FLUSH_SECONDS)

        encoder.finalize(intermediate, audio_path, job.output_path)

    if not job.output_path.is_file():
        raise CaptureError(f"Video not created: {job.output_path}")
    print(f"Video saved: {job.output_path} ({format_size(job.output_path.stat().st_size)})")
    return job.output_path


def main(argv=None) -> int:
    install_signal_handlers()
    try:
        job = parse_video_job(argv)
    except UsageError as e:
        print(f"Error: {e}")
        print(VIDEO_USAGE)
        return 1

    try:
        with tee_output(job.log_file):
            try:
                script = load_input_script(job.input_script) if job.input_script else None
                record_video(job, script)
            except CaptureError as e:
                print(f"Error: {e}")
                return 1
            except KeyboardInterrupt:
                print("\nInterrupted, cleaning up...")
                return 130
    except UsageError as e:
        # Only the log file itself can fail here
        print(f"Error: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())

# c64_screenshot.py
"""
c64-screenshot: run a C64 program for a fixed number of cycles and save
what is on screen as a PNG, upscaled by an integer factor.
"""

import sys
from pathlib import Path

from PIL import Image

from assembler import prepare_program
from capture_config import SCREENSHOT_USAGE, CaptureError, CaptureJob, UsageError, parse_screenshot_job
from emulator import EmulatorError, install_roms, run_for_screenshot
from log_utils import tee_output
from process_registry import ProcessRegistry, install_signal_handlers
from virtual_display import SCREENSHOT_SCREEN_SIZE, VirtualDisplay


def upscale_image(path: Path, factor: int) -> tuple[int, int]:
    """Nearest-neighbour upscale in place so C64 pixels stay crisp. Returns the new size."""
    with Image.open(path) as img:
        img.load()
        image_format = img.format
        if factor == 1:
            return img.size
        width, height = img.size
        scaled = img.resize((width * factor, height * factor), Image.Resampling.NEAREST)
    scaled.save(path, format=image_format)
    return scaled.size


def take_screenshot(job: CaptureJob) -> Path:
    with ProcessRegistry() as registry:
        scratch = registry.make_scratch_dir("c64shot_")
        program = prepare_program(job, scratch)
        install_roms()

        width, height = SCREENSHOT_SCREEN_SIZE
        display = VirtualDisplay(registry, job.display_num, width, height).start()

        # A leftover file from an earlier run must not pass for this one
        job.output_path.unlink(missing_ok=True)
        job.output_path.parent.mkdir(parents=True, exist_ok=True)
        run_for_screenshot(registry, display, job, program)

    if not job.output_path.is_file():
        raise EmulatorError("Screenshot not created")
    try:
        width, height = upscale_image(job.output_path, job.scale)
    except OSError as e:
        raise EmulatorError(f"Screenshot is not a readable image: {e}")
    print(f"[Capture] {width}x{height} after {job.scale}x upscale")
    print(f"Screenshot saved: {job.output_path}")
    return job.output_path


def main(argv=None) -> int:
    install_signal_handlers()
    try:
        job = parse_screenshot_job(argv)
    except UsageError as e:
        print(f"Error: {e}")
        print(SCREENSHOT_USAGE)
        return 1

    try:
        with tee_output(job.log_file):
            if job.keybuf:
                print("WARNING: --keybuf is deprecated, use --define to set up the program state instead")
            try:
                take_screenshot(job)
            except CaptureError as e:
                print(f"Error: {e}")
                return 1
            except KeyboardInterrupt:
                print("\nInterrupted, cleaning up...")
                return 130
    except UsageError as e:
        print(f"Error: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())

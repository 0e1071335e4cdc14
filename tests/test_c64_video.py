"""Video workflow with every external tool faked; the emulator is a real sleeping child process."""

from __future__ import annotations

import shutil
import sys
from pathlib import Path
from typing import List, Optional

import pytest

import c64_video
from capture_config import CaptureJob, parse_video_job
from input_scripts import InputScript, parse_key_script
from window_utils import WindowInfo, WindowNotFoundError

VICE_WINDOW = WindowInfo(0x600007, "VICE: C64 emulator", 80, 40, 768, 544)


class Recorder:
    """Collects what the fakes were asked to do during one run."""

    def __init__(self) -> None:
        self.vice = None
        self.region = None
        self.finalized: Optional[tuple] = None
        self.scratch: Optional[Path] = None
        self.displays: List[tuple] = []


class FakeDisplay:
    def __init__(self, recorder: Recorder, registry, display_num, width, height) -> None:
        self.name = f":{display_num}"
        recorder.displays.append((display_num, width, height))

    def start(self):
        return self

    def start_window_manager(self, strict=False):
        return None

    def env(self) -> dict:
        return {"DISPLAY": self.name}


class FakeRouter:
    def __init__(self, registry, sink_name) -> None:
        pass

    def setup(self, strict=False) -> bool:
        return True

    def redirect_emulator_audio(self):
        return "17"


class FakeFinder:
    def __init__(self, display_name) -> None:
        self.closed = False

    def geometry(self, window_id, title=""):
        return VICE_WINDOW

    def close(self):
        self.closed = True


class FakeEncoder:
    def __init__(self, recorder: Recorder, profile) -> None:
        self.recorder = recorder
        self.profile = profile

    def record(self, display_name, region, fps, duration, output: Path) -> Path:
        self.recorder.region = region
        self.recorder.scratch = output.parent
        output.write_bytes(b"\x00" * 2048)
        return output

    def finalize(self, video_path: Path, audio_path: Path, output_path: Path) -> bool:
        self.recorder.finalized = (video_path.name, audio_path.name, output_path)
        shutil.move(str(video_path), str(output_path))
        return False


@pytest.fixture
def recorder(monkeypatch: pytest.MonkeyPatch) -> Recorder:
    rec = Recorder()

    def launch(registry, display, job, program, audio_path, sink_name):
        rec.vice = registry.spawn("x64sc", [sys.executable, "-c", "import time; time.sleep(60)"])
        return rec.vice

    monkeypatch.setattr(c64_video, "VirtualDisplay", lambda *args: FakeDisplay(rec, *args))
    monkeypatch.setattr(c64_video, "PulseAudioRouter", FakeRouter)
    monkeypatch.setattr(c64_video, "X11WindowFinder", FakeFinder)
    monkeypatch.setattr(c64_video, "wait_for_window", lambda finder: VICE_WINDOW)
    monkeypatch.setattr(c64_video, "VideoEncoder", lambda profile: FakeEncoder(rec, profile))
    monkeypatch.setattr(c64_video, "launch_for_video", launch)
    monkeypatch.setattr(c64_video, "install_roms", lambda: 0)
    return rec


@pytest.fixture
def prg(tmp_path: Path) -> Path:
    path = tmp_path / "game.prg"
    path.write_bytes(b"\x01\x08\x00\x00")
    return path


def test_records_window_region(recorder: Recorder, prg: Path, tmp_path: Path, no_sleep,
                               capsys: pytest.CaptureFixture[str]) -> None:
    out = tmp_path / "clips" / "demo.mp4"
    out.parent.mkdir()
    job = CaptureJob(prg, out, wait_seconds=3)
    assert c64_video.record_video(job, sleep=no_sleep) == out

    assert out.is_file()
    assert recorder.region == c64_video.CaptureRegion(80, 40, 768, 544)
    assert recorder.finalized[:2] == ("video.mp4", "audio.wav")
    assert recorder.displays == [(99, 768 + 300, 544 + 300)]
    assert no_sleep == [3, 1.0, 1.0]
    assert not recorder.vice.is_running()
    assert not recorder.scratch.exists()
    assert f"Video saved: {out} (2.0K)" in capsys.readouterr().out


def test_gif_uses_gif_intermediate(recorder: Recorder, prg: Path, tmp_path: Path, no_sleep) -> None:
    c64_video.record_video(CaptureJob(prg, tmp_path / "demo.gif"), sleep=no_sleep)
    assert recorder.finalized[0] == "video.gif"


def test_input_script_runs_against_window(recorder: Recorder, prg: Path, tmp_path: Path, no_sleep,
                                          monkeypatch: pytest.MonkeyPatch) -> None:
    played = []
    monkeypatch.setattr(InputScript, "run", lambda self, registry, window_id, env: played.append((window_id, env)))
    script = InputScript(tmp_path / "demo.keys", "keys", parse_key_script("key space"), "xdotool")
    c64_video.record_video(CaptureJob(prg, tmp_path / "demo.mp4"), script, sleep=no_sleep)
    assert played == [(VICE_WINDOW.window_id, {"DISPLAY": ":99"})]
    assert 0.5 in no_sleep


def test_missing_window_falls_back_to_nominal(recorder: Recorder, prg: Path, tmp_path: Path, no_sleep,
                                              monkeypatch: pytest.MonkeyPatch,
                                              capsys: pytest.CaptureFixture[str]) -> None:
    monkeypatch.setattr(c64_video, "wait_for_window", lambda finder: None)
    c64_video.record_video(CaptureJob(prg, tmp_path / "demo.webm", scale=1), sleep=no_sleep)
    assert recorder.region == c64_video.CaptureRegion(0, 0, 384, 272)
    assert "WARNING: Could not find VICE window" in capsys.readouterr().out


def test_strict_mode_aborts_and_tears_down(recorder: Recorder, prg: Path, tmp_path: Path, no_sleep,
                                           monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(c64_video, "wait_for_window", lambda finder: None)
    with pytest.raises(WindowNotFoundError):
        c64_video.record_video(CaptureJob(prg, tmp_path / "demo.mp4", strict=True), sleep=no_sleep)
    assert not recorder.vice.is_running()
    assert not (tmp_path / "demo.mp4").exists()


def test_emulator_dying_during_boot_wait(recorder: Recorder, prg: Path, tmp_path: Path,
                                         capsys: pytest.CaptureFixture[str]) -> None:
    def crash_vice(seconds: float) -> None:
        recorder.vice.popen.kill()
        recorder.vice.popen.wait()

    with pytest.raises(c64_video.EmulatorError, match="exited early"):
        c64_video.record_video(CaptureJob(prg, tmp_path / "demo.mp4"), sleep=crash_vice)
    assert recorder.region is None


def test_main_reports_usage_errors(recorder: Recorder, capsys: pytest.CaptureFixture[str],
                                   monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(c64_video, "install_signal_handlers", lambda: None)
    assert c64_video.main(["only.asm"]) == 1
    out = capsys.readouterr().out
    assert "Error: INPUT and OUTPUT files required" in out
    assert "Usage: c64-video INPUT OUTPUT [OPTIONS]" in out
    assert recorder.displays == []


def test_main_rejects_bad_key_script_before_launch(recorder: Recorder, prg: Path, tmp_path: Path,
                                                   monkeypatch: pytest.MonkeyPatch, tools_on_path,
                                                   capsys: pytest.CaptureFixture[str]) -> None:
    monkeypatch.setattr(c64_video, "install_signal_handlers", lambda: None)
    script = tmp_path / "bad.keys"
    script.write_text("presskey space\n")
    assert c64_video.main([str(prg), str(tmp_path / "o.mp4"), "--input", str(script)]) == 1
    assert "unknown command 'presskey'" in capsys.readouterr().out
    assert recorder.displays == []


def test_main_interrupt_exits_130(recorder: Recorder, prg: Path, tmp_path: Path,
                                  monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(c64_video, "install_signal_handlers", lambda: None)

    def interrupted(job, script=None):
        raise KeyboardInterrupt

    monkeypatch.setattr(c64_video, "record_video", interrupted)
    assert c64_video.main([str(prg), str(tmp_path / "o.mp4")]) == 130


def test_job_options_flow_through(prg: Path, tmp_path: Path) -> None:
    job = parse_video_job([str(prg), str(tmp_path / "o.mp4"), "--joystick", "1", "--scale", "3",
                           "--display", "7"])
    assert (job.joystick_port, job.scale, job.display_name) == (1, 3, ":7")


def test_watchdog_restarts_after_input_script(recorder: Recorder, prg: Path, tmp_path: Path, no_sleep,
                                              monkeypatch: pytest.MonkeyPatch) -> None:
    events = []
    start_watchdog = c64_video.ProcessRegistry.start_watchdog

    def recording_watchdog(self, managed, seconds):
        events.append(("watchdog", managed.role, seconds))
        return start_watchdog(self, managed, seconds)

    monkeypatch.setattr(c64_video.ProcessRegistry, "start_watchdog", recording_watchdog)
    monkeypatch.setattr(InputScript, "run", lambda self, registry, window_id, env: events.append(("script",)))
    script = InputScript(tmp_path / "long.keys", "keys", parse_key_script("sleep 120"), "xdotool")
    job = CaptureJob(prg, tmp_path / "demo.mp4", duration_seconds=5)
    c64_video.record_video(job, script, sleep=no_sleep)
    assert events == [("script",), ("watchdog", "x64sc", 5 + c64_video.EMULATOR_SAFETY_MARGIN_SECONDS)]


def test_main_unwritable_log_starts_nothing(recorder: Recorder, prg: Path, tmp_path: Path,
                                            monkeypatch: pytest.MonkeyPatch,
                                            capsys: pytest.CaptureFixture[str]) -> None:
    monkeypatch.setattr(c64_video, "install_signal_handlers", lambda: None)
    log = tmp_path / "missing" / "run.log"
    assert c64_video.main([str(prg), str(tmp_path / "o.mp4"), "--log", str(log)]) == 1
    assert "Error: Cannot open log file" in capsys.readouterr().out
    assert recorder.displays == []

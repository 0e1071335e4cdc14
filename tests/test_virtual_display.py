from __future__ import annotations

import sys
from pathlib import Path

import pytest

import virtual_display
from capture_config import CaptureJob
from process_registry import ProcessRegistry
from virtual_display import DECORATION_MARGIN, DisplayError, VirtualDisplay, video_screen_size


def test_video_screen_leaves_room_for_decorations(tmp_path: Path) -> None:
    job = CaptureJob(tmp_path / "a.prg", tmp_path / "b.mp4", scale=2)
    assert video_screen_size(job) == (768 + DECORATION_MARGIN, 544 + DECORATION_MARGIN)


def test_env_points_at_display() -> None:
    display = VirtualDisplay(ProcessRegistry(), 42, 1024, 768)
    assert display.name == ":42"
    assert display.env()["DISPLAY"] == ":42"


def test_display_in_use_is_refused(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(virtual_display, "display_accepts_connections", lambda name: True)
    with ProcessRegistry() as registry:
        with pytest.raises(DisplayError, match="already in use"):
            VirtualDisplay(registry, 99, 1024, 768).start()
        assert registry.processes == []


def test_missing_xvfb(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(virtual_display, "display_accepts_connections", lambda name: False)
    monkeypatch.setattr(virtual_display, "find_tool", lambda name: None)
    with ProcessRegistry() as registry:
        with pytest.raises(DisplayError, match="Xvfb not found"):
            VirtualDisplay(registry, 99, 1024, 768).start()


def test_xvfb_dying_at_startup_is_reported(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(virtual_display, "display_accepts_connections", lambda name: False)
    monkeypatch.setattr(virtual_display, "find_tool", lambda name: sys.executable)
    with ProcessRegistry() as registry:
        display = VirtualDisplay(registry, 99, 1024, 768)
        # python cannot open ":99" as a script and exits with code 2
        with pytest.raises(DisplayError):
            display.start()
        assert registry.alive() == []


def test_missing_window_manager_warns(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    monkeypatch.setattr(virtual_display, "find_tool", lambda name: None)
    with ProcessRegistry() as registry:
        display = VirtualDisplay(registry, 99, 1024, 768)
        assert display.start_window_manager() is None
        assert "WARNING: openbox not found" in capsys.readouterr().out
        with pytest.raises(virtual_display.WindowManagerError):
            display.start_window_manager(strict=True)

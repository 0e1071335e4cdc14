"""Shared fakes for the capture tests: nothing here touches a real X server or tool."""

from __future__ import annotations

import subprocess
from typing import Callable, List, Optional

import pytest


class FakeRunner:
    """Stands in for subprocess.run; records argv lists and answers via `respond`."""

    def __init__(self, respond: Optional[Callable[[list], subprocess.CompletedProcess]] = None) -> None:
        self.calls: List[list] = []
        self.kwargs: List[dict] = []
        self.respond = respond

    def __call__(self, command, **kwargs) -> subprocess.CompletedProcess:
        self.calls.append(list(command))
        self.kwargs.append(kwargs)
        if self.respond is not None:
            return self.respond(list(command))
        return completed(list(command))


def completed(command: list, returncode: int = 0, stdout="", stderr="") -> subprocess.CompletedProcess:
    return subprocess.CompletedProcess(command, returncode, stdout, stderr)


class SleepRecorder(list):
    """Replacement for time.sleep that only remembers what it was asked."""

    def __call__(self, seconds: float) -> None:
        self.append(seconds)


@pytest.fixture
def no_sleep() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def tools_on_path(monkeypatch: pytest.MonkeyPatch) -> None:
    """Pretend every external tool is installed at /usr/bin/<name>."""
    import capture_config

    monkeypatch.setattr(capture_config.shutil, "which", lambda name: f"/usr/bin/{name}")

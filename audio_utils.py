# audio_utils.py
"""
PulseAudio plumbing for the video workflow.

VICE records its own SID output to a WAV file; on top of that its live
stream is parked on a private null sink so nothing plays through the host's
speakers and the stream can be monitored if needed. Every step here is best
effort: a missing audio server costs us the live routing, never the video.
"""

import subprocess
import time
from typing import Callable, Optional

from capture_config import CaptureError, find_tool
from log_utils import warn_or_raise
from process_registry import ProcessRegistry
from readiness import poll, wait_until

CAPTURE_SINK_NAME = "vice_capture"
CAPTURE_SINK_DESCRIPTION = "VICECapture"
EMULATOR_STREAM_HINTS = ("x64", "vice")
SINK_INPUT_SEARCH_ATTEMPTS = 10
SINK_INPUT_SEARCH_INTERVAL = 0.5


class AudioRoutingError(CaptureError):
    """The audio server or the emulator's audio stream could not be set up."""


def sink_input_indices(listing: str) -> set[str]:
    return {line.split()[0] for line in listing.splitlines() if line.split()}


def pick_emulator_sink_input(listing: str, existing=frozenset()) -> Optional[str]:
    """
    Choose the emulator's stream from `pactl list sink-inputs short` output.

    Streams in `existing` were open before the emulator started and belong
    to someone else. Among the rest, a line mentioning VICE wins, otherwise
    the first new stream is taken.
    """
    entries = []
    for line in listing.splitlines():
        fields = line.split()
        if fields and fields[0] not in existing:
            entries.append((fields[0], line.lower()))
    for index, line in entries:
        if any(hint in line for hint in EMULATOR_STREAM_HINTS):
            return index
    return entries[0][0] if entries else None


def sink_names(listing: str) -> list[str]:
    """Sink names from `pactl list sinks short` output (second column)."""
    names = []
    for line in listing.splitlines():
        fields = line.split()
        if len(fields) >= 2:
            names.append(fields[1])
    return names


class PulseAudioRouter:
    """Creates the capture sink and moves the emulator's stream onto it."""

    def __init__(self, registry: ProcessRegistry, sink_name: str = CAPTURE_SINK_NAME,
                 runner: Optional[Callable[..., subprocess.CompletedProcess]] = None):
        self.registry = registry
        self.sink_name = sink_name
        self.runner = runner or subprocess.run
        self.pactl = find_tool("pactl")
        self.pulseaudio = find_tool("pulseaudio")
        # sink-inputs present before the emulator starts; never ours to move
        self.existing_sink_inputs: set[str] = set()

    def is_available(self) -> bool:
        return self.pactl is not None

    def _pactl(self, *args) -> subprocess.CompletedProcess:
        return self.runner([self.pactl, *args], capture_output=True, text=True)

    def server_running(self) -> bool:
        return self._pactl("info").returncode == 0

    def ensure_server(self) -> bool:
        """Start a PulseAudio daemon if none answers; stop it again at teardown."""
        if self.server_running():
            return True
        if self.pulseaudio is None:
            return False

        started = self.runner([self.pulseaudio, "--start", "--exit-idle-time=-1"],
                              capture_output=True, text=True)
        if started.returncode != 0:
            return False
        print("[Audio] Started PulseAudio daemon")
        self.registry.register("pulseaudio daemon",
                               lambda: self.runner([self.pulseaudio, "--kill"], capture_output=True, text=True))
        return bool(wait_until(self.server_running, attempts=8, initial_delay=0.1, max_delay=1.0))

    def sink_exists(self) -> bool:
        listing = self._pactl("list", "sinks", "short")
        return listing.returncode == 0 and self.sink_name in sink_names(listing.stdout)

    def create_capture_sink(self) -> bool:
        if self.sink_exists():
            return True
        loaded = self._pactl("load-module", "module-null-sink",
                             f"sink_name={self.sink_name}",
                             f"sink_properties=device.description={CAPTURE_SINK_DESCRIPTION}")
        if loaded.returncode != 0:
            return False
        module_index = loaded.stdout.strip()
        if module_index:
            self.registry.register(f"null sink {self.sink_name}",
                                   lambda: self._pactl("unload-module", module_index))
        return bool(wait_until(self.sink_exists, attempts=8, initial_delay=0.1, max_delay=0.5))

    def setup(self, strict: bool = False) -> bool:
        """Audio server plus capture sink. False (or AudioRoutingError if strict) on failure."""
        if not self.is_available():
            warn_or_raise(AudioRoutingError("pactl not found, skipping audio routing"), strict)
            return False
        if not self.ensure_server():
            warn_or_raise(AudioRoutingError("PulseAudio is not running and could not be started"), strict)
            return False
        if not self.create_capture_sink():
            warn_or_raise(AudioRoutingError(f"Could not create capture sink '{self.sink_name}'"), strict)
            return False
        self.existing_sink_inputs = self.list_sink_inputs()
        print(f"[Audio] Capture sink '{self.sink_name}' ready")
        return True

    def list_sink_inputs(self) -> set[str]:
        listing = self._pactl("list", "sink-inputs", "short")
        return sink_input_indices(listing.stdout) if listing.returncode == 0 else set()

    def find_emulator_sink_input(self) -> Optional[str]:
        listing = self._pactl("list", "sink-inputs", "short")
        if listing.returncode != 0:
            return None
        return pick_emulator_sink_input(listing.stdout, self.existing_sink_inputs)

    def redirect_emulator_audio(self, attempts: int = SINK_INPUT_SEARCH_ATTEMPTS,
                                interval: float = SINK_INPUT_SEARCH_INTERVAL,
                                sleep: Callable[[float], None] = time.sleep) -> Optional[str]:
        """Move the emulator's sink-input onto the capture sink. Returns its index."""
        sink_input = poll(self.find_emulator_sink_input, attempts=attempts, interval=interval,
                          sleep=sleep)
        if sink_input is None:
            return None
        moved = self._pactl("move-sink-input", sink_input, self.sink_name)
        if moved.returncode != 0:
            return None
        print(f"[Audio] Redirected sink-input {sink_input} to {self.sink_name}")
        return sink_input

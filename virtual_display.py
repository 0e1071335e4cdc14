# virtual_display.py
"""
Virtual framebuffer (Xvfb) and window manager (openbox) lifecycle.

The emulator needs an X server to draw into, and xdotool needs a window
manager to address windows by id. Both are started through the process
registry and polled for readiness over the X protocol instead of being
given a fixed head start.
"""

import os
from typing import Optional

import Xlib.display
import Xlib.error
from Xlib import X

from capture_config import CaptureError, CaptureJob, find_tool
from log_utils import warn_or_raise
from process_registry import ManagedProcess, ProcessRegistry
from readiness import wait_until

SCREEN_DEPTH = 24
# VICE's GTK3 window can be ~720x644 and land around (80,40); leave room
DECORATION_MARGIN = 300
SCREENSHOT_SCREEN_SIZE = (1024, 768)

DISPLAY_READY_ATTEMPTS = 12
WM_READY_ATTEMPTS = 10


class DisplayError(CaptureError):
    """The virtual framebuffer could not be started."""


class WindowManagerError(CaptureError):
    """The window manager is missing or never came up."""


def video_screen_size(job: CaptureJob) -> tuple[int, int]:
    width, height = job.nominal_size
    return width + DECORATION_MARGIN, height + DECORATION_MARGIN


def open_display(display_name: str) -> Optional[Xlib.display.Display]:
    """A client connection to display_name, or None if nothing is listening."""
    try:
        return Xlib.display.Display(display_name)
    except (Xlib.error.DisplayError, OSError):
        return None


def display_accepts_connections(display_name: str) -> bool:
    conn = open_display(display_name)
    if conn is None:
        return False
    conn.close()
    return True


def window_manager_running(display_name: str) -> bool:
    """An EWMH window manager advertises itself via _NET_SUPPORTING_WM_CHECK on the root."""
    conn = open_display(display_name)
    if conn is None:
        return False
    try:
        root = conn.screen().root
        atom = conn.intern_atom("_NET_SUPPORTING_WM_CHECK")
        prop = root.get_full_property(atom, X.AnyPropertyType)
        return prop is not None and len(prop.value) > 0
    except Xlib.error.XError:
        return False
    finally:
        conn.close()


class VirtualDisplay:
    """An Xvfb server plus optional window manager, owned by a ProcessRegistry."""

    def __init__(self, registry: ProcessRegistry, display_num: int, width: int, height: int,
                 depth: int = SCREEN_DEPTH):
        self.registry = registry
        self.display_num = display_num
        self.width = width
        self.height = height
        self.depth = depth
        self.server: Optional[ManagedProcess] = None
        self.window_manager: Optional[ManagedProcess] = None

    @property
    def name(self) -> str:
        return f":{self.display_num}"

    def env(self) -> dict:
        """Environment for processes that should draw on this display."""
        env = os.environ.copy()
        env["DISPLAY"] = self.name
        return env

    def start(self) -> "VirtualDisplay":
        if display_accepts_connections(self.name):
            raise DisplayError(f"Display {self.name} is already in use (another capture running?)")
        xvfb = find_tool("Xvfb")
        if xvfb is None:
            raise DisplayError("Xvfb not found on PATH")

        geometry = f"{self.width}x{self.height}x{self.depth}"
        print(f"[Display] Starting Xvfb on {self.name} ({geometry})")
        self.server = self.registry.spawn(
            "Xvfb", [xvfb, self.name, "-screen", "0", geometry, "-nolisten", "tcp"])

        def _ready():
            if not self.server.is_running():
                raise DisplayError(f"Xvfb exited with code {self.server.popen.returncode}")
            return display_accepts_connections(self.name)

        if not wait_until(_ready, attempts=DISPLAY_READY_ATTEMPTS, initial_delay=0.1, max_delay=1.0):
            raise DisplayError(f"Display {self.name} did not start accepting connections")
        print(f"[Display] {self.name} is ready")
        return self

    def start_window_manager(self, strict: bool = False) -> Optional[ManagedProcess]:
        openbox = find_tool("openbox")
        if openbox is None:
            warn_or_raise(WindowManagerError("openbox not found, input injection may not work"), strict)
            return None

        self.window_manager = self.registry.spawn("openbox", [openbox], env=self.env())
        if wait_until(lambda: window_manager_running(self.name), attempts=WM_READY_ATTEMPTS,
                      initial_delay=0.1, max_delay=0.5):
            print("[Display] Window manager is up")
        else:
            warn_or_raise(WindowManagerError("Window manager did not come up, input injection may not work"),
                          strict)
        return self.window_manager

# window_utils.py

from dataclasses import dataclass
from typing import Optional

import Xlib.display
import Xlib.error
from ewmh import EWMH

from capture_config import CaptureError
from readiness import poll

# VICE titles its window "VICE: C64 emulator ..." on GTK3, older builds use "x64"
VICE_TITLE_PATTERNS = ("VICE", "x64")
WINDOW_SEARCH_ATTEMPTS = 20
WINDOW_SEARCH_INTERVAL = 0.5


class WindowNotFoundError(CaptureError):
    """Custom exception for when a window cannot be found."""
    pass


@dataclass(frozen=True)
class WindowInfo:
    window_id: int
    title: str
    left: int
    top: int
    width: int
    height: int


class X11WindowFinder:
    """
    Finds top-level windows through the window manager's EWMH client list.

    Needs a running EWMH window manager on the display; without one the
    client list is empty and every lookup returns None.
    """
    def __init__(self, display_name: str, ewmh=None):
        self.display_name = display_name
        self._display = None
        self._ewmh = ewmh
        if self._ewmh is None:
            try:
                self._display = Xlib.display.Display(display_name)
                self._ewmh = EWMH(_display=self._display)
            except (Xlib.error.DisplayError, OSError) as e:
                print(f"WARNING: Cannot open {display_name} for window lookup: {e}")

    def is_available(self) -> bool:
        return self._ewmh is not None

    def _title(self, window) -> str:
        try:
            raw = self._ewmh.getWmName(window)
        except (Xlib.error.XError, AttributeError, TypeError):
            return ""
        if raw is None:
            return ""
        if isinstance(raw, bytes):
            return raw.decode('utf-8', 'ignore')
        return str(raw)

    def find_window(self, patterns=VICE_TITLE_PATTERNS) -> Optional[WindowInfo]:
        """
        First client whose title contains one of `patterns` (case-insensitive).
        Patterns are tried in order, so an earlier pattern wins over a later one.
        """
        if not self.is_available():
            return None

        try:
            clients = self._ewmh.getClientList() or []
        except Xlib.error.XError:
            return None

        titled = [(window, self._title(window)) for window in clients]
        for pattern in patterns:
            needle = pattern.lower()
            for window, title in titled:
                if needle in title.lower():
                    return self.describe(window, title)
        return None

    def describe(self, window, title: str = "") -> Optional[WindowInfo]:
        """Client-area geometry of `window` in root (screen) coordinates."""
        try:
            geo = window.get_geometry()
            origin = self._ewmh.root.translate_coords(window, 0, 0)
            return WindowInfo(window.id, title, origin.x, origin.y, geo.width, geo.height)
        except Xlib.error.XError:
            # Window might close between find and get_geometry
            return None

    def geometry(self, window_id: int, title: str = "") -> Optional[WindowInfo]:
        """Re-read the geometry of a window found earlier."""
        if not self.is_available():
            return None
        window = self._ewmh.display.create_resource_object('window', window_id)
        return self.describe(window, title)

    def close(self):
        if self._display is not None:
            self._display.close()
            self._display = None


def wait_for_window(finder: X11WindowFinder, patterns=VICE_TITLE_PATTERNS,
                    attempts: int = WINDOW_SEARCH_ATTEMPTS,
                    interval: float = WINDOW_SEARCH_INTERVAL) -> Optional[WindowInfo]:
    return poll(lambda: finder.find_window(patterns), attempts=attempts, interval=interval)

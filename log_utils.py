# log_utils.py
### console helpers shared by the capture entry points
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Optional

from capture_config import UsageError


class TeeWriter:
    """Write to both terminal and log file."""
    def __init__(self, terminal, logfile):
        self.terminal = terminal
        self.logfile = logfile

    def write(self, message):
        self.terminal.write(message)
        self.terminal.flush()
        self.logfile.write(message)
        self.logfile.flush()

    def flush(self):
        self.terminal.flush()
        self.logfile.flush()


@contextmanager
def tee_output(log_path: Optional[Path]):
    """Mirror stdout/stderr into log_path for the duration of the block."""
    if log_path is None:
        yield
        return

    try:
        log_file = open(log_path, 'w', encoding='utf-8')
    except OSError as e:
        raise UsageError(f"Cannot open log file: {log_path}: {e.strerror or e}") from e
    saved_stdout, saved_stderr = sys.stdout, sys.stderr
    sys.stdout = TeeWriter(saved_stdout, log_file)
    sys.stderr = TeeWriter(saved_stderr, log_file)
    print(f"Logging to: {log_path}")
    try:
        yield
    finally:
        sys.stdout, sys.stderr = saved_stdout, saved_stderr
        log_file.close()


def warn_or_raise(error: Exception, strict: bool) -> None:
    """Best-effort steps degrade to a warning unless the run is strict."""
    if strict:
        raise error
    print(f"WARNING: {error}")


def format_size(num_bytes: int) -> str:
    """du -h style size: 512B, 1.4K, 23M."""
    size = float(num_bytes)
    for unit in ("B", "K", "M", "G"):
        if size < 1024 or unit == "G":
            return f"{size:.0f}{unit}" if unit == "B" or size >= 10 else f"{size:.1f}{unit}"
        size /= 1024

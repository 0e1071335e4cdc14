# process_registry.py
"""
Teardown registry for everything a capture run spawns.

Background processes, scratch directories and undo actions are registered
in creation order and released in reverse order when the registry closes,
whatever the exit path: normal completion, a CaptureError, Ctrl-C, or a
SIGTERM/SIGHUP converted to SystemExit by install_signal_handlers().

Processes are stopped as whole trees via psutil so helpers a child forked
go down with it.
"""

import shutil
import signal
import subprocess
import tempfile
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Sequence

import psutil

TERMINATE_GRACE_SECONDS = 3.0


@dataclass
class ManagedProcess:
    """A spawned background process and the role it plays in the run."""
    role: str
    popen: subprocess.Popen

    @property
    def pid(self) -> int:
        return self.popen.pid

    def is_running(self) -> bool:
        return self.popen.poll() is None


class ProcessRegistry:
    """
    Usage:
        with ProcessRegistry() as registry:
            xvfb = registry.spawn("Xvfb", ["Xvfb", ":99"])
            scratch = registry.make_scratch_dir("c64video_")
            ...
        # everything above is gone here
    """

    def __init__(self, grace_seconds: float = TERMINATE_GRACE_SECONDS):
        self.grace_seconds = grace_seconds
        self.processes: list[ManagedProcess] = []
        self._cleanups: list[tuple[str, Callable[[], None]]] = []
        self._watchdogs: dict[int, threading.Timer] = {}
        self.lock = threading.Lock()
        self.closed = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    # --- registration ---

    def register(self, name: str, action: Callable[[], None]) -> None:
        """Run action() at teardown, before anything registered earlier."""
        with self.lock:
            if self.closed:
                raise RuntimeError(f"Registry already closed, cannot register {name}")
            self._cleanups.append((name, action))

    def spawn(self, role: str, command: Sequence[str], env: Optional[dict] = None,
              **popen_kwargs) -> ManagedProcess:
        """Start a background process that will be stopped at teardown."""
        popen_kwargs.setdefault("stdin", subprocess.DEVNULL)
        popen_kwargs.setdefault("stdout", subprocess.DEVNULL)
        popen_kwargs.setdefault("stderr", subprocess.DEVNULL)
        proc = subprocess.Popen([str(part) for part in command], env=env, **popen_kwargs)
        managed = ManagedProcess(role, proc)
        with self.lock:
            self.processes.append(managed)
        self.register(f"{role} (pid {proc.pid})", lambda: self.stop(managed))
        print(f"[Process] Started {role} (pid {proc.pid})")
        return managed

    def make_scratch_dir(self, prefix: str) -> Path:
        """A private temp directory removed at teardown."""
        path = Path(tempfile.mkdtemp(prefix=prefix))
        self.register(f"scratch dir {path}", lambda: shutil.rmtree(path, ignore_errors=True))
        return path

    def start_watchdog(self, managed: ManagedProcess, seconds: float) -> threading.Timer:
        """
        Kill managed if it is still alive after `seconds` of wall-clock time.
        Calling it again for the same process replaces the earlier deadline.
        """
        timer = threading.Timer(seconds, self._expire, args=(managed, seconds))
        timer.daemon = True
        with self.lock:
            previous = self._watchdogs.get(managed.pid)
            self._watchdogs[managed.pid] = timer
        if previous is not None:
            previous.cancel()
        else:
            self.register(f"watchdog for {managed.role}", lambda: self._cancel_watchdog(managed))
        timer.start()
        return timer

    def _cancel_watchdog(self, managed: ManagedProcess):
        with self.lock:
            timer = self._watchdogs.pop(managed.pid, None)
        if timer is not None:
            timer.cancel()

    def _expire(self, managed: ManagedProcess, seconds: float):
        if managed.is_running():
            print(f"WARNING: {managed.role} still running after {seconds:.0f}s, killing it")
            self.stop(managed, grace_seconds=0.5)

    # --- teardown ---

    def stop(self, managed: ManagedProcess, grace_seconds: Optional[float] = None) -> Optional[int]:
        """SIGTERM the process tree, then SIGKILL whatever outlives the grace period."""
        grace = self.grace_seconds if grace_seconds is None else grace_seconds
        proc = managed.popen
        if proc.poll() is not None:
            return proc.returncode

        # Snapshot the tree first: once the parent dies its children get reparented
        try:
            children = psutil.Process(proc.pid).children(recursive=True)
        except psutil.NoSuchProcess:
            children = []

        try:
            proc.terminate()
        except ProcessLookupError:
            pass
        for child in children:
            try:
                child.terminate()
            except psutil.NoSuchProcess:
                pass

        try:
            proc.wait(timeout=grace)
        except subprocess.TimeoutExpired:
            print(f"WARNING: {managed.role} did not terminate, forcing")
            proc.kill()
            proc.wait()

        _, alive = psutil.wait_procs(children, timeout=grace)
        for child in alive:
            try:
                child.kill()
            except psutil.NoSuchProcess:
                pass

        print(f"[Teardown] Stopped {managed.role} (pid {proc.pid})")
        return proc.returncode

    def close(self):
        """
        Run every registered cleanup, newest first.

        Cleanup failures are printed and skipped. A Ctrl-C or signal arriving
        mid-teardown does not cut it short: the remaining cleanups still run
        and the interruption is re-raised once they are done.
        """
        with self.lock:
            if self.closed:
                return
            self.closed = True
            cleanups = list(reversed(self._cleanups))
            self._cleanups.clear()

        interrupted: Optional[BaseException] = None
        for name, action in cleanups:
            # An interrupted cleanup gets one more try
            for _ in range(2):
                try:
                    action()
                except Exception as e:
                    print(f"WARNING: Cleanup of {name} failed: {e}")
                except (KeyboardInterrupt, SystemExit) as e:
                    print(f"WARNING: Interrupted while cleaning up {name}, finishing teardown")
                    interrupted = interrupted or e
                    continue
                break
        if interrupted is not None:
            raise interrupted

    def alive(self) -> list[ManagedProcess]:
        return [p for p in self.processes if p.is_running()]


def install_signal_handlers():
    """Turn SIGTERM/SIGHUP into SystemExit so `with ProcessRegistry()` unwinds."""
    def _raise_exit(signum, frame):
        raise SystemExit(128 + signum)

    for sig in (signal.SIGTERM, signal.SIGHUP):
        signal.signal(sig, _raise_exit)

# readiness.py
"""
Bounded polling for the processes a capture run depends on.

Nothing we launch tells us when it is ready, so every dependency is probed:
the caller supplies a probe returning something truthy once the dependency
is usable, and we retry it until it does or the attempt budget runs out.
Delays grow exponentially up to a cap; a factor of 1.0 gives a plain
fixed-interval poll.
"""

import time
from typing import Callable, Optional, TypeVar

T = TypeVar("T")


def backoff_delays(attempts: int, initial_delay: float, factor: float, max_delay: float) -> list[float]:
    """The sleeps wait_until performs between `attempts` probes."""
    delays = []
    delay = initial_delay
    for _ in range(max(attempts - 1, 0)):
        delays.append(delay)
        delay = min(delay * factor, max_delay)
    return delays


def wait_until(probe: Callable[[], Optional[T]], attempts: int = 10, initial_delay: float = 0.1,
               factor: float = 2.0, max_delay: float = 1.0,
               sleep: Callable[[float], None] = time.sleep) -> Optional[T]:
    """
    Call probe() until it returns a truthy value.

    Returns:
        The first truthy probe result, or None once all attempts failed.
    """
    delays = backoff_delays(attempts, initial_delay, factor, max_delay)
    for attempt in range(attempts):
        result = probe()
        if result:
            return result
        if attempt < len(delays):
            sleep(delays[attempt])
    return None


def poll(probe: Callable[[], Optional[T]], attempts: int, interval: float,
         sleep: Callable[[float], None] = time.sleep) -> Optional[T]:
    """Fixed-interval variant used for window and audio-stream discovery."""
    return wait_until(probe, attempts=attempts, initial_delay=interval, factor=1.0,
                      max_delay=interval, sleep=sleep)

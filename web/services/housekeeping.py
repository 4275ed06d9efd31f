from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Iterable

from services.logutil import log_exception_throttled


logger = logging.getLogger(__name__)


_started = False
_lock = threading.Lock()


def run_sweeps(sweepers: Iterable[Callable[[], int]]) -> int:
    """Run every sweeper once; return the total number of evicted items."""
    total = 0
    for sweep in sweepers:
        total += int(sweep() or 0)
    return total


def start_housekeeping(sweepers: Iterable[Callable[[], int]], *, interval_seconds: float = 5 * 60) -> bool:
    """Start the background sweeper thread once per process.

    Evicts expired sessions and idle login-limiter buckets so neither grows
    without bound. Returns False if the thread was already running.
    """
    global _started
    with _lock:
        if _started:
            return False
        _started = True

    sweepers = list(sweepers)

    def loop() -> None:
        while True:
            time.sleep(float(interval_seconds))
            try:
                evicted = run_sweeps(sweepers)
                if evicted:
                    logger.debug("Housekeeping evicted %d items", evicted)
            except Exception:
                log_exception_throttled(
                    logger,
                    "housekeeping.loop",
                    interval_seconds=300,
                    message="Housekeeping run failed",
                )

    t = threading.Thread(target=loop, name="session-housekeeping", daemon=True)
    t.start()
    return True

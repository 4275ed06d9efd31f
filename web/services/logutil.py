from __future__ import annotations

import logging
import threading
import time
from typing import Dict


_lock = threading.Lock()
_last_log: Dict[str, float] = {}


def should_log(key: str, *, interval_seconds: float) -> bool:
    now = time.monotonic()
    with _lock:
        last = _last_log.get(key)
        if last is not None and (now - last) < float(interval_seconds):
            return False
        _last_log[key] = now
        return True


def log_exception_throttled(
    logger: logging.Logger,
    key: str,
    *args,
    interval_seconds: float,
    message: str,
    level: int = logging.ERROR,
) -> None:
    """Log the active exception at most once per interval per key.

    Used by the session sweeper and the service status probe, both of which
    may fail repeatedly (every poll) without anything being actionable.
    """
    try:
        if should_log(key, interval_seconds=interval_seconds):
            logger.log(level, message, *args, exc_info=True)
    except Exception:
        # Never let logging break the caller.
        pass


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, (level or "INFO").upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

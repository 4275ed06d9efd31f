from __future__ import annotations

import logging
import secrets
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional


logger = logging.getLogger(__name__)


SESSION_LIFETIME_SECONDS = 60 * 60


@dataclass(frozen=True)
class SessionRecord:
    session_id: str
    username: str
    created_ts: float
    expires_ts: float
    authenticated: bool = True


class SessionStore:
    """In-memory server-side sessions.

    Expired records are evicted lazily on lookup and in bulk by `sweep()`,
    which the housekeeping thread calls periodically.
    """

    def __init__(self, lifetime_seconds: float = SESSION_LIFETIME_SECONDS, clock: Optional[Callable[[], float]] = None):
        self.lifetime_seconds = float(lifetime_seconds)
        self._clock = clock or time.time
        self._lock = threading.Lock()
        self._sessions: Dict[str, SessionRecord] = {}

    def create(self, username: str) -> SessionRecord:
        now = self._clock()
        record = SessionRecord(
            session_id=secrets.token_urlsafe(32),
            username=username,
            created_ts=now,
            expires_ts=now + self.lifetime_seconds,
        )
        with self._lock:
            self._sessions[record.session_id] = record
        return record

    def get(self, session_id: Optional[str]) -> Optional[SessionRecord]:
        if not session_id or not isinstance(session_id, str):
            return None
        with self._lock:
            record = self._sessions.get(session_id)
            if record is None:
                return None
            if record.expires_ts <= self._clock():
                del self._sessions[session_id]
                return None
            return record

    def destroy(self, session_id: Optional[str]) -> bool:
        if not session_id:
            return False
        with self._lock:
            return self._sessions.pop(session_id, None) is not None

    def sweep(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [sid for sid, r in self._sessions.items() if r.expires_ts <= now]
            for sid in expired:
                del self._sessions[sid]
        if expired:
            logger.debug("Evicted %d expired sessions", len(expired))
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

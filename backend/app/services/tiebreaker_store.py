"""
In-process registry of open tiebreaker sessions.

Sessions are single-actor and never persisted mid-flight; only finalized seeds
and the draw counter reach the database. Sessions are scoped to a tournament
and dropped on finalize or expiry.
"""
import threading
import time
from typing import Dict, Optional, Tuple

from app.services.tiebreaker import TiebreakerSession

SESSION_TTL_SECONDS = 6 * 60 * 60


class TiebreakerSessionStore:
    def __init__(self, ttl_seconds: int = SESSION_TTL_SECONDS):
        self._ttl = ttl_seconds
        self._sessions: Dict[str, Tuple[float, TiebreakerSession]] = {}
        self._lock = threading.Lock()

    def put(self, session: TiebreakerSession) -> TiebreakerSession:
        with self._lock:
            self._purge()
            self._sessions[session.session_id] = (time.monotonic(), session)
        return session

    def get(self, tournament_id: int, session_id: str) -> Optional[TiebreakerSession]:
        with self._lock:
            self._purge()
            entry = self._sessions.get(session_id)
            if entry is None or entry[1].tournament_id != tournament_id:
                return None
            self._sessions[session_id] = (time.monotonic(), entry[1])
            return entry[1]

    def discard(self, session_id: str) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)

    def clear(self) -> None:
        with self._lock:
            self._sessions.clear()

    def _purge(self) -> None:
        cutoff = time.monotonic() - self._ttl
        for sid in [sid for sid, (touched, _) in self._sessions.items() if touched < cutoff]:
            del self._sessions[sid]


tiebreaker_sessions = TiebreakerSessionStore()

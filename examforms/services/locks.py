"""Per-session mutual exclusion.

Operations on the same session are serialized through one lock per session
id; operations on different sessions never contend. Waiting is bounded: a
caller that cannot get the lock in time gets PersistenceTransient and may
retry. An entry lives only while some caller holds or waits for it.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Dict, Iterator

from examforms.errors import PersistenceTransient

logger = logging.getLogger(__name__)


class _Entry:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.users = 0


class SessionLockRegistry:
    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._entries: Dict[str, _Entry] = {}

    def _checkout(self, session_id: str) -> _Entry:
        with self._guard:
            entry = self._entries.get(session_id)
            if entry is None:
                entry = self._entries[session_id] = _Entry()
            entry.users += 1
            return entry

    def _checkin(self, session_id: str, entry: _Entry) -> None:
        with self._guard:
            entry.users -= 1
            if entry.users == 0:
                del self._entries[session_id]

    @contextmanager
    def hold(self, session_id: str, timeout: float) -> Iterator[None]:
        entry = self._checkout(session_id)
        try:
            if not entry.lock.acquire(timeout=timeout):
                logger.warning("Timed out waiting for lock on session %s", session_id)
                raise PersistenceTransient(f"Session {session_id} is busy, retry shortly")
            try:
                yield
            finally:
                entry.lock.release()
        finally:
            self._checkin(session_id, entry)

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)


# Process-wide registry shared by every request handler
session_locks = SessionLockRegistry()

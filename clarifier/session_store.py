"""
In-memory clarification session store.

Sessions live in process memory with a sliding idle TTL. Every read-modify-
write on a session runs under that session's own lock (locked()), so two
requests for the same session are serialized while different sessions
never contend. There is no background thread: idle sessions are reaped
opportunistically on access, or by calling reap_idle() from a scheduler.
"""

import logging
import threading
import time
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, Optional

from clarifier.core.clarification_session import ClarificationSession
from clarifier.errors import SessionNotFoundError

logger = logging.getLogger(__name__)

DEFAULT_SESSION_TTL_SECONDS = 1800


class InMemorySessionStore:
    """
    Process-local session store with:
    - sliding TTL (expires ttl_seconds after last touch)
    - one lock per session for the whole read-modify-write
    - a store lock that only guards the index, never held while a session is in use
    """

    def __init__(self, ttl_seconds: int = DEFAULT_SESSION_TTL_SECONDS,
                 clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        # session_id -> {"session": ClarificationSession, "lock": Lock, "expires_at": float}
        self._items: Dict[str, Dict[str, Any]] = {}

    def _touch_unlocked(self, item: Dict[str, Any]) -> None:
        item["expires_at"] = self._clock() + self.ttl_seconds

    def _new_item(self, session: ClarificationSession) -> Dict[str, Any]:
        return {
            "session": session,
            "lock": threading.Lock(),
            "expires_at": self._clock() + self.ttl_seconds,
        }

    def add(self, session: ClarificationSession) -> None:
        """Store session, replacing any session with the same id"""
        self.reap_idle()
        with self._lock:
            self._items[session.session_id] = self._new_item(session)
        logger.debug(f"Session {session.session_id} stored ({len(self)} active)")

    def add_if_absent(self, session: ClarificationSession) -> ClarificationSession:
        """
        Store session unless one with the same id exists.

        Returns:
            The stored session (the existing one if present)
        """
        self.reap_idle()
        with self._lock:
            item = self._items.get(session.session_id)
            if item is not None:
                self._touch_unlocked(item)
                return item["session"]
            self._items[session.session_id] = self._new_item(session)
            return session

    @contextmanager
    def locked(self, session_id: str) -> Iterator[ClarificationSession]:
        """
        Hold a session's lock for a read-modify-write.

        Usage:
            with store.locked(session_id) as session:
                session.submit_answer(...)

        Raises:
            SessionNotFoundError: If the session is unknown or was reaped
        """
        self.reap_idle()
        with self._lock:
            item = self._items.get(session_id)
        if item is None:
            raise SessionNotFoundError(session_id)

        session_lock = item["lock"]
        session_lock.acquire()
        try:
            with self._lock:
                if self._items.get(session_id) is not item:
                    raise SessionNotFoundError(session_id)
                self._touch_unlocked(item)
            yield item["session"]
        finally:
            with self._lock:
                self._touch_unlocked(item)
            session_lock.release()

    def discard(self, session_id: str) -> bool:
        with self._lock:
            removed = self._items.pop(session_id, None) is not None
        if removed:
            logger.info(f"Session {session_id} discarded")
        return removed

    def reap_idle(self) -> int:
        """
        Remove sessions idle past the TTL. Sessions in use are skipped.

        Returns:
            Number of sessions removed
        """
        now = self._clock()
        reaped = []
        with self._lock:
            for session_id, item in list(self._items.items()):
                if item["expires_at"] > now:
                    continue
                if not item["lock"].acquire(blocking=False):
                    continue
                try:
                    del self._items[session_id]
                    reaped.append(session_id)
                finally:
                    item["lock"].release()

        for session_id in reaped:
            logger.info(f"Session {session_id} reaped after {self.ttl_seconds}s idle")
        return len(reaped)

    def __contains__(self, session_id: Optional[str]) -> bool:
        with self._lock:
            return session_id in self._items

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

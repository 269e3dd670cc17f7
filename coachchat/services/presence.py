"""
Presence & session registry for live Socket.IO connections
"""
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from threading import Lock
from typing import Callable, Dict, Optional, Set

from coachchat.utils.timezone_utils import utcnow

logger = logging.getLogger(__name__)

STATUS_ONLINE = 'online'
STATUS_OFFLINE = 'offline'


@dataclass(frozen=True)
class Session:
    """One live connection of a user"""
    user_id: int
    handle: str
    connected_at: datetime


class PresenceRegistry:
    """
    Maps user IDs to their live connection handles (multi-device).

    Mutations for one user are serialized by that user's lock; unrelated users never
    wait on each other. The transition callback runs while the user's lock is held,
    so a user's online/offline notifications go out once per transition and in order.
    In-memory only: the registry starts empty after a restart.
    """

    def __init__(self, on_transition: Optional[Callable[[int, str], None]] = None):
        self.on_transition = on_transition
        self.user_sessions: Dict[int, Dict[str, Session]] = {}  # user_id -> {handle: Session}
        self._user_locks: Dict[int, Lock] = {}
        self._locks_guard = Lock()

    def _lock_for(self, user_id: int) -> Lock:
        with self._locks_guard:
            lock = self._user_locks.get(user_id)
            if lock is None:
                lock = self._user_locks[user_id] = Lock()
            return lock

    @contextmanager
    def _user_lock(self, user_id: int):
        """
        Hold the user's lock. A lock dropped while we waited on it is stale, so
        retry with the current one. The lock is dropped once the user has no sessions.
        """
        while True:
            lock = self._lock_for(user_id)
            lock.acquire()
            with self._locks_guard:
                if self._user_locks.get(user_id) is lock:
                    break
            lock.release()

        try:
            yield
        finally:
            with self._locks_guard:
                if not self.user_sessions.get(user_id):
                    self._user_locks.pop(user_id, None)
            lock.release()

    def _notify(self, user_id: int, status: str):
        logger.info(f"User {user_id} is now {status}")
        if self.on_transition is not None:
            try:
                self.on_transition(user_id, status)
            except Exception:
                # Presence broadcasts are best-effort; registry state is already updated
                logger.exception(f"Presence broadcast failed for user {user_id}")

    def register(self, user_id: int, handle: str) -> bool:
        """
        Add a live connection handle for a user.

        Returns:
            True if the user just came online (first handle), False otherwise
        """
        with self._user_lock(user_id):
            with self._locks_guard:
                sessions = self.user_sessions.setdefault(user_id, {})
                was_offline = not sessions
                sessions[handle] = Session(user_id=user_id, handle=handle, connected_at=utcnow())

            if was_offline:
                self._notify(user_id, STATUS_ONLINE)

        return was_offline

    def unregister(self, user_id: int, handle: str) -> bool:
        """
        Remove a connection handle.

        Returns:
            True if the user went offline (no more handles), False otherwise
        """
        with self._user_lock(user_id):
            with self._locks_guard:
                sessions = self.user_sessions.get(user_id)
                if not sessions or handle not in sessions:
                    return False

                del sessions[handle]
                went_offline = not sessions
                if went_offline:
                    del self.user_sessions[user_id]

            if went_offline:
                self._notify(user_id, STATUS_OFFLINE)

        return went_offline

    def is_online(self, user_id: int) -> bool:
        with self._locks_guard:
            return bool(self.user_sessions.get(user_id))

    def handles_for(self, user_id: int) -> Set[str]:
        """Snapshot of a user's live connection handles"""
        with self._locks_guard:
            return set(self.user_sessions.get(user_id, {}))

    def session_for(self, user_id: int, handle: str) -> Optional[Session]:
        with self._locks_guard:
            return self.user_sessions.get(user_id, {}).get(handle)

    def online_users(self) -> list:
        """
        Get list of all currently online user IDs.
        """
        with self._locks_guard:
            return list(self.user_sessions)

    def clear(self):
        """Drop every session (process restart semantics)"""
        with self._locks_guard:
            self.user_sessions.clear()
            self._user_locks.clear()


# Global presence registry instance; the gateway installs the broadcast callback
presence_registry = PresenceRegistry()

"""
Pending delivery sessions: at most one per user, held in memory until delivered, superseded or expired.
The store is the only component that deletes a session's backing files.
"""

import logging
import os
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Hashable, List, Optional

logger = logging.getLogger(__name__)

@dataclass(frozen=True)
class PendingSession:
    user_id: Hashable
    staged_file_path: str
    original_file_path: str
    display_file_name: str
    staging_dir: Optional[str]=None
    created_at: float=field(default_factory=time.time)

def remove_silently(path: str):
    """Unlink a file, logging instead of raising when it is already gone or cannot be removed"""
    try:
        os.remove(path)
        logger.debug(f"Removed {path}")
    except OSError as e:
        logger.warning(f"Could not delete file {path}: {e}")

def prune_empty_dir(path: Path):
    """Remove a directory if it is empty; a non-empty or missing one is left alone"""
    try:
        path.rmdir()
        logger.debug(f"Removed empty directory {path}")
    except OSError as e:
        logger.debug(f"Kept directory {path}: {e}")

class SessionStore(ABC):
    """
    Map from user id to a single pending session.

    Implementations must make put, get, take_and_clear and pop_expired atomic;
    operations on the same user are linearizable.
    """

    @abstractmethod
    def put(self, user_id: Hashable, session: PendingSession) -> Optional[PendingSession]:
        """Replace any session for user_id, returning the replaced one. Never deletes files."""
        pass

    @abstractmethod
    def get(self, user_id: Hashable) -> Optional[PendingSession]:
        pass

    @abstractmethod
    def take_and_clear(self, user_id: Hashable) -> Optional[PendingSession]:
        """Read and remove in one step. At most one caller observes a given session."""
        pass

    @abstractmethod
    def pop_expired(self, max_age_seconds: float, now: Optional[float]=None) -> List[PendingSession]:
        """Remove and return every session created more than max_age_seconds ago"""
        pass

    def discard(self, session: PendingSession):
        """Delete the session's files and its staging directory"""
        remove_silently(session.staged_file_path)
        if session.original_file_path != session.staged_file_path:
            remove_silently(session.original_file_path)
        if session.staging_dir:
            staging_dir = Path(session.staging_dir)
            try:
                staging_dir.rmdir()
            except OSError as e:
                logger.warning(f"Could not remove staging directory {staging_dir}: {e}")
                return
            # Per-user parent, shared with any other pending upload of the same user
            prune_empty_dir(staging_dir.parent)

class InMemorySessionStore(SessionStore):
    """Dict guarded by a single lock. The lock is never held across conversion or mail delivery."""

    def __init__(self):
        self._sessions: Dict[Hashable, PendingSession] = {}
        self._lock = threading.Lock()

    def put(self, user_id: Hashable, session: PendingSession) -> Optional[PendingSession]:
        with self._lock:
            previous = self._sessions.get(user_id)
            self._sessions[user_id] = session
        if previous is not None:
            logger.info(f"Pending file of user {user_id} superseded by {session.display_file_name}")
        return previous

    def get(self, user_id: Hashable) -> Optional[PendingSession]:
        with self._lock:
            return self._sessions.get(user_id)

    def take_and_clear(self, user_id: Hashable) -> Optional[PendingSession]:
        with self._lock:
            return self._sessions.pop(user_id, None)

    def pop_expired(self, max_age_seconds: float, now: Optional[float]=None) -> List[PendingSession]:
        cutoff = (time.time() if now is None else now) - max_age_seconds
        with self._lock:
            expired_users = [uid for uid, s in self._sessions.items() if s.created_at < cutoff]
            return [self._sessions.pop(uid) for uid in expired_users]

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

def sweep_expired_sessions(store: SessionStore, max_age_seconds: float, now: Optional[float]=None) -> int:
    """Clean up sessions left waiting for a device choice longer than max_age_seconds"""
    expired = store.pop_expired(max_age_seconds, now)
    for session in expired:
        logger.info(f"Discarding expired pending file {session.display_file_name} of user {session.user_id}")
        store.discard(session)
    if expired:
        logger.info(f"Expired {len(expired)} pending sessions")
    return len(expired)

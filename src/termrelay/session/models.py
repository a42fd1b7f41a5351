"""
Live session records kept by the relay.

The registry is the single source of truth for each session; callers get
copies and change state only through registry methods.
"""

import logging
import time
import uuid
from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

from termrelay.errors import TargetNotFound

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    CLOSED = "closed"
    ERROR = "error"


FINAL_STATES = frozenset({SessionState.CLOSED, SessionState.ERROR})


@dataclass
class Session:
    """One remote shell session."""

    id: str
    user_id: int
    target_id: str
    state: SessionState = SessionState.PENDING
    start_time: float = 0.0
    end_time: Optional[float] = None
    recording_path: Optional[Path] = None
    last_heartbeat: float = 0.0

    @property
    def is_final(self) -> bool:
        return self.state in FINAL_STATES

    @property
    def duration(self) -> float:
        end = self.end_time if self.end_time is not None else time.time()
        return max(0.0, end - self.start_time)


class SessionRegistry:
    """In-memory session table."""

    def __init__(self, clock=time.time):
        self._sessions: Dict[str, Session] = {}
        self._clock = clock

    def __len__(self) -> int:
        return len(self._sessions)

    def create(self, user_id: int, target_id: str, recording_path: Optional[Path] = None) -> Session:
        now = self._clock()
        session = Session(
            id=str(uuid.uuid4()),
            user_id=user_id,
            target_id=target_id,
            start_time=now,
            last_heartbeat=now,
            recording_path=recording_path,
        )
        self._sessions[session.id] = session
        logger.info(f"Session {session.id} created for user {user_id} on target {target_id}")
        return replace(session)

    def get(self, session_id: str) -> Optional[Session]:
        session = self._sessions.get(session_id)
        return replace(session) if session is not None else None

    def activate(self, session_id: str) -> Session:
        session = self._require(session_id)
        if session.state is SessionState.PENDING:
            session.state = SessionState.ACTIVE
            session.last_heartbeat = self._clock()
            logger.info(f"Session {session_id} active")
        return replace(session)

    def close(self, session_id: str, error: bool = False) -> Session:
        """
        Move a session to closed (or error). Closing twice keeps the first outcome.

        Raises:
            TargetNotFound: Unknown session id
        """
        session = self._require(session_id)
        if not session.is_final:
            session.state = SessionState.ERROR if error else SessionState.CLOSED
            session.end_time = self._clock()
            logger.info(
                f"Session {session_id} {session.state.value} after {session.duration:.1f}s"
            )
        return replace(session)

    def touch(self, session_id: str) -> Session:
        """Record a heartbeat. Closed sessions are left untouched."""
        session = self._require(session_id)
        if not session.is_final:
            session.last_heartbeat = self._clock()
        return replace(session)

    def list(
        self, user_id: Optional[int] = None, state: Optional[SessionState] = None
    ) -> List[Session]:
        """Sessions oldest first, optionally for one user or in one state."""
        sessions = sorted(self._sessions.values(), key=lambda s: s.start_time)
        return [
            replace(s)
            for s in sessions
            if (user_id is None or s.user_id == user_id) and (state is None or s.state is state)
        ]

    def stale(self, timeout: float) -> List[Session]:
        """Active sessions whose last heartbeat is older than ``timeout`` seconds."""
        cutoff = self._clock() - timeout
        return [
            replace(s)
            for s in self._sessions.values()
            if s.state is SessionState.ACTIVE and s.last_heartbeat < cutoff
        ]

    def evict(self, older_than: float) -> List[str]:
        """Forget closed sessions that ended more than ``older_than`` seconds ago."""
        cutoff = self._clock() - older_than
        evicted = [
            s.id
            for s in self._sessions.values()
            if s.is_final and s.end_time is not None and s.end_time < cutoff
        ]
        for session_id in evicted:
            del self._sessions[session_id]
        if evicted:
            logger.debug(f"Evicted {len(evicted)} ended session(s)")
        return evicted

    def _require(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise TargetNotFound(f"session {session_id} not found")
        return session

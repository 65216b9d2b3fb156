"""In-memory session store.

Sessions live for the process lifetime only.  Each holds the transcript,
every dataset uploaded into it and the one currently in use.  Sessions idle
longer than ``SESSION_TIMEOUT_MINUTES`` are dropped by
:meth:`SessionStore.cleanup_expired`, which the application calls from its
housekeeping task.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from datachat.core.config import settings
from datachat.services.agent.state import ChatTurn, DatasetDescriptor

logger = logging.getLogger(__name__)


@dataclass
class Session:
    id: str
    messages: List[ChatTurn] = field(default_factory=list)
    datasets: List[DatasetDescriptor] = field(default_factory=list)
    current_dataset: Optional[DatasetDescriptor] = None
    created_at: float = field(default_factory=time.time)
    last_activity: float = field(default_factory=time.time)

    def touch(self) -> None:
        self.last_activity = time.time()

    def history(self) -> Tuple[ChatTurn, ...]:
        return tuple(self.messages)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.id,
            "messages": [m.to_dict() for m in self.messages],
            "current_dataset": self.current_dataset.to_dict() if self.current_dataset else None,
            "datasets": [d.to_dict() for d in self.datasets],
            "created_at": self.created_at,
            "last_activity": self.last_activity,
        }


class SessionStore:
    """Session registry keyed by session id."""

    def __init__(self, timeout_minutes: Optional[int] = None) -> None:
        self._sessions: Dict[str, Session] = {}
        self._timeout_seconds = (timeout_minutes or settings.SESSION_TIMEOUT_MINUTES) * 60

    def __len__(self) -> int:
        return len(self._sessions)

    def get_or_create(self, session_id: Optional[str] = None) -> Session:
        """Return the session for *session_id*, creating it if needed."""
        sid = session_id or uuid.uuid4().hex
        session = self._sessions.get(sid)
        if session is None:
            session = Session(id=sid)
            self._sessions[sid] = session
            logger.info("Session created: %s", sid)
        session.touch()
        return session

    def find(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    def delete(self, session_id: str) -> Optional[Session]:
        session = self._sessions.pop(session_id, None)
        if session is not None:
            logger.info("Session deleted: %s", session_id)
        return session

    def add_message(self, session_id: str, turn: ChatTurn) -> None:
        self.get_or_create(session_id).messages.append(turn)

    def add_dataset(self, session_id: str, dataset: DatasetDescriptor) -> None:
        """Record an upload and make it the session's current dataset."""
        session = self.get_or_create(session_id)
        session.datasets.append(dataset)
        session.current_dataset = dataset

    def cleanup_expired(self, now: Optional[float] = None) -> List[Session]:
        """Drop idle sessions and return them so callers can release files."""
        now = now if now is not None else time.time()
        expired = [
            sid for sid, s in self._sessions.items()
            if now - s.last_activity > self._timeout_seconds
        ]
        removed = [self._sessions.pop(sid) for sid in expired]
        if removed:
            logger.info("Expired %d idle session(s)", len(removed))
        return removed

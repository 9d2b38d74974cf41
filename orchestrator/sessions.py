"""Registry of live session connections."""

import logging
import uuid
from typing import Any, Dict, List, Optional

from orchestrator.types import Connection, Session, SessionRole

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Owns the set of live sessions and their classification"""

    def __init__(self):
        self.sessions: Dict[str, Session] = {}

    def __len__(self) -> int:
        return len(self.sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self.sessions

    def connect(self, connection: Connection, session_id: Optional[str] = None) -> Session:
        """Register a new unclassified session"""
        session = Session(id=session_id or str(uuid.uuid4()), connection=connection)
        self.sessions[session.id] = session
        logger.info(f"New connection: {session.id}")
        return session

    def disconnect(self, session_id: str) -> Optional[Session]:
        session = self.sessions.pop(session_id, None)
        if session is not None:
            logger.info(f"Connection closed: {session_id} ({session.role.value})")
        return session

    def get(self, session_id: str) -> Optional[Session]:
        return self.sessions.get(session_id)

    def mark_ui(self, session_id: str) -> Optional[Session]:
        session = self.sessions.get(session_id)
        if session is not None:
            session.role = SessionRole.UI
        return session

    def mark_worker(self, session_id: str, execution_id: str) -> Optional[Session]:
        session = self.sessions.get(session_id)
        if session is not None:
            session.role = SessionRole.WORKER
            session.execution_id = execution_id
        return session

    def ui_sessions(self) -> List[Session]:
        return [s for s in self.sessions.values() if s.role == SessionRole.UI]

    async def send(self, session_id: str, message: Dict[str, Any]) -> bool:
        """Send to one session. Returns False if it is gone or the send failed."""
        session = self.sessions.get(session_id)
        if session is None:
            return False
        try:
            await session.connection.send_json(message)
            return True
        except Exception as e:
            logger.warning(
                f"Failed to send {message.get('type')} to session {session_id}: {e}"
            )
            return False

    async def broadcast_to_ui(self, message: Dict[str, Any]) -> int:
        """Send to every UI session independently; returns the delivery count"""
        delivered = 0
        # Snapshot: a failed send may lead to the session being removed
        for session in list(self.ui_sessions()):
            if await self.send(session.id, message):
                delivered += 1
        return delivered

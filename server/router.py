"""
Message router for session connections.

Every inbound message is a JSON object discriminated by ``type``. The router
maps each known ``MessageType`` to exactly one handler and drops anything it
does not recognize. Handler failures are contained here so that a single bad
message never closes a session.
"""

import json
import logging
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

from pydantic import ValidationError

from orchestrator.context import OrchestratorContext
from orchestrator.protocol import MessageType
from orchestrator.types import Session

logger = logging.getLogger(__name__)

Handler = Callable[[Dict[str, Any], Session, OrchestratorContext], Awaitable[None]]


def parse_message(raw: Any) -> Optional[Dict[str, Any]]:
    """Decode a raw frame into a message dict, or None if it is not one"""
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8", errors="replace")
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            return None
    if not isinstance(raw, dict):
        return None
    return raw


class MessageRouter:
    """Dispatch table from message type to handler"""

    def __init__(self, context: OrchestratorContext, handlers: Mapping[MessageType, Handler]):
        missing = [t.value for t in MessageType if t not in handlers]
        if missing:
            raise ValueError(f"No handler registered for message types: {missing}")
        self.context = context
        self.handlers: Dict[MessageType, Handler] = dict(handlers)

    async def dispatch(self, session_id: str, raw: Any) -> bool:
        """Route one inbound frame. Returns True if a handler ran to completion."""
        session = self.context.sessions.get(session_id)
        if session is None:
            logger.warning(f"Dropping message from unknown session {session_id}")
            return False

        message = parse_message(raw)
        if message is None:
            logger.debug(f"Dropping malformed message from {session_id}")
            return False

        message_type = MessageType.parse(message.get("type"))
        if message_type is None:
            return await self._unknown(message, session)

        handler = self.handlers[message_type]
        try:
            await handler(message, session, self.context)
            return True
        except ValidationError as e:
            logger.warning(
                f"Invalid {message_type.value} message from {session_id}: "
                f"{e.error_count()} validation error(s)"
            )
        except Exception as e:
            logger.error(
                f"Error handling {message_type.value} from {session_id}: {e}",
                exc_info=True,
            )
        return False

    async def _unknown(self, message: Dict[str, Any], session: Session) -> bool:
        logger.debug(f"Unknown message type from {session.id}: {message.get('type')!r}")
        return False

"""Helpers shared by the message handlers."""

from typing import Any, Dict

from pydantic import ValidationError

from orchestrator.context import OrchestratorContext
from orchestrator.types import Session


async def reply(ctx: OrchestratorContext, session: Session, message: Dict[str, Any]) -> bool:
    """Send a message back to the session that made the request"""
    return await ctx.sessions.send(session.id, message)


def describe_validation_error(error: ValidationError) -> str:
    """One-line summary of the first problem in a request payload"""
    first = error.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ())) or "message"
    return f"Invalid {location}: {first.get('msg', 'invalid value')}"

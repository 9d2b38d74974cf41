import json
import logging
from datetime import datetime, UTC
from typing import Any, Dict, Optional

SECRET_KEYS = {"token", "password", "providerToken", "authtoken"}


def mask_secret(value: Optional[str]) -> str:
    """Show only the last four characters of a secret"""
    if not value:
        return "NOT PROVIDED"
    return "***" + value[-4:]


def log_with_context(
    logger: logging.Logger,
    log_level: int,
    msg: str,
    context: Optional[Dict[str, Any]] = None,
) -> None:
    """Helper function for structured logging with context

    Args:
        logger: The logger to write to
        log_level: The logging level to use
        msg: The message to log
        context: Optional dictionary of contextual information
    """
    context = dict(context or {})
    for key in SECRET_KEYS.intersection(context):
        context[key] = mask_secret(context[key])

    context["timestamp"] = datetime.now(UTC).isoformat()

    structured_msg = f"{msg} | Context: {json.dumps(context, default=str)}"
    logger.log(log_level, structured_msg)

"""
Structured Logging — JSON log output with request correlation.

Every module logs through ``logging.getLogger(__name__)`` and prefixes its
messages with a subsystem tag (``[AI]``, ``[SYNC]``, ``[CACHE]`` ...). This
module decides how records under the ``portal`` namespace are rendered: in
JSON mode the tag becomes a ``subsystem`` field, and the per-request
context (request id, user id) is attached to each record.
"""

import json
import logging
import re
import sys
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

request_ctx: ContextVar[str] = ContextVar("portal_request_id", default="")
user_ctx: ContextVar[str] = ContextVar("portal_user_id", default="")

_HANDLER_NAME = "portal-stream"
_TAG = re.compile(r"^\[([A-Z]+)\]\s*")
TEXT_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def split_tag(message: str):
    """``"[SYNC] Drained 2 item(s)"`` -> ``("sync", "Drained 2 item(s)")``."""
    match = _TAG.match(message)
    if not match:
        return None, message
    return match.group(1).lower(), message[match.end():]


class StructuredFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        subsystem, message = split_tag(record.getMessage())
        entry: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": message,
        }
        if subsystem:
            entry["subsystem"] = subsystem
        if request_ctx.get():
            entry["request_id"] = request_ctx.get()
        if user_ctx.get():
            entry["user_id"] = user_ctx.get()
        if record.exc_info and record.exc_info[1] is not None:
            entry["error"] = f"{type(record.exc_info[1]).__name__}: {record.exc_info[1]}"
        return json.dumps(entry, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO", json_output: bool = False) -> logging.Logger:
    """Attach a single stdout handler to the ``portal`` logger. Idempotent."""
    portal_logger = logging.getLogger("portal")
    portal_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    if any(h.get_name() == _HANDLER_NAME for h in portal_logger.handlers):
        return portal_logger

    handler = logging.StreamHandler(sys.stdout)
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(StructuredFormatter() if json_output else logging.Formatter(TEXT_FORMAT))
    portal_logger.addHandler(handler)
    return portal_logger


def set_request_context(request_id: str = "", user_id: str = "") -> None:
    if request_id:
        request_ctx.set(request_id)
    if user_id:
        user_ctx.set(user_id)


def generate_request_id(incoming: Optional[str] = None) -> str:
    """Reuse a caller-supplied request id, or mint a short one."""
    if incoming:
        return incoming[:64]
    return uuid.uuid4().hex[:12]

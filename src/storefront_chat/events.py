"""
Realtime event names and frame codec.

Frames on the socket are JSON objects:
{
    "event": str,   # Event name
    "data": Any     # Event-specific payload
}

Outbound join/leave frames carry the conversation id as ``data``; inbound
``new_message`` frames carry ``{"conversation_id": ..., "message": {...}}``.
"""

from __future__ import annotations

import json
import logging
from enum import Enum
from typing import Any, Dict, Optional, Tuple

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Realtime event names used by the chat core."""

    NEW_MESSAGE = "new_message"
    JOIN_CONVERSATION = "join_conversation"
    LEAVE_CONVERSATION = "leave_conversation"


def event_name(event: EventType | str) -> str:
    return event.value if isinstance(event, EventType) else str(event)


def build_frame(event: EventType | str, data: Any = None) -> Dict[str, Any]:
    """Build an outbound frame ready for ``send_json``."""
    return {"event": event_name(event), "data": data}


def parse_frame(raw: str | bytes) -> Optional[Tuple[str, Any]]:
    """
    Decode an inbound frame.

    Returns:
        ``(event, data)`` or None when the frame is not a valid event object
    """
    try:
        frame = json.loads(raw)
    except (TypeError, ValueError) as e:
        logger.warning("[CHANNEL] Invalid JSON frame: %s", e)
        return None

    if not isinstance(frame, dict) or not isinstance(frame.get("event"), str):
        logger.warning("[CHANNEL] Ignoring frame without event name: %r", frame)
        return None
    return frame["event"], frame.get("data")

"""
Wire protocol of the relay.

Inbound frames are JSON objects ``{"type": ..., "payload": {...}}`` and are
parsed into one of three event kinds:

    RegisterEvent        - {"type": "register", "payload": {"userId"}}
    PrivateMessageEvent  - {"type": "private_message",
                            "payload": {"conversationId", "senderId", "content"}}
    UnknownEvent         - any other type; callers log and ignore it

Outbound there is a single frame, "new_message", built by new_message_frame().
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, Union

from .errors import MalformedFrameError

REGISTER = "register"
PRIVATE_MESSAGE = "private_message"
NEW_MESSAGE = "new_message"


@dataclass(frozen=True)
class RegisterEvent:
    user_id: str


@dataclass(frozen=True)
class PrivateMessageEvent:
    conversation_id: str
    sender_id: str
    content: str


@dataclass(frozen=True)
class UnknownEvent:
    type: str
    payload: Any = None


InboundEvent = Union[RegisterEvent, PrivateMessageEvent, UnknownEvent]


def _required(payload: Dict[str, Any], field: str, frame_type: str) -> str:
    value = payload.get(field)
    if not isinstance(value, str) or not value:
        raise MalformedFrameError(f"Invalid {frame_type} payload: missing {field}", payload=payload)
    return value


def parse_frame(raw) -> InboundEvent:
    """Decode one text (or UTF-8 bytes) frame; raises MalformedFrameError when it is unusable."""
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedFrameError("Frame is not valid UTF-8") from e
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise MalformedFrameError(f"Frame is not JSON: {e}") from e

    if not isinstance(data, dict):
        raise MalformedFrameError("Frame is not a JSON object")

    frame_type = data.get("type")
    payload = data.get("payload")
    if not isinstance(frame_type, str) or not frame_type:
        raise MalformedFrameError("Frame has no type")

    if frame_type == REGISTER:
        if not isinstance(payload, dict):
            raise MalformedFrameError("register frame without payload object")
        return RegisterEvent(user_id=_required(payload, "userId", REGISTER))

    if frame_type == PRIVATE_MESSAGE:
        if not isinstance(payload, dict):
            raise MalformedFrameError("private_message frame without payload object")
        return PrivateMessageEvent(
            conversation_id=_required(payload, "conversationId", PRIVATE_MESSAGE),
            sender_id=_required(payload, "senderId", PRIVATE_MESSAGE),
            content=_required(payload, "content", PRIVATE_MESSAGE),
        )

    return UnknownEvent(type=frame_type, payload=payload)


def new_message_frame(message: Dict[str, Any]) -> str:
    return json.dumps({
        "type": NEW_MESSAGE,
        "payload": {
            "id": message["id"],
            "conversationId": message["conversationId"],
            "senderId": message["senderId"],
            "content": message["content"],
            "createdAt": message["createdAt"],
            "senderName": message.get("senderName"),
        },
    }, ensure_ascii=False)

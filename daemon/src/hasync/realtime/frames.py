"""JSON wire frames for the realtime channel.

Every frame is a JSON object `{"type": ..., "payload": {...}, "timestamp": ms}`.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from hasync.errors import ValidationError
from hasync.models import now_ms

__all__ = [
    "Frame",
    "FrameError",
    "FrameType",
    "PRIVILEGED_TYPES",
    "error_frame",
]


class FrameType(str, Enum):
    """Frame types understood by the channel."""

    CONNECTED = "connected"
    AUTH = "auth"
    AUTH_OK = "auth_ok"
    PING = "ping"
    PONG = "pong"
    SUBSCRIBE_ENTITIES = "subscribe_entities"
    SUBSCRIBED = "subscribed"
    CALL_SERVICE = "call_service"
    SERVICE_CALL_RESULT = "service_call_result"
    ENTITY_UPDATE = "entity_update"
    ERROR = "error"


# Frames that require an authenticated, still active client
PRIVILEGED_TYPES = frozenset(
    {FrameType.SUBSCRIBE_ENTITIES.value, FrameType.CALL_SERVICE.value}
)


class FrameError(ValidationError):
    """Frame could not be decoded."""

    pass


@dataclass
class Frame:
    """A single realtime message.

    Attributes:
        type: Frame type string (kept as str so unknown types survive parsing).
        payload: Frame payload.
        timestamp: Epoch ms; filled in on encode when absent.
    """

    type: str
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "payload": self.payload,
            "timestamp": self.timestamp if self.timestamp is not None else now_ms(),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def parse(cls, raw: str | bytes) -> "Frame":
        """Decode a frame received from a client.

        Raises:
            FrameError: If the data is not a JSON object with a string type
                and an object (or absent) payload.
        """
        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise FrameError("Invalid message format") from e

        if not isinstance(data, dict):
            raise FrameError("Invalid message format")

        frame_type = data.get("type")
        if not isinstance(frame_type, str) or not frame_type:
            raise FrameError("Invalid message format")

        payload = data.get("payload")
        if payload is None:
            payload = {}
        if not isinstance(payload, dict):
            raise FrameError("Invalid message format")

        timestamp = data.get("timestamp")
        if not isinstance(timestamp, int) or isinstance(timestamp, bool):
            timestamp = None

        return cls(type=frame_type, payload=payload, timestamp=timestamp)


def error_frame(message: str) -> Frame:
    """Build an `error` frame."""
    return Frame(FrameType.ERROR.value, {"error": message})

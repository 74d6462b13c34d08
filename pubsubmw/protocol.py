"""Wire format shared by broker and client: one JSON object per line."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

# Broker side.
TOPIC_INBOX_SIZE = 256
CLIENT_SEND_SIZE = 256
DELIVERY_RETRY_INTERVAL = 2.0

# Client side.
BROKER_SEND_SIZE = 256
SUB_BUFFER_SIZE = 64
ACK_TIMEOUT = 5.0


class ProtocolError(ValueError):
    """A frame could not be encoded or decoded."""


@dataclass
class Frame:
    """Envelope exchanged between clients and brokers.

    ``data`` holds raw JSON text, or None when there is no payload.
    """

    type: str = ""
    id: str = ""
    topic: str = ""
    data: str | None = None
    ok: bool = False
    error: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON object for this frame, leaving out empty fields."""
        result: dict[str, Any] = {"type": self.type}
        if self.id:
            result["id"] = self.id
        if self.topic:
            result["topic"] = self.topic
        if self.data:
            try:
                result["data"] = json.loads(self.data, parse_constant=_reject_constant)
            except ValueError as exc:
                raise ProtocolError(f"invalid data payload: {exc}") from exc
        if self.ok:
            result["ok"] = True
        if self.error:
            result["error"] = self.error
        return result


def _reject_constant(name: str) -> Any:
    raise ProtocolError(f"invalid JSON constant {name}")


def encode_frame(frame: Frame) -> bytes:
    """Serialize a frame as compact JSON terminated by a newline."""
    try:
        text = json.dumps(
            frame.to_dict(), separators=(",", ":"), ensure_ascii=False, allow_nan=False
        )
    except (TypeError, ValueError) as exc:
        if isinstance(exc, ProtocolError):
            raise
        raise ProtocolError(str(exc)) from exc
    return text.encode("utf-8") + b"\n"


def _string_field(obj: dict[str, Any], key: str) -> str:
    value = obj.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ProtocolError(f"field {key!r} must be a string")
    return value


def decode_frame(line: bytes | str) -> Frame:
    """Parse one line of JSON into a frame; unknown fields are ignored."""
    try:
        obj = json.loads(line, parse_constant=_reject_constant)
    except ProtocolError:
        raise
    except (ValueError, UnicodeDecodeError) as exc:
        raise ProtocolError(f"invalid frame: {exc}") from exc

    if obj is None:
        return Frame()
    if not isinstance(obj, dict):
        raise ProtocolError("frame must be a JSON object")

    ok = obj.get("ok")
    if ok is None:
        ok = False
    elif not isinstance(ok, bool):
        raise ProtocolError("field 'ok' must be a boolean")

    data = None
    if "data" in obj:
        data = json.dumps(obj["data"], separators=(",", ":"), ensure_ascii=False)

    return Frame(
        type=_string_field(obj, "type"),
        id=_string_field(obj, "id"),
        topic=_string_field(obj, "topic"),
        data=data,
        ok=ok,
        error=_string_field(obj, "error"),
    )
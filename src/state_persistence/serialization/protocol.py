"""Message protocol spoken between the dispatcher and the serialization worker.

Requests look like ``{"type": "serialize", "data": {"state": ..., "requestId": 7}}``
and every response echoes the request id::

    {"type": "serialized", "data": "<json>", "requestId": 7}
    {"type": "error", "error": "<message>", "requestId": 7}

`handle_message` is a plain module-level function so it can be shipped to a
process pool.
"""

from __future__ import annotations

import base64
import json
import zlib
from enum import Enum
from typing import Any


class RequestType(str, Enum):
    """Request message types."""

    SERIALIZE = "serialize"
    PARSE = "parse"
    COMPRESS = "compress"


class ResponseType(str, Enum):
    """Response message types."""

    SERIALIZED = "serialized"
    PARSED = "parsed"
    COMPRESSED = "compressed"
    ERROR = "error"


def dumps_compact(state: Any) -> str:
    """Encode `state` as compact JSON, rejecting NaN and cyclic values."""
    return json.dumps(state, separators=(",", ":"), ensure_ascii=False, allow_nan=False)


def compress_payload(state: Any) -> str:
    """Encode `state` as zlib-compressed, base64 text."""
    raw = dumps_compact(state).encode("utf-8")
    return base64.b64encode(zlib.compress(raw)).decode("ascii")


def decompress_payload(text: str) -> Any:
    """Reverse `compress_payload`."""
    raw = zlib.decompress(base64.b64decode(text.encode("ascii")))
    return json.loads(raw.decode("utf-8"))


def build_request(request_type: RequestType, payload: Any, request_id: int) -> dict[str, Any]:
    """Build a request message for the worker."""
    field = "jsonString" if request_type is RequestType.PARSE else "state"
    return {"type": request_type.value, "data": {field: payload, "requestId": request_id}}


def handle_message(message: dict[str, Any]) -> dict[str, Any]:
    """Execute one worker request and build its response.

    Never raises: encode/decode failures and unknown request types become
    `error` responses carrying the original request id, or None when the
    request did not carry one.
    """
    message_type = message.get("type") if isinstance(message, dict) else None
    data = message.get("data") if isinstance(message, dict) else None
    request_id = data.get("requestId") if isinstance(data, dict) else None

    try:
        if message_type == RequestType.SERIALIZE.value:
            return {
                "type": ResponseType.SERIALIZED.value,
                "data": dumps_compact(data["state"]),
                "requestId": request_id,
            }
        if message_type == RequestType.PARSE.value:
            return {
                "type": ResponseType.PARSED.value,
                "data": json.loads(data["jsonString"]),
                "requestId": request_id,
            }
        if message_type == RequestType.COMPRESS.value:
            return {
                "type": ResponseType.COMPRESSED.value,
                "data": compress_payload(data["state"]),
                "requestId": request_id,
            }
        return {
            "type": ResponseType.ERROR.value,
            "error": f"Unknown message type: {message_type}",
            "requestId": request_id,
        }
    except Exception as exc:  # pylint: disable=broad-except
        return {
            "type": ResponseType.ERROR.value,
            "error": f"{type(exc).__name__}: {exc}",
            "requestId": request_id,
        }

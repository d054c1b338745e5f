"""Decoding of raw WebSocket frames into typed stream events."""
from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Union

from signal_app.core.errors import MalformedMessageError

from .events import DepthUpdate, Trade
from .orderbook import parse_depth_update
from .trades import parse_trade_event


@dataclass(frozen=True, slots=True)
class ControlFrame:
    """Response to a SUBSCRIBE/UNSUBSCRIBE request; never surfaced to consumers."""

    request_id: Optional[int]
    error: Optional[Mapping[str, Any]] = None


Decoded = Union[DepthUpdate, Trade, ControlFrame]


def decode_frame(raw: str | bytes) -> Decoded:
    """Decode one text frame.

    Accepts raw payloads (``/ws`` endpoint) and combined-stream envelopes
    ``{"stream": "btcusdt@trade", "data": {...}}``. Raises
    :class:`MalformedMessageError` for anything else.
    """

    try:
        payload = json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise MalformedMessageError(f"Frame is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise MalformedMessageError("Frame root must be a JSON object")
    if "stream" in payload and isinstance(payload.get("data"), dict):
        payload = payload["data"]
    if "id" in payload and ("result" in payload or "error" in payload):
        return ControlFrame(request_id=payload.get("id"), error=payload.get("error"))
    event_type = payload.get("e")
    if event_type == "depthUpdate":
        return parse_depth_update(payload)
    if event_type == "trade":
        return parse_trade_event(payload)
    raise MalformedMessageError(f"Unsupported event type: {event_type!r}")


__all__ = ["ControlFrame", "Decoded", "decode_frame"]

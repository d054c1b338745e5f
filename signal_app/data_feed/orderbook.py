"""Parsing helpers for Binance depth payloads (REST snapshot and WS diffs)."""
from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, Mapping, Tuple

from signal_app.core.errors import MalformedMessageError, SnapshotFetchError
from signal_app.core.types import Instrument, PriceLevel, TimestampMs, UpdateId, normalize_instrument

from .events import DepthUpdate, Snapshot


def _parse_levels(raw_levels: Iterable[Any]) -> Tuple[PriceLevel, ...]:
    levels = []
    for entry in raw_levels:
        # Binance sends [["price", "qty"], ...] as strings to keep precision
        price, qty = Decimal(str(entry[0])), Decimal(str(entry[1]))
        if not (price.is_finite() and qty.is_finite()) or price <= 0 or qty < 0:
            raise MalformedMessageError(f"Invalid price level [{entry[0]!r}, {entry[1]!r}]")
        levels.append((price, qty))
    return tuple(levels)


def parse_depth_update(payload: Mapping[str, Any]) -> DepthUpdate:
    """Convert a ``depthUpdate`` event into :class:`DepthUpdate`.

    Structure: ``{"e": "depthUpdate", "E": 123, "s": "BNBBTC", "U": 157,
    "u": 160, "b": [["0.0024", "10"]], "a": [["0.0026", "100"]]}``.
    """

    try:
        first_id = int(payload["U"])
        last_id = int(payload["u"])
        update = DepthUpdate(
            instrument=normalize_instrument(payload["s"]),
            first_update_id=UpdateId(first_id),
            last_update_id=UpdateId(last_id),
            bid_changes=_parse_levels(payload.get("b", [])),
            ask_changes=_parse_levels(payload.get("a", [])),
            event_time_ms=TimestampMs(int(payload.get("E", 0))),
        )
    except (KeyError, IndexError, TypeError, ValueError, InvalidOperation) as exc:
        raise MalformedMessageError(f"Invalid depthUpdate payload: {exc!r}") from exc
    if update.first_update_id > update.last_update_id:
        raise MalformedMessageError(f"depthUpdate with U > u for {update.instrument}")
    return update


def parse_snapshot_response(instrument: Instrument, payload: Mapping[str, Any] | None) -> Snapshot:
    """Convert ``GET /api/v3/depth`` JSON into :class:`Snapshot`.

    Zero-quantity levels are dropped so the snapshot never seeds empty entries.
    """

    if not payload:
        raise SnapshotFetchError(f"Empty depth snapshot for {instrument}")
    try:
        last_update_id = UpdateId(int(payload["lastUpdateId"]))
        bids: Dict[Decimal, Decimal] = {p: q for p, q in _parse_levels(payload.get("bids", [])) if q != 0}
        asks: Dict[Decimal, Decimal] = {p: q for p, q in _parse_levels(payload.get("asks", [])) if q != 0}
    except (KeyError, IndexError, TypeError, ValueError, InvalidOperation, MalformedMessageError) as exc:
        raise SnapshotFetchError(f"Invalid depth snapshot for {instrument}: {exc!r}") from exc
    return Snapshot(instrument=instrument, last_update_id=last_update_id, bids=bids, asks=asks)

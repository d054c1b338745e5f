from __future__ import annotations

from decimal import Decimal

import pytest

from signal_app.core.enums import Side
from signal_app.core.errors import MalformedMessageError, SnapshotFetchError, TransportFault
from signal_app.core.types import Instrument
from signal_app.data_feed.decoder import ControlFrame, decode_frame
from signal_app.data_feed.events import DepthUpdate, Trade
from signal_app.data_feed.orderbook import parse_depth_update, parse_snapshot_response
from signal_app.data_feed.trades import parse_trade_event

from conftest import depth_payload, trade_payload


def test_parse_depth_update_should_keep_decimal_precision() -> None:
    update = parse_depth_update(
        {"e": "depthUpdate", "E": 1, "s": "bnbbtc", "U": 157, "u": 160, "b": [["0.0024", "10"]], "a": [["0.0026", "0"]]}
    )
    assert update.instrument == "BNBBTC"
    assert (update.first_update_id, update.last_update_id) == (157, 160)
    assert update.bid_changes == ((Decimal("0.0024"), Decimal("10")),)
    assert update.ask_changes == ((Decimal("0.0026"), Decimal("0")),)


def test_parse_depth_update_should_reject_inverted_ids() -> None:
    with pytest.raises(MalformedMessageError):
        parse_depth_update({"s": "BTCUSDT", "U": 10, "u": 9})


def test_parse_depth_update_should_reject_missing_fields() -> None:
    with pytest.raises(MalformedMessageError):
        parse_depth_update({"s": "BTCUSDT", "U": 10})


def test_parse_trade_event_should_map_maker_flag_to_side() -> None:
    payload = {"e": "trade", "s": "BTCUSDT", "t": 12345, "p": "0.001", "q": "100", "T": 123456785, "m": True}
    trade = parse_trade_event(payload)
    assert trade.side is Side.SELL
    assert trade.trade_id == 12345
    assert parse_trade_event({**payload, "m": False}).side is Side.BUY


def test_parse_trade_event_should_reject_non_positive_price() -> None:
    with pytest.raises(MalformedMessageError):
        parse_trade_event({"s": "BTCUSDT", "t": 1, "p": "0", "q": "1", "T": 1})


@pytest.mark.parametrize(("price", "qty"), [("NaN", "1"), ("100", "NaN"), ("Infinity", "1"), ("sNaN", "1"), ("100", "-1")])
def test_parse_trade_event_should_reject_non_finite_values(price, qty) -> None:
    with pytest.raises(MalformedMessageError):
        parse_trade_event({"s": "BTCUSDT", "t": 1, "p": price, "q": qty, "T": 1})


@pytest.mark.parametrize("level", [("9", "NaN"), ("NaN", "1"), ("-Infinity", "1"), ("0", "1"), ("9", "-2")])
def test_parse_depth_update_should_reject_invalid_levels(level) -> None:
    with pytest.raises(MalformedMessageError):
        decode_frame(depth_payload(101, 101, bids=[level]))
    with pytest.raises(MalformedMessageError):
        decode_frame(depth_payload(101, 101, asks=[("11", "1"), level]))


def test_parse_snapshot_response_should_drop_zero_levels() -> None:
    snapshot = parse_snapshot_response(
        Instrument("BTCUSDT"),
        {"lastUpdateId": 100, "bids": [["10.0", "1"], ["9.0", "0"]], "asks": [["11.0", "2"]]},
    )
    assert snapshot.last_update_id == 100
    assert snapshot.bids == {Decimal("10.0"): Decimal("1")}
    assert snapshot.asks == {Decimal("11.0"): Decimal("2")}


@pytest.mark.parametrize(
    "payload",
    [None, {}, {"bids": []}, {"lastUpdateId": "x"}, {"lastUpdateId": 1, "bids": [["10", "NaN"]], "asks": []}],
)
def test_parse_snapshot_response_should_raise_fetch_error(payload) -> None:
    with pytest.raises(SnapshotFetchError):
        parse_snapshot_response(Instrument("BTCUSDT"), payload)


def test_decode_frame_should_route_event_types() -> None:
    assert isinstance(decode_frame(depth_payload(1, 2, bids=[("10", "1")])), DepthUpdate)
    assert isinstance(decode_frame(trade_payload(1, "100", "1", 1_000)), Trade)


def test_decode_frame_should_unwrap_combined_stream_envelope() -> None:
    raw = '{"stream": "btcusdt@trade", "data": ' + trade_payload(7, "100", "1", 1_000) + "}"
    decoded = decode_frame(raw)
    assert isinstance(decoded, Trade)
    assert decoded.trade_id == 7


def test_decode_frame_should_recognize_subscription_acks() -> None:
    ack = decode_frame('{"result": null, "id": 3}')
    assert ack == ControlFrame(request_id=3)
    rejected = decode_frame('{"error": {"code": 2, "msg": "Invalid request"}, "id": 4}')
    assert isinstance(rejected, ControlFrame)
    assert rejected.error == {"code": 2, "msg": "Invalid request"}


@pytest.mark.parametrize("raw", ["not json", "[]", '{"e": "kline"}', b"\xff"])
def test_decode_frame_should_reject_malformed_frames(raw) -> None:
    with pytest.raises(MalformedMessageError) as info:
        decode_frame(raw)
    assert isinstance(info.value, TransportFault)

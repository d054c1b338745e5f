"""Binance spot data-feed client wrapping REST and WebSocket access.

The module covers the two exchange touch points of the engine:

* ``GET /api/v3/depth`` for the order-book snapshot used during
  (re)synchronization (:class:`BinanceRestClient.fetch_snapshot`);
* the public WebSocket endpoint (``wss://stream.binance.com:9443/ws``) on which
  ``<symbol>@depth@100ms`` and ``<symbol>@trade`` streams are subscribed
  with ``{"method": "SUBSCRIBE", ...}`` requests
  (:class:`BinanceWebSocketSession`).

Latency is recorded for every REST call as ``(response_time - request_time)``
in milliseconds and logged at debug level.
"""
from __future__ import annotations

import json
import logging
import time
from typing import Any, Callable, Iterable, List, Mapping, Optional

import httpx
import websocket

from signal_app.config.models import BinanceConfig
from signal_app.core.errors import SnapshotFetchError, TransportFault
from signal_app.core.types import Instrument

from .events import Snapshot
from .orderbook import parse_snapshot_response

LOGGER = logging.getLogger(__name__)

_RETRYABLE_STATUS = frozenset({408, 418, 429, 500, 502, 503, 504})


class BinanceApiError(RuntimeError):
    """Raised when Binance answers with an error payload ``{"code", "msg"}``."""

    def __init__(self, status: int, code: int, message: str, payload: Mapping[str, Any] | None = None):
        super().__init__(f"Binance error {code} (HTTP {status}): {message}")
        self.status = status
        self.code = code
        self.payload = payload or {}

    @property
    def retryable(self) -> bool:
        return self.status in _RETRYABLE_STATUS


def stream_topics(instrument: Instrument, *, depth_speed_ms: int = 100) -> List[str]:
    """Return the depth-diff and trade topics for ``instrument``."""

    symbol = instrument.lower()
    depth = f"{symbol}@depth@{depth_speed_ms}ms" if depth_speed_ms != 1000 else f"{symbol}@depth"
    return [depth, f"{symbol}@trade"]


class BinanceRestClient:
    """Synchronous REST client implementing the snapshot accessor.

    Parameters
    ----------
    config:
        :class:`signal_app.config.models.BinanceConfig` with the endpoint,
        timeout and retry policy.
    session:
        Optional pre-configured :class:`httpx.Client` (e.g. for tests with
        :class:`httpx.MockTransport`).
    snapshot_depth:
        ``limit`` passed to ``/api/v3/depth`` (1-5000).

    Notes
    -----
    Retries use exponential backoff ``backoff_base * 2 ** attempt``.
    Transport errors and HTTP 408/418/429/5xx are retried and logged as
    warnings; other client errors fail immediately.
    """

    def __init__(
        self,
        config: BinanceConfig | None = None,
        session: httpx.Client | None = None,
        *,
        snapshot_depth: int = 1000,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._config = config or BinanceConfig()
        self._client = session or httpx.Client(
            base_url=self._config.rest_endpoint,
            timeout=self._config.request_timeout_sec,
        )
        self._snapshot_depth = snapshot_depth
        self._max_retries = self._config.max_retries
        self._backoff_base = self._config.backoff_base_sec
        self._sleep = sleep

    def close(self) -> None:
        """Close the underlying HTTP client."""

        self._client.close()

    def _request(self, method: str, path: str, *, params: Optional[Mapping[str, Any]] = None) -> tuple[Any, float]:
        """Perform an HTTP request with retry/backoff and return ``(json, latency_ms)``."""

        url_path = path if path.startswith("/") else f"/{path}"
        attempt = 0
        last_error: Exception | None = None
        while attempt < self._max_retries:
            start = time.perf_counter()
            try:
                response = self._client.request(method, url_path, params=dict(params or {}))
                latency_ms = (time.perf_counter() - start) * 1_000.0
                if response.is_error:
                    raise self._api_error(response)
                return response.json(), latency_ms
            except BinanceApiError as exc:
                if not exc.retryable:
                    raise
                last_error = exc
            except (httpx.HTTPError, ValueError) as exc:
                last_error = exc
            LOGGER.warning(
                "Binance %s %s failed (attempt %s/%s): %s",
                method,
                path,
                attempt + 1,
                self._max_retries,
                last_error,
            )
            attempt += 1
            if attempt < self._max_retries:
                self._sleep(self._backoff_base * (2 ** (attempt - 1)))
        assert last_error is not None
        raise last_error

    @staticmethod
    def _api_error(response: httpx.Response) -> BinanceApiError:
        try:
            payload = response.json()
        except ValueError:
            payload = {}
        if not isinstance(payload, Mapping):
            payload = {}
        return BinanceApiError(
            response.status_code,
            int(payload.get("code", -1)),
            str(payload.get("msg", response.reason_phrase)),
            payload,
        )

    def fetch_snapshot(self, instrument: Instrument) -> Snapshot:
        """Return a full depth snapshot for ``instrument``.

        Wrapper over ``GET /api/v3/depth``. Any failure after the last retry
        is raised as :class:`SnapshotFetchError`.
        """

        params = {"symbol": instrument, "limit": self._snapshot_depth}
        try:
            payload, latency = self._request("GET", "/api/v3/depth", params=params)
        except (BinanceApiError, httpx.HTTPError, ValueError) as exc:
            raise SnapshotFetchError(f"Snapshot for {instrument} failed: {exc}") from exc
        snapshot = parse_snapshot_response(instrument, payload)
        LOGGER.debug(
            "Snapshot fetched",
            extra={
                "instrument": instrument,
                "last_update_id": snapshot.last_update_id,
                "latency_ms": round(latency, 2),
            },
        )
        return snapshot


class BinanceWebSocketSession:
    """Blocking WebSocket session for Binance public streams.

    The wrapper is intentionally lightweight: the stream client runs it on a
    dedicated thread. WebSocket ping frames are answered by websocket-client
    inside :meth:`recv`; every socket-level failure surfaces as
    :class:`TransportFault`.
    """

    def __init__(self, url: str, *, timeout: float | None = None) -> None:
        self._url = url
        self._timeout = timeout
        self._socket: websocket.WebSocket | None = None

    def __enter__(self) -> "BinanceWebSocketSession":  # pragma: no cover - network usage
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # pragma: no cover - network usage
        self.close()

    def connect(self) -> None:  # pragma: no cover - network usage
        sock = websocket.WebSocket()
        try:
            sock.connect(self._url, timeout=self._timeout)
        except (websocket.WebSocketException, OSError) as exc:
            raise TransportFault(f"Connect to {self._url} failed: {exc}") from exc
        self._socket = sock

    def close(self) -> None:  # pragma: no cover - network usage
        if self._socket is not None:
            try:
                self._socket.close()
            except (websocket.WebSocketException, OSError) as exc:
                LOGGER.debug("WebSocket close failed: %s", exc)
            self._socket = None

    def send_json(self, payload: Mapping[str, Any]) -> None:  # pragma: no cover - network usage
        if self._socket is None:
            raise TransportFault("WebSocket is not connected")
        try:
            self._socket.send(json.dumps(payload))
        except (websocket.WebSocketException, OSError) as exc:
            raise TransportFault(f"Send failed: {exc}") from exc

    def recv(self) -> str | bytes:  # pragma: no cover - network usage
        if self._socket is None:
            raise TransportFault("WebSocket is not connected")
        try:
            raw = self._socket.recv()
        except websocket.WebSocketTimeoutException as exc:
            raise TransportFault(f"No data within {self._timeout}s") from exc
        except (websocket.WebSocketException, OSError) as exc:
            raise TransportFault(f"Receive failed: {exc}") from exc
        if not raw:
            # websocket-client returns an empty payload for a close frame
            raise TransportFault("Connection closed by server")
        return raw


def subscription_request(method: str, topics: Iterable[str], request_id: int) -> dict[str, Any]:
    """Build a ``SUBSCRIBE``/``UNSUBSCRIBE`` request body."""

    return {"method": method, "params": list(topics), "id": request_id}


__all__ = [
    "BinanceApiError",
    "BinanceRestClient",
    "BinanceWebSocketSession",
    "stream_topics",
    "subscription_request",
]

"""Market data ingestion package.

Modules placed here talk to Binance (REST snapshots, WebSocket streams) and
turn raw frames into the typed events consumed by the order-book engine and
the candle aggregator.
"""

__all__: list[str] = []

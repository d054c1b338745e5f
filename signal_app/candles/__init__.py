"""Candle aggregation package (OHLCV buckets built from trade prints)."""

__all__: list[str] = []

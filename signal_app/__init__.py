"""Top-level package for the Binance market-data signal engine.

Subpackages follow the data flow: ``data_feed`` ingests the exchange stream,
``orderbook`` and ``candles`` maintain per-instrument state, ``signals``
evaluates rules and ``dispatch`` fans the resulting events out to sinks.
"""

__all__: list[str] = []

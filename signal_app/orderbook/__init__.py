"""Order-book replica package.

``ladder`` holds one sorted side of a book, ``book`` the per-instrument
replica and ``engine`` the snapshot-plus-diff synchronization protocol.
"""

__all__: list[str] = []

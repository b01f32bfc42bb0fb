"""Lookup of a route index by hashing a source ID into fixed ranges."""

from __future__ import annotations

import bisect
from typing import Callable, List

_MAX_UINT64 = 0xFFFFFFFFFFFFFFFF


class StaticLookup:
    """Splits the 64-bit hash space evenly between a fixed number of routes."""

    def __init__(self, num_of_routes: int, hasher: Callable[[str], int]) -> None:
        if num_of_routes <= 0:
            raise ValueError(f"Invalid number of routes: {num_of_routes}")
        width = _MAX_UINT64 // num_of_routes
        self._starts: List[int] = [i * width for i in range(num_of_routes)]
        self._hash = hasher

    def lookup(self, source_id: str) -> int:
        """Return the index of the route whose range holds the hash of ``source_id``."""
        h = self._hash(source_id)
        return bisect.bisect_right(self._starts, h) - 1
"""Consistent routing of items onto a fixed set of nodes."""

from __future__ import annotations

import struct
from typing import Dict, List, Sequence, Union

_MASK = (1 << 64) - 1

_PRIME64_1 = 11400714785074694791
_PRIME64_2 = 14029467366897019727
_PRIME64_3 = 1609587929392839161
_PRIME64_4 = 9650029242287828579
_PRIME64_5 = 2870177450012600261

_JUMP_MULTIPLIER = 2862933555777941757


def _rotl(x: int, r: int) -> int:
    return ((x << r) | (x >> (64 - r))) & _MASK


def _round(acc: int, lane: int) -> int:
    acc = (acc + lane * _PRIME64_2) & _MASK
    return (_rotl(acc, 31) * _PRIME64_1) & _MASK


def _merge(acc: int, value: int) -> int:
    acc ^= _round(0, value)
    return (acc * _PRIME64_1 + _PRIME64_4) & _MASK


def xxhash64(data: Union[bytes, str], seed: int = 0) -> int:
    """Return the 64-bit xxHash of ``data`` (strings are hashed as UTF-8)."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    length = len(data)
    seed &= _MASK

    stripes_end = length - length % 32
    if length >= 32:
        v1 = (seed + _PRIME64_1 + _PRIME64_2) & _MASK
        v2 = (seed + _PRIME64_2) & _MASK
        v3 = seed
        v4 = (seed - _PRIME64_1) & _MASK
        for l1, l2, l3, l4 in struct.iter_unpack("<4Q", data[:stripes_end]):
            v1 = _round(v1, l1)
            v2 = _round(v2, l2)
            v3 = _round(v3, l3)
            v4 = _round(v4, l4)
        h = (_rotl(v1, 1) + _rotl(v2, 7) + _rotl(v3, 12) + _rotl(v4, 18)) & _MASK
        for v in (v1, v2, v3, v4):
            h = _merge(h, v)
    else:
        stripes_end = 0
        h = (seed + _PRIME64_5) & _MASK

    h = (h + length) & _MASK

    tail = data[stripes_end:]
    words_end = len(tail) - len(tail) % 8
    for (lane,) in struct.iter_unpack("<Q", tail[:words_end]):
        h ^= _round(0, lane)
        h = (_rotl(h, 27) * _PRIME64_1 + _PRIME64_4) & _MASK

    rest = tail[words_end:]
    if len(rest) >= 4:
        (word,) = struct.unpack_from("<I", rest)
        h ^= (word * _PRIME64_1) & _MASK
        h = (_rotl(h, 23) * _PRIME64_2 + _PRIME64_3) & _MASK
        rest = rest[4:]

    for byte in rest:
        h ^= (byte * _PRIME64_5) & _MASK
        h = (_rotl(h, 11) * _PRIME64_1) & _MASK

    h ^= h >> 33
    h = (h * _PRIME64_2) & _MASK
    h ^= h >> 29
    h = (h * _PRIME64_3) & _MASK
    h ^= h >> 32
    return h


def jump_hash(key: int, buckets: int) -> int:
    """Map a 64-bit key onto one of ``buckets`` buckets with jump consistent hashing."""
    if buckets <= 0:
        raise ValueError("number of buckets must be greater than 0")
    key &= _MASK
    b, j = -1, 0
    while j < buckets:
        b = j
        key = (key * _JUMP_MULTIPLIER + 1) & _MASK
        j = int(float(b + 1) * (float(1 << 31) / float((key >> 33) + 1)))
    return b


class RoutingTable:
    """Decides which node indices an item should be routed to."""

    def __init__(self, addrs: Sequence[str], replication_factor: int) -> None:
        if replication_factor <= 0:
            raise ValueError("replication factor must be greater than 0")
        if replication_factor > len(addrs):
            raise ValueError(
                "replication factor cannot exceed number of available hosts"
            )
        self._addresses: Dict[str, int] = {addr: i for i, addr in enumerate(addrs)}
        self._replication_factor = replication_factor
        self._buckets = len(addrs)

    def lookup(self, item: str) -> List[int]:
        """Hash ``item`` and return the indices of the nodes it belongs to."""
        node = jump_hash(xxhash64(item), self._buckets)
        rf = self._replication_factor
        return [(node + n * rf) % len(self._addresses) for n in range(rf)]
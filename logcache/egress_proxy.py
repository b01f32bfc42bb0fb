"""Routes read and metadata requests to local or remote nodes."""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Protocol, Sequence

from .messages import MetaRequest, MetaResponse, ReadRequest, ReadResponse

Lookup = Callable[[str], List[int]]

_rng = random.SystemRandom()


class Unavailable(Exception):
    """Raised when a request cannot be served because no node is reachable."""


class EgressClient(Protocol):
    def read(self, request: ReadRequest) -> ReadResponse: ...

    def meta(self, request: MetaRequest) -> MetaResponse: ...


@dataclass(frozen=True)
class _MetaCache:
    expires_at: float
    response: MetaResponse

    def expired(self) -> bool:
        return time.monotonic() > self.expires_at


class EgressReverseProxy:
    """Reads from the local node when it holds the data, otherwise from a remote one."""

    def __init__(
        self,
        lookup: Lookup,
        clients: Sequence[EgressClient],
        local_idx: int,
        logger: Optional[logging.Logger] = None,
        meta_cache_duration: float = 1.0,
    ) -> None:
        self._lookup = lookup
        self._clients = list(clients)
        self._local_idx = local_idx
        self._log = logger or logging.getLogger(__name__)
        self._meta_cache_duration = meta_cache_duration
        self._local_cache: Optional[_MetaCache] = None
        self._remote_cache: Optional[_MetaCache] = None

    def read(self, request: ReadRequest) -> ReadResponse:
        """Read from the node that owns ``request.source_id``, preferring the local one."""
        indices = self._lookup(request.source_id)
        if not indices:
            raise Unavailable("failed to find route for request. please try again")
        if self._local_idx in indices:
            return self._clients[self._local_idx].read(request)

        client = self._clients[_rng.choice(indices)]
        try:
            return client.read(request)
        except Unavailable:
            return ReadResponse(envelopes=[])

    def meta(self, request: MetaRequest) -> MetaResponse:
        """Return metadata from the local node, or gathered from every node."""
        if request.local_only:
            return self._local_meta(request)
        return self._remote_meta()

    def _cache(self, response: MetaResponse) -> _MetaCache:
        return _MetaCache(time.monotonic() + self._meta_cache_duration, response)

    def _local_meta(self, request: MetaRequest) -> MetaResponse:
        cache = self._local_cache
        if cache is not None and not cache.expired():
            return cache.response
        response = self._clients[self._local_idx].meta(request)
        self._local_cache = self._cache(response)
        return response

    def _remote_meta(self) -> MetaResponse:
        cache = self._remote_cache
        if cache is not None and not cache.expired():
            return cache.response

        result = MetaResponse(meta={})
        failures = 0
        for client in self._clients:
            try:
                response = client.meta(MetaRequest(local_only=True))
            except Exception as exc:  # noqa: BLE001 - partial results are acceptable
                self._log.warning("failed to read meta data from remote node: %s", exc)
                failures += 1
                continue
            result.meta.update(response.meta)

        if failures == len(self._clients):
            raise RuntimeError("failed to read meta data from remote node")

        self._remote_cache = self._cache(result)
        return result
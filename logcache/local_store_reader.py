"""Validates read requests and hands them to a local envelope store."""

from __future__ import annotations

import re
import time
from typing import Dict, List, Optional, Pattern, Protocol

from .messages import (
    Envelope,
    EnvelopeType,
    MetaInfo,
    MetaRequest,
    MetaResponse,
    ReadRequest,
    ReadResponse,
)

_MAX_LIMIT = 1000
_DEFAULT_LIMIT = 100


class StoreReader(Protocol):
    def get(
        self,
        source_id: str,
        start: int,
        end: int,
        envelope_types: List[EnvelopeType],
        name_filter: Optional[Pattern[str]],
        limit: int,
        descending: bool,
    ) -> List[Envelope]: ...

    def meta(self) -> Dict[str, MetaInfo]: ...


class LocalStoreReader:
    """Reads envelopes and metadata from a store.

    Times passed to the store are nanoseconds since the Unix epoch.
    """

    def __init__(self, store: StoreReader) -> None:
        self._store = store

    def read(self, request: ReadRequest) -> ReadResponse:
        """Validate ``request``, apply defaults and return the matching envelopes."""
        if request.end_time != 0 and request.start_time > request.end_time:
            raise ValueError(
                f"StartTime ({request.start_time}) must be before "
                f"EndTime ({request.end_time})"
            )
        if request.limit > _MAX_LIMIT:
            raise ValueError(f"Limit ({request.limit}) must be 1000 or less")
        if request.limit < 0:
            raise ValueError(f"Limit ({request.limit}) must be greater than zero")

        end_time = request.end_time or time.time_ns()
        limit = request.limit or _DEFAULT_LIMIT

        name_filter: Optional[Pattern[str]] = None
        if request.name_filter:
            try:
                name_filter = re.compile(request.name_filter)
            except re.error as exc:
                raise ValueError(
                    f"Name filter must be a valid regular expression: {exc}"
                ) from exc

        envelope_types = [t for t in request.envelope_types if t != EnvelopeType.ANY]

        envelopes = self._store.get(
            request.source_id,
            request.start_time,
            end_time,
            envelope_types,
            name_filter,
            limit,
            request.descending,
        )
        return ReadResponse(envelopes=list(envelopes))

    def meta(self, request: Optional[MetaRequest] = None) -> MetaResponse:
        """Return the store's metadata for every source ID it holds."""
        return MetaResponse(
            meta={
                source_id: MetaInfo(
                    count=info.count,
                    expired=info.expired,
                    oldest_timestamp=info.oldest_timestamp,
                    newest_timestamp=info.newest_timestamp,
                )
                for source_id, info in self._store.meta().items()
            }
        )
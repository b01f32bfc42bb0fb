"""An ingress client that buffers envelopes and sends them in batches."""

from __future__ import annotations

import collections
import logging
import threading
import time
from typing import Callable, Deque, List, Optional, Protocol

from .messages import Envelope, SendRequest, SendResponse

_BUFFER_SIZE = 10000
_IDLE_WAIT = 0.05


class IngressClient(Protocol):
    def send(self, request: SendRequest) -> SendResponse: ...


class CounterMetric(Protocol):
    def add(self, delta: float) -> None: ...


class _Diode:
    """Bounded buffer that overwrites the oldest entries when full."""

    def __init__(self, capacity: int, on_dropped: Callable[[int], None]) -> None:
        self._items: Deque[Envelope] = collections.deque()
        self._capacity = capacity
        self._dropped = 0
        self._on_dropped = on_dropped
        self._lock = threading.Lock()

    def put(self, item: Envelope) -> None:
        with self._lock:
            if len(self._items) >= self._capacity:
                self._items.popleft()
                self._dropped += 1
            self._items.append(item)

    def try_next(self) -> Optional[Envelope]:
        with self._lock:
            dropped, self._dropped = self._dropped, 0
            item = self._items.popleft() if self._items else None
        if dropped:
            self._on_dropped(dropped)
        return item


class _Batcher:
    """Collects items and writes them once a batch is full or old enough."""

    def __init__(
        self, size: int, interval: float, writer: Callable[[List[Envelope]], None]
    ) -> None:
        self._size = size
        self._interval = interval
        self._writer = writer
        self._batch: List[Envelope] = []
        self._last_flush = time.monotonic()

    def write(self, item: Envelope) -> None:
        self._batch.append(item)
        if len(self._batch) >= self._size or self._interval_elapsed():
            self._write_batch()

    def flush(self) -> None:
        if self._interval_elapsed():
            self._write_batch()

    def _interval_elapsed(self) -> bool:
        return time.monotonic() - self._last_flush >= self._interval

    def _write_batch(self) -> None:
        self._last_flush = time.monotonic()
        if not self._batch:
            return
        batch, self._batch = self._batch, []
        self._writer(batch)


class BatchedIngressClient:
    """Queues envelopes on ``send`` and ships them in batches from a background thread.

    ``interval`` is in seconds.
    """

    def __init__(
        self,
        size: int,
        interval: float,
        client: IngressClient,
        dropped_metric: CounterMetric,
        send_failure_metric: CounterMetric,
        logger: Optional[logging.Logger] = None,
        local_only: bool = True,
    ) -> None:
        self._client = client
        self._size = size
        self._interval = interval
        self._log = logger or logging.getLogger(__name__)
        self._dropped_metric = dropped_metric
        self._send_failure_metric = send_failure_metric
        self._local_only = local_only
        self._buffer = _Diode(_BUFFER_SIZE, self._report_dropped)
        self._stop = threading.Event()
        self._worker = threading.Thread(target=self._run, daemon=True)
        self._worker.start()

    def send(self, request: SendRequest) -> SendResponse:
        """Queue the request's envelopes; returns immediately."""
        for envelope in request.envelopes:
            self._buffer.put(envelope)
        return SendResponse()

    def close(self) -> None:
        """Stop the background sender."""
        self._stop.set()
        self._worker.join()

    def __enter__(self) -> "BatchedIngressClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _report_dropped(self, dropped: int) -> None:
        self._log.warning("dropped %d envelopes", dropped)
        self._dropped_metric.add(float(dropped))

    def _run(self) -> None:
        batcher = _Batcher(self._size, self._interval, self._write)
        while not self._stop.is_set():
            envelope = self._buffer.try_next()
            if envelope is None:
                batcher.flush()
                self._stop.wait(_IDLE_WAIT)
                continue
            batcher.write(envelope)

    def _write(self, batch: List[Envelope]) -> None:
        try:
            self._client.send(SendRequest(envelopes=batch, local_only=self._local_only))
        except Exception as exc:  # noqa: BLE001 - sending must not kill the worker
            self._log.warning("failed to write %d envelopes: %s", len(batch), exc)
            self._send_failure_metric.add(1)
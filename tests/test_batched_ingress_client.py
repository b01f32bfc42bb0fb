import threading
import time

import pytest

from logcache.batched_ingress_client import BatchedIngressClient
from logcache.messages import Envelope, SendRequest, SendResponse


class SpyCounter:
    def __init__(self):
        self._lock = threading.Lock()
        self.value = 0.0

    def add(self, delta):
        with self._lock:
            self.value += delta


class SpyIngressClient:
    def __init__(self):
        self._lock = threading.Lock()
        self._reqs = []
        self.gate = threading.Event()
        self.gate.set()
        self.err = None

    def send(self, request):
        self.gate.wait()
        with self._lock:
            self._reqs.append(request)
        if self.err is not None:
            raise self.err
        return SendResponse()

    def requests(self):
        with self._lock:
            return list(self._reqs)


def eventually(predicate, timeout=3.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture
def ingress():
    return SpyIngressClient()


@pytest.fixture
def dropped():
    return SpyCounter()


@pytest.fixture
def failures():
    return SpyCounter()


@pytest.fixture
def make_client(ingress, dropped, failures):
    created = []

    def make(size=5, interval=3600.0, **kwargs):
        client = BatchedIngressClient(size, interval, ingress, dropped, failures, **kwargs)
        created.append(client)
        return client

    yield make
    ingress.gate.set()
    for client in created:
        client.close()


def _send_five(client):
    for i in range(5):
        resp = client.send(SendRequest(envelopes=[Envelope(timestamp=i)]))
        assert resp == SendResponse()


def test_sends_batches_because_of_size(ingress, make_client):
    client = make_client()
    _send_five(client)
    assert eventually(lambda: len(ingress.requests()) == 1)
    assert len(ingress.requests()[0].envelopes) == 5


def test_sends_batches_because_of_interval(ingress, make_client):
    client = make_client(interval=1e-6)
    resp = client.send(SendRequest(envelopes=[Envelope(timestamp=1)]))
    assert resp == SendResponse()
    assert eventually(lambda: len(ingress.requests()) == 1)
    assert ingress.requests()[0].envelopes == [Envelope(timestamp=1)]


def test_increments_a_dropped_counter(ingress, dropped, make_client):
    ingress.gate.clear()
    client = make_client()
    responses = [
        client.send(SendRequest(envelopes=[Envelope(timestamp=1)]))
        for _ in range(25000)
    ]
    ingress.gate.set()
    assert all(resp == SendResponse() for resp in responses)
    assert eventually(lambda: dropped.value > 0)
    assert dropped.value > 0


def test_sends_envelopes_with_local_only_true(ingress, make_client):
    client = make_client()
    _send_five(client)
    assert eventually(lambda: len(ingress.requests()) == 1)
    request = ingress.requests()[0]
    assert request.local_only is True
    assert request.envelopes == [Envelope(timestamp=i) for i in range(5)]


def test_sends_envelopes_with_local_only_disabled(ingress, make_client):
    client = make_client(local_only=False)
    _send_five(client)
    assert eventually(lambda: len(ingress.requests()) == 1)
    assert ingress.requests()[0].local_only is False


def test_counts_send_failures(ingress, failures, make_client):
    ingress.err = RuntimeError("boom")
    client = make_client()
    _send_five(client)
    assert eventually(lambda: failures.value == 1)
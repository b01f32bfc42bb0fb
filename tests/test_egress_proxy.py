import time

import pytest

from logcache.egress_proxy import EgressReverseProxy, Unavailable
from logcache.messages import (
    Envelope,
    MetaInfo,
    MetaRequest,
    MetaResponse,
    ReadRequest,
    ReadResponse,
)


class SpyLookup:
    def __init__(self):
        self.source_ids = []
        self.results = {}

    def __call__(self, source_id):
        self.source_ids.append(source_id)
        return self.results.get(source_id, [])


class SpyEgressClient:
    def __init__(self):
        self.read_resp = ReadResponse()
        self.reqs = []
        self.err = None
        self.meta_calls = 0
        self.meta_requests = []
        self.meta_results = None
        self.meta_err = None

    def read(self, request):
        self.reqs.append(request)
        if self.err is not None:
            raise self.err
        return self.read_resp

    def meta(self, request):
        self.meta_calls += 1
        self.meta_requests.append(request)
        if self.meta_err is not None:
            raise self.meta_err
        return MetaResponse(meta=dict(self.meta_results or {}))


@pytest.fixture
def lookup():
    return SpyLookup()


@pytest.fixture
def clients():
    return [SpyEgressClient(), SpyEgressClient(), SpyEgressClient()]


@pytest.fixture
def proxy(lookup, clients):
    return EgressReverseProxy(lookup, clients, 0, meta_cache_duration=0.05)


def test_uses_a_correct_client(lookup, clients, proxy):
    local, remote1, remote2 = clients
    lookup.results = {"a": [0], "b": [1], "c": [1, 2]}
    expected = ReadResponse(envelopes=[Envelope(source_id="a", timestamp=1)])
    local.read_resp = expected

    assert proxy.read(ReadRequest(source_id="a")) == expected
    proxy.read(ReadRequest(source_id="b"))
    proxy.read(ReadRequest(source_id="c"))

    assert sorted(lookup.source_ids) == ["a", "b", "c"]
    assert local.reqs == [ReadRequest(source_id="a")]
    assert ReadRequest(source_id="b") in remote1.reqs
    assert len(remote1.reqs) + len(remote2.reqs) == 2
    assert ReadRequest(source_id="c") in remote1.reqs + remote2.reqs


def test_evenly_distributes_requests_between_remote_clients(lookup, clients, proxy):
    _, remote1, remote2 = clients
    remote1.read_resp = ReadResponse(envelopes=[Envelope(source_id="a", timestamp=1)])
    remote2.read_resp = ReadResponse(envelopes=[Envelope(source_id="a", timestamp=2)])
    lookup.results = {"a": [1, 2]}
    responses = [proxy.read(ReadRequest(source_id="a")) for _ in range(1000)]
    from_remote1 = sum(1 for r in responses if r is remote1.read_resp)
    from_remote2 = sum(1 for r in responses if r is remote2.read_resp)
    assert from_remote1 + from_remote2 == 1000
    assert from_remote1 == len(remote1.reqs)
    assert from_remote2 == len(remote2.reqs)
    assert abs(from_remote1 - 500) <= 100
    assert abs(from_remote2 - 500) <= 100


def test_prefers_the_local_client(lookup, clients, proxy):
    local = clients[0]
    lookup.results = {"a": [0, 1, 2]}
    for _ in range(1000):
        proxy.read(ReadRequest(source_id="a"))
    assert len(local.reqs) == 1000
    assert ReadRequest(source_id="a") in local.reqs


def test_unroutable_request_raises_unavailable(proxy):
    with pytest.raises(Unavailable):
        proxy.read(ReadRequest(source_id="c"))


def test_client_error_is_raised(lookup, clients, proxy):
    clients[0].err = RuntimeError("some-error")
    lookup.results = {"a": [0], "b": [1]}
    with pytest.raises(RuntimeError, match="some-error"):
        proxy.read(ReadRequest(source_id="a"))


def test_returns_empty_batch_if_remote_is_unavailable(lookup, clients, proxy):
    clients[1].err = Unavailable("oh no")
    lookup.results = {"a": [1]}
    resp = proxy.read(ReadRequest(source_id="a"))
    assert resp.envelopes == []


def test_gets_meta_from_the_local_store(clients, proxy):
    local, remote1, _ = clients
    local.meta_results = {
        "source-1": MetaInfo(count=1, expired=2, oldest_timestamp=3, newest_timestamp=4),
        "source-2": MetaInfo(count=5, expired=6, oldest_timestamp=7, newest_timestamp=8),
    }
    resp = proxy.meta(MetaRequest(local_only=True))
    assert resp.meta["source-1"] == MetaInfo(1, 2, 3, 4)
    assert resp.meta["source-2"] == MetaInfo(5, 6, 7, 8)
    assert local.meta_requests == [MetaRequest(local_only=True)]
    assert remote1.meta_requests == []


def test_gets_meta_from_remote_and_local_stores(clients, proxy):
    local, remote1, _ = clients
    local.meta_results = {
        "source-1": MetaInfo(1, 2, 3, 4),
        "source-2": MetaInfo(5, 6, 7, 8),
    }
    remote1.meta_results = {"source-3": MetaInfo(9, 10, 11, 12)}

    resp = proxy.meta(MetaRequest())
    assert resp.meta == {
        "source-1": MetaInfo(1, 2, 3, 4),
        "source-2": MetaInfo(5, 6, 7, 8),
        "source-3": MetaInfo(9, 10, 11, 12),
    }
    assert local.meta_requests == [MetaRequest(local_only=True)]
    assert remote1.meta_requests == [MetaRequest(local_only=True)]


def test_meta_is_served_from_cache(clients, proxy):
    local, remote1, _ = clients
    local.meta_results = {"source-1": MetaInfo(count=1)}
    first = proxy.meta(MetaRequest())
    local.meta_results = {"source-2": MetaInfo(count=2)}
    second = proxy.meta(MetaRequest())
    assert first.meta == {"source-1": MetaInfo(count=1)}
    assert second.meta == {"source-1": MetaInfo(count=1)}
    assert local.meta_calls == 1
    assert remote1.meta_calls == 1


def test_local_and_remote_meta_are_cached_separately(clients, proxy):
    local, remote1, _ = clients
    local.meta_results = {"source-1": MetaInfo(), "source-2": MetaInfo()}
    remote1.meta_results = {"source-3": MetaInfo()}

    resp_a = proxy.meta(MetaRequest(local_only=True))
    resp_b = proxy.meta(MetaRequest(local_only=False))

    assert local.meta_calls == 2
    assert remote1.meta_calls == 1
    assert len(resp_a.meta) == 2
    assert len(resp_b.meta) == 3


def test_meta_cache_times_out(clients, proxy):
    remote1 = clients[1]
    remote1.meta_results = {"source-1": MetaInfo(count=1)}
    first = proxy.meta(MetaRequest())
    remote1.meta_results = {"source-2": MetaInfo(count=2)}
    time.sleep(0.08)
    second = proxy.meta(MetaRequest())
    assert first.meta == {"source-1": MetaInfo(count=1)}
    assert second.meta == {"source-2": MetaInfo(count=2)}
    assert remote1.meta_calls == 2


def test_partial_meta_results_when_some_remotes_fail(clients, proxy):
    local, remote1, _ = clients
    local.meta_results = {"source-1": MetaInfo(count=1)}
    remote1.meta_err = RuntimeError("errors")
    result = proxy.meta(MetaRequest())
    assert result.meta == {"source-1": MetaInfo(count=1)}
    assert remote1.meta_calls == 1


def test_meta_raises_when_all_remotes_fail(clients, proxy):
    for client in clients:
        client.meta_err = RuntimeError("errors")
    with pytest.raises(RuntimeError, match="failed to read meta data"):
        proxy.meta(MetaRequest())
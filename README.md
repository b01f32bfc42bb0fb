# logcache

Building blocks for a log cache node, in plain Python with no third-party
dependencies.

## What is in it

- `logcache.messages` holds the data types. It has envelopes that carry a
  `Counter`, `Gauge`, `Timer`, `Event` or `Log`. It also has `ReadRequest` /
  `ReadResponse`, `SendRequest` / `SendResponse` and `MetaRequest` /
  `MetaResponse`, plus the `EnvelopeType` and `LogType` enums.
- `logcache.parsing` has three functions:
  - `parse_step` takes seconds (possibly fractional) or a duration and returns
    a `timedelta`.
  - `parse_duration` takes durations such as `5m`, `1h30m`, `1d`, `1w`, `1y` or
    `250ms` and returns a `timedelta`.
  - `parse_time` takes Unix seconds or an RFC 3339 time and returns an aware
    `datetime`.
  - All three raise `ValueError` on bad input.
- `logcache.query` has these helpers:
  - `sanitize_metric_name` replaces the characters that are not allowed in a
    metric name with `_`.
  - `extract_source_ids` returns the `source_id` values that a query's
    selectors refer to. `=~"a|b"` expands to both values.
  - `replace_source_id_sets` rewrites `source_id` matchers using a mapping of
    sets. Any other text in the query is kept as written.
  - `LogCacheQuerier.select` reads counter, gauge and timer envelopes through a
    data reader and returns `Series` built from them. It raises `QueryError`
    when no `source_id` matcher is given.
- `logcache.routing_table.RoutingTable` places items on nodes with xxHash64
  (`xxhash64`) and jump consistent hashing (`jump_hash`), with replication.
- `logcache.static_lookup.StaticLookup` splits the 64-bit hash space evenly
  between a fixed number of routes.
- `logcache.local_store_reader.LocalStoreReader` checks a read request and fills
  in its defaults before it reaches a store:
  - the limit defaults to 100 and may be at most 1000;
  - the end time defaults to now.
  - The name filter is compiled as a regular expression.
- `logcache.ingress_proxy.IngressReverseProxy` sends each envelope to the nodes
  that own its source ID. When a node fails, the failure is logged and the
  other nodes still receive their envelopes.
- `logcache.egress_proxy.EgressReverseProxy` handles reads and meta requests.
  - A read goes to the local node when the local node owns the source ID.
    Otherwise it goes to a randomly chosen owner.
  - If that owner raises `Unavailable`, the read returns an empty batch.
  - Meta results, local and gathered from all nodes, are cached for
    `meta_cache_duration` seconds.
- `logcache.batched_ingress_client.BatchedIngressClient` queues envelopes in a
  buffer of 10,000 that drops the oldest entries when full. A background thread
  sends them in batches by size or by interval. Call `close()`, or use the
  client as a context manager, to stop that thread.
- `logcache.rfc5424` has `parse_message` for a single RFC 5424 message and
  `parse_octet_counted` for a stream of `LEN SP MSG` frames. Both raise
  `SyslogParseError`.
- `logcache.syslog_server.Server` is a TCP or TLS server for octet-counted
  syslog.
  - Structured data with an SD-ID that starts with `counter`, `gauge`,
    `event`, `timer` or `tags` becomes the matching envelope content or tags.
  - Otherwise the message text becomes a log. Priority 11 marks a log as
    `ERR`.
  - With TLS, only TLS 1.2 with ECDHE-RSA AES-GCM ciphers is accepted. Setting
    `client_ca` requires client certificates.
  - The server counts good and bad messages on counters named `ingress` and
    `invalid_ingress`.
- `logcache.middleware.unimplemented_middleware` wraps a WSGI app. Paths under
  `/api/v1/query` get `501 Not Implemented` and a JSON error body. All other
  paths pass through.

## Installing

```
pip install .
```

## Examples

```python
from logcache.parsing import parse_step, parse_time

parse_step("1m")        # timedelta(minutes=1)
parse_step("1.5")       # timedelta(seconds=1.5)
parse_time("2015-07-01T20:10:30.781Z")
```

```python
from logcache.routing_table import RoutingTable

table = RoutingTable(["10.0.1.1", "10.0.1.2", "10.0.1.3", "10.0.1.4"], 1)
table.lookup("400")     # [0]
```

```python
from logcache.query import replace_source_id_sets

replace_source_id_sets(
    'metric{source_id="expanded"}',
    {"expanded": ["expansion-1", "expansion-2"]},
)
# 'metric{source_id=~"expansion-1|expansion-2"}'
```

`Server.start()` blocks until `stop()` is called, so run it in a thread. The
server takes a metrics registry: any object whose `new_counter(name, help_text)`
returns an object with an `add(delta)` method.

```python
import threading
import time

from logcache.syslog_server import Server


class Counter:
    def __init__(self):
        self.value = 0.0

    def add(self, delta):
        self.value += delta


class Registry:
    def new_counter(self, name, help_text):
        return Counter()


server = Server(Registry(), port=0, idle_timeout=5.0)
threading.Thread(target=server.start, daemon=True).start()
while not server.addr():
    time.sleep(0.05)
print(server.addr())
envelopes = server.stream(timeout=1.0)   # [] if nothing arrived in time
server.stop()
```

## What it does not do

- There is no PromQL evaluation engine. The package finds and rewrites the
  selectors in a query and can turn envelopes into series. It does not compute
  instant or range query results.
- There is no envelope store and no network RPC layer. The proxies and readers
  work with any objects that have the `read`, `send`, `meta` or `get` methods
  they call.
- There is no command-line program.

## Running the tests

```
pip install .[test]
pytest
```
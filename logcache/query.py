"""Metric selection over log cache data and source ID handling in query text."""

from __future__ import annotations

import bisect
import enum
import json
import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, NamedTuple, Optional, Protocol

from .messages import (
    Counter,
    EnvelopeType,
    Gauge,
    ReadRequest,
    ReadResponse,
    Timer,
)

_NANOS_PER_SECOND = 1_000_000_000
_NANOS_PER_MILLI = 1_000_000

_SANITIZE_RE = re.compile(r"^[^A-z_]|[\W_]+?", re.ASCII)

_GROUPING_KEYWORDS = {"by", "without", "on", "ignoring", "group_left", "group_right"}
_PLAIN_KEYWORDS = {"and", "or", "unless", "bool", "offset"}
_OPERATOR_CHARS = set("+-*/%^=!<>,")
_NUMBER_RE = re.compile(r"[0-9]*\.?[0-9]+(?:[eE][+-]?[0-9]+)?[a-zA-Z]*")
_IDENT_RE = re.compile(r"[a-zA-Z_:][a-zA-Z0-9_:]*")
_LABEL_RE = re.compile(r"[a-zA-Z_][a-zA-Z0-9_]*")
_RANGE_RE = re.compile(r"\s*[0-9a-z]+\s*(?::\s*[0-9a-z]*\s*)?")
_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "\\": "\\", '"': '"', "'": "'", "`": "`"}


class QueryError(ValueError):
    """Raised when a query cannot be parsed or evaluated."""


class MatchType(enum.Enum):
    EQUAL = "="
    NOT_EQUAL = "!="
    REGEX = "=~"
    NOT_REGEX = "!~"


@dataclass
class LabelMatcher:
    name: str
    type: MatchType
    value: str

    def __str__(self) -> str:
        return f"{self.name}{self.type.value}{json.dumps(self.value, ensure_ascii=False)}"


class Point(NamedTuple):
    t: int
    v: float


@dataclass
class Series:
    """A labelled series of points ordered as they were added."""

    labels: Dict[str, str]
    points: List[Point] = field(default_factory=list)

    def seek(self, t: int) -> Optional[Point]:
        """Return the first point at or after time ``t`` (ms), or None."""
        idx = bisect.bisect_left([p.t for p in self.points], t)
        return self.points[idx] if idx < len(self.points) else None


class SeriesSetBuilder:
    """Groups points into series keyed by their full tag set."""

    def __init__(self) -> None:
        self._data: Dict[str, Series] = {}

    @staticmethod
    def _series_id(tags: Dict[str, str]) -> str:
        return "".join(f"-{k}-{tags[k]}" for k in sorted(tags))

    def add(self, tags: Dict[str, str], point: Point) -> None:
        key = self._series_id(tags)
        series = self._data.get(key)
        if series is None:
            series = self._data[key] = Series(labels=dict(tags))
        series.points.append(Point(*point))

    def build(self) -> List[Series]:
        return list(self._data.values())


class DataReader(Protocol):
    def read(self, request: ReadRequest) -> ReadResponse: ...


def sanitize_metric_name(name: str) -> str:
    """Replace characters that are not valid in a metric name with underscores."""
    return _SANITIZE_RE.sub("_", name)


def format_promql_time(millis: int) -> str:
    return f"{millis / 1000:.3f}"


def _add_source_ids(source_ids: set, matcher: LabelMatcher) -> None:
    if matcher.type is MatchType.REGEX:
        source_ids.update(matcher.value.split("|"))
    elif matcher.type is MatchType.EQUAL:
        source_ids.add(matcher.value)


class LogCacheQuerier:
    """Fetches envelopes for a selector and turns them into series."""

    def __init__(
        self,
        data_reader: DataReader,
        start: int,
        end: int,
        interval: int = _NANOS_PER_SECOND,
    ) -> None:
        self.data_reader = data_reader
        self.start = start
        self.end = end
        self.interval = interval

    def select(self, matchers: Iterable[LabelMatcher]) -> List[Series]:
        metric = ""
        wanted: Dict[str, str] = {}
        source_ids: set = set()
        for m in matchers:
            if m.name == "__name__":
                metric = m.value
            elif m.name == "source_id":
                _add_source_ids(source_ids, m)
            else:
                wanted[m.name] = m.value

        if not source_ids:
            raise QueryError(f"Metric '{metric}' does not have a 'source_id' label.")

        builder = SeriesSetBuilder()
        for source_id in sorted(source_ids):
            response = self.data_reader.read(
                ReadRequest(
                    source_id=source_id,
                    start_time=self.start - _NANOS_PER_SECOND,
                    end_time=self.end,
                    envelope_types=[
                        EnvelopeType.GAUGE,
                        EnvelopeType.COUNTER,
                        EnvelopeType.TIMER,
                    ],
                )
            )
            envelopes = response.envelopes if response is not None else []
            for env in envelopes:
                if any(env.tags.get(k) != v for k, v in wanted.items()):
                    continue
                value = self._value_for(env.message, metric)
                if value is None:
                    continue
                ts = env.timestamp - env.timestamp % self.interval
                tags = dict(env.tags)
                tags["source_id"] = env.source_id
                if env.instance_id:
                    tags["instance_id"] = env.instance_id
                builder.add(tags, Point(ts // _NANOS_PER_MILLI, value))
        return builder.build()

    @staticmethod
    def _value_for(message, metric: str) -> Optional[float]:
        if isinstance(message, Counter):
            if sanitize_metric_name(message.name) != metric:
                return None
            return float(message.total)
        if isinstance(message, Gauge):
            for name, gv in message.metrics.items():
                if sanitize_metric_name(name) == metric:
                    return gv.value
            return None
        if isinstance(message, Timer):
            if sanitize_metric_name(message.name) != metric:
                return None
            return float(message.stop - message.start)
        return None


@dataclass
class _Selector:
    metric: str
    matchers: List[LabelMatcher]
    span: Optional[tuple]


def _skip_ws(query: str, i: int) -> int:
    while i < len(query) and query[i].isspace():
        i += 1
    return i


def _read_string(query: str, i: int) -> tuple:
    quote = query[i]
    if quote not in "\"'`":
        raise QueryError(f"expected string at position {i}")
    out = []
    i += 1
    while i < len(query):
        c = query[i]
        if c == quote:
            return "".join(out), i + 1
        if c == "\\" and quote != "`":
            i += 1
            if i >= len(query) or query[i] not in _ESCAPES:
                raise QueryError(f"invalid escape at position {i}")
            out.append(_ESCAPES[query[i]])
        else:
            out.append(c)
        i += 1
    raise QueryError("unterminated string")


def _read_matchers(query: str, i: int) -> tuple:
    """Parse ``{...}`` starting at ``i``; return matchers and the index past ``}``."""
    matchers: List[LabelMatcher] = []
    i += 1
    while True:
        i = _skip_ws(query, i)
        if i < len(query) and query[i] == "}":
            return matchers, i + 1
        m = _LABEL_RE.match(query, i)
        if m is None:
            raise QueryError(f"expected label name at position {i}")
        name = m.group()
        i = _skip_ws(query, m.end())
        for op in ("=~", "!~", "!=", "="):
            if query.startswith(op, i):
                match_type = MatchType(op)
                i += len(op)
                break
        else:
            raise QueryError(f"expected label matching operator at position {i}")
        i = _skip_ws(query, i)
        value, i = _read_string(query, i)
        matchers.append(LabelMatcher(name, match_type, value))
        i = _skip_ws(query, i)
        if i < len(query) and query[i] == ",":
            i += 1
        elif not (i < len(query) and query[i] == "}"):
            raise QueryError(f"expected ',' or '}}' at position {i}")


def _parse_selectors(query: str) -> List[_Selector]:
    selectors: List[_Selector] = []
    depth = 0
    seen_token = False
    i = 0
    n = len(query)
    while i < n:
        c = query[i]
        if c.isspace():
            i += 1
            continue
        seen_token = True
        if c == "#":
            while i < n and query[i] != "\n":
                i += 1
            continue
        ident = _IDENT_RE.match(query, i)
        if ident:
            word = ident.group()
            j = _skip_ws(query, ident.end())
            nxt = query[j] if j < n else ""
            if word.lower() in _GROUPING_KEYWORDS:
                i = j
                if nxt == "(":
                    close = query.find(")", j)
                    if close < 0:
                        raise QueryError("unclosed grouping label list")
                    for label in query[j + 1:close].split(","):
                        label = label.strip()
                        if label and not _LABEL_RE.fullmatch(label):
                            raise QueryError(f"invalid label {label!r}")
                    i = close + 1
                continue
            if word.lower() in _PLAIN_KEYWORDS or nxt == "(":
                i = ident.end()
                continue
            if nxt == "{":
                matchers, end = _read_matchers(query, j)
                selectors.append(_Selector(word, matchers, (j, end)))
                i = end
            else:
                selectors.append(_Selector(word, [], None))
                i = ident.end()
            continue
        if c == "{":
            matchers, end = _read_matchers(query, i)
            if not any(m.value for m in matchers):
                raise QueryError("vector selector must contain a non-empty matcher")
            name = next((m.value for m in matchers if m.name == "__name__"), "")
            selectors.append(_Selector(name, matchers, (i, end)))
            i = end
            continue
        if c.isdigit() or (c == "." and i + 1 < n and query[i + 1].isdigit()):
            m = _NUMBER_RE.match(query, i)
            if m is None:
                raise QueryError(f"invalid number at position {i}")
            i = m.end()
            continue
        if c in "\"'`":
            _, i = _read_string(query, i)
            continue
        if c == "[":
            close = query.find("]", i)
            if close < 0 or not _RANGE_RE.fullmatch(query, i + 1, close):
                raise QueryError(f"invalid range at position {i}")
            i = close + 1
            continue
        if c == "(":
            depth += 1
            i += 1
            continue
        if c == ")":
            depth -= 1
            if depth < 0:
                raise QueryError(f"unexpected ')' at position {i}")
            i += 1
            continue
        if c in _OPERATOR_CHARS:
            if c == "!" and not query.startswith("!=", i):
                raise QueryError(f"unexpected '!' at position {i}")
            i += 1
            continue
        raise QueryError(f"unexpected character {c!r} at position {i}")
    if depth:
        raise QueryError("unclosed parenthesis")
    if not seen_token:
        raise QueryError("no expression found in input")
    return selectors


def extract_source_ids(query: str) -> List[str]:
    """Return every source ID referred to by the query's selectors."""
    source_ids: set = set()
    for selector in _parse_selectors(query):
        for m in selector.matchers:
            if m.name == "source_id":
                _add_source_ids(source_ids, m)
    return sorted(source_ids)


def _replace_in_matchers(matchers: List[LabelMatcher], sets: Dict[str, List[str]]) -> bool:
    changed = False
    for m in matchers:
        if m.name != "source_id":
            continue
        if m.type is MatchType.EQUAL:
            if m.value not in sets:
                continue
            expansions = list(sets[m.value])
        elif m.type is MatchType.REGEX:
            expansions = [e for sid in m.value.split("|") for e in sets.get(sid, [])]
        else:
            continue
        m.type = MatchType.REGEX if len(expansions) > 1 else MatchType.EQUAL
        m.value = "|".join(expansions)
        changed = True
    return changed


def replace_source_id_sets(query: str, source_id_expansions: Dict[str, List[str]]) -> str:
    """Expand source IDs named in the query into the IDs they stand for."""
    result = query
    for selector in reversed(_parse_selectors(query)):
        if selector.span is None:
            continue
        if _replace_in_matchers(selector.matchers, source_id_expansions):
            start, end = selector.span
            rendered = "{" + ", ".join(str(m) for m in selector.matchers) + "}"
            result = result[:start] + rendered + result[end:]
    return result
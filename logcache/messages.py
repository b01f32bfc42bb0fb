"""Envelope and request/response types exchanged between log cache components."""

from __future__ import annotations

import copy as _copy
import enum
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Union


class LogType(enum.IntEnum):
    """Stream a log line was written to."""

    OUT = 0
    ERR = 1


class EnvelopeType(enum.IntEnum):
    """Kinds of envelope a read request can filter on."""

    ANY = 0
    LOG = 1
    COUNTER = 2
    GAUGE = 3
    TIMER = 4
    EVENT = 5


@dataclass
class Counter:
    name: str = ""
    delta: int = 0
    total: int = 0


@dataclass
class GaugeValue:
    unit: str = ""
    value: float = 0.0


@dataclass
class Gauge:
    metrics: Dict[str, GaugeValue] = field(default_factory=dict)


@dataclass
class Timer:
    name: str = ""
    start: int = 0
    stop: int = 0


@dataclass
class Event:
    title: str = ""
    body: str = ""


@dataclass
class Log:
    payload: bytes = b""
    type: LogType = LogType.OUT


Message = Union[Counter, Gauge, Timer, Event, Log]


@dataclass
class Envelope:
    """A single piece of telemetry: a log, counter, gauge, timer or event."""

    source_id: str = ""
    instance_id: str = ""
    timestamp: int = 0
    tags: Dict[str, str] = field(default_factory=dict)
    message: Optional[Message] = None

    def copy(self) -> "Envelope":
        """Return a deep copy that shares no mutable state with this envelope."""
        return _copy.deepcopy(self)


@dataclass
class ReadRequest:
    source_id: str = ""
    start_time: int = 0
    end_time: int = 0
    limit: int = 0
    envelope_types: List[EnvelopeType] = field(default_factory=list)
    descending: bool = False
    name_filter: str = ""


@dataclass
class ReadResponse:
    envelopes: List[Envelope] = field(default_factory=list)


@dataclass
class SendRequest:
    envelopes: List[Envelope] = field(default_factory=list)
    local_only: bool = False


@dataclass
class SendResponse:
    pass


@dataclass
class MetaRequest:
    local_only: bool = False


@dataclass
class MetaInfo:
    count: int = 0
    expired: int = 0
    oldest_timestamp: int = 0
    newest_timestamp: int = 0


@dataclass
class MetaResponse:
    meta: Dict[str, MetaInfo] = field(default_factory=dict)
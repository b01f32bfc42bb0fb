"""A syslog server that turns octet-counted RFC 5424 messages into envelopes."""

from __future__ import annotations

import logging
import math
import queue
import re
import socket
import ssl
import threading
from datetime import datetime, timezone
from typing import Dict, List, Optional, Protocol

from .messages import Counter, Envelope, Event, Gauge, GaugeValue, Log, LogType, Timer
from .rfc5424 import SyslogMessage, SyslogParseError, parse_octet_counted

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_ACCEPT_POLL = 0.2
_ENVELOPE_BUFFER = 100
_ERROR_PRIORITY = 11
_CIPHERS = "ECDHE-RSA-AES128-GCM-SHA256:ECDHE-RSA-AES256-GCM-SHA384"

_INT_RE = re.compile(r"[+-]?[0-9]+")
_UINT_RE = re.compile(r"[0-9]+")


class CounterMetric(Protocol):
    def add(self, delta: float) -> None: ...


class MetricsRegistry(Protocol):
    def new_counter(self, name: str, help_text: str) -> CounterMetric: ...


def _parse_int(text: str, unsigned: bool = False) -> int:
    pattern = _UINT_RE if unsigned else _INT_RE
    if not pattern.fullmatch(text):
        raise ValueError(f"invalid syntax: {text!r}")
    value = int(text)
    low, high = (0, 2**64 - 1) if unsigned else (-(2**63), 2**63 - 1)
    if not low <= value <= high:
        raise ValueError(f"value out of range: {text!r}")
    return value


def _parse_float(text: str) -> float:
    if not text or text != text.strip() or "_" in text:
        raise ValueError(f"invalid syntax: {text!r}")
    value = float(text)
    if math.isinf(value) and "inf" not in text.lower():
        raise ValueError(f"value out of range: {text!r}")
    return value


def _convert_counter(envelope: Envelope, payload: Dict[str, str]) -> Envelope:
    delta = _parse_int(payload.get("delta", ""), unsigned=True)
    total = _parse_int(payload.get("total", ""), unsigned=True)
    envelope.message = Counter(name=payload.get("name", ""), delta=delta, total=total)
    return envelope


def _convert_gauge(envelope: Envelope, payload: Dict[str, str]) -> Envelope:
    if "unit" not in payload:
        raise ValueError("expected unit not found in gauge")
    value = _parse_float(payload.get("value", ""))
    envelope.message = Gauge(
        metrics={payload.get("name", ""): GaugeValue(unit=payload["unit"], value=value)}
    )
    return envelope


def _convert_event(envelope: Envelope, payload: Dict[str, str]) -> Envelope:
    envelope.message = Event(title=payload.get("title", ""), body=payload.get("body", ""))
    return envelope


def _convert_timer(envelope: Envelope, payload: Dict[str, str]) -> Envelope:
    start = _parse_int(payload.get("start", ""))
    stop = _parse_int(payload.get("stop", ""))
    envelope.message = Timer(name=payload.get("name", ""), start=start, stop=stop)
    return envelope


def _convert_tags(envelope: Envelope, payload: Dict[str, str]) -> Envelope:
    envelope.tags.update(payload)
    return envelope


_CONVERTERS = (
    ("counter", _convert_counter),
    ("gauge", _convert_gauge),
    ("event", _convert_event),
    ("timer", _convert_timer),
    ("tags", _convert_tags),
)


def convert_structured_data(
    envelope: Envelope, envelope_type: str, payload: Dict[str, str]
) -> Envelope:
    """Apply one structured data element to ``envelope`` according to its SD-ID prefix."""
    for prefix, convert in _CONVERTERS:
        if envelope_type.startswith(prefix):
            return convert(envelope, payload)
    raise ValueError(
        f"unknown envelope type for structured data: [{envelope_type}=\"{payload!r}\"]"
    )


class Server:
    """Accepts syslog connections and queues the envelopes they carry.

    ``idle_timeout`` is in seconds; a connection that stays silent that long is closed.
    """

    def __init__(
        self,
        metrics: MetricsRegistry,
        logger: Optional[logging.Logger] = None,
        *,
        port: int = 0,
        max_message_length: int = 65 * 1024,
        trim_message_whitespace: bool = True,
        cert: str = "",
        key: str = "",
        client_ca: str = "",
        idle_timeout: float = 120.0,
    ) -> None:
        self.port = port
        self.max_message_length = max_message_length
        self.trim_message_whitespace = trim_message_whitespace
        self.cert = cert
        self.key = key
        self.client_ca = client_ca
        self.idle_timeout = idle_timeout
        self._log = logger or logging.getLogger(__name__)
        self._envelopes: "queue.Queue[Envelope]" = queue.Queue(maxsize=_ENVELOPE_BUFFER)
        self._lock = threading.Lock()
        self._listener: Optional[socket.socket] = None
        self._ingress = metrics.new_counter(
            "ingress", "Total syslog messages ingressed successfully."
        )
        self._invalid_ingress = metrics.new_counter(
            "invalid_ingress",
            "Total number of syslog messages unable to be converted to valid envelopes.",
        )

    def start(self) -> None:
        """Listen and serve connections until ``stop`` is called; blocks."""
        context = self._build_tls_context() if (self.key or self.cert) else None
        listener = socket.create_server(("", self.port))
        listener.settimeout(_ACCEPT_POLL)
        with self._lock:
            self._listener = listener
        try:
            while True:
                with self._lock:
                    if self._listener is not listener:
                        return
                try:
                    conn, _ = listener.accept()
                except socket.timeout:
                    continue
                except OSError as exc:
                    self._log.info("syslog server no longer accepting connections: %s", exc)
                    return
                threading.Thread(
                    target=self._handle_connection, args=(conn, context), daemon=True
                ).start()
        finally:
            with self._lock:
                if self._listener is listener:
                    self._listener = None
            listener.close()

    def stop(self) -> None:
        """Stop accepting connections."""
        with self._lock:
            listener, self._listener = self._listener, None
        if listener is not None:
            listener.close()

    def addr(self) -> str:
        """Return ``host:port`` of the listening socket, or an empty string."""
        with self._lock:
            if self._listener is None:
                return ""
            try:
                host, port = self._listener.getsockname()[:2]
            except OSError:
                return ""
        return f"[{host}]:{port}" if ":" in host else f"{host}:{port}"

    def stream(self, timeout: Optional[float] = None) -> List[Envelope]:
        """Wait for the next envelope; return it in a list, or an empty list on timeout."""
        try:
            return [self._envelopes.get(timeout=timeout)]
        except queue.Empty:
            return []

    def convert_to_envelope(self, message: SyslogMessage) -> Envelope:
        """Build an envelope from a parsed message, raising ValueError if data is missing."""
        if message.procid is None:
            raise ValueError("missing proc ID in syslog message")
        instance_id = message.procid.strip("[]").split("/")[-1]
        if message.appname is None:
            raise ValueError("missing app name in syslog message")
        if message.timestamp is None:
            raise ValueError("missing timestamp in syslog message")

        delta = message.timestamp - _EPOCH
        timestamp = (delta.days * 86400 + delta.seconds) * 1_000_000_000 + delta.microseconds * 1000

        envelope = Envelope(
            source_id=message.appname,
            timestamp=timestamp,
            instance_id=instance_id,
            tags={},
        )
        for envelope_type, payload in (message.structured_data or {}).items():
            envelope = convert_structured_data(envelope, envelope_type, payload)

        if envelope.message is None and message.message is not None:
            self._convert_message(envelope, message)

        if envelope.message is None:
            raise ValueError("missing message data in syslog message")
        return envelope

    def _convert_message(self, envelope: Envelope, message: SyslogMessage) -> None:
        text = message.message or ""
        if self.trim_message_whitespace:
            payload = text.strip()
        else:
            payload = text.removesuffix("\n")
        log_type = LogType.ERR if message.priority == _ERROR_PRIORITY else LogType.OUT
        envelope.message = Log(payload=payload.encode("utf-8"), type=log_type)

    def _handle_connection(self, raw: socket.socket, context: Optional[ssl.SSLContext]) -> None:
        conn = raw
        try:
            raw.settimeout(self.idle_timeout)
            if context is not None:
                conn = context.wrap_socket(raw, server_side=True)
            with conn.makefile("rb") as reader:
                for message in parse_octet_counted(reader, self.max_message_length):
                    self._handle_message(message)
        except SyslogParseError as exc:
            self._invalid_ingress.add(1)
            self._log.warning("unable to parse syslog message: %s", exc)
        except OSError as exc:
            self._log.debug("syslog connection closed: %s", exc)
        finally:
            conn.close()
            raw.close()

    def _handle_message(self, message: SyslogMessage) -> None:
        try:
            envelope = self.convert_to_envelope(message)
        except ValueError as exc:
            self._invalid_ingress.add(1)
            self._log.warning("unable to convert syslog message to envelope: %s", exc)
            return
        self._envelopes.put(envelope)
        self._ingress.add(1)

    def _build_tls_context(self) -> ssl.SSLContext:
        context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        context.minimum_version = ssl.TLSVersion.TLSv1_2
        context.maximum_version = ssl.TLSVersion.TLSv1_2
        context.set_ciphers(_CIPHERS)
        context.load_cert_chain(self.cert, self.key)
        if self.client_ca:
            context.verify_mode = ssl.CERT_REQUIRED
            context.load_verify_locations(self.client_ca)
        return context
"""Parsing of RFC 5424 syslog messages and of octet-counted syslog streams."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import BinaryIO, Dict, Iterator, Optional, Union

DEFAULT_MAX_MESSAGE_LENGTH = 65 * 1024

_MAX_PRIORITY = 191
_NIL = b"-"
_BOM = b"\xef\xbb\xbf"

_HEADER_RE = re.compile(
    rb"<([0-9]{1,3})>([1-9][0-9]{0,2}) "
    rb"([\x21-\x7e]+) ([\x21-\x7e]{1,255}) ([\x21-\x7e]{1,48}) "
    rb"([\x21-\x7e]{1,128}) ([\x21-\x7e]{1,32}) "
)
_TIMESTAMP_RE = re.compile(
    rb"([0-9]{4})-([0-9]{2})-([0-9]{2})T([0-9]{2}):([0-9]{2}):([0-9]{2})"
    rb"(?:\.([0-9]{1,6}))?(Z|[+-][0-9]{2}:[0-9]{2})"
)
# Printable US-ASCII without '=', ' ', ']' and '"'.
_SD_NAME_RE = re.compile(rb"[\x21\x23-\x3c\x3e-\x5c\x5e-\x7e]{1,32}")
_PARAM_ESCAPABLE = b'"\\]'

StructuredData = Dict[str, Dict[str, str]]


class SyslogParseError(ValueError):
    """Raised when input is not a well-formed syslog message or frame."""


@dataclass
class SyslogMessage:
    """A parsed RFC 5424 message; nil fields are None."""

    priority: int
    version: int
    timestamp: Optional[datetime] = None
    hostname: Optional[str] = None
    appname: Optional[str] = None
    procid: Optional[str] = None
    msgid: Optional[str] = None
    structured_data: Optional[StructuredData] = None
    message: Optional[str] = None


def _field(raw: bytes) -> Optional[str]:
    return None if raw == _NIL else raw.decode("ascii")


def _parse_timestamp(raw: bytes) -> Optional[datetime]:
    if raw == _NIL:
        return None
    match = _TIMESTAMP_RE.fullmatch(raw)
    if match is None:
        raise SyslogParseError(f"invalid timestamp {raw!r}")
    year, month, day, hour, minute, second, fraction, zone = match.groups()
    micros = int((fraction or b"").ljust(6, b"0"))
    try:
        if zone == b"Z":
            tz = timezone.utc
        else:
            sign = -1 if zone[:1] == b"-" else 1
            tz = timezone(sign * timedelta(hours=int(zone[1:3]), minutes=int(zone[4:6])))
        return datetime(
            int(year), int(month), int(day),
            int(hour), int(minute), int(second), micros, tzinfo=tz,
        )
    except ValueError as exc:
        raise SyslogParseError(f"invalid timestamp {raw!r}: {exc}") from None


def _decode(raw: bytes, what: str) -> str:
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError:
        raise SyslogParseError(f"{what} is not valid UTF-8") from None


def _parse_param_value(data: bytes, pos: int) -> tuple:
    value = bytearray()
    while pos < len(data):
        byte = data[pos]
        if byte == ord("\\") and pos + 1 < len(data) and data[pos + 1] in _PARAM_ESCAPABLE:
            value.append(data[pos + 1])
            pos += 2
        elif byte == ord('"'):
            return _decode(bytes(value), "parameter value"), pos + 1
        else:
            value.append(byte)
            pos += 1
    raise SyslogParseError("unterminated structured data parameter value")


def _parse_structured_data(data: bytes, pos: int) -> tuple:
    if data[pos:pos + 1] == _NIL:
        return None, pos + 1
    if data[pos:pos + 1] != b"[":
        raise SyslogParseError(f"expecting structured data at position {pos}")
    elements: StructuredData = {}
    while data[pos:pos + 1] == b"[":
        match = _SD_NAME_RE.match(data, pos + 1)
        if match is None:
            raise SyslogParseError(f"expecting structured data id at position {pos + 1}")
        sd_id = match.group().decode("ascii")
        pos = match.end()
        params: Dict[str, str] = {}
        while True:
            byte = data[pos:pos + 1]
            if byte == b"]":
                pos += 1
                break
            if byte != b" ":
                raise SyslogParseError(f"expecting ' ' or ']' at position {pos}")
            match = _SD_NAME_RE.match(data, pos + 1)
            if match is None:
                raise SyslogParseError(f"expecting parameter name at position {pos + 1}")
            name = match.group().decode("ascii")
            pos = match.end()
            if data[pos:pos + 2] != b'="':
                raise SyslogParseError(f"expecting '=\"' at position {pos}")
            params[name], pos = _parse_param_value(data, pos + 2)
        elements[sd_id] = params
    return elements, pos


def parse_message(data: Union[bytes, str]) -> SyslogMessage:
    """Parse a single RFC 5424 message."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    header = _HEADER_RE.match(data)
    if header is None:
        raise SyslogParseError("malformed syslog header")
    pri, version, timestamp, hostname, appname, procid, msgid = header.groups()
    priority = int(pri)
    if priority > _MAX_PRIORITY:
        raise SyslogParseError(f"priority {priority} out of range")

    structured_data, pos = _parse_structured_data(data, header.end())

    message: Optional[str] = None
    if pos < len(data):
        if data[pos:pos + 1] != b" ":
            raise SyslogParseError(f"expecting ' ' after structured data at position {pos}")
        body = data[pos + 1:]
        if body.startswith(_BOM):
            body = body[len(_BOM):]
        message = _decode(body, "message") or None

    return SyslogMessage(
        priority=priority,
        version=int(version),
        timestamp=_parse_timestamp(timestamp),
        hostname=_field(hostname),
        appname=_field(appname),
        procid=_field(procid),
        msgid=_field(msgid),
        structured_data=structured_data,
        message=message,
    )


def _read_exact(stream: BinaryIO, length: int) -> bytes:
    chunks = []
    remaining = length
    while remaining:
        chunk = stream.read(remaining)
        if not chunk:
            raise SyslogParseError("unexpected end of input inside a frame")
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


def parse_octet_counted(
    stream: BinaryIO, max_message_length: int = DEFAULT_MAX_MESSAGE_LENGTH
) -> Iterator[SyslogMessage]:
    """Yield messages from a stream of ``MSG-LEN SP MSG`` frames.

    Parsing stops at the end of the stream; the first malformed frame raises
    SyslogParseError and ends the iteration.
    """
    while True:
        first = stream.read(1)
        if not first:
            return
        if first not in b"123456789":
            raise SyslogParseError(f"expecting a message length, got {first!r}")
        digits = bytearray(first)
        while True:
            byte = stream.read(1)
            if not byte:
                raise SyslogParseError("unexpected end of input inside a message length")
            if byte == b" ":
                break
            if not byte.isdigit():
                raise SyslogParseError(f"invalid character {byte!r} in message length")
            digits += byte
        length = int(digits)
        if length > max_message_length:
            raise SyslogParseError(
                f"message length {length} exceeds maximum of {max_message_length}"
            )
        yield parse_message(_read_exact(stream, length))
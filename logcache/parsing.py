"""Parsing of step, duration and time parameters used by query requests."""

from __future__ import annotations

import math
import re
from datetime import datetime, timedelta, timezone

_MAX_INT64 = 2**63 - 1
_MIN_INT64 = -(2**63)

_MS_PER_SECOND = 1000
_MS_PER_MINUTE = 60 * _MS_PER_SECOND
_MS_PER_HOUR = 60 * _MS_PER_MINUTE
_MS_PER_DAY = 24 * _MS_PER_HOUR
_MS_PER_WEEK = 7 * _MS_PER_DAY
_MS_PER_YEAR = 365 * _MS_PER_DAY

_DURATION_RE = re.compile(
    r"(?:([0-9]+)y)?(?:([0-9]+)w)?(?:([0-9]+)d)?(?:([0-9]+)h)?"
    r"(?:([0-9]+)m)?(?:([0-9]+)s)?(?:([0-9]+)ms)?"
)
_DURATION_UNITS_MS = (
    _MS_PER_YEAR,
    _MS_PER_WEEK,
    _MS_PER_DAY,
    _MS_PER_HOUR,
    _MS_PER_MINUTE,
    _MS_PER_SECOND,
    1,
)

_RFC3339_RE = re.compile(
    r"([0-9]{4})-([0-9]{2})-([0-9]{2})T([0-9]{2}):([0-9]{2}):([0-9]{2})"
    r"(?:\.([0-9]+))?(Z|[+-][0-9]{2}:[0-9]{2})"
)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _parse_float(param: str) -> float | None:
    """Parse a plain decimal number, rejecting forms a strict parser would refuse."""
    if not param or param != param.strip() or "_" in param:
        return None
    try:
        value = float(param)
    except ValueError:
        return None
    if math.isinf(value) and "inf" not in param.lower():
        # Out-of-range literal such as 1e400.
        return None
    return value


def _nanos_to_timedelta(nanos: int) -> timedelta:
    sign = -1 if nanos < 0 else 1
    return timedelta(microseconds=sign * (abs(nanos) // 1000))


def parse_step(param: str) -> timedelta:
    """Parse a step given either as seconds (possibly fractional) or as a duration."""
    step = _parse_float(param)
    if step is not None:
        nanos = step * 1e9
        if nanos > float(_MAX_INT64) or nanos < float(_MIN_INT64):
            raise ValueError(
                f"cannot parse {param!r} to a valid step. It overflows int64"
            )
        if math.isnan(nanos):
            raise ValueError(f"cannot parse {param!r} to a valid step")
        return _nanos_to_timedelta(int(nanos))
    try:
        return parse_duration(param)
    except ValueError:
        raise ValueError(f"cannot parse {param!r} to a valid step") from None


def parse_duration(param: str) -> timedelta:
    """Parse a duration such as ``5m``, ``1h30m`` or ``250ms``."""
    if param == "0":
        return timedelta(0)
    match = _DURATION_RE.fullmatch(param)
    if not param or match is None:
        raise ValueError(f"cannot parse {param!r} to a valid duration")
    millis = sum(
        int(amount) * unit
        for amount, unit in zip(match.groups(), _DURATION_UNITS_MS)
        if amount
    )
    if millis * 1_000_000 > _MAX_INT64:
        raise ValueError(f"cannot parse {param!r} to a valid duration")
    return timedelta(milliseconds=millis)


def _parse_rfc3339(param: str) -> datetime | None:
    match = _RFC3339_RE.fullmatch(param)
    if match is None:
        return None
    year, month, day, hour, minute, second, fraction, zone = match.groups()
    micros = int((fraction or "").ljust(6, "0")[:6])
    if zone == "Z":
        tz = timezone.utc
    else:
        sign = -1 if zone[0] == "-" else 1
        offset = timedelta(hours=int(zone[1:3]), minutes=int(zone[4:6]))
        try:
            tz = timezone(sign * offset)
        except ValueError:
            return None
    try:
        return datetime(
            int(year), int(month), int(day),
            int(hour), int(minute), int(second), micros, tzinfo=tz,
        )
    except ValueError:
        return None


def parse_time(param: str) -> datetime:
    """Parse a Unix timestamp in (fractional) seconds or an RFC 3339 time."""
    seconds = _parse_float(param)
    if seconds is not None and not math.isnan(seconds) and not math.isinf(seconds):
        nanos = int(seconds * 1e9)
        try:
            return _EPOCH + timedelta(microseconds=nanos // 1000)
        except OverflowError:
            pass
    parsed = _parse_rfc3339(param)
    if parsed is not None:
        return parsed
    raise ValueError(f"cannot parse {param!r} to a valid Unix or RFC3339 timestamp")
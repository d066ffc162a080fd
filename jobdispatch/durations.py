"""ISO-8601 durations and instants to absolute UTC due instants.

Durations follow the ``PnDTnHnMn.nS`` form (days, hours, minutes, seconds with
an optional fraction), e.g. ``PT3H``, ``P2DT30M``, ``PT0.5S``. Each component
may carry its own sign and the whole value may be prefixed with ``-``/``+``.
"""
import re
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Optional, Union

from .errors import InvalidTimingError
from .models import utcnow

DURATION_RE = re.compile(
    r"^(?P<sign>[-+]?)P"
    r"(?:(?P<days>[-+]?\d+)D)?"
    r"(?P<time>T"
    r"(?:(?P<hours>[-+]?\d+)H)?"
    r"(?:(?P<minutes>[-+]?\d+)M)?"
    r"(?:(?P<seconds>[-+]?\d+)(?:[.,](?P<fraction>\d{0,9}))?S)?"
    r")?$",
    re.IGNORECASE,
)


def parse_duration(value: str) -> timedelta:
    """Parse an ISO-8601 duration string into a ``timedelta``.

    Raises InvalidTimingError on bad syntax or when the value does not fit in
    a ``timedelta``.
    """
    if not isinstance(value, str) or not value.strip():
        raise InvalidTimingError(f"duration must be a non-empty string, got {value!r}")
    text = value.strip()
    m = DURATION_RE.match(text)
    if not m:
        raise InvalidTimingError(f"Invalid ISO-8601 duration: {value!r}")
    parts = m.groupdict()
    if parts["time"] is not None and parts["time"].upper() == "T":
        raise InvalidTimingError(f"Invalid ISO-8601 duration: {value!r}")
    if not any(parts[k] is not None for k in ("days", "hours", "minutes", "seconds")):
        raise InvalidTimingError(f"Invalid ISO-8601 duration: {value!r}")

    try:
        seconds = Decimal(0)
        if parts["days"]:
            seconds += Decimal(parts["days"]) * 86400
        if parts["hours"]:
            seconds += Decimal(parts["hours"]) * 3600
        if parts["minutes"]:
            seconds += Decimal(parts["minutes"]) * 60
        if parts["seconds"]:
            whole = Decimal(parts["seconds"])
            frac = Decimal("0." + parts["fraction"]) if parts["fraction"] else Decimal(0)
            seconds += whole - frac if parts["seconds"].startswith("-") else whole + frac
        if parts["sign"] == "-":
            seconds = -seconds
        return timedelta(seconds=float(seconds))
    except (OverflowError, InvalidOperation) as exc:
        raise InvalidTimingError(f"duration {value!r} is out of range") from exc


def to_delay(delay: Union[str, timedelta]) -> timedelta:
    if isinstance(delay, timedelta):
        result = delay
    elif isinstance(delay, str):
        result = parse_duration(delay)
    else:
        raise InvalidTimingError(f"delay must be a timedelta or ISO-8601 string, got {type(delay).__name__}")
    if result < timedelta(0):
        raise InvalidTimingError(f"delay must not be negative: {delay!r}")
    return result


def due_after(delay: Union[str, timedelta], now: Optional[datetime] = None) -> datetime:
    """Resolve a relative delay into an absolute due instant, once."""
    now = now or utcnow()
    offset = to_delay(delay)
    try:
        return now + offset
    except OverflowError as exc:
        raise InvalidTimingError(f"delay {delay!r} overflows the time range") from exc


def to_instant(at: Union[str, datetime]) -> datetime:
    """Normalise an instant to an aware UTC datetime. Naive values are UTC."""
    if isinstance(at, str):
        text = at.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            at = datetime.fromisoformat(text)
        except ValueError as exc:
            raise InvalidTimingError(f"Invalid ISO-8601 instant: {at!r}") from exc
    elif not isinstance(at, datetime):
        raise InvalidTimingError(f"instant must be a datetime or ISO-8601 string, got {type(at).__name__}")
    if at.tzinfo is None:
        return at.replace(tzinfo=timezone.utc)
    try:
        return at.astimezone(timezone.utc)
    except OverflowError as exc:
        raise InvalidTimingError(f"instant {at!r} is out of range") from exc

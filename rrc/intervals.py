from __future__ import annotations

import re
from datetime import timedelta

from .errors import InvalidInterval

DEFAULT_INTERVAL = "24h"
INTERVAL_RE = re.compile(r"^([0-9]+)(m|h|d|w)?$")
MAX_INTERVAL = timedelta(days=100 * 365)

_UNIT_SECONDS = {
    None: 1,
    "m": 60,
    "h": 60 * 60,
    "d": 24 * 60 * 60,
    "w": 7 * 24 * 60 * 60,
}


def parse_interval(raw: str | None) -> timedelta:
    """Parse an interval string like "30m", "12h", "7d" or "2w".

    A bare number is read as seconds. An absent value falls back to 24h.
    Raises InvalidInterval for anything unparsable, not strictly positive or
    longer than MAX_INTERVAL.
    """
    if raw is None or raw == "":
        raw = DEFAULT_INTERVAL
    m = INTERVAL_RE.fullmatch(raw)
    if not m:
        raise InvalidInterval(raw, "expected <number>[m|h|d|w]")
    seconds = int(m.group(1)) * _UNIT_SECONDS[m.group(2)]
    if seconds <= 0:
        raise InvalidInterval(raw, "interval must be positive")
    # Keeps now + interval representable as a datetime.
    if seconds > MAX_INTERVAL.total_seconds():
        raise InvalidInterval(raw, f"interval must not exceed {MAX_INTERVAL.days} days")
    return timedelta(seconds=seconds)

# Functions for working with UTC timestamps and Go-style durations

import re
from datetime import datetime, timedelta, timezone


UTC = timezone.utc

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|d|h|m|s)")
_DURATION_UNITS = {
    "ms": timedelta(milliseconds=1),
    "s": timedelta(seconds=1),
    "m": timedelta(minutes=1),
    "h": timedelta(hours=1),
    "d": timedelta(days=1),
}


def now_utc():
    return datetime.now(UTC)

def now_iso():
    return datetime.now(UTC).isoformat()

def parse_iso(s):
    """Parse an RFC3339 timestamp as returned by the Google APIs.

    Naive values are assumed to be UTC. Returns None for empty input.
    """
    if not s:
        return None
    dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)

def parse_duration(value):
    """Parse "30m", "3h", "1h30m", "90s" or "7d" into a timedelta.

    Bare numbers are taken as seconds.
    """
    if isinstance(value, timedelta):
        return value
    text = str(value).strip().lower()
    if not text:
        raise ValueError("empty duration")
    if re.fullmatch(r"\d+(?:\.\d+)?", text):
        return timedelta(seconds=float(text))

    total = timedelta()
    pos = 0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()
    if pos != len(text):
        raise ValueError(f"invalid duration: {value!r}")
    return total

def round_to_minute(delta):
    seconds = delta.total_seconds()
    minutes = int((abs(seconds) + 30) // 60)
    return timedelta(minutes=minutes if seconds >= 0 else -minutes)

def format_duration(delta):
    """Render a timedelta the way Go prints durations ("20m0s", "2h40m0s")."""
    seconds = int(round(delta.total_seconds()))
    sign = "-" if seconds < 0 else ""
    seconds = abs(seconds)
    if seconds == 0:
        return "0s"
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{sign}{hours}h{minutes}m{secs}s"
    if minutes:
        return f"{sign}{minutes}m{secs}s"
    return f"{sign}{secs}s"

"""Window duration parsing.

Durations are configured either as a number of milliseconds or as a short
human string ("500ms", "1s", "5 minutes", "2h", "1d").
"""

from __future__ import annotations

import re

from ratelimit_gate.core.errors import InvalidConfigAppError

_UNIT_MS: dict[str, int] = {
    "ms": 1,
    "msec": 1,
    "msecs": 1,
    "millisecond": 1,
    "milliseconds": 1,
    "s": 1000,
    "sec": 1000,
    "secs": 1000,
    "second": 1000,
    "seconds": 1000,
    "m": 60_000,
    "min": 60_000,
    "mins": 60_000,
    "minute": 60_000,
    "minutes": 60_000,
    "h": 3_600_000,
    "hr": 3_600_000,
    "hrs": 3_600_000,
    "hour": 3_600_000,
    "hours": 3_600_000,
    "d": 86_400_000,
    "day": 86_400_000,
    "days": 86_400_000,
    "w": 604_800_000,
    "week": 604_800_000,
    "weeks": 604_800_000,
}

_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([a-z]*)\s*$", re.IGNORECASE)


def _invalid(value: object, setting: str) -> InvalidConfigAppError:
    return InvalidConfigAppError(
        code="invalid_config",
        message=f"Invalid duration for {setting}: {value!r}",
        details={
            "setting": setting,
            "value": str(value),
            "hint": "Use milliseconds (1000) or a unit suffix such as '1s', '5m', '1h'",
        },
    )


def parse_duration(value: int | float | str, *, setting: str = "duration") -> int:
    """Convert a configured duration to whole milliseconds.

    Args:
        value: Milliseconds as a number, or a string with an optional unit.
        setting: Name of the setting, used in the error message.

    Returns:
        Duration in milliseconds (always >= 1).

    Raises:
        InvalidConfigAppError: If the value is malformed or not positive.

    Examples:
        >>> parse_duration(1000)
        1000
        >>> parse_duration("1.5s")
        1500
        >>> parse_duration("2 minutes")
        120000
    """
    if isinstance(value, bool):
        raise _invalid(value, setting)

    if isinstance(value, (int, float)):
        millis = float(value)
    elif isinstance(value, str):
        match = _DURATION_RE.match(value)
        if not match:
            raise _invalid(value, setting)
        amount, unit = match.groups()
        factor = _UNIT_MS.get(unit.lower() or "ms")
        if factor is None:
            raise _invalid(value, setting)
        millis = float(amount) * factor
    else:
        raise _invalid(value, setting)

    result = int(round(millis))
    if result < 1:
        raise _invalid(value, setting)
    return result

"""Short duration strings such as ``"1h"`` or ``"500ms"``."""

import re


SECOND = 1000
MINUTE = SECOND * 60
HOUR = MINUTE * 60
DAY = HOUR * 24
WEEK = DAY * 7
YEAR = int(DAY * 365.25)

_UNITS = {
    "ms": 1, "msec": 1, "msecs": 1, "millisecond": 1, "milliseconds": 1,
    "s": SECOND, "sec": SECOND, "secs": SECOND, "second": SECOND, "seconds": SECOND,
    "m": MINUTE, "min": MINUTE, "mins": MINUTE, "minute": MINUTE, "minutes": MINUTE,
    "h": HOUR, "hr": HOUR, "hrs": HOUR, "hour": HOUR, "hours": HOUR,
    "d": DAY, "day": DAY, "days": DAY,
    "w": WEEK, "week": WEEK, "weeks": WEEK,
    "y": YEAR, "yr": YEAR, "yrs": YEAR, "year": YEAR, "years": YEAR,
}

_PATTERN = re.compile(r"^\s*(-?\d*\.?\d+)\s*([a-z]*)\s*$", re.IGNORECASE)


def parse_duration(value: str) -> int:
    """
    Convert a duration string to milliseconds.
    
    A bare number is read as milliseconds. Fractions are allowed
    (``"1.5h"``) and rounded to the nearest millisecond.
    
    Raises:
        ValueError: If the string is malformed, uses an unknown unit or
            is not strictly positive.
    """
    match = _PATTERN.match(str(value))
    if not match:
        raise ValueError(f"Invalid duration: {value!r}")
    
    amount, unit = match.groups()
    unit = unit.lower() or "ms"
    if unit not in _UNITS:
        raise ValueError(f"Unknown duration unit {unit!r} in {value!r}")
    
    millis = round(float(amount) * _UNITS[unit])
    if millis <= 0:
        raise ValueError(f"Duration must be positive: {value!r}")
    return millis

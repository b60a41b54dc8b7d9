"""Conversion of Composite Document File timestamps.

CDF timestamps count 100-nanosecond ticks since 1 January 1601.  The
calendar arithmetic below deliberately follows the approximate algorithm of
the document reader, so that dates come out exactly as it reports them.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

CDF_BASE_YEAR = 1601
CDF_TIME_PREC = 10_000_000

_MDAYS = (31, 28, 31, 30, 31, 30, 31, 31, 30, 31, 30, 31)
_EPOCH_ORDINAL = date(1970, 1, 1).toordinal()
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_WEEKDAYS = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")
_MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun",
           "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")


def _isleap(year: int) -> bool:
    return year % 4 == 0 and (year % 100 != 0 or year % 400 == 0)


def _cdiv(a: int, b: int) -> int:
    """Integer division truncating towards zero."""
    q = abs(a) // abs(b)
    return q if (a >= 0) == (b >= 0) else -q


def _cmod(a: int, b: int) -> int:
    """Remainder with the sign of the dividend."""
    return a - b * _cdiv(a, b)


def _getdays(year: int) -> int:
    """Days between 1 January 1601 and 1 January of ``year``."""
    return sum(365 + _isleap(y) for y in range(CDF_BASE_YEAR, year))


def _getday(year: int, days: int) -> int:
    """Day within the month."""
    for month, length in enumerate(_MDAYS):
        sub = length + (month == 1 and _isleap(year))
        if days < sub:
            return days
        days -= sub
    return days


def _getmonth(year: int, days: int) -> int:
    """Month number, 0 to 11 (12 when the days run past December)."""
    for month, length in enumerate(_MDAYS):
        days -= length
        if month == 1 and _isleap(year):
            days -= 1
        if days <= 0:
            return month
    return len(_MDAYS)


def timestamp_to_timespec(t: int) -> tuple[int, int]:
    """Convert a CDF timestamp to ``(seconds, nanoseconds)`` since the Unix epoch.

    The broken-down time is interpreted as UTC.  Raises ValueError when the
    result cannot be represented as a calendar date.
    """
    nsec = _cmod(t, CDF_TIME_PREC) * 100

    t = _cdiv(t, CDF_TIME_PREC)
    sec = _cmod(t, 60)
    t = _cdiv(t, 60)
    minute = _cmod(t, 60)
    t = _cdiv(t, 60)
    hour = _cmod(t, 24)
    t = _cdiv(t, 24)

    year = CDF_BASE_YEAR + _cdiv(t, 365)
    t -= _getdays(year) - 1
    mday = _getday(year, t)
    month = _getmonth(year, t)

    # Normalise an overflowing month the way the C library would.
    year += month // 12
    month %= 12
    try:
        ordinal = date(year, month + 1, 1).toordinal() + mday - 1
    except (ValueError, OverflowError) as exc:
        raise ValueError(f"timestamp out of range: year {year}") from exc

    days = ordinal - _EPOCH_ORDINAL
    return days * 86400 + hour * 3600 + minute * 60 + sec, nsec


def cdf_ctime(sec: int) -> str:
    """Format seconds since the epoch like ctime(3), in UTC, newline included.

    Values that cannot be shown as a date give a ``*Bad*`` marker holding
    the raw value in hexadecimal.
    """
    try:
        dt = _EPOCH + timedelta(seconds=sec)
    except OverflowError:
        return f"*Bad* 0x{sec & 0xFFFFFFFFFFFFFFFF:016x}\n"
    return (f"{_WEEKDAYS[dt.weekday()]} {_MONTHS[dt.month - 1]} "
            f"{dt.day:2d} {dt.hour:02d}:{dt.minute:02d}:{dt.second:02d} "
            f"{dt.year}\n")
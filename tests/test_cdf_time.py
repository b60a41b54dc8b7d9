import pytest

from fileid.cdf_time import CDF_TIME_PREC, cdf_ctime, timestamp_to_timespec

# Ticks between 1601-01-01 and 1970-01-01.
UNIX_EPOCH_TICKS = 116444736000000000
DAY_TICKS = 86400 * CDF_TIME_PREC


def test_unix_epoch_maps_to_zero():
    assert timestamp_to_timespec(UNIX_EPOCH_TICKS) == (0, 0)


@pytest.mark.parametrize("days", range(1, 30))
def test_whole_days_in_january(days):
    sec, nsec = timestamp_to_timespec(UNIX_EPOCH_TICKS + days * DAY_TICKS)
    assert sec == days * 86400
    assert nsec == 0


def test_hours_add_seconds():
    base, _ = timestamp_to_timespec(UNIX_EPOCH_TICKS + 2 * DAY_TICKS)
    later, _ = timestamp_to_timespec(
        UNIX_EPOCH_TICKS + 2 * DAY_TICKS + 3 * 3600 * CDF_TIME_PREC)
    assert later - base == 3 * 3600


def test_sub_second_ticks_become_nanoseconds():
    sec, nsec = timestamp_to_timespec(UNIX_EPOCH_TICKS + 7)
    assert sec == 0
    assert nsec == 7 * 100


def test_out_of_range_raises():
    with pytest.raises(ValueError):
        timestamp_to_timespec(2**63 - 1)


def test_ctime_epoch():
    assert cdf_ctime(0) == "Thu Jan  1 00:00:00 1970\n"


def test_ctime_of_converted_timestamp():
    sec, _ = timestamp_to_timespec(UNIX_EPOCH_TICKS + DAY_TICKS)
    assert cdf_ctime(sec) == "Fri Jan  2 00:00:00 1970\n"


def test_ctime_shape():
    text = cdf_ctime(123456789)
    assert len(text) == 25
    assert text.endswith("\n")


def test_ctime_bad_value():
    text = cdf_ctime(10**15)
    assert text.startswith("*Bad* 0x")
    assert len(text) == 25
    assert int(text[8:24], 16) == 10**15
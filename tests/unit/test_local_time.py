from datetime import datetime

import pytest

from summary_mailer.utils.local_time import parse_instant, to_instant, to_local


def test_to_local_subtracts_offset():
    assert to_local(0, -300) == datetime(1970, 1, 1, 5, 0)
    assert to_local(0, 60) == datetime(1969, 12, 31, 23, 0)


def test_to_instant_adds_offset():
    assert to_instant(datetime(1970, 1, 1, 5, 0), -300) == 0


@pytest.mark.parametrize("offset", [-840, -330, -300, 0, 60, 345, 720])
@pytest.mark.parametrize("instant", [0, 1, 1_737_518_400_123, 1_709_251_199_999, -86_400_001])
def test_round_trip_is_exact(instant, offset):
    assert to_instant(to_local(instant, offset), offset) == instant


def test_parse_instant_iso_with_zone():
    assert parse_instant("2025-01-22T04:00:00Z") == 1_737_518_400_000
    assert parse_instant("2025-01-22T09:00:00+05:00") == 1_737_518_400_000


def test_parse_instant_naive_iso_is_utc():
    assert parse_instant("2025-01-22T04:00:00") == 1_737_518_400_000


def test_parse_instant_epoch_ms():
    assert parse_instant(1_737_518_400_000) == 1_737_518_400_000
    assert parse_instant("1737518400000") == 1_737_518_400_000


@pytest.mark.parametrize("value", [None, "", "tomorrow", True])
def test_parse_instant_unparseable(value):
    assert parse_instant(value) is None

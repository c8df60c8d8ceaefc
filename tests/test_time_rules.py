from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from workhub.services.time_rules import (
    elapsed_minutes,
    hours_to_minutes,
    local_date,
    local_midnight_utc,
    minutes_between,
    parse_hours,
)


T0 = datetime(2024, 1, 15, 9, 0, 0, tzinfo=timezone.utc)


def test_minutes_between_rounds_half_up():
    assert minutes_between(T0, T0 + timedelta(minutes=37)) == 37
    assert minutes_between(T0, T0 + timedelta(minutes=2, seconds=29)) == 2
    assert minutes_between(T0, T0 + timedelta(minutes=2, seconds=30)) == 3


def test_minutes_between_never_negative():
    assert minutes_between(T0, T0 - timedelta(minutes=5)) == 0


def test_minutes_between_treats_naive_as_utc():
    naive_start = T0.replace(tzinfo=None)
    assert minutes_between(naive_start, T0 + timedelta(minutes=10)) == 10


def test_minutes_across_dst_change_use_real_elapsed_time():
    # Europe/Rome moves clocks forward at 02:00 local on 2024-03-31
    start = datetime(2024, 3, 31, 0, 30, tzinfo=timezone.utc)
    end = datetime(2024, 3, 31, 1, 30, tzinfo=timezone.utc)
    assert minutes_between(start, end) == 60


def test_elapsed_minutes_floors():
    assert elapsed_minutes(T0, T0 + timedelta(minutes=4, seconds=59)) == 4


@pytest.mark.parametrize("raw", ["2,5", "2.5", 2.5, Decimal("2.5"), " 2,5 "])
def test_parse_hours_accepts_comma_or_period(raw):
    assert parse_hours(raw) == Decimal("2.5")
    assert hours_to_minutes(parse_hours(raw)) == 150


@pytest.mark.parametrize("raw", [None, "", "abc", "-1", "1,2,3", "nan", True])
def test_parse_hours_rejects_invalid(raw):
    with pytest.raises(ValueError):
        parse_hours(raw)


def test_hours_to_minutes_rounds_half_up():
    assert hours_to_minutes(Decimal("0.0083")) == 0
    assert hours_to_minutes(Decimal("0.025")) == 2  # 1.5 minutes


def test_local_midnight_follows_dst():
    assert local_midnight_utc(date(2024, 1, 15)) == datetime(2024, 1, 14, 23, 0, tzinfo=timezone.utc)
    assert local_midnight_utc(date(2024, 7, 1)) == datetime(2024, 6, 30, 22, 0, tzinfo=timezone.utc)


def test_local_date_uses_local_calendar_day():
    late_evening_utc = datetime(2024, 7, 1, 22, 30, tzinfo=timezone.utc)
    assert local_date(late_evening_utc) == date(2024, 7, 2)

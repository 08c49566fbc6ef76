"""Tests for the time expression parser."""

from datetime import datetime, timedelta, timezone

import pytest

from time_parser import format_reminder_time, parse_reminder_time

NOW = datetime(2026, 3, 10, 15, 0, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize("text, delta", [
    ("10 minutes", timedelta(minutes=10)),
    ("1 minute", timedelta(minutes=1)),
    ("2 hours", timedelta(hours=2)),
    ("1 hour", timedelta(hours=1)),
    ("45 seconds", timedelta(seconds=45)),
    ("in 5 Minutes", timedelta(minutes=5)),
])
def test_relative_durations_are_added_to_now(text, delta):
    assert parse_reminder_time(text, NOW) == NOW + delta


def test_relative_duration_without_number_is_zero():
    assert parse_reminder_time("in a minute", NOW) == NOW


def test_relative_uses_first_unit_match_and_first_number():
    # "minute" is checked before "hour", and the first integer wins
    assert parse_reminder_time("1 hour 30 minutes", NOW) == NOW + timedelta(minutes=1)


def test_iso_timestamp_is_returned_verbatim():
    parsed = parse_reminder_time("2026-03-11T09:15:00Z", NOW)
    assert parsed == datetime(2026, 3, 11, 9, 15, tzinfo=timezone.utc)


def test_iso_timestamp_keeps_its_offset():
    parsed = parse_reminder_time("2026-03-11T09:15:00+05:30", NOW)
    assert parsed.utcoffset() == timedelta(hours=5, minutes=30)


def test_naive_absolute_time_uses_callers_timezone():
    parsed = parse_reminder_time("2026-03-12 08:00", NOW)
    assert parsed == datetime(2026, 3, 12, 8, 0, tzinfo=timezone.utc)


def test_clock_time_later_today():
    assert parse_reminder_time("4:30 PM", NOW) == NOW.replace(hour=16, minute=30)


def test_clock_time_already_passed_rolls_to_tomorrow():
    parsed = parse_reminder_time("2:30 PM", NOW)
    assert parsed == datetime(2026, 3, 11, 14, 30, tzinfo=timezone.utc)


def test_clock_time_equal_to_now_rolls_to_tomorrow():
    assert parse_reminder_time("15:00", NOW) == NOW + timedelta(days=1)


def test_twelve_am_is_midnight():
    parsed = parse_reminder_time("12:05 AM", NOW)
    assert parsed == datetime(2026, 3, 11, 0, 5, tzinfo=timezone.utc)


def test_twelve_pm_is_noon():
    parsed = parse_reminder_time("12:45 pm", NOW)
    assert parsed == datetime(2026, 3, 11, 12, 45, tzinfo=timezone.utc)


def test_twenty_four_hour_clock():
    assert parse_reminder_time("at 18:05", NOW) == NOW.replace(hour=18, minute=5)


@pytest.mark.parametrize("text", ["25:00", "13:30 PM", "9:75"])
def test_out_of_range_clock_values_fail(text):
    assert parse_reminder_time(text, NOW) is None


@pytest.mark.parametrize("text", ["", "   ", None, "tomorrow-ish", "next tuesday"])
def test_unrecognized_input_returns_none(text):
    assert parse_reminder_time(text, NOW) is None


def test_parser_is_deterministic_for_fixed_now():
    assert parse_reminder_time("3 hours", NOW) == parse_reminder_time("3 hours", NOW)


@pytest.mark.parametrize("delta, expected", [
    (timedelta(minutes=-1), "Past due"),
    (timedelta(minutes=1, seconds=5), "In 1 minute"),
    (timedelta(minutes=30), "In 30 minutes"),
    (timedelta(hours=5), "In 5 hours"),
    (timedelta(days=2), "In 2 days"),
])
def test_format_reminder_time(delta, expected):
    assert format_reminder_time(NOW + delta, NOW) == expected


def test_format_reminder_time_far_future_shows_date():
    assert format_reminder_time(NOW + timedelta(days=30), NOW) == "2026-04-09"

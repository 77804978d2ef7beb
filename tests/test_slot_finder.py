from datetime import date, datetime, timedelta

from models import LearnerPreferences
from slot_finder import (
    at_hour,
    find_available_time_slot,
    find_slot_in_day,
    move_fields,
    overlaps,
    round_up_to_step,
)

from conftest import EXAM, NOW

WEDNESDAY = date(2025, 3, 12)


def _window(day, hour, minutes=60):
    start = at_hour(day, hour)
    return start, start + timedelta(minutes=minutes)


def test_at_hour_24_is_next_midnight():
    assert at_hour(WEDNESDAY, 24) == datetime(2025, 3, 13, 0, 0)


def test_round_up_to_quarter_hour():
    assert round_up_to_step(datetime(2025, 3, 12, 10, 1)) == datetime(2025, 3, 12, 10, 15)
    assert round_up_to_step(datetime(2025, 3, 12, 10, 30)) == datetime(2025, 3, 12, 10, 30)
    assert round_up_to_step(datetime(2025, 3, 12, 10, 44, 30)) == datetime(2025, 3, 12, 10, 45)


def test_overlap_is_half_open():
    assert overlaps(_window(WEDNESDAY, 9), _window(WEDNESDAY, 9, 30))
    assert not overlaps(_window(WEDNESDAY, 9), _window(WEDNESDAY, 10))


def test_empty_day_starts_at_start_hour():
    assert find_slot_in_day(WEDNESDAY, 60, [], 9, 17) == _window(WEDNESDAY, 9)


def test_slot_fits_between_busy_windows():
    busy = [_window(WEDNESDAY, 9), _window(WEDNESDAY, 11)]
    assert find_slot_in_day(WEDNESDAY, 60, busy, 9, 17) == _window(WEDNESDAY, 10)


def test_gap_too_small_is_skipped():
    busy = [_window(WEDNESDAY, 9), (at_hour(WEDNESDAY, 10) + timedelta(minutes=30), at_hour(WEDNESDAY, 11) + timedelta(minutes=30))]
    # 10:00-10:30 is free but too short for an hour
    assert find_slot_in_day(WEDNESDAY, 60, busy, 9, 17) == (datetime(2025, 3, 12, 11, 30), datetime(2025, 3, 12, 12, 30))


def test_full_day_has_no_slot():
    busy = [(at_hour(WEDNESDAY, 9), at_hour(WEDNESDAY, 17))]
    assert find_slot_in_day(WEDNESDAY, 30, busy, 9, 17) is None


def test_slot_must_end_by_end_hour():
    busy = [(at_hour(WEDNESDAY, 9), at_hour(WEDNESDAY, 16) + timedelta(minutes=30))]
    assert find_slot_in_day(WEDNESDAY, 60, busy, 9, 17) is None


def test_not_before_pushes_cursor():
    not_before = datetime(2025, 3, 12, 13, 5)
    assert find_slot_in_day(WEDNESDAY, 30, [], 9, 17, not_before) == (
        datetime(2025, 3, 12, 13, 15),
        datetime(2025, 3, 12, 13, 45),
    )


def test_search_skips_unavailable_weekdays():
    prefs = LearnerPreferences(available_days=["Friday"])
    slot = find_available_time_slot(60, [], prefs, WEDNESDAY, EXAM)
    assert slot == _window(date(2025, 3, 14), 9)


def test_search_stops_before_exam():
    prefs = LearnerPreferences(available_days=["Monday"])
    assert find_available_time_slot(60, [], prefs, date(2025, 4, 15), EXAM) is None


def test_move_fields_records_original_once(make_task):
    task = make_task("anatomy", NOW)
    new_start = NOW + timedelta(days=1)
    fields = move_fields(task, new_start, new_start + timedelta(hours=1))
    assert fields["original_start_time"] == NOW
    assert fields["original_end_time"] == NOW + timedelta(hours=1)

    task.original_start_time = NOW - timedelta(days=3)
    task.original_end_time = NOW - timedelta(days=3) + timedelta(hours=1)
    fields = move_fields(task, new_start, new_start + timedelta(hours=1))
    assert set(fields) == {"start_time", "end_time"}

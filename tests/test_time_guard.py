from datetime import datetime, timedelta

from examforms.schemas import ExamSettings
from examforms.services.time_guard import credited_seconds, time_status

START = datetime(2026, 3, 1, 9, 0, 0)


def test_no_time_limit_never_expires():
    status = time_status(ExamSettings(), START, START + timedelta(days=3))
    assert status.expired is False
    assert status.remaining_seconds is None
    assert status.elapsed_seconds == 3 * 24 * 3600


def test_remaining_time_counts_down():
    status = time_status(ExamSettings(time_limit_minutes=10), START, START + timedelta(minutes=4))
    assert status.expired is False
    assert status.remaining_seconds == 360
    assert status.limit_seconds == 600


def test_expires_exactly_at_the_limit():
    status = time_status(ExamSettings(time_limit_minutes=10), START, START + timedelta(minutes=10))
    assert status.expired is True
    assert status.remaining_seconds == 0


def test_remaining_never_negative_after_deadline():
    status = time_status(ExamSettings(time_limit_minutes=10), START, START + timedelta(minutes=25))
    assert status.expired is True
    assert status.remaining_seconds == 0


def test_credited_time_is_clamped_to_the_limit():
    settings = ExamSettings(time_limit_minutes=10)
    assert credited_seconds(settings, START, START + timedelta(minutes=15)) == 600
    assert credited_seconds(settings, START, START + timedelta(minutes=7)) == 420


def test_credited_time_without_limit_is_elapsed():
    assert credited_seconds(ExamSettings(), START, START + timedelta(minutes=15)) == 900


def test_clock_going_backwards_counts_as_zero_elapsed():
    status = time_status(ExamSettings(time_limit_minutes=1), START, START - timedelta(seconds=30))
    assert status.elapsed_seconds == 0
    assert status.expired is False

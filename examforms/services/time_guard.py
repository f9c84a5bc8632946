"""Time-limit checks for a session."""

from datetime import datetime

from examforms.schemas import ExamSettings, TimeStatus


def time_status(settings: ExamSettings, started_at: datetime, now: datetime) -> TimeStatus:
    """Elapsed and remaining time of an attempt started at ``started_at``.

    Without a time limit the attempt never expires and ``remaining_seconds``
    is None. Elapsed time is never negative, even if the clock went back.
    """
    elapsed = max(0, int((now - started_at).total_seconds()))
    if not settings.time_limit_minutes:
        return TimeStatus(elapsed_seconds=elapsed)

    limit = settings.time_limit_minutes * 60
    remaining = limit - elapsed
    return TimeStatus(
        elapsed_seconds=elapsed,
        remaining_seconds=max(0, remaining),
        limit_seconds=limit,
        expired=remaining <= 0,
    )


def credited_seconds(settings: ExamSettings, started_at: datetime, finished_at: datetime) -> int:
    """Time to record at finalization: elapsed time, capped at the limit."""
    status = time_status(settings, started_at, finished_at)
    if status.limit_seconds is None:
        return status.elapsed_seconds
    return min(status.elapsed_seconds, status.limit_seconds)

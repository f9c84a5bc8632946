"""Anti-cheat violation log and threshold check."""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import update
from sqlmodel import Session

from examforms.errors import SessionClosed, ValidationError
from examforms.models import SESSION_IN_PROGRESS, FormSession, ViolationLog
from examforms.schemas import AntiCheatSettings, ViolationOutcome

logger = logging.getLogger(__name__)

MAX_EVENT_TYPE_LENGTH = 50


def clean_event_type(event_type: Optional[str]) -> str:
    """Validate a client-reported event type.

    Any event type is accepted, including ones the form did not ask the
    client to watch for.

    Raises:
        ValidationError: If the event type is empty or too long.
    """
    cleaned = (event_type or "").strip().lower()
    if not cleaned:
        raise ValidationError("event_type is required")
    if len(cleaned) > MAX_EVENT_TYPE_LENGTH:
        raise ValidationError(f"event_type must be at most {MAX_EVENT_TYPE_LENGTH} characters")
    return cleaned


def assess(count: int, rules: AntiCheatSettings) -> ViolationOutcome:
    """Decide whether ``count`` total violations breach the form threshold.

    Every event type counts toward the same total. A threshold of 0 disables
    forced termination.
    """
    limit = rules.max_violations
    return ViolationOutcome(
        violations_count=count,
        max_violations=limit,
        breached=limit > 0 and count >= limit,
        warning=limit > 0 and count == limit - 1,
    )


def record_violation(
    session: Session,
    form_session: FormSession,
    event_type: str,
    event_data: Optional[dict],
    rules: AntiCheatSettings,
    now: datetime,
) -> ViolationOutcome:
    """Append a violation and bump the cached counter, without committing.

    The caller must hold the per-session lock and owns the transaction, so
    the append, the counter and any resulting expiry commit or roll back
    together. The counter update only applies while the session is still in
    progress, so a report racing a finalization is rejected rather than
    counted against a closed session.

    Raises:
        SessionClosed: If the session left in_progress before the write.
    """
    session.add(
        ViolationLog(
            session_id=form_session.id,
            event_type=event_type,
            event_data=event_data,
            occurred_at=now,
        )
    )
    result = session.exec(
        update(FormSession)
        .where(FormSession.id == form_session.id)
        .where(FormSession.status == SESSION_IN_PROGRESS)
        .values(
            violations_count=FormSession.violations_count + 1,
            version=FormSession.version + 1,
        )
    )
    if result.rowcount != 1:
        session.rollback()
        session.refresh(form_session)
        raise SessionClosed(
            f"Session {form_session.id} is {form_session.status}", status=form_session.status
        )
    session.flush()
    session.refresh(form_session)

    outcome = assess(form_session.violations_count, rules)
    logger.info(
        "Violation %s on session %s (%d/%s)",
        event_type,
        form_session.id,
        outcome.violations_count,
        outcome.max_violations or "unlimited",
    )
    return outcome

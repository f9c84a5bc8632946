"""Respondent session lifecycle: start, answer, violations, poll, submit.

SessionManager is the only code that changes a session's status. Every
operation on an existing session runs under that session's lock, and the
transition out of in_progress is a version-checked UPDATE, so only the first
caller to see the session open can finalize it. Expiry is evaluated lazily on
the next poll, answer, violation report or submit.
"""

import logging
import random
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Iterable, Iterator, List, Optional, Tuple

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlmodel import Session, select

from examforms.auth_utils import verify_access_password
from examforms.config import get_settings
from examforms.email_validator import is_valid_email, normalize_email
from examforms.errors import (
    AccessDenied,
    FormNotAcceptingResponses,
    NotFound,
    PersistenceTransient,
    SessionClosed,
    ValidationError,
)
from examforms.models import (
    SESSION_EXPIRED,
    SESSION_IN_PROGRESS,
    SESSION_SUBMITTED,
    TERMINAL_STATUSES,
    FormSession,
    Response,
)
from examforms.schemas import FormSnapshot
from examforms.services.answer_evaluator import validate_answer_shape
from examforms.services.form_provider import (
    ensure_accepting_responses,
    load_form_snapshot,
    questions_for_respondent,
)
from examforms.services.locks import SessionLockRegistry, session_locks
from examforms.services.scoring import score_answers
from examforms.services.time_guard import credited_seconds, time_status
from examforms.services.violation_tracker import assess, clean_event_type, record_violation
from examforms.utils import calculate_grade, format_duration, sanitize_plain_text, utc_now

logger = logging.getLogger(__name__)


class SessionManager:
    def __init__(
        self,
        session: Session,
        notifier=None,
        clock: Callable[[], datetime] = utc_now,
        locks: SessionLockRegistry = session_locks,
        lock_timeout: Optional[float] = None,
        rng: Optional[random.Random] = None,
    ):
        self.db = session
        self.notifier = notifier
        self.clock = clock
        self.locks = locks
        self.lock_timeout = lock_timeout if lock_timeout is not None else get_settings().lock_timeout_seconds
        self.rng = rng or random.Random()
        self._pending_notifications: List[Tuple[FormSnapshot, FormSession]] = []

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    @contextmanager
    def _persisting(self) -> Iterator[None]:
        """Turn storage timeouts and conflicts into a retryable error."""
        try:
            yield
        except (OperationalError, IntegrityError) as e:
            self.db.rollback()
            logger.warning("Storage error, surfacing as transient: %s", e)
            raise PersistenceTransient("Storage is busy, retry the request") from e

    @contextmanager
    def _exclusive(self, session_id: str) -> Iterator[None]:
        try:
            with self.locks.hold(session_id, self.lock_timeout):
                with self._persisting():
                    yield
        finally:
            # notifications go out after the lock is released and the transition committed
            self._flush_notifications()

    def _flush_notifications(self) -> None:
        pending, self._pending_notifications = self._pending_notifications, []
        if self.notifier is None:
            return
        for form, form_session in pending:
            try:
                self.notifier.session_finalized(form, form_session)
            except Exception:
                # delivery must never undo or block a transition
                logger.exception("Notification failed for session %s", form_session.id)

    def _load(self, session_id: str) -> FormSession:
        form_session = self.db.get(
            FormSession, session_id, populate_existing=True, with_for_update=True
        )
        if not form_session:
            raise NotFound(f"Session {session_id} does not exist")
        return form_session

    def _touch(self, form_session: FormSession) -> None:
        """Bump the version of an open session inside the current transaction.

        Raises:
            SessionClosed: If the session was finalized by another writer.
        """
        result = self.db.exec(
            update(FormSession)
            .where(FormSession.id == form_session.id)
            .where(FormSession.status == SESSION_IN_PROGRESS)
            .values(version=FormSession.version + 1)
        )
        if result.rowcount != 1:
            self.db.rollback()
            self.db.refresh(form_session)
            raise SessionClosed(
                f"Session {form_session.id} is {form_session.status}", status=form_session.status
            )

    def _ensure_open(self, form_session: FormSession, form: FormSnapshot) -> None:
        """Reject mutations on closed sessions, expiring a lapsed one first.

        Raises:
            SessionClosed: If the session is terminal or must be force-closed.
        """
        if form_session.status in TERMINAL_STATUSES:
            raise SessionClosed(
                f"Session {form_session.id} is {form_session.status}", status=form_session.status
            )
        reason = self._force_close_reason(form_session, form)
        if reason:
            self._finalize(form_session, form, SESSION_EXPIRED, reason=reason)
            raise SessionClosed(f"Session {form_session.id} expired: {reason}", status=form_session.status)

    def _force_close_reason(self, form_session: FormSession, form: FormSnapshot) -> Optional[str]:
        """Why an in-progress session has to be expired now, or None.

        The stored counter is checked too, so a breach whose expiry never
        committed, or a threshold lowered mid-attempt, still closes the session.
        """
        if time_status(form.settings, form_session.started_at, self.clock()).expired:
            return "time limit reached"
        if assess(form_session.violations_count, form.settings.anti_cheat).breached:
            return "violation limit reached"
        return None

    def _finalize(self, form_session: FormSession, form: FormSnapshot, status: str, reason: str) -> bool:
        """Score and close the session. Returns False if another caller closed it first."""
        now = self.clock()
        responses = self.db.exec(
            select(Response).where(Response.session_id == form_session.id)
        ).all()
        result = score_answers(form, {r.question_id: r.answer for r in responses})

        swapped = self.db.exec(
            update(FormSession)
            .where(FormSession.id == form_session.id)
            .where(FormSession.status == SESSION_IN_PROGRESS)
            .where(FormSession.version == form_session.version)
            .values(
                status=status,
                submitted_at=now,
                time_spent_seconds=credited_seconds(form.settings, form_session.started_at, now),
                score=result.score,
                earned_points=result.earned_points,
                total_points=result.total_points,
                passed=result.passed,
                version=FormSession.version + 1,
            )
        )
        if swapped.rowcount != 1:
            self.db.rollback()
            self.db.refresh(form_session)
            logger.warning(
                "Session %s already finalized as %s; not rescoring", form_session.id, form_session.status
            )
            return False

        evaluations = {e.question_id: e for e in result.evaluations}
        for r in responses:
            ev = evaluations.get(r.question_id)
            question = form.question(r.question_id)
            # questions removed from the form mid-attempt stay ungraded
            r.is_correct = ev.is_correct if ev else None
            r.points_earned = ev.points_earned if ev else 0
            r.points_possible = ev.points_possible if ev else 0
            r.question_type = question.type.value if question else None
            self.db.add(r)
        self.db.commit()
        self.db.refresh(form_session)

        logger.info(
            "Session %s %s (%s), score=%s, time_spent=%ss",
            form_session.id,
            status,
            reason,
            form_session.score,
            form_session.time_spent_seconds,
        )
        self._pending_notifications.append((form, form_session))
        return True

    def _upsert_response(self, form_session: FormSession, form: FormSnapshot, question_id: int, answer: Any) -> Response:
        question = form.question(question_id)
        if question is None:
            raise NotFound(f"Question {question_id} is not part of form {form.id}")
        validate_answer_shape(question, answer)

        existing = self.db.exec(
            select(Response).where(
                (Response.session_id == form_session.id) & (Response.question_id == question_id)
            )
        ).first()
        if existing:
            existing.answer = answer
            existing.saved_at = self.clock()
            self.db.add(existing)
            return existing
        new = Response(
            session_id=form_session.id,
            question_id=question_id,
            answer=answer,
            saved_at=self.clock(),
        )
        self.db.add(new)
        return new

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def get(self, session_id: str) -> FormSession:
        form_session = self.db.get(FormSession, session_id, populate_existing=True)
        if not form_session:
            raise NotFound(f"Session {session_id} does not exist")
        return form_session

    def start(
        self,
        form_id: int,
        respondent_name: Optional[str] = None,
        respondent_email: Optional[str] = None,
        password: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> dict:
        """Open a new attempt at a published form.

        Returns a dict with the new ``session``, the form ``snapshot`` and the
        ``questions`` payload for the respondent.

        Raises:
            NotFound: If the form does not exist.
            FormNotAcceptingResponses: If the form is closed, outside its window,
                or the respondent already submitted a single-response form.
            AccessDenied: If the form is password protected and the password is wrong.
            ValidationError: If the respondent email is malformed.
        """
        now = self.clock()
        form = load_form_snapshot(self.db, form_id)
        ensure_accepting_responses(form, now)

        if form.access.password_hash and not verify_access_password(password, form.access.password_hash):
            raise AccessDenied("Invalid form password")

        email = None
        if respondent_email:
            valid, message = is_valid_email(respondent_email)
            if not valid:
                raise ValidationError(message)
            email = normalize_email(respondent_email)

        if form.access.limit_one_response and (email or ip_address):
            stmt = select(FormSession).where(
                (FormSession.form_id == form.id) & (FormSession.status == SESSION_SUBMITTED)
            )
            if email:
                stmt = stmt.where(FormSession.respondent_email == email)
            else:
                stmt = stmt.where(FormSession.ip_address == ip_address)
            if self.db.exec(stmt).first():
                raise FormNotAcceptingResponses("You have already submitted this form")

        form_session = FormSession(
            form_id=form.id,
            respondent_name=sanitize_plain_text(respondent_name),
            respondent_email=email,
            status=SESSION_IN_PROGRESS,
            started_at=now,
            ip_address=ip_address,
            user_agent=sanitize_plain_text(user_agent, max_length=512),
        )
        with self._persisting():
            self.db.add(form_session)
            self.db.commit()
            self.db.refresh(form_session)

        logger.info("Session %s started on form %s", form_session.id, form.id)
        return {
            "session": form_session,
            "snapshot": form,
            "questions": questions_for_respondent(form, self.rng),
        }

    def record_answer(self, session_id: str, question_id: int, answer: Any) -> Response:
        """Save (or replace) the answer to one question of an open session.

        Raises:
            NotFound: Unknown session or question.
            SessionClosed: The session is terminal or just ran out of time.
            ValidationError: The answer does not fit the question type.
        """
        return self.record_answers(session_id, [(question_id, answer)])[0]

    def record_answers(self, session_id: str, answers: Iterable[Tuple[int, Any]]) -> List[Response]:
        """Upsert several answers atomically; either all are saved or none."""
        answers = list(answers)
        with self._exclusive(session_id):
            form_session = self._load(session_id)
            form = load_form_snapshot(self.db, form_session.form_id)
            self._ensure_open(form_session, form)

            try:
                saved = [self._upsert_response(form_session, form, qid, a) for qid, a in answers]
            except (NotFound, ValidationError):
                self.db.rollback()
                raise
            self._touch(form_session)
            self.db.commit()
            for r in saved:
                self.db.refresh(r)
            return saved

    def report_violation(self, session_id: str, event_type: str, event_data: Optional[dict] = None) -> dict:
        """Log an anti-cheat event and force-close the session on breach.

        Returns the current count, the threshold, whether a warning is due and
        whether this report closed the session.

        Raises:
            NotFound: Unknown session.
            SessionClosed: The session is terminal or just ran out of time.
            ValidationError: Empty or oversized event type.
        """
        event_type = clean_event_type(event_type)
        with self._exclusive(session_id):
            form_session = self._load(session_id)
            form = load_form_snapshot(self.db, form_session.form_id)
            self._ensure_open(form_session, form)

            outcome = record_violation(
                self.db,
                form_session,
                event_type,
                event_data,
                form.settings.anti_cheat,
                self.clock(),
            )
            if outcome.breached:
                logger.warning(
                    "Session %s reached %d violations, expiring", session_id, outcome.violations_count
                )
                # the violation commits together with the expiry, or not at all
                if not self._finalize(form_session, form, SESSION_EXPIRED, reason="violation limit reached"):
                    raise SessionClosed(
                        f"Session {form_session.id} is {form_session.status}", status=form_session.status
                    )
            else:
                self.db.commit()
                self.db.refresh(form_session)

            return {
                "session_id": form_session.id,
                "violations_count": outcome.violations_count,
                "max_violations": outcome.max_violations,
                "warning": outcome.warning,
                "force_closed": outcome.breached,
                "status": form_session.status,
            }

    def poll(self, session_id: str) -> dict:
        """Heartbeat: report remaining time, expiring the session if it must close.

        Terminal sessions are reported as they are; polling them is not an error.
        """
        with self._exclusive(session_id):
            form_session = self._load(session_id)
            form = load_form_snapshot(self.db, form_session.form_id)
            if form_session.status == SESSION_IN_PROGRESS:
                reason = self._force_close_reason(form_session, form)
                if reason:
                    self._finalize(form_session, form, SESSION_EXPIRED, reason=reason)
                else:
                    status = time_status(form.settings, form_session.started_at, self.clock())
                    return {
                        "session_id": form_session.id,
                        "status": form_session.status,
                        "remaining_seconds": status.remaining_seconds,
                        "time_spent_seconds": status.elapsed_seconds,
                        "violations_count": form_session.violations_count,
                    }
            return {
                "session_id": form_session.id,
                "status": form_session.status,
                "remaining_seconds": 0,
                "time_spent_seconds": form_session.time_spent_seconds,
                "violations_count": form_session.violations_count,
            }

    def submit(self, session_id: str, answers: Optional[Iterable[Tuple[int, Any]]] = None) -> dict:
        """Finalize the attempt as submitted and score it.

        Submitting an already terminal session returns its stored result, so
        network retries are harmless. Answers sent along with a submission that
        arrives after the time limit are not saved.

        Raises:
            NotFound: Unknown session, or an answer for a question not on the form.
            ValidationError: A supplied answer does not fit its question type.
        """
        with self._exclusive(session_id):
            form_session = self._load(session_id)
            form = load_form_snapshot(self.db, form_session.form_id)
            if form_session.status == SESSION_IN_PROGRESS:
                answers = list(answers or [])
                lapsed = time_status(form.settings, form_session.started_at, self.clock()).expired
                if answers and lapsed:
                    logger.info("Ignoring %d answers sent after the time limit on session %s", len(answers), session_id)
                elif answers:
                    try:
                        for qid, a in answers:
                            self._upsert_response(form_session, form, qid, a)
                    except (NotFound, ValidationError):
                        self.db.rollback()
                        raise
                    self.db.flush()
                self._finalize(form_session, form, SESSION_SUBMITTED, reason="submitted by respondent")
            return submission_payload(form_session, form)

    def results(self, session_id: str) -> dict:
        """Detailed results of a finished attempt, honouring ``show_score_after``.

        Raises:
            NotFound: Unknown session.
            ValidationError: The session is still in progress.
        """
        form_session = self.get(session_id)
        if form_session.status == SESSION_IN_PROGRESS:
            raise ValidationError(f"Session {session_id} is still in progress")
        form = load_form_snapshot(self.db, form_session.form_id)

        results = {
            "session_id": form_session.id,
            "status": form_session.status,
            "started_at": form_session.started_at,
            "submitted_at": form_session.submitted_at,
            "time_spent_seconds": form_session.time_spent_seconds,
            "time_spent_formatted": format_duration(form_session.time_spent_seconds),
            "violations_count": form_session.violations_count,
        }
        if not form.settings.show_score_after:
            return results

        results.update(
            {
                "score": form_session.score,
                "passed": form_session.passed,
                "passing_score": form.settings.passing_score,
                "earned_points": form_session.earned_points,
                "total_points": form_session.total_points,
                "grade": calculate_grade(form_session.score),
            }
        )
        responses = self.db.exec(
            select(Response).where(Response.session_id == form_session.id).order_by(Response.question_id)
        ).all()
        breakdown = []
        for r in responses:
            # grading columns were frozen at finalization; only the explanation is read live
            question = form.question(r.question_id) if r.question_id is not None else None
            breakdown.append(
                {
                    "question_id": r.question_id,
                    "type": r.question_type,
                    "answer": r.answer,
                    "is_correct": r.is_correct,
                    "points_possible": r.points_possible or 0,
                    "points_earned": r.points_earned,
                    "explanation": question.explanation if question and r.is_correct is False else None,
                }
            )
        results["questions"] = breakdown
        return results


def submission_payload(form_session: FormSession, form: FormSnapshot) -> dict:
    """What a respondent sees after submitting; the score only when the form allows it."""
    payload = {
        "session_id": form_session.id,
        "status": form_session.status,
        "message": form.confirmation_message,
        "submitted_at": form_session.submitted_at,
        "time_spent_seconds": form_session.time_spent_seconds,
    }
    if form.settings.show_score_after:
        payload["score"] = form_session.score
        payload["passed"] = form_session.passed
    return payload


def violation_status(form_session: FormSession, form: FormSnapshot) -> dict:
    """Anti-cheat rules and current standing, as shown to the client at start."""
    rules = form.settings.anti_cheat
    outcome = assess(form_session.violations_count, rules)
    return {
        "violations_count": outcome.violations_count,
        "max_violations": outcome.max_violations,
        "warning": outcome.warning,
        "rules": {
            "fullscreen_required": rules.fullscreen_required,
            "block_copy_paste": rules.block_copy_paste,
            "detect_tab_switch": rules.detect_tab_switch,
        },
    }

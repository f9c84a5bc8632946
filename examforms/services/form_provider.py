"""Read-only access to forms and questions for the session engine.

Each call builds a fresh immutable snapshot, so a question edited during an
attempt is graded against whatever it looks like at evaluation time.
"""

import logging
import random
from datetime import datetime, timezone
from typing import List, Optional

from sqlmodel import Session, select

from examforms.errors import FormNotAcceptingResponses, NotFound
from examforms.models import Form, Option, Question
from examforms.schemas import (
    CHOICE_TYPES,
    AccessSettings,
    AntiCheatSettings,
    ExamSettings,
    FormSnapshot,
    NotificationSettings,
    OptionSnapshot,
    QuestionSnapshot,
    normalize_question_type,
)

logger = logging.getLogger(__name__)


def _parse_datetime(value) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        logger.warning("Ignoring unparseable access window value %r", value)
        return None
    if parsed.tzinfo is not None:
        # stored datetimes are naive UTC
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def build_exam_settings(raw: Optional[dict]) -> ExamSettings:
    """Read exam configuration from a form settings bundle.

    ``exam_mode`` keys win; ``general`` holds the same keys for plain forms.
    """
    raw = raw or {}
    general = raw.get("general") or {}
    exam_mode = raw.get("exam_mode") or {}
    anti_cheat = exam_mode.get("anti_cheat") or {}

    def pick(key, default):
        if exam_mode.get(key) is not None:
            return exam_mode[key]
        if general.get(key) is not None:
            return general[key]
        return default

    return ExamSettings(
        time_limit_minutes=exam_mode.get("time_limit_minutes") or None,
        shuffle_options=bool(pick("shuffle_options", False)),
        shuffle_questions=bool(general.get("shuffle_questions", False)),
        show_score_after=bool(pick("show_score_after", True)),
        passing_score=pick("passing_score", None),
        anti_cheat=AntiCheatSettings(
            max_violations=anti_cheat.get("max_violations") or 0,
            block_copy_paste=bool(anti_cheat.get("block_copy_paste", False)),
            detect_tab_switch=bool(anti_cheat.get("detect_tab_switch", False)),
            fullscreen_required=bool(anti_cheat.get("fullscreen_required", False)),
        ),
    )


def _build_access(raw: Optional[dict]) -> AccessSettings:
    raw = raw or {}
    access = raw.get("access") or {}
    general = raw.get("general") or {}
    return AccessSettings(
        password_hash=access.get("password_hash") or None,
        start_at=_parse_datetime(access.get("start_at")),
        end_at=_parse_datetime(access.get("end_at")),
        limit_one_response=bool(general.get("limit_one_response", False)),
    )


def _build_notifications(raw: Optional[dict]) -> NotificationSettings:
    notifications = (raw or {}).get("notifications") or {}
    return NotificationSettings(
        notify_on_submission=bool(notifications.get("notify_on_submission", True)),
        send_confirmation=bool(notifications.get("send_confirmation", False)),
    )


def _question_snapshots(session: Session, form_id: int) -> List[QuestionSnapshot]:
    questions = session.exec(
        select(Question)
        .where(Question.form_id == form_id)
        .order_by(Question.sort_order, Question.id)
    ).all()
    if not questions:
        return []

    options = session.exec(
        select(Option)
        .where(Option.question_id.in_([q.id for q in questions]))
        .order_by(Option.sort_order, Option.id)
    ).all()
    options_by_question = {}
    for o in options:
        options_by_question.setdefault(o.question_id, []).append(
            OptionSnapshot(id=o.id, content=o.content, is_correct=o.is_correct, sort_order=o.sort_order)
        )

    snapshots = []
    for q in questions:
        try:
            qtype = normalize_question_type(q.type)
        except ValueError:
            logger.warning("Skipping question %s with unknown type %r", q.id, q.type)
            continue
        snapshots.append(
            QuestionSnapshot(
                id=q.id,
                type=qtype,
                content=q.content,
                description=q.description,
                is_required=q.is_required,
                points=max(0, q.points or 0),
                correct_answer=q.correct_answer,
                explanation=q.explanation,
                sort_order=q.sort_order,
                options=tuple(options_by_question.get(q.id, [])),
            )
        )
    return snapshots


def load_form_snapshot(session: Session, form_id: int) -> FormSnapshot:
    """Fetch a form with its settings and questions.

    Raises:
        NotFound: If the form does not exist.
    """
    form = session.get(Form, form_id)
    if not form:
        raise NotFound(f"Form with id={form_id} does not exist")

    raw = form.settings or {}
    general = raw.get("general") or {}
    return FormSnapshot(
        id=form.id,
        title=form.title,
        status=form.status,
        creator_email=form.creator_email,
        confirmation_message=general.get("confirmation_message") or "Thank you for your submission!",
        settings=build_exam_settings(raw),
        access=_build_access(raw),
        notifications=_build_notifications(raw),
        questions=tuple(_question_snapshots(session, form_id)),
    )


def ensure_accepting_responses(form: FormSnapshot, now: datetime) -> None:
    """Check the form is open for new attempts at ``now``.

    Raises:
        FormNotAcceptingResponses: If the form is unpublished or outside its access window.
    """
    if form.status != "published":
        raise FormNotAcceptingResponses(f"Form {form.id} is not accepting responses")
    if form.access.start_at and now < form.access.start_at:
        raise FormNotAcceptingResponses(f"Form not yet available, starts at {form.access.start_at.isoformat()}")
    if form.access.end_at and now > form.access.end_at:
        raise FormNotAcceptingResponses(f"Form has ended at {form.access.end_at.isoformat()}")


def questions_for_respondent(form: FormSnapshot, rng: Optional[random.Random] = None) -> List[dict]:
    """Question payload shown to a respondent, shuffled per the form settings.

    Correct answers, correctness flags and explanations are never included.
    """
    rng = rng or random.Random()
    questions = list(form.questions)
    if form.settings.shuffle_questions:
        rng.shuffle(questions)

    payload = []
    for q in questions:
        options = list(q.options)
        if form.settings.shuffle_options and q.type in CHOICE_TYPES:
            rng.shuffle(options)
        payload.append(
            {
                "id": q.id,
                "type": q.type.value,
                "content": q.content,
                "description": q.description,
                "is_required": q.is_required,
                "points": q.points,
                "sort_order": q.sort_order,
                "options": [{"id": o.id, "content": o.content} for o in options],
            }
        )
    return payload

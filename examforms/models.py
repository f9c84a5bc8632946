"""SQLModel models for forms, respondent sessions, responses and violation logs."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional
from uuid import uuid4

from sqlalchemy import JSON, Column, UniqueConstraint
from sqlmodel import Field, SQLModel

from examforms.utils import utc_now

SESSION_IN_PROGRESS = "in_progress"
SESSION_SUBMITTED = "submitted"
SESSION_EXPIRED = "expired"
TERMINAL_STATUSES = (SESSION_SUBMITTED, SESSION_EXPIRED)


# ===================== FORM / QUESTION MODELS (read-only to the engine) =====================


class Form(SQLModel, table=True):
    """A survey or exam. Authored elsewhere; the session engine only reads it."""

    id: Optional[int] = Field(default=None, primary_key=True)
    title: str
    description: Optional[str] = None
    status: str = Field(default="draft")  # draft | published | closed
    # Nested settings bundle: general / access / exam_mode / notifications
    settings: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    creator_email: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class Question(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    form_id: int = Field(foreign_key="form.id", ondelete="CASCADE")
    type: str  # see schemas.QuestionType; legacy aliases are normalized on read
    content: str
    description: Optional[str] = None
    is_required: bool = Field(default=False)
    # option id for multiple_choice/dropdown, literal string for short_text/long_text
    correct_answer: Optional[Any] = Field(default=None, sa_column=Column(JSON))
    explanation: Optional[str] = None
    points: int = Field(default=0)
    sort_order: int = Field(default=0)


class Option(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    question_id: Optional[int] = Field(default=None, foreign_key="question.id", ondelete="SET NULL")
    content: str
    is_correct: bool = Field(default=False)
    sort_order: int = Field(default=0)


# ===================== RESPONDENT SESSION MODELS =====================


class FormSession(SQLModel, table=True):
    """One respondent attempt at a form.

    ``status`` only ever moves from in_progress to submitted or expired, and
    ``submitted_at`` is set exactly when it does. ``version`` is bumped on
    every write so a transition can be applied as a compare-and-swap.
    """

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    form_id: int = Field(foreign_key="form.id", ondelete="CASCADE", index=True)
    respondent_name: Optional[str] = None
    respondent_email: Optional[str] = Field(default=None, index=True)
    status: str = Field(default=SESSION_IN_PROGRESS, index=True)
    started_at: datetime = Field(default_factory=utc_now)
    submitted_at: Optional[datetime] = None
    time_spent_seconds: Optional[int] = None
    score: Optional[float] = None  # percentage 0-100, null for ungraded forms
    earned_points: Optional[float] = None
    total_points: Optional[int] = None
    passed: Optional[bool] = None
    violations_count: int = Field(default=0)
    version: int = Field(default=0)
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


class Response(SQLModel, table=True):
    """The answer to one question within a session.

    Owned by its session. Deleting the question keeps the row (with a null
    ``question_id``) so graded results stay stable for finished sessions.
    """

    __table_args__ = (
        UniqueConstraint("session_id", "question_id", name="uq_response_session_question"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    session_id: str = Field(foreign_key="formsession.id", ondelete="CASCADE", index=True)
    question_id: Optional[int] = Field(default=None, foreign_key="question.id", ondelete="SET NULL")
    answer: Optional[Any] = Field(default=None, sa_column=Column(JSON))
    is_correct: Optional[bool] = None
    points_earned: float = Field(default=0)
    # copied from the question at finalization
    points_possible: Optional[int] = None
    question_type: Optional[str] = None
    saved_at: datetime = Field(default_factory=utc_now)


class ViolationLog(SQLModel, table=True):
    """Append-only log of client-reported anti-cheat events."""

    id: Optional[int] = Field(default=None, primary_key=True)
    session_id: str = Field(foreign_key="formsession.id", ondelete="CASCADE", index=True)
    event_type: str = Field(max_length=50)  # e.g. tab_switch, copy_attempt, fullscreen_exit
    event_data: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    occurred_at: datetime = Field(default_factory=utc_now)

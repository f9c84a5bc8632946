"""
Data Schemas for Exam Forms
Immutable pydantic snapshots of a form as the session engine sees it.
"""
from datetime import datetime
from enum import Enum
from typing import Any, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


class QuestionType(str, Enum):
    """Closed set of question types a form may contain."""
    SHORT_TEXT = "short_text"
    LONG_TEXT = "long_text"
    MULTIPLE_CHOICE = "multiple_choice"
    CHECKBOXES = "checkboxes"
    DROPDOWN = "dropdown"
    RATING = "rating"
    SCALE = "scale"
    DATE = "date"
    TIME = "time"
    FILE_UPLOAD = "file_upload"
    SECTION = "section"
    IMAGE = "image"
    VIDEO = "video"
    MATRIX = "matrix"


# Legacy spellings still found in stored questions
QUESTION_TYPE_ALIASES = {
    "checkbox": QuestionType.CHECKBOXES,
    "linear_scale": QuestionType.SCALE,
}

CHOICE_TYPES = frozenset(
    {QuestionType.MULTIPLE_CHOICE, QuestionType.CHECKBOXES, QuestionType.DROPDOWN}
)


def normalize_question_type(raw: str) -> QuestionType:
    """Map a stored type string onto QuestionType.

    Raises:
        ValueError: If the type is not a known type or alias.
    """
    key = (raw or "").strip().lower()
    if key in QUESTION_TYPE_ALIASES:
        return QUESTION_TYPE_ALIASES[key]
    return QuestionType(key)


class OptionSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    content: str
    is_correct: bool = False
    sort_order: int = 0


class QuestionSnapshot(BaseModel):
    """A question as fetched at evaluation time."""
    model_config = ConfigDict(frozen=True)

    id: int
    type: QuestionType
    content: str = ""
    description: Optional[str] = None
    is_required: bool = False
    points: int = Field(0, ge=0)
    correct_answer: Optional[Any] = None
    explanation: Optional[str] = None
    sort_order: int = 0
    options: Tuple[OptionSnapshot, ...] = ()

    def option_ids(self) -> frozenset:
        return frozenset(str(o.id) for o in self.options)


class AntiCheatSettings(BaseModel):
    """Which events the client should report, and the forced-termination threshold.

    The booleans only tell the client what to watch; the server accepts and
    counts every reported event regardless.
    """
    model_config = ConfigDict(frozen=True)

    max_violations: int = Field(0, ge=0)
    block_copy_paste: bool = False
    detect_tab_switch: bool = False
    fullscreen_required: bool = False


class ExamSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    time_limit_minutes: Optional[int] = Field(None, gt=0)
    shuffle_options: bool = False
    shuffle_questions: bool = False
    show_score_after: bool = True
    passing_score: Optional[float] = Field(None, ge=0, le=100)
    anti_cheat: AntiCheatSettings = AntiCheatSettings()


class AccessSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    password_hash: Optional[str] = None
    start_at: Optional[datetime] = None
    end_at: Optional[datetime] = None
    limit_one_response: bool = False


class NotificationSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    notify_on_submission: bool = True
    send_confirmation: bool = False


class FormSnapshot(BaseModel):
    """Immutable view of a form and its questions for one engine call."""
    model_config = ConfigDict(frozen=True)

    id: int
    title: str
    status: str
    creator_email: Optional[str] = None
    confirmation_message: str = "Thank you for your submission!"
    settings: ExamSettings = ExamSettings()
    access: AccessSettings = AccessSettings()
    notifications: NotificationSettings = NotificationSettings()
    questions: Tuple[QuestionSnapshot, ...] = ()

    def question(self, question_id: int) -> Optional[QuestionSnapshot]:
        for q in self.questions:
            if q.id == question_id:
                return q
        return None


# --- Engine results ---


class Evaluation(BaseModel):
    """Outcome of grading one answer. ``is_correct`` is None for ungradable questions."""
    model_config = ConfigDict(frozen=True)

    question_id: int
    is_correct: Optional[bool] = None
    points_earned: float = 0
    points_possible: int = 0
    gradable: bool = False


class ScoreResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    score: Optional[float] = None
    passed: Optional[bool] = None
    earned_points: float = 0
    total_points: int = 0
    evaluations: List[Evaluation] = []


class TimeStatus(BaseModel):
    model_config = ConfigDict(frozen=True)

    elapsed_seconds: int
    remaining_seconds: Optional[int] = None
    limit_seconds: Optional[int] = None
    expired: bool = False


class ViolationOutcome(BaseModel):
    model_config = ConfigDict(frozen=True)

    violations_count: int
    max_violations: int
    breached: bool
    warning: bool

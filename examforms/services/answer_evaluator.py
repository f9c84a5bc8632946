"""Per-question-type answer validation and grading.

Grading is a pure function of (question snapshot, answer). It never raises:
a missing answer, an unconfigured correct answer or an option id that no
longer exists on the question all grade as incorrect (or ungradable), so a
grading problem can never block a submission. Shape validation is separate
and only runs when an answer is recorded.
"""

from datetime import date, time
from typing import Any, Callable, Dict, FrozenSet, Optional

from examforms.errors import ValidationError
from examforms.schemas import Evaluation, QuestionSnapshot, QuestionType


def _option_key(value: Any) -> Optional[str]:
    """Canonical form of an option identifier, or None if it cannot be one."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, str)):
        key = str(value).strip()
        return key or None
    return None


def _normalize_text(value: str) -> str:
    return value.strip().casefold()


def _result(question: QuestionSnapshot, correct: Optional[bool]) -> Evaluation:
    return Evaluation(
        question_id=question.id,
        is_correct=correct,
        points_earned=question.points if correct else 0,
        points_possible=question.points,
        gradable=correct is not None,
    )


# ---------------------------------------------------------------------------
# Graders: one per question type
# ---------------------------------------------------------------------------


def _grade_text(question: QuestionSnapshot, answer: Any) -> Evaluation:
    expected = question.correct_answer
    # a JSON list holds accepted alternatives
    if isinstance(expected, str):
        accepted = [expected]
    elif isinstance(expected, list):
        accepted = [e for e in expected if isinstance(e, str)]
    else:
        accepted = []
    accepted = [_normalize_text(e) for e in accepted if e.strip()]
    if not accepted:
        return _result(question, None)

    if not isinstance(answer, str):
        return _result(question, False)
    return _result(question, _normalize_text(answer) in accepted)


def _grade_single_choice(question: QuestionSnapshot, answer: Any) -> Evaluation:
    expected = _option_key(question.correct_answer)
    if expected is None:
        return _result(question, None)

    chosen = _option_key(answer)
    if chosen is None or chosen not in question.option_ids():
        return _result(question, False)
    return _result(question, chosen == expected)


def _grade_checkboxes(question: QuestionSnapshot, answer: Any) -> Evaluation:
    """All-or-nothing: full points only for exactly the set of correct options."""
    expected: FrozenSet[str] = frozenset(str(o.id) for o in question.options if o.is_correct)
    if not expected:
        return _result(question, None)

    if not isinstance(answer, (list, tuple, set, frozenset)):
        return _result(question, False)
    chosen = set()
    for item in answer:
        key = _option_key(item)
        if key is None:
            return _result(question, False)
        chosen.add(key)
    return _result(question, chosen == expected)


def _ungraded(question: QuestionSnapshot, answer: Any) -> Evaluation:
    return _result(question, None)


_GRADERS: Dict[QuestionType, Callable[[QuestionSnapshot, Any], Evaluation]] = {
    QuestionType.SHORT_TEXT: _grade_text,
    QuestionType.LONG_TEXT: _grade_text,
    QuestionType.MULTIPLE_CHOICE: _grade_single_choice,
    QuestionType.DROPDOWN: _grade_single_choice,
    QuestionType.CHECKBOXES: _grade_checkboxes,
    QuestionType.RATING: _ungraded,
    QuestionType.SCALE: _ungraded,
    QuestionType.DATE: _ungraded,
    QuestionType.TIME: _ungraded,
    QuestionType.MATRIX: _ungraded,
    QuestionType.FILE_UPLOAD: _ungraded,
    QuestionType.SECTION: _ungraded,
    QuestionType.IMAGE: _ungraded,
    QuestionType.VIDEO: _ungraded,
}


def evaluate_answer(question: QuestionSnapshot, answer: Any) -> Evaluation:
    """Grade ``answer`` against ``question``.

    Returns an Evaluation with ``is_correct`` None for ungradable questions
    and ``points_earned`` either 0 or ``question.points``.
    """
    return _GRADERS[question.type](question, answer)


# ---------------------------------------------------------------------------
# Answer shape validation (on record, never on grading)
# ---------------------------------------------------------------------------


def _is_option_id(value: Any) -> bool:
    return _option_key(value) is not None


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _check_text(answer: Any) -> Optional[str]:
    if not isinstance(answer, str):
        return "expected a text answer"
    return None


def _check_single_choice(answer: Any) -> Optional[str]:
    if not _is_option_id(answer):
        return "expected a single option id"
    return None


def _check_checkboxes(answer: Any) -> Optional[str]:
    if not isinstance(answer, list) or not all(_is_option_id(a) for a in answer):
        return "expected a list of option ids"
    return None


def _check_number(answer: Any) -> Optional[str]:
    if not _is_number(answer):
        return "expected a number"
    return None


def _check_date(answer: Any) -> Optional[str]:
    try:
        date.fromisoformat(answer)
    except (TypeError, ValueError):
        return "expected an ISO date (YYYY-MM-DD)"
    return None


def _check_time(answer: Any) -> Optional[str]:
    try:
        time.fromisoformat(answer)
    except (TypeError, ValueError):
        return "expected a time (HH:MM)"
    return None


def _check_matrix(answer: Any) -> Optional[str]:
    if not isinstance(answer, dict):
        return "expected a map of row to column"
    for row, value in answer.items():
        if not isinstance(row, str):
            return "matrix rows must be strings"
        cells = value if isinstance(value, list) else [value]
        if not all(isinstance(c, str) or _is_number(c) for c in cells):
            return "matrix cells must be text or numbers"
    return None


def _check_file_upload(answer: Any) -> Optional[str]:
    refs = answer if isinstance(answer, list) else [answer]
    if not refs or not all(isinstance(r, str) and r.strip() for r in refs):
        return "expected one or more uploaded file references"
    return None


def _check_no_answer(answer: Any) -> Optional[str]:
    return "this question does not take an answer"


_SHAPE_CHECKS: Dict[QuestionType, Callable[[Any], Optional[str]]] = {
    QuestionType.SHORT_TEXT: _check_text,
    QuestionType.LONG_TEXT: _check_text,
    QuestionType.MULTIPLE_CHOICE: _check_single_choice,
    QuestionType.DROPDOWN: _check_single_choice,
    QuestionType.CHECKBOXES: _check_checkboxes,
    QuestionType.RATING: _check_number,
    QuestionType.SCALE: _check_number,
    QuestionType.DATE: _check_date,
    QuestionType.TIME: _check_time,
    QuestionType.MATRIX: _check_matrix,
    QuestionType.FILE_UPLOAD: _check_file_upload,
    QuestionType.SECTION: _check_no_answer,
    QuestionType.IMAGE: _check_no_answer,
    QuestionType.VIDEO: _check_no_answer,
}


def validate_answer_shape(question: QuestionSnapshot, answer: Any) -> None:
    """Reject an answer whose shape does not fit the question type.

    A null answer (clearing a previous answer) is always accepted.

    Raises:
        ValidationError: If the answer is malformed for the question type.
    """
    if answer is None:
        return
    problem = _SHAPE_CHECKS[question.type](answer)
    if problem:
        raise ValidationError(f"Question {question.id} ({question.type.value}): {problem}")

"""Aggregate per-question evaluations into a session score."""

from typing import Any, Mapping

from examforms.schemas import FormSnapshot, ScoreResult
from examforms.services.answer_evaluator import evaluate_answer


def score_answers(form: FormSnapshot, answers: Mapping[int, Any]) -> ScoreResult:
    """Grade every question of ``form`` against ``answers`` (keyed by question id).

    Unanswered questions are graded with a null answer. Only gradable
    questions worth more than 0 points enter the score; a form with none of
    those has a null score (a survey has no score), not zero.
    """
    evaluations = [evaluate_answer(q, answers.get(q.id)) for q in form.questions]

    weighted = [e for e in evaluations if e.gradable and e.points_possible > 0]
    total_points = sum(e.points_possible for e in weighted)
    earned_points = sum(e.points_earned for e in weighted)

    if total_points == 0:
        return ScoreResult(
            score=None,
            passed=None,
            earned_points=0,
            total_points=0,
            evaluations=evaluations,
        )

    score = round(100 * earned_points / total_points, 2)
    passing_score = form.settings.passing_score
    passed = score >= passing_score if passing_score is not None else None
    return ScoreResult(
        score=score,
        passed=passed,
        earned_points=earned_points,
        total_points=total_points,
        evaluations=evaluations,
    )

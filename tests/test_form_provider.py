import random
from datetime import datetime

import pytest

from conftest import build_form
from examforms.errors import NotFound
from examforms.schemas import QuestionType, normalize_question_type
from examforms.services.form_provider import (
    _parse_datetime,
    build_exam_settings,
    load_form_snapshot,
    questions_for_respondent,
)


class TestExamSettings:
    def test_defaults_for_a_plain_form(self):
        settings = build_exam_settings({})
        assert settings.time_limit_minutes is None
        assert settings.show_score_after is True
        assert settings.passing_score is None
        assert settings.anti_cheat.max_violations == 0

    def test_exam_mode_wins_over_general(self):
        settings = build_exam_settings(
            {
                "general": {"passing_score": 40, "show_score_after": True, "shuffle_questions": True},
                "exam_mode": {"passing_score": 70, "show_score_after": False, "time_limit_minutes": 30},
            }
        )
        assert settings.passing_score == 70
        assert settings.show_score_after is False
        assert settings.time_limit_minutes == 30
        assert settings.shuffle_questions is True

    def test_general_is_the_fallback(self):
        assert build_exam_settings({"general": {"passing_score": 40}}).passing_score == 40

    def test_zero_time_limit_means_unlimited(self):
        assert build_exam_settings({"exam_mode": {"time_limit_minutes": 0}}).time_limit_minutes is None

    def test_anti_cheat_rules(self):
        settings = build_exam_settings(
            {"exam_mode": {"anti_cheat": {"max_violations": 3, "detect_tab_switch": True}}}
        )
        assert settings.anti_cheat.max_violations == 3
        assert settings.anti_cheat.detect_tab_switch is True
        assert settings.anti_cheat.block_copy_paste is False


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("checkbox", QuestionType.CHECKBOXES),
        ("linear_scale", QuestionType.SCALE),
        ("multiple_choice", QuestionType.MULTIPLE_CHOICE),
        (" Dropdown ", QuestionType.DROPDOWN),
    ],
)
def test_question_type_aliases(raw, expected):
    assert normalize_question_type(raw) is expected


def test_unknown_question_type_is_rejected():
    with pytest.raises(ValueError):
        normalize_question_type("hologram")


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("2026-03-01T10:00:00", datetime(2026, 3, 1, 10, 0)),
        ("2026-03-01T10:00:00Z", datetime(2026, 3, 1, 10, 0)),
        ("2026-03-01T12:00:00+02:00", datetime(2026, 3, 1, 10, 0)),
        ("next tuesday", None),
        (None, None),
    ],
)
def test_access_window_parsing(raw, expected):
    assert _parse_datetime(raw) == expected


def test_snapshot_orders_questions_and_skips_unknown_types(session):
    ids = build_form(
        session,
        [
            {"key": "first", "type": "checkbox", "options": [("x", True), ("y", False)]},
            {"key": "odd", "type": "hologram"},
            {"key": "last", "type": "linear_scale"},
        ],
    )
    snapshot = load_form_snapshot(session, ids["form"])

    assert [q.id for q in snapshot.questions] == [ids["first"], ids["last"]]
    assert snapshot.questions[0].type is QuestionType.CHECKBOXES
    assert snapshot.questions[0].option_ids() == {str(ids["first.x"]), str(ids["first.y"])}
    assert snapshot.question(ids["odd"]) is None


def test_missing_form(session):
    with pytest.raises(NotFound):
        load_form_snapshot(session, 9999)


def test_respondent_payload_keeps_order_without_shuffle(session):
    ids = build_form(
        session,
        [
            {"key": "a", "type": "multiple_choice", "options": [("1", False), ("2", True)], "correct": "2"},
            {"key": "b", "type": "short_text", "correct": "secret"},
        ],
    )
    payload = questions_for_respondent(load_form_snapshot(session, ids["form"]), random.Random(1))

    assert [q["id"] for q in payload] == [ids["a"], ids["b"]]
    assert [o["content"] for o in payload[0]["options"]] == ["1", "2"]
    assert "secret" not in repr(payload)

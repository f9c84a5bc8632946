import random
import sys
from datetime import datetime, timedelta
from pathlib import Path

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine, text


def _ensure_app_on_path():
    repo_root = Path(__file__).resolve().parent.parent
    if str(repo_root) not in sys.path:
        sys.path.insert(0, str(repo_root))
    return repo_root


_ensure_app_on_path()

from examforms.database import enable_sqlite_foreign_keys, get_session  # noqa: E402
from examforms.deps import get_notifier  # noqa: E402
from examforms.models import Form, Option, Question  # noqa: E402
from examforms.services.locks import SessionLockRegistry  # noqa: E402
from examforms.services.session_manager import SessionManager  # noqa: E402

# ============================================================================
# IN-MEMORY DATABASE FOR TESTING
# ============================================================================

# StaticPool: every connection shares the same in-memory database
test_engine = create_engine(
    "sqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
enable_sqlite_foreign_keys(test_engine)


@pytest.fixture(scope="session", autouse=True)
def setup_test_db():
    """Create all tables in the test database once per session."""
    SQLModel.metadata.create_all(test_engine)
    yield
    SQLModel.metadata.drop_all(test_engine)


@pytest.fixture(autouse=True)
def cleanup_db_between_tests():
    """Clean up test data after each test."""
    yield
    # Clean up in FK-safe order
    with Session(test_engine) as session:
        session.exec(text("DELETE FROM violationlog"))
        session.exec(text("DELETE FROM response"))
        session.exec(text("DELETE FROM formsession"))
        session.exec(text("DELETE FROM option"))
        session.exec(text("DELETE FROM question"))
        session.exec(text("DELETE FROM form"))
        session.commit()


@pytest.fixture
def session():
    """Provide a database session for tests."""
    with Session(test_engine) as session:
        yield session


# ============================================================================
# ENGINE COLLABORATORS
# ============================================================================


class FakeClock:
    """Manually advanced clock so time limits can be tested without sleeping."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class RecordingNotifier:
    def __init__(self):
        self.calls = []

    def session_finalized(self, form, form_session):
        self.calls.append((form.id, form_session.id, form_session.status))


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 3, 1, 9, 0, 0))


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def manager(session, clock, notifier):
    return SessionManager(
        session,
        notifier=notifier,
        clock=clock,
        locks=SessionLockRegistry(),
        lock_timeout=1,
        rng=random.Random(7),
    )


# ============================================================================
# FORM FIXTURES
# ============================================================================


def build_form(session, questions, settings=None, status="published", title="Quiz",
               creator_email="owner@example.com"):
    """Insert a form with questions and options.

    Each question is a dict with ``key``, ``type`` and optionally
    ``points``, ``options`` (list of (label, is_correct)), ``correct`` and
    ``explanation``. For choice questions ``correct`` names an option label.
    Returns a dict of ids: ``form``, each question key, and ``"key.label"``
    for each option.
    """
    form = Form(title=title, status=status, settings=settings or {}, creator_email=creator_email)
    session.add(form)
    session.commit()
    session.refresh(form)
    ids = {"form": form.id}

    for order, item in enumerate(questions):
        q = Question(
            form_id=form.id,
            type=item["type"],
            content=item.get("content", f"Question {item['key']}"),
            points=item.get("points", 0),
            explanation=item.get("explanation"),
            sort_order=order,
        )
        session.add(q)
        session.commit()
        session.refresh(q)
        ids[item["key"]] = q.id

        for o_order, (label, is_correct) in enumerate(item.get("options", [])):
            o = Option(question_id=q.id, content=label, is_correct=is_correct, sort_order=o_order)
            session.add(o)
            session.commit()
            session.refresh(o)
            ids[f"{item['key']}.{label}"] = o.id

        correct = item.get("correct")
        if correct is not None:
            if item["type"] in ("multiple_choice", "dropdown"):
                correct = ids[f"{item['key']}.{correct}"]
            q.correct_answer = correct
            session.add(q)
            session.commit()
    return ids


def exam_settings(**exam_mode):
    anti_cheat = exam_mode.pop("anti_cheat", {})
    return {"exam_mode": {"enabled": True, **exam_mode, "anti_cheat": anti_cheat}}


@pytest.fixture
def single_mc_form(session):
    """One multiple_choice question (correct option B, 10 points), passing score 60."""
    return build_form(
        session,
        [
            {
                "key": "q1",
                "type": "multiple_choice",
                "points": 10,
                "options": [("A", False), ("B", True), ("C", False)],
                "correct": "B",
                "explanation": "B is the right one.",
            }
        ],
        settings=exam_settings(passing_score=60, time_limit_minutes=10, show_score_after=True),
    )


# ============================================================================
# FASTAPI APP & TEST CLIENT
# ============================================================================


@pytest.fixture
def client(notifier):
    from fastapi.testclient import TestClient

    from examforms.main import app

    def override_get_session():
        with Session(test_engine) as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_notifier] = lambda: notifier
    yield TestClient(app)
    app.dependency_overrides.clear()

"""HTTP surface of the session engine, exercised through the FastAPI app."""

from sqlmodel import Session

from conftest import build_form, exam_settings, test_engine
from examforms.auth_utils import hash_access_password
from examforms.deps import get_session_manager
from examforms.main import app
from examforms.services.locks import SessionLockRegistry
from examforms.services.session_manager import SessionManager


def _start(client, form_id, **body):
    res = client.post(f"/forms/{form_id}/sessions", json=body or None)
    assert res.status_code == 201, res.text
    return res.json()


def test_health(client):
    res = client.get("/health")
    assert res.status_code == 200
    assert res.json() == {"status": "ok"}


def test_full_attempt(client, single_mc_form, notifier):
    started = _start(client, single_mc_form["form"], respondent_name="Ana", respondent_email="ana@example.com")
    sid = started["session_id"]
    assert started["status"] == "in_progress"
    assert started["time_limit_minutes"] == 10
    assert started["remaining_seconds"] == 600
    assert started["anti_cheat"]["violations_count"] == 0
    [question] = started["questions"]
    assert question["id"] == single_mc_form["q1"]
    assert "correct_answer" not in question

    res = client.put(
        f"/sessions/{sid}/responses/{single_mc_form['q1']}",
        json={"answer": single_mc_form["q1.B"]},
    )
    assert res.status_code == 200, res.text
    assert res.json()["answer"] == single_mc_form["q1.B"]

    poll = client.get(f"/sessions/{sid}/poll").json()
    assert poll["status"] == "in_progress"
    assert 0 < poll["remaining_seconds"] <= 600

    submitted = client.post(f"/sessions/{sid}/submit")
    assert submitted.status_code == 200, submitted.text
    body = submitted.json()
    assert body["status"] == "submitted"
    assert body["score"] == 100
    assert body["passed"] is True
    assert body["message"] == "Thank you for your submission!"

    # retried submit returns the same stored result
    assert client.post(f"/sessions/{sid}/submit").json() == body
    assert len(notifier.calls) == 1

    results = client.get(f"/sessions/{sid}/results").json()
    assert results["grade"] == "A"
    assert results["questions"][0]["is_correct"] is True

    session_view = client.get(f"/sessions/{sid}").json()
    assert session_view["status"] == "submitted"
    assert session_view["submitted_at"] is not None


def test_answers_sent_with_submit(client, single_mc_form):
    sid = _start(client, single_mc_form["form"])["session_id"]
    res = client.post(
        f"/sessions/{sid}/submit",
        json={"answers": [{"question_id": single_mc_form["q1"], "answer": single_mc_form["q1.A"]}]},
    )
    assert res.json()["score"] == 0
    assert res.json()["passed"] is False


def test_bulk_autosave(client, single_mc_form):
    sid = _start(client, single_mc_form["form"])["session_id"]
    res = client.post(
        f"/sessions/{sid}/responses",
        json={"answers": [{"question_id": single_mc_form["q1"], "answer": single_mc_form["q1.C"]}]},
    )
    assert res.status_code == 200
    assert res.json()["saved"] == 1


def test_closed_session_returns_409_with_status(client, single_mc_form):
    sid = _start(client, single_mc_form["form"])["session_id"]
    client.post(f"/sessions/{sid}/submit")

    res = client.put(f"/sessions/{sid}/responses/{single_mc_form['q1']}", json={"answer": single_mc_form["q1.B"]})
    assert res.status_code == 409
    assert res.json()["error"] == "SessionClosed"
    assert res.json()["status"] == "submitted"


def test_violation_limit_force_closes(client, session):
    ids = build_form(
        session,
        [{"key": "q1", "type": "short_text", "points": 2, "correct": "yes"}],
        settings=exam_settings(anti_cheat={"max_violations": 1, "detect_tab_switch": True}),
    )
    sid = _start(client, ids["form"])["session_id"]

    res = client.post(f"/sessions/{sid}/violations", json={"event_type": "tab_switch", "event_data": {"n": 1}})
    assert res.status_code == 200, res.text
    assert res.json()["force_closed"] is True
    assert res.json()["status"] == "expired"

    again = client.post(f"/sessions/{sid}/violations", json={"event_type": "tab_switch"})
    assert again.status_code == 409
    assert again.json()["status"] == "expired"


def test_error_mapping(client, session, single_mc_form):
    assert client.get("/sessions/nope").status_code == 404
    assert client.get("/sessions/nope/poll").json()["error"] == "NotFound"
    assert client.post("/forms/999999/sessions").status_code == 404

    sid = _start(client, single_mc_form["form"])["session_id"]
    bad = client.put(f"/sessions/{sid}/responses/{single_mc_form['q1']}", json={"answer": [1, 2]})
    assert bad.status_code == 422
    assert bad.json()["error"] == "ValidationError"

    still_open = client.get(f"/sessions/{sid}/results")
    assert still_open.status_code == 422

    empty_event = client.post(f"/sessions/{sid}/violations", json={"event_type": "  "})
    assert empty_event.status_code == 422

    draft = build_form(session, [{"key": "q1", "type": "short_text"}], status="draft")
    closed = client.post(f"/forms/{draft['form']}/sessions")
    assert closed.status_code == 403
    assert closed.json()["error"] == "FormNotAcceptingResponses"


def test_password_protected_form(client, session):
    ids = build_form(
        session,
        [{"key": "q1", "type": "short_text"}],
        settings={"access": {"password_hash": hash_access_password("letmein")}},
    )
    denied = client.post(f"/forms/{ids['form']}/sessions", json={"password": "nope"})
    assert denied.status_code == 401
    assert denied.json()["error"] == "AccessDenied"
    assert _start(client, ids["form"], password="letmein")["status"] == "in_progress"


def test_busy_session_asks_client_to_retry(client, single_mc_form):
    sid = _start(client, single_mc_form["form"])["session_id"]
    locks = SessionLockRegistry()

    def busy_manager():
        with Session(test_engine) as db:
            yield SessionManager(db, locks=locks, lock_timeout=0.01)

    app.dependency_overrides[get_session_manager] = busy_manager
    with locks.hold(sid, timeout=1):
        res = client.get(f"/sessions/{sid}/poll")
    assert res.status_code == 503
    assert res.headers["Retry-After"] == "1"
    assert res.json()["error"] == "PersistenceTransient"

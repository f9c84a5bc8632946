"""Respondent-facing endpoints for taking a form.

Every route delegates to SessionManager; domain errors are turned into JSON
responses by the handler registered in main.py.
"""

from typing import Any, List, Optional

from fastapi import APIRouter, Body, Depends, Request
from pydantic import BaseModel, Field

from examforms.deps import get_session_manager
from examforms.services.session_manager import SessionManager, violation_status

router = APIRouter()


# --- Request schemas ---


class StartIn(BaseModel):
    respondent_name: Optional[str] = Field(None, max_length=255)
    respondent_email: Optional[str] = Field(None, max_length=255)
    password: Optional[str] = None


class AnswerValueIn(BaseModel):
    answer: Any = None


class AnswerIn(BaseModel):
    question_id: int
    answer: Any = None


class AnswersIn(BaseModel):
    answers: List[AnswerIn]


class ViolationIn(BaseModel):
    event_type: str
    event_data: Optional[dict] = None


class SubmitIn(BaseModel):
    answers: Optional[List[AnswerIn]] = None


def _session_out(form_session) -> dict:
    return {
        "session_id": form_session.id,
        "form_id": form_session.form_id,
        "status": form_session.status,
        "started_at": form_session.started_at,
        "submitted_at": form_session.submitted_at,
        "violations_count": form_session.violations_count,
    }


# 1) START ATTEMPT
@router.post("/forms/{form_id}/sessions", status_code=201)
def api_start_session(
    form_id: int,
    request: Request,
    payload: StartIn = Body(None),
    manager: SessionManager = Depends(get_session_manager),
):
    payload = payload or StartIn()
    started = manager.start(
        form_id,
        respondent_name=payload.respondent_name,
        respondent_email=payload.respondent_email,
        password=payload.password,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )
    form_session = started["session"]
    form = started["snapshot"]
    limit = form.settings.time_limit_minutes
    return {
        **_session_out(form_session),
        "time_limit_minutes": limit,
        "remaining_seconds": limit * 60 if limit else None,
        "anti_cheat": violation_status(form_session, form),
        "questions": started["questions"],
    }


# 2) RECORD ANSWERS
@router.put("/sessions/{session_id}/responses/{question_id}")
def api_record_answer(
    session_id: str,
    question_id: int,
    payload: AnswerValueIn = Body(...),
    manager: SessionManager = Depends(get_session_manager),
):
    response = manager.record_answer(session_id, question_id, payload.answer)
    return {
        "session_id": session_id,
        "question_id": response.question_id,
        "answer": response.answer,
        "saved_at": response.saved_at,
    }


@router.post("/sessions/{session_id}/responses")
def api_autosave(
    session_id: str,
    payload: AnswersIn = Body(...),
    manager: SessionManager = Depends(get_session_manager),
):
    """Save several answers at once without submitting the attempt."""
    saved = manager.record_answers(session_id, [(a.question_id, a.answer) for a in payload.answers])
    return {"status": "success", "session_id": session_id, "saved": len(saved)}


# 3) ANTI-CHEAT EVENTS
@router.post("/sessions/{session_id}/violations")
def api_report_violation(
    session_id: str,
    payload: ViolationIn = Body(...),
    manager: SessionManager = Depends(get_session_manager),
):
    return manager.report_violation(session_id, payload.event_type, payload.event_data)


# 4) HEARTBEAT
@router.get("/sessions/{session_id}/poll")
def api_poll(session_id: str, manager: SessionManager = Depends(get_session_manager)):
    return manager.poll(session_id)


# 5) SUBMIT
@router.post("/sessions/{session_id}/submit")
def api_submit(
    session_id: str,
    payload: SubmitIn = Body(None),
    manager: SessionManager = Depends(get_session_manager),
):
    answers = [(a.question_id, a.answer) for a in payload.answers] if payload and payload.answers else None
    return manager.submit(session_id, answers)


# 6) RESULTS
@router.get("/sessions/{session_id}/results")
def api_results(session_id: str, manager: SessionManager = Depends(get_session_manager)):
    return manager.results(session_id)


@router.get("/sessions/{session_id}")
def api_get_session(session_id: str, manager: SessionManager = Depends(get_session_manager)):
    return _session_out(manager.get(session_id))

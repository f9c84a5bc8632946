"""FastAPI entrypoint for the Exam Forms session & scoring service."""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from examforms.config import get_settings
from examforms.database import create_db_and_tables
from examforms.errors import ExamFormsError, PersistenceTransient, SessionClosed
from examforms.routers import sessions as sessions_router_module

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Exam Forms",
    description="Respondent sessions, anti-cheat tracking and scoring for forms and timed exams",
    version="1.0.0",
)


@app.exception_handler(ExamFormsError)
async def exam_forms_error_handler(request: Request, exc: ExamFormsError):
    """Map domain errors to JSON with the error class name for clients to branch on."""
    content = {"detail": exc.detail, "error": type(exc).__name__}
    headers = None
    if isinstance(exc, SessionClosed) and exc.status:
        content["status"] = exc.status
    if isinstance(exc, PersistenceTransient):
        headers = {"Retry-After": str(exc.retry_after_seconds)}
    return JSONResponse(status_code=exc.status_code, content=content, headers=headers)


# Routers
app.include_router(sessions_router_module.router, tags=["sessions"])


@app.get("/health")
def health():
    return {"status": "ok"}


@app.on_event("startup")
def on_startup():
    """Configure logging and initialize the database schema."""
    logging.basicConfig(
        level=get_settings().log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    create_db_and_tables()
    logger.info("Exam Forms started")

"""Error taxonomy for the session lifecycle and scoring engine.

Every error here is recoverable at the HTTP boundary; none of them means the
stored session state is corrupt. ``main.py`` maps them to JSON responses
using ``status_code``.
"""

from typing import Optional


class ExamFormsError(Exception):
    status_code = 400

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class NotFound(ExamFormsError):
    """Unknown form, session or question reference."""

    status_code = 404


class SessionClosed(ExamFormsError):
    """A mutation was attempted on a submitted or expired session."""

    status_code = 409

    def __init__(self, detail: str, status: Optional[str] = None):
        super().__init__(detail)
        self.status = status


class FormNotAcceptingResponses(ExamFormsError):
    status_code = 403


class AccessDenied(ExamFormsError):
    """Form access password missing or wrong."""

    status_code = 401


class ValidationError(ExamFormsError):
    """Malformed answer (or respondent field) for the target question type."""

    status_code = 422


class PersistenceTransient(ExamFormsError):
    """Storage timeout, lock contention or write conflict. Safe to retry."""

    status_code = 503
    retry_after_seconds = 1

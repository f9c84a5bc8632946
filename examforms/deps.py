"""Shared FastAPI dependencies for database access and the session engine."""

from functools import lru_cache

from fastapi import Depends
from sqlmodel import Session

from examforms.database import get_session
from examforms.services.notifications import EmailNotifier
from examforms.services.session_manager import SessionManager


@lru_cache(maxsize=1)
def get_notifier() -> EmailNotifier:
    """Process-wide notifier; override in tests to capture finalizations."""
    return EmailNotifier()


def get_session_manager(
    session: Session = Depends(get_session),
    notifier: EmailNotifier = Depends(get_notifier),
) -> SessionManager:
    """Build a SessionManager bound to the request's database session."""
    return SessionManager(session, notifier=notifier)

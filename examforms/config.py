"""
Configuration Module for Exam Forms
Centralizes environment variables for storage, locking, logging and mail.
"""
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv


@dataclass(frozen=True)
class Settings:
    database_url: str
    db_timeout_seconds: float
    lock_timeout_seconds: float
    log_level: str
    smtp_host: Optional[str]
    smtp_port: int
    smtp_user: Optional[str]
    smtp_password: Optional[str]
    mail_from: str


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Reads settings from the environment (and a .env file, if present).

    Raises:
        ValueError: If a numeric variable cannot be parsed.
    """
    load_dotenv()
    return Settings(
        database_url=os.getenv("EXAMFORMS_DATABASE_URL", "sqlite:///./examforms.db"),
        db_timeout_seconds=_float_env("EXAMFORMS_DB_TIMEOUT_SECONDS", 5.0),
        lock_timeout_seconds=_float_env("EXAMFORMS_LOCK_TIMEOUT_SECONDS", 5.0),
        log_level=os.getenv("EXAMFORMS_LOG_LEVEL", "INFO").upper(),
        smtp_host=os.getenv("EXAMFORMS_SMTP_HOST") or None,
        smtp_port=int(_float_env("EXAMFORMS_SMTP_PORT", 587)),
        smtp_user=os.getenv("EXAMFORMS_SMTP_USER") or None,
        smtp_password=os.getenv("EXAMFORMS_SMTP_PASSWORD") or None,
        mail_from=os.getenv("EXAMFORMS_MAIL_FROM", "no-reply@examforms.local"),
    )

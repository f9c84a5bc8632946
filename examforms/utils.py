"""Utility functions for sanitization, time and result formatting."""

from datetime import datetime, timezone
from typing import Optional

import bleach


def utc_now() -> datetime:
    """Current UTC time as a naive datetime (the form stored in the database)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def sanitize_plain_text(text: Optional[str], max_length: int = 255) -> Optional[str]:
    """Strip all HTML from respondent-supplied display text.

    Returns None for empty input so optional fields stay unset.
    """
    if text is None:
        return None
    sanitized = bleach.clean(text, tags=[], strip=True).strip()
    if not sanitized:
        return None
    return sanitized[:max_length]


def format_duration(seconds: Optional[int]) -> str:
    """Format a duration as M:SS, e.g. 754 -> '12:34'."""
    if not seconds:
        return "0:00"
    minutes, secs = divmod(int(seconds), 60)
    return f"{minutes}:{secs:02d}"


def calculate_grade(percentage: Optional[float]) -> Optional[str]:
    """Convert percentage to letter grade (A/B/C/D/F)."""
    if percentage is None:
        return None
    if percentage >= 90:
        return "A"
    elif percentage >= 80:
        return "B"
    elif percentage >= 70:
        return "C"
    elif percentage >= 60:
        return "D"
    else:
        return "F"

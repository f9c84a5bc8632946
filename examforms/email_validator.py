"""Respondent email validation with TLD checking."""

import re
from typing import Tuple


# Common top-level domains accepted for respondent emails
VALID_TLDS = {
    # Generic TLDs
    "com", "org", "net", "edu", "gov", "mil", "int",
    # Country code TLDs (common ones)
    "uk", "us", "ca", "au", "de", "fr", "it", "es", "nl", "be", "ch", "at", "se", "no", "dk", "fi",
    "pl", "cz", "ie", "pt", "gr", "ro", "hu", "bg", "hr", "sk", "si", "lt", "lv", "ee",
    "jp", "cn", "kr", "in", "sg", "my", "th", "ph", "id", "vn", "tw", "hk", "mo",
    "nz", "za", "br", "mx", "ar", "cl", "co", "pe", "ve", "ec", "uy", "py", "bo",
    "ae", "sa", "il", "tr", "eg", "ma", "dz", "tn", "jo", "lb", "kw", "qa", "bh", "om",
    "ru", "ua", "kz", "by", "ge", "am", "az",
    # New gTLDs (common ones)
    "io", "ai", "app", "dev", "tech", "online", "site", "website", "store", "shop",
    "blog", "info", "biz", "name", "pro", "xyz", "me", "tv", "cc", "ws", "mobi",
    # Academic/Educational
    "ac", "sch",
    "asia", "tel", "jobs", "travel", "museum", "aero", "coop",
}

EMAIL_PATTERN = re.compile(
    r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'
)


def is_valid_email(email: str) -> Tuple[bool, str]:
    """
    Validate email format and TLD.

    Args:
        email: Email address to validate

    Returns:
        Tuple of (is_valid, error_message); the message is empty when valid.
    """
    if not email:
        return False, "Email address is required."

    email = email.strip().lower()

    if len(email) > 255:
        return False, "Email address is too long."

    if not EMAIL_PATTERN.match(email):
        return False, "Please enter a valid email address format."

    local_part, domain = email.split("@", 1)
    if not local_part or len(local_part) > 64:
        return False, "Invalid email address format."

    tld = domain.rsplit(".", 1)[-1]
    if tld not in VALID_TLDS:
        return False, f"'{tld}' is not recognized as a valid top-level domain."

    return True, ""


def normalize_email(email: str) -> str:
    """Return the canonical (trimmed, lower-case) form of a valid email."""
    return email.strip().lower()

"""Form access password hashing and verification."""

from typing import Optional

from passlib.context import CryptContext

# Configure bcrypt to avoid compatibility issues with bcrypt 4.0+
PWD_CONTEXT = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__ident="2b",
    bcrypt__rounds=12,
)


def hash_access_password(plain_password: str) -> str:
    """Hash a form access password for storage in the form settings."""
    return PWD_CONTEXT.hash(plain_password)


def verify_access_password(plain_password: Optional[str], password_hash: str) -> bool:
    """Verify a respondent-supplied password against the stored hash."""
    if not plain_password:
        return False
    return PWD_CONTEXT.verify(plain_password, password_hash)

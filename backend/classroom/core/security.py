"""Security utilities for tutor authentication and student session tokens."""

from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import bcrypt
from jose import JWTError, jwt

from .config import get_settings


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against a hash."""
    # Truncate to 72 bytes (bcrypt limit)
    password_bytes = plain_password.encode("utf-8")[:72]
    hash_bytes = hashed_password.encode("utf-8") if isinstance(hashed_password, str) else hashed_password
    return bcrypt.checkpw(password_bytes, hash_bytes)


def get_password_hash(password: str) -> str:
    """Hash a password for storage.

    Note: bcrypt has a 72 byte limit, so we truncate longer passwords.
    """
    password_bytes = password.encode("utf-8")[:72]
    salt = bcrypt.gensalt()
    hashed = bcrypt.hashpw(password_bytes, salt)
    return hashed.decode("utf-8")


def create_access_token(
    data: dict,
    expires_delta: Optional[timedelta] = None
) -> str:
    """Create a JWT access token."""
    settings = get_settings()
    to_encode = data.copy()

    if expires_delta is None:
        expires_delta = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode.update({"exp": datetime.now(timezone.utc) + expires_delta})
    return jwt.encode(
        to_encode,
        settings.SECRET_KEY,
        algorithm=settings.ALGORITHM
    )


def verify_access_token(token: str) -> Optional[dict[str, Any]]:
    """Verify and decode a JWT token."""
    settings = get_settings()
    try:
        return jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.ALGORITHM]
        )
    except JWTError:
        return None


def create_tutor_token(tutor_id: int, org_id: int) -> str:
    return create_access_token(
        {"sub": str(tutor_id), "user_type": "tutor", "tutor_id": tutor_id, "org_id": org_id}
    )


def create_student_token(student_id: int, session_id: int) -> str:
    """Issue the token a student uses for the rest of one testing session."""
    settings = get_settings()
    return create_access_token(
        {
            "sub": str(student_id),
            "user_type": "student",
            "student_id": student_id,
            "session_id": session_id,
        },
        expires_delta=timedelta(hours=settings.STUDENT_TOKEN_EXPIRE_HOURS),
    )

"""Core configuration, errors and security for the Classroom Sessions backend."""

from .config import Settings, get_settings
from .errors import (
    ClassroomError,
    ConflictError,
    ContentGenerationError,
    NotFoundError,
    PermissionDeniedError,
    PhaseError,
    ValidationError,
)
from .security import (
    create_access_token,
    create_student_token,
    create_tutor_token,
    get_password_hash,
    verify_access_token,
    verify_password,
)

__all__ = [
    "Settings",
    "get_settings",
    "ClassroomError",
    "ConflictError",
    "ContentGenerationError",
    "NotFoundError",
    "PermissionDeniedError",
    "PhaseError",
    "ValidationError",
    "create_access_token",
    "create_student_token",
    "create_tutor_token",
    "get_password_hash",
    "verify_access_token",
    "verify_password",
]

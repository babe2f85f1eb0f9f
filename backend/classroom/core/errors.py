"""Domain exceptions raised by the service layer.

The API layer maps each class to an HTTP status in ``classroom.main``.
"""


class ClassroomError(Exception):
    """Base exception for classroom session errors."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ClassroomError):
    """Raised when input is well-formed but not acceptable."""

    status_code = 400


class PhaseError(ClassroomError):
    """Raised when an operation is not legal in the session's current phase."""

    status_code = 400


class PermissionDeniedError(ClassroomError):
    """Raised when the caller does not own the resource."""

    status_code = 403


class NotFoundError(ClassroomError):
    """Raised when a session, test, question or student does not exist."""

    status_code = 404


class ConflictError(ClassroomError):
    """Raised on duplicate joins and lost concurrent updates."""

    status_code = 409


class ContentGenerationError(ClassroomError):
    """Raised when the content generation service returns nothing usable."""

    status_code = 502

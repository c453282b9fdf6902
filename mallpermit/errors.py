"""
Errors raised by the work permit engine.

Each error carries the HTTP status the API layer reports it with. None of
them is retried or downgraded by the engine.
"""
from typing import List, Optional


class WorkPermitError(Exception):
    """Base class for every error the engine raises on purpose."""
    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


class ValidationError(WorkPermitError):
    """Malformed or missing input. Nothing was changed."""
    status_code = 400

    def __init__(self, message: str, errors: Optional[List[dict]] = None):
        self.errors = errors or []
        super().__init__(message)


class ForbiddenError(WorkPermitError):
    """The caller's role may not perform the requested operation."""
    status_code = 403


class NotFoundError(WorkPermitError):
    """No permit exists with the given id."""
    status_code = 404


class InvalidTransitionError(WorkPermitError):
    """The operation is not legal from the permit's current status."""
    status_code = 409

    def __init__(self, current: str, attempted: str, message: Optional[str] = None):
        self.current = current
        self.attempted = attempted
        super().__init__(
            message or f"Cannot {attempted} a work permit in status {current}"
        )


class ConflictError(WorkPermitError):
    """The permit was modified by someone else since it was read."""
    status_code = 409

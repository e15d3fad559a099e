"""
Error taxonomy shared by the service layer and the client.

Server-side errors are HTTPExceptions, so services raise them exactly the way
they raise a plain ``HTTPException(404, ...)``; the extra ``code`` lets a client
tell apart two errors that share a status (e.g. a stale write and an invalid
transition are both 409).
"""
from fastapi import HTTPException

class SplitEasyError(HTTPException):
    status_code = 400
    code = "error"

    def __init__(self, detail: str | None = None):
        super().__init__(status_code=self.status_code, detail=detail or self.code)

class ValidationError(SplitEasyError):
    status_code = 422
    code = "validation_error"

class Unauthorized(SplitEasyError):
    status_code = 403
    code = "unauthorized"

class InvalidStateTransition(SplitEasyError):
    status_code = 409
    code = "invalid_state_transition"

class Conflict(SplitEasyError):
    status_code = 409
    code = "conflict"

class NotFound(SplitEasyError):
    status_code = 404
    code = "not_found"

ERRORS_BY_CODE = {
    cls.code: cls
    for cls in (ValidationError, Unauthorized, InvalidStateTransition, Conflict, NotFound)
}

class NetworkError(Exception):
    """Transport failure talking to the service (no HTTP response at all)."""

class AuthenticationError(Exception):
    """Credentials were rejected. Never retried; the owner has to re-authenticate."""

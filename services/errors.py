"""
Error taxonomy for the integrity engine.

Every failure is raised as one of these typed errors at the component
boundary. main.py translates them to HTTP responses through `status_code`
and `code`; nothing below the routers knows about HTTP.
"""

from fastapi import status


class ServiceError(Exception):
    """Base class. `code` is the machine-readable tag sent to clients."""

    status_code = status.HTTP_400_BAD_REQUEST
    code = "error"
    default_message = "Request failed"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


# ─── 400 ───────────────────────────────────────────────────────────────────────

class ValidationError(ServiceError):
    code = "validation_error"
    default_message = "Invalid request"


# ─── 404 ───────────────────────────────────────────────────────────────────────

class NotFound(ServiceError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"
    default_message = "Not found"


# ─── 409 ───────────────────────────────────────────────────────────────────────

class Conflict(ServiceError):
    status_code = status.HTTP_409_CONFLICT
    code = "conflict"
    default_message = "Conflict"


class AlreadySubmitted(Conflict):
    code = "already_submitted"
    default_message = "Exam already submitted"


# ─── 401 ───────────────────────────────────────────────────────────────────────

class AuthError(ServiceError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "auth_error"
    default_message = "Authentication failed"


class InvalidToken(AuthError):
    code = "invalid_token"
    default_message = "Invalid token"


class Expired(AuthError):
    code = "token_expired"
    default_message = "Token expired. Please refresh your token."


class Revoked(AuthError):
    code = "token_revoked"
    default_message = "Token has been revoked"


class WrongTokenType(AuthError):
    code = "wrong_token_type"
    default_message = "Invalid token type"


class NoActiveSession(AuthError):
    code = "no_active_session"
    default_message = "Invalid or expired session"


# ─── 403 ───────────────────────────────────────────────────────────────────────

class Forbidden(ServiceError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "forbidden"
    default_message = "Access denied"

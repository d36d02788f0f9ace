"""Domain exceptions and their HTTP rendering."""
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse


class CoachingError(Exception):
    """Base exception for domain errors."""
    status_code = 500
    code = "error"
    default_message = "Internal error"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidInput(CoachingError):
    """Malformed or rejected request data."""
    status_code = 400
    code = "invalid_input"
    default_message = "Invalid request"


class Unauthorized(CoachingError):
    """Authentication failure. Messages stay generic."""
    status_code = 401
    code = "unauthorized"
    default_message = "Not authenticated"


class NotFound(CoachingError):
    status_code = 404
    code = "not_found"
    default_message = "Not found"


class Conflict(CoachingError):
    status_code = 409
    code = "conflict"
    default_message = "Conflict"


class Expired(CoachingError):
    status_code = 410
    code = "token_expired"
    default_message = "Activation link has expired. Please request a new one."


class ExternalServiceError(CoachingError):
    """Stripe, email provider or CAPTCHA failure."""
    status_code = 502
    code = "external_service_error"
    default_message = "External service error"


class InvalidToken(InvalidInput):
    code = "invalid_token"
    default_message = "Invalid activation link"


class AlreadyActivated(Conflict):
    code = "already_activated"
    default_message = "Account is already activated"


class TokenAlreadyUsed(Conflict):
    code = "token_used"
    default_message = "This activation link has already been used"


class AlreadyCancelled(Conflict):
    code = "already_cancelled"
    default_message = "Subscription has already been cancelled and cannot be reactivated"


async def coaching_error_handler(request: Request, exc: CoachingError):
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, Unauthorized) else None
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code},
        headers=headers,
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(CoachingError, coaching_error_handler)

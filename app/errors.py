import logging
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from cleancare_shared.otp import OTPError, OTPMismatchError, OTPRateLimitError

logger = logging.getLogger("cleancare.errors")


class AppError(Exception):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "bad_request"
    message = "Request could not be processed"

    def __init__(self, message: str | None = None, *, details: dict[str, Any] | None = None):
        super().__init__(message or self.message)
        self.message = message or self.message
        self.details = details or {}


class ConfigurationError(AppError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "configuration_error"
    message = "Server configuration error"


class InvalidInputError(AppError):
    code = "invalid_input"
    message = "Invalid request"


class NameRequiredError(AppError):
    code = "name_required"
    message = "Name is required for new user registration"


class PhoneConflictError(AppError):
    code = "phone_conflict"
    message = "Phone number already exists with different details"


class InvalidTokenError(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "invalid_token"
    message = "Invalid token. Please login again."


class TokenExpiredError(InvalidTokenError):
    code = "token_expired"
    message = "Token has expired. Please login again."


class UserNotFoundError(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "user_not_found"
    message = "User not found"


_OTP_STATUS = {
    "otp_rate_limited": status.HTTP_429_TOO_MANY_REQUESTS,
    "sms_delivery_failed": status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def error_body(code: str, message: str, **details: Any) -> dict[str, Any]:
    body: dict[str, Any] = {"success": False, "code": code, "message": message}
    body.update({k: v for k, v in details.items() if v is not None})
    return body


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == status.HTTP_401_UNAUTHORIZED else None
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.code, exc.message, **exc.details),
        headers=headers,
    )


async def otp_error_handler(request: Request, exc: OTPError) -> JSONResponse:
    status_code = _OTP_STATUS.get(exc.code, status.HTTP_400_BAD_REQUEST)
    headers = None
    details: dict[str, Any] = {}
    if isinstance(exc, OTPRateLimitError):
        details["retryAfter"] = exc.retry_after
        if exc.retry_after:
            headers = {"Retry-After": str(exc.retry_after)}
    if isinstance(exc, OTPMismatchError):
        details["remainingAttempts"] = exc.remaining_attempts
    return JSONResponse(status_code=status_code, content=error_body(exc.code, exc.message, **details), headers=headers)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    detail = exc.detail
    if isinstance(detail, dict):
        code = str(detail.get("code") or "http_error")
        message = str(detail.get("message") or code)
    else:
        code = "unauthorized" if exc.status_code == status.HTTP_401_UNAUTHORIZED else "http_error"
        message = str(detail)
    return JSONResponse(status_code=exc.status_code, content=error_body(code, message), headers=exc.headers)


def _validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    missing = [str(e["loc"][-1]) for e in errors if e.get("type") == "missing" and e.get("loc")]
    if missing == ["body"]:
        return "Request body is required"
    if missing:
        return f"Missing required fields: {', '.join(missing)}"
    if not errors:
        return InvalidInputError.message
    msg = str(errors[0].get("msg") or InvalidInputError.message)
    if msg.startswith("Value error, "):
        msg = msg[len("Value error, "):]
    return msg


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    message = _validation_message(exc)
    logger.info("Validation failed on %s: %s", request.url.path, message)
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=error_body(InvalidInputError.code, message))


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    req_id = getattr(request.state, "request_id", None)
    logger.exception(
        "Unhandled error on %s %s (request_id=%s)", request.method, request.url.path, req_id, exc_info=exc
    )
    headers = {"X-Request-ID": req_id} if req_id else None
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_body("internal_error", "Internal server error. Please try again.", requestId=req_id),
        headers=headers,
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(OTPError, otp_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

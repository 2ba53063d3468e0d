"""
Error taxonomy for the bookings API and the handlers that render every
failure as the standard `{status, message, data}` envelope.
"""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import ValidationError as PydanticValidationError


class BookingError(Exception):
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, data: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.data = data


class ValidationError(BookingError):
    """Malformed or out-of-range client input."""

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(
        self,
        message: str,
        issues: list[dict[str, str]] | None = None,
        data: Any = None,
    ) -> None:
        super().__init__(message, data)
        self.issues = issues or []

    @classmethod
    def from_pydantic(
        cls,
        exc: PydanticValidationError | RequestValidationError,
        context: str = "validating data",
    ) -> ValidationError:
        issues = issues_from_errors(exc.errors())  # type: ignore[arg-type]
        return cls(f"Error while {context}, {format_issues(issues)}", issues)


class NothingToUpdateError(ValidationError):
    pass


class NotFoundError(BookingError):
    status_code = status.HTTP_404_NOT_FOUND


class ConflictError(BookingError):
    # An already-approved booking is reported as a bad request.
    status_code = status.HTTP_400_BAD_REQUEST


class StorageError(BookingError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


class NotificationError(BookingError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


# ---------------------------------------------------------------------------
# Issue formatting
# ---------------------------------------------------------------------------

# Location prefixes FastAPI adds to request validation errors.
_LOCATION_PREFIXES = {"body", "path", "query"}


def issues_from_errors(errors: list[dict[str, Any]]) -> list[dict[str, str]]:
    issues = []
    for err in errors:
        loc = [str(part) for part in err.get("loc", ())]
        if loc and loc[0] in _LOCATION_PREFIXES:
            loc = loc[1:]
        issues.append({"path": ".".join(loc), "reason": err.get("msg", "Invalid value")})
    return issues


def format_issues(issues: list[dict[str, str]]) -> str:
    return ", ".join(
        f"{i['path']}: {i['reason']}" if i["path"] else i["reason"] for i in issues
    )


# ---------------------------------------------------------------------------
# Envelope rendering
# ---------------------------------------------------------------------------


def envelope(status_code: int, message: str, data: Any = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"status": status_code, "message": message, "data": data},
    )


async def _booking_error_handler(request: Request, exc: BookingError) -> JSONResponse:
    if isinstance(exc, StorageError):
        logger.error("{} {} failed: {}", request.method, request.url.path, exc.message)
    else:
        logger.info("{} {} -> {}: {}", request.method, request.url.path, exc.status_code, exc.message)
    return envelope(exc.status_code, exc.message, exc.data)


async def _request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    message = ValidationError.from_pydantic(exc).message
    logger.info("{} {} -> 400: {}", request.method, request.url.path, message)
    return envelope(status.HTTP_400_BAD_REQUEST, message)


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.opt(exception=exc).error(
        "Unhandled error on {} {}", request.method, request.url.path
    )
    return envelope(status.HTTP_500_INTERNAL_SERVER_ERROR, "Unexpected error occurred")


def install_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(BookingError, _booking_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _request_validation_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, _unhandled_error_handler)

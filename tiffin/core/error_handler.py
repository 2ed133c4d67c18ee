"""
Error responses.

Every failure leaves the API as {success: false, error_code, message, details}.
Application errors get their HTTP status from their exception family, with a
few codes pinned explicitly. Unknown exceptions are logged and written to the
logs table as system_error.
"""

import json
import logging
import traceback
from typing import Any, Dict, Optional

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .database import db_manager
from .exceptions import (
    AuthenticationError,
    BaseApplicationError,
    ConcurrencyError,
    DatabaseError,
    DuplicateResourceError,
    NotFoundError,
    PermissionDeniedError,
    PolicyViolationError,
    ValidationError,
)
from ..models.base import page_count

logger = logging.getLogger(__name__)


class ErrorResponse:
    """Error envelope bound to an HTTP status"""

    def __init__(self, error_code: str, message: str,
                 details: Optional[Dict[str, Any]] = None,
                 http_status: int = 400):
        self.error_code = error_code
        self.message = message
        self.details = details or {}
        self.http_status = http_status

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": False,
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details
        }

    def to_json_response(self) -> JSONResponse:
        return JSONResponse(status_code=self.http_status, content=self.to_dict())


class ErrorHandler:
    """Turns exceptions into error envelopes"""

    # Checked in order; the first matching family wins
    FAMILY_STATUS = (
        (AuthenticationError, 401),
        (PermissionDeniedError, 403),
        (NotFoundError, 404),
        (DuplicateResourceError, 409),
        (ConcurrencyError, 409),
        (DatabaseError, 500),
        (ValidationError, 400),
        (PolicyViolationError, 400),
    )

    # Codes whose status differs from their family
    CODE_STATUS_OVERRIDES = {
        "DAILY_MEAL_ALREADY_SET": 409,
    }

    @classmethod
    def status_for(cls, error: BaseApplicationError) -> int:
        if error.error_code in cls.CODE_STATUS_OVERRIDES:
            return cls.CODE_STATUS_OVERRIDES[error.error_code]
        for family, status in cls.FAMILY_STATUS:
            if isinstance(error, family):
                return status
        return 400

    @classmethod
    def handle_application_error(cls, error: BaseApplicationError) -> ErrorResponse:
        if isinstance(error, (DatabaseError, ConcurrencyError)):
            logger.warning("Store error %s: %s", error.error_code, error.message)
        return ErrorResponse(error.error_code, error.message, error.details, cls.status_for(error))

    @classmethod
    def handle_http_exception(cls, error: HTTPException) -> ErrorResponse:
        return ErrorResponse(
            error_code="HTTP_ERROR",
            message=str(error.detail),
            details={"status_code": error.status_code},
            http_status=error.status_code
        )

    @classmethod
    def handle_validation_error(cls, error: RequestValidationError) -> ErrorResponse:
        # errors() may carry non-JSON values such as the offending input
        errors = json.loads(json.dumps(error.errors(), default=str))
        return ErrorResponse(
            error_code="VALIDATION_ERROR",
            message="Request validation failed",
            details={"validation_errors": errors},
            http_status=422
        )

    @classmethod
    def handle_unknown_error(cls, error: Exception) -> ErrorResponse:
        logger.error("Unhandled %s: %s", type(error).__name__, error, exc_info=error)
        try:
            db_manager.log_action("system_error", {
                "type": type(error).__name__,
                "message": str(error),
                "traceback": traceback.format_exc(),
            })
        except BaseApplicationError:
            logger.exception("Could not record system_error in logs table")

        return ErrorResponse(
            error_code="INTERNAL_ERROR",
            message=str(error) or "Internal server error",
            details={"error_type": type(error).__name__},
            http_status=500
        )


async def application_error_handler(request: Request, exc: BaseApplicationError) -> JSONResponse:
    return ErrorHandler.handle_application_error(exc).to_json_response()


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return ErrorHandler.handle_http_exception(exc).to_json_response()


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return ErrorHandler.handle_validation_error(exc).to_json_response()


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    return ErrorHandler.handle_unknown_error(exc).to_json_response()


def create_success_response(data: Any = None, message: str = "OK") -> Dict[str, Any]:
    response = {"success": True, "message": message}
    if data is not None:
        response["data"] = data
    return response


def create_paginated_response(items: list, total: int, page: int,
                              page_size: int, message: str = "OK") -> Dict[str, Any]:
    pagination = {
        "total": total,
        "page": page,
        "page_size": page_size,
        "total_pages": page_count(total, page_size),
    }
    return create_success_response({"items": items, "pagination": pagination}, message)

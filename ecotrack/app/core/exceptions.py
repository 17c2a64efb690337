"""
Custom exceptions and error handlers for consistent error responses.

Provides standardized error codes and global exception handlers.
"""

import logging
from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from typing import Any, Dict

logger = logging.getLogger(__name__)


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, error_code: str, status_code: int = 500, details: Dict[str, Any] = None):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class InsufficientPermissionsError(AppException):
    """Raised when user doesn't have permission to perform an action."""

    def __init__(self, message: str = "Insufficient permissions", details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_PERM_001",
            status_code=status.HTTP_403_FORBIDDEN,
            details=details
        )


class ResourceNotFoundError(AppException):
    """Raised when requested resource is not found."""

    def __init__(self, resource: str, resource_id: Any = None):
        message = f"{resource} not found"
        if resource_id:
            message = f"{resource} with ID {resource_id} not found"
        super().__init__(
            message=message,
            error_code="ERR_NOT_FOUND_001",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource": resource, "id": resource_id}
        )


# Unknown collector / report / pickup log
NotFoundError = ResourceNotFoundError


class AuthenticationError(AppException):
    """Raised for authentication failures."""

    def __init__(self, message: str = "Authentication failed"):
        super().__init__(
            message=message,
            error_code="ERR_AUTH_001",
            status_code=status.HTTP_401_UNAUTHORIZED
        )


class InvalidRoleError(AppException):
    """Raised when a user is referenced in a role they do not hold."""

    def __init__(self, user_id: int, expected_role: str, actual_role: str):
        super().__init__(
            message=f"User {user_id} is not a {expected_role.lower()}",
            error_code="ERR_ROLE_001",
            status_code=status.HTTP_400_BAD_REQUEST,
            details={"user_id": user_id, "expected_role": expected_role, "actual_role": actual_role}
        )


class DuplicateActiveLogError(AppException):
    """Raised when a pickup is already open for a (report, collector) pair."""

    def __init__(self, report_id: int, collector_id: int, pickup_log_id: int = None):
        super().__init__(
            message="Pickup already started for this report",
            error_code="ERR_PICKUP_001",
            status_code=status.HTTP_409_CONFLICT,
            details={
                "report_id": report_id,
                "collector_id": collector_id,
                "pickup_log_id": pickup_log_id
            }
        )


class StaleStateError(AppException):
    """
    Raised when a status transition targets a record that already moved.

    The caller must re-read the record; the transition is never retried.
    """

    def __init__(self, resource: str, resource_id: int, expected_status: str, current_status: str = None):
        super().__init__(
            message=f"{resource} {resource_id} is no longer {expected_status}",
            error_code="ERR_STATE_001",
            status_code=status.HTTP_409_CONFLICT,
            details={
                "resource": resource,
                "id": resource_id,
                "expected_status": expected_status,
                "current_status": current_status
            }
        )


class InvalidTransitionError(AppException):
    """Raised when a status change is not allowed from the current status."""

    def __init__(self, current_status: str, target_status: str):
        super().__init__(
            message=f"Cannot move report from {current_status} to {target_status}",
            error_code="ERR_STATE_002",
            status_code=status.HTTP_409_CONFLICT,
            details={"current_status": current_status, "target_status": target_status}
        )


class InvalidGeometryError(AppException):
    """Raised when a report coordinate cannot be used for distance math."""

    def __init__(self, report_id: int, reason: str):
        self.report_id = report_id
        self.reason = reason
        super().__init__(
            message=f"Report {report_id} has unusable coordinates: {reason}",
            error_code="ERR_GEO_001",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details={"report_id": report_id, "reason": reason}
        )


# Global Exception Handlers

async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handler for custom application exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": exc.error_code,
            "message": exc.message,
            "details": exc.details
        }
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handler for FastAPI HTTPException with standardized format."""
    # Map status code to error code
    error_code_map = {
        400: "ERR_BAD_REQUEST",
        401: "ERR_UNAUTHORIZED",
        403: "ERR_FORBIDDEN",
        404: "ERR_NOT_FOUND",
        409: "ERR_CONFLICT",
        500: "ERR_INTERNAL_SERVER"
    }

    error_code = error_code_map.get(exc.status_code, "ERR_UNKNOWN")

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": error_code,
            "message": exc.detail,
            "details": {}
        },
        headers=getattr(exc, "headers", None)
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handler for Pydantic validation errors."""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error_code": "ERR_VALIDATION",
            "message": "Validation error",
            "details": {
                "errors": jsonable_encoder(exc.errors())
            }
        }
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for unhandled exceptions."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error_code": "ERR_INTERNAL_SERVER",
            "message": "An internal server error occurred",
            "details": {}
        }
    )

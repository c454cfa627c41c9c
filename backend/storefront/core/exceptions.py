"""
Centralized Exception Handling for the Storefront backend

This module provides:
- Custom exception classes for different error types
- Standardized error response format
- Exception handlers for FastAPI

Expected business failures (insufficient stock, coupon not claimable,
refund declined) are returned as result objects by the services. The
exceptions below are for invalid requests and unexpected faults.
"""

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from datetime import datetime, timezone
import logging
from typing import Dict, Any, Optional

logger = logging.getLogger(__name__)

# =============================================================================
# Module Exports
# =============================================================================
__all__ = [
    # Base exception
    "StorefrontException",
    # Authentication/Authorization
    "AuthenticationError",
    "AuthorizationError",
    # Validation / resources
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "InvalidStateTransition",
    "DatabaseError",
    "ConfigurationError",
    # Order-related
    "OrderError",
    "OrderNotFoundError",
    "CheckoutError",
    # Returns
    "ReturnNotFoundError",
    # Payment / courier
    "PaymentError",
    "ExternalServiceError",
    "PaymentGatewayError",
    "GatewayDecodeError",
    "CourierError",
    # Response helpers
    "create_error_response",
    "storefront_exception_handler",
    "request_validation_exception_handler",
    "unhandled_exception_handler",
]


class StorefrontException(Exception):
    """Base exception for the Storefront application"""

    def __init__(self, message: str, error_code: str = "INTERNAL_ERROR",
                 details: Dict[str, Any] = None, status_code: int = 500):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.status_code = status_code
        super().__init__(self.message)


class AuthenticationError(StorefrontException):
    """Authentication related errors"""

    def __init__(self, message: str = "Authentication failed", details: Dict[str, Any] = None):
        super().__init__(message, "AUTH_ERROR", details, 401)


class AuthorizationError(StorefrontException):
    """Authorization/permission related errors"""

    def __init__(self, message: str = "Access denied", details: Dict[str, Any] = None):
        super().__init__(message, "AUTHZ_ERROR", details, 403)


class ValidationError(StorefrontException):
    """Data validation error"""

    def __init__(self, message: str = "Validation failed", details: Dict[str, Any] = None):
        super().__init__(message, "VALIDATION_ERROR", details, 400)


class NotFoundError(StorefrontException):
    """Resource not found error"""

    def __init__(self, message: str = "Resource not found", details: Dict[str, Any] = None):
        super().__init__(message, "NOT_FOUND", details, 404)


class ConflictError(StorefrontException):
    """Concurrent modification or duplicate resource"""

    def __init__(self, message: str = "Conflict", details: Dict[str, Any] = None):
        super().__init__(message, "CONFLICT", details, 409)


class InvalidStateTransition(StorefrontException):
    """A status change that the entity's current state does not allow"""

    def __init__(self, entity: str, entity_id: str, current: Optional[str], target: str,
                 details: Dict[str, Any] = None):
        super().__init__(
            f"{entity} '{entity_id}' cannot move from {current} to {target}",
            "INVALID_STATE_TRANSITION",
            {**(details or {}), "entity": entity, "entity_id": entity_id,
             "current_status": current, "target_status": target},
            409
        )


class DatabaseError(StorefrontException):
    """Database operation error"""

    def __init__(self, message: str = "Database operation failed", details: Dict[str, Any] = None):
        super().__init__(message, "DATABASE_ERROR", details, 500)


class ConfigurationError(StorefrontException):
    """Configuration/setup error"""

    def __init__(self, message: str = "Configuration error", details: Dict[str, Any] = None):
        super().__init__(message, "CONFIG_ERROR", details, 500)


class OrderError(StorefrontException):
    """Order-related errors"""

    def __init__(self, message: str = "Order operation failed", error_code: str = "ORDER_ERROR",
                 details: Dict[str, Any] = None, status_code: int = 400):
        super().__init__(message, error_code, details, status_code)


class OrderNotFoundError(OrderError):
    """Order not found error"""

    def __init__(self, order_ref: str, details: Dict[str, Any] = None):
        super().__init__(
            f"Order '{order_ref}' not found",
            "ORDER_NOT_FOUND",
            {**(details or {}), "order": order_ref},
            404
        )


class CheckoutError(OrderError):
    """Checkout could not complete; carries the failing step's error code"""

    def __init__(self, message: str, error_code: str = "CHECKOUT_FAILED",
                 details: Dict[str, Any] = None, status_code: int = 400):
        super().__init__(message, error_code, details, status_code)


class ReturnNotFoundError(NotFoundError):
    """Return order not found"""

    def __init__(self, return_id: str, details: Dict[str, Any] = None):
        super().__init__(
            f"Return '{return_id}' not found",
            {**(details or {}), "return_id": return_id}
        )
        self.error_code = "RETURN_NOT_FOUND"


class PaymentError(StorefrontException):
    """Payment-related errors"""

    def __init__(self, message: str = "Payment operation failed", error_code: str = "PAYMENT_ERROR",
                 details: Dict[str, Any] = None, status_code: int = 400):
        super().__init__(message, error_code, details, status_code)


class ExternalServiceError(StorefrontException):
    """External service error"""

    def __init__(self, message: str = "External service error", details: Dict[str, Any] = None,
                 error_code: str = "EXTERNAL_SERVICE_ERROR"):
        super().__init__(message, error_code, details, 502)


class PaymentGatewayError(ExternalServiceError):
    """Payment gateway call failed or returned a non-success status"""

    def __init__(self, message: str, status_code: Optional[int] = None, raw: Optional[str] = None):
        super().__init__(
            message,
            {"gateway_status_code": status_code, "raw": raw},
            "PAYMENT_GATEWAY_ERROR"
        )
        self.gateway_status_code = status_code
        self.raw = raw


class GatewayDecodeError(PaymentGatewayError):
    """Gateway answered 2xx but the body did not match the expected shape"""

    def __init__(self, message: str, raw: Optional[str] = None):
        super().__init__(message, None, raw)
        self.error_code = "GATEWAY_DECODE_ERROR"


class CourierError(ExternalServiceError):
    """Courier API call failed or returned an unusable response"""

    def __init__(self, message: str, status_code: Optional[int] = None, raw: Optional[str] = None):
        super().__init__(
            message,
            {"courier_status_code": status_code, "raw": raw},
            "COURIER_ERROR"
        )
        self.courier_status_code = status_code
        self.raw = raw


def create_error_response(error: StorefrontException, status_code: Optional[int] = None) -> JSONResponse:
    """Create standardized error response"""

    if status_code is None:
        status_code = error.status_code

    error_response = {
        "success": False,
        "error": {
            "code": error.error_code,
            "message": error.message,
            "details": error.details
        },
        "timestamp": datetime.now(timezone.utc).isoformat()
    }

    log = logger.error if status_code >= 500 else logger.warning
    log(f"Storefront Error: {error.error_code} - {error.message}", extra={
        "error_code": error.error_code,
        "status_code": status_code,
    })

    return JSONResponse(
        status_code=status_code,
        content=error_response
    )


async def storefront_exception_handler(request: Request, exc: StorefrontException) -> JSONResponse:
    """Global exception handler for Storefront exceptions"""
    return create_error_response(exc)


async def request_validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Render pydantic request validation failures in the standard error shape"""
    errors = [
        {"field": ".".join(str(p) for p in err.get("loc", ())), "message": err.get("msg")}
        for err in exc.errors()
    ]
    return create_error_response(
        ValidationError("Request validation failed", {"errors": errors}),
        status_code=422
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last-resort handler: log the fault, return a generic server error"""
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return create_error_response(
        StorefrontException("An unexpected error occurred", "INTERNAL_ERROR", None, 500)
    )

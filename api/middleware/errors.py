"""Error handling middleware and exception handlers."""

import logging
from datetime import datetime, timezone
from typing import Any, Dict

import stripe
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from billsync.errors import (
    BAD_REQUEST,
    FORBIDDEN,
    NOT_FOUND,
    PRECONDITION_FAILED,
    UNAUTHORIZED,
    BillingError,
)

logger = logging.getLogger("billsync.api")

BILLING_ERROR_STATUS = {
    BAD_REQUEST: status.HTTP_400_BAD_REQUEST,
    UNAUTHORIZED: status.HTTP_401_UNAUTHORIZED,
    FORBIDDEN: status.HTTP_403_FORBIDDEN,
    NOT_FOUND: status.HTTP_404_NOT_FOUND,
    PRECONDITION_FAILED: status.HTTP_412_PRECONDITION_FAILED,
}

PLAN_FIELDS = ("planId", "plan_id")


class APIError(Exception):
    """Base class for API errors."""

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = status.HTTP_400_BAD_REQUEST,
        details: Dict[str, Any] = None
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class WebhookConfigurationError(APIError):
    """Webhook received without a signing secret configured."""

    def __init__(self):
        super().__init__(
            code="WEBHOOK_NOT_CONFIGURED",
            message="Stripe webhook secret is not configured",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )


def build_error_response(
    request: Request,
    code: str,
    message: str,
    status_code: int,
    details: Dict[str, Any] = None
) -> JSONResponse:
    """Build a standardized error response."""
    request_id = getattr(request.state, "request_id", "unknown")

    return JSONResponse(
        status_code=status_code,
        content={
            "error": {
                "code": code,
                "message": message,
                "details": details or {}
            },
            "request_id": request_id,
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
        }
    )


def setup_exception_handlers(app: FastAPI):
    """Register exception handlers with the FastAPI app."""

    @app.exception_handler(APIError)
    async def api_error_handler(request: Request, exc: APIError) -> JSONResponse:
        """Handle custom API errors."""
        logger.warning(f"API Error: {exc.code} - {exc.message}")
        return build_error_response(
            request=request,
            code=exc.code,
            message=exc.message,
            status_code=exc.status_code,
            details=exc.details
        )

    @app.exception_handler(BillingError)
    async def billing_error_handler(request: Request, exc: BillingError) -> JSONResponse:
        """Handle billing procedure errors."""
        logger.warning(f"Billing Error: {exc.code} - {exc.message}")
        return build_error_response(
            request=request,
            code=exc.code,
            message=exc.message,
            status_code=BILLING_ERROR_STATUS.get(exc.code, status.HTTP_400_BAD_REQUEST),
        )

    @app.exception_handler(stripe.StripeError)
    async def stripe_error_handler(request: Request, exc: stripe.StripeError) -> JSONResponse:
        """Handle errors returned by the Stripe API."""
        logger.error(f"Stripe Error: {type(exc).__name__} - {exc.user_message or str(exc)}")
        return build_error_response(
            request=request,
            code="PAYMENT_PROVIDER_ERROR",
            message=exc.user_message or str(exc),
            status_code=status.HTTP_502_BAD_GATEWAY,
            details={"type": type(exc).__name__, "stripe_code": exc.code},
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        request: Request,
        exc: RequestValidationError
    ) -> JSONResponse:
        """Handle Pydantic validation errors from request parsing."""
        raw = exc.errors()
        errors = []
        for error in raw:
            errors.append({
                "field": ".".join(str(loc) for loc in error["loc"]),
                "message": error["msg"],
                "type": error["type"]
            })

        logger.warning(f"Validation Error: {errors}")

        # Unknown plan ids are reported like any other rejected plan
        if raw and all(e["type"] == "enum" and e["loc"][-1] in PLAN_FIELDS for e in raw):
            return build_error_response(
                request=request,
                code=BAD_REQUEST,
                message="Unknown plan.",
                status_code=status.HTTP_400_BAD_REQUEST,
                details={"errors": errors}
            )

        return build_error_response(
            request=request,
            code="VALIDATION_ERROR",
            message="Request validation failed",
            status_code=status.HTTP_400_BAD_REQUEST,
            details={"errors": errors}
        )

    @app.exception_handler(Exception)
    async def generic_error_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle unexpected errors."""
        logger.exception(f"Unexpected error: {str(exc)}")
        return build_error_response(
            request=request,
            code="INTERNAL_ERROR",
            message="An unexpected error occurred",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            details={"type": type(exc).__name__}
        )

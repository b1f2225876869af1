"""FastAPI application entry point."""
import uuid
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app
from sqlalchemy.exc import SQLAlchemyError

from studio_billing.adapters.stripe_adapter import StripeAdapter
from studio_billing.api.v1 import billing, clients, health, invoices, payment_plans, subscriptions
from studio_billing.api.webhooks import stripe as stripe_webhooks
from studio_billing.auth.jwt import JWTAuth
from studio_billing.config import Settings, settings
from studio_billing.database import Database
from studio_billing.exceptions import (
    BillingError,
    BillingValidationError,
    InvalidStateError,
    InvoiceNumberConflictError,
    PaymentGatewayError,
    RecordNotFoundError,
    WebhookVerificationError,
)
from studio_billing.integrations.notification_service import NotificationService
from studio_billing.middleware.logging import LoggingMiddleware, setup_logging
from studio_billing.middleware.metrics import MetricsMiddleware
from studio_billing.schemas.error import REMEDIATION_HINTS, ErrorCode, ErrorDetail, ErrorResponse

# Setup structured logging
setup_logging()
logger = structlog.get_logger(__name__)

# Domain exception -> (HTTP status, error name, error code)
BILLING_ERROR_RESPONSES: dict[type[BillingError], tuple[int, str, str]] = {
    RecordNotFoundError: (status.HTTP_404_NOT_FOUND, "NotFound", ErrorCode.RECORD_NOT_FOUND),
    InvalidStateError: (status.HTTP_400_BAD_REQUEST, "InvalidState", ErrorCode.INVALID_STATE_TRANSITION),
    BillingValidationError: (status.HTTP_400_BAD_REQUEST, "ValidationError", ErrorCode.VALIDATION_ERROR),
    InvoiceNumberConflictError: (status.HTTP_409_CONFLICT, "Conflict", ErrorCode.INVOICE_NUMBER_CONFLICT),
    PaymentGatewayError: (status.HTTP_502_BAD_GATEWAY, "PaymentGatewayError", ErrorCode.STRIPE_API_ERROR),
    WebhookVerificationError: (status.HTTP_400_BAD_REQUEST, "WebhookVerificationError", ErrorCode.WEBHOOK_SIGNATURE_INVALID),
}

# Pydantic v2 error types mapped to our error codes
VALIDATION_CODES = {
    "missing": ErrorCode.MISSING_REQUIRED_FIELD,
    "uuid_parsing": ErrorCode.INVALID_UUID,
    "uuid_type": ErrorCode.INVALID_UUID,
    "date_parsing": ErrorCode.INVALID_DATE,
    "date_from_datetime_parsing": ErrorCode.INVALID_DATE,
    "decimal_parsing": ErrorCode.INVALID_AMOUNT,
    "decimal_max_places": ErrorCode.INVALID_AMOUNT,
    "greater_than": ErrorCode.INVALID_AMOUNT,
}


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or request.headers.get(
        "x-request-id", f"req_{uuid.uuid4().hex[:12]}"
    )


def _error_response(
    request: Request,
    status_code: int,
    error: str,
    message: str,
    details: list[ErrorDetail],
    remediation: str | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(
            error=error,
            message=message,
            details=details,
            remediation=remediation,
            request_id=_request_id(request),
        ).model_dump(mode="json"),
        headers=headers,
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """
    Handle Pydantic validation errors with structured response.

    Returns 422 with detailed field-level validation errors.
    """
    details = []
    for error in exc.errors():
        field_path = ".".join(str(loc) for loc in error["loc"])
        code = VALIDATION_CODES.get(error["type"], ErrorCode.VALIDATION_ERROR)
        if error["loc"] and str(error["loc"][-1]).endswith("email") and error["type"] == "value_error":
            code = ErrorCode.INVALID_EMAIL

        details.append(
            ErrorDetail(
                code=code,
                message=error["msg"],
                field=field_path,
                value=jsonable_encoder(error.get("input")),
            )
        )

    logger.warning("validation_error", error_count=len(details))

    first_code = details[0].code if details else None
    return _error_response(
        request,
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        "ValidationError",
        "Request validation failed",
        details,
        remediation=REMEDIATION_HINTS.get(first_code, "Check the API documentation for correct request format at /docs"),
    )


async def billing_exception_handler(request: Request, exc: BillingError) -> JSONResponse:
    """
    Handle domain errors raised by the service layer.

    Maps each exception type to its HTTP status; gateway failures are 502.
    """
    status_code, error, code = BILLING_ERROR_RESPONSES.get(
        type(exc), (status.HTTP_400_BAD_REQUEST, "BillingError", ErrorCode.VALIDATION_ERROR)
    )
    if isinstance(exc, BillingValidationError) and "plan_type" in exc.details:
        code = ErrorCode.UNKNOWN_PLAN

    log = logger.error if status_code >= 500 else logger.warning
    log("billing_error", error_type=type(exc).__name__, error_message=exc.message, status_code=status_code)

    return _error_response(
        request,
        status_code,
        error,
        exc.message,
        [ErrorDetail(code=code, message=exc.message, context=exc.details or None)],
        remediation=REMEDIATION_HINTS.get(code),
    )


async def database_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """
    Handle database errors.

    Returns 503 Service Unavailable for database connection issues.
    """
    logger.error("database_error", error_type=type(exc).__name__, error_message=str(exc))

    # Don't expose internal database details in production
    error_message = "Database temporarily unavailable" if settings.app_env == "production" else str(exc)

    return _error_response(
        request,
        status.HTTP_503_SERVICE_UNAVAILABLE,
        "DatabaseError",
        "A database error occurred",
        [ErrorDetail(code=ErrorCode.DATABASE_ERROR, message=error_message)],
        remediation=REMEDIATION_HINTS.get(ErrorCode.DATABASE_ERROR),
        headers={"Retry-After": "30"},
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Handle all other uncaught exceptions.

    Logs the full stack trace but returns a safe error message to the client.
    """
    logger.exception("unhandled_exception", exception_type=type(exc).__name__)

    return _error_response(
        request,
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "InternalServerError",
        "An unexpected error occurred",
        [ErrorDetail(code=ErrorCode.INTERNAL_ERROR, message=str(exc) if settings.debug else "Internal server error")],
        remediation="Please contact support with the request ID",
    )


def create_app(
    config: Settings = settings,
    database: Database | None = None,
    stripe_adapter: StripeAdapter | None = None,
    notification_service: NotificationService | None = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Components not passed in are created from the settings; the database is
    created during startup unless one is supplied.

    Args:
        config: Application settings
        database: Pre-built database (tests pass an in-memory one)
        stripe_adapter: Gateway adapter
        notification_service: Email notifications

    Returns:
        Configured FastAPI application
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan manager for startup and shutdown events."""
        logger.info("application_starting", env=config.app_env)
        if getattr(app.state, "database", None) is None:
            app.state.database = Database(config.database_url, echo=config.database_echo)
        if config.create_tables_on_startup:
            await app.state.database.create_all()
        yield
        logger.info("application_shutting_down")
        await app.state.database.dispose()

    app = FastAPI(
        title="Studio Billing",
        description="Subscriptions, payment plans and invoices reconciled with Stripe",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    if database is not None:
        app.state.database = database
    app.state.stripe_adapter = stripe_adapter or StripeAdapter(config)
    app.state.notification_service = notification_service or NotificationService(config)
    app.state.jwt_auth = JWTAuth(config)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(LoggingMiddleware)

    app.mount("/metrics", make_asgi_app())

    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(BillingError, billing_exception_handler)
    app.add_exception_handler(SQLAlchemyError, database_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    @app.get("/", tags=["Root"])
    async def root() -> dict[str, str]:
        """Root endpoint with API information."""
        return {
            "service": "Studio Billing",
            "version": "0.1.0",
            "status": "operational",
            "docs": "/docs",
        }

    app.include_router(health.router, tags=["Health"])
    app.include_router(stripe_webhooks.router)
    app.include_router(clients.router, prefix="/v1")
    app.include_router(invoices.router, prefix="/v1")
    app.include_router(subscriptions.router, prefix="/v1")
    app.include_router(payment_plans.router, prefix="/v1")
    app.include_router(billing.router, prefix="/v1")

    return app


app = create_app()

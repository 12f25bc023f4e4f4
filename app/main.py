"""Keeper Settlement Service - Main Application."""

import logging.config

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError

from app.api.errors import error_response
from app.api.routes import sellers, settlements, webhooks
from app.core.config import settings
from app.core.database import Base, engine
from app.core.errors import validation_error
from app.core.logging import setup_logging
from app.core.logging_config import LOGGING_CONFIG

# Configure logging before anything else
logging.config.dictConfig(LOGGING_CONFIG)
logger = setup_logging(settings.log_level)

# Create all tables on startup
logger.info("Creating database tables...")
Base.metadata.create_all(bind=engine)
logger.info("Database tables ready")

# -- OpenAPI tag metadata for Swagger grouping --
tags_metadata = [
    {
        "name": "Health",
        "description": "Service health and readiness checks.",
    },
    {
        "name": "Webhooks",
        "description": (
            "Signed, at-least-once notifications from the payout provider "
            "(payout.changed, seller.changed). Deduplicated by eventId; stale "
            "events never regress a record."
        ),
    },
    {
        "name": "Settlements",
        "description": (
            "Create per-order settlements, submit payouts, cancel, trigger "
            "retry passes and query settlement state."
        ),
    },
    {
        "name": "Sellers",
        "description": "Seller onboarding with the payout provider.",
    },
]


app = FastAPI(
    title="Keeper Settlement Service",
    description=(
        "## Marketplace Settlement & Payout Synchronization API\n\n"
        "Computes the platform fee for every completed order, tracks the "
        "payout owed to the merchant, and keeps that record in sync with the "
        "payout provider's webhook stream.\n\n"
        "### Settlement lifecycle\n"
        "`PENDING` -> `PROCESSING` -> `COMPLETED` | `FAILED` (retried up to 3 "
        "times with exponential backoff) -> `CANCELLED`\n\n"
        "### Error responses\n"
        "| Kind | Status |\n"
        "|------|--------|\n"
        "| validation | 400 |\n"
        "| not found | 404 |\n"
        "| status conflict | 409 |\n"
        "| provider / insufficient balance | 422 |\n"
        "| processing | 503 (retryable) / 500 |\n"
    ),
    version="1.0.0",
    openapi_tags=tags_metadata,
    docs_url="/docs",
    redoc_url="/redoc",
)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Report malformed request bodies/params as VALIDATION errors (400)."""
    field_errors: dict[str, list[str]] = {}
    for err in exc.errors():
        field = ".".join(str(part) for part in err.get("loc", ()) if part != "body") or "request"
        field_errors.setdefault(field, []).append(err.get("msg", "invalid value"))
    return error_response(validation_error("Request validation failed", field_errors=field_errors), request)


app.include_router(webhooks.router, prefix="/webhooks", tags=["Webhooks"])
app.include_router(settlements.router, prefix="/api/v1/settlements", tags=["Settlements"])
app.include_router(sellers.router, prefix="/api/v1/sellers", tags=["Sellers"])

logger.info("Keeper Settlement API ready - routes registered")


@app.get("/health", tags=["Health"])
def health_check():
    """Health check endpoint.

    Returns a simple JSON object confirming the service is running.
    Useful for load balancers and monitoring systems.
    """
    return {"status": "healthy", "service": "keeper-settlement"}

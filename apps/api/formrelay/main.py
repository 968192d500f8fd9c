"""FastAPI application entry point."""

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text

from formrelay.core.config import settings
from formrelay.core.errors import FormRelayError, ValidationFailedError
from formrelay.core.rate_limit import limiter
from formrelay.db.session import engine

logger = logging.getLogger(__name__)

# ============================================================================
# FastAPI App
# ============================================================================

app = FastAPI(
    title="FormRelay API",
    description="Candidate intake forms, email reply reconciliation and case pipeline",
    version=settings.VERSION,
    docs_url="/docs" if settings.ENV == "dev" else None,
    redoc_url="/redoc" if settings.ENV == "dev" else None,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Actor"],
)


@app.exception_handler(FormRelayError)
async def formrelay_error_handler(request: Request, exc: FormRelayError) -> JSONResponse:
    content: dict = {"detail": exc.message, "code": exc.code}
    if isinstance(exc, ValidationFailedError):
        content["field_errors"] = exc.field_errors
    if exc.status_code >= 500:
        logger.warning("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=content)


# ============================================================================
# Routers
# ============================================================================

from formrelay.routers import (  # noqa: E402
    cases,
    form_templates,
    forms,
    forms_public,
    integrations,
    reconciliation,
    responses,
    webhooks,
)

# Public candidate-facing routes are declared before /forms/{token}
app.include_router(forms_public.router)
app.include_router(form_templates.router)
app.include_router(forms.router)
app.include_router(responses.router)
app.include_router(cases.router)
app.include_router(integrations.router)
app.include_router(reconciliation.router)
app.include_router(webhooks.router)


@app.get("/health")
def health():
    """
    Health check endpoint.

    Verifies database connectivity and returns environment info.
    """
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
    return {"status": "ok", "env": settings.ENV, "version": settings.VERSION}

"""
Health check endpoint.

GET /health — checks MongoDB connectivity and outbound collaborators.
Rules:
- MongoDB failure → "unhealthy" (503) — the app cannot function without it.
- Email API token or OAuth providers missing → "degraded" (200) — login by
  password keeps working, registration and Google sign-in do not.
"""

from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from shared.logging import get_logger

log = get_logger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(request: Request) -> JSONResponse:
    checks: dict[str, str] = {}
    overall = "healthy"

    try:
        db = request.app.state.db
        await db.client.admin.command("ping")
        checks["mongodb"] = "ok"
    except Exception as e:
        log.error("health_mongodb_failed", error=str(e), error_type=type(e).__name__)
        checks["mongodb"] = "error"
        overall = "unhealthy"

    settings = request.app.state.settings
    if settings.email.zepto_api_token:
        checks["email"] = "configured"
    else:
        checks["email"] = "not_configured"
        if overall == "healthy":
            overall = "degraded"

    providers = getattr(request.app.state, "identity_providers", None) or {}
    checks["oauth"] = ",".join(sorted(providers)) if providers else "not_configured"

    status_code = 503 if overall == "unhealthy" else 200
    return JSONResponse(
        status_code=status_code,
        content={"status": overall, "checks": checks},
    )

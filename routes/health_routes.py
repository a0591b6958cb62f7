"""
Health check endpoint.

GET /health — pings MongoDB.
Rules:
- MongoDB failure → "unhealthy" (503), the store backs every auth decision.
"""

from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from shared.logging import get_logger

log = get_logger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health")
def health_check(request: Request) -> JSONResponse:
    checks: dict[str, str] = {}
    overall = "healthy"

    try:
        db = request.app.state.db
        db.client.admin.command("ping")
        checks["mongodb"] = "ok"
    except Exception as e:
        log.error("health_check_failed", component="mongodb", error=str(e))
        checks["mongodb"] = "error"
        overall = "unhealthy"

    status_code = 503 if overall == "unhealthy" else 200
    return JSONResponse(
        status_code=status_code,
        content={"status": overall, "checks": checks},
    )

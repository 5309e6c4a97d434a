"""Health check endpoints for load balancers and monitoring."""

from datetime import datetime

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from app.config import settings

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    """Lightweight health check for load balancer (no DB check)."""
    return {
        "status": "ok",
        "service": "Konsul Bills",
        "timestamp": datetime.utcnow().isoformat(),
        "environment": settings.environment,
    }


@router.get("/health/ready")
async def readiness_check(request: Request):
    """Readiness check: 200 only when the document store answers."""
    checks = {
        "service": "ok",
        "database": "unknown",
        "pending_sync": len(request.app.state.pending_sync),
    }

    ai_client = getattr(request.app.state, "ai_client", None)
    checks["ai"] = "configured" if ai_client is not None and ai_client.is_enabled() else "locked"

    gateway = getattr(request.app.state, "gateway", None)
    if gateway is None:
        checks["database"] = "not configured"
    elif await gateway.ping():
        checks["database"] = "ok"
    else:
        checks["database"] = "unreachable"

    healthy = checks["database"] == "ok"
    return JSONResponse(
        status_code=200 if healthy else 503,
        content={
            "status": "healthy" if healthy else "unhealthy",
            "service": "Konsul Bills",
            "checks": checks,
            "timestamp": datetime.utcnow().isoformat(),
        },
    )

"""Health check endpoints."""

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from app.config import settings
from app.database import Database

router = APIRouter(tags=["Health"])


@router.get("/health")
async def health_check(request: Request):
    """Health check endpoint."""
    scheduler = getattr(request.app.state, "scheduler", None)
    presence = getattr(request.app.state, "presence", None)
    return {
        "status": "healthy",
        "service": settings.APP_NAME,
        "environment": settings.ENVIRONMENT,
        "scheduler_running": bool(scheduler and scheduler.running),
        "connections": len(presence) if presence is not None else 0,
    }


@router.get("/ready")
async def readiness_check():
    """Readiness check for Kubernetes/Docker."""
    if not await Database.ping():
        return JSONResponse(status_code=503, content={"status": "not ready", "database": "unreachable"})
    return {"status": "ready"}

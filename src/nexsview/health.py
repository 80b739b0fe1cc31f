"""Health check API endpoints."""

from fastapi import APIRouter, Request

router = APIRouter(prefix="/health", tags=["health"])


@router.get("")
async def health_check() -> dict:
    """Basic health check endpoint."""
    return {"status": "healthy", "service": "nexsview"}


@router.get("/ready")
async def readiness_check(request: Request) -> dict:
    """Readiness check, including whether a spreadsheet session is active."""
    settings = request.app.state.settings
    session = request.app.state.service.store.session
    return {
        "status": "ready",
        "service": "nexsview",
        "environment": settings.environment,
        "session_active": session is not None,
        "live_bound": bool(session and session.live_bound),
    }

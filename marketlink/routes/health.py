from fastapi import APIRouter, Request
from sqlalchemy import text

from marketlink.scheduler import get_scheduler_status

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    """Basic health check"""
    return {"status": "healthy", "service": "marketlink"}


@router.get("/health/detail")
async def detailed_health(request: Request):
    """Check database connectivity and scheduler state"""
    database = "connected"
    session_factory = getattr(request.app.state, "session_factory", None)
    try:
        if session_factory is None:
            database = "not_initialized"
        else:
            async with session_factory() as session:
                await session.execute(text("SELECT 1"))
    except Exception as e:
        database = f"error: {type(e).__name__}"

    return {
        "status": "healthy" if database == "connected" else "unhealthy",
        "database": database,
        "scheduler": await get_scheduler_status(),
    }

from fastapi import Request, HTTPException

from marketlink.services.marketplaces import ConnectionLifecycleManager


def get_lifecycle_manager(request: Request) -> ConnectionLifecycleManager:
    """Dependency for the lifecycle manager composed at startup."""
    manager = getattr(request.app.state, "lifecycle_manager", None)
    if manager is None:
        raise HTTPException(status_code=503, detail="Service is starting up")
    return manager

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import RedirectResponse

from marketlink.core.enums import ConnectionStatus
from marketlink.core.exceptions import (
    CacheUnavailableError,
    ConnectionNotFoundError,
    DatabaseError,
    ExchangeError,
    InvalidStateError,
    InvalidStatusTransitionError,
    NotConnectedError,
    NotSupportedError,
)
from marketlink.dependencies import get_lifecycle_manager
from marketlink.schemas.marketplace import (
    AuthorizationUrlRead,
    ConnectionView,
    LinkMarketplaceRequest,
    LinkMarketplaceResponse,
    MarketplaceStatusRead,
    UpdateMarketplaceStatus,
)
from marketlink.services.marketplaces import ConnectionLifecycleManager

router = APIRouter(prefix="/api/marketplaces", tags=["marketplaces"])

logger = logging.getLogger(__name__)

UNEXPECTED_OAUTH_ERROR = "An unexpected error occurred during the OAuth flow."


def _to_http_error(error: Exception) -> HTTPException:
    if isinstance(error, NotSupportedError):
        return HTTPException(status_code=400, detail=str(error))
    if isinstance(error, ConnectionNotFoundError):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, (InvalidStatusTransitionError, NotConnectedError)):
        return HTTPException(status_code=409, detail=str(error))
    if isinstance(error, ExchangeError):
        return HTTPException(status_code=502, detail="Marketplace token request failed")
    if isinstance(error, (DatabaseError, CacheUnavailableError)):
        return HTTPException(status_code=503, detail="Service temporarily unavailable")
    return HTTPException(status_code=500, detail="Internal server error")


@router.get("/oauth/callback/{marketplace}")
async def handle_oauth_callback(
    marketplace: str,
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    error_description: Optional[str] = None,
    manager: ConnectionLifecycleManager = Depends(get_lifecycle_manager),
):
    """
    OAuth redirect target. Always answers with a redirect to the mobile app,
    success and failure alike.
    """
    logger.info(f"Handling OAuth callback for marketplace: {marketplace}")
    registry = manager.registry

    def redirect(status: str, connection_status: ConnectionStatus, reason: Optional[str] = None):
        url = registry.build_deep_link(
            marketplace,
            status=status,
            marketplace=marketplace,
            connectionStatus=connection_status.value,
            error=reason if status == "error" else None,
        )
        logger.info(f"Redirecting OAuth callback for {marketplace} with status={status}")
        return RedirectResponse(url=url, status_code=302)

    if not registry.is_supported(marketplace):
        logger.warning(f"Unsupported marketplace in callback: {marketplace}")
        return redirect("error", ConnectionStatus.NOT_SUPPORTED, "Unsupported marketplace")

    if error:
        reason = error_description or error
        logger.warning(f"{marketplace} authorization was not granted: {error}")
        try:
            await manager.handle_oauth_denial(marketplace, state, reason)
        except InvalidStateError:
            pass
        except Exception as e:
            logger.exception(f"Could not record OAuth denial for {marketplace}: {e}")
        return redirect("error", ConnectionStatus.DISCONNECTED, reason)

    try:
        await manager.handle_oauth_callback(marketplace, code, state)
    except InvalidStateError as e:
        logger.warning(f"Rejected OAuth callback for {marketplace}: {e}")
        return redirect("error", ConnectionStatus.DISCONNECTED, "Invalid or expired authorization request")
    except ExchangeError:
        return redirect("error", ConnectionStatus.DISCONNECTED, "Failed to complete OAuth flow")
    except Exception as e:
        logger.exception(f"OAuth callback error for marketplace {marketplace}: {e}")
        return redirect("error", ConnectionStatus.DISCONNECTED, UNEXPECTED_OAUTH_ERROR)

    return redirect("success", ConnectionStatus.ACTIVE)


@router.get("/{user_id}", response_model=List[ConnectionView])
async def get_marketplaces_for_user(
    user_id: str,
    manager: ConnectionLifecycleManager = Depends(get_lifecycle_manager),
):
    """Get user marketplaces with their connection status"""
    logger.info(f"Getting marketplaces for user: {user_id}")
    try:
        marketplaces = await manager.get_marketplaces_for_user(user_id)
    except Exception as e:
        logger.error(f"Error fetching marketplaces for user {user_id}: {e}")
        raise _to_http_error(e)

    logger.debug(f"Retrieved {len(marketplaces)} marketplaces for user {user_id}")
    return marketplaces


@router.get("/{user_id}/authorize/{marketplace}", response_model=AuthorizationUrlRead)
async def get_authorization_url(
    user_id: str,
    marketplace: str,
    manager: ConnectionLifecycleManager = Depends(get_lifecycle_manager),
):
    try:
        oauth_url = await manager.generate_authorization_url(marketplace, user_id)
    except Exception as e:
        logger.error(f"Error generating {marketplace} authorization URL for user {user_id}: {e}")
        raise _to_http_error(e)
    return AuthorizationUrlRead(marketplace=marketplace, oauth_url=oauth_url)


@router.get("/{user_id}/status/{marketplace}", response_model=MarketplaceStatusRead)
async def get_marketplace_status(
    user_id: str,
    marketplace: str,
    manager: ConnectionLifecycleManager = Depends(get_lifecycle_manager),
):
    try:
        return await manager.get_marketplace_status(user_id, marketplace)
    except Exception as e:
        logger.error(f"Error reading {marketplace} status for user {user_id}: {e}")
        raise _to_http_error(e)


@router.post("/{user_id}/link", response_model=LinkMarketplaceResponse)
async def link_marketplace(
    user_id: str,
    request: LinkMarketplaceRequest,
    manager: ConnectionLifecycleManager = Depends(get_lifecycle_manager),
):
    """Start linking (returns an OAuth URL) or unlink a marketplace"""
    action = "linking" if request.link else "unlinking"
    try:
        if request.link:
            oauth_url = await manager.link_marketplace(user_id, request.marketplace_id)
            return LinkMarketplaceResponse(
                status="pending",
                message="Complete authorization with the marketplace",
                oauth_url=oauth_url,
            )

        await manager.unlink_marketplace(user_id, request.marketplace_id)
        return LinkMarketplaceResponse(status="unlinked", message="Marketplace unlinked")
    except Exception as e:
        logger.error(f"Error {action} marketplace {request.marketplace_id} for user {user_id}: {e}")
        raise _to_http_error(e)


@router.patch("/{user_id}/marketplace/{marketplace_id}/status")
async def update_marketplace_status(
    user_id: str,
    marketplace_id: int,
    update: UpdateMarketplaceStatus,
    manager: ConnectionLifecycleManager = Depends(get_lifecycle_manager),
):
    """Update marketplace connection status"""
    logger.info(f"Updating marketplace {marketplace_id} status to {update.status.value} for user {user_id}")

    if manager.registry.get_definition_by_id(marketplace_id) is None:
        raise HTTPException(status_code=404, detail=f"Marketplace {marketplace_id} not found")

    try:
        if update.status is ConnectionStatus.ACTIVE:
            # ACTIVE always needs a token behind it
            existing = await manager.get_connection(user_id, marketplace_id)
            if existing is None or not existing.access_token:
                raise InvalidStatusTransitionError("Cannot mark a marketplace ACTIVE without a completed OAuth link")

        await manager.update_status(user_id, marketplace_id, update.status, update.error_message)
    except Exception as e:
        logger.error(f"Error updating marketplace status: {e}")
        raise _to_http_error(e)

    return {
        "status": 200,
        "message": f"Marketplace status updated to {update.status.value}",
    }

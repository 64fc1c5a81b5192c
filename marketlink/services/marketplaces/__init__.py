# marketlink/services/marketplaces/__init__.py
from datetime import timedelta
from typing import Optional

import httpx
from sqlalchemy.ext.asyncio import async_sessionmaker

from marketlink.core.config import Settings
from marketlink.services.cache import KeyValueCache
from .connection_store import ConnectionStore
from .lifecycle import ConnectionLifecycleManager
from .registry import MarketplaceRegistry
from .state_tokens import StateTokenService
from .token_exchange import TokenExchangeClient, ProviderAdapter, EbayAdapter, GenericOAuth2Adapter
from .view_cache import MarketplaceViewCache


def build_lifecycle_manager(
    settings: Settings,
    session_factory: async_sessionmaker,
    cache: KeyValueCache,
    http_client: Optional[httpx.AsyncClient] = None,
    registry: Optional[MarketplaceRegistry] = None,
) -> ConnectionLifecycleManager:
    """Wire the lifecycle manager and its collaborators from settings."""
    return ConnectionLifecycleManager(
        registry=registry or MarketplaceRegistry.from_settings(settings),
        store=ConnectionStore(session_factory),
        state_tokens=StateTokenService(cache, ttl_seconds=settings.OAUTH_STATE_TTL_SECONDS),
        token_client=TokenExchangeClient(http_client, timeout=settings.TOKEN_EXCHANGE_TIMEOUT),
        view_cache=MarketplaceViewCache(cache, ttl_seconds=settings.MARKETPLACE_VIEW_CACHE_TTL),
        refresh_lookahead=timedelta(seconds=settings.TOKEN_REFRESH_LOOKAHEAD_SECONDS),
    )


__all__ = [
    "build_lifecycle_manager",
    "ConnectionLifecycleManager",
    "ConnectionStore",
    "MarketplaceRegistry",
    "StateTokenService",
    "TokenExchangeClient",
    "ProviderAdapter",
    "EbayAdapter",
    "GenericOAuth2Adapter",
    "MarketplaceViewCache",
]

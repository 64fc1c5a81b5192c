# marketlink/schemas/__init__.py
from .marketplace import (
    OAuthConfig,
    MarketplaceInfo,
    MarketplaceDefinition,
    TokenSet,
    ConnectionView,
    MarketplaceStatusRead,
    UpdateMarketplaceStatus,
    LinkMarketplaceRequest,
    LinkMarketplaceResponse,
    AuthorizationUrlRead,
    RefreshSummary,
)

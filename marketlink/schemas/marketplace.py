from typing import Optional, Dict, List
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field

from marketlink.core.enums import ConnectionStatus, TokenStatus


class OAuthConfig(BaseModel):
    """OAuth endpoints and client credentials for one marketplace"""
    authorize_url: str
    token_url: str
    client_id: str
    client_secret: str = Field(repr=False)
    redirect_uri: str
    scope: str
    additional_params: Dict[str, str] = {}

    model_config = ConfigDict(frozen=True)


class MarketplaceInfo(BaseModel):
    """Public part of a marketplace definition, safe to cache and return"""
    id: int
    slug: str
    name: str
    icon_url: Optional[str] = None
    is_supported: bool = True

    model_config = ConfigDict(frozen=True)


class MarketplaceDefinition(MarketplaceInfo):
    oauth: OAuthConfig
    mobile_deep_link_template: str

    def public(self) -> MarketplaceInfo:
        return MarketplaceInfo(
            id=self.id,
            slug=self.slug,
            name=self.name,
            icon_url=self.icon_url,
            is_supported=self.is_supported,
        )


class TokenSet(BaseModel):
    access_token: str = Field(repr=False)
    refresh_token: Optional[str] = Field(default=None, repr=False)
    expires_in_seconds: int

    model_config = ConfigDict(frozen=True)


class ConnectionView(BaseModel):
    """One entry of the per-user marketplace list"""
    marketplace: MarketplaceInfo
    connection_status: ConnectionStatus
    is_linked: bool = False
    last_sync_at: Optional[datetime] = None
    error_message: Optional[str] = None
    oauth_url: Optional[str] = None


class MarketplaceStatusRead(BaseModel):
    marketplace: str
    is_linked: bool
    connection_status: ConnectionStatus
    token_status: TokenStatus
    expires_at: Optional[datetime] = None
    last_sync_at: Optional[datetime] = None
    error_message: Optional[str] = None


class UpdateMarketplaceStatus(BaseModel):
    status: ConnectionStatus
    error_message: Optional[str] = None


class LinkMarketplaceRequest(BaseModel):
    marketplace_id: int
    link: bool


class LinkMarketplaceResponse(BaseModel):
    status: str
    message: str
    oauth_url: Optional[str] = None


class AuthorizationUrlRead(BaseModel):
    marketplace: str
    oauth_url: str


class RefreshSummary(BaseModel):
    checked: int = 0
    refreshed: int = 0
    failed: int = 0
    skipped: int = 0
    failures: List[str] = []

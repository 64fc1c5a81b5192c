# marketlink/core/config.py

import os
from functools import lru_cache
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings.
    Loads values from environment variables (.env file)
    """
    # Database settings
    DATABASE_URL: str = ""

    # Cache - leave blank to use the in-process cache
    REDIS_URL: str = ""

    # Public base URL, used to build OAuth redirect URIs
    APP_URL: str = "http://localhost:8080"

    # eBay OAuth
    EBAY_CLIENT_ID: str = ""
    EBAY_CLIENT_SECRET: str = ""
    EBAY_RU_NAME: str = ""  # eBay uses the RuName as redirect_uri
    EBAY_SANDBOX_MODE: bool = False
    EBAY_SCOPE: str = "https://api.ebay.com/oauth/api_scope https://api.ebay.com/oauth/api_scope/sell.inventory"
    EBAY_SUPPORTED: bool = True

    # Facebook OAuth
    FACEBOOK_CLIENT_ID: str = ""
    FACEBOOK_CLIENT_SECRET: str = ""
    FACEBOOK_GRAPH_VERSION: str = "v12.0"
    FACEBOOK_SCOPE: str = "marketplace_management"
    FACEBOOK_SUPPORTED: bool = True

    # Mobile app redirects
    MOBILE_APP_SCHEME: str = "resalehub://marketplaces/{slug}/oauth"
    OAUTH_FALLBACK_REDIRECT_URL: str = "http://localhost:8080/oauth/result"

    # OAuth / token lifecycle tuning
    OAUTH_STATE_TTL_SECONDS: int = 600
    MARKETPLACE_VIEW_CACHE_TTL: int = 300
    TOKEN_REFRESH_LOOKAHEAD_SECONDS: int = 300
    TOKEN_EXCHANGE_TIMEOUT: float = 15.0

    # Background refresh
    TOKEN_REFRESH_ENABLED: bool = True
    TOKEN_REFRESH_SCHEDULE: str = "0 */2 * * *"  # every two hours

    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    LOG_LEVEL: Optional[str] = None

    model_config = SettingsConfigDict(
        env_file=os.environ.get('ENV_FILE', '.env'),
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )


@lru_cache()
def get_settings():
    """Cached settings to avoid loading .env file for every request"""
    return Settings()

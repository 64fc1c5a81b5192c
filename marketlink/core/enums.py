"""
Shared enums and constants used across the application.
"""

from enum import Enum


class MarketplaceSlug(str, Enum):
    EBAY = "ebay"
    FACEBOOK = "facebook"


class ConnectionStatus(str, Enum):
    """Connection status values used in both models and schemas"""
    DISCONNECTED = "DISCONNECTED"
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    NOT_SUPPORTED = "NOT_SUPPORTED"  # derived from the registry, never persisted

    @property
    def is_persistable(self) -> bool:
        return self is not ConnectionStatus.NOT_SUPPORTED


class TokenStatus(str, Enum):
    VALID = "valid"
    EXPIRED = "expired"
    NONE = "none"

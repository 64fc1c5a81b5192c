from typing import Optional


class BaseServiceError(Exception):
    """Base exception for all service-related errors."""
    pass

class MarketplaceServiceError(BaseServiceError):
    """Base exception for marketplace connection errors."""
    pass

class NotSupportedError(MarketplaceServiceError):
    """Raised when a marketplace is unknown or not supported."""
    pass

class InvalidStateError(MarketplaceServiceError):
    """Raised when an OAuth state is missing, malformed, expired or already used."""
    pass

class ExchangeError(MarketplaceServiceError):
    """Raised when a provider token endpoint call fails."""

    def __init__(self, message: str, status_code: Optional[int] = None, provider_error: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.provider_error = provider_error

class NotConnectedError(MarketplaceServiceError):
    """Raised when a token is requested for a marketplace with no active connection."""
    pass

class ConnectionNotFoundError(MarketplaceServiceError):
    """Raised when a user/marketplace connection does not exist."""
    pass

class InvalidStatusTransitionError(MarketplaceServiceError):
    """Raised when a requested status change is not allowed."""
    pass

class DatabaseError(Exception):
    """Exception raised for database-related errors."""
    pass

class StoreUnavailableError(DatabaseError):
    """Raised when the connection store cannot be reached."""
    pass

class CacheUnavailableError(Exception):
    """Raised when the key-value cache cannot be reached."""
    pass

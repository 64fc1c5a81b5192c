from .marketplace_connection import MarketplaceConnection

__all__ = ["MarketplaceConnection"]

# marketlink/models/marketplace_connection.py
from sqlalchemy import Column, Integer, String, DateTime, Text, UniqueConstraint

from marketlink.database import Base
from marketlink.core.enums import ConnectionStatus
from marketlink.core.utils import utc_now


class MarketplaceConnection(Base):
    """
    One user's connection to one marketplace.

    Rows are never deleted: unlinking moves the status back to DISCONNECTED
    so that last_sync_at and error_message survive as history. The unique
    constraint on (user_id, marketplace_id) is what keeps concurrent first
    links from creating duplicates; the store upserts against it.
    """
    __tablename__ = "user_marketplace_links"
    __table_args__ = (
        UniqueConstraint("user_id", "marketplace_id", name="uq_user_marketplace_links_user_marketplace"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, nullable=False, index=True)
    marketplace_id = Column(Integer, nullable=False, index=True)

    connection_status = Column(
        String(32),
        nullable=False,
        default=ConnectionStatus.DISCONNECTED.value,
        index=True,
    )

    # --- Credentials ---
    access_token = Column(Text, nullable=True)
    refresh_token = Column(Text, nullable=True)
    token_expires_at = Column(DateTime, nullable=True, index=True)

    # --- Sync / diagnostics ---
    last_sync_at = Column(DateTime, nullable=True)
    error_message = Column(Text, nullable=True)

    # --- Timestamps ---
    created_at = Column(DateTime, nullable=False, default=utc_now)
    updated_at = Column(DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    @property
    def is_active(self) -> bool:
        return self.connection_status == ConnectionStatus.ACTIVE.value and bool(self.access_token)

    def __repr__(self):
        # no tokens
        return (f"<MarketplaceConnection(id={self.id}, user_id='{self.user_id}', "
                f"marketplace_id={self.marketplace_id}, status='{self.connection_status}', "
                f"token_expires_at={self.token_expires_at})>")

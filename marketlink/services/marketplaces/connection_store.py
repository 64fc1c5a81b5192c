"""
Persistence for user/marketplace connections.

Every call runs in its own session and commits before returning, so a
caller that is cancelled before the call either persisted nothing or the
whole write. The (user_id, marketplace_id) upsert is a single
INSERT ... ON CONFLICT DO UPDATE statement: concurrent first links end in
one row, last writer wins.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from marketlink.core.enums import ConnectionStatus
from marketlink.core.exceptions import StoreUnavailableError
from marketlink.core.utils import utc_now
from marketlink.models.marketplace_connection import MarketplaceConnection

logger = logging.getLogger(__name__)

UPSERT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}

WRITABLE_FIELDS = frozenset({
    "connection_status",
    "access_token",
    "refresh_token",
    "token_expires_at",
    "last_sync_at",
    "error_message",
})


def _check_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    unknown = set(fields) - WRITABLE_FIELDS
    if unknown:
        raise ValueError(f"Unknown connection fields: {sorted(unknown)}")
    status = fields.get("connection_status")
    if isinstance(status, ConnectionStatus):
        if not status.is_persistable:
            raise ValueError(f"{status.value} is derived and cannot be stored")
        fields = {**fields, "connection_status": status.value}
    return fields


class ConnectionStore:

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def find_by_user_and_marketplace(self, user_id: str, marketplace_id: int) -> Optional[MarketplaceConnection]:
        query = select(MarketplaceConnection).where(
            MarketplaceConnection.user_id == user_id,
            MarketplaceConnection.marketplace_id == marketplace_id,
        )
        try:
            async with self.session_factory() as session:
                result = await session.execute(query)
                return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error(f"Error loading connection for user {user_id}, marketplace {marketplace_id}: {e}")
            raise StoreUnavailableError("Connection store unavailable") from e

    async def find_all_by_user(self, user_id: str) -> List[MarketplaceConnection]:
        query = (
            select(MarketplaceConnection)
            .where(MarketplaceConnection.user_id == user_id)
            .order_by(MarketplaceConnection.marketplace_id)
        )
        try:
            async with self.session_factory() as session:
                result = await session.execute(query)
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error(f"Error loading connections for user {user_id}: {e}")
            raise StoreUnavailableError("Connection store unavailable") from e

    async def find_expiring_active(self, cutoff: datetime) -> List[MarketplaceConnection]:
        """ACTIVE connections whose access token expires before the cutoff."""
        query = (
            select(MarketplaceConnection)
            .where(
                MarketplaceConnection.connection_status == ConnectionStatus.ACTIVE.value,
                MarketplaceConnection.token_expires_at.is_not(None),
                MarketplaceConnection.token_expires_at < cutoff,
            )
            .order_by(MarketplaceConnection.token_expires_at)
        )
        try:
            async with self.session_factory() as session:
                result = await session.execute(query)
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error(f"Error scanning for expiring connections: {e}")
            raise StoreUnavailableError("Connection store unavailable") from e

    async def upsert(self, user_id: str, marketplace_id: int, **fields: Any) -> MarketplaceConnection:
        """
        Insert or update the connection row in one statement.

        Only the given fields are written on update; on insert the rest take
        their column defaults.

        Returns:
            The row as stored after the write
        """
        fields = _check_fields(fields)
        now = utc_now()

        try:
            async with self.session_factory() as session:
                insert = self._insert_for(session)
                statement = insert(MarketplaceConnection).values(
                    user_id=user_id,
                    marketplace_id=marketplace_id,
                    created_at=now,
                    updated_at=now,
                    **fields,
                )
                statement = statement.on_conflict_do_update(
                    index_elements=[MarketplaceConnection.user_id, MarketplaceConnection.marketplace_id],
                    set_={**fields, "updated_at": now},
                )
                await session.execute(statement)
                await session.commit()

                result = await session.execute(
                    select(MarketplaceConnection)
                    .where(
                        MarketplaceConnection.user_id == user_id,
                        MarketplaceConnection.marketplace_id == marketplace_id,
                    )
                    .execution_options(populate_existing=True)
                )
                return result.scalar_one()
        except SQLAlchemyError as e:
            logger.error(f"Error upserting connection for user {user_id}, marketplace {marketplace_id}: {e}")
            raise StoreUnavailableError("Connection store unavailable") from e

    async def update_fields(
        self,
        user_id: str,
        marketplace_id: int,
        expected_status: Optional[ConnectionStatus] = None,
        **fields: Any,
    ) -> bool:
        """
        Update an existing row.

        With expected_status the row is only written while it still has that
        status; the check and the write are one statement.

        Returns:
            False when no row matched
        """
        fields = _check_fields(fields)
        conditions = [
            MarketplaceConnection.user_id == user_id,
            MarketplaceConnection.marketplace_id == marketplace_id,
        ]
        if expected_status is not None:
            conditions.append(MarketplaceConnection.connection_status == ConnectionStatus(expected_status).value)

        statement = (
            update(MarketplaceConnection)
            .where(*conditions)
            .values(**fields, updated_at=utc_now())
        )
        try:
            async with self.session_factory() as session:
                result = await session.execute(statement)
                await session.commit()
                return result.rowcount > 0
        except SQLAlchemyError as e:
            logger.error(f"Error updating connection for user {user_id}, marketplace {marketplace_id}: {e}")
            raise StoreUnavailableError("Connection store unavailable") from e

    @staticmethod
    def _insert_for(session: AsyncSession):
        dialect = session.get_bind().dialect.name
        try:
            return UPSERT_INSERTS[dialect]
        except KeyError:
            raise StoreUnavailableError(f"Upsert is not available for the '{dialect}' dialect")

"""
Connection lifecycle for marketplace OAuth links.

States of a connection:
    DISCONNECTED -> (callback, exchange ok) -> ACTIVE
    ACTIVE -> (exchange or refresh fails) -> DISCONNECTED + error_message
    ACTIVE -> (unlink) -> DISCONNECTED
    any -> (new OAuth round trip succeeds) -> ACTIVE
A refresh only rewrites tokens on a connection that is still ACTIVE.
PENDING may be set through update_status; NOT_SUPPORTED is derived from the
registry and never stored.

Every successful write invalidates the user's cached marketplace list
before returning.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple

from marketlink.core.enums import ConnectionStatus, TokenStatus
from marketlink.core.exceptions import (
    ConnectionNotFoundError,
    ExchangeError,
    InvalidStatusTransitionError,
    NotConnectedError,
    NotSupportedError,
)
from marketlink.core.utils import utc_now
from marketlink.models.marketplace_connection import MarketplaceConnection
from marketlink.schemas.marketplace import (
    ConnectionView,
    MarketplaceDefinition,
    MarketplaceStatusRead,
    RefreshSummary,
    TokenSet,
)
from .connection_store import ConnectionStore
from .registry import MarketplaceRegistry
from .state_tokens import StateTokenService
from .token_exchange import TokenExchangeClient
from .view_cache import MarketplaceViewCache

logger = logging.getLogger(__name__)

REFRESH_LOOKAHEAD = timedelta(minutes=5)


class ConnectionLifecycleManager:

    def __init__(
        self,
        registry: MarketplaceRegistry,
        store: ConnectionStore,
        state_tokens: StateTokenService,
        token_client: TokenExchangeClient,
        view_cache: MarketplaceViewCache,
        refresh_lookahead: timedelta = REFRESH_LOOKAHEAD,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.registry = registry
        self.store = store
        self.state_tokens = state_tokens
        self.token_client = token_client
        self.view_cache = view_cache
        self.refresh_lookahead = refresh_lookahead
        self.clock = clock
        self._refreshes: Dict[Tuple[str, int], asyncio.Future] = {}

    # ------------------------------------------------------------------
    # OAuth round trip
    # ------------------------------------------------------------------

    async def generate_authorization_url(self, marketplace_slug: str, user_id: str) -> str:
        """Issue a state token and build the provider's authorize URL."""
        definition = self.registry.require_supported(marketplace_slug)
        # Adapter lookup first so an unusable marketplace issues no state
        self.token_client.adapter_for(definition)

        state = await self.state_tokens.issue(user_id)
        url = self.token_client.build_authorization_url(definition, state)
        logger.info(f"Generated {definition.slug} authorization URL for user {user_id}")
        return url

    async def handle_oauth_callback(self, marketplace_slug: str, code: str, state: str) -> MarketplaceConnection:
        """
        Complete an OAuth round trip.

        An invalid state aborts before any write. A failed exchange marks the
        connection DISCONNECTED with the reason and re-raises; stored tokens
        are left as they were.

        Returns:
            The ACTIVE connection row
        """
        definition = self.registry.require_supported(marketplace_slug)
        user_id = await self.state_tokens.consume(state)

        try:
            tokens = await self.token_client.exchange_authorization_code(definition, code)
        except ExchangeError as e:
            logger.error(f"OAuth code exchange failed for user {user_id} on {definition.slug}: {e}")
            await self.update_status(user_id, definition.id, ConnectionStatus.DISCONNECTED, str(e))
            raise

        now = self.clock()
        connection = await self.store.upsert(
            user_id,
            definition.id,
            connection_status=ConnectionStatus.ACTIVE,
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            token_expires_at=now + timedelta(seconds=tokens.expires_in_seconds),
            last_sync_at=now,
            error_message=None,
        )
        await self.view_cache.invalidate(user_id)

        logger.info(f"User {user_id} connected {definition.slug} (token expires {connection.token_expires_at})")
        return connection

    async def handle_oauth_denial(self, marketplace_slug: str, state: Optional[str], reason: str) -> MarketplaceConnection:
        """Record a provider-side refusal (e.g. the user declined consent)."""
        definition = self.registry.require_supported(marketplace_slug)
        user_id = await self.state_tokens.consume(state)
        return await self.update_status(user_id, definition.id, ConnectionStatus.DISCONNECTED, reason)

    # ------------------------------------------------------------------
    # Status changes
    # ------------------------------------------------------------------

    async def update_status(
        self,
        user_id: str,
        marketplace_id: int,
        status: ConnectionStatus,
        error_message: Optional[str] = None,
    ) -> MarketplaceConnection:
        status = ConnectionStatus(status)
        if not status.is_persistable:
            raise InvalidStatusTransitionError(f"{status.value} cannot be stored on a connection")

        fields = {
            "connection_status": status,
            "error_message": error_message,
        }
        if status is ConnectionStatus.ACTIVE:
            fields["last_sync_at"] = self.clock()

        connection = await self.store.upsert(user_id, marketplace_id, **fields)
        await self.view_cache.invalidate(user_id)

        logger.info(f"Marketplace {marketplace_id} status for user {user_id} set to {status.value}")
        return connection

    async def link_marketplace(self, user_id: str, marketplace_id: int) -> str:
        """
        Start linking a marketplace.

        Connections only become ACTIVE through a token exchange, so linking
        hands back an authorization URL to complete.
        """
        definition = self.registry.require_supported_id(marketplace_id)
        existing = await self.store.find_by_user_and_marketplace(user_id, marketplace_id)
        if existing is not None and existing.is_active:
            raise InvalidStatusTransitionError("Marketplace is already linked")
        return await self.generate_authorization_url(definition.slug, user_id)

    async def unlink_marketplace(self, user_id: str, marketplace_id: int) -> MarketplaceConnection:
        """Soft unlink: the row stays, the tokens go."""
        if self.registry.get_definition_by_id(marketplace_id) is None:
            raise NotSupportedError(f"Marketplace {marketplace_id} not found")

        existing = await self.store.find_by_user_and_marketplace(user_id, marketplace_id)
        if existing is None:
            raise ConnectionNotFoundError("Marketplace link not found")
        if existing.connection_status == ConnectionStatus.DISCONNECTED.value and not existing.access_token:
            raise InvalidStatusTransitionError("Marketplace is already unlinked")

        connection = await self.store.upsert(
            user_id,
            marketplace_id,
            connection_status=ConnectionStatus.DISCONNECTED,
            access_token=None,
            refresh_token=None,
            token_expires_at=None,
            error_message=None,
        )
        await self.view_cache.invalidate(user_id)

        logger.info(f"User {user_id} unlinked marketplace {marketplace_id}")
        return connection

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    def _needs_refresh(self, connection: MarketplaceConnection, now: datetime) -> bool:
        if connection.token_expires_at is None:
            return False
        return connection.token_expires_at - now <= self.refresh_lookahead

    async def get_valid_access_token(self, user_id: str, marketplace_slug: str) -> str:
        """
        Access token that is good for at least the lookahead window.

        Refreshes first when the stored token is inside the window. A failed
        refresh disconnects the marketplace and propagates; a stale token is
        never returned.
        """
        definition = self.registry.require_supported(marketplace_slug)
        connection = await self.store.find_by_user_and_marketplace(user_id, definition.id)
        if connection is None or not connection.is_active:
            raise NotConnectedError(f"{definition.name} is not connected")

        if not self._needs_refresh(connection, self.clock()):
            return connection.access_token

        logger.info(f"Access token for user {user_id} on {definition.slug} expires at "
                    f"{connection.token_expires_at}, refreshing")
        refreshed = await self._refresh_once(connection, definition)
        return refreshed.access_token

    async def _refresh_once(
        self, connection: MarketplaceConnection, definition: MarketplaceDefinition
    ) -> TokenSet:
        """
        Refresh a connection, sharing one provider call between concurrent
        callers for the same user and marketplace.

        The refresh runs as its own task; a cancelled caller stops waiting
        for it but does not cancel it for the others.
        """
        key = (connection.user_id, definition.id)
        refresh = self._refreshes.get(key)
        if refresh is None:
            refresh = asyncio.create_task(self._refresh_connection(connection, definition))
            self._refreshes[key] = refresh
            refresh.add_done_callback(lambda done: self._forget_refresh(key, done))
        else:
            logger.debug(f"Joining in-flight token refresh for user {connection.user_id} on {definition.slug}")
        return await asyncio.shield(refresh)

    def _forget_refresh(self, key: Tuple[str, int], done: asyncio.Future) -> None:
        if self._refreshes.get(key) is done:
            del self._refreshes[key]
        if not done.cancelled():
            # mark any failure as retrieved
            done.exception()

    async def _refresh_connection(
        self, connection: MarketplaceConnection, definition: MarketplaceDefinition
    ) -> TokenSet:
        """
        Exchange the refresh token and store the result.

        The new tokens are written only while the connection is still ACTIVE,
        so an unlink that lands during the provider call stays in force.
        """
        user_id = connection.user_id
        try:
            tokens = await self.token_client.exchange_refresh_token(definition, connection.refresh_token)
        except ExchangeError as e:
            logger.error(f"Token refresh failed for user {user_id} on {definition.slug}: {e}")
            await self.update_status(
                user_id, definition.id, ConnectionStatus.DISCONNECTED, f"Token refresh failed: {e}"
            )
            raise

        now = self.clock()
        stored = await self.store.update_fields(
            user_id,
            definition.id,
            expected_status=ConnectionStatus.ACTIVE,
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token or connection.refresh_token,
            token_expires_at=now + timedelta(seconds=tokens.expires_in_seconds),
            error_message=None,
        )
        if not stored:
            logger.warning(f"Discarding refreshed token for user {user_id} on {definition.slug}: "
                           f"connection is no longer active")
            raise NotConnectedError(f"{definition.name} was disconnected during token refresh")
        await self.view_cache.invalidate(user_id)

        logger.info(f"Refreshed access token for user {user_id} on {definition.slug}")
        return tokens

    async def refresh_expiring_tokens(self) -> RefreshSummary:
        """
        Refresh every ACTIVE token inside the lookahead window.

        Records are handled one by one; a failure is written to that record
        and logged, and the loop moves on.
        """
        cutoff = self.clock() + self.refresh_lookahead
        connections = await self.store.find_expiring_active(cutoff)
        summary = RefreshSummary(checked=len(connections))
        logger.info(f"Batch token refresh: {len(connections)} connection(s) expiring before {cutoff}")

        for connection in connections:
            definition = self.registry.get_definition_by_id(connection.marketplace_id)
            if definition is None or not definition.is_supported:
                logger.warning(f"Skipping refresh for user {connection.user_id}: "
                               f"marketplace {connection.marketplace_id} is not supported")
                summary.skipped += 1
                continue

            try:
                await self._refresh_once(connection, definition)
                summary.refreshed += 1
            except NotConnectedError:
                logger.info(f"Skipping refresh for user {connection.user_id} on {definition.slug}: "
                            f"disconnected since the scan")
                summary.skipped += 1
            except Exception as e:
                summary.failed += 1
                summary.failures.append(f"{connection.user_id}/{definition.slug}")
                logger.exception(f"Batch refresh failed for user {connection.user_id} on {definition.slug}: {e}")

        logger.info(f"Batch token refresh done: {summary.refreshed} refreshed, "
                    f"{summary.failed} failed, {summary.skipped} skipped")
        return summary

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_connection(self, user_id: str, marketplace_id: int) -> Optional[MarketplaceConnection]:
        return await self.store.find_by_user_and_marketplace(user_id, marketplace_id)

    async def get_marketplace_status(self, user_id: str, marketplace_slug: str) -> MarketplaceStatusRead:
        definition = self.registry.get_definition(marketplace_slug)
        if definition is None:
            raise NotSupportedError(f"Marketplace '{marketplace_slug}' not found")

        connection = await self.store.find_by_user_and_marketplace(user_id, definition.id)
        if connection is None:
            return MarketplaceStatusRead(
                marketplace=definition.slug,
                is_linked=False,
                connection_status=self._derived_status(definition, None),
                token_status=TokenStatus.NONE,
            )

        if connection.token_expires_at is None or not connection.access_token:
            token_status = TokenStatus.NONE
        elif connection.token_expires_at > self.clock():
            token_status = TokenStatus.VALID
        else:
            token_status = TokenStatus.EXPIRED

        return MarketplaceStatusRead(
            marketplace=definition.slug,
            is_linked=connection.is_active,
            connection_status=self._derived_status(definition, connection),
            token_status=token_status,
            expires_at=connection.token_expires_at,
            last_sync_at=connection.last_sync_at,
            error_message=connection.error_message,
        )

    @staticmethod
    def _derived_status(definition: MarketplaceDefinition, connection: Optional[MarketplaceConnection]) -> ConnectionStatus:
        if not definition.is_supported:
            return ConnectionStatus.NOT_SUPPORTED
        if connection is None:
            return ConnectionStatus.DISCONNECTED
        return ConnectionStatus(connection.connection_status)

    async def get_marketplaces_for_user(self, user_id: str) -> List[ConnectionView]:
        """
        Every known marketplace with the user's connection state.

        Supported marketplaces that are not ACTIVE get a fresh authorization
        URL; if one cannot be generated it is left off that entry only.
        """
        cached = await self.view_cache.get(user_id)
        if cached is not None:
            logger.debug(f"Marketplace view cache hit for user {user_id}")
            return cached

        generation = await self.view_cache.generation(user_id)
        connections: Dict[int, MarketplaceConnection] = {
            connection.marketplace_id: connection
            for connection in await self.store.find_all_by_user(user_id)
        }

        views: List[ConnectionView] = []
        for definition in self.registry.get_all_definitions():
            connection = connections.get(definition.id)
            status = self._derived_status(definition, connection)

            oauth_url = None
            if definition.is_supported and status is not ConnectionStatus.ACTIVE:
                try:
                    oauth_url = await self.generate_authorization_url(definition.slug, user_id)
                except Exception as e:
                    logger.warning(f"Could not generate {definition.slug} authorization URL for user {user_id}: {e}")

            views.append(ConnectionView(
                marketplace=definition.public(),
                connection_status=status,
                is_linked=bool(connection is not None and connection.is_active),
                last_sync_at=connection.last_sync_at if connection else None,
                error_message=connection.error_message if connection else None,
                oauth_url=oauth_url,
            ))

        if generation is not None:
            await self.view_cache.set(user_id, views, generation)
        return views

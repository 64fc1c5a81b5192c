# tests/conftest.py
import pytest
from sqlalchemy.ext.asyncio import create_async_engine

from marketlink.core.config import Settings
from marketlink.database import create_session_factory, create_tables
from marketlink.services.cache import MemoryCache
from marketlink.services.marketplaces import (
    ConnectionLifecycleManager,
    ConnectionStore,
    MarketplaceRegistry,
    MarketplaceViewCache,
    StateTokenService,
    TokenExchangeClient,
)
from tests.mocks.mock_token_endpoint import FrozenClock, MockTokenEndpoint


@pytest.fixture
def settings():
    """Provide test settings"""
    return Settings(
        _env_file=None,
        DATABASE_URL="sqlite+aiosqlite:///:memory:",
        APP_URL="https://api.example.test",
        EBAY_CLIENT_ID="test-ebay-client-id",
        EBAY_CLIENT_SECRET="test-ebay-client-secret",
        EBAY_RU_NAME="Test_User-TestApp-PRD-ru",
        FACEBOOK_CLIENT_ID="test-fb-client-id",
        FACEBOOK_CLIENT_SECRET="test-fb-client-secret",
        MOBILE_APP_SCHEME="resalehub://marketplaces/{slug}/oauth",
        OAUTH_FALLBACK_REDIRECT_URL="https://app.example.test/oauth/result",
        TOKEN_REFRESH_ENABLED=False,
    )


@pytest.fixture
def registry(settings):
    return MarketplaceRegistry.from_settings(settings)


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def cache():
    return MemoryCache()


@pytest.fixture
async def test_engine(tmp_path):
    """File-backed SQLite so concurrent sessions get their own connections."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'marketlink-test.db'}")
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return create_session_factory(test_engine)


@pytest.fixture
def store(session_factory):
    return ConnectionStore(session_factory)


@pytest.fixture
def token_endpoint():
    return MockTokenEndpoint()


@pytest.fixture
async def token_client(token_endpoint):
    http_client = token_endpoint.client()
    yield TokenExchangeClient(http_client, timeout=15.0)
    await http_client.aclose()


@pytest.fixture
def state_tokens(cache, clock):
    return StateTokenService(cache, clock=clock)


@pytest.fixture
def view_cache(cache):
    return MarketplaceViewCache(cache)


@pytest.fixture
def manager(registry, store, state_tokens, token_client, view_cache, clock):
    return ConnectionLifecycleManager(
        registry=registry,
        store=store,
        state_tokens=state_tokens,
        token_client=token_client,
        view_cache=view_cache,
        clock=clock,
    )


@pytest.fixture
async def test_client(settings, manager):
    """HTTP client against the app, wired to the test lifecycle manager"""
    from httpx import ASGITransport, AsyncClient
    from marketlink.main import create_app

    app = create_app(settings, lifecycle_manager=manager)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

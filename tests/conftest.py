"""Shared test fixtures.

Every test runs against the in-memory store and a hand-driven clock, so
nothing here needs PostgreSQL or Redis. The HTTP client talks to the real
FastAPI app through ASGITransport; the lifespan is not run, the container is
injected on app.state instead.
"""

from collections.abc import Awaitable, Callable
from datetime import timedelta

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from config.settings import Settings
from src.am_auction.domain.models import Auction
from src.am_auction.infrastructure.memory_store import MemoryAuctionStore
from src.am_lifecycle.service import NewAuction
from src.container import Container, build_container
from src.main import app
from tests.fakes import ADMIN, SELLER, FakeClock, FakeSession


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config() -> Settings:
    return Settings(
        STORE_BACKEND="memory",
        REDIS_URL=None,
        PRICE_CACHE_ENABLED=False,
        ADMIN_USER_ID=ADMIN,
        DEFAULT_RUN_MINUTES=10,
        SWEEP_INTERVAL_SECONDS=60.0,
        SENDGRID_API_KEY=None,
        SENDGRID_FROM_EMAIL=None,
        TWILIO_ACCOUNT_SID=None,
        TWILIO_AUTH_TOKEN=None,
        TWILIO_FROM=None,
        USER_DIRECTORY_URL=None,
    )


@pytest.fixture
def store(clock: FakeClock) -> MemoryAuctionStore:
    return MemoryAuctionStore(clock=clock)


@pytest_asyncio.fixture
async def container(config: Settings, store: MemoryAuctionStore, clock: FakeClock) -> Container:
    c = build_container(config, store=store, clock=clock)
    yield c
    await c.close()


@pytest_asyncio.fixture
async def viewer(container: Container) -> FakeSession:
    """A connected viewer; the hello greeting is dropped so tests see only new events."""
    session = FakeSession()
    await container.registry.add(session)
    session.sent.clear()
    return session


@pytest.fixture
def make_auction(
    container: Container, clock: FakeClock
) -> Callable[..., Awaitable[Auction]]:
    """Create an auction through the lifecycle service; live by default."""

    async def _make(
        seller_id: str = SELLER,
        starting_price_cents: int = 10000,
        bid_increment_cents: int = 500,
        duration_minutes: int = 10,
        starts_in_minutes: int = 0,
        title: str = "Vintage camera",
    ) -> Auction:
        return await container.lifecycle.create_auction(
            seller_id,
            NewAuction(
                title=title,
                starting_price_cents=starting_price_cents,
                bid_increment_cents=bid_increment_cents,
                go_live_at=clock() + timedelta(minutes=starts_in_minutes),
                duration_minutes=duration_minutes,
            ),
        )

    return _make


@pytest_asyncio.fixture
async def client(container: Container) -> AsyncClient:
    """Async HTTP client for the FastAPI app, wired to the in-memory container."""
    app.state.container = container
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

"""Pytest configuration and fixtures.

Everything runs against an in-memory SQLite database and a mocked quote
provider; no PostgreSQL, Valkey or network access is needed.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from tradeleague.core.config import Settings
from tradeleague.core.market_calendar import MarketClock
from tradeleague.database.connection import create_session_factory
from tradeleague.database.orm import Base
from tradeleague.repositories import securities_orm as securities_repo
from tradeleague.services.quote_client import Quote, QuoteClient


PROVIDER_URL = "https://openapivts.koreainvestment.test:29443"
CRON_SECRET = "test-cron-secret"

# Friday 2026-10-16, 10:30 in Seoul
MARKET_HOURS = datetime(2026, 10, 16, 1, 30, tzinfo=timezone.utc)


# ============================================================================
# Clocks
# ============================================================================


class FakeNow:
    """Settable wall clock for MarketClock."""

    def __init__(self, at: datetime):
        self.at = at

    def __call__(self) -> datetime:
        return self.at


class FakeMonotonic:
    """Monotonic clock that only advances when something sleeps."""

    def __init__(self):
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def now() -> FakeNow:
    return FakeNow(MARKET_HOURS)


@pytest.fixture
def clock(now: FakeNow) -> MarketClock:
    return MarketClock(now=now)


@pytest.fixture
def monotonic() -> FakeMonotonic:
    return FakeMonotonic()


# ============================================================================
# Database
# ============================================================================


@pytest_asyncio.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Fresh in-memory schema per test."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield create_session_factory(engine)
    await engine.dispose()


class MarketData:
    """Seeds securities and live prices directly through the repositories."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], clock: MarketClock):
        self.session_factory = session_factory
        self.clock = clock

    async def list(self, *codes: str) -> None:
        async with self.session_factory() as session:
            for code in codes:
                await securities_repo.upsert_security(session, code, f"Stock {code}")
            await session.commit()

    async def price(
        self,
        code: str,
        price: int | str | Decimal,
        trading_date: date | None = None,
        volume: int = 1000,
    ) -> None:
        price = Decimal(price)
        async with self.session_factory() as session:
            await securities_repo.upsert_security(session, code, f"Stock {code}")
            await securities_repo.upsert_live_quote(
                session,
                Quote(
                    code=code,
                    price=price,
                    open=price,
                    high=price,
                    low=price,
                    volume=volume,
                    fetched_at=datetime.now(timezone.utc),
                ),
                trading_date or self.clock.today(),
            )
            await session.commit()


@pytest.fixture
def market(session_factory, clock) -> MarketData:
    return MarketData(session_factory, clock)


# ============================================================================
# Quote provider
# ============================================================================


class FakeProvider:
    """In-process stand-in for the provider's REST API.

    ``quotes`` maps a code to its ``output`` fields, ``bars`` maps a code to
    ``output2`` rows. Codes in ``failing`` answer with a provider error.
    """

    def __init__(self):
        self.quotes: dict[str, dict[str, str]] = {}
        self.bars: dict[str, list[dict[str, str]]] = {}
        self.failing: set[str] = set()
        self.token_requests = 0
        self.data_requests: list[httpx.Request] = []

    def set_quote(self, code: str, price: int, volume: int = 1000, **fields: int) -> None:
        self.quotes[code] = {
            "stck_prpr": str(price),
            "stck_oprc": str(fields.get("open", price)),
            "stck_hgpr": str(fields.get("high", price)),
            "stck_lwpr": str(fields.get("low", price)),
            "acml_vol": str(volume),
        }

    def add_bar(self, code: str, day: date, open_: int, high: int, low: int, close: int, volume: int = 1000) -> None:
        self.bars.setdefault(code, []).append(
            {
                "stck_bsop_date": day.strftime("%Y%m%d"),
                "stck_oprc": str(open_),
                "stck_hgpr": str(high),
                "stck_lwpr": str(low),
                "stck_clpr": str(close),
                "acml_vol": str(volume),
            }
        )

    def handler(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == "/oauth2/tokenP":
            self.token_requests += 1
            return httpx.Response(
                200,
                json={
                    "access_token": f"token-{self.token_requests}",
                    "token_type": "Bearer",
                    "expires_in": 86400,
                },
            )

        self.data_requests.append(request)

        code = request.url.params.get("FID_INPUT_ISCD")
        if code in self.failing:
            return httpx.Response(
                200,
                json={"rt_cd": "1", "msg_cd": "EGW00201", "msg1": "Too many requests per second"},
            )
        if request.url.path.endswith("/inquire-price"):
            if code not in self.quotes:
                return httpx.Response(
                    200, json={"rt_cd": "7", "msg_cd": "KIOK0560", "msg1": "No data"}
                )
            return httpx.Response(200, json={"rt_cd": "0", "output": self.quotes[code]})
        if request.url.path.endswith("/inquire-daily-itemchartprice"):
            return httpx.Response(
                200, json={"rt_cd": "0", "output1": {}, "output2": self.bars.get(code, [])}
            )
        return httpx.Response(404, json={"rt_cd": "1", "msg1": "Unknown path"})


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest_asyncio.fixture
async def make_quote_client(
    provider: FakeProvider, monotonic: FakeMonotonic
) -> AsyncGenerator[Callable[..., QuoteClient], None]:
    """Factory for clients wired to the fake provider and fake clock."""
    clients: list[QuoteClient] = []

    def factory(**kwargs: Any) -> QuoteClient:
        kwargs.setdefault("min_interval", 0)
        client = QuoteClient(
            PROVIDER_URL,
            "test-app-key",
            "test-app-secret",
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(provider.handler)),
            clock=monotonic,
            sleep=monotonic.sleep,
            **kwargs,
        )
        clients.append(client)
        return client

    yield factory
    for client in clients:
        await client.aclose()


# ============================================================================
# Job locks
# ============================================================================


class FakeLocks:
    """In-process stand-in for the Valkey job lock."""

    def __init__(self):
        self.held: set[str] = set()
        self.acquired: list[str] = []

    @asynccontextmanager
    async def __call__(self, name: str):
        if name in self.held:
            yield False
            return
        self.held.add(name)
        self.acquired.append(name)
        try:
            yield True
        finally:
            self.held.discard(name)


@pytest.fixture
def locks() -> FakeLocks:
    return FakeLocks()


# ============================================================================
# Services and API
# ============================================================================


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        cron_secret=CRON_SECRET,
        kis_api_url=None,
        kis_app_key=None,
        kis_app_secret=None,
        initial_capital=Decimal("10000000"),
        league_threshold=Decimal("100000000"),
    )


@pytest.fixture
def build_services(session_factory, test_settings, clock, locks):
    """Container factory; pass ``quote_client`` to enable price collection."""
    from tradeleague.services.container import ServiceContainer

    def factory(quote_client: QuoteClient | None = None) -> ServiceContainer:
        return ServiceContainer.build(
            session_factory,
            test_settings,
            clock=clock,
            quote_client=quote_client,
            lock_factory=locks,
            chart_cache=None,
        )

    return factory


@pytest.fixture
def services(build_services):
    return build_services()


@pytest_asyncio.fixture
async def async_client(services) -> AsyncGenerator[AsyncClient, None]:
    """Async test client for the API app bound to the test services."""
    from tradeleague.api.app import create_api_app

    app = create_api_app(services)
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def cron_headers() -> dict:
    return {"Authorization": f"Bearer {CRON_SECRET}"}


@pytest.fixture
def user_headers() -> Callable[..., dict]:
    """Authorization headers acting as the given user."""
    from tradeleague.core.security import create_access_token

    def factory(user_id: str = "user-1", username: str | None = None) -> dict:
        return {"Authorization": f"Bearer {create_access_token(user_id, username)}"}

    return factory

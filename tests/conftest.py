"""Pytest configuration and fixtures."""

import os
from datetime import datetime, timedelta
from decimal import Decimal
from typing import AsyncGenerator

import base58
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

# Set test environment
os.environ["ENVIRONMENT"] = "test"
os.environ["DEBUG"] = "true"

from zecswap.catalog.static import StaticAssetCatalog
from zecswap.config import Settings
from zecswap.ledger.database import create_engine_for_url, create_session_factory, init_db
from zecswap.pricing.fixed import FixedRateSource
from zecswap.services.container import SwapCore, build_core
from zecswap.services.conversion import DryRunConversionBackend

START = datetime(2026, 1, 15, 12, 0, 0)


def make_zec_address(prefix: bytes = b"\x1c\xb8", fill: int = 0) -> str:
    """Build a valid base58check transparent address (t1 by default)."""
    return base58.b58encode_check(prefix + bytes([fill]) * 20).decode()


ZEC_ADDRESS = make_zec_address()


class FakeClock:
    """Controllable clock: call it for the current time, advance() to move it."""

    def __init__(self, start: datetime = START):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def zec_address() -> str:
    return ZEC_ADDRESS


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings isolated from any local .env file."""
    return Settings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        environment="test",
        debug=False,
        admin_token="test-admin-token",
        fee_rate=Decimal("0.005"),
        default_rate=Decimal("0.95"),
        quote_ttl_seconds=900,
        address_pool_size=5,
        lock_timeout_seconds=5.0,
    )


@pytest_asyncio.fixture
async def db_engine(settings: Settings) -> AsyncGenerator[AsyncEngine, None]:
    """File-backed SQLite engine so concurrent sessions see each other's commits."""
    engine = create_engine_for_url(settings.database_url)
    await init_db(engine)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(db_engine)


@pytest_asyncio.fixture
async def catalog() -> StaticAssetCatalog:
    catalog = StaticAssetCatalog()
    await catalog.refresh()
    return catalog


@pytest.fixture
def rate_source() -> FixedRateSource:
    return FixedRateSource(default_rate=Decimal("0.95"))


@pytest.fixture
def conversion_backend() -> DryRunConversionBackend:
    return DryRunConversionBackend()


@pytest_asyncio.fixture
async def core(
    settings, session_factory, catalog, rate_source, conversion_backend, clock
) -> SwapCore:
    """Fully wired core on a fresh database, driven by the fake clock."""
    return build_core(
        settings,
        session_factory=session_factory,
        catalog=catalog,
        rate_source=rate_source,
        conversion_backend=conversion_backend,
        clock=clock,
    )

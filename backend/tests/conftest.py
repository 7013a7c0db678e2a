"""Pytest configuration and fixtures for testing."""

from datetime import timedelta
from decimal import Decimal
from typing import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from marketplace.core.database import Base
from marketplace.models import Auction, AuctionStatus, User
from marketplace.models.base import utcnow
from marketplace.services import auction_service
from marketplace.services.bid_service import BidService
from marketplace.services.ledger_service import LedgerService
from marketplace.services.redis_service import RedisService


# Mock Redis client fixture
@pytest.fixture
def mock_redis() -> AsyncMock:
    """Create a mock Redis client backed by dicts.

    ``set`` honours NX and the registered release script only deletes a key
    whose value matches the owner, which is enough for the auction lock.
    Snapshot hashes live in ``hashes`` and the snapshot write script keeps
    whichever hash carries the higher version.
    """
    store: dict[str, str] = {}
    hashes: dict[str, dict[str, str]] = {}
    redis = AsyncMock()

    async def fake_set(key, value, nx=False, ex=None):
        if nx and key in store:
            return None
        store[key] = value
        return True

    async def release(keys, args):
        if store.get(keys[0]) == args[0]:
            del store[keys[0]]
            return 1
        return 0

    async def write_snapshot(keys, args):
        cached = hashes.get(keys[0], {}).get("version")
        if cached is not None and int(cached) >= int(args[0]):
            return 0
        pairs = args[2:]
        hashes[keys[0]] = dict(zip(pairs[::2], pairs[1::2]))
        return 1

    def fake_register_script(script):
        if script == RedisService.CACHE_SNAPSHOT_SCRIPT:
            return AsyncMock(side_effect=write_snapshot)
        return release

    async def fake_hgetall(key):
        return dict(hashes.get(key, {}))

    redis.set = AsyncMock(side_effect=fake_set)
    redis.register_script = MagicMock(side_effect=fake_register_script)
    redis.hgetall = AsyncMock(side_effect=fake_hgetall)
    redis.store = store
    redis.hashes = hashes

    return redis


@pytest.fixture
def redis_service(mock_redis: AsyncMock) -> RedisService:
    return RedisService(mock_redis)


@pytest.fixture(autouse=True)
def clear_snapshot_cache():
    """Snapshots cached by one test must not leak into the next."""
    auction_service._snapshot_local_cache.clear()
    yield
    auction_service._snapshot_local_cache.clear()


# Database fixtures: a throwaway SQLite file per test
@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'marketplace.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


# Factories
@pytest.fixture
def create_user(session_factory):
    """Create a user with a wallet funded by one deposit."""

    async def _create(username: str = "bidder", balance: str = "100.00") -> User:
        async with session_factory() as session:
            user = User(
                email=f"{username}-{uuid4().hex[:8]}@example.com",
                password_hash="not-a-real-hash",
                username=username,
                status="active",
            )
            session.add(user)
            await session.flush()

            ledger = LedgerService(session)
            await ledger.open_wallet(user.user_id)
            if Decimal(balance) > 0:
                await ledger.deposit(user.user_id, Decimal(balance))
            await session.commit()
            return user

    return _create


@pytest.fixture
def create_auction(session_factory):
    """Create an ACTIVE auction ending one day from now unless told otherwise."""

    async def _create(
        seller: User,
        starting_price: str = "10.00",
        end_in: timedelta = timedelta(days=1),
        title: str = "Vintage camera",
        category: str = "electronics",
    ) -> Auction:
        now = utcnow()
        async with session_factory() as session:
            auction = Auction(
                seller_id=seller.user_id,
                title=title,
                description="Works, minor scratches",
                category=category,
                condition="good",
                media_kind="image",
                media_refs=["img-1"],
                verified=True,
                starting_price=Decimal(starting_price),
                current_price=Decimal(starting_price),
                end_time=now + end_in,
                status=AuctionStatus.ACTIVE,
                bid_count=0,
                version=0,
                created_at=now,
            )
            session.add(auction)
            await session.commit()
            return auction

    return _create


@pytest.fixture
def place_bid(session_factory, redis_service):
    """Place a bid in its own session, the way one request would."""

    async def _place(user_id: UUID | None, auction_id: UUID, amount: str):
        async with session_factory() as session:
            return await BidService(session, redis_service).place_bid(
                user_id, auction_id, Decimal(amount)
            )

    return _place


@pytest.fixture
def wallet_balance(session_factory):
    async def _balance(user_id: UUID) -> Decimal:
        async with session_factory() as session:
            wallet = await LedgerService(session).get_wallet(user_id)
            return wallet.balance

    return _balance


@pytest.fixture
def load_auction(session_factory):
    async def _load(auction_id: UUID) -> Auction:
        async with session_factory() as session:
            return await session.get(Auction, auction_id)

    return _load

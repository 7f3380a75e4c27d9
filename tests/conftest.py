from datetime import timedelta
from decimal import Decimal

import pytest
from fakeredis import aioredis
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import redis_client
from models import Base, User, utcnow
from store import AuctionStore


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'auctions.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture(autouse=True)
def fake_redis(monkeypatch):
    fake = aioredis.FakeRedis(decode_responses=True)
    monkeypatch.setattr(redis_client, "r", fake)
    return fake


@pytest.fixture
def events(monkeypatch):
    """Records every live event instead of publishing it."""
    published = []

    async def record(auction_id, message):
        published.append((auction_id, message))

    monkeypatch.setattr(redis_client, "publish", record)
    return published


@pytest.fixture
async def users(db):
    seller = User(username="seller", email="seller@example.com", password="x")
    bob = User(username="bob", email="bob@example.com", password="x")
    carol = User(username="carol", email="carol@example.com", password="x")
    db.add_all([seller, bob, carol])
    await db.commit()
    return {"seller": seller, "bob": bob, "carol": carol}


@pytest.fixture
def now():
    return utcnow().replace(microsecond=0)


@pytest.fixture
async def auction(db, users, now):
    """Open auction starting at 10.00, closing in one hour."""
    return await AuctionStore(db).create(
        seller_id=users["seller"].id,
        item_name="Vintage camera",
        description="Working 1970s rangefinder",
        starting_bid=Decimal("10.00"),
        closing_time=now + timedelta(hours=1),
        now=now,
    )


@pytest.fixture
def reload(session_factory):
    """Read an auction back through a fresh session."""

    async def _reload(auction_id):
        async with session_factory() as session:
            return await AuctionStore(session).get_by_id(auction_id)

    return _reload


@pytest.fixture
def store_down(monkeypatch):
    """Auction lookups fail as if the database connection dropped."""

    async def unreachable(self, auction_id, for_update=False):
        async with self._io():
            raise OperationalError("SELECT auctions", {}, Exception("connection refused"))

    monkeypatch.setattr(AuctionStore, "get_by_id", unreachable)

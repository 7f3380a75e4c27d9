import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest

import redis_client
from bidding import place_bid
from closing import (
    close_auction,
    close_expired_auctions,
    closed_event,
    is_open,
    winner_id,
)
from errors import AuctionClosed
from locks import auction_locks
from store import AuctionStore


def snapshot(auction):
    return (
        auction.item_name,
        auction.description,
        auction.starting_bid,
        auction.current_bid,
        auction.highest_bidder_id,
        auction.seller_id,
        auction.closing_time,
        auction.created_at,
        [(b.bidder_id, b.amount) for b in auction.bids],
    )


def test_is_open(auction, now):
    assert is_open(auction, now)
    assert not is_open(auction, auction.closing_time)
    assert not is_open(auction, auction.closing_time + timedelta(seconds=1))


async def test_close_auction(db, auction, reload, events):
    assert await close_auction(AuctionStore(db), auction) is True

    stored = await reload(auction.id)
    assert stored.is_closed is True
    assert winner_id(stored) is None
    # the caller publishes once the lock is released
    assert events == []
    assert closed_event(stored) == {
        "type": "closed",
        "auction_id": auction.id,
        "winner_id": None,
        "current_bid": "10.00",
    }


async def test_closing_twice_is_a_no_op(db, auction, reload, events):
    store = AuctionStore(db)
    await close_auction(store, auction)
    before = await reload(auction.id)

    again = await close_auction(store, await store.get_by_id(auction.id))
    assert again is False

    after = await reload(auction.id)
    assert snapshot(after) == snapshot(before)
    assert after.is_closed is True
    assert after.version == before.version
    assert events == []


async def test_winner_is_highest_bidder_at_close(db, auction, users, now, reload):
    await place_bid(db, auction.id, users["bob"].id, Decimal("15.00"), now=now)
    await place_bid(db, auction.id, users["carol"].id, Decimal("18.00"), now=now)

    store = AuctionStore(db)
    open_auction = await store.get_by_id(auction.id)
    assert winner_id(open_auction) is None

    await close_auction(store, open_auction)
    assert winner_id(await reload(auction.id)) == users["carol"].id


async def test_sweep_closes_expired_auctions_silently(
    db, session_factory, auction, users, now, reload, events
):
    await place_bid(db, auction.id, users["bob"].id, Decimal("15.00"), now=now)
    before = await reload(auction.id)

    closed = await close_expired_auctions(
        session_factory, now=auction.closing_time + timedelta(seconds=1)
    )

    after = await reload(auction.id)
    assert closed == 1
    assert after.is_closed is True
    assert snapshot(after) == snapshot(before)
    assert winner_id(after) == users["bob"].id
    assert events[-1][1]["type"] == "closed"
    assert events[-1][1]["winner_id"] == users["bob"].id


async def test_sweep_leaves_open_auctions_alone(session_factory, auction, now, reload):
    assert await close_expired_auctions(session_factory, now=now) == 0
    assert (await reload(auction.id)).is_closed is False


async def test_sweep_skips_auctions_already_closed(db, session_factory, auction, users, reload):
    late = auction.closing_time + timedelta(seconds=1)
    store = AuctionStore(db)
    await close_auction(store, await store.get_by_id(auction.id))

    assert await close_expired_auctions(session_factory, now=late) == 0
    assert (await reload(auction.id)).is_closed is True


async def test_sweep_closes_many(db, session_factory, users, now, reload):
    store = AuctionStore(db)
    seller_id = users["seller"].id
    created = [
        await store.create(seller_id, f"Item {i}", "d", 1, now + timedelta(minutes=i + 1), now=now)
        for i in range(5)
    ]

    closed = await close_expired_auctions(session_factory, now=now + timedelta(minutes=3))

    assert closed == 3
    states = [(await reload(a.id)).is_closed for a in created]
    assert states == [True, True, True, False, False]


async def test_sweep_publishes_after_releasing_the_lock(
    session_factory, auction, users, monkeypatch
):
    started = asyncio.Event()
    release = asyncio.Event()

    async def stalled_publish(auction_id, message):
        started.set()
        await release.wait()

    monkeypatch.setattr(redis_client, "publish", stalled_publish)
    late = auction.closing_time + timedelta(seconds=1)

    sweep = asyncio.create_task(close_expired_auctions(session_factory, now=late))
    await asyncio.wait_for(started.wait(), 2)
    assert len(auction_locks) == 0

    async with session_factory() as session:
        with pytest.raises(AuctionClosed):
            await asyncio.wait_for(
                place_bid(session, auction.id, users["bob"].id, Decimal("15.00"), now=late), 2
            )

    release.set()
    assert await sweep == 1

"""Open/closed determination and the OPEN -> CLOSED transition.

CLOSED is terminal. Closing never touches the bid fields; the
winner is whoever holds ``highest_bidder_id`` when the auction closes.
"""
import logging
from datetime import datetime
from typing import Optional

import redis_client
from config import BID_MAX_RETRIES
from errors import Conflict
from locks import auction_locks
from models import Auction, utcnow
from store import AuctionStore

logger = logging.getLogger(__name__)


def is_open(auction: Auction, now: Optional[datetime] = None) -> bool:
    now = now or utcnow()
    return not auction.is_closed and auction.closing_time > now


def winner_id(auction: Auction) -> Optional[int]:
    if not auction.is_closed:
        return None
    return auction.highest_bidder_id


def closed_event(auction: Auction) -> dict:
    return {
        "type": "closed",
        "auction_id": auction.id,
        "winner_id": winner_id(auction),
        "current_bid": str(auction.current_bid),
    }


async def close_auction(store: AuctionStore, auction: Auction) -> bool:
    """Mark ``auction`` closed and persist it.

    Returns False, without writing, when it was already closed. Callers
    publish ``closed_event`` themselves once the auction lock is released.
    """
    if auction.is_closed:
        return False

    auction.is_closed = True
    await store.update(auction)

    logger.info(
        "Auction %s closed, winner=%s at %s",
        auction.id,
        auction.highest_bidder_id,
        auction.current_bid,
    )
    return True


async def _close_one(session_factory, auction_id: int) -> Optional[dict]:
    async with auction_locks.hold(auction_id):
        async with session_factory() as session:
            store = AuctionStore(session)
            for _ in range(BID_MAX_RETRIES):
                auction = await store.get_by_id(auction_id, for_update=True)
                if auction.is_closed:
                    return None
                try:
                    await close_auction(store, auction)
                except Conflict:
                    continue
                return closed_event(auction)

    logger.warning("Gave up closing auction %s after %s conflicts", auction_id, BID_MAX_RETRIES)
    return None


async def close_expired_auctions(session_factory, now: Optional[datetime] = None) -> int:
    """Close every open auction whose closing time is at or before ``now``.

    Returns how many auctions this pass actually closed; auctions that a bid
    closed in the meantime are skipped.
    """
    now = now or utcnow()

    async with session_factory() as session:
        expired = await AuctionStore(session).list_expired_open(now)
    auction_ids = [auction.id for auction in expired]

    closed = 0
    for auction_id in auction_ids:
        event = await _close_one(session_factory, auction_id)
        if event:
            closed += 1
            await redis_client.publish(auction_id, event)

    if auction_ids:
        logger.info("Closing sweep: %s expired, %s closed", len(auction_ids), closed)
    return closed

import logging
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

import redis_client
from closing import close_auction, closed_event, is_open
from config import BID_MAX_RETRIES
from errors import AuctionClosed, AuctionError, BidTooLow, Conflict, InvalidAmount, SelfBid
from locks import auction_locks
from models import Bid, BidResult, as_money, utcnow
from store import AuctionStore

logger = logging.getLogger(__name__)


def parse_bid_amount(amount) -> Decimal:
    try:
        value = as_money(amount)
    except ValueError as exc:
        raise InvalidAmount(f"Invalid bid amount: {exc}") from exc

    if value <= 0:
        raise InvalidAmount("Bid amount must be greater than zero")

    return value


async def _publish_all(auction_id: int, events: List[dict]):
    for message in events:
        await redis_client.publish(auction_id, message)


async def _apply_bid(
    store: AuctionStore,
    auction_id: int,
    bidder_id: int,
    amount: Decimal,
    now: datetime,
    events: List[dict],
) -> BidResult:
    auction = await store.get_by_id(auction_id, for_update=True)

    if auction.is_closed:
        raise AuctionClosed("This auction is closed")

    # Expired but not swept yet: close it on the spot
    if not is_open(auction, now):
        if await close_auction(store, auction):
            events.append(closed_event(auction))
        raise AuctionClosed("This auction has ended")

    if amount <= auction.current_bid:
        raise BidTooLow(auction.current_bid)

    if bidder_id == auction.seller_id:
        raise SelfBid()

    auction.current_bid = amount
    auction.highest_bidder_id = bidder_id
    auction.bids.append(Bid(bidder_id=bidder_id, amount=amount, time=now))

    await store.update(auction)

    return BidResult(
        auction_id=auction.id,
        current_bid=auction.current_bid,
        highest_bidder_id=bidder_id,
        bid_count=len(auction.bids),
    )


async def place_bid(
    db,
    auction_id: int,
    bidder_id: int,
    amount,
    now: Optional[datetime] = None,
) -> BidResult:
    """Validate and apply one bid to one auction.

    The read-validate-write runs under the auction's lock, so concurrent
    bids on the same auction are applied one after another. A ``Conflict``
    (the row changed underneath us, e.g. from another process) restarts
    the whole sequence from a fresh read.
    """
    amount = parse_bid_amount(amount)
    now = now or utcnow()
    store = AuctionStore(db)
    # published once the lock is released
    events = []

    try:
        async with auction_locks.hold(auction_id):
            for attempt in range(1, BID_MAX_RETRIES + 1):
                try:
                    result = await _apply_bid(store, auction_id, bidder_id, amount, now, events)
                    break
                except Conflict:
                    if attempt == BID_MAX_RETRIES:
                        raise
                    logger.warning(
                        "Bid on auction %s conflicted, retrying (%s/%s)",
                        auction_id,
                        attempt,
                        BID_MAX_RETRIES,
                    )
    except AuctionError as exc:
        logger.info(
            "Bid of %s by user %s on auction %s rejected: %s",
            amount,
            bidder_id,
            auction_id,
            exc.detail,
        )
        await _publish_all(auction_id, events)
        raise

    logger.info(
        "Bid of %s by user %s accepted on auction %s",
        amount,
        bidder_id,
        auction_id,
    )

    events.append({
        "type": "bid",
        "auction_id": auction_id,
        "current_bid": str(result.current_bid),
        "highest_bidder_id": result.highest_bidder_id,
        "bid_count": result.bid_count,
    })
    await _publish_all(auction_id, events)

    return result

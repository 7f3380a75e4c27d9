"""Auction operations used by the route layer, over one database session."""
import logging
from datetime import datetime
from typing import List, Optional

from models import Auction
from store import AuctionStore

logger = logging.getLogger(__name__)


async def create_auction(
    db,
    seller_id: int,
    item_name: str,
    description: str,
    starting_bid,
    closing_time: datetime,
    now: Optional[datetime] = None,
) -> Auction:
    auction = await AuctionStore(db).create(
        seller_id=seller_id,
        item_name=item_name,
        description=description,
        starting_bid=starting_bid,
        closing_time=closing_time,
        now=now,
    )
    logger.info(
        "Auction %s created by user %s, closes at %s",
        auction.id,
        seller_id,
        auction.closing_time,
    )
    return auction


async def get_auction(db, auction_id: int) -> Auction:
    return await AuctionStore(db).get_by_id(auction_id)


async def list_open_auctions(db) -> List[Auction]:
    return await AuctionStore(db).list_open()


async def list_auctions_by_seller(db, seller_id: int) -> List[Auction]:
    return await AuctionStore(db).list_by_seller(seller_id)


async def list_auctions_with_bidder_participation(db, bidder_id: int) -> List[Auction]:
    return await AuctionStore(db).list_by_bidder(bidder_id)

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional

from sqlalchemy.exc import InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.orm.exc import StaleDataError

from config import STORE_TIMEOUT_SECONDS
from errors import Conflict, NotFound, StoreUnavailable, ValidationError
from models import Auction, Bid, as_money, to_naive_utc, utcnow

logger = logging.getLogger(__name__)


class AuctionStore:
    """Durable storage of auctions and their bid history, over one session.

    Reads always refresh the loaded auction from the database. ``update``
    commits under the auction's version check, so a write based on a stale
    read raises ``Conflict`` instead of overwriting someone else's change.
    """

    def __init__(self, session: AsyncSession, timeout: float = STORE_TIMEOUT_SECONDS):
        self.session = session
        self.timeout = timeout

    @asynccontextmanager
    async def _io(self):
        try:
            async with asyncio.timeout(self.timeout):
                yield
        except TimeoutError as exc:
            await self._rollback()
            raise StoreUnavailable("Auction store did not respond in time") from exc
        except (OperationalError, InterfaceError) as exc:
            logger.error("Auction store error: %s", exc)
            await self._rollback()
            raise StoreUnavailable() from exc

    async def _rollback(self):
        # leave the session usable after a failed call; the store may still be down
        try:
            async with asyncio.timeout(self.timeout):
                await self.session.rollback()
        except (TimeoutError, SQLAlchemyError):
            logger.warning("Rollback after store failure did not complete", exc_info=True)

    async def create(
        self,
        seller_id: int,
        item_name: str,
        description: str,
        starting_bid,
        closing_time: datetime,
        now: Optional[datetime] = None,
    ) -> Auction:
        now = now or utcnow()

        item_name = (item_name or "").strip()
        if not item_name:
            raise ValidationError("Item name is required")
        if not (description or "").strip():
            raise ValidationError("Description is required")

        try:
            starting_bid = as_money(starting_bid)
        except ValueError as exc:
            raise ValidationError(f"Invalid starting bid: {exc}") from exc
        if starting_bid < 0:
            raise ValidationError("Starting bid cannot be negative")

        closing_time = to_naive_utc(closing_time)
        if closing_time <= now:
            raise ValidationError("Closing time must be in the future")

        auction = Auction(
            item_name=item_name,
            description=description,
            starting_bid=starting_bid,
            current_bid=starting_bid,
            highest_bidder_id=None,
            seller_id=seller_id,
            closing_time=closing_time,
            is_closed=False,
            created_at=now,
        )

        async with self._io():
            self.session.add(auction)
            await self.session.commit()

        return await self.get_by_id(auction.id)

    async def get_by_id(self, auction_id: int, for_update: bool = False) -> Auction:
        stmt = select(Auction).where(Auction.id == auction_id)
        if for_update:
            # row lock where the backend has one; the version check covers the rest
            stmt = stmt.with_for_update()

        async with self._io():
            result = await self.session.execute(
                stmt.execution_options(populate_existing=True)
            )
        auction = result.scalar()

        if not auction:
            raise NotFound("Auction not found")

        return auction

    async def _all(self, stmt) -> List[Auction]:
        async with self._io():
            result = await self.session.execute(
                stmt.execution_options(populate_existing=True)
            )
        return list(result.scalars().all())

    async def list_open(self) -> List[Auction]:
        return await self._all(
            select(Auction)
            .where(Auction.is_closed.is_(False))
            .order_by(Auction.closing_time, Auction.id)
        )

    async def list_expired_open(self, now: datetime) -> List[Auction]:
        return await self._all(
            select(Auction)
            .where(Auction.is_closed.is_(False), Auction.closing_time <= now)
            .order_by(Auction.closing_time, Auction.id)
        )

    async def list_by_seller(self, seller_id: int) -> List[Auction]:
        return await self._all(
            select(Auction)
            .where(Auction.seller_id == seller_id)
            .order_by(Auction.created_at.desc(), Auction.id.desc())
        )

    async def list_by_bidder(self, bidder_id: int) -> List[Auction]:
        return await self._all(
            select(Auction)
            .where(Auction.bids.any(Bid.bidder_id == bidder_id))
            .order_by(Auction.closing_time, Auction.id)
        )

    async def update(self, auction: Auction) -> Auction:
        auction_id = auction.id
        try:
            async with self._io():
                self.session.add(auction)
                await self.session.commit()
        except StaleDataError as exc:
            await self.session.rollback()
            logger.warning("Auction %s changed since it was read", auction_id)
            raise Conflict() from exc

        return auction

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator
from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()

MONEY = Numeric(12, 2)
CENT = Decimal("0.01")
MAX_AMOUNT = Decimal("9999999999.99")


def utcnow() -> datetime:
    """Current time as a naive UTC datetime, the form every column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def as_money(value) -> Decimal:
    """Parse a monetary amount: finite, at most two decimal places.

    Raises ValueError for anything else, including bools and amounts too
    large for the money columns.
    """
    if isinstance(value, bool):
        raise ValueError(f"{value!r} is not a number")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
        if not amount.is_finite():
            raise ValueError("amount must be a finite number")
        cents = amount.quantize(CENT)
    except (InvalidOperation, TypeError) as exc:
        raise ValueError(f"{value!r} is not a number") from exc
    if cents != amount:
        raise ValueError("amount cannot have more than two decimal places")
    if abs(cents) > MAX_AMOUNT:
        raise ValueError(f"amount cannot exceed {MAX_AMOUNT}")
    return cents


# =========================
# DATABASE MODELS
# =========================

class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True)
    username = Column(String(64), unique=True, index=True, nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)
    password = Column(String, nullable=False)


class Auction(Base):
    __tablename__ = "auctions"

    id = Column(Integer, primary_key=True)
    item_name = Column(String(200), nullable=False)
    description = Column(Text, nullable=False)
    starting_bid = Column(MONEY, nullable=False)
    current_bid = Column(MONEY, nullable=False)
    highest_bidder_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    seller_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    closing_time = Column(DateTime, nullable=False)
    is_closed = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    version = Column(Integer, nullable=False)

    seller = relationship("User", foreign_keys=[seller_id], lazy="selectin")
    highest_bidder = relationship("User", foreign_keys=[highest_bidder_id], lazy="selectin")
    bids = relationship(
        "Bid",
        back_populates="auction",
        order_by="Bid.id",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    # every UPDATE carries "WHERE version = <version read>"
    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint("starting_bid >= 0", name="chk_auction_starting_bid"),
        CheckConstraint("current_bid >= starting_bid", name="chk_auction_current_bid"),
        Index("idx_auction_open_closing", "is_closed", "closing_time"),
    )


class Bid(Base):
    __tablename__ = "bids"

    id = Column(Integer, primary_key=True)
    auction_id = Column(Integer, ForeignKey("auctions.id"), nullable=False, index=True)
    bidder_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    amount = Column(MONEY, nullable=False)
    time = Column(DateTime, nullable=False, default=utcnow)

    auction = relationship("Auction", back_populates="bids")
    bidder = relationship("User", lazy="selectin")

    __table_args__ = (
        CheckConstraint("amount > 0", name="chk_bid_amount_positive"),
        Index("idx_bid_auction_time", "auction_id", "time"),
    )


# =========================
# PYDANTIC SCHEMAS
# =========================

class UserCreate(BaseModel):
    username: str = Field(min_length=1, max_length=64)
    email: str = Field(min_length=3)
    password: str = Field(min_length=6)


class UserRef(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str


class UserOut(UserRef):
    email: str


class AuctionCreate(BaseModel):
    item_name: str = Field(min_length=1, max_length=200)
    description: str = Field(min_length=1)
    # parsed by AuctionStore.create, which raises ValidationError
    starting_bid: Any
    closing_time: datetime

    @field_validator("closing_time")
    @classmethod
    def closing_time_utc(cls, value: datetime) -> datetime:
        return to_naive_utc(value)


class BidCreate(BaseModel):
    # parsed by bidding.parse_bid_amount, which raises InvalidAmount
    amount: Any


class BidOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    bidder: UserRef
    amount: Decimal
    time: datetime


class AuctionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    item_name: str
    description: str
    starting_bid: Decimal
    current_bid: Decimal
    highest_bidder: Optional[UserRef] = None
    seller: UserRef
    closing_time: datetime
    is_closed: bool
    created_at: datetime


class AuctionDetail(AuctionOut):
    seller: UserOut
    bids: List[BidOut] = []

    @computed_field
    @property
    def winner(self) -> Optional[UserRef]:
        return self.highest_bidder if self.is_closed else None


class BidResult(BaseModel):
    message: str = "Bid placed successfully"
    auction_id: int
    current_bid: Decimal
    highest_bidder_id: int
    bid_count: int

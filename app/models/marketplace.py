"""
Marketplace records: listings, auctions and sales.

All three are owned by the settlement collaborator. Prices are integers in
the base units of their currency (wei for the native asset), stored as an
exact NUMERIC so 18-decimal amounts never lose precision.
"""

from decimal import Decimal
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import Column, Index, Numeric
from sqlmodel import Field, SQLModel

from app.core.typing import utc_now

# Wide enough for any uint256 amount
BASE_UNITS = Numeric(78, 0)


class ListingStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    CANCELLED = "cancelled"


class AuctionStatus(str, Enum):
    ACTIVE = "active"
    ENDED = "ended"
    CANCELLED = "cancelled"


class Listing(SQLModel, table=True):
    """
    A fixed-price listing. Active iff status is active, it has started and
    it has not ended (end_time None = open-ended).
    """

    id: Optional[int] = Field(default=None, primary_key=True)
    item_id: str = Field(foreign_key="item.id", index=True, max_length=32)
    seller: Optional[str] = Field(default=None, index=True)
    status: ListingStatus = Field(default=ListingStatus.ACTIVE, index=True)
    currency_id: Optional[str] = Field(default=None, foreign_key="currency.id", index=True)  # None = native
    price: Decimal = Field(sa_column=Column(BASE_UNITS, nullable=False))
    quantity: int = Field(default=1)  # Fractional (1155) listings
    start_time: datetime = Field(default_factory=utc_now)
    end_time: Optional[datetime] = None

    __table_args__ = (Index("ix_listing_item_status_start", "item_id", "status", "start_time"),)


class Auction(SQLModel, table=True):
    """An auction window. Only its existence matters to this service."""

    id: Optional[int] = Field(default=None, primary_key=True)
    item_id: str = Field(foreign_key="item.id", index=True, max_length=32)
    status: AuctionStatus = Field(default=AuctionStatus.ACTIVE, index=True)
    start_time: datetime = Field(default_factory=utc_now)
    end_time: datetime


class Sale(SQLModel, table=True):
    """Immutable historical sale. The sole source of volume."""

    id: Optional[int] = Field(default=None, primary_key=True)
    item_id: str = Field(foreign_key="item.id", index=True, max_length=32)
    currency_id: Optional[str] = Field(default=None, foreign_key="currency.id", index=True)  # None = native
    price: Decimal = Field(sa_column=Column(BASE_UNITS, nullable=False))
    timestamp: datetime = Field(default_factory=utc_now, index=True)
    tx_hash: Optional[str] = Field(default=None, index=True)

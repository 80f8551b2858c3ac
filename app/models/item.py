"""
Item Model - a single token of a collection and its ordered attributes.

Items are written by the ingestion collaborator; this service only reads them.
"""

import secrets
import time
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import Index, UniqueConstraint
from sqlmodel import Field, SQLModel

from app.core.typing import utc_now


def generate_item_id() -> str:
    """
    Time-ordered string id: 16 hex chars of nanoseconds + 8 random hex chars.

    Lexicographic order of ids follows insertion order, which the light
    query path relies on.
    """
    return f"{time.time_ns():016x}{secrets.token_hex(4)}"


class ItemStatus(str, Enum):
    """Ingestion lifecycle of an item"""

    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


class Item(SQLModel, table=True):
    id: str = Field(default_factory=generate_item_id, primary_key=True, max_length=32)
    collection_id: int = Field(foreign_key="collection.id", index=True)
    contract: str = Field(index=True)
    token_id: str = Field(index=True)
    name: Optional[str] = Field(default=None, index=True)

    # Media references (ipfs:// or http(s)://)
    image_url: Optional[str] = None
    animation_url: Optional[str] = None
    mime_type: Optional[str] = None

    status: ItemStatus = Field(default=ItemStatus.PENDING, index=True)
    created_at: datetime = Field(default_factory=utc_now, index=True)

    __table_args__ = (
        UniqueConstraint("contract", "token_id", name="uq_item_contract_token"),
        # Population gate + insertion order for the light path
        Index("ix_item_collection_status_id", "collection_id", "status", "id"),
    )


class ItemAttribute(SQLModel, table=True):
    """One `{trait_type, value}` pair of an item's metadata, in metadata order."""

    id: Optional[int] = Field(default=None, primary_key=True)
    item_id: str = Field(foreign_key="item.id", index=True, max_length=32)
    position: int = Field(default=0)
    trait_type: str
    value: str

    __table_args__ = (
        Index("ix_itemattribute_item_trait", "item_id", "trait_type", "value"),
        Index("ix_itemattribute_trait_value", "trait_type", "value"),
    )

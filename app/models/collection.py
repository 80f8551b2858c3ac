from typing import Optional
from datetime import datetime
from sqlmodel import Field, SQLModel

from app.core.typing import utc_now


class Collection(SQLModel, table=True):
    """An NFT collection, addressed by its contract (matched case-insensitively)."""

    id: Optional[int] = Field(default=None, primary_key=True)
    contract: str = Field(index=True, unique=True)
    name: Optional[str] = Field(default=None, index=True)
    description: Optional[str] = None

    # Media
    logo_url: Optional[str] = None
    cover_url: Optional[str] = None

    # Social links
    website: Optional[str] = None
    x: Optional[str] = None
    instagram: Optional[str] = None
    discord: Optional[str] = None
    telegram: Optional[str] = None

    owner_address: Optional[str] = Field(default=None, index=True)
    supply: Optional[int] = None  # Max supply declared by the drop, None if open
    owners_count: Optional[int] = None  # Maintained by the indexer

    created_at: datetime = Field(default_factory=utc_now)

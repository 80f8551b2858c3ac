from typing import Optional
from sqlalchemy import Index, func
from sqlmodel import Field, SQLModel


class RarityRecord(SQLModel, table=True):
    """Precomputed rarity of one token. `rank` is None until ranking has run."""

    id: Optional[int] = Field(default=None, primary_key=True)
    contract: str = Field(index=True)
    token_id: str
    score: float = Field(default=0.0)
    rank: Optional[int] = Field(default=None, index=True)


# Item joins match the contract case-insensitively, so uniqueness does too
Index(
    "ix_rarityrecord_contract_token",
    func.lower(RarityRecord.__table__.c.contract),
    RarityRecord.__table__.c.token_id,
    unique=True,
)

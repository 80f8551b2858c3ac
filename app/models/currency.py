from typing import Optional
from enum import Enum
from sqlmodel import Field, SQLModel


class CurrencyKind(str, Enum):
    """How a currency settles on chain"""

    NATIVE = "native"  # Chain asset (implicit, may also be registered)
    ERC20 = "erc20"  # Registered fungible token


class Currency(SQLModel, table=True):
    """A registered payment currency. Only active rows are selectable."""

    id: str = Field(primary_key=True, max_length=64)
    symbol: str = Field(index=True)
    decimals: int = Field(default=18)
    kind: CurrencyKind = Field(default=CurrencyKind.ERC20)
    token_address: Optional[str] = Field(default=None, index=True)
    active: bool = Field(default=True, index=True)

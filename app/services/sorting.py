"""
Sort Key Selector

Picks exactly one ranking expression per request. Priority:

1. explicit price sort (lowToHigh / highToLow)
2. rarity sort, or any rank window / unranked exclusion (defaults to asc)
3. creation time, newest first when requested
4. creation time, oldest first

Every key is a single ascending numeric value; the item id breaks ties, so
(key, id) is a total order and cursor pagination never repeats or skips.

Price keys are carried in base units of the resolved currency. Only one
currency takes part in a request, so this orders exactly like display units
while keeping keys integral (and exact in cursors):

    lowToHigh:  coalesce(price, SENTINEL)
    highToLow:  coalesce(SENTINEL - price, SENTINEL)

Unpriced items therefore sort last in both directions. Rarity works the
same way around MAX_RANK.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from sqlalchemy import BigInteger, cast, func, literal
from sqlalchemy.sql.elements import ColumnElement

from app.models.marketplace import BASE_UNITS
from app.services.filters import ItemFilters, PriceSort, RaritySort, RecencySort

# Display-unit price above any real listing (scaled per currency)
PRICE_SENTINEL = Decimal(10) ** 12

MAX_RANK = 1_000_000_000

# Integer keys must fit a signed 64-bit column
_INT_KEY_MIN = -(2**63)
_INT_KEY_MAX = 2**63 - 1


class SortMode(str, Enum):
    PRICE_ASC = "price_asc"
    PRICE_DESC = "price_desc"
    RARITY_ASC = "rarity_asc"
    RARITY_DESC = "rarity_desc"
    CREATED = "created"
    CREATED_DESC = "created_desc"


PRICE_MODES = frozenset({SortMode.PRICE_ASC, SortMode.PRICE_DESC})
RARITY_MODES = frozenset({SortMode.RARITY_ASC, SortMode.RARITY_DESC})


@dataclass(frozen=True)
class SortPlan:
    mode: SortMode

    @property
    def uses_price(self) -> bool:
        return self.mode in PRICE_MODES

    @property
    def uses_rarity(self) -> bool:
        return self.mode in RARITY_MODES

    def bind_key(self, key: Decimal) -> ColumnElement[Any]:
        """Bind a decoded cursor key with the same SQL type as the ranking column."""
        if self.uses_price:
            return literal(key, BASE_UNITS)
        value = int(key)
        return literal(min(max(value, _INT_KEY_MIN), _INT_KEY_MAX), BigInteger)


def select_sort(filters: ItemFilters) -> SortPlan:
    if filters.price_sort is not None:
        if filters.price_sort == PriceSort.HIGH_TO_LOW:
            return SortPlan(SortMode.PRICE_DESC)
        return SortPlan(SortMode.PRICE_ASC)

    if filters.rarity_sort is not None or filters.has_rank_constraint:
        if filters.rarity_sort == RaritySort.DESC:
            return SortPlan(SortMode.RARITY_DESC)
        return SortPlan(SortMode.RARITY_ASC)

    if filters.recency_sort == RecencySort.NEWEST:
        return SortPlan(SortMode.CREATED_DESC)

    return SortPlan(SortMode.CREATED)


def price_sentinel(decimals: int) -> Decimal:
    """PRICE_SENTINEL expressed in base units of a currency with `decimals`."""
    return PRICE_SENTINEL.scaleb(decimals)


def ranking_expression(
    plan: SortPlan,
    *,
    price: Optional[ColumnElement[Any]] = None,
    rank: Optional[ColumnElement[Any]] = None,
    created_at: Optional[ColumnElement[Any]] = None,
    decimals: int = 18,
) -> ColumnElement[Any]:
    """
    Build the ranking column for a plan.

    Args:
        price: cheapest active price in base units of the resolved currency
        rank: rarity rank (NULL when unranked)
        created_at: item creation timestamp
        decimals: decimals of the resolved currency (sizes the price sentinel)
    """
    if plan.uses_price:
        if price is None:
            raise ValueError("price sort needs a price expression")
        sentinel = literal(price_sentinel(decimals), BASE_UNITS)
        if plan.mode == SortMode.PRICE_DESC:
            return func.coalesce(sentinel - price, sentinel)
        return func.coalesce(price, sentinel)

    if plan.uses_rarity:
        if rank is None:
            raise ValueError("rarity sort needs a rank expression")
        max_rank = literal(MAX_RANK, BigInteger)
        if plan.mode == SortMode.RARITY_DESC:
            return func.coalesce(max_rank - rank, max_rank)
        return func.coalesce(rank, max_rank)

    if created_at is None:
        raise ValueError("default sort needs a creation time expression")
    epoch = cast(func.extract("epoch", created_at), BigInteger)
    if plan.mode == SortMode.CREATED_DESC:
        return -epoch
    return epoch

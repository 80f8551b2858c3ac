"""
Filter Compiler

Turns the client's item filters into SQLAlchemy expressions over Item:

- population gate: the collection's successfully ingested items
- predicate: search text, trait selections, listed/auctioned existence checks
- rarity predicate: rank window / unranked exclusion, evaluated against an
  outer-joined RarityRecord (heavy path only)

Trait semantics: an item qualifies if, for every requested trait type, one
of its values for that type is among the requested values (AND across
types, OR within a type).

Listed/auctioned: both flags set -> listed OR auctioned; one flag -> that
check alone.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Iterable, Mapping, Optional

from sqlalchemy import and_, exists, func, or_, select
from sqlalchemy.sql.elements import ColumnElement

from app.core.typing import col
from app.models.currency import Currency, CurrencyKind
from app.models.item import Item, ItemAttribute, ItemStatus
from app.models.marketplace import Auction, AuctionStatus, Listing, ListingStatus
from app.models.rarity import RarityRecord
from app.services.currency import CurrencyMeta


class PriceSort(str, Enum):
    LOW_TO_HIGH = "lowToHigh"
    HIGH_TO_LOW = "highToLow"


class RaritySort(str, Enum):
    ASC = "asc"  # Best (rank 1) first
    DESC = "desc"  # Worst first


class RecencySort(str, Enum):
    NEWEST = "newest"
    OLDEST = "oldest"


@dataclass(frozen=True)
class ItemFilters:
    """Client filter parameters for a collection's item list."""

    search: str = ""
    listed_only: bool = False
    auctioned_only: bool = False
    traits: Mapping[str, frozenset[str]] = field(default_factory=dict)
    rank_min: Optional[int] = None
    rank_max: Optional[int] = None
    include_unranked: bool = True
    price_sort: Optional[PriceSort] = None
    rarity_sort: Optional[RaritySort] = None
    recency_sort: Optional[RecencySort] = None

    @property
    def has_rank_constraint(self) -> bool:
        return self.rank_min is not None or self.rank_max is not None or not self.include_unranked

    @property
    def wants_rarity(self) -> bool:
        """Rarity columns are part of the response."""
        return self.rarity_sort is not None or self.has_rank_constraint

    @property
    def requires_heavy_path(self) -> bool:
        return (
            self.price_sort is not None
            or self.rarity_sort is not None
            or self.recency_sort == RecencySort.NEWEST
            or self.has_rank_constraint
            or any(self.traits.values())
        )

    def cache_key(self) -> tuple:
        return (
            self.search,
            self.listed_only,
            self.auctioned_only,
            tuple(sorted((t, tuple(sorted(v))) for t, v in self.traits.items())),
            self.rank_min,
            self.rank_max,
            self.include_unranked,
            self.price_sort.value if self.price_sort else None,
            self.rarity_sort.value if self.rarity_sort else None,
            self.recency_sort.value if self.recency_sort else None,
        )


def parse_traits(
    pairs: Iterable[tuple[str, str]] = (),
    delimited: Optional[str] = None,
) -> dict[str, frozenset[str]]:
    """
    Merge trait selections from both accepted encodings.

    Args:
        pairs: (type, value) pairs from repeated `trait[Type]=value` parameters
        delimited: a single `Type:value|Type2:value2` string

    Blank types or values are dropped.
    """
    collected: dict[str, set[str]] = {}

    def add(trait_type: str, value: str) -> None:
        trait_type, value = trait_type.strip(), value.strip()
        if trait_type and value:
            collected.setdefault(trait_type, set()).add(value)

    for trait_type, value in pairs:
        add(trait_type, value)

    if delimited:
        for chunk in delimited.split("|"):
            trait_type, sep, value = chunk.partition(":")
            if sep:
                add(trait_type, value)

    return {t: frozenset(v) for t, v in collected.items()}


# ============== ACTIVITY / CURRENCY CLAUSES ==============


def active_listing_clause(now: datetime) -> ColumnElement[bool]:
    """status=active AND start<=now AND (end is null OR end>now)"""
    return and_(
        col(Listing.status) == ListingStatus.ACTIVE,
        col(Listing.start_time) <= now,
        or_(col(Listing.end_time).is_(None), col(Listing.end_time) > now),
    )


def active_auction_clause(now: datetime) -> ColumnElement[bool]:
    """status=active AND start<=now AND end>now"""
    return and_(
        col(Auction.status) == AuctionStatus.ACTIVE,
        col(Auction.start_time) <= now,
        col(Auction.end_time) > now,
    )


def currency_clause(currency_column, currency: CurrencyMeta) -> ColumnElement[bool]:
    """
    Restrict a listing/sale currency column to one resolved currency.

    Native matches "no currency" or any registered currency of kind native;
    a token matches its exact id.
    """
    if currency.is_native:
        native_ids = select(Currency.id).where(col(Currency.kind) == CurrencyKind.NATIVE)
        return or_(currency_column.is_(None), currency_column.in_(native_ids))
    return currency_column == currency.id


def price_eligibility_clause(currency: CurrencyMeta, now: datetime) -> ColumnElement[bool]:
    """
    Items that take part in a price sort: listed in `currency`, or not listed
    at all. Items listed only in other currencies are left out.
    """
    listed_in_currency = exists().where(
        col(Listing.item_id) == col(Item.id),
        active_listing_clause(now),
        currency_clause(col(Listing.currency_id), currency),
    )
    listed_at_all = exists().where(col(Listing.item_id) == col(Item.id), active_listing_clause(now))
    return or_(listed_in_currency, ~listed_at_all)


def rarity_join_condition() -> ColumnElement[bool]:
    """Item <-> RarityRecord on (contract, token id), contract case-insensitive."""
    return and_(
        func.lower(RarityRecord.contract) == func.lower(Item.contract),
        col(RarityRecord.token_id) == col(Item.token_id),
    )


# ============== COMPILER ==============


@dataclass
class CompiledFilters:
    population_gate: list[ColumnElement[bool]]
    predicate: list[ColumnElement[bool]]
    rarity_predicate: list[ColumnElement[bool]]
    requires_heavy_path: bool

    @property
    def item_clauses(self) -> list[ColumnElement[bool]]:
        return [*self.population_gate, *self.predicate]


class FilterCompiler:
    """Compiles ItemFilters into clauses; holds no state between requests."""

    def __init__(self, collection_id: int, now: datetime):
        self.collection_id = collection_id
        self.now = now

    def population_gate(self) -> list[ColumnElement[bool]]:
        return [
            col(Item.collection_id) == self.collection_id,
            col(Item.status) == ItemStatus.SUCCESS,
        ]

    def search_clause(self, search: str) -> Optional[ColumnElement[bool]]:
        term = search.strip()
        if not term:
            return None
        return or_(
            func.lower(Item.name).contains(term.lower(), autoescape=True),
            col(Item.token_id).contains(term, autoescape=True),
        )

    def has_active_listing(self) -> ColumnElement[bool]:
        return exists().where(col(Listing.item_id) == col(Item.id), active_listing_clause(self.now))

    def has_active_auction(self) -> ColumnElement[bool]:
        return exists().where(col(Auction.item_id) == col(Item.id), active_auction_clause(self.now))

    def market_clause(self, listed_only: bool, auctioned_only: bool) -> Optional[ColumnElement[bool]]:
        if listed_only and auctioned_only:
            return or_(self.has_active_listing(), self.has_active_auction())
        if listed_only:
            return self.has_active_listing()
        if auctioned_only:
            return self.has_active_auction()
        return None

    def trait_clauses(self, traits: Mapping[str, frozenset[str]]) -> list[ColumnElement[bool]]:
        clauses = []
        for trait_type in sorted(traits):
            values = traits[trait_type]
            if not values:
                continue
            clauses.append(
                exists().where(
                    col(ItemAttribute.item_id) == col(Item.id),
                    col(ItemAttribute.trait_type) == trait_type,
                    col(ItemAttribute.value).in_(sorted(values)),
                )
            )
        return clauses

    def rarity_clauses(self, filters: ItemFilters) -> list[ColumnElement[bool]]:
        window: list[ColumnElement[bool]] = []
        if filters.rank_min is not None:
            window.append(col(RarityRecord.rank) >= filters.rank_min)
        if filters.rank_max is not None:
            window.append(col(RarityRecord.rank) <= filters.rank_max)

        if not filters.include_unranked:
            return [col(RarityRecord.rank).is_not(None), *window]
        if window:
            # Outer join: unranked rows have a NULL rank and stay unless excluded
            return [or_(col(RarityRecord.rank).is_(None), and_(*window))]
        return []

    def compile(self, filters: ItemFilters) -> CompiledFilters:
        predicate: list[ColumnElement[bool]] = []

        search = self.search_clause(filters.search)
        if search is not None:
            predicate.append(search)

        market = self.market_clause(filters.listed_only, filters.auctioned_only)
        if market is not None:
            predicate.append(market)

        predicate.extend(self.trait_clauses(filters.traits))

        return CompiledFilters(
            population_gate=self.population_gate(),
            predicate=predicate,
            rarity_predicate=self.rarity_clauses(filters),
            requires_heavy_path=filters.requires_heavy_path,
        )

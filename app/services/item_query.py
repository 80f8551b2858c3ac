"""
Query Executor

Runs one page of a collection's item list through one of two strategies:

- LightPathStrategy: plain filtered read ordered by item id. Used when no
  price, rarity or newest-first sort, rank constraint or trait filter is
  present.
- HeavyPathStrategy: one query whose inner select computes the ranking key
  per row (cheapest price in the resolved currency, rarity rank, or
  creation time) as a labelled column; the outer select applies the
  keyset predicate `(key > k) OR (key = k AND id > i)`, orders by
  `(key, id)` and fetches `limit + 1` rows.
  Under a price sort, items listed only in another currency are left out.

Both strategies return ItemRows that go through the same shaping step: one
batched read of the page's active listings (no per-item queries), one of
its attributes, and the rarity population when rarity is requested.

Usage:
    executor = ItemQueryExecutor(session, currency)
    page = executor.fetch_page(collection, filters, cursor=token, limit=24)
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import and_, exists, func, or_, select
from sqlalchemy.sql.elements import ColumnElement
from sqlmodel import Session

from app.core.config import settings
from app.core.db_utils import translate_db_errors
from app.core.logging_config import get_logger
from app.core.typing import col, seq, utc_now
from app.models.collection import Collection
from app.models.currency import Currency, CurrencyKind
from app.models.item import Item, ItemAttribute
from app.models.marketplace import Auction, Listing
from app.models.rarity import RarityRecord
from app.services import cursor as cursor_codec
from app.services.currency import CurrencyMeta
from app.services.facets import FacetBuilder
from app.services.filters import (
    CompiledFilters,
    FilterCompiler,
    ItemFilters,
    active_auction_clause,
    active_listing_clause,
    currency_clause,
    price_eligibility_clause,
    rarity_join_condition,
)
from app.services.media import detect_media_type, ipfs_to_http
from app.services.pricing import to_display, to_float
from app.services.sorting import SortPlan, ranking_expression, select_sort

logger = get_logger(__name__)


@dataclass
class ItemRow:
    """One row as returned by a strategy, before shaping."""

    id: str
    token_id: str
    name: Optional[str]
    image_url: Optional[str]
    animation_url: Optional[str]
    mime_type: Optional[str]
    created_at: datetime
    is_auctioned: bool
    rank_key: Any = 0
    rarity_score: Optional[float] = None
    rarity_rank: Optional[int] = None


@dataclass
class ListingQuote:
    """An active listing of a page item with its currency resolved."""

    item_id: str
    price_base: Decimal
    currency_id: Optional[str]
    symbol: str
    decimals: int
    is_native: bool

    @property
    def display_price(self) -> Decimal:
        return to_display(self.price_base, self.decimals)


@dataclass
class ItemView:
    id: str
    token_id: str
    name: Optional[str]
    image: Optional[str]
    animation_url: Optional[str]
    media_type: str
    created_at: datetime
    attributes: list[dict] = field(default_factory=list)
    is_listed: bool = False
    listing_price: Optional[float] = None
    listing_currency_symbol: Optional[str] = None
    is_auctioned: bool = False
    rarity_score: Optional[float] = None
    rarity_rank: Optional[int] = None
    population: Optional[int] = None


@dataclass
class ItemPage:
    items: list[ItemView]
    next_cursor: Optional[str]
    sort_mode: str
    path: str


def pick_listing(quotes: list[ListingQuote]) -> Optional[ListingQuote]:
    """
    Choose the listing shown for an item.

    The cheapest native listing wins; without one, the cheapest token listing
    by display price (currency id breaks ties).
    """
    if not quotes:
        return None

    natives = [q for q in quotes if q.is_native]
    if natives:
        return min(natives, key=lambda q: q.price_base)

    return min(quotes, key=lambda q: (q.display_price, q.currency_id or ""))


def cheapest_price(currency: CurrencyMeta, now: datetime) -> ColumnElement[Any]:
    """Scalar subquery: cheapest active listing of the current Item in `currency`, base units."""
    return (
        select(func.min(Listing.price))
        .where(
            col(Listing.item_id) == col(Item.id),
            active_listing_clause(now),
            currency_clause(col(Listing.currency_id), currency),
        )
        .scalar_subquery()
    )


def auction_flag(now: datetime) -> ColumnElement[bool]:
    return exists().where(col(Auction.item_id) == col(Item.id), active_auction_clause(now))


def _item_columns() -> list[ColumnElement[Any]]:
    return [
        col(Item.id).label("id"),
        col(Item.token_id).label("token_id"),
        col(Item.name).label("name"),
        col(Item.image_url).label("image_url"),
        col(Item.animation_url).label("animation_url"),
        col(Item.mime_type).label("mime_type"),
        col(Item.created_at).label("created_at"),
    ]


class QueryStrategy:
    """Predicate, ranking and execution for one query path."""

    name = "base"

    def __init__(self, session: Session, currency: CurrencyMeta, now: datetime):
        self.session = session
        self.currency = currency
        self.now = now

    def build_predicate(self, compiled: CompiledFilters, plan: SortPlan) -> list[ColumnElement[bool]]:
        raise NotImplementedError

    def build_ranking(self, plan: SortPlan) -> Optional[ColumnElement[Any]]:
        raise NotImplementedError

    def execute(
        self,
        compiled: CompiledFilters,
        plan: SortPlan,
        cursor: Optional[cursor_codec.Cursor],
        limit: int,
    ) -> list[ItemRow]:
        raise NotImplementedError


class LightPathStrategy(QueryStrategy):
    """Insertion order; the cursor only carries the last id."""

    name = "light"

    def build_predicate(self, compiled: CompiledFilters, plan: SortPlan) -> list[ColumnElement[bool]]:
        return compiled.item_clauses

    def build_ranking(self, plan: SortPlan) -> Optional[ColumnElement[Any]]:
        return None

    def execute(self, compiled, plan, cursor, limit):
        query = select(*_item_columns(), auction_flag(self.now).label("is_auctioned")).where(
            *self.build_predicate(compiled, plan)
        )
        if cursor is not None:
            query = query.where(col(Item.id) > cursor.id)
        query = query.order_by(col(Item.id)).limit(limit + 1)

        rows = self.session.execute(query).all()
        return [ItemRow(**row._mapping, rank_key=0) for row in rows]


class HeavyPathStrategy(QueryStrategy):
    """Computed ranking column with a (key, id) keyset."""

    name = "heavy"

    def __init__(self, session: Session, currency: CurrencyMeta, now: datetime, with_rarity: bool = False):
        super().__init__(session, currency, now)
        self.with_rarity = with_rarity

    def build_predicate(self, compiled: CompiledFilters, plan: SortPlan) -> list[ColumnElement[bool]]:
        clauses = list(compiled.item_clauses)
        if self.with_rarity:
            clauses += compiled.rarity_predicate
        if plan.uses_price:
            clauses.append(price_eligibility_clause(self.currency, self.now))
        return clauses

    def build_ranking(self, plan: SortPlan) -> ColumnElement[Any]:
        return ranking_expression(
            plan,
            price=cheapest_price(self.currency, self.now) if plan.uses_price else None,
            rank=col(RarityRecord.rank) if plan.uses_rarity else None,
            created_at=col(Item.created_at),
            decimals=self.currency.decimals,
        )

    def execute(self, compiled, plan, cursor, limit):
        columns = [
            *_item_columns(),
            auction_flag(self.now).label("is_auctioned"),
            self.build_ranking(plan).label("rank_key"),
        ]
        if self.with_rarity:
            columns += [
                col(RarityRecord.score).label("rarity_score"),
                col(RarityRecord.rank).label("rarity_rank"),
            ]

        inner = select(*columns).select_from(Item)
        if self.with_rarity:
            inner = inner.outerjoin(RarityRecord, rarity_join_condition())
        ranked = inner.where(*self.build_predicate(compiled, plan)).subquery("ranked")

        query = select(ranked)
        if cursor is not None:
            key = plan.bind_key(cursor.key)
            query = query.where(
                or_(
                    ranked.c.rank_key > key,
                    and_(ranked.c.rank_key == key, ranked.c.id > cursor.id),
                )
            )
        query = query.order_by(ranked.c.rank_key, ranked.c.id).limit(limit + 1)

        rows = self.session.execute(query).all()
        return [ItemRow(**row._mapping) for row in rows]


class ItemQueryExecutor:
    def __init__(self, session: Session, currency: CurrencyMeta, now: Optional[datetime] = None):
        self.session = session
        self.currency = currency
        self.now = now or utc_now()

    def strategy_for(self, compiled: CompiledFilters, filters: ItemFilters) -> QueryStrategy:
        if compiled.requires_heavy_path:
            return HeavyPathStrategy(self.session, self.currency, self.now, with_rarity=filters.wants_rarity)
        return LightPathStrategy(self.session, self.currency, self.now)

    def fetch_page(
        self,
        collection: Collection,
        filters: ItemFilters,
        cursor: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> ItemPage:
        """
        Fetch one page of items.

        Args:
            collection: Collection whose items are listed
            filters: Client filters and sort request
            cursor: Opaque cursor from a previous page; malformed -> page 1
            limit: Page size, clamped to [1, ITEMS_MAX_LIMIT]

        Raises:
            UpstreamTimeout / QueryExecutionFailure: the database failed
        """
        limit = cursor_codec.clamp_limit(limit, settings.ITEMS_DEFAULT_LIMIT, settings.ITEMS_MAX_LIMIT)
        compiled = FilterCompiler(collection.id, self.now).compile(filters)
        plan = select_sort(filters)
        decoded = cursor_codec.decode(cursor)
        strategy = self.strategy_for(compiled, filters)

        with translate_db_errors("items_page", contract=collection.contract, path=strategy.name):
            rows = strategy.execute(compiled, plan, decoded, limit)
            has_more = len(rows) > limit
            rows = rows[:limit]
            items = self.shape(rows, collection, include_rarity=filters.wants_rarity)

        next_cursor = None
        if has_more and rows:
            next_cursor = cursor_codec.encode(rows[-1].rank_key, rows[-1].id)

        logger.debug(
            "Items page fetched",
            contract=collection.contract,
            path=strategy.name,
            sort=plan.mode.value,
            count=len(items),
            has_more=has_more,
        )
        return ItemPage(items=items, next_cursor=next_cursor, sort_mode=plan.mode.value, path=strategy.name)

    # ============== SHAPING ==============

    def load_listings(self, item_ids: list[str]) -> dict[str, list[ListingQuote]]:
        """Active listings of the given items, in one query."""
        if not item_ids:
            return {}
        query = (
            select(
                Listing.item_id,
                Listing.price,
                Listing.currency_id,
                Currency.symbol,
                Currency.decimals,
                Currency.kind,
            )
            .outerjoin(Currency, col(Currency.id) == col(Listing.currency_id))
            .where(col(Listing.item_id).in_(seq(item_ids)), active_listing_clause(self.now))
        )
        quotes: dict[str, list[ListingQuote]] = {}
        for item_id, price, currency_id, symbol, decimals, kind in self.session.execute(query).all():
            is_native = currency_id is None or kind == CurrencyKind.NATIVE
            quotes.setdefault(item_id, []).append(
                ListingQuote(
                    item_id=item_id,
                    price_base=Decimal(price),
                    currency_id=currency_id,
                    symbol=symbol or settings.NATIVE_CURRENCY_SYMBOL,
                    decimals=decimals if decimals is not None else settings.NATIVE_CURRENCY_DECIMALS,
                    is_native=is_native,
                )
            )
        return quotes

    def load_attributes(self, item_ids: list[str]) -> dict[str, list[dict]]:
        if not item_ids:
            return {}
        query = (
            select(ItemAttribute)
            .where(col(ItemAttribute.item_id).in_(seq(item_ids)))
            .order_by(col(ItemAttribute.item_id), col(ItemAttribute.position), col(ItemAttribute.id))
        )
        attributes: dict[str, list[dict]] = {}
        for attr in self.session.execute(query).scalars().all():
            attributes.setdefault(attr.item_id, []).append({"trait_type": attr.trait_type, "value": attr.value})
        return attributes

    def shape(self, rows: list[ItemRow], collection: Collection, include_rarity: bool) -> list[ItemView]:
        item_ids = [row.id for row in rows]
        listings = self.load_listings(item_ids)
        attributes = self.load_attributes(item_ids)
        population = FacetBuilder(self.session).population(collection.contract) if include_rarity and rows else None

        items = []
        for row in rows:
            listing = pick_listing(listings.get(row.id, []))
            view = ItemView(
                id=row.id,
                token_id=row.token_id,
                name=row.name,
                image=ipfs_to_http(row.image_url),
                animation_url=ipfs_to_http(row.animation_url),
                media_type=detect_media_type(row.animation_url or row.image_url, row.mime_type).value,
                created_at=row.created_at,
                attributes=attributes.get(row.id, []),
                is_listed=listing is not None,
                listing_price=to_float(listing.display_price) if listing else None,
                listing_currency_symbol=listing.symbol if listing else None,
                is_auctioned=bool(row.is_auctioned),
            )
            if include_rarity:
                view.rarity_score = row.rarity_score
                view.rarity_rank = row.rarity_rank
                view.population = population
            items.append(view)
        return items

"""
Collection Stats Service

Currency-aware marketplace aggregates for collections:
- floor price: cheapest active listing in the resolved currency
- volume: sum of sales in the resolved currency, all-time or windowed
- windowed volume with the previous equal-length window and % change
- collection header (identity, counts, floor, volume, rarity population)
- top collections ranked by windowed volume
- the collection list: every collection with floor and all-time volume,
  sorted by volume, floor or creation time and cursor-paginated

Currency isolation: native amounts are listings/sales with no currency or a
currency of kind native; token amounts match the exact currency id. Amounts
recorded under another currency never enter a figure.

Sales scans are bounded to the AGGREGATE_ROW_CAP most recent rows.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from sqlalchemy import BigInteger, and_, cast, func, literal, or_
from sqlalchemy.sql.elements import ColumnElement
from sqlmodel import Session, select

from app.core.config import settings
from app.core.db_utils import db_operation, degradable
from app.core.logging_config import get_logger
from app.core.typing import col, seq, utc_now
from app.models.collection import Collection
from app.models.item import Item, ItemStatus
from app.models.marketplace import BASE_UNITS, Auction, Listing, Sale
from app.services import cursor as cursor_codec
from app.services.currency import CurrencyMeta
from app.services.facets import FacetBuilder
from app.services.filters import active_auction_clause, active_listing_clause, currency_clause
from app.services.media import ipfs_to_http
from app.services.pricing import to_display, to_float

logger = get_logger(__name__)

WINDOWS: dict[str, timedelta] = {
    "24h": timedelta(hours=24),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
}
DEFAULT_WINDOW = "24h"


def parse_window(value: Optional[str]) -> str:
    """Unknown or missing window keys fall back to 24h."""
    key = (value or "").strip().lower()
    return key if key in WINDOWS else DEFAULT_WINDOW


def pct_change(curr: float, prev: float) -> float:
    """
    Percentage change from prev to curr.

    A non-positive previous value has no meaningful ratio: any current
    volume counts as +100%, none as 0%.
    """
    if prev <= 0:
        return 100.0 if curr > 0 else 0.0
    return (curr - prev) / prev * 100


@dataclass
class WindowedVolume:
    window: str
    current: Decimal
    previous: Decimal

    @property
    def change_pct(self) -> float:
        return pct_change(float(self.current), float(self.previous))


@dataclass
class CollectionHeader:
    id: int
    contract: str
    name: Optional[str]
    description: Optional[str]
    logo_url: Optional[str]
    cover_url: Optional[str]
    website: Optional[str]
    x: Optional[str]
    instagram: Optional[str]
    discord: Optional[str]
    telegram: Optional[str]
    owner_address: Optional[str]
    supply: Optional[int]
    items_count: int
    owners_count: int
    listing_active_count: int
    auction_active_count: int
    floor_price: Optional[float]
    volume: float
    rarity_enabled: bool
    rarity_population: int
    currency: dict = field(default_factory=dict)


@dataclass
class TopCollection:
    id: int
    name: Optional[str]
    contract: str
    logo_url: Optional[str]
    cover_url: Optional[str]
    floor: Optional[float]
    volume_window: float
    volume_prev_window: float
    change_pct: float
    volume_all_time: float
    currency: dict


# ============== COLLECTION LIST ==============


class CollectionSort(str, Enum):
    VOLUME = "volume"  # All-time volume, highest first
    FLOOR = "floor"  # Floor, highest first; nothing listed goes last
    NEWEST = "newest"


def parse_collection_sort(value: Optional[str]) -> CollectionSort:
    """Unknown or missing sort keys fall back to volume."""
    try:
        return CollectionSort((value or "").strip().lower())
    except ValueError:
        return CollectionSort.VOLUME


@dataclass
class CollectionListItem:
    id: int
    name: Optional[str]
    contract: str
    logo_url: Optional[str]
    cover_url: Optional[str]
    items_count: int
    owners_count: int
    floor: Optional[float]
    volume_all_time: float
    sort_key: Any = field(default=0, repr=False)


@dataclass
class CollectionsPage:
    items: list[CollectionListItem]
    next_cursor: Optional[str]
    sort: str
    currency: dict


class CollectionStatsService:
    """
    Aggregates for one request; `now` is fixed at construction so every
    figure in a response uses the same instant.

    Example:
        stats = CollectionStatsService(session)
        floor = stats.floor_price(collection, currency)
    """

    def __init__(self, session: Session, now: Optional[datetime] = None):
        self.session = session
        self.now = now or utc_now()

    # ============== SINGLE COLLECTION ==============

    @db_operation("floor_price")
    def floor_price(self, collection: Collection, currency: CurrencyMeta) -> Optional[Decimal]:
        """Cheapest active listing in `currency`, display units; None when nothing is listed."""
        query = (
            select(func.min(Listing.price))
            .select_from(Listing)
            .join(Item, col(Item.id) == col(Listing.item_id))
            .where(
                col(Item.collection_id) == collection.id,
                col(Item.status) == ItemStatus.SUCCESS,
                active_listing_clause(self.now),
                currency_clause(col(Listing.currency_id), currency),
            )
        )
        cheapest = self.session.exec(query).one()
        if cheapest is None:
            return None
        return to_display(cheapest, currency.decimals)

    def _capped_sales(
        self,
        currency: CurrencyMeta,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        collection_id: Optional[int] = None,
    ):
        query = (
            select(col(Sale.price).label("price"), col(Item.collection_id).label("collection_id"))
            .select_from(Sale)
            .join(Item, col(Item.id) == col(Sale.item_id))
            .where(currency_clause(col(Sale.currency_id), currency))
        )
        if collection_id is not None:
            query = query.where(col(Item.collection_id) == collection_id)
        if since is not None:
            query = query.where(col(Sale.timestamp) >= since)
        if until is not None:
            query = query.where(col(Sale.timestamp) < until)
        return query.order_by(col(Sale.timestamp).desc()).limit(settings.AGGREGATE_ROW_CAP).subquery("sales")

    @db_operation("volume")
    def volume(
        self,
        collection: Collection,
        currency: CurrencyMeta,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> Decimal:
        """Sum of sales in `currency` within [since, until), display units; 0 when none."""
        sales = self._capped_sales(currency, since, until, collection_id=collection.id)
        total = self.session.execute(select(func.sum(sales.c.price))).scalar()
        return to_display(total or 0, currency.decimals)

    def window_bounds(self, window: str) -> tuple[datetime, datetime]:
        """Start of the current window and start of the previous one."""
        span = WINDOWS[parse_window(window)]
        start = self.now - span
        return start, start - span

    def windowed_volume(self, collection: Collection, currency: CurrencyMeta, window: str) -> WindowedVolume:
        window = parse_window(window)
        start, prev_start = self.window_bounds(window)
        return WindowedVolume(
            window=window,
            current=self.volume(collection, currency, since=start),
            previous=self.volume(collection, currency, since=prev_start, until=start),
        )

    @db_operation("collection_counts")
    def _counts(self, collection: Collection) -> tuple[int, int, int]:
        items_count = self.session.exec(
            select(func.count(col(Item.id))).where(
                col(Item.collection_id) == collection.id,
                col(Item.status) == ItemStatus.SUCCESS,
            )
        ).one()
        listing_count = self.session.exec(
            select(func.count(col(Listing.id)))
            .join(Item, col(Item.id) == col(Listing.item_id))
            .where(col(Item.collection_id) == collection.id, active_listing_clause(self.now))
        ).one()
        auction_count = self.session.exec(
            select(func.count(col(Auction.id)))
            .join(Item, col(Item.id) == col(Auction.item_id))
            .where(col(Item.collection_id) == collection.id, active_auction_clause(self.now))
        ).one()
        return int(items_count or 0), int(listing_count or 0), int(auction_count or 0)

    def collection_header(self, collection: Collection, currency: CurrencyMeta) -> CollectionHeader:
        """
        Header for the collection page.

        Floor, volume and rarity population are optional figures: a failure
        in any of them is reported and degrades to None / 0 while the rest
        of the header (and the item list) is still served.
        """
        items_count, listing_count, auction_count = self._counts(collection)
        context = {"contract": collection.contract, "currency": currency.id}

        floor: Optional[Decimal] = None
        with degradable(self.session, "collection_floor", **context):
            floor = self.floor_price(collection, currency)

        volume = Decimal(0)
        with degradable(self.session, "collection_volume", **context):
            volume = self.volume(collection, currency)

        population = 0
        with degradable(self.session, "rarity_population", **context):
            population = FacetBuilder(self.session).population(collection.contract)

        return CollectionHeader(
            id=collection.id,
            contract=collection.contract,
            name=collection.name,
            description=collection.description,
            logo_url=ipfs_to_http(collection.logo_url),
            cover_url=ipfs_to_http(collection.cover_url),
            website=collection.website,
            x=collection.x,
            instagram=collection.instagram,
            discord=collection.discord,
            telegram=collection.telegram,
            owner_address=collection.owner_address,
            supply=collection.supply,
            items_count=items_count,
            owners_count=collection.owners_count or 0,
            listing_active_count=listing_count,
            auction_active_count=auction_count,
            floor_price=to_float(floor),
            volume=to_float(volume) or 0.0,
            rarity_enabled=population > 0,
            rarity_population=population,
            currency=currency.to_dict(),
        )

    # ============== RANKINGS ==============

    def _volume_by_collection(
        self,
        currency: CurrencyMeta,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> dict[int, Decimal]:
        sales = self._capped_sales(currency, since, until)
        rows = self.session.execute(
            select(sales.c.collection_id, func.sum(sales.c.price)).group_by(sales.c.collection_id)
        ).all()
        return {cid: to_display(total, currency.decimals) for cid, total in rows if total}

    def _floors_by_collection(self, collection_ids: list[int], currency: CurrencyMeta) -> dict[int, Decimal]:
        if not collection_ids:
            return {}
        rows = self.session.execute(
            select(Item.collection_id, func.min(Listing.price))
            .select_from(Listing)
            .join(Item, col(Item.id) == col(Listing.item_id))
            .where(
                col(Item.collection_id).in_(seq(collection_ids)),
                col(Item.status) == ItemStatus.SUCCESS,
                active_listing_clause(self.now),
                currency_clause(col(Listing.currency_id), currency),
            )
            .group_by(Item.collection_id)
        ).all()
        return {cid: to_display(price, currency.decimals) for cid, price in rows if price is not None}

    def _filler_collections(self, exclude: list[int], need: int, all_time: dict[int, Decimal]) -> list[Collection]:
        """Collections without window volume, by all-time volume then newest."""
        excluded = set(exclude)
        by_volume = [cid for cid, _ in sorted(all_time.items(), key=lambda kv: kv[1], reverse=True) if cid not in excluded]
        picked_ids = by_volume[:need]

        loaded = {c.id: c for c in self.session.exec(select(Collection).where(col(Collection.id).in_(seq(picked_ids)))).all()}
        filler = [loaded[cid] for cid in picked_ids if cid in loaded]

        if len(filler) < need:
            taken = excluded | {c.id for c in filler}
            query = select(Collection)
            if taken:
                query = query.where(col(Collection.id).not_in(seq(list(taken))))
            query = query.order_by(col(Collection.created_at).desc(), col(Collection.id).desc()).limit(need - len(filler))
            filler += list(self.session.exec(query).all())
        return filler

    @db_operation("top_collections")
    def top_collections(self, currency: CurrencyMeta, window: str = DEFAULT_WINDOW, limit: int = 10) -> list[TopCollection]:
        """
        Rank collections by volume in the current window.

        Collections with window volume come first; when fewer than `limit`
        have any, the list is filled with the rest by all-time volume.
        Floors are None for collections with nothing listed in `currency`.
        """
        window = parse_window(window)
        limit = max(1, min(int(limit), settings.TOP_MAX_LIMIT))
        start, prev_start = self.window_bounds(window)

        current = self._volume_by_collection(currency, since=start)
        previous = self._volume_by_collection(currency, since=prev_start, until=start)
        all_time = self._volume_by_collection(currency)

        ranked_ids = [cid for cid, _ in sorted(current.items(), key=lambda kv: kv[1], reverse=True)][:limit]
        by_id = {c.id: c for c in self.session.exec(select(Collection).where(col(Collection.id).in_(seq(ranked_ids)))).all()}
        candidates = [by_id[cid] for cid in ranked_ids if cid in by_id]

        if len(candidates) < limit:
            candidates += self._filler_collections([c.id for c in candidates], limit - len(candidates), all_time)

        floors = self._floors_by_collection([c.id for c in candidates], currency)

        rows = []
        for c in candidates:
            vol_curr = current.get(c.id, Decimal(0))
            vol_prev = previous.get(c.id, Decimal(0))
            rows.append(
                TopCollection(
                    id=c.id,
                    name=c.name,
                    contract=c.contract,
                    logo_url=ipfs_to_http(c.logo_url),
                    cover_url=ipfs_to_http(c.cover_url),
                    floor=to_float(floors.get(c.id)),
                    volume_window=float(vol_curr),
                    volume_prev_window=float(vol_prev),
                    change_pct=pct_change(float(vol_curr), float(vol_prev)),
                    volume_all_time=float(all_time.get(c.id, Decimal(0))),
                    currency=currency.to_dict(),
                )
            )

        rows.sort(key=lambda r: r.volume_window, reverse=True)
        logger.info("Top collections computed", window=window, currency=currency.id, count=len(rows))
        return rows

    # ============== COLLECTION LIST ==============

    def _collection_sort_key(self, sort: CollectionSort, floor, volume) -> ColumnElement[Any]:
        """Ascending key for `sort`; ties break on collection id."""
        if sort == CollectionSort.NEWEST:
            return -cast(func.extract("epoch", col(Collection.created_at)), BigInteger)
        zero = literal(0, BASE_UNITS)
        if sort == CollectionSort.FLOOR:
            return func.coalesce(zero - floor, literal(1, BASE_UNITS))
        return zero - func.coalesce(volume, zero)

    @staticmethod
    def _bind_collection_key(sort: CollectionSort, key: Decimal) -> ColumnElement[Any]:
        if sort == CollectionSort.NEWEST:
            return literal(int(key), BigInteger)
        return literal(key, BASE_UNITS)

    @db_operation("collections_page")
    def collections_page(
        self,
        currency: CurrencyMeta,
        sort: CollectionSort = CollectionSort.VOLUME,
        cursor: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> CollectionsPage:
        """
        One page of every collection with its floor and all-time volume in
        `currency`, ordered by `sort` and paginated by (key, id) cursor.

        Floors and volumes are computed per request, so a token currency
        shows only what was listed or sold in that token.
        """
        limit = cursor_codec.clamp_limit(
            limit,
            settings.COLLECTIONS_DEFAULT_LIMIT,
            settings.COLLECTIONS_MAX_LIMIT,
            minimum=settings.COLLECTIONS_MIN_LIMIT,
        )

        floors = (
            select(col(Item.collection_id).label("collection_id"), func.min(Listing.price).label("floor"))
            .select_from(Listing)
            .join(Item, col(Item.id) == col(Listing.item_id))
            .where(
                col(Item.status) == ItemStatus.SUCCESS,
                active_listing_clause(self.now),
                currency_clause(col(Listing.currency_id), currency),
            )
            .group_by(Item.collection_id)
            .subquery("floors")
        )
        sales = self._capped_sales(currency)
        volumes = (
            select(sales.c.collection_id, func.sum(sales.c.price).label("volume"))
            .group_by(sales.c.collection_id)
            .subquery("volumes")
        )
        counts = (
            select(col(Item.collection_id).label("collection_id"), func.count(col(Item.id)).label("items_count"))
            .where(col(Item.status) == ItemStatus.SUCCESS)
            .group_by(Item.collection_id)
            .subquery("counts")
        )

        sort_key = self._collection_sort_key(sort, floors.c.floor, volumes.c.volume)
        query = (
            select(Collection, floors.c.floor, volumes.c.volume, counts.c.items_count, sort_key.label("sort_key"))
            .outerjoin(floors, floors.c.collection_id == col(Collection.id))
            .outerjoin(volumes, volumes.c.collection_id == col(Collection.id))
            .outerjoin(counts, counts.c.collection_id == col(Collection.id))
        )

        decoded = cursor_codec.decode(cursor)
        if decoded is not None and decoded.id.isdigit():
            key = self._bind_collection_key(sort, decoded.key)
            after_id = int(decoded.id)
            query = query.where(
                or_(sort_key > key, and_(sort_key == key, col(Collection.id) > after_id))
            )
        query = query.order_by(sort_key, col(Collection.id)).limit(limit + 1)

        rows = self.session.execute(query).all()
        has_more = len(rows) > limit
        items = [
            CollectionListItem(
                id=c.id,
                name=c.name,
                contract=c.contract,
                logo_url=ipfs_to_http(c.logo_url),
                cover_url=ipfs_to_http(c.cover_url),
                items_count=int(items_count or 0),
                owners_count=c.owners_count or 0,
                floor=to_float(to_display(floor, currency.decimals)) if floor is not None else None,
                volume_all_time=float(to_display(volume or 0, currency.decimals)),
                sort_key=key_value,
            )
            for c, floor, volume, items_count, key_value in rows[:limit]
        ]

        next_cursor = None
        if has_more and items:
            next_cursor = cursor_codec.encode(items[-1].sort_key, str(items[-1].id))

        logger.debug("Collections page fetched", sort=sort.value, currency=currency.id, count=len(items), has_more=has_more)
        return CollectionsPage(items=items, next_cursor=next_cursor, sort=sort.value, currency=currency.to_dict())

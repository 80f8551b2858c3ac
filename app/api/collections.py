"""
Collection endpoints: the collection list, item pages with header, item
pages alone, facets and the top-collections ranking.
"""

import time
from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from sqlmodel import Session

from app.api.deps import (
    get_collection_or_404,
    get_currency_snapshot,
    get_item_filters,
    get_requested_currency,
)
from app.core.config import settings
from app.core.logging_config import get_logger
from app.core.response_cache import get_cached, set_cached
from app.core.typing import utc_now
from app.db import get_session
from app.schemas import (
    CollectionHeaderOut,
    CollectionListItemOut,
    CollectionPageOut,
    CollectionsPageOut,
    CurrencyOut,
    FacetsOut,
    ItemOut,
    ItemsPageOut,
    TopCollectionOut,
    TopCollectionsOut,
)
from app.services.collection_stats import (
    DEFAULT_WINDOW,
    CollectionStatsService,
    parse_collection_sort,
    parse_window,
)
from app.services.currency import CurrencyMeta, CurrencySnapshot
from app.services.cursor import clamp_limit
from app.services.facets import FacetBuilder
from app.services.filters import ItemFilters
from app.services.item_query import ItemPage, ItemQueryExecutor

router = APIRouter()
logger = get_logger(__name__)


def log_query_time(operation: str, start_time: float, threshold: float = 0.5):
    """Log if query took longer than threshold seconds."""
    elapsed = time.perf_counter() - start_time
    if elapsed > threshold:
        logger.warning("SLOW QUERY", operation=operation, elapsed_s=round(elapsed, 2))


def _items_out(page: ItemPage) -> list[ItemOut]:
    return [ItemOut.model_validate(asdict(item)) for item in page.items]


@router.get("", response_model=CollectionsPageOut)
def list_collections(
    sort: Optional[str] = Query(None, description="volume | floor | newest"),
    currency: Optional[str] = Query(None, description="Currency id, or native"),
    cursor: Optional[str] = Query(None),
    limit: Optional[int] = Query(None),
    session: Session = Depends(get_session),
    snapshot: CurrencySnapshot = Depends(get_currency_snapshot),
):
    """
    Every collection with its floor and all-time volume in the requested
    currency, cursor-paginated. Cached for a few seconds per page.
    """
    meta = snapshot.resolve(currency)
    sort_key = parse_collection_sort(sort)

    cache_key = ("collections", sort_key.value, meta.id, cursor or "", limit)
    cached = get_cached(cache_key)
    if cached is not None:
        return JSONResponse(content=cached, headers={"X-Cache": "HIT"})

    start = time.perf_counter()
    page = CollectionStatsService(session).collections_page(meta, sort=sort_key, cursor=cursor, limit=limit)
    log_query_time("collections_page", start)

    data = CollectionsPageOut(
        items=[CollectionListItemOut.model_validate(asdict(row)) for row in page.items],
        next_cursor=page.next_cursor,
        sort=page.sort,
        currency=CurrencyOut.model_validate(page.currency),
    ).model_dump(mode="json", by_alias=True)

    set_cached(cache_key, data)
    return JSONResponse(content=data, headers={"X-Cache": "MISS"})


# Registered before /{contract} so "top" is never taken for a contract
@router.get("/top", response_model=TopCollectionsOut)
def top_collections(
    window: str = Query(DEFAULT_WINDOW, description="24h | 7d | 30d"),
    currency: Optional[str] = Query(None, description="Currency id, or native"),
    limit: Optional[int] = Query(None),
    session: Session = Depends(get_session),
    snapshot: CurrencySnapshot = Depends(get_currency_snapshot),
):
    """
    Collections ranked by sales volume in the window, in the requested currency.
    Cached for a few seconds per (window, currency, limit).
    """
    meta = snapshot.resolve(currency)
    window = parse_window(window)
    limit = clamp_limit(limit, settings.TOP_DEFAULT_LIMIT, settings.TOP_MAX_LIMIT)

    cache_key = ("top", window, meta.id, limit)
    cached = get_cached(cache_key)
    if cached is not None:
        return JSONResponse(content=cached, headers={"X-Cache": "HIT"})

    start = time.perf_counter()
    rows = CollectionStatsService(session).top_collections(meta, window=window, limit=limit)
    log_query_time("top_collections", start)

    data = TopCollectionsOut(
        collections=[TopCollectionOut.model_validate(asdict(r)) for r in rows],
        window=window,
        currency=CurrencyOut.model_validate(meta.to_dict()),
    ).model_dump(mode="json", by_alias=True)

    set_cached(cache_key, data)
    return JSONResponse(content=data, headers={"X-Cache": "MISS"})


@router.get("/{contract}", response_model=CollectionPageOut)
def collection_page(
    contract: str,
    cursor: Optional[str] = Query(None),
    limit: Optional[int] = Query(None),
    filters: ItemFilters = Depends(get_item_filters),
    currency: CurrencyMeta = Depends(get_requested_currency),
    session: Session = Depends(get_session),
):
    """
    Collection header plus the first (or next) page of its items.

    A header figure that fails (floor, volume, rarity population) degrades
    to null/0; a failing item query fails the request.
    """
    collection = get_collection_or_404(session, contract)
    now = utc_now()

    start = time.perf_counter()
    header = CollectionStatsService(session, now=now).collection_header(collection, currency)
    page = ItemQueryExecutor(session, currency, now=now).fetch_page(collection, filters, cursor=cursor, limit=limit)
    log_query_time(f"collection_page[{page.path}]", start)

    return CollectionPageOut(
        header=CollectionHeaderOut.model_validate(asdict(header)),
        items=_items_out(page),
        next_cursor=page.next_cursor,
        sort=page.sort_mode,
    )


@router.get("/{contract}/items", response_model=ItemsPageOut)
def collection_items(
    contract: str,
    cursor: Optional[str] = Query(None),
    limit: Optional[int] = Query(None),
    filters: ItemFilters = Depends(get_item_filters),
    currency: CurrencyMeta = Depends(get_requested_currency),
    session: Session = Depends(get_session),
):
    """Item pages without the header, for infinite scroll."""
    collection = get_collection_or_404(session, contract)

    start = time.perf_counter()
    page = ItemQueryExecutor(session, currency).fetch_page(collection, filters, cursor=cursor, limit=limit)
    log_query_time(f"collection_items[{page.path}]", start)

    return ItemsPageOut(items=_items_out(page), next_cursor=page.next_cursor, sort=page.sort_mode)


@router.get("/{contract}/facets", response_model=FacetsOut)
def collection_facets(contract: str, session: Session = Depends(get_session)):
    """Rarity population and trait histogram. Degrades to empty on failure."""
    collection = get_collection_or_404(session, contract)

    cache_key = ("facets", collection.contract.lower())
    cached = get_cached(cache_key)
    if cached is not None:
        return JSONResponse(content=cached, headers={"X-Cache": "HIT"})

    facets = FacetBuilder(session).build(collection)
    data = FacetsOut.model_validate(facets.to_dict()).model_dump(mode="json", by_alias=True)

    set_cached(cache_key, data)
    return JSONResponse(content=data, headers={"X-Cache": "MISS"})

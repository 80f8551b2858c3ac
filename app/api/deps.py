import re
from typing import Optional

from fastapi import Depends, Query, Request
from sqlalchemy import func
from sqlmodel import Session, select

from app.core.db_utils import translate_db_errors
from app.core.exceptions import NotFound
from app.core.response_cache import get_cached, set_cached
from app.db import get_session
from app.models.collection import Collection
from app.services.currency import CurrencyMeta, CurrencySnapshot, load_currency_snapshot
from app.services.filters import ItemFilters, PriceSort, RaritySort, RecencySort, parse_traits

# Repeated `trait[Background]=Blue` query parameters
TRAIT_PARAM = re.compile(r"^trait\[(.+)\]$")

PRICE_SORTS = {s.value for s in PriceSort}
RECENCY_SORTS = {s.value for s in RecencySort}

_SNAPSHOT_CACHE_KEY = ("currency_snapshot",)


def get_currency_snapshot(session: Session = Depends(get_session)) -> CurrencySnapshot:
    """Active currencies for this request, reused for a few seconds across requests."""
    snapshot = get_cached(_SNAPSHOT_CACHE_KEY)
    if snapshot is None:
        with translate_db_errors("load_currencies"):
            snapshot = load_currency_snapshot(session)
        set_cached(_SNAPSHOT_CACHE_KEY, snapshot)
    return snapshot


def get_requested_currency(
    currency_id: Optional[str] = Query(None, alias="currencyId"),
    snapshot: CurrencySnapshot = Depends(get_currency_snapshot),
) -> CurrencyMeta:
    """Resolve `?currencyId=`; raises UnknownCurrency before any item query runs."""
    return snapshot.resolve(currency_id)


def get_collection_or_404(session: Session, contract: str) -> Collection:
    """Look up a collection by contract, case-insensitively."""
    with translate_db_errors("collection_lookup", contract=contract):
        collection = session.exec(
            select(Collection).where(func.lower(Collection.contract) == contract.strip().lower())
        ).first()
    if collection is None:
        raise NotFound(f"Collection not found: {contract}", contract=contract)
    return collection


def get_item_filters(
    request: Request,
    search: str = Query("", max_length=200),
    listed: bool = Query(False),
    auctioned: bool = Query(False),
    sort: Optional[str] = Query(None, pattern="^(lowToHigh|highToLow|newest|oldest)$"),
    rarity_sort: Optional[str] = Query(None, alias="raritySort", pattern="^(asc|desc)$"),
    rank_min: Optional[int] = Query(None, alias="rankMin", ge=1),
    rank_max: Optional[int] = Query(None, alias="rankMax", ge=1),
    include_unranked: bool = Query(True, alias="includeUnranked"),
    traits: Optional[str] = Query(None, description="Type:value|Type2:value2"),
) -> ItemFilters:
    """
    Build ItemFilters from query parameters.

    Traits may be given as repeated `trait[Type]=value` parameters, as one
    `traits=Type:value|Type2:value2` string, or both (merged).

    `sort` carries either a price direction or the newest/oldest toggle.
    """
    pairs = []
    for key, value in request.query_params.multi_items():
        match = TRAIT_PARAM.match(key)
        if match:
            pairs.append((match.group(1), value))

    return ItemFilters(
        search=search.strip(),
        listed_only=listed,
        auctioned_only=auctioned,
        traits=parse_traits(pairs, traits),
        rank_min=rank_min,
        rank_max=rank_max,
        include_unranked=include_unranked,
        price_sort=PriceSort(sort) if sort in PRICE_SORTS else None,
        rarity_sort=RaritySort(rarity_sort) if rarity_sort else None,
        recency_sort=RecencySort(sort) if sort in RECENCY_SORTS else None,
    )

from typing import List, Optional
from datetime import datetime

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Response models serialize as camelCase; Python code uses snake_case."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class CurrencyOut(CamelModel):
    id: str
    symbol: str
    decimals: int
    kind: str


class CurrencyListOut(CamelModel):
    items: List[CurrencyOut]


class ItemAttributeOut(BaseModel):
    # Metadata-standard key names, not camelCased
    trait_type: str
    value: str


class ItemOut(CamelModel):
    id: str
    token_id: str
    name: Optional[str] = None
    image: Optional[str] = None
    animation_url: Optional[str] = None
    media_type: str
    created_at: datetime
    attributes: List[ItemAttributeOut] = []

    # === MARKET ===
    is_listed: bool = False
    listing_price: Optional[float] = None  # Display units of listing_currency_symbol
    listing_currency_symbol: Optional[str] = None
    is_auctioned: bool = False

    # === RARITY (only when requested) ===
    rarity_score: Optional[float] = None
    rarity_rank: Optional[int] = None
    population: Optional[int] = None


class CollectionHeaderOut(CamelModel):
    id: int
    contract: str
    name: Optional[str] = None
    description: Optional[str] = None
    logo_url: Optional[str] = None
    cover_url: Optional[str] = None

    website: Optional[str] = None
    x: Optional[str] = None
    instagram: Optional[str] = None
    discord: Optional[str] = None
    telegram: Optional[str] = None

    owner_address: Optional[str] = None
    supply: Optional[int] = None
    items_count: int = 0
    owners_count: int = 0
    listing_active_count: int = 0
    auction_active_count: int = 0

    floor_price: Optional[float] = None  # Resolved currency, display units
    volume: float = 0.0  # All-time, resolved currency
    currency: CurrencyOut

    rarity_enabled: bool = False
    rarity_population: int = 0


class ItemsPageOut(CamelModel):
    items: List[ItemOut]
    next_cursor: Optional[str] = None
    sort: str


class CollectionPageOut(ItemsPageOut):
    header: CollectionHeaderOut


class TraitValueOut(CamelModel):
    value: str
    count: int


class TraitFacetOut(CamelModel):
    type: str
    values: List[TraitValueOut]


class FacetsOut(CamelModel):
    population: int
    traits: List[TraitFacetOut]


class TopCollectionOut(CamelModel):
    id: int
    name: Optional[str] = None
    contract: str
    logo_url: Optional[str] = None
    cover_url: Optional[str] = None
    floor: Optional[float] = None
    volume_window: float
    volume_prev_window: float
    change_pct: float
    volume_all_time: float
    currency: CurrencyOut


class TopCollectionsOut(CamelModel):
    collections: List[TopCollectionOut]
    window: str
    currency: CurrencyOut


class CollectionListItemOut(CamelModel):
    id: int
    name: Optional[str] = None
    contract: str
    logo_url: Optional[str] = None
    cover_url: Optional[str] = None
    items_count: int = 0
    owners_count: int = 0
    floor: Optional[float] = None  # Active listings, resolved currency
    volume_all_time: float = 0.0


class CollectionsPageOut(CamelModel):
    items: List[CollectionListItemOut]
    next_cursor: Optional[str] = None
    sort: str
    currency: CurrencyOut

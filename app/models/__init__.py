from .collection import Collection
from .currency import Currency, CurrencyKind
from .item import Item, ItemAttribute, ItemStatus, generate_item_id
from .marketplace import Auction, AuctionStatus, Listing, ListingStatus, Sale
from .rarity import RarityRecord

__all__ = [
    "Collection",
    "Currency",
    "CurrencyKind",
    "Item",
    "ItemAttribute",
    "ItemStatus",
    "generate_item_id",
    "Auction",
    "AuctionStatus",
    "Listing",
    "ListingStatus",
    "Sale",
    "RarityRecord",
]

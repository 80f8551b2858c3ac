"""
Small typing shims for query code.

SQLModel attributes are annotated with plain Python types, so a type checker
rejects `Item.id.in_(...)` or `Listing.price.desc()`. `col` and `seq` only
change what the checker sees; at runtime they return their argument.
"""

from typing import TYPE_CHECKING, Any, TypeVar, Sequence
from datetime import datetime, timezone

if TYPE_CHECKING:
    from sqlalchemy.orm.attributes import InstrumentedAttribute

T = TypeVar("T")


def col(attr: T) -> "InstrumentedAttribute[T]":
    """Expose a model field as a column: `col(Listing.price).desc()`."""
    return attr  # type: ignore[return-value]


def utc_now() -> datetime:
    """Timezone-aware now; also the default factory for timestamp fields."""
    return datetime.now(timezone.utc)


def seq(items: Any) -> Sequence[Any]:
    """Argument for `.in_()`: `col(Item.id).in_(seq(item_ids))`."""
    return items


__all__ = [
    "col",
    "utc_now",
    "seq",
]

"""
Currency Resolver

Maps a requested currency identifier to its metadata (kind, decimals,
symbol). The set of active currencies is loaded once per request into an
immutable CurrencySnapshot that is passed to whoever needs it; nothing here
holds process-wide currency state.

    snapshot = load_currency_snapshot(session)
    meta = snapshot.resolve(request.query_params.get("currencyId"))
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlmodel import Session, select

from app.core.config import settings
from app.core.exceptions import UnknownCurrency
from app.core.typing import col
from app.models.currency import Currency, CurrencyKind

logger = logging.getLogger(__name__)

NATIVE_ID = "native"


@dataclass(frozen=True)
class CurrencyMeta:
    """Resolved currency. `id` is "native" for the chain asset."""

    id: str
    symbol: str
    decimals: int
    kind: CurrencyKind
    token_address: Optional[str] = None

    @property
    def is_native(self) -> bool:
        return self.kind == CurrencyKind.NATIVE

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "symbol": self.symbol,
            "decimals": self.decimals,
            "kind": self.kind.value,
        }


def native_currency() -> CurrencyMeta:
    return CurrencyMeta(
        id=NATIVE_ID,
        symbol=settings.NATIVE_CURRENCY_SYMBOL,
        decimals=settings.NATIVE_CURRENCY_DECIMALS,
        kind=CurrencyKind.NATIVE,
    )


def _meta_from_row(row: Currency) -> CurrencyMeta:
    return CurrencyMeta(
        id=row.id,
        symbol=row.symbol,
        decimals=row.decimals if row.decimals is not None else settings.NATIVE_CURRENCY_DECIMALS,
        kind=row.kind,
        token_address=row.token_address,
    )


@dataclass(frozen=True)
class CurrencySnapshot:
    """Read-only view of the currencies selectable for one request."""

    currencies: tuple[CurrencyMeta, ...] = ()

    def resolve(self, currency_id: Optional[str]) -> CurrencyMeta:
        """
        Resolve a currency identifier.

        Absent, blank or "native" (any case) resolves to the native asset;
        anything else must match an active registered currency exactly.

        Raises:
            UnknownCurrency: if a non-native id matches no active currency
        """
        value = (currency_id or "").strip()
        if not value or value.lower() == NATIVE_ID:
            return native_currency()

        for meta in self.currencies:
            if meta.id == value:
                return meta

        logger.info(f"[Currency] Unknown or inactive currency requested: {value!r}")
        raise UnknownCurrency(value)

    def list_active(self) -> list[CurrencyMeta]:
        """Native asset first, then active ERC-20 tokens by symbol."""
        tokens = sorted(
            (c for c in self.currencies if c.kind == CurrencyKind.ERC20),
            key=lambda c: c.symbol,
        )
        return [native_currency(), *tokens]


def load_currency_snapshot(session: Session) -> CurrencySnapshot:
    """Load the active currencies into an immutable snapshot."""
    rows = session.exec(select(Currency).where(col(Currency.active).is_(True))).all()
    return CurrencySnapshot(currencies=tuple(_meta_from_row(r) for r in rows))

from fastapi import APIRouter, Depends

from app.api.deps import get_currency_snapshot
from app.schemas import CurrencyListOut, CurrencyOut
from app.services.currency import CurrencySnapshot

router = APIRouter()


@router.get("/active", response_model=CurrencyListOut)
def active_currencies(snapshot: CurrencySnapshot = Depends(get_currency_snapshot)):
    """Selectable currencies: native first, then active tokens by symbol."""
    return CurrencyListOut(items=[CurrencyOut.model_validate(c.to_dict()) for c in snapshot.list_active()])

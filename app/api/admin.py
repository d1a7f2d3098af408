from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.core.config import settings
from app.db.session import get_db
from app.schemas.crypto import ExchangeRateIn, ExchangeRateListOut, ExchangeRateOut
from app.services.auth import require_admin
from app.services.exchange_rate import ExchangeRateStore

router = APIRouter(prefix="/admin/exchange-rates")

# Define a reusable type
db_dependency = Annotated[Session, Depends(get_db)]


def get_rate_store() -> ExchangeRateStore:
    return ExchangeRateStore()

store_dependency = Annotated[ExchangeRateStore, Depends(get_rate_store)]


@router.post("", response_model=ExchangeRateOut, status_code=201)
def set_exchange_rate(
    body: ExchangeRateIn,
    store: store_dependency,
    admin_id: UUID = Depends(require_admin),
):
    return store.set_active_rate(
        body.from_currency,
        body.to_currency,
        body.rate,
        body.platform_fee_percent,
        set_by=str(admin_id),
        source=body.source,
        notes=body.notes,
        expires_at=body.expires_at,
    )


@router.get("", response_model=ExchangeRateListOut)
def list_exchange_rates(
    db: db_dependency,
    store: store_dependency,
    admin_id: UUID = Depends(require_admin),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=settings.HISTORY_MAX_LIMIT),
    include_inactive: bool = False,
):
    result = store.list_rates(db, page=page, limit=limit, include_inactive=include_inactive)
    return {
        "rates": result.rates,
        "pagination": {
            "page": result.page,
            "limit": result.limit,
            "total": result.total,
            "total_pages": result.total_pages,
        },
    }


@router.get("/history", response_model=list[ExchangeRateOut])
def get_rate_history(
    db: db_dependency,
    store: store_dependency,
    admin_id: UUID = Depends(require_admin),
    from_currency: str = settings.BASE_CURRENCY,
    to_currency: str = settings.FIAT_CURRENCY,
    limit: int = Query(30, ge=1, le=settings.HISTORY_MAX_LIMIT),
):
    return store.get_rate_history(db, from_currency.upper(), to_currency.upper(), limit=limit)


@router.post("/{rate_id}/deactivate", response_model=ExchangeRateOut)
def deactivate_exchange_rate(
    rate_id: UUID,
    store: store_dependency,
    admin_id: UUID = Depends(require_admin),
):
    return store.deactivate_rate(rate_id)

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.core.config import settings
from app.db.session import get_db
from app.schemas.crypto import (
    ConversionHistoryOut,
    ConversionResultOut,
    ConvertRequest,
    ExchangeRateOut,
    QuoteOut,
    QuoteRequest,
)
from app.services.auth import require_user
from app.services.conversion import ConversionService

router = APIRouter(prefix="/crypto")

# Define a reusable type
db_dependency = Annotated[Session, Depends(get_db)]


def get_conversion_service(db: db_dependency) -> ConversionService:
    return ConversionService(db)

service_dependency = Annotated[ConversionService, Depends(get_conversion_service)]


@router.post("/convert/quote", response_model=QuoteOut)
def get_conversion_quote(
    body: QuoteRequest,
    service: service_dependency,
    user_id: UUID = Depends(require_user),
):
    return service.get_quote(user_id, body.token_symbol, body.amount)


@router.post("/convert", response_model=ConversionResultOut)
def request_conversion(
    body: ConvertRequest,
    service: service_dependency,
    user_id: UUID = Depends(require_user),
):
    result = service.request_conversion(user_id, body.token_symbol, body.amount, body.pin)
    return {"conversion": result.conversion, "message": result.message}


@router.get("/conversions", response_model=ConversionHistoryOut)
def get_conversions(
    service: service_dependency,
    user_id: UUID = Depends(require_user),
    page: int = Query(1, ge=1),
    limit: int = Query(settings.HISTORY_DEFAULT_LIMIT, ge=1, le=settings.HISTORY_MAX_LIMIT),
):
    result = service.get_conversion_history(user_id, page=page, limit=limit)
    return {
        "conversions": result.conversions,
        "pagination": {
            "page": result.page,
            "limit": result.limit,
            "total": result.total,
            "total_pages": result.total_pages,
        },
    }


@router.get("/exchange-rate", response_model=ExchangeRateOut)
def get_exchange_rate(service: service_dependency):
    return service.get_exchange_rate()

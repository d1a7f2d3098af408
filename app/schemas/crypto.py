from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.models.crypto_conversion import ConversionStatus


class QuoteRequest(BaseModel):
    token_symbol: str = Field(min_length=2, max_length=16)
    # decimal string; numeric checks happen in the quote calculator
    amount: str = Field(max_length=64)

    @field_validator("token_symbol")
    @classmethod
    def normalize_token(cls, token_symbol: str):
        return token_symbol.strip().upper()


class ConvertRequest(QuoteRequest):
    pin: str = Field(min_length=4, max_length=6, pattern=r"^[0-9]+$")


class QuoteOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    token_symbol: str
    crypto_amount: Decimal
    usd_value: Decimal
    exchange_rate: Decimal
    fee_percent: Decimal
    fee_amount: Decimal
    naira_amount: Decimal
    net_naira: Decimal
    expires_at: datetime


class ConversionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    reference: str
    token_symbol: str
    crypto_amount: Decimal
    usd_value: Decimal
    exchange_rate: Decimal
    fee_percent: Decimal
    fee_amount: Decimal
    naira_amount: Decimal
    net_naira: Decimal
    status: ConversionStatus
    naira_transaction_id: UUID | None = None
    requested_at: datetime
    completed_at: datetime | None = None


class ConversionResultOut(BaseModel):
    conversion: ConversionOut
    message: str


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class ConversionHistoryOut(BaseModel):
    conversions: list[ConversionOut]
    pagination: Pagination


class ExchangeRateIn(BaseModel):
    from_currency: str = Field(default="USD", min_length=3, max_length=3)
    to_currency: str = Field(default="NGN", min_length=3, max_length=3)
    rate: Decimal = Field(gt=0)
    platform_fee_percent: Decimal = Field(ge=0, lt=100)
    source: str = Field(default="manual", max_length=32)
    notes: str | None = None
    expires_at: datetime | None = None

    @field_validator("from_currency", "to_currency")
    @classmethod
    def upper_currency(cls, currency: str):
        return currency.upper()


class ExchangeRateOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    from_currency: str
    to_currency: str
    rate: Decimal
    platform_fee_percent: Decimal
    is_active: bool
    set_by: str
    set_at: datetime
    expires_at: datetime | None = None
    source: str
    notes: str | None = None


class ExchangeRateListOut(BaseModel):
    rates: list[ExchangeRateOut]
    pagination: Pagination

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from uuid import UUID

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import InsufficientBalance, InvalidAmount, UnsupportedToken
from app.models.exchange_rate import ExchangeRate
from app.services.collaborators import BalanceGuard
from app.services.exchange_rate import ExchangeRateStore

KOBO = Decimal("0.01")
# smallest token unit stored in crypto_amount and CryptoBalance.balance
CRYPTO_DECIMALS = 8


@dataclass(frozen=True)
class Quote:
    token_symbol: str
    crypto_amount: Decimal
    usd_value: Decimal
    exchange_rate: Decimal
    fee_percent: Decimal
    fee_amount: Decimal
    naira_amount: Decimal
    net_naira: Decimal
    expires_at: datetime


def parse_amount(amount) -> Decimal:
    try:
        value = Decimal(str(amount).strip())
    except (InvalidOperation, ValueError):
        raise InvalidAmount()
    if not value.is_finite() or value <= 0:
        raise InvalidAmount()
    if value.normalize().as_tuple().exponent < -CRYPTO_DECIMALS:
        raise InvalidAmount()
    return value


def compute_quote(
    token_symbol: str,
    amount: Decimal,
    rate: Decimal,
    fee_percent: Decimal,
    now: datetime | None = None,
    usd_peg: Decimal = settings.TOKEN_USD_PEG,
) -> Quote:
    """Price ``amount`` of a stable token in Naira.

    Naira figures are rounded half-up to kobo; the net is gross minus fee so
    the three always add up exactly.
    """
    now = now or datetime.now(timezone.utc)
    usd_value = amount * usd_peg
    gross = (usd_value * rate).quantize(KOBO, rounding=ROUND_HALF_UP)
    fee = (gross * fee_percent / 100).quantize(KOBO, rounding=ROUND_HALF_UP)
    return Quote(
        token_symbol=token_symbol,
        crypto_amount=amount,
        usd_value=usd_value,
        exchange_rate=rate,
        fee_percent=fee_percent,
        fee_amount=fee,
        naira_amount=gross,
        net_naira=gross - fee,
        expires_at=now + timedelta(seconds=settings.QUOTE_TTL_SECONDS),
    )


class ConversionQuoteCalculator:
    """Validates a conversion request and prices it against the active rate.

    Checks run cheapest first: amount, token, advisory balance, then rate.
    The balance check is advisory only; settlement re-checks under lock.
    """

    def __init__(
        self,
        rate_store: ExchangeRateStore,
        balance_guard: BalanceGuard,
        supported_tokens: list[str] | None = None,
    ):
        self.rate_store = rate_store
        self.balance_guard = balance_guard
        self.supported_tokens = supported_tokens or settings.SUPPORTED_TOKENS

    def quote(self, session: Session, user_id: UUID, token_symbol: str, amount) -> Quote:
        value = parse_amount(amount)

        token_symbol = (token_symbol or "").upper()
        if token_symbol not in self.supported_tokens:
            raise UnsupportedToken(
                f"Only {' and '.join(self.supported_tokens)} can be converted to Naira"
            )

        if not self.balance_guard.has_sufficient_balance(user_id, token_symbol, value):
            raise InsufficientBalance(f"Insufficient {token_symbol} balance")

        rate: ExchangeRate = self.rate_store.get_active_rate(session)
        return compute_quote(
            token_symbol,
            value,
            Decimal(rate.rate),
            Decimal(rate.platform_fee_percent),
        )

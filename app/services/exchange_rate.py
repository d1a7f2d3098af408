import logging
import math
import time
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Callable
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from app.core.config import settings
from app.core.errors import ExchangeRateNotFound, InvalidAmount, NoActiveRate
from app.db.session import SerializableSessionLocal
from app.db.transactions import is_serialization_failure, run_serializable
from app.models.exchange_rate import ExchangeRate

logger = logging.getLogger(__name__)


def _rate_conflict(exc: BaseException) -> bool:
    # a concurrent admin inserted its active row first (partial unique index)
    return is_serialization_failure(exc) or isinstance(exc, IntegrityError)


@dataclass
class RatePage:
    rates: list[ExchangeRate]
    page: int
    limit: int
    total: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


class ExchangeRateStore:
    """Admin controlled USD -> NGN rates.

    Exactly one row is active per pair. Setting a new rate deactivates the
    previous one in the same serializable transaction; superseded rows are
    kept as history.
    """

    def __init__(
        self,
        session_factory: sessionmaker = SerializableSessionLocal,
        *,
        max_attempts: int = settings.SETTLEMENT_MAX_ATTEMPTS,
        backoff_base: float = settings.SETTLEMENT_BACKOFF_BASE_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._session_factory = session_factory
        self._max_attempts = max_attempts
        self._backoff_base = backoff_base
        self._sleep = sleep

    def set_active_rate(
        self,
        from_currency: str,
        to_currency: str,
        rate: Decimal,
        platform_fee_percent: Decimal,
        set_by: str,
        source: str = "manual",
        notes: str | None = None,
        expires_at: datetime | None = None,
    ) -> ExchangeRate:
        rate = Decimal(rate)
        platform_fee_percent = Decimal(platform_fee_percent)
        if not rate.is_finite() or rate <= 0:
            raise InvalidAmount("Exchange rate must be greater than zero")
        if not platform_fee_percent.is_finite() or not 0 <= platform_fee_percent < 100:
            raise InvalidAmount("Platform fee must be between 0 and 100 percent")

        def _swap(session: Session) -> ExchangeRate:
            # lock the current active row so concurrent setters queue behind us
            session.execute(
                select(ExchangeRate.id)
                .where(
                    ExchangeRate.from_currency == from_currency,
                    ExchangeRate.to_currency == to_currency,
                    ExchangeRate.is_active.is_(True),
                )
                .with_for_update()
            ).all()
            session.execute(
                update(ExchangeRate)
                .where(
                    ExchangeRate.from_currency == from_currency,
                    ExchangeRate.to_currency == to_currency,
                    ExchangeRate.is_active.is_(True),
                )
                .values(is_active=False)
            )
            new_rate = ExchangeRate(
                from_currency=from_currency,
                to_currency=to_currency,
                rate=rate,
                platform_fee_percent=platform_fee_percent,
                is_active=True,
                set_by=set_by,
                source=source or "manual",
                notes=notes,
                expires_at=expires_at,
            )
            session.add(new_rate)
            session.flush()
            return new_rate

        exchange_rate = run_serializable(
            self._session_factory,
            _swap,
            max_attempts=self._max_attempts,
            backoff_base=self._backoff_base,
            is_retryable=_rate_conflict,
            sleep=self._sleep,
            label=f"set rate {from_currency}/{to_currency}",
        )
        logger.info(
            "Exchange rate set: %s/%s = %s (Fee: %s%%) by %s",
            from_currency, to_currency, rate, platform_fee_percent, set_by,
        )
        return exchange_rate

    def get_active_rate(
        self,
        session: Session,
        from_currency: str = settings.BASE_CURRENCY,
        to_currency: str = settings.FIAT_CURRENCY,
    ) -> ExchangeRate:
        exchange_rate = session.execute(
            select(ExchangeRate)
            .where(
                ExchangeRate.from_currency == from_currency,
                ExchangeRate.to_currency == to_currency,
                ExchangeRate.is_active.is_(True),
            )
            .order_by(ExchangeRate.set_at.desc())
            .limit(1)
        ).scalars().first()
        if exchange_rate is None:
            raise NoActiveRate()
        return exchange_rate

    def get_rate_history(
        self,
        session: Session,
        from_currency: str = settings.BASE_CURRENCY,
        to_currency: str = settings.FIAT_CURRENCY,
        limit: int = 30,
    ) -> list[ExchangeRate]:
        return list(
            session.execute(
                select(ExchangeRate)
                .where(
                    ExchangeRate.from_currency == from_currency,
                    ExchangeRate.to_currency == to_currency,
                )
                .order_by(ExchangeRate.set_at.desc())
                .limit(limit)
            ).scalars()
        )

    def list_rates(
        self, session: Session, page: int = 1, limit: int = 20, include_inactive: bool = False
    ) -> RatePage:
        page = max(page, 1)
        limit = max(1, min(limit, settings.HISTORY_MAX_LIMIT))
        stmt = select(ExchangeRate)
        count_stmt = select(func.count()).select_from(ExchangeRate)
        if not include_inactive:
            stmt = stmt.where(ExchangeRate.is_active.is_(True))
            count_stmt = count_stmt.where(ExchangeRate.is_active.is_(True))

        rates = session.execute(
            stmt.order_by(ExchangeRate.set_at.desc()).offset((page - 1) * limit).limit(limit)
        ).scalars().all()
        total = session.execute(count_stmt).scalar_one()
        return RatePage(rates=list(rates), page=page, limit=limit, total=total)

    def deactivate_rate(self, rate_id: UUID) -> ExchangeRate:
        """Deactivate a rate; afterwards the pair has no active rate until a new one is set."""

        def _deactivate(session: Session) -> ExchangeRate:
            exchange_rate = session.get(ExchangeRate, rate_id, with_for_update=True)
            if exchange_rate is None:
                raise ExchangeRateNotFound()
            exchange_rate.is_active = False
            return exchange_rate

        exchange_rate = run_serializable(
            self._session_factory,
            _deactivate,
            max_attempts=self._max_attempts,
            backoff_base=self._backoff_base,
            sleep=self._sleep,
            label=f"deactivate rate {rate_id}",
        )
        logger.info(
            "Exchange rate %s deactivated (%s/%s)",
            rate_id, exchange_rate.from_currency, exchange_rate.to_currency,
        )
        return exchange_rate

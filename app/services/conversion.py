"""Crypto -> Naira conversion: quote, execute, history."""

import logging
import math
from dataclasses import dataclass
from datetime import timedelta
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session, sessionmaker

from app.core.config import settings
from app.db.session import SerializableSessionLocal
from app.models.crypto_conversion import ConversionStatus, CryptoConversion
from app.models.exchange_rate import ExchangeRate
from app.services.auth import TransactionPinVerifier
from app.services.collaborators import BalanceGuard, CacheInvalidator, WalletLookup
from app.services.conversion_record import ConversionRecordManager
from app.services.exchange_rate import ExchangeRateStore
from app.services.quote import ConversionQuoteCalculator, Quote
from app.services.settlement import SettlementExecutor

logger = logging.getLogger(__name__)

SUCCESS_MESSAGE = "Conversion successful! Naira credited to your wallet."


@dataclass
class ConversionResult:
    conversion: CryptoConversion
    message: str


@dataclass
class ConversionPage:
    conversions: list[CryptoConversion]
    page: int
    limit: int
    total: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


class ConversionService:
    """Entry point for conversions, bound to one request session ``db``.

    Settlement runs on its own serializable sessions, so the PROCESSING row
    is committed from ``db`` before settlement starts.
    """

    def __init__(
        self,
        db: Session,
        *,
        serializable_factory: sessionmaker = SerializableSessionLocal,
        rate_store: ExchangeRateStore | None = None,
        balance_guard: BalanceGuard | None = None,
        wallet_lookup: WalletLookup | None = None,
        pin_verifier: TransactionPinVerifier | None = None,
        cache_invalidator: CacheInvalidator | None = None,
        records: ConversionRecordManager | None = None,
        executor: SettlementExecutor | None = None,
    ):
        self.db = db
        self.rate_store = rate_store or ExchangeRateStore(serializable_factory)
        self.wallet_lookup = wallet_lookup or WalletLookup(db)
        self.pin_verifier = pin_verifier or TransactionPinVerifier(db)
        self.records = records or ConversionRecordManager()
        self.calculator = ConversionQuoteCalculator(
            self.rate_store, balance_guard or BalanceGuard(db)
        )
        self.executor = executor or SettlementExecutor(
            serializable_factory,
            records=self.records,
            cache_invalidator=cache_invalidator,
        )

    def get_quote(self, user_id: UUID, token_symbol: str, amount: str) -> Quote:
        return self.calculator.quote(self.db, user_id, token_symbol, amount)

    def request_conversion(
        self, user_id: UUID, token_symbol: str, amount: str, pin: str
    ) -> ConversionResult:
        logger.info("User %s converting %s %s to Naira", user_id, amount, token_symbol)

        # recomputed here, a quote held by the client is never trusted
        quote = self.get_quote(user_id, token_symbol, amount)
        crypto_wallet = self.wallet_lookup.get_crypto_wallet(user_id)
        fiat_wallet = self.wallet_lookup.get_fiat_wallet(user_id, settings.FIAT_CURRENCY)
        self.pin_verifier.verify(user_id, pin)

        conversion = self.records.create(self.db, quote, user_id)
        self.db.commit()

        try:
            self.executor.execute(conversion.id, crypto_wallet.id, fiat_wallet.id)
        finally:
            self.db.refresh(conversion)

        logger.info("Conversion completed: %s", conversion.reference)
        return ConversionResult(conversion=conversion, message=SUCCESS_MESSAGE)

    def get_conversion_history(
        self, user_id: UUID, page: int = 1, limit: int = settings.HISTORY_DEFAULT_LIMIT
    ) -> ConversionPage:
        page = max(page, 1)
        limit = max(1, min(limit, settings.HISTORY_MAX_LIMIT))

        conversions = self.db.execute(
            select(CryptoConversion)
            .where(CryptoConversion.user_id == user_id)
            .order_by(CryptoConversion.requested_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        ).scalars().all()
        total = self.db.execute(
            select(func.count()).select_from(CryptoConversion).where(CryptoConversion.user_id == user_id)
        ).scalar_one()
        return ConversionPage(conversions=list(conversions), page=page, limit=limit, total=total)

    def get_exchange_rate(self) -> ExchangeRate:
        return self.rate_store.get_active_rate(self.db)

    def reconcile_stale_conversions(self, older_than: timedelta | None = None) -> list[CryptoConversion]:
        """Finalize PROCESSING rows left behind by a crashed request.

        A row whose ledger entry exists is COMPLETED, anything else FAILED.
        """
        older_than = older_than or timedelta(minutes=settings.STALE_CONVERSION_MINUTES)
        reconciled = []
        for conversion in self.records.find_stale(self.db, older_than):
            ledger_entry = self.records.find_ledger_transaction(self.db, conversion)
            if ledger_entry is not None:
                self.records.finalize(self.db, conversion.id, ConversionStatus.COMPLETED, ledger_entry.id)
            else:
                self.records.finalize(
                    self.db, conversion.id, ConversionStatus.FAILED, reason="Abandoned while processing"
                )
            logger.warning("Reconciled stale conversion %s as %s", conversion.reference, conversion.status.value)
            reconciled.append(conversion)
        self.db.commit()
        return reconciled

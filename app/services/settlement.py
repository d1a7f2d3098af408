"""Atomic settlement of a crypto -> Naira conversion.

One settlement attempt, inside a single SERIALIZABLE transaction:

1. lock the user's CryptoBalance row for the token and debit it, refusing
   to go below zero;
2. lock the Naira wallet row and credit the net amount to both balance
   and ledger balance;
3. insert the ledger Transaction with before/after snapshots and the
   reference ``<conversion reference>_NAIRA``;
4. mark the conversion COMPLETED and link the Transaction.

Locks are always taken crypto balance first, fiat wallet second. Any other
code path that locks both rows must use the same order.

Write conflicts restart the whole attempt (see ``run_serializable``). When
an attempt cannot succeed the conversion is marked FAILED in a separate
transaction before the error reaches the caller.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session, sessionmaker

from app.core.config import settings
from app.core.errors import (
    ConversionError,
    InsufficientBalance,
    TransactionConflict,
    Unexpected,
    WalletNotFound,
)
from app.db.session import SerializableSessionLocal
from app.db.transactions import run_serializable
from app.models.crypto_balance import CryptoBalance
from app.models.crypto_conversion import ConversionStatus, CryptoConversion
from app.models.transaction import Transaction, TransactionStatus, TransactionType
from app.models.wallet import Wallet
from app.services.collaborators import CacheInvalidator
from app.services.conversion_record import ConversionRecordManager

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SettlementResult:
    conversion_id: UUID
    user_id: UUID
    transaction_id: UUID
    fiat_balance_before: Decimal | None
    fiat_balance_after: Decimal | None
    crypto_balance_after: Decimal | None
    # True when an earlier attempt had already written the ledger entry
    replayed: bool = False


class SettlementExecutor:
    def __init__(
        self,
        session_factory: sessionmaker = SerializableSessionLocal,
        *,
        records: ConversionRecordManager | None = None,
        cache_invalidator: CacheInvalidator | None = None,
        max_attempts: int = settings.SETTLEMENT_MAX_ATTEMPTS,
        backoff_base: float = settings.SETTLEMENT_BACKOFF_BASE_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._session_factory = session_factory
        self.records = records or ConversionRecordManager()
        self.cache_invalidator = cache_invalidator or CacheInvalidator()
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self._sleep = sleep

    def execute(
        self, conversion_id: UUID, crypto_wallet_id: UUID, fiat_wallet_id: UUID
    ) -> SettlementResult:
        """Settle a PROCESSING conversion.

        Returns once the settlement is committed. On failure the conversion
        has been marked FAILED and a ``ConversionError`` is raised:
        ``InsufficientBalance`` and ``WalletNotFound`` as-is,
        ``TransactionConflict`` after the retries ran out, and ``Unexpected``
        for everything else.
        """
        try:
            result = run_serializable(
                self._session_factory,
                lambda session: self.settle(session, conversion_id, crypto_wallet_id, fiat_wallet_id),
                max_attempts=self.max_attempts,
                backoff_base=self.backoff_base,
                sleep=self._sleep,
                label=f"settlement of conversion {conversion_id}",
            )
        except TransactionConflict as exc:
            self._mark_failed(conversion_id, exc.message)
            raise
        except ConversionError as exc:
            logger.error("Conversion %s failed: %s", conversion_id, exc.message)
            self._mark_failed(conversion_id, exc.message)
            raise
        except Exception as exc:
            logger.exception("Conversion %s failed unexpectedly", conversion_id)
            self._mark_failed(conversion_id, Unexpected.message)
            raise Unexpected() from exc

        self._invalidate_caches(result.user_id)
        return result

    def settle(
        self,
        session: Session,
        conversion_id: UUID,
        crypto_wallet_id: UUID,
        fiat_wallet_id: UUID,
    ) -> SettlementResult:
        """One settlement attempt inside ``session``'s open transaction."""
        conversion = self.records.get(session, conversion_id)

        existing = self.records.find_ledger_transaction(session, conversion)
        if existing is not None:
            # a previous attempt committed; finish the record without moving money again
            logger.info("Conversion %s already settled as %s", conversion.reference, existing.reference)
            self.records.finalize(session, conversion.id, ConversionStatus.COMPLETED, existing.id)
            return SettlementResult(
                conversion_id=conversion.id,
                user_id=conversion.user_id,
                transaction_id=existing.id,
                fiat_balance_before=existing.balance_before,
                fiat_balance_after=existing.balance_after,
                crypto_balance_after=None,
                replayed=True,
            )
        if conversion.status is not ConversionStatus.PROCESSING:
            raise Unexpected(f"Conversion is {conversion.status.value}")

        crypto_after = self._debit_crypto(session, conversion, crypto_wallet_id)
        wallet, fiat_before, fiat_after = self._credit_fiat(session, conversion, fiat_wallet_id)

        now = datetime.now(timezone.utc)
        ledger_entry = Transaction(
            user_id=conversion.user_id,
            wallet_id=wallet.id,
            type=TransactionType.CRYPTO_TO_NAIRA,
            status=TransactionStatus.COMPLETED,
            amount=conversion.net_naira,
            fee=conversion.fee_amount,
            total_amount=conversion.naira_amount,
            balance_before=fiat_before,
            balance_after=fiat_after,
            currency=wallet.currency,
            description=f"Converted {conversion.crypto_amount} {conversion.token_symbol} to Naira",
            reference=conversion.ledger_reference,
            completed_at=now,
        )
        session.add(ledger_entry)
        session.flush()

        self.records.finalize(session, conversion.id, ConversionStatus.COMPLETED, ledger_entry.id)
        logger.info(
            "Conversion %s settled: -%s %s, +%s %s",
            conversion.reference, conversion.crypto_amount, conversion.token_symbol,
            conversion.net_naira, wallet.currency,
        )
        return SettlementResult(
            conversion_id=conversion.id,
            user_id=conversion.user_id,
            transaction_id=ledger_entry.id,
            fiat_balance_before=fiat_before,
            fiat_balance_after=fiat_after,
            crypto_balance_after=crypto_after,
        )

    def _debit_crypto(
        self, session: Session, conversion: CryptoConversion, crypto_wallet_id: UUID
    ) -> Decimal:
        amount = Decimal(conversion.crypto_amount)
        balance = session.execute(
            select(CryptoBalance)
            .where(
                CryptoBalance.wallet_id == crypto_wallet_id,
                CryptoBalance.token_symbol == conversion.token_symbol,
            )
            .with_for_update()
        ).scalars().first()
        if balance is None:
            raise InsufficientBalance(f"Insufficient {conversion.token_symbol} balance")

        if Decimal(balance.balance) - amount < 0:
            raise InsufficientBalance(f"Insufficient {conversion.token_symbol} balance")

        # the guard keeps the debit safe on backends that ignore FOR UPDATE
        row = session.execute(
            update(CryptoBalance)
            .where(CryptoBalance.id == balance.id, CryptoBalance.balance >= amount)
            .values(balance=CryptoBalance.balance - amount)
            .returning(CryptoBalance.balance)
            .execution_options(synchronize_session=False)
        ).first()
        if row is None:
            raise InsufficientBalance(f"Insufficient {conversion.token_symbol} balance")
        session.expire(balance)
        return Decimal(row[0])

    def _credit_fiat(
        self, session: Session, conversion: CryptoConversion, fiat_wallet_id: UUID
    ) -> tuple[Wallet, Decimal, Decimal]:
        wallet = session.execute(
            select(Wallet).where(Wallet.id == fiat_wallet_id).with_for_update()
        ).scalars().first()
        if wallet is None:
            raise WalletNotFound("Naira wallet not found")

        balance_before = Decimal(wallet.balance)
        balance_after = balance_before + Decimal(conversion.net_naira)
        wallet.balance = balance_after
        wallet.ledger_balance = balance_after
        session.flush()
        return wallet, balance_before, balance_after

    def _mark_failed(self, conversion_id: UUID, reason: str) -> None:
        try:
            with self._session_factory() as session:
                with session.begin():
                    self.records.finalize(session, conversion_id, ConversionStatus.FAILED, reason=reason)
        except Exception:
            # left PROCESSING; reconcile_stale_conversions() picks it up
            logger.exception("Could not mark conversion %s as FAILED", conversion_id)

    def _invalidate_caches(self, user_id: UUID) -> None:
        # runs after commit; the settlement stands whatever happens here
        try:
            self.cache_invalidator.invalidate_wallet(user_id)
            self.cache_invalidator.invalidate_transactions(user_id)
        except Exception:
            logger.warning("Cache invalidation failed for user %s", user_id, exc_info=True)

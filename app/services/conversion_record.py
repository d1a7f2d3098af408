import logging
import secrets
import time
from datetime import datetime, timedelta, timezone
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.errors import ConversionNotFound
from app.models.crypto_conversion import ConversionStatus, CryptoConversion, ledger_reference_for
from app.models.transaction import Transaction
from app.services.quote import Quote

logger = logging.getLogger(__name__)


def generate_reference() -> str:
    # time-ordered, with a random suffix so two requests in the same
    # nanosecond still differ
    return f"TXN_CRYPTO_CONVERT_{time.time_ns()}_{secrets.token_hex(4).upper()}"


class ConversionRecordManager:
    """Owns the CryptoConversion lifecycle: PROCESSING -> COMPLETED | FAILED.

    Every method works inside the caller's transaction; committing is the
    caller's decision.
    """

    def create(self, session: Session, quote: Quote, user_id: UUID) -> CryptoConversion:
        conversion = CryptoConversion(
            reference=generate_reference(),
            user_id=user_id,
            token_symbol=quote.token_symbol,
            crypto_amount=quote.crypto_amount,
            usd_value=quote.usd_value,
            exchange_rate=quote.exchange_rate,
            fee_percent=quote.fee_percent,
            fee_amount=quote.fee_amount,
            naira_amount=quote.naira_amount,
            net_naira=quote.net_naira,
            status=ConversionStatus.PROCESSING,
        )
        session.add(conversion)
        session.flush()
        return conversion

    def get(self, session: Session, conversion_id: UUID) -> CryptoConversion:
        conversion = session.get(CryptoConversion, conversion_id)
        if conversion is None:
            raise ConversionNotFound()
        return conversion

    def finalize(
        self,
        session: Session,
        conversion_id: UUID,
        status: ConversionStatus,
        transaction_id: UUID | None = None,
        reason: str | None = None,
    ) -> CryptoConversion:
        """Move a PROCESSING conversion to its terminal status.

        Finalizing a conversion that already left PROCESSING changes nothing.
        """
        if status is ConversionStatus.PROCESSING:
            raise ValueError("PROCESSING is not a terminal status")
        if status is ConversionStatus.COMPLETED and transaction_id is None:
            raise ValueError("a completed conversion needs its ledger transaction")

        conversion = self.get(session, conversion_id)
        if conversion.status is not ConversionStatus.PROCESSING:
            logger.warning(
                "Ignoring %s for conversion %s, already %s",
                status.value, conversion.reference, conversion.status.value,
            )
            return conversion

        conversion.status = status
        if status is ConversionStatus.COMPLETED:
            conversion.naira_transaction_id = transaction_id
            conversion.completed_at = datetime.now(timezone.utc)
        else:
            conversion.failure_reason = reason
        session.flush()
        return conversion

    def find_ledger_transaction(
        self, session: Session, conversion: CryptoConversion
    ) -> Transaction | None:
        """The ledger entry written for ``conversion``, if it ever settled."""
        return session.execute(
            select(Transaction).where(
                Transaction.reference == ledger_reference_for(conversion.reference)
            )
        ).scalars().first()

    def find_stale(self, session: Session, older_than: timedelta) -> list[CryptoConversion]:
        cutoff = datetime.now(timezone.utc) - older_than
        return list(
            session.execute(
                select(CryptoConversion)
                .where(
                    CryptoConversion.status == ConversionStatus.PROCESSING,
                    CryptoConversion.requested_at < cutoff,
                )
                .order_by(CryptoConversion.requested_at)
            ).scalars()
        )

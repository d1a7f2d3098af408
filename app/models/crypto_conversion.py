import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, String, ForeignKey, DateTime, Numeric, Uuid, Enum

from app.db.base import Base


class ConversionStatus(str, enum.Enum):
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class CryptoConversion(Base):
    __tablename__ = "crypto_conversions"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    # generated once at creation, the ledger reference is derived from it
    reference = Column(String(64), unique=True, nullable=False)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)

    token_symbol = Column(String(16), nullable=False)
    crypto_amount = Column(Numeric(30, 8), nullable=False)
    usd_value = Column(Numeric(30, 8), nullable=False)
    exchange_rate = Column(Numeric(18, 4), nullable=False)
    fee_percent = Column(Numeric(5, 2), nullable=False)
    fee_amount = Column(Numeric(18, 2), nullable=False)
    naira_amount = Column(Numeric(18, 2), nullable=False)
    net_naira = Column(Numeric(18, 2), nullable=False)

    status = Column(
        Enum(ConversionStatus, native_enum=False, length=12),
        nullable=False,
        default=ConversionStatus.PROCESSING,
    )
    failure_reason = Column(String, nullable=True)
    naira_transaction_id = Column(Uuid(as_uuid=True), ForeignKey("transactions.id"), nullable=True)

    requested_at = Column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )
    completed_at = Column(DateTime(timezone=True), nullable=True)

    @property
    def ledger_reference(self) -> str:
        return ledger_reference_for(self.reference)


def ledger_reference_for(conversion_reference: str) -> str:
    return f"{conversion_reference}_NAIRA"

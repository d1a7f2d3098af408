import enum
import uuid
from sqlalchemy import Column, String, ForeignKey, DateTime, Numeric, Uuid, Enum
from sqlalchemy.sql import func

from app.db.base import Base

class TransactionType(str, enum.Enum):
    CRYPTO_TO_NAIRA = "CRYPTO_TO_NAIRA"

class TransactionStatus(str, enum.Enum):
    COMPLETED = "COMPLETED"

class Transaction(Base):
    """Append-only ledger entry. Never updated after insert."""

    __tablename__ = "transactions"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)

    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    wallet_id = Column(Uuid(as_uuid=True), ForeignKey("wallets.id"), nullable=False)

    type = Column(Enum(TransactionType, native_enum=False, length=32), nullable=False)
    status = Column(Enum(TransactionStatus, native_enum=False, length=16), nullable=False)

    amount = Column(Numeric(18, 2), nullable=False)
    fee = Column(Numeric(18, 2), nullable=False, default=0)
    total_amount = Column(Numeric(18, 2), nullable=False)
    balance_before = Column(Numeric(18, 2), nullable=False)
    balance_after = Column(Numeric(18, 2), nullable=False)
    currency = Column(String(3), nullable=False)
    description = Column(String, nullable=True)

    # unique, so a second write for the same conversion cannot land
    reference = Column(String(80), unique=True, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    completed_at = Column(DateTime(timezone=True), nullable=True)

import enum
import uuid
from sqlalchemy import Column, String, ForeignKey, DateTime, Numeric, Uuid, Enum, UniqueConstraint
from sqlalchemy.sql import func

from app.db.base import Base

class WalletType(str, enum.Enum):
    NAIRA = "NAIRA"
    CRYPTO = "CRYPTO"
    USD = "USD"

class Wallet(Base):
    __tablename__ = "wallets"
    __table_args__ = (UniqueConstraint("user_id", "type", name="uq_wallets_user_type"),)

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)

    type = Column(Enum(WalletType, native_enum=False, length=10), nullable=False)
    currency = Column(String(3), nullable=False)  # NGN, USD, or USD for crypto valuation
    balance = Column(Numeric(18, 2), nullable=False, default=0)
    # mirrored on every ledger write
    ledger_balance = Column(Numeric(18, 2), nullable=False, default=0)

    # custody address, crypto wallets only
    wallet_address = Column(String(128), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

import uuid
from sqlalchemy import Column, String, ForeignKey, DateTime, Numeric, Uuid, UniqueConstraint
from sqlalchemy.sql import func

from app.db.base import Base

class CryptoBalance(Base):
    __tablename__ = "crypto_balances"
    __table_args__ = (
        UniqueConstraint("wallet_id", "token_symbol", name="uq_crypto_balances_wallet_token"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    wallet_id = Column(Uuid(as_uuid=True), ForeignKey("wallets.id"), nullable=False)

    token_symbol = Column(String(16), nullable=False)  # USDT, USDC, ...
    balance = Column(Numeric(30, 8), nullable=False, default=0)
    raw_balance = Column(String(78), nullable=False, default="0")  # on-chain integer units

    usd_price = Column(Numeric(18, 8), nullable=True)
    usd_value = Column(Numeric(30, 8), nullable=True)

    last_updated = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

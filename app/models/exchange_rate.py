import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, String, DateTime, Numeric, Boolean, Uuid, Index, text

from app.db.base import Base


def _utcnow():
    return datetime.now(timezone.utc)


class ExchangeRate(Base):
    """Admin-set rate for a currency pair. Rows are never edited except to
    deactivate them, so the table doubles as the rate history."""

    __tablename__ = "exchange_rates"
    __table_args__ = (
        # at most one active row per pair
        Index(
            "uq_exchange_rates_active_pair",
            "from_currency",
            "to_currency",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)

    from_currency = Column(String(3), nullable=False)
    to_currency = Column(String(3), nullable=False)
    rate = Column(Numeric(18, 4), nullable=False)
    platform_fee_percent = Column(Numeric(5, 2), nullable=False, default=0)

    is_active = Column(Boolean, nullable=False, default=True)
    set_by = Column(String, nullable=False)  # admin user id
    set_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    source = Column(String(32), nullable=False, default="manual")
    notes = Column(String, nullable=True)

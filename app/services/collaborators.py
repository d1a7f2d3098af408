"""Database-backed defaults for the collaborators the conversion engine
depends on. Each can be swapped out through constructor injection."""

import logging
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.errors import WalletNotFound
from app.models.crypto_balance import CryptoBalance
from app.models.wallet import Wallet, WalletType

logger = logging.getLogger(__name__)

FIAT_WALLET_TYPES = {"NGN": WalletType.NAIRA, "USD": WalletType.USD}


class WalletLookup:
    def __init__(self, db: Session):
        self.db = db

    def get_crypto_wallet(self, user_id: UUID) -> Wallet:
        wallet = self._find(user_id, WalletType.CRYPTO)
        if wallet is None:
            raise WalletNotFound("Crypto wallet not found")
        return wallet

    def get_fiat_wallet(self, user_id: UUID, currency: str = "NGN") -> Wallet:
        wallet_type = FIAT_WALLET_TYPES.get(currency.upper())
        wallet = self._find(user_id, wallet_type) if wallet_type else None
        if wallet is None:
            raise WalletNotFound("Naira wallet not found")
        return wallet

    def _find(self, user_id: UUID, wallet_type: WalletType) -> Wallet | None:
        return self.db.execute(
            select(Wallet).where(Wallet.user_id == user_id, Wallet.type == wallet_type)
        ).scalars().first()


class BalanceGuard:
    """Advisory, unlocked balance check used to reject obviously short
    requests before anything is written."""

    def __init__(self, db: Session):
        self.db = db

    def has_sufficient_balance(self, user_id: UUID, token_symbol: str, amount: Decimal) -> bool:
        balance = self.db.execute(
            select(CryptoBalance.balance)
            .join(Wallet, CryptoBalance.wallet_id == Wallet.id)
            .where(
                Wallet.user_id == user_id,
                Wallet.type == WalletType.CRYPTO,
                CryptoBalance.token_symbol == token_symbol,
            )
        ).scalar_one_or_none()
        if balance is None:
            return False
        return Decimal(balance) >= amount


class CacheInvalidator:
    """Drops cached wallet and transaction views after a settlement commits.

    This service keeps no cache of its own, so the default only records the
    event; deployments with a cache layer pass their own implementation.
    """

    def invalidate_wallet(self, user_id: UUID) -> None:
        logger.debug("Wallet cache invalidated for user %s", user_id)

    def invalidate_transactions(self, user_id: UUID) -> None:
        logger.debug("Transaction cache invalidated for user %s", user_id)

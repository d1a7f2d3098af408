"""
Shared fixtures for the conversion engine tests.

Each test gets its own file-backed SQLite database so that threads in the
concurrency tests open real, separate connections.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key")

import uuid
from decimal import Decimal

import pytest
from sqlalchemy import event, select
from sqlalchemy.exc import OperationalError

from app.db.session import build_engine, build_session_factories, create_all
from app.models.crypto_balance import CryptoBalance
from app.models.user import User
from app.models.wallet import Wallet, WalletType
from app.services.auth import hash_pin
from app.services.conversion import ConversionService
from app.services.exchange_rate import ExchangeRateStore
from app.services.settlement import SettlementExecutor

PIN = "1234"


class SerializationFailure(Exception):
    """Stands in for the driver error PostgreSQL raises with SQLSTATE 40001."""

    pgcode = "40001"

    def __str__(self):
        return "could not serialize access due to concurrent update"


def raise_serialization_failure(session):
    raise OperationalError("COMMIT", {}, SerializationFailure())


class ConflictingSessionFactory:
    """Wraps a sessionmaker; the first ``failures`` sessions it hands out
    fail at commit with a serialization error."""

    def __init__(self, factory, failures):
        self.factory = factory
        self.failures = failures
        self.sessions_created = 0

    def __call__(self, **kw):
        session = self.factory(**kw)
        self.sessions_created += 1
        if self.failures > 0:
            self.failures -= 1
            event.listen(session, "before_commit", raise_serialization_failure)
        return session


class SleepRecorder:
    def __init__(self):
        self.delays = []

    def __call__(self, seconds):
        self.delays.append(seconds)


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'conversions.db'}")
    create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factories(engine)[0]


@pytest.fixture
def serializable_factory(engine):
    return build_session_factories(engine)[1]


@pytest.fixture
def db(session_factory):
    with session_factory() as session:
        yield session


@pytest.fixture(scope="session")
def hashed_pin():
    return hash_pin(PIN)


@pytest.fixture
def sleep_recorder():
    return SleepRecorder()


@pytest.fixture
def rate_store(serializable_factory, sleep_recorder):
    return ExchangeRateStore(serializable_factory, sleep=sleep_recorder)


@pytest.fixture
def active_rate(rate_store):
    return rate_store.set_active_rate(
        "USD", "NGN", Decimal("1500"), Decimal("1"), set_by="admin-1"
    )


@pytest.fixture
def make_user(session_factory, hashed_pin):
    """Create a user with a crypto wallet, a Naira wallet and token balances."""

    def _make_user(usdc="100", usdt="50", naira="1000.00", with_naira_wallet=True):
        with session_factory() as session:
            user = User(email=f"{uuid.uuid4().hex}@example.com", hashed_pin=hashed_pin)
            session.add(user)
            session.flush()

            crypto_wallet = Wallet(
                user_id=user.id,
                type=WalletType.CRYPTO,
                currency="USD",
                wallet_address="0x" + uuid.uuid4().hex,
            )
            session.add(crypto_wallet)
            session.flush()
            for symbol, amount in (("USDC", usdc), ("USDT", usdt)):
                if amount is not None:
                    session.add(CryptoBalance(
                        wallet_id=crypto_wallet.id,
                        token_symbol=symbol,
                        balance=Decimal(amount),
                        raw_balance=str(int(Decimal(amount) * 10**6)),
                        usd_price=Decimal("1"),
                        usd_value=Decimal(amount),
                    ))

            naira_wallet = None
            if with_naira_wallet:
                naira_wallet = Wallet(
                    user_id=user.id,
                    type=WalletType.NAIRA,
                    currency="NGN",
                    balance=Decimal(naira),
                    ledger_balance=Decimal(naira),
                )
                session.add(naira_wallet)
            session.commit()
            return user, crypto_wallet, naira_wallet

    return _make_user


@pytest.fixture
def funded_user(make_user):
    return make_user()


@pytest.fixture
def make_executor(serializable_factory, sleep_recorder):
    def _make_executor(session_factory=None, **kwargs):
        kwargs.setdefault("sleep", sleep_recorder)
        return SettlementExecutor(session_factory or serializable_factory, **kwargs)

    return _make_executor


@pytest.fixture
def make_service(session_factory, serializable_factory, make_executor):
    """Build a ConversionService on its own request session."""
    sessions = []

    def _make_service(executor=None, **kwargs):
        session = session_factory()
        sessions.append(session)
        return ConversionService(
            session,
            serializable_factory=serializable_factory,
            executor=executor or make_executor(),
            **kwargs,
        )

    yield _make_service
    for session in sessions:
        session.close()


def crypto_balance_of(session_factory, wallet_id, token_symbol="USDC"):
    with session_factory() as session:
        return session.execute(
            select(CryptoBalance.balance).where(
                CryptoBalance.wallet_id == wallet_id,
                CryptoBalance.token_symbol == token_symbol,
            )
        ).scalar_one()


def wallet_balances_of(session_factory, wallet_id):
    with session_factory() as session:
        wallet = session.get(Wallet, wallet_id)
        return wallet.balance, wallet.ledger_balance

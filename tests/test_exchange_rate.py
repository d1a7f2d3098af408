import threading
import uuid
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from app.core.errors import ExchangeRateNotFound, InvalidAmount, NoActiveRate
from app.models.exchange_rate import ExchangeRate
from app.services.exchange_rate import ExchangeRateStore
from conftest import ConflictingSessionFactory


def active_rows(session_factory, from_currency="USD", to_currency="NGN"):
    with session_factory() as session:
        return session.execute(
            select(func.count()).select_from(ExchangeRate).where(
                ExchangeRate.from_currency == from_currency,
                ExchangeRate.to_currency == to_currency,
                ExchangeRate.is_active.is_(True),
            )
        ).scalar_one()


def test_new_rate_supersedes_previous(db, rate_store, session_factory):
    first = rate_store.set_active_rate("USD", "NGN", Decimal("1500"), Decimal("1"), "admin-1")
    second = rate_store.set_active_rate(
        "USD", "NGN", Decimal("1550"), Decimal("1.5"), "admin-2", source="api", notes="morning update"
    )

    active = rate_store.get_active_rate(db)
    assert active.id == second.id
    assert active.rate == Decimal("1550")
    assert active.source == "api"
    assert active_rows(session_factory) == 1

    history = rate_store.get_rate_history(db)
    assert [r.id for r in history] == [second.id, first.id]
    assert history[1].is_active is False
    assert history[1].rate == Decimal("1500")


def test_source_defaults_to_manual(db, rate_store):
    rate = rate_store.set_active_rate("USD", "NGN", Decimal("1500"), Decimal("0"), "admin-1")
    assert rate.source == "manual"


def test_get_active_rate_without_rate(db, rate_store):
    with pytest.raises(NoActiveRate):
        rate_store.get_active_rate(db)


def test_pairs_are_independent(db, rate_store, session_factory):
    rate_store.set_active_rate("USD", "NGN", Decimal("1500"), Decimal("1"), "admin-1")
    rate_store.set_active_rate("EUR", "NGN", Decimal("1650"), Decimal("1"), "admin-1")

    assert active_rows(session_factory) == 1
    assert active_rows(session_factory, "EUR") == 1


@pytest.mark.parametrize("rate,fee", [
    (Decimal("0"), Decimal("1")),
    (Decimal("-10"), Decimal("1")),
    (Decimal("1500"), Decimal("-1")),
    (Decimal("1500"), Decimal("100")),
])
def test_rejects_invalid_rate_or_fee(rate_store, session_factory, rate, fee):
    with pytest.raises(InvalidAmount):
        rate_store.set_active_rate("USD", "NGN", rate, fee, "admin-1")
    assert active_rows(session_factory) == 0


def test_deactivate_rate(db, rate_store, active_rate, session_factory):
    deactivated = rate_store.deactivate_rate(active_rate.id)

    assert deactivated.is_active is False
    assert active_rows(session_factory) == 0
    with pytest.raises(NoActiveRate):
        rate_store.get_active_rate(db)


def test_deactivate_runs_in_its_own_transaction(db, rate_store, active_rate):
    assert db.in_transaction() is False

    rate_store.deactivate_rate(active_rate.id)

    assert db.in_transaction() is False
    assert db.get(ExchangeRate, active_rate.id).is_active is False


def test_deactivate_retries_serialization_conflicts(
    serializable_factory, session_factory, sleep_recorder, active_rate
):
    conflicting = ConflictingSessionFactory(serializable_factory, failures=1)
    store = ExchangeRateStore(conflicting, sleep=sleep_recorder)

    store.deactivate_rate(active_rate.id)

    assert conflicting.sessions_created == 2
    assert sleep_recorder.delays == [0.1]
    assert active_rows(session_factory) == 0


def test_deactivate_unknown_rate(rate_store):
    with pytest.raises(ExchangeRateNotFound):
        rate_store.deactivate_rate(uuid.uuid4())


def test_list_rates_pagination(db, rate_store):
    for rate in ("1500", "1510", "1520"):
        rate_store.set_active_rate("USD", "NGN", Decimal(rate), Decimal("1"), "admin-1")

    active_only = rate_store.list_rates(db)
    assert active_only.total == 1

    page = rate_store.list_rates(db, page=1, limit=2, include_inactive=True)
    assert page.total == 3
    assert page.total_pages == 2
    assert [r.rate for r in page.rates] == [Decimal("1520"), Decimal("1510")]

    last = rate_store.list_rates(db, page=2, limit=2, include_inactive=True)
    assert [r.rate for r in last.rates] == [Decimal("1500")]


def test_concurrent_setters_leave_exactly_one_active_rate(rate_store, session_factory):
    barrier = threading.Barrier(5)
    errors = []

    def set_rate(n):
        barrier.wait()
        try:
            rate_store.set_active_rate("USD", "NGN", Decimal(1500 + n), Decimal("1"), f"admin-{n}")
        except Exception as exc:  # collected for the assertion below
            errors.append(exc)

    threads = [threading.Thread(target=set_rate, args=(n,)) for n in range(5)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    assert active_rows(session_factory) == 1
    with session_factory() as session:
        assert session.execute(select(func.count()).select_from(ExchangeRate)).scalar_one() == 5

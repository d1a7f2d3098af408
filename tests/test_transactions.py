import pytest
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, OperationalError

from app.core.errors import TransactionConflict
from app.db.transactions import backoff_delay, is_serialization_failure, run_serializable
from conftest import ConflictingSessionFactory, SerializationFailure


class Psycopg3Error(Exception):
    def __init__(self, sqlstate):
        super().__init__("error")
        self.sqlstate = sqlstate


@pytest.mark.parametrize("orig", [
    SerializationFailure(),
    Psycopg3Error("40001"),
    Psycopg3Error("40P01"),
    Psycopg3Error("55P03"),
    Exception("database is locked"),
])
def test_retryable_database_errors(orig):
    assert is_serialization_failure(OperationalError("UPDATE", {}, orig))


@pytest.mark.parametrize("exc", [
    OperationalError("SELECT", {}, Exception("no such table: wallets")),
    IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed")),
    ValueError("could not serialize access"),
])
def test_other_errors_are_not_retryable(exc):
    assert not is_serialization_failure(exc)


def test_backoff_doubles_from_base():
    assert [backoff_delay(n, 0.1) for n in (1, 2, 3)] == [0.1, 0.2, 0.4]


def test_commits_work_on_success(serializable_factory, session_factory):
    def work(session):
        session.execute(text("CREATE TABLE scratch (n INTEGER)"))
        session.execute(text("INSERT INTO scratch VALUES (1)"))
        return "done"

    assert run_serializable(serializable_factory, work) == "done"
    with session_factory() as session:
        assert session.execute(text("SELECT n FROM scratch")).scalar_one() == 1


def test_retries_conflicts_then_succeeds(serializable_factory, sleep_recorder):
    factory = ConflictingSessionFactory(serializable_factory, failures=2)

    result = run_serializable(factory, lambda session: 42, max_attempts=3, backoff_base=0.1, sleep=sleep_recorder)

    assert result == 42
    assert factory.sessions_created == 3
    assert sleep_recorder.delays == [0.1, 0.2]


def test_gives_up_after_max_attempts(serializable_factory, sleep_recorder):
    factory = ConflictingSessionFactory(serializable_factory, failures=5)

    with pytest.raises(TransactionConflict):
        run_serializable(factory, lambda session: None, max_attempts=3, backoff_base=0.1, sleep=sleep_recorder)

    assert factory.sessions_created == 3
    assert sleep_recorder.delays == [0.1, 0.2]


def test_non_retryable_error_is_raised_at_once(serializable_factory, sleep_recorder):
    calls = []

    def work(session):
        calls.append(1)
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        run_serializable(serializable_factory, work, sleep=sleep_recorder)

    assert len(calls) == 1
    assert sleep_recorder.delays == []

# tests/test_transaction.py
import sqlite3

import pytest
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError

from carebook.core.errors import (
    ConcurrentModificationError,
    TransactionError,
    ValidationError,
)
from carebook.core.observability import TransactionContext
from carebook.db.models import ScheduleSlotModel
from carebook.db.transaction import is_write_conflict, run_in_transaction
from tests._factories import at, create_slot, load_slot


class FakeDriverError(Exception):
    def __init__(self, sqlstate):
        super().__init__(f"sqlstate {sqlstate}")
        self.sqlstate = sqlstate


@pytest.mark.parametrize("sqlstate", ["40001", "40P01"])
def test_postgres_serialization_failures_are_write_conflicts(sqlstate):
    exc = DBAPIError("UPDATE ...", {}, FakeDriverError(sqlstate))
    assert is_write_conflict(exc)


def test_wrapped_driver_error_is_inspected():
    wrapper = Exception("adapter error")
    wrapper.__cause__ = FakeDriverError("40001")
    assert is_write_conflict(DBAPIError("UPDATE ...", {}, wrapper))


def test_sqlite_lock_is_a_write_conflict():
    exc = OperationalError("UPDATE ...", {}, sqlite3.OperationalError("database is locked"))
    assert is_write_conflict(exc)


def test_other_errors_are_not_write_conflicts():
    assert is_write_conflict(ConcurrentModificationError("lost"))
    assert not is_write_conflict(IntegrityError("INSERT ...", {}, FakeDriverError("23505")))
    assert not is_write_conflict(ValidationError("bad input"))
    assert not is_write_conflict(RuntimeError("boom"))


async def test_conflicts_are_retried_until_success(session_factory, doctor_id, observer):
    slot_id = await create_slot(session_factory, doctor_id, at(1, 9))
    calls = []

    async def attempt(session):
        calls.append(session)
        slot = await session.get(ScheduleSlotModel, slot_id)
        slot.unavailable_reason = f"attempt {len(calls)}"
        await session.flush()
        if len(calls) < 3:
            raise ConcurrentModificationError("lost the race")
        return slot.unavailable_reason

    tx = TransactionContext(operation="touch_slot")
    result = await run_in_transaction(session_factory, attempt, tx=tx, observer=observer)

    assert result == "attempt 3"
    assert tx.attempts == 3
    # every attempt runs in its own session
    assert len({id(s) for s in calls}) == 3
    assert observer.kinds() == ["started", "retrying", "retrying", "succeeded"]
    assert (await load_slot(session_factory, slot_id)).unavailable_reason == "attempt 3"


async def test_exhausted_retries_raise_transaction_error(session_factory, doctor_id, observer):
    slot_id = await create_slot(session_factory, doctor_id, at(1, 9))

    async def attempt(session):
        slot = await session.get(ScheduleSlotModel, slot_id)
        slot.unavailable_reason = "never committed"
        await session.flush()
        raise ConcurrentModificationError("lost the race")

    with pytest.raises(TransactionError, match="book_appointment failed after multiple attempts") as exc_info:
        await run_in_transaction(
            session_factory, attempt, tx=TransactionContext(operation="book_appointment"), observer=observer
        )

    assert type(exc_info.value) is TransactionError
    assert exc_info.value.context == {"attempts": 3}
    assert observer.kinds() == ["started", "retrying", "retrying", "failed"]
    assert (await load_slot(session_factory, slot_id)).unavailable_reason is None


async def test_business_errors_are_not_retried(session_factory, observer):
    calls = 0

    async def attempt(session):
        nonlocal calls
        calls += 1
        raise ValidationError("bad input")

    with pytest.raises(ValidationError):
        await run_in_transaction(
            session_factory, attempt, tx=TransactionContext(operation="noop"), observer=observer
        )
    assert calls == 1
    assert observer.kinds() == ["started", "failed"]


async def test_max_attempts_override(session_factory, observer):
    async def attempt(session):
        raise ConcurrentModificationError("lost the race")

    tx = TransactionContext(operation="noop")
    with pytest.raises(TransactionError):
        await run_in_transaction(session_factory, attempt, tx=tx, observer=observer, max_attempts=1)
    assert tx.attempts == 1
    assert observer.kinds() == ["started", "failed"]

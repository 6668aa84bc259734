# tests/test_schedule_store.py
import pytest

from carebook.core.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from carebook.db.crud import schedule as schedule_crud
from carebook.services import schedules as schedule_service
from tests._factories import at, create_slot, load_slot


async def test_declare_slot_is_available_with_first_version(session_factory, doctor_id):
    slot_id = await create_slot(session_factory, doctor_id, at(2, 9))

    slot = await load_slot(session_factory, slot_id)
    assert slot.is_available is True
    assert slot.version == 1
    assert slot.starts_at == at(2, 9)
    assert slot.starts_at.tzinfo is not None


async def test_declare_slot_rejects_inverted_range(session_factory, doctor_id):
    with pytest.raises(ValidationError):
        await create_slot(session_factory, doctor_id, at(2, 10), at(2, 9))


async def test_declare_slot_rejects_range_spanning_two_days(session_factory, doctor_id):
    with pytest.raises(ValidationError, match="same day"):
        await create_slot(session_factory, doctor_id, at(2, 23), at(3, 1))


async def test_declare_slot_rejects_overlap_even_with_booked_slot(session_factory, doctor_id):
    slot_id = await create_slot(session_factory, doctor_id, at(2, 9), at(2, 10))
    async with session_factory() as session:
        async with session.begin():
            await schedule_crud.reserve(session, slot_id, doctor_id)

    with pytest.raises(ConflictError, match="conflicts with an existing schedule"):
        await create_slot(session_factory, doctor_id, at(2, 9, 30), at(2, 10, 30))


async def test_adjacent_slots_do_not_overlap(session_factory, doctor_id):
    await create_slot(session_factory, doctor_id, at(2, 9), at(2, 10))
    second = await create_slot(session_factory, doctor_id, at(2, 10), at(2, 11))
    assert second


async def test_other_doctors_may_use_the_same_time(session_factory, doctor_id, other_doctor_id):
    await create_slot(session_factory, doctor_id, at(2, 9))
    assert await create_slot(session_factory, other_doctor_id, at(2, 9))


async def test_reserve_flips_availability_once(session_factory, doctor_id, slot_id):
    async with session_factory() as session:
        async with session.begin():
            slot = await schedule_crud.reserve(session, slot_id, doctor_id)
            assert slot.is_available is False
            assert slot.version == 2

    async with session_factory() as session:
        with pytest.raises(ConflictError, match="not available"):
            async with session.begin():
                await schedule_crud.reserve(session, slot_id, doctor_id)


async def test_reserve_requires_the_owning_doctor(session_factory, slot_id, other_doctor_id):
    async with session_factory() as session:
        with pytest.raises(ConflictError):
            async with session.begin():
                await schedule_crud.reserve(session, slot_id, other_doctor_id)

    assert (await load_slot(session_factory, slot_id)).is_available is True


async def test_release_restores_and_is_idempotent(session_factory, doctor_id, slot_id):
    async with session_factory() as session:
        async with session.begin():
            await schedule_crud.reserve(session, slot_id, doctor_id)

    async with session_factory() as session:
        async with session.begin():
            assert await schedule_crud.release(session, doctor_id, at(1, 10), at(1, 10, 30), slot_id=slot_id)

    slot = await load_slot(session_factory, slot_id)
    assert slot.is_available is True
    assert slot.version == 3

    async with session_factory() as session:
        async with session.begin():
            assert await schedule_crud.release(session, doctor_id, at(1, 10), at(1, 10, 30)) is False


async def test_release_by_time_match(session_factory, doctor_id, slot_id):
    async with session_factory() as session:
        async with session.begin():
            await schedule_crud.reserve(session, slot_id, doctor_id)
            assert await schedule_crud.release(session, doctor_id, at(1, 10), at(1, 10, 30))

    assert (await load_slot(session_factory, slot_id)).is_available is True


async def test_list_available_groups_by_day_and_skips_past_and_taken(session_factory, doctor_id):
    past = await create_slot(session_factory, doctor_id, at(-1, 9))
    taken = await create_slot(session_factory, doctor_id, at(1, 9))
    await create_slot(session_factory, doctor_id, at(1, 11))
    await create_slot(session_factory, doctor_id, at(1, 10))
    await create_slot(session_factory, doctor_id, at(3, 14))
    async with session_factory() as session:
        async with session.begin():
            await schedule_crud.reserve(session, taken, doctor_id)

    async with session_factory() as session:
        grouped = await schedule_crud.list_available_slots(session, doctor_id)

    assert list(grouped) == [at(1, 0).date(), at(3, 0).date()]
    assert [s.starts_at for s in grouped[at(1, 0).date()]] == [at(1, 10), at(1, 11)]
    assert all(s.id != past for day in grouped.values() for s in day)


async def test_list_available_restricted_to_date(session_factory, doctor_id):
    await create_slot(session_factory, doctor_id, at(1, 9))
    await create_slot(session_factory, doctor_id, at(2, 9))

    async with session_factory() as session:
        grouped = await schedule_crud.list_available_slots(session, doctor_id, on_date=at(2, 0).date())

    assert list(grouped) == [at(2, 0).date()]


async def test_update_slot_moves_free_slot(session_factory, doctor_id, slot_id):
    result = await schedule_service.update_schedule(
        session_factory, slot_id, doctor_id, "doctor", starts_at=at(1, 15), ends_at=at(1, 16)
    )
    assert result["starts_at"] == at(1, 15)
    assert result["version"] == 1


async def test_update_slot_blocks_availability_with_reason(session_factory, doctor_id, slot_id):
    result = await schedule_service.update_schedule(
        session_factory, slot_id, doctor_id, "doctor", is_available=False, unavailable_reason="Conference"
    )
    assert result["is_available"] is False
    assert result["unavailable_reason"] == "Conference"
    assert result["version"] == 2


async def test_update_slot_rejects_overlap(session_factory, doctor_id, slot_id):
    await create_slot(session_factory, doctor_id, at(1, 12))
    with pytest.raises(ConflictError):
        await schedule_service.update_schedule(
            session_factory, slot_id, doctor_id, "doctor", starts_at=at(1, 12), ends_at=at(1, 12, 30)
        )


async def test_update_slot_of_other_doctor_is_not_found(session_factory, slot_id, other_doctor_id):
    with pytest.raises(NotFoundError):
        await schedule_service.update_schedule(
            session_factory, slot_id, other_doctor_id, "doctor", is_available=False
        )


async def test_schedule_management_requires_doctor_role(session_factory, slot_id, patient_id):
    with pytest.raises(AuthorizationError):
        await schedule_service.delete_schedule(session_factory, slot_id, patient_id, "patient")


async def test_delete_free_slot(session_factory, doctor_id, slot_id):
    result = await schedule_service.delete_schedule(session_factory, slot_id, doctor_id, "doctor")
    assert result["id"] == slot_id
    assert await load_slot(session_factory, slot_id) is None


async def test_list_doctor_slots_starts_today(session_factory, doctor_id):
    await create_slot(session_factory, doctor_id, at(-2, 9))
    upcoming = await create_slot(session_factory, doctor_id, at(1, 9))

    async with session_factory() as session:
        slots = await schedule_crud.list_doctor_slots(session, doctor_id)

    assert [s.id for s in slots] == [upcoming]

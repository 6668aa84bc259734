import logging
from collections import OrderedDict
from datetime import date, datetime, time, timedelta, timezone
from typing import Dict, List, Optional

from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from carebook.config.constants import ACTIVE_APPOINTMENT_STATUSES
from carebook.core.errors import (
    ConcurrentModificationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from carebook.db.column_types import as_utc
from carebook.db.models.appointment import AppointmentModel
from carebook.db.models.schedule_slot import ScheduleSlotModel

logger = logging.getLogger(__name__)

SLOT_CONFLICT_MESSAGE = "This time slot conflicts with an existing schedule"
SLOT_UNAVAILABLE_MESSAGE = "Time slot not available or has expired"


def validate_slot_range(starts_at: datetime, ends_at: datetime) -> None:
    """Reject inverted ranges and ranges spanning more than one calendar day (UTC)."""
    starts_at, ends_at = as_utc(starts_at), as_utc(ends_at)
    if starts_at >= ends_at:
        raise ValidationError(
            "Invalid time range: end time must be after start time",
            {"starts_at": starts_at.isoformat(), "ends_at": ends_at.isoformat()},
        )
    if starts_at.date() != ends_at.date():
        raise ValidationError(
            "Start time and end time must be on the same day",
            {"starts_at": starts_at.isoformat(), "ends_at": ends_at.isoformat()},
        )


async def find_overlapping_slot(
    db: AsyncSession,
    doctor_id: int,
    starts_at: datetime,
    ends_at: datetime,
    exclude_slot_id: Optional[int] = None,
) -> Optional[ScheduleSlotModel]:
    """Return any slot of the doctor intersecting [starts_at, ends_at), whatever its availability."""
    stmt = select(ScheduleSlotModel).where(
        ScheduleSlotModel.doctor_id == doctor_id,
        ScheduleSlotModel.starts_at < ends_at,
        ScheduleSlotModel.ends_at > starts_at,
    )
    if exclude_slot_id is not None:
        stmt = stmt.where(ScheduleSlotModel.id != exclude_slot_id)
    result = await db.execute(stmt.limit(1))
    return result.scalars().first()


async def declare_slot(
    db: AsyncSession, doctor_id: int, starts_at: datetime, ends_at: datetime
) -> ScheduleSlotModel:
    """
    Create an available slot for a doctor.

    Raises:
        ValidationError: Bad time range.
        ConflictError: The range overlaps one of the doctor's existing slots.
    """
    validate_slot_range(starts_at, ends_at)
    starts_at, ends_at = as_utc(starts_at), as_utc(ends_at)

    conflicting = await find_overlapping_slot(db, doctor_id, starts_at, ends_at)
    if conflicting:
        logger.warning(
            f"CRUD: Slot {starts_at}-{ends_at} for doctor_id={doctor_id} "
            f"overlaps slot_id={conflicting.id}"
        )
        raise ConflictError(SLOT_CONFLICT_MESSAGE, {"conflicting_slot_id": conflicting.id})

    slot = ScheduleSlotModel(
        doctor_id=doctor_id,
        starts_at=starts_at,
        ends_at=ends_at,
        is_available=True,
        version=1,
    )
    db.add(slot)
    await db.flush()
    await db.refresh(slot)
    logger.info(f"CRUD: Declared slot_id={slot.id} for doctor_id={doctor_id} {starts_at}-{ends_at}")
    return slot


async def list_available_slots(
    db: AsyncSession,
    doctor_id: int,
    on_date: Optional[date] = None,
    now: Optional[datetime] = None,
) -> Dict[date, List[ScheduleSlotModel]]:
    """
    Future available slots of a doctor grouped by calendar date (UTC), in start order.

    Args:
        db: Database session
        doctor_id: The doctor's user ID
        on_date: Restrict to slots starting on this date
        now: Reference instant, defaults to the current time
    """
    now = as_utc(now) if now else datetime.now(timezone.utc)
    stmt = select(ScheduleSlotModel).where(
        ScheduleSlotModel.doctor_id == doctor_id,
        ScheduleSlotModel.is_available.is_(True),
        ScheduleSlotModel.starts_at >= now,
    )
    if on_date is not None:
        day_start = datetime.combine(on_date, time.min, tzinfo=timezone.utc)
        stmt = stmt.where(
            ScheduleSlotModel.starts_at >= day_start,
            ScheduleSlotModel.starts_at < day_start + timedelta(days=1),
        )
    result = await db.execute(stmt.order_by(ScheduleSlotModel.starts_at))

    grouped: Dict[date, List[ScheduleSlotModel]] = OrderedDict()
    for slot in result.scalars().all():
        grouped.setdefault(slot.starts_at.date(), []).append(slot)

    logger.debug(
        f"CRUD: {sum(len(v) for v in grouped.values())} available slots for doctor_id={doctor_id} "
        f"across {len(grouped)} day(s), on_date={on_date}"
    )
    return grouped


async def list_doctor_slots(
    db: AsyncSession, doctor_id: int, now: Optional[datetime] = None
) -> List[ScheduleSlotModel]:
    """All of a doctor's slots from the start of today onwards, booked or not."""
    now = as_utc(now) if now else datetime.now(timezone.utc)
    start_of_today = datetime.combine(now.date(), time.min, tzinfo=timezone.utc)
    result = await db.execute(
        select(ScheduleSlotModel)
        .where(
            ScheduleSlotModel.doctor_id == doctor_id,
            ScheduleSlotModel.starts_at >= start_of_today,
        )
        .order_by(ScheduleSlotModel.starts_at)
    )
    return list(result.scalars().all())


async def get_slot_for_doctor(
    db: AsyncSession, slot_id: int, doctor_id: int
) -> ScheduleSlotModel:
    result = await db.execute(
        select(ScheduleSlotModel).where(
            ScheduleSlotModel.id == slot_id,
            ScheduleSlotModel.doctor_id == doctor_id,
        )
    )
    slot = result.scalar_one_or_none()
    if slot is None:
        raise NotFoundError("Schedule not found", {"schedule_id": slot_id})
    return slot


async def reserve(db: AsyncSession, slot_id: int, doctor_id: int) -> ScheduleSlotModel:
    """
    Atomically flip a slot from available to unavailable.

    A single conditional UPDATE, so of two concurrent reservations of the same
    slot only one can match the row.

    Raises:
        ConflictError: The slot does not exist for this doctor or is already taken.
    """
    stmt = (
        update(ScheduleSlotModel)
        .where(
            ScheduleSlotModel.id == slot_id,
            ScheduleSlotModel.doctor_id == doctor_id,
            ScheduleSlotModel.is_available.is_(True),
        )
        .values(is_available=False, version=ScheduleSlotModel.version + 1)
        .returning(ScheduleSlotModel.id)
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    reserved_id = result.scalar_one_or_none()
    if reserved_id is None:
        logger.warning(f"CRUD: Reservation of slot_id={slot_id} for doctor_id={doctor_id} matched no available slot")
        raise ConflictError(SLOT_UNAVAILABLE_MESSAGE, {"schedule_id": slot_id})

    slot = await db.get(ScheduleSlotModel, reserved_id, populate_existing=True)
    logger.info(f"CRUD: Reserved slot_id={slot_id} (now v{slot.version})")
    return slot


async def release(
    db: AsyncSession,
    doctor_id: int,
    starts_at: datetime,
    ends_at: datetime,
    slot_id: Optional[int] = None,
) -> bool:
    """
    Atomically flip a booked slot back to available.

    Matches on `slot_id` when given, otherwise on the doctor and the exact time
    range. Finding nothing to release is not an error: it is logged and False
    is returned.
    """
    conditions = [
        ScheduleSlotModel.doctor_id == doctor_id,
        ScheduleSlotModel.is_available.is_(False),
    ]
    if slot_id is not None:
        conditions.append(ScheduleSlotModel.id == slot_id)
    else:
        conditions.append(ScheduleSlotModel.starts_at == as_utc(starts_at))
        conditions.append(ScheduleSlotModel.ends_at == as_utc(ends_at))

    stmt = (
        update(ScheduleSlotModel)
        .where(*conditions)
        .values(
            is_available=True,
            unavailable_reason=None,
            version=ScheduleSlotModel.version + 1,
        )
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    if result.rowcount == 0:
        logger.warning(
            f"CRUD: No booked slot to release for doctor_id={doctor_id} "
            f"slot_id={slot_id} {starts_at}-{ends_at}; nothing to do"
        )
        return False

    logger.info(f"CRUD: Released slot for doctor_id={doctor_id} slot_id={slot_id} {starts_at}-{ends_at}")
    return True


async def slot_has_active_appointment(db: AsyncSession, slot: ScheduleSlotModel) -> bool:
    """True when a pending or confirmed appointment was booked against this slot."""
    result = await db.execute(
        select(AppointmentModel.id)
        .where(
            AppointmentModel.status.in_([s.value for s in ACTIVE_APPOINTMENT_STATUSES]),
            or_(
                AppointmentModel.schedule_slot_id == slot.id,
                and_(
                    AppointmentModel.schedule_slot_id.is_(None),
                    AppointmentModel.doctor_id == slot.doctor_id,
                    AppointmentModel.starts_at == slot.starts_at,
                    AppointmentModel.ends_at == slot.ends_at,
                ),
            ),
        )
        .limit(1)
    )
    return result.scalar_one_or_none() is not None


async def update_slot(
    db: AsyncSession,
    slot_id: int,
    doctor_id: int,
    starts_at: Optional[datetime] = None,
    ends_at: Optional[datetime] = None,
    is_available: Optional[bool] = None,
    unavailable_reason: Optional[str] = None,
) -> ScheduleSlotModel:
    """
    Change a doctor's own slot.

    Times are re-validated against the range and overlap rules. A slot backing
    an active appointment can be neither moved nor re-opened. The write is a
    compare-and-swap on the version read here, so a booking that lands in
    between surfaces as ConcurrentModificationError.
    """
    slot = await get_slot_for_doctor(db, slot_id, doctor_id)
    loaded_version = slot.version

    new_start = as_utc(starts_at) if starts_at else slot.starts_at
    new_end = as_utc(ends_at) if ends_at else slot.ends_at
    times_changed = new_start != slot.starts_at or new_end != slot.ends_at

    if (times_changed or is_available) and await slot_has_active_appointment(db, slot):
        raise ConflictError(
            "This time slot is booked and cannot be changed",
            {"schedule_id": slot_id},
        )

    values = {}
    if times_changed:
        validate_slot_range(new_start, new_end)
        conflicting = await find_overlapping_slot(
            db, doctor_id, new_start, new_end, exclude_slot_id=slot_id
        )
        if conflicting:
            raise ConflictError(SLOT_CONFLICT_MESSAGE, {"conflicting_slot_id": conflicting.id})
        values["starts_at"] = new_start
        values["ends_at"] = new_end

    if is_available is not None and is_available != slot.is_available:
        values["is_available"] = is_available
        values["version"] = loaded_version + 1
        if is_available:
            values["unavailable_reason"] = None
    stays_available = slot.is_available if is_available is None else is_available
    if unavailable_reason is not None and not stays_available:
        values["unavailable_reason"] = unavailable_reason

    if not values:
        return slot

    result = await db.execute(
        update(ScheduleSlotModel)
        .where(
            ScheduleSlotModel.id == slot_id,
            ScheduleSlotModel.version == loaded_version,
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise ConcurrentModificationError(
            "Schedule was modified concurrently",
            {"schedule_id": slot_id, "version": loaded_version},
        )

    await db.refresh(slot)
    logger.info(f"CRUD: Updated slot_id={slot_id} fields={sorted(values)} (now v{slot.version})")
    return slot


async def delete_slot(db: AsyncSession, slot_id: int, doctor_id: int) -> None:
    """Delete a doctor's own slot unless an active appointment was booked against it."""
    slot = await get_slot_for_doctor(db, slot_id, doctor_id)
    if await slot_has_active_appointment(db, slot):
        raise ConflictError(
            "Cannot delete a time slot that has an active appointment",
            {"schedule_id": slot_id},
        )
    await db.delete(slot)
    await db.flush()
    logger.info(f"CRUD: Deleted slot_id={slot_id} of doctor_id={doctor_id}")


def slot_to_dict(slot: ScheduleSlotModel) -> Dict:
    return {
        "id": slot.id,
        "doctor_id": slot.doctor_id,
        "starts_at": slot.starts_at,
        "ends_at": slot.ends_at,
        "is_available": slot.is_available,
        "unavailable_reason": slot.unavailable_reason,
        "version": slot.version,
    }

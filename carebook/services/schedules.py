import logging
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from carebook.config.constants import Role
from carebook.core.errors import AuthorizationError, NotFoundError, ValidationError
from carebook.core.observability import (
    TransactionContext,
    TransactionObserver,
    default_observer,
)
from carebook.db.crud import schedule as schedule_crud
from carebook.db.crud.user import get_user
from carebook.db.transaction import run_in_transaction

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AsyncSession]


def _require_doctor(caller_role: str) -> None:
    if caller_role != Role.DOCTOR.value:
        raise AuthorizationError("Only doctors can manage schedules")


async def create_schedule(
    session_factory: SessionFactory,
    caller_id: int,
    caller_role: str,
    starts_at: Optional[datetime],
    ends_at: Optional[datetime],
    *,
    observer: TransactionObserver = default_observer,
    correlation_id: Optional[str] = None,
) -> Dict[str, Any]:
    _require_doctor(caller_role)
    if starts_at is None or ends_at is None:
        raise ValidationError("Missing required fields", {"missing": ["starts_at", "ends_at"]})

    tx = TransactionContext(
        operation="create_schedule",
        context={"doctor_id": caller_id},
        correlation_id=correlation_id,
    )

    async def attempt(db: AsyncSession) -> Dict[str, Any]:
        slot = await schedule_crud.declare_slot(db, caller_id, starts_at, ends_at)
        return schedule_crud.slot_to_dict(slot)

    return await run_in_transaction(
        session_factory,
        attempt,
        tx=tx,
        observer=observer,
        summarize=lambda slot: {"schedule_id": slot["id"]},
    )


async def update_schedule(
    session_factory: SessionFactory,
    slot_id: int,
    caller_id: int,
    caller_role: str,
    starts_at: Optional[datetime] = None,
    ends_at: Optional[datetime] = None,
    is_available: Optional[bool] = None,
    unavailable_reason: Optional[str] = None,
    *,
    observer: TransactionObserver = default_observer,
    correlation_id: Optional[str] = None,
) -> Dict[str, Any]:
    """Edit a doctor's own slot; a racing booking makes the version check retry the edit."""
    _require_doctor(caller_role)

    tx = TransactionContext(
        operation="update_schedule",
        context={"schedule_id": slot_id, "doctor_id": caller_id},
        correlation_id=correlation_id,
    )

    async def attempt(db: AsyncSession) -> Dict[str, Any]:
        slot = await schedule_crud.update_slot(
            db,
            slot_id,
            caller_id,
            starts_at=starts_at,
            ends_at=ends_at,
            is_available=is_available,
            unavailable_reason=unavailable_reason,
        )
        return schedule_crud.slot_to_dict(slot)

    return await run_in_transaction(session_factory, attempt, tx=tx, observer=observer)


async def delete_schedule(
    session_factory: SessionFactory,
    slot_id: int,
    caller_id: int,
    caller_role: str,
    *,
    observer: TransactionObserver = default_observer,
    correlation_id: Optional[str] = None,
) -> Dict[str, Any]:
    _require_doctor(caller_role)

    tx = TransactionContext(
        operation="delete_schedule",
        context={"schedule_id": slot_id, "doctor_id": caller_id},
        correlation_id=correlation_id,
    )

    async def attempt(db: AsyncSession) -> Dict[str, Any]:
        await schedule_crud.delete_slot(db, slot_id, caller_id)
        return {"message": "Schedule deleted successfully", "id": slot_id}

    return await run_in_transaction(session_factory, attempt, tx=tx, observer=observer)


async def get_available_schedule(
    db: AsyncSession, doctor_id: int, on_date: Optional[date] = None
) -> List[Dict[str, Any]]:
    """Bookable slots of a doctor, one entry per calendar day."""
    doctor = await get_user(db, doctor_id)
    if doctor is None or doctor.role != Role.DOCTOR.value:
        raise NotFoundError("Doctor not found", {"doctor_id": doctor_id})

    grouped = await schedule_crud.list_available_slots(db, doctor_id, on_date=on_date)
    return [
        {"date": day, "slots": [schedule_crud.slot_to_dict(s) for s in slots]}
        for day, slots in grouped.items()
    ]


async def list_own_schedule(
    db: AsyncSession, caller_id: int, caller_role: str
) -> List[Dict[str, Any]]:
    _require_doctor(caller_role)
    slots = await schedule_crud.list_doctor_slots(db, caller_id)
    return [schedule_crud.slot_to_dict(s) for s in slots]

"""Appointment lifecycle: booking, status transitions and deletion.

Every write runs through `run_in_transaction`, so slot reservation, the
overlap check and the appointment insert commit or roll back together, and a
write conflict replays the whole attempt against fresh state.

    pending   -> confirmed | cancelled
    confirmed -> completed | cancelled
    cancelled, completed: terminal
"""
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from carebook.config.constants import (
    ACTIVE_APPOINTMENT_STATUSES,
    AppointmentMode,
    AppointmentStatus,
    Role,
)
from carebook.config.settings import settings
from carebook.core.errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from carebook.core.observability import (
    TransactionContext,
    TransactionObserver,
    default_observer,
)
from carebook.db.crud import appointment as appointment_crud
from carebook.db.crud import schedule as schedule_crud
from carebook.db.crud.user import get_bookable_doctor
from carebook.db.models.appointment import AppointmentModel
from carebook.db.transaction import run_in_transaction

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AsyncSession]

ALLOWED_TRANSITIONS = {
    AppointmentStatus.PENDING: {AppointmentStatus.CONFIRMED, AppointmentStatus.CANCELLED},
    AppointmentStatus.CONFIRMED: {AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED},
    AppointmentStatus.CANCELLED: set(),
    AppointmentStatus.COMPLETED: set(),
}

# targets only the treating doctor may request
DOCTOR_ONLY_TARGETS = {AppointmentStatus.CONFIRMED, AppointmentStatus.COMPLETED}


def _parse_status(value: Any) -> AppointmentStatus:
    try:
        return AppointmentStatus(value)
    except ValueError:
        raise ValidationError("Invalid status update", {"status": value}) from None


def _parse_mode(value: Any) -> AppointmentMode:
    if value in (None, ""):
        return AppointmentMode.IN_PERSON
    try:
        return AppointmentMode(value)
    except ValueError:
        allowed = [m.value for m in AppointmentMode]
        raise ValidationError("Invalid appointment mode", {"mode": value, "allowed": allowed}) from None


def _clean_reason(reason: Optional[str]) -> str:
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("Reason is required")
    if len(reason) > settings.appointment_reason_max_length:
        raise ValidationError(
            f"Reason cannot exceed {settings.appointment_reason_max_length} characters",
            {"length": len(reason)},
        )
    return reason


def check_transition(current: AppointmentStatus, target: AppointmentStatus) -> None:
    """
    Validate a status change against the transition table.

    Raises:
        ValidationError: With a message naming the violated rule.
    """
    if target in ALLOWED_TRANSITIONS[current]:
        return
    if target == AppointmentStatus.COMPLETED:
        raise ValidationError(
            "Can only complete confirmed appointments",
            {"current_status": current.value},
        )
    if target == AppointmentStatus.CONFIRMED:
        raise ValidationError(
            "Can only approve or reject pending appointments",
            {"current_status": current.value},
        )
    if target == AppointmentStatus.CANCELLED:
        raise ValidationError(
            "Can only cancel pending or confirmed appointments",
            {"current_status": current.value},
        )
    raise ValidationError(
        "Invalid status update",
        {"current_status": current.value, "requested_status": target.value},
    )


def authorize_transition(
    appointment: AppointmentModel, caller_id: int, target: AppointmentStatus
) -> None:
    """Owning doctor may do anything in the table; owning patient may only cancel."""
    is_doctor = appointment.doctor_id == caller_id
    is_patient = appointment.patient_id == caller_id
    if not (is_doctor or is_patient):
        raise AuthorizationError(
            "Not authorized to update this appointment",
            {"appointment_id": appointment.id},
        )
    if target in DOCTOR_ONLY_TARGETS and not is_doctor:
        raise AuthorizationError(
            "Only the appointment's doctor can approve or complete it",
            {"appointment_id": appointment.id, "requested_status": target.value},
        )


async def book_appointment(
    session_factory: SessionFactory,
    patient_id: int,
    doctor_id: Optional[int],
    schedule_id: Optional[int],
    reason: Optional[str],
    mode: Optional[str] = None,
    notes: Optional[str] = None,
    *,
    observer: TransactionObserver = default_observer,
    correlation_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Book a schedule slot for a patient, creating a pending appointment.

    Args:
        session_factory: Factory for transaction sessions.
        patient_id: The booking patient's user ID.
        doctor_id: The doctor owning the slot.
        schedule_id: The slot to consume.
        reason: Free-text reason for the visit.
        mode: 'in-person' (default) or 'telehealth'.
        notes: Optional notes.
        observer: Transaction event sink.
        correlation_id: Request id carried into transaction events.
        now: Reference instant for the future-slot rule (tests).

    Returns:
        The created appointment with doctor/patient display fields.

    Raises:
        ValidationError: Missing fields, bad mode/reason, slot in the past or inverted.
        NotFoundError: Doctor missing, inactive or unverified.
        ConflictError: Slot taken, or the patient already has an overlapping appointment.
        TransactionError: Write conflicts persisted past the retry bound.
    """
    missing = [
        name
        for name, value in (("doctor_id", doctor_id), ("schedule_id", schedule_id), ("reason", reason))
        if value in (None, "") or (isinstance(value, str) and not value.strip())
    ]
    if missing:
        raise ValidationError("Missing required fields", {"missing": missing})
    clean_reason = _clean_reason(reason)
    booking_mode = _parse_mode(mode)

    tx = TransactionContext(
        operation="book_appointment",
        context={"patient_id": patient_id, "doctor_id": doctor_id, "schedule_id": schedule_id},
        correlation_id=correlation_id,
    )

    async def attempt(db: AsyncSession) -> Dict[str, Any]:
        doctor = await get_bookable_doctor(db, doctor_id)
        if doctor is None:
            raise NotFoundError("Doctor not found or inactive", {"doctor_id": doctor_id})

        # compare-and-swap; rolled back with everything else if a later step fails
        slot = await schedule_crud.reserve(db, schedule_id, doctor_id)

        current = now or datetime.now(timezone.utc)
        if slot.starts_at <= current:
            raise ValidationError(
                "Invalid appointment time: cannot book a time slot in the past",
                {"schedule_id": schedule_id, "starts_at": slot.starts_at.isoformat()},
            )
        if slot.starts_at >= slot.ends_at:
            raise ValidationError(
                "Invalid time range: appointment end time must be after start time",
                {"schedule_id": schedule_id},
            )

        overlapping = await appointment_crud.find_overlapping_for_patient(
            db, patient_id, slot.starts_at, slot.ends_at, now=current
        )
        if overlapping is not None:
            raise ConflictError(
                "You already have an appointment during this time",
                {"conflicting_appointment_id": overlapping.id},
            )

        created = await appointment_crud.create_appointment(
            db,
            patient_id=patient_id,
            slot=slot,
            reason=clean_reason,
            mode=booking_mode,
            notes=notes,
        )
        loaded = await appointment_crud.get_appointment(db, created.id)
        return appointment_crud.appointment_to_dict(loaded)

    return await run_in_transaction(
        session_factory,
        attempt,
        tx=tx,
        observer=observer,
        summarize=lambda appt: {"appointment_id": appt["id"], "status": appt["status"]},
    )


async def update_appointment_status(
    session_factory: SessionFactory,
    appointment_id: int,
    caller_id: int,
    status: Any,
    notes: Optional[str] = None,
    reason: Optional[str] = None,
    *,
    observer: TransactionObserver = default_observer,
    correlation_id: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Move an appointment along the state machine.

    Cancelling releases the slot the appointment consumed. `notes` may be set
    by the doctor and `reason` by the patient in the same transaction.

    Raises:
        NotFoundError: Unknown appointment.
        AuthorizationError: Caller is not a party, or a patient asked to approve/complete.
        ValidationError: Unknown status or a transition outside the table.
    """
    if status in (None, ""):
        raise ValidationError("Missing required fields", {"missing": ["status"]})
    target = _parse_status(status)
    clean_reason = _clean_reason(reason) if reason is not None else None

    tx = TransactionContext(
        operation="update_appointment_status",
        context={"appointment_id": appointment_id, "caller_id": caller_id, "status": target.value},
        correlation_id=correlation_id,
    )

    async def attempt(db: AsyncSession) -> Dict[str, Any]:
        appointment = await appointment_crud.get_appointment(db, appointment_id)
        if appointment is None:
            raise NotFoundError("Appointment not found", {"appointment_id": appointment_id})

        authorize_transition(appointment, caller_id, target)
        current = AppointmentStatus(appointment.status)
        check_transition(current, target)

        if notes is not None:
            if appointment.doctor_id != caller_id:
                raise AuthorizationError("Only the appointment's doctor can edit notes")
            appointment.notes = notes
        if clean_reason is not None:
            if appointment.patient_id != caller_id:
                raise AuthorizationError("Only the patient can change the appointment reason")
            appointment.reason = clean_reason

        appointment.status = target.value
        if target == AppointmentStatus.CANCELLED:
            await schedule_crud.release(
                db,
                appointment.doctor_id,
                appointment.starts_at,
                appointment.ends_at,
                slot_id=appointment.schedule_slot_id,
            )

        await db.flush()
        logger.info(
            f"Appointment {appointment_id}: {current.value} -> {target.value} by user {caller_id}"
        )
        return appointment_crud.appointment_to_dict(appointment)

    return await run_in_transaction(
        session_factory,
        attempt,
        tx=tx,
        observer=observer,
        summarize=lambda appt: {"appointment_id": appt["id"], "status": appt["status"]},
    )


async def delete_appointment(
    session_factory: SessionFactory,
    appointment_id: int,
    requester_id: int,
    *,
    observer: TransactionObserver = default_observer,
    correlation_id: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Hard delete an appointment on behalf of the patient who booked it.

    Only pending or confirmed appointments can be deleted; their slot is
    released in the same transaction.
    """
    tx = TransactionContext(
        operation="delete_appointment",
        context={"appointment_id": appointment_id, "requester_id": requester_id},
        correlation_id=correlation_id,
    )

    async def attempt(db: AsyncSession) -> Dict[str, Any]:
        appointment = await appointment_crud.get_appointment(db, appointment_id, with_parties=False)
        if appointment is None:
            raise NotFoundError("Appointment not found", {"appointment_id": appointment_id})
        if appointment.patient_id != requester_id:
            raise AuthorizationError(
                "Not authorized to delete this appointment",
                {"appointment_id": appointment_id},
            )
        if AppointmentStatus(appointment.status) not in ACTIVE_APPOINTMENT_STATUSES:
            raise ValidationError(
                "Only pending or confirmed appointments can be deleted",
                {"current_status": appointment.status},
            )

        await schedule_crud.release(
            db,
            appointment.doctor_id,
            appointment.starts_at,
            appointment.ends_at,
            slot_id=appointment.schedule_slot_id,
        )
        await appointment_crud.delete_appointment(db, appointment)
        return {"message": "Appointment deleted successfully", "id": appointment_id}

    return await run_in_transaction(session_factory, attempt, tx=tx, observer=observer)


async def get_appointment_for_user(
    db: AsyncSession, appointment_id: int, user_id: int, role: str
) -> Dict[str, Any]:
    """Read one appointment; only its doctor, its patient or an admin may see it."""
    appointment = await appointment_crud.get_appointment(db, appointment_id)
    if appointment is None:
        raise NotFoundError("Appointment not found", {"appointment_id": appointment_id})
    if (
        appointment.patient_id != user_id
        and appointment.doctor_id != user_id
        and role != Role.ADMIN.value
    ):
        raise AuthorizationError("Not authorized to access this appointment")
    return appointment_crud.appointment_to_dict(appointment)


async def list_appointments_for_user(
    db: AsyncSession, role: str, user_id: int, caller_id: int, caller_role: str
) -> List[Dict[str, Any]]:
    """Listing for /appointments/{role}/{user_id}; callers may only list themselves unless admin."""
    if caller_role != Role.ADMIN.value and caller_id != user_id:
        raise AuthorizationError("Not authorized to view these appointments")
    appointments = await appointment_crud.find_for_role(db, role, user_id)
    return [appointment_crud.appointment_to_dict(a) for a in appointments]

import logging
from datetime import datetime, timezone
from typing import List, Optional, Dict, Any

from sqlalchemy import select
from sqlalchemy.orm import selectinload
from sqlalchemy.ext.asyncio import AsyncSession

from carebook.config.constants import AppointmentMode, AppointmentStatus, Role
from carebook.core.errors import ValidationError
from carebook.db.column_types import as_utc
from carebook.db.models.appointment import AppointmentModel
from carebook.db.models.schedule_slot import ScheduleSlotModel
from carebook.db.models.user import UserModel

logger = logging.getLogger(__name__)


def _with_parties(query):
    """Eager load doctor and patient profiles used for display fields."""
    return query.options(
        selectinload(AppointmentModel.doctor).selectinload(UserModel.doctor_profile),
        selectinload(AppointmentModel.patient).selectinload(UserModel.patient_profile),
    )


def appointment_to_dict(appt: AppointmentModel) -> Dict[str, Any]:
    """
    Flatten an appointment with its doctor/patient display fields.

    Expects the `doctor` and `patient` relationships (and their profiles) to be
    loaded already; missing profiles fall back to placeholders.
    """
    doctor_profile = None
    if appt.doctor is not None and appt.doctor.doctor_profile is not None:
        doctor_profile = {
            "first_name": appt.doctor.doctor_profile.first_name,
            "last_name": appt.doctor.doctor_profile.last_name,
            "specialty": appt.doctor.doctor_profile.specialty,
        }
    patient_profile = None
    if appt.patient is not None and appt.patient.patient_profile is not None:
        patient_profile = {
            "first_name": appt.patient.patient_profile.first_name,
            "last_name": appt.patient.patient_profile.last_name,
        }

    return {
        "id": appt.id,
        "patient_id": appt.patient_id,
        "doctor_id": appt.doctor_id,
        "schedule_slot_id": appt.schedule_slot_id,
        "starts_at": appt.starts_at,
        "ends_at": appt.ends_at,
        "status": appt.status,
        "reason": appt.reason,
        "mode": appt.mode,
        "notes": appt.notes,
        "has_prescription": appt.has_prescription,
        "created_at": appt.created_at,
        "doctor_profile": doctor_profile,
        "patient_profile": patient_profile,
    }


async def find_for_role(
    db: AsyncSession, role: str, user_id: int
) -> List[AppointmentModel]:
    """
    Appointments where the user is the doctor or the patient, earliest first.

    Args:
        db: Database session
        role: 'doctor' or 'patient'; selects which side of the appointment to match
        user_id: The user's ID

    Raises:
        ValidationError: For any other role.
    """
    logger.debug(f"CRUD find_for_role: role='{role}', user_id={user_id}")

    query = select(AppointmentModel)
    if role == Role.DOCTOR.value:
        query = query.where(AppointmentModel.doctor_id == int(user_id))
    elif role == Role.PATIENT.value:
        query = query.where(AppointmentModel.patient_id == int(user_id))
    else:
        raise ValidationError("Invalid role", {"role": role})

    query = _with_parties(query).order_by(AppointmentModel.starts_at, AppointmentModel.id)
    result = await db.execute(query)
    appointments = list(result.scalars().all())

    logger.info(f"CRUD find_for_role: Found {len(appointments)} appointments for {role} {user_id}.")
    return appointments


async def get_appointment(
    db: AsyncSession, appointment_id: int, with_parties: bool = True
) -> Optional[AppointmentModel]:
    """Load one appointment, optionally with doctor/patient profiles."""
    query = select(AppointmentModel).where(AppointmentModel.id == appointment_id)
    if with_parties:
        query = _with_parties(query).execution_options(populate_existing=True)
    result = await db.execute(query)
    return result.scalar_one_or_none()


async def find_overlapping_for_patient(
    db: AsyncSession,
    patient_id: int,
    starts_at: datetime,
    ends_at: datetime,
    exclude_status: AppointmentStatus = AppointmentStatus.CANCELLED,
    now: Optional[datetime] = None,
) -> Optional[AppointmentModel]:
    """
    Return an appointment of the patient whose [start, end) intersects the range.

    Appointments in `exclude_status` are ignored, as are appointments that had
    already ended at `now`: a past visit never blocks a future booking.
    """
    now = as_utc(now) if now else datetime.now(timezone.utc)
    result = await db.execute(
        select(AppointmentModel)
        .where(
            AppointmentModel.patient_id == patient_id,
            AppointmentModel.status != exclude_status.value,
            AppointmentModel.starts_at < as_utc(ends_at),
            AppointmentModel.ends_at > as_utc(starts_at),
            AppointmentModel.ends_at > now,
        )
        .limit(1)
    )
    return result.scalars().first()


async def create_appointment(
    db: AsyncSession,
    patient_id: int,
    slot: ScheduleSlotModel,
    reason: str,
    mode: AppointmentMode = AppointmentMode.IN_PERSON,
    notes: Optional[str] = None,
) -> AppointmentModel:
    """
    Insert a pending appointment for the given (already reserved) slot.

    Start and end are copied from the slot; the slot id is kept so that
    cancellation releases exactly this slot.
    """
    appointment = AppointmentModel(
        patient_id=patient_id,
        doctor_id=slot.doctor_id,
        schedule_slot_id=slot.id,
        starts_at=slot.starts_at,
        ends_at=slot.ends_at,
        status=AppointmentStatus.PENDING.value,
        reason=reason,
        mode=AppointmentMode(mode).value,
        notes=notes,
        has_prescription=False,
    )
    db.add(appointment)
    await db.flush()
    logger.info(
        f"CRUD: Created appointment_id={appointment.id} patient_id={patient_id} "
        f"doctor_id={slot.doctor_id} slot_id={slot.id} status='{appointment.status}'."
    )
    return appointment


async def delete_appointment(db: AsyncSession, appointment: AppointmentModel) -> None:
    """Hard delete an appointment row; slot handling is the caller's job."""
    await db.delete(appointment)
    await db.flush()
    logger.info(f"CRUD: Hard deleted appointment_id={appointment.id}")

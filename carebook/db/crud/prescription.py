import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import inspect, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from carebook.config.constants import AppointmentStatus, Role
from carebook.core.errors import ValidationError
from carebook.db.models.appointment import AppointmentModel
from carebook.db.models.prescription import PrescriptionModel
from carebook.db.models.user import UserModel

logger = logging.getLogger(__name__)


def prescription_to_dict(prescription: PrescriptionModel) -> Dict[str, Any]:
    """Flatten a prescription; party names are included when loaded."""
    doctor_name = patient_name = None
    unloaded = inspect(prescription).unloaded
    if "doctor" not in unloaded and prescription.doctor is not None and prescription.doctor.doctor_profile is not None:
        profile = prescription.doctor.doctor_profile
        doctor_name = f"{profile.first_name} {profile.last_name}"
    if "patient" not in unloaded and prescription.patient is not None and prescription.patient.patient_profile is not None:
        profile = prescription.patient.patient_profile
        patient_name = f"{profile.first_name} {profile.last_name}"

    return {
        "id": prescription.id,
        "patient_id": prescription.patient_id,
        "doctor_id": prescription.doctor_id,
        "appointment_id": prescription.appointment_id,
        "medications": list(prescription.medications or []),
        "diagnosis": prescription.diagnosis,
        "issued_date": prescription.issued_date,
        "expiry_date": prescription.expiry_date,
        "status": prescription.status,
        "doctor_name": doctor_name,
        "patient_name": patient_name,
    }


async def get_completed_appointment_for_doctor(
    db: AsyncSession, appointment_id: int, doctor_id: int
) -> Optional[AppointmentModel]:
    """The appointment if it exists, belongs to the doctor and is completed."""
    result = await db.execute(
        select(AppointmentModel).where(
            AppointmentModel.id == appointment_id,
            AppointmentModel.doctor_id == doctor_id,
            AppointmentModel.status == AppointmentStatus.COMPLETED.value,
        )
    )
    return result.scalar_one_or_none()


async def find_by_appointment(
    db: AsyncSession, appointment_id: int
) -> Optional[PrescriptionModel]:
    result = await db.execute(
        select(PrescriptionModel).where(PrescriptionModel.appointment_id == appointment_id)
    )
    return result.scalar_one_or_none()


async def get_prescription(
    db: AsyncSession, prescription_id: int
) -> Optional[PrescriptionModel]:
    return await db.get(PrescriptionModel, prescription_id)


async def list_for_role(
    db: AsyncSession, role: str, user_id: int
) -> List[PrescriptionModel]:
    """Prescriptions where the user is the issuing doctor or the patient, newest first."""
    query = select(PrescriptionModel).options(
        selectinload(PrescriptionModel.doctor).selectinload(UserModel.doctor_profile),
        selectinload(PrescriptionModel.patient).selectinload(UserModel.patient_profile),
    )
    if role == Role.DOCTOR.value:
        query = query.where(PrescriptionModel.doctor_id == int(user_id))
    elif role == Role.PATIENT.value:
        query = query.where(PrescriptionModel.patient_id == int(user_id))
    else:
        raise ValidationError("Invalid role", {"role": role})

    result = await db.execute(
        query.order_by(PrescriptionModel.issued_date.desc(), PrescriptionModel.id.desc())
    )
    prescriptions = list(result.scalars().all())
    logger.info(f"CRUD: Found {len(prescriptions)} prescriptions for {role} {user_id}")
    return prescriptions

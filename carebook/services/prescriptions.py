"""Prescription issuance for completed appointments."""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from carebook.config.constants import PrescriptionStatus, Role
from carebook.config.settings import settings
from carebook.core.errors import (
    AuthorizationError,
    DuplicatePrescriptionError,
    NotFoundError,
    ValidationError,
)
from carebook.core.observability import (
    TransactionContext,
    TransactionObserver,
    default_observer,
)
from carebook.db.column_types import as_utc
from carebook.db.crud import prescription as prescription_crud
from carebook.db.models.appointment import AppointmentModel
from carebook.db.models.prescription import PrescriptionModel
from carebook.db.transaction import run_in_transaction

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AsyncSession]

MEDICATION_FIELDS = ("name", "dosage", "frequency", "duration")
UPDATABLE_FIELDS = {"medications", "diagnosis", "status", "expiry_date"}


def validate_medications(medications: Any) -> List[Dict[str, str]]:
    """
    Check every medication entry and report all problems at once.

    Returns:
        The medications with surrounding whitespace stripped.

    Raises:
        ValidationError: "Invalid medication data" with one message per problem.
    """
    if not isinstance(medications, list) or not medications:
        raise ValidationError(
            "Invalid medication data",
            {"errors": ["At least one medication is required"]},
        )

    errors = []
    cleaned = []
    for index, medication in enumerate(medications, start=1):
        if not isinstance(medication, Mapping):
            errors.append(f"Medication {index}: must be an object")
            continue
        entry = {}
        for field in MEDICATION_FIELDS:
            value = medication.get(field)
            if not isinstance(value, str) or not value.strip():
                errors.append(f"Medication {index}: {field} is required")
            else:
                entry[field] = value.strip()
        cleaned.append(entry)

    if errors:
        raise ValidationError("Invalid medication data", {"errors": errors})
    return cleaned


def validate_expiry(
    appointment_start: datetime, expiry_date: datetime, now: Optional[datetime] = None
) -> datetime:
    """Expiry must follow the appointment, lie in the future and within the validity window."""
    if expiry_date is None:
        raise ValidationError("Expiry date cannot be empty")
    expiry_date = as_utc(expiry_date)
    now = as_utc(now) if now else datetime.now(timezone.utc)

    if expiry_date <= as_utc(appointment_start):
        raise ValidationError("Expiry date must be after appointment date")
    if expiry_date <= now:
        raise ValidationError("Expiry date must be in the future")
    if expiry_date > now + timedelta(days=settings.prescription_max_validity_days):
        raise ValidationError("Expiry date cannot be more than one year from now")
    return expiry_date


def _require_doctor(caller_role: str, action: str) -> None:
    if caller_role != Role.DOCTOR.value:
        raise AuthorizationError(f"Only doctors can {action} prescriptions")


async def create_prescription(
    session_factory: SessionFactory,
    caller_id: int,
    caller_role: str,
    appointment_id: Optional[int],
    medications: Any,
    diagnosis: Optional[str],
    expiry_date: Optional[datetime],
    *,
    observer: TransactionObserver = default_observer,
    correlation_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Issue the prescription for a completed appointment of the calling doctor.

    Raises:
        AuthorizationError: Caller is not a doctor.
        ValidationError: Missing fields, bad medications, wrong appointment or expiry.
        DuplicatePrescriptionError: The appointment already has a prescription.
        TransactionError: Write conflicts persisted past the retry bound.
    """
    _require_doctor(caller_role, "create")

    missing = [
        name
        for name, value in (
            ("appointment_id", appointment_id),
            ("medications", medications),
            ("diagnosis", diagnosis),
            ("expiry_date", expiry_date),
        )
        if value in (None, "", [])
    ]
    if missing:
        raise ValidationError("Missing required fields", {"missing": missing})
    cleaned_medications = validate_medications(medications)

    tx = TransactionContext(
        operation="create_prescription",
        context={"appointment_id": appointment_id, "doctor_id": caller_id},
        correlation_id=correlation_id,
    )

    async def attempt(db: AsyncSession) -> Dict[str, Any]:
        appointment = await prescription_crud.get_completed_appointment_for_doctor(
            db, appointment_id, caller_id
        )
        if appointment is None:
            raise ValidationError(
                "Appointment not found, not yours, or not completed",
                {"appointment_id": appointment_id},
            )

        expiry = validate_expiry(appointment.starts_at, expiry_date, now=now)

        if await prescription_crud.find_by_appointment(db, appointment_id) is not None:
            raise DuplicatePrescriptionError(appointment_id)

        prescription = PrescriptionModel(
            patient_id=appointment.patient_id,
            doctor_id=caller_id,
            appointment_id=appointment_id,
            medications=cleaned_medications,
            diagnosis=diagnosis.strip(),
            issued_date=appointment.starts_at,
            expiry_date=expiry,
            status=PrescriptionStatus.ACTIVE.value,
        )
        db.add(prescription)
        appointment.has_prescription = True
        try:
            await db.flush()
        except IntegrityError as exc:
            # a concurrent issuer won the unique constraint
            raise DuplicatePrescriptionError(appointment_id) from exc

        logger.info(
            f"Prescription {prescription.id} issued for appointment {appointment_id} "
            f"by doctor {caller_id}"
        )
        return prescription_crud.prescription_to_dict(prescription)

    try:
        return await run_in_transaction(
            session_factory,
            attempt,
            tx=tx,
            observer=observer,
            summarize=lambda p: {"prescription_id": p["id"]},
        )
    except IntegrityError as exc:
        raise DuplicatePrescriptionError(appointment_id) from exc


async def update_prescription(
    session_factory: SessionFactory,
    prescription_id: int,
    caller_id: int,
    caller_role: str,
    patch: Dict[str, Any],
    *,
    observer: TransactionObserver = default_observer,
    correlation_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Apply a partial update; only the issuing doctor may change a prescription."""
    _require_doctor(caller_role, "update")

    invalid = sorted(set(patch) - UPDATABLE_FIELDS)
    if invalid:
        raise ValidationError(
            "Invalid updates",
            {"invalid_fields": invalid, "allowed_fields": sorted(UPDATABLE_FIELDS)},
        )
    if not patch:
        raise ValidationError("No fields to update")

    changes = dict(patch)
    if "medications" in changes:
        changes["medications"] = validate_medications(changes["medications"])
    if "diagnosis" in changes:
        diagnosis = changes["diagnosis"]
        if not isinstance(diagnosis, str) or not diagnosis.strip():
            raise ValidationError("Diagnosis cannot be empty")
        changes["diagnosis"] = diagnosis.strip()
    if "expiry_date" in changes and changes["expiry_date"] is None:
        raise ValidationError("Expiry date cannot be empty")
    if "status" in changes:
        try:
            changes["status"] = PrescriptionStatus(changes["status"]).value
        except ValueError:
            raise ValidationError("Invalid prescription status", {"status": changes["status"]}) from None

    tx = TransactionContext(
        operation="update_prescription",
        context={"prescription_id": prescription_id, "doctor_id": caller_id, "fields": sorted(changes)},
        correlation_id=correlation_id,
    )

    async def attempt(db: AsyncSession) -> Dict[str, Any]:
        prescription = await prescription_crud.get_prescription(db, prescription_id)
        if prescription is None:
            raise NotFoundError("Prescription not found", {"prescription_id": prescription_id})
        if prescription.doctor_id != caller_id:
            raise AuthorizationError("Not authorized to update this prescription")

        if "expiry_date" in changes:
            changes["expiry_date"] = validate_expiry(
                prescription.issued_date, changes["expiry_date"], now=now
            )
        for field, value in changes.items():
            setattr(prescription, field, value)
        await db.flush()
        return prescription_crud.prescription_to_dict(prescription)

    return await run_in_transaction(session_factory, attempt, tx=tx, observer=observer)


async def delete_prescription(
    session_factory: SessionFactory,
    prescription_id: int,
    caller_id: int,
    caller_role: str,
    *,
    observer: TransactionObserver = default_observer,
    correlation_id: Optional[str] = None,
) -> Dict[str, Any]:
    """Delete a prescription and clear its appointment's has_prescription flag."""
    _require_doctor(caller_role, "delete")

    tx = TransactionContext(
        operation="delete_prescription",
        context={"prescription_id": prescription_id, "doctor_id": caller_id},
        correlation_id=correlation_id,
    )

    async def attempt(db: AsyncSession) -> Dict[str, Any]:
        prescription = await prescription_crud.get_prescription(db, prescription_id)
        if prescription is None:
            raise NotFoundError("Prescription not found", {"prescription_id": prescription_id})
        if prescription.doctor_id != caller_id:
            raise AuthorizationError("Not authorized to delete this prescription")

        appointment = await db.get(AppointmentModel, prescription.appointment_id)
        if appointment is not None:
            appointment.has_prescription = False
        await db.delete(prescription)
        await db.flush()
        logger.info(f"Prescription {prescription_id} deleted by doctor {caller_id}")
        return {"message": "Prescription deleted successfully", "id": prescription_id}

    return await run_in_transaction(session_factory, attempt, tx=tx, observer=observer)


async def list_prescriptions_for_user(
    db: AsyncSession, role: str, user_id: int, caller_id: int, caller_role: str
) -> List[Dict[str, Any]]:
    if caller_role != Role.ADMIN.value and caller_id != user_id:
        raise AuthorizationError("Not authorized to view these prescriptions")
    prescriptions = await prescription_crud.list_for_role(db, role, user_id)
    return [prescription_crud.prescription_to_dict(p) for p in prescriptions]

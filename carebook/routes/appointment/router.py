import logging
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from carebook.core.middleware import (
    get_active_user,
    get_db,
    get_request_id,
    get_transaction_observer,
    require_roles,
)
from carebook.db.session import get_session_factory_from_request
from carebook.schemas.shared import ERROR_RESPONSES
from carebook.schemas.appointment import (
    Appointment,
    AppointmentCreate,
    AppointmentStatusUpdate,
    MessageResponse,
)
from carebook.services import appointments as appointment_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/appointments", tags=["appointments"], responses=ERROR_RESPONSES)


@router.post("", response_model=Appointment, status_code=201)
async def create_appointment_route(
    appointment: AppointmentCreate,
    request: Request,
    current_user: Dict[str, Any] = Depends(require_roles(["patient"])),
):
    """Book a schedule slot for the current patient"""
    return await appointment_service.book_appointment(
        get_session_factory_from_request(request),
        patient_id=current_user["user_id"],
        doctor_id=appointment.doctor_id,
        schedule_id=appointment.schedule_id,
        reason=appointment.reason,
        mode=appointment.mode,
        notes=appointment.notes,
        observer=get_transaction_observer(request),
        correlation_id=get_request_id(request),
    )


@router.get("/{role}/{user_id}", response_model=List[Appointment])
async def get_appointments_route(
    role: str,
    user_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: Dict[str, Any] = Depends(get_active_user),
):
    """List the appointments of a doctor or a patient"""
    return await appointment_service.list_appointments_for_user(
        db,
        role=role,
        user_id=user_id,
        caller_id=current_user["user_id"],
        caller_role=current_user["role"],
    )


@router.get("/{appointment_id}", response_model=Appointment)
async def get_appointment_route(
    appointment_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: Dict[str, Any] = Depends(get_active_user),
):
    """Get a specific appointment by ID"""
    return await appointment_service.get_appointment_for_user(
        db, appointment_id, current_user["user_id"], current_user["role"]
    )


@router.put("/{appointment_id}", response_model=Appointment)
async def update_appointment_route(
    appointment_id: int,
    update: AppointmentStatusUpdate,
    request: Request,
    current_user: Dict[str, Any] = Depends(get_active_user),
):
    """Approve, complete or cancel an appointment"""
    return await appointment_service.update_appointment_status(
        get_session_factory_from_request(request),
        appointment_id,
        caller_id=current_user["user_id"],
        status=update.status,
        notes=update.notes,
        reason=update.reason,
        observer=get_transaction_observer(request),
        correlation_id=get_request_id(request),
    )


@router.delete("/{appointment_id}", response_model=MessageResponse)
async def delete_appointment_route(
    appointment_id: int,
    request: Request,
    current_user: Dict[str, Any] = Depends(get_active_user),
):
    """Delete an appointment the current patient booked"""
    logger.info(f"Attempting to delete appointment {appointment_id} by user: {current_user}")
    return await appointment_service.delete_appointment(
        get_session_factory_from_request(request),
        appointment_id,
        requester_id=current_user["user_id"],
        observer=get_transaction_observer(request),
        correlation_id=get_request_id(request),
    )

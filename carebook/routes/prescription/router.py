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
from carebook.schemas.appointment import MessageResponse
from carebook.schemas.prescription import Prescription, PrescriptionCreate, PrescriptionUpdate
from carebook.services import prescriptions as prescription_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/prescriptions", tags=["prescriptions"], responses=ERROR_RESPONSES)


@router.post("", response_model=Prescription, status_code=201)
async def create_prescription_route(
    prescription: PrescriptionCreate,
    request: Request,
    current_user: Dict[str, Any] = Depends(require_roles(["doctor"])),
):
    """Issue the prescription for one of the doctor's completed appointments"""
    return await prescription_service.create_prescription(
        get_session_factory_from_request(request),
        caller_id=current_user["user_id"],
        caller_role=current_user["role"],
        appointment_id=prescription.appointment_id,
        medications=prescription.medications,
        diagnosis=prescription.diagnosis,
        expiry_date=prescription.expiry_date,
        observer=get_transaction_observer(request),
        correlation_id=get_request_id(request),
    )


@router.get("/{role}/{user_id}", response_model=List[Prescription])
async def get_prescriptions_route(
    role: str,
    user_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: Dict[str, Any] = Depends(get_active_user),
):
    return await prescription_service.list_prescriptions_for_user(
        db,
        role=role,
        user_id=user_id,
        caller_id=current_user["user_id"],
        caller_role=current_user["role"],
    )


@router.put("/{prescription_id}", response_model=Prescription)
async def update_prescription_route(
    prescription_id: int,
    update: PrescriptionUpdate,
    request: Request,
    current_user: Dict[str, Any] = Depends(get_active_user),
):
    return await prescription_service.update_prescription(
        get_session_factory_from_request(request),
        prescription_id,
        caller_id=current_user["user_id"],
        caller_role=current_user["role"],
        patch=update.model_dump(exclude_unset=True),
        observer=get_transaction_observer(request),
        correlation_id=get_request_id(request),
    )


@router.delete("/{prescription_id}", response_model=MessageResponse)
async def delete_prescription_route(
    prescription_id: int,
    request: Request,
    current_user: Dict[str, Any] = Depends(get_active_user),
):
    logger.info(f"Attempting to delete prescription {prescription_id} by user: {current_user}")
    return await prescription_service.delete_prescription(
        get_session_factory_from_request(request),
        prescription_id,
        caller_id=current_user["user_id"],
        caller_role=current_user["role"],
        observer=get_transaction_observer(request),
        correlation_id=get_request_id(request),
    )

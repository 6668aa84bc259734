import logging
from datetime import date
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from carebook.core.middleware import (
    get_db,
    get_request_id,
    get_transaction_observer,
    require_roles,
)
from carebook.db.session import get_session_factory_from_request
from carebook.schemas.shared import ERROR_RESPONSES
from carebook.schemas.appointment import MessageResponse
from carebook.schemas.schedule import Schedule, ScheduleCreate, ScheduleDay, ScheduleUpdate
from carebook.services import schedules as schedule_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/schedules", tags=["schedules"], responses=ERROR_RESPONSES)

doctor_only = require_roles(["doctor"])


@router.get("", response_model=List[Schedule])
async def get_own_schedule_route(
    db: AsyncSession = Depends(get_db),
    current_user: Dict[str, Any] = Depends(doctor_only),
):
    """The current doctor's slots from today onwards"""
    return await schedule_service.list_own_schedule(db, current_user["user_id"], current_user["role"])


@router.post("", response_model=Schedule, status_code=201)
async def create_schedule_route(
    schedule: ScheduleCreate,
    request: Request,
    current_user: Dict[str, Any] = Depends(doctor_only),
):
    return await schedule_service.create_schedule(
        get_session_factory_from_request(request),
        caller_id=current_user["user_id"],
        caller_role=current_user["role"],
        starts_at=schedule.starts_at,
        ends_at=schedule.ends_at,
        observer=get_transaction_observer(request),
        correlation_id=get_request_id(request),
    )


@router.put("/{schedule_id}", response_model=Schedule)
async def update_schedule_route(
    schedule_id: int,
    update: ScheduleUpdate,
    request: Request,
    current_user: Dict[str, Any] = Depends(doctor_only),
):
    return await schedule_service.update_schedule(
        get_session_factory_from_request(request),
        schedule_id,
        caller_id=current_user["user_id"],
        caller_role=current_user["role"],
        starts_at=update.starts_at,
        ends_at=update.ends_at,
        is_available=update.is_available,
        unavailable_reason=update.unavailable_reason,
        observer=get_transaction_observer(request),
        correlation_id=get_request_id(request),
    )


@router.delete("/{schedule_id}", response_model=MessageResponse)
async def delete_schedule_route(
    schedule_id: int,
    request: Request,
    current_user: Dict[str, Any] = Depends(doctor_only),
):
    return await schedule_service.delete_schedule(
        get_session_factory_from_request(request),
        schedule_id,
        caller_id=current_user["user_id"],
        caller_role=current_user["role"],
        observer=get_transaction_observer(request),
        correlation_id=get_request_id(request),
    )


@router.get("/doctor/{doctor_id}/available", response_model=List[ScheduleDay])
async def get_available_schedule_route(
    doctor_id: int,
    on_date: Optional[date] = Query(None, alias="date"),
    db: AsyncSession = Depends(get_db),
):
    """Bookable slots of a doctor grouped by day; open to anonymous callers"""
    return await schedule_service.get_available_schedule(db, doctor_id, on_date=on_date)

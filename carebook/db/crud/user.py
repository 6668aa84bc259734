# carebook/db/crud/user.py
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sqlalchemy.orm import selectinload
from typing import Optional

from carebook.config.constants import Role
from carebook.db.models.user import UserModel
from carebook.db.models.doctor import DoctorModel


async def get_user(db: AsyncSession, user_id: int) -> Optional[UserModel]:
    """
    Get a user by ID with their profiles loaded.

    Args:
        db: Database session
        user_id: User ID

    Returns:
        UserModel or None if not found
    """
    query = select(UserModel).options(
        selectinload(UserModel.patient_profile),
        selectinload(UserModel.doctor_profile)
    ).where(UserModel.id == user_id)

    result = await db.execute(query)
    return result.scalar_one_or_none()


async def get_bookable_doctor(db: AsyncSession, doctor_id: int) -> Optional[UserModel]:
    """
    Get a doctor that patients may book: role doctor, account active, profile verified.

    Returns:
        UserModel with doctor_profile loaded, or None if no such doctor
    """
    query = (
        select(UserModel)
        .join(DoctorModel, DoctorModel.user_id == UserModel.id)
        .options(selectinload(UserModel.doctor_profile))
        .where(
            UserModel.id == doctor_id,
            UserModel.role == Role.DOCTOR.value,
            UserModel.is_active.is_(True),
            DoctorModel.is_verified.is_(True),
        )
    )
    result = await db.execute(query)
    return result.scalar_one_or_none()

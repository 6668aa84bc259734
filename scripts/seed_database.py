# scripts/seed_database.py
import asyncio
import logging
import random
from datetime import date, datetime, time, timedelta, timezone as TZ
from typing import List

from sqlalchemy import select, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

# Add project root to sys.path to allow importing from carebook
import sys
from pathlib import Path

project_dir = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(project_dir))

from carebook.config.constants import Role
from carebook.config.settings import settings as app_settings
from carebook.core.auth import create_token_for_user
from carebook.core.errors import ConflictError
from carebook.db.crud.schedule import declare_slot
from carebook.db.models import DoctorModel, PatientModel, UserModel

logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger("seed_database")

# --- Configuration for Seed Data ---
NUM_DOCTORS = 6
NUM_PATIENTS = 12
SLOT_DAYS_AHEAD = 14
SLOT_MINUTES = 30
CLINIC_HOURS = (9, 17)
TOKEN_LIFETIME = timedelta(days=7)

DOCTOR_FIRST_NAMES = ["Ahmad", "Rita", "Karim", "Maya", "Tarek", "Nour", "Elie", "Lina"]
DOCTOR_LAST_NAMES = ["Khoury", "Haddad", "Nassar", "Saad", "Fares", "Mansour", "Habib"]
DOCTOR_SPECIALTIES = [
    "Cardiology",
    "Neurology",
    "Pediatrics",
    "Orthopedics",
    "Dermatology",
    "General Practice",
]
PATIENT_FIRST_NAMES = ["Alice", "Omar", "Sara", "Jad", "Lea", "Rami", "Yara", "Sami"]
PATIENT_LAST_NAMES = ["Wonder", "Smith", "Azar", "Karam", "Sarkis", "Rizk", "Hanna"]


# --- Helper Functions ---
def random_dob(start_year=1950, end_year=2005) -> date:
    year = random.randint(start_year, end_year)
    month = random.randint(1, 12)
    day = random.randint(1, 28)  # Keep it simple, avoid month-specific day counts
    return date(year, month, day)


def random_phone() -> str:
    return f"{random.randint(100, 999)}-{random.randint(100, 999)}-{random.randint(1000, 9999)}"


def random_address(i: int) -> str:
    return f"{random.randint(100, 9999)} Main St, Apt {i}, Anytown, USA"


async def clear_data(db: AsyncSession):
    logger.warning("Clearing existing data from tables...")
    await db.execute(text("DELETE FROM prescriptions;"))
    await db.execute(text("DELETE FROM appointments;"))
    await db.execute(text("DELETE FROM schedule_slots;"))
    await db.execute(text("DELETE FROM patients;"))
    await db.execute(text("DELETE FROM doctors;"))
    await db.execute(
        text("DELETE FROM users WHERE role IN ('patient', 'doctor');")
    )  # Keep admin if any
    await db.commit()
    logger.info("Relevant data cleared.")


async def get_or_create_user(db: AsyncSession, email: str, role: Role) -> tuple:
    existing = await db.execute(select(UserModel).where(UserModel.email == email))
    user = existing.scalar_one_or_none()
    if user is not None:
        logger.info(f"User {email} already exists with ID {user.id}, using existing.")
        return user, False
    user = UserModel(email=email, role=role.value, is_active=True)
    db.add(user)
    await db.flush()
    return user, True


async def seed_doctors(db: AsyncSession) -> List[UserModel]:
    logger.info(f"Seeding {NUM_DOCTORS} doctors...")
    doctors = []
    for i in range(NUM_DOCTORS):
        first_name = random.choice(DOCTOR_FIRST_NAMES)
        last_name = random.choice(DOCTOR_LAST_NAMES)
        email = f"doctor.{first_name.lower()}.{last_name.lower()}{i + 1}@example.com"
        user, created = await get_or_create_user(db, email, Role.DOCTOR)
        if created:
            db.add(
                DoctorModel(
                    user_id=user.id,
                    first_name=first_name,
                    last_name=last_name,
                    specialty=DOCTOR_SPECIALTIES[i % len(DOCTOR_SPECIALTIES)],
                    license_number=f"LIC-{user.id:05d}",
                    phone=random_phone(),
                    is_verified=True,
                )
            )
            logger.info(f"  Added to session: Dr. {first_name} {last_name} ({email}), User ID: {user.id}")
        doctors.append(user)
    await db.commit()
    logger.info(f"Committed {len(doctors)} doctors.")
    return doctors


async def seed_patients(db: AsyncSession) -> List[UserModel]:
    logger.info(f"Seeding {NUM_PATIENTS} patients...")
    patients = []
    for i in range(NUM_PATIENTS):
        first_name = random.choice(PATIENT_FIRST_NAMES)
        last_name = random.choice(PATIENT_LAST_NAMES)
        email = f"patient.{first_name.lower()}.{last_name.lower()}{i + 1}@example.com"
        user, created = await get_or_create_user(db, email, Role.PATIENT)
        if created:
            db.add(
                PatientModel(
                    user_id=user.id,
                    first_name=first_name,
                    last_name=last_name,
                    sex=random.choice(["M", "F"]),
                    dob=random_dob(1950, 2015),
                    phone=random_phone(),
                    address=random_address(i + 1),
                )
            )
            logger.info(f"  Added to session: Patient {first_name} {last_name} ({email}), User ID: {user.id}")
        patients.append(user)
    await db.commit()
    logger.info(f"Committed {len(patients)} patients.")
    return patients


async def seed_slots(db: AsyncSession, doctors: List[UserModel]) -> int:
    """Declare working-hour slots for every doctor over the coming days."""
    logger.info(f"Seeding schedule slots for the next {SLOT_DAYS_AHEAD} days...")
    created = 0
    skipped = 0
    today = datetime.now(TZ.utc).date()
    for doctor in doctors:
        for day_offset in range(1, SLOT_DAYS_AHEAD + 1):
            day = today + timedelta(days=day_offset)
            if day.weekday() >= 5:
                continue
            start = datetime.combine(day, time(CLINIC_HOURS[0]), tzinfo=TZ.utc)
            day_end = datetime.combine(day, time(CLINIC_HOURS[1]), tzinfo=TZ.utc)
            while start < day_end:
                end = start + timedelta(minutes=SLOT_MINUTES)
                try:
                    await declare_slot(db, doctor.id, start, end)
                    created += 1
                except ConflictError:
                    # re-running the seeder keeps existing slots
                    skipped += 1
                start = end
        try:
            await db.commit()
        except IntegrityError as e:
            await db.rollback()
            logger.error(f"Integrity error committing slots for doctor {doctor.id}: {e.orig}", exc_info=True)

    logger.info(f"Seeded {created} slots ({skipped} already present).")
    return created


def print_tokens(users: List[UserModel]) -> None:
    """Print a bearer token per seeded user for manual API calls."""
    print("\n# Bearer tokens (valid 7 days)")
    for user in users:
        token = create_token_for_user(user, TOKEN_LIFETIME)
        print(f"{user.role:<8} id={user.id:<4} {user.email}\n  {token}")


async def main(should_clear: bool):
    logger.info(f"Connecting to database at: {app_settings.database_url}")
    engine = create_async_engine(str(app_settings.database_url))
    AsyncSessionLocal = sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False
    )

    async with AsyncSessionLocal() as db:
        if should_clear:
            await clear_data(db)
        doctors = await seed_doctors(db)
        patients = await seed_patients(db)
        await seed_slots(db, doctors)

    await engine.dispose()
    logger.info("Database seeding completed.")
    print_tokens(doctors + patients)


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(
        description="Seed the database with doctors, patients and bookable slots."
    )
    parser.add_argument(
        "--clear", action="store_true", help="Clear existing data before seeding."
    )
    args = parser.parse_args()
    asyncio.run(main(should_clear=args.clear))

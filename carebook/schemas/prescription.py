from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel


class Medication(BaseModel):
    name: str
    dosage: str
    frequency: str
    duration: str


class PrescriptionCreate(BaseModel):
    appointment_id: Optional[int] = None
    # entries are checked one by one by the service, which reports every problem
    medications: Optional[List[Any]] = None
    diagnosis: Optional[str] = None
    expiry_date: Optional[datetime] = None


class PrescriptionUpdate(BaseModel):
    medications: Optional[List[Any]] = None
    diagnosis: Optional[str] = None
    status: Optional[str] = None
    expiry_date: Optional[datetime] = None

    class Config:
        # unknown fields are kept so the service can reject them by name
        extra = "allow"


class Prescription(BaseModel):
    id: int
    patient_id: int
    doctor_id: int
    appointment_id: int
    medications: List[Medication]
    diagnosis: str
    issued_date: datetime
    expiry_date: datetime
    status: str
    doctor_name: Optional[str] = None
    patient_name: Optional[str] = None

    class Config:
        from_attributes = True

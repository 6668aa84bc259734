from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class AppointmentDoctorProfile(BaseModel):
    first_name: str
    last_name: str
    specialty: str

    class Config:
        from_attributes = True


class AppointmentPatientProfile(BaseModel):
    first_name: str
    last_name: str

    class Config:
        from_attributes = True


class AppointmentCreate(BaseModel):
    # presence is checked by the booking service so the error names every missing field
    doctor_id: Optional[int] = None
    schedule_id: Optional[int] = None
    reason: Optional[str] = None
    mode: Optional[str] = None
    notes: Optional[str] = None


class AppointmentStatusUpdate(BaseModel):
    status: Optional[str] = None
    notes: Optional[str] = None
    reason: Optional[str] = None


class Appointment(BaseModel):
    id: int
    patient_id: int
    doctor_id: int
    schedule_slot_id: Optional[int] = None
    starts_at: datetime
    ends_at: datetime
    status: str
    reason: str
    mode: str
    notes: Optional[str] = None
    has_prescription: bool
    created_at: Optional[datetime] = None
    doctor_profile: Optional[AppointmentDoctorProfile] = None
    patient_profile: Optional[AppointmentPatientProfile] = None

    class Config:
        from_attributes = True


class MessageResponse(BaseModel):
    message: str
    id: Optional[int] = None

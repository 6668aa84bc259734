# carebook/db/models/prescription.py
from sqlalchemy import JSON, Column, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from carebook.db.base import Base
from carebook.db.column_types import UTCDateTime


class PrescriptionModel(Base):
    __tablename__ = "prescriptions"

    id = Column(Integer, primary_key=True)
    patient_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    doctor_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    # one prescription per appointment
    appointment_id = Column(
        Integer, ForeignKey("appointments.id"), nullable=False, unique=True
    )
    medications = Column(JSON, nullable=False)  # [{name, dosage, frequency, duration}]
    diagnosis = Column(Text, nullable=False)
    issued_date = Column(UTCDateTime, nullable=False)
    expiry_date = Column(UTCDateTime, nullable=False)
    status = Column(String(20), nullable=False, default="active")
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("ix_prescriptions_patient_status", "patient_id", "status"),
        Index("ix_prescriptions_doctor_issued", "doctor_id", "issued_date"),
    )

    appointment = relationship("AppointmentModel", back_populates="prescription")
    patient = relationship("UserModel", foreign_keys=[patient_id])
    doctor = relationship("UserModel", foreign_keys=[doctor_id])

    def __repr__(self):
        return f"<PrescriptionModel(id={self.id}, appointment_id={self.appointment_id}, status={self.status})>"

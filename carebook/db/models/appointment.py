# carebook/db/models/appointment.py
from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Integer,
    DateTime,
    String,
    Text,
    ForeignKey,
    Index,
    false,
)
from sqlalchemy.orm import relationship
from carebook.db.base import Base
from carebook.db.column_types import UTCDateTime
from sqlalchemy.sql import func


class AppointmentModel(Base):
    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True)
    patient_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    doctor_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    # the slot consumed at booking time; release matches on it
    schedule_slot_id = Column(
        Integer, ForeignKey("schedule_slots.id", ondelete="SET NULL"), nullable=True
    )
    starts_at = Column(UTCDateTime, nullable=False)
    ends_at = Column(UTCDateTime, nullable=False)
    status = Column(
        String(20), default="pending", nullable=False
    )  # pending, confirmed, cancelled, completed
    reason = Column(String(500), nullable=False)
    mode = Column(String(20), default="in-person", nullable=False)
    notes = Column(Text, nullable=True)
    has_prescription = Column(Boolean, nullable=False, default=False, server_default=false())
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        CheckConstraint("starts_at < ends_at", name="ck_appointments_time_range"),
        Index("ix_appointments_patient_status", "patient_id", "status"),
        Index("ix_appointments_doctor_start", "doctor_id", "starts_at"),
    )

    # Relationships
    patient = relationship(
        "UserModel", foreign_keys=[patient_id], backref="patient_appointments"
    )
    doctor = relationship(
        "UserModel", foreign_keys=[doctor_id], backref="doctor_appointments"
    )
    schedule_slot = relationship("ScheduleSlotModel", foreign_keys=[schedule_slot_id])
    prescription = relationship(
        "PrescriptionModel", back_populates="appointment", uselist=False
    )

    def __repr__(self):
        return f"<AppointmentModel(id={self.id}, status={self.status}, {self.starts_at}-{self.ends_at})>"

# carebook/db/models/schedule_slot.py
from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Text,
    true,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from carebook.db.base import Base
from carebook.db.column_types import UTCDateTime


class ScheduleSlotModel(Base):
    __tablename__ = "schedule_slots"

    id = Column(Integer, primary_key=True)
    doctor_id = Column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    starts_at = Column(UTCDateTime, nullable=False)
    ends_at = Column(UTCDateTime, nullable=False)
    is_available = Column(Boolean, nullable=False, default=True, server_default=true())
    unavailable_reason = Column(Text, nullable=True)
    # bumped on every availability flip; used for compare-and-swap updates
    version = Column(Integer, nullable=False, default=1, server_default="1")
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        CheckConstraint("starts_at < ends_at", name="ck_schedule_slots_time_range"),
        Index("ix_schedule_slots_doctor_start", "doctor_id", "starts_at"),
    )

    doctor = relationship("UserModel", foreign_keys=[doctor_id])

    def __repr__(self):
        return (
            f"<ScheduleSlotModel(id={self.id}, doctor_id={self.doctor_id}, "
            f"{self.starts_at}-{self.ends_at}, available={self.is_available}, v{self.version})>"
        )

# carebook/db/models/user.py
from sqlalchemy import Boolean, Column, Integer, String, DateTime, func, true
from sqlalchemy.orm import relationship
from carebook.db.base import Base


class UserModel(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True)
    email = Column(String, unique=True, nullable=False, index=True)
    # credentials live with the identity provider; kept for directory sync only
    password_hash = Column(String, nullable=True)
    role = Column(String, nullable=False)  # 'patient', 'doctor', 'admin'
    is_active = Column(Boolean, nullable=False, default=True, server_default=true())
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # one-to-one links, at most one populated depending on role
    patient_profile = relationship(
        "PatientModel",
        back_populates="user",
        uselist=False,
        cascade="all, delete-orphan",
    )
    doctor_profile = relationship(
        "DoctorModel",
        back_populates="user",
        uselist=False,
        cascade="all, delete-orphan",
    )

    def __repr__(self):
        return f"<UserModel(id={self.id}, role={self.role}, active={self.is_active})>"

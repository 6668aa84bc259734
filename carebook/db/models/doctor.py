# carebook/db/models/doctor.py
from sqlalchemy import Boolean, Column, Integer, String, ForeignKey, false
from sqlalchemy.orm import relationship
from carebook.db.base import Base

class DoctorModel(Base):
    __tablename__ = "doctors"

    user_id        = Column(Integer,
                            ForeignKey("users.id", ondelete="CASCADE"),
                            primary_key=True)

    first_name     = Column(String(50), nullable=False)
    last_name      = Column(String(50), nullable=False)
    specialty      = Column(String(100), nullable=False)
    license_number = Column(String(50), unique=True, nullable=True)
    phone          = Column(String(20), nullable=True)
    # set by an admin once credentials are checked; gates booking
    is_verified    = Column(Boolean, nullable=False, default=False, server_default=false())

    user = relationship("UserModel", back_populates="doctor_profile")

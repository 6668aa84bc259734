from carebook.db.models.user import UserModel
from carebook.db.models.doctor import DoctorModel
from carebook.db.models.patient import PatientModel
from carebook.db.models.schedule_slot import ScheduleSlotModel
from carebook.db.models.appointment import AppointmentModel
from carebook.db.models.prescription import PrescriptionModel

__all__ = [
    "UserModel",
    "DoctorModel",
    "PatientModel",
    "ScheduleSlotModel",
    "AppointmentModel",
    "PrescriptionModel",
]

# Package initialization
# Import all models to ensure relationships are properly established
from .user import User
from .availability_rule import AvailabilityRule
from .date_override import DateOverride
from .appointment_type import AppointmentType
from .appointment import Appointment
from .webhook_event import WebhookEvent

__all__ = [
    "User",
    "AvailabilityRule",
    "DateOverride",
    "AppointmentType",
    "Appointment",
    "WebhookEvent",
]

"""
Booking notifications.

Builds the visitor confirmation, owner notification and cancellation emails
and hands them to an ``EmailSender``. Delivery itself is outside this service;
the default sender only logs, so a deployment plugs in a real transport.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from core.config import FRONTEND_URL
from models import Appointment, AppointmentType, User
from utils.datetime_utils import get_zone

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EmailMessage:
    to: str
    subject: str
    body: str


class EmailSender(Protocol):
    async def send(self, message: EmailMessage) -> None:
        ...


class LoggingEmailSender:
    """Email sender that records messages in the log instead of delivering them."""

    async def send(self, message: EmailMessage) -> None:
        logger.info(f"Email to {message.to}: {message.subject}")


def _format_when(appointment: Appointment, tz_name: Optional[str] = None) -> str:
    zone = get_zone(tz_name or appointment.timezone or "UTC")
    local = appointment.start_time.astimezone(zone)
    return f"{local.strftime('%A, %B')} {local.day}, {local.year} at {local.strftime('%I:%M %p').lstrip('0')} ({zone.key})"


def cancellation_link(appointment: Appointment) -> str:
    return f"{FRONTEND_URL.rstrip('/')}/cancel?token={appointment.cancellation_token}"


class NotificationService:
    """Composes booking-related emails and sends them through the injected sender."""

    def __init__(self, sender: EmailSender) -> None:
        self.sender = sender

    async def send_booking_confirmation(
        self, user: User, appointment: Appointment, appointment_type: AppointmentType
    ) -> None:
        business = user.business_name or "your host"
        lines = [
            f"Hi {appointment.visitor_name},",
            "",
            f"Your {appointment_type.name} with {business} is confirmed for {_format_when(appointment)}.",
        ]
        if appointment.meeting_link:
            lines.append(f"Join the meeting: {appointment.meeting_link}")
        lines.extend(["", f"Need to cancel? {cancellation_link(appointment)}"])
        await self.sender.send(EmailMessage(
            to=appointment.visitor_email,
            subject=f"Confirmed: {appointment_type.name} with {business}",
            body="\n".join(lines),
        ))

    async def send_owner_notification(
        self, user: User, appointment: Appointment, appointment_type: AppointmentType
    ) -> None:
        lines = [
            f"New booking: {appointment_type.name}",
            f"When: {_format_when(appointment, user.timezone)}",
            f"Visitor: {appointment.visitor_name} <{appointment.visitor_email}>",
        ]
        if appointment.visitor_phone:
            lines.append(f"Phone: {appointment.visitor_phone}")
        if appointment.notes:
            lines.append(f"Notes: {appointment.notes}")
        if appointment.amount_paid:
            lines.append(f"Paid: {appointment.amount_paid} ({appointment.payment_status})")
        await self.sender.send(EmailMessage(
            to=user.email,
            subject=f"New booking: {appointment.visitor_name}",
            body="\n".join(lines),
        ))

    async def send_cancellation_confirmation(
        self,
        user: User,
        appointment: Appointment,
        appointment_type: AppointmentType,
        refund_amount: Optional[int] = None,
    ) -> None:
        business = user.business_name or "your host"
        lines = [
            f"Hi {appointment.visitor_name},",
            "",
            f"Your {appointment_type.name} with {business} on {_format_when(appointment)} has been cancelled.",
        ]
        if refund_amount:
            lines.append(f"A refund of {refund_amount} {appointment_type.currency.upper()} is on its way.")
        await self.sender.send(EmailMessage(
            to=appointment.visitor_email,
            subject=f"Cancelled: {appointment_type.name} with {business}",
            body="\n".join(lines),
        ))

    async def send_payment_failed_alert(self, user: User) -> None:
        await self.sender.send(EmailMessage(
            to=user.email,
            subject="Action needed: your subscription payment failed",
            body="We could not process your latest subscription payment. Please update your billing details.",
        ))

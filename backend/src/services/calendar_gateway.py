"""
External calendar capabilities used by the booking engine.

The engine depends on two narrow capabilities rather than on Google directly:
- ``BusyIntervalProvider``: busy intervals for a business over a date range,
  fetched in one batched call per range
- ``CalendarEventWriter``: create and delete the event that mirrors a booking

``GoogleCalendarGateway`` implements both on top of ``GoogleCalendarService``
using the business's encrypted stored credentials. Businesses without a
connected calendar simply have no busy intervals and get no events.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional, Protocol

from models import Appointment, AppointmentType, User
from services.encryption_service import EncryptionService, get_encryption_service
from services.google_calendar_service import GoogleCalendarService
from utils.interval_utils import Interval

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CalendarEventRef:
    event_id: str
    meeting_link: Optional[str] = None


class BusyIntervalProvider(Protocol):
    async def fetch_busy_intervals(self, user: User, start: datetime, end: datetime) -> List[Interval]:
        ...


class CalendarEventWriter(Protocol):
    async def create_event(
        self, user: User, appointment: Appointment, appointment_type: AppointmentType
    ) -> Optional[CalendarEventRef]:
        ...

    async def delete_event(self, user: User, event_id: str) -> None:
        ...


class GoogleCalendarGateway:
    """Google-backed busy-interval provider and event writer."""

    def __init__(
        self,
        encryption_factory: Callable[[], EncryptionService] = get_encryption_service,
        client_factory: Callable[[str], GoogleCalendarService] = GoogleCalendarService,
    ) -> None:
        self._encryption_factory = encryption_factory
        self._client_factory = client_factory

    def _client_for(self, user: User) -> Optional[GoogleCalendarService]:
        if not user.gcal_credentials:
            return None
        credentials = self._encryption_factory().decrypt_data(user.gcal_credentials)
        return self._client_factory(json.dumps(credentials))

    async def fetch_busy_intervals(self, user: User, start: datetime, end: datetime) -> List[Interval]:
        client = self._client_for(user)
        if client is None:
            return []
        return await client.list_busy_intervals(start, end)

    async def create_event(
        self, user: User, appointment: Appointment, appointment_type: AppointmentType
    ) -> Optional[CalendarEventRef]:
        client = self._client_for(user)
        if client is None:
            logger.debug(f"User {user.id} has no calendar connected; skipping event creation")
            return None

        attendees = [
            {
                'email': user.email,
                'displayName': user.business_name or None,
                'organizer': True,
                'responseStatus': 'accepted',
            },
            {
                'email': appointment.visitor_email,
                'displayName': appointment.visitor_name,
                'responseStatus': 'accepted',
            },
        ]
        description_lines = [
            f"Booked by {appointment.visitor_name} ({appointment.visitor_email})",
        ]
        if appointment.visitor_phone:
            description_lines.append(f"Phone: {appointment.visitor_phone}")
        if appointment.notes:
            description_lines.append(f"Notes: {appointment.notes}")
        for label, answer in (appointment.form_responses or {}).items():
            description_lines.append(f"{label}: {answer}")

        event = await client.create_event(
            summary=f"{appointment_type.name} with {appointment.visitor_name}",
            start=appointment.start_time,
            end=appointment.end_time,
            description="\n".join(description_lines),
            attendees=attendees,
            with_conference=appointment_type.enable_google_meet,
            extended_properties={'private': {'appointment_id': str(appointment.id)}},
        )
        return CalendarEventRef(event_id=event['id'], meeting_link=event.get('hangoutLink'))

    async def delete_event(self, user: User, event_id: str) -> None:
        client = self._client_for(user)
        if client is None:
            return
        await client.delete_event(event_id)

# pyright: reportUnknownMemberType=false, reportUnknownVariableType=false, reportMissingTypeStubs=false
"""
Google Calendar service for booking synchronization.

This module handles all Google Calendar API interactions the booking engine
needs: listing a business's events as busy intervals, creating an event (with
an optional Meet conference) when a booking is committed, and deleting it when
the booking is cancelled.
"""

import asyncio
import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from core.config import GOOGLE_CLIENT_ID, GOOGLE_CLIENT_SECRET
from utils.datetime_utils import parse_iso_instant, to_iso_utc
from utils.interval_utils import Interval

logger = logging.getLogger(__name__)


class GoogleCalendarError(Exception):
    """Custom exception for Google Calendar API errors."""
    pass


def _error_message(e: HttpError) -> str:
    try:
        error_details = json.loads(e.content.decode('utf-8')) if e.content else {}
    except (ValueError, UnicodeDecodeError):
        error_details = {}
    return error_details.get('error', {}).get('message', str(e))


def events_to_busy_intervals(events: List[Dict[str, Any]]) -> List[Interval]:
    """
    Convert Calendar API event resources to busy intervals.

    Cancelled events, transparent ("show as available") events and all-day
    events (which carry ``date`` instead of ``dateTime``) do not block time.
    """
    intervals: List[Interval] = []
    for event in events:
        if event.get('status') == 'cancelled' or event.get('transparency') == 'transparent':
            continue
        start = (event.get('start') or {}).get('dateTime')
        end = (event.get('end') or {}).get('dateTime')
        if not start or not end:
            continue
        try:
            intervals.append(Interval(parse_iso_instant(start), parse_iso_instant(end)))
        except ValueError:
            logger.warning(f"Skipping calendar event with unparseable times: {event.get('id')}")
    return intervals


class GoogleCalendarService:
    """
    Service for Google Calendar API operations.

    Attributes:
        credentials: Google OAuth2 credentials for API access
        calendar_id: Google Calendar ID (defaults to primary calendar)
        service: Google Calendar API service client
    """

    # Default calendar ID (primary calendar)
    DEFAULT_CALENDAR_ID = 'primary'

    def __init__(self, credentials_json: str, calendar_id: str = DEFAULT_CALENDAR_ID) -> None:
        """
        Initialize Google Calendar service.

        Args:
            credentials_json: JSON string containing Google OAuth2 credentials
            calendar_id: Google Calendar ID to operate on (defaults to primary)

        Raises:
            GoogleCalendarError: If credentials are invalid or service initialization fails
        """
        try:
            creds_data = json.loads(credentials_json)

            # Add OAuth2 client configuration to the credentials
            creds_data.update({
                "client_id": GOOGLE_CLIENT_ID,
                "client_secret": GOOGLE_CLIENT_SECRET
            })

            self.credentials = Credentials.from_authorized_user_info(creds_data)

            # Refresh token if expired
            if self.credentials.expired and self.credentials.refresh_token:
                self.credentials.refresh(Request())

            self.service = build('calendar', 'v3', credentials=self.credentials, cache_discovery=False)
            self.calendar_id = calendar_id

        except json.JSONDecodeError as e:
            raise GoogleCalendarError(f"Invalid credentials JSON: {e}")
        except Exception as e:
            raise GoogleCalendarError(f"Failed to initialize Google Calendar service: {e}")

    async def list_busy_intervals(self, start: datetime, end: datetime) -> List[Interval]:
        """
        List the calendar's blocking events between two instants.

        One logical call for the whole range; result pages are followed until
        exhausted.

        Args:
            start: Range start (inclusive)
            end: Range end (exclusive)

        Returns:
            Busy intervals ordered by start

        Raises:
            GoogleCalendarError: If the API call fails
        """
        def _fetch() -> List[Dict[str, Any]]:
            items: List[Dict[str, Any]] = []
            page_token: Optional[str] = None
            while True:
                response = self.service.events().list(
                    calendarId=self.calendar_id,
                    timeMin=to_iso_utc(start),
                    timeMax=to_iso_utc(end),
                    singleEvents=True,
                    orderBy='startTime',
                    pageToken=page_token,
                ).execute()
                items.extend(response.get('items', []))
                page_token = response.get('nextPageToken')
                if not page_token:
                    return items

        try:
            events = await asyncio.to_thread(_fetch)
        except HttpError as e:
            raise GoogleCalendarError(f"Failed to list calendar events: {_error_message(e)}")
        except Exception as e:
            raise GoogleCalendarError(f"Unexpected error listing calendar events: {e}")

        intervals = events_to_busy_intervals(events)
        logger.debug(f"Fetched {len(intervals)} busy intervals from Google Calendar")
        return intervals

    async def create_event(
        self,
        summary: str,
        start: datetime,
        end: datetime,
        description: str = "",
        attendees: Optional[List[Dict[str, Any]]] = None,
        with_conference: bool = False,
        extended_properties: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """
        Create a new Google Calendar event.

        Args:
            summary: Event title/summary
            start: Event start datetime
            end: Event end datetime
            description: Event description
            attendees: Attendee resources (owner and visitor)
            with_conference: Request a Google Meet conference for the event
            extended_properties: Additional metadata for sync

        Returns:
            Google Calendar event data including event ID and, when requested,
            ``hangoutLink``

        Raises:
            GoogleCalendarError: If event creation fails
        """
        if start.tzinfo is None:
            start = start.replace(tzinfo=timezone.utc)
        if end.tzinfo is None:
            end = end.replace(tzinfo=timezone.utc)

        event_body: Dict[str, Any] = {
            'summary': summary or '',
            'description': description or '',
            'start': {'dateTime': to_iso_utc(start), 'timeZone': 'UTC'},
            'end': {'dateTime': to_iso_utc(end), 'timeZone': 'UTC'},
            'reminders': {
                'useDefault': False,
                'overrides': [
                    {'method': 'email', 'minutes': 0},
                    {'method': 'popup', 'minutes': 30},
                ],
            },
        }
        if attendees:
            event_body['attendees'] = attendees
        if with_conference:
            event_body['conferenceData'] = {
                'createRequest': {
                    'requestId': uuid.uuid4().hex,
                    'conferenceSolutionKey': {'type': 'hangoutsMeet'},
                },
            }
        if extended_properties:
            event_body['extendedProperties'] = extended_properties

        logger.debug(f"Creating Google Calendar event with calendar_id={self.calendar_id}, body={json.dumps(event_body)}")

        try:
            event = await asyncio.to_thread(
                self.service.events().insert(
                    calendarId=self.calendar_id,
                    body=event_body,
                    sendUpdates='all',
                    conferenceDataVersion=1 if with_conference else 0,
                ).execute
            )
        except HttpError as e:
            message = _error_message(e)
            logger.error(f"Google Calendar API error: {message} (status: {e.resp.status})")
            raise GoogleCalendarError(f"Failed to create calendar event: {message}")
        except Exception as e:
            logger.error(f"Unexpected error creating calendar event: {e}", exc_info=True)
            raise GoogleCalendarError(f"Unexpected error creating calendar event: {e}")

        logger.info(f"Google Calendar event created successfully: {event.get('id')}")
        return event

    async def delete_event(self, event_id: str) -> None:
        """
        Delete a Google Calendar event.

        Args:
            event_id: Google Calendar event ID to delete

        Raises:
            GoogleCalendarError: If event deletion fails
        """
        try:
            await asyncio.to_thread(
                self.service.events().delete(
                    calendarId=self.calendar_id,
                    eventId=event_id,
                    sendUpdates='all',
                ).execute
            )
        except HttpError as e:
            if e.resp.status in (404, 410):
                # Event already deleted, treat as success
                return
            raise GoogleCalendarError(f"Failed to delete calendar event: {_error_message(e)}")
        except Exception as e:
            raise GoogleCalendarError(f"Unexpected error deleting calendar event: {e}")

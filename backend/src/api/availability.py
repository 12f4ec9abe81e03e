"""
Public availability endpoints used by the booking widget.

No authentication: the business is identified by its public widget id (or by
user id for first-party callers). Every endpoint is rate limited per client IP.
"""

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from sqlalchemy.orm import Session

from api.dependencies import get_availability_service, rate_limit
from api.responses import (
    AppointmentTypeSummary,
    AvailabilityResponse,
    AvailableDatesResponse,
    DaySlotsResponse,
    PrewarmResponse,
)
from core.constants import DEFAULT_AVAILABILITY_DAYS, DEFAULT_AVAILABLE_DATES_DAYS_AHEAD, MAX_PREWARM_DAYS
from core.database import get_db
from models import AppointmentType
from services.availability_service import AvailabilityService

logger = logging.getLogger(__name__)

router = APIRouter()


def _type_summary(appointment_type: AppointmentType) -> AppointmentTypeSummary:
    return AppointmentTypeSummary(
        id=appointment_type.id,
        name=appointment_type.name,
        duration=appointment_type.duration,
    )


class PrewarmRequest(BaseModel):
    """Request model for cache pre-warming."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    appointment_type_id: int
    widget_id: Optional[str] = None
    user_id: Optional[int] = None
    days: int = Field(DEFAULT_AVAILABILITY_DAYS, ge=1, le=MAX_PREWARM_DAYS)


@router.get(
    "",
    response_model=AvailabilityResponse,
    dependencies=[Depends(rate_limit("availability"))],
    summary="Available slots",
)
async def get_availability(
    appointment_type_id: int = Query(..., alias="appointmentTypeId"),
    widget_id: Optional[str] = Query(None, alias="widgetId"),
    user_id: Optional[int] = Query(None, alias="userId"),
    start_date: Optional[date] = Query(None, alias="startDate"),
    end_date: Optional[date] = Query(None, alias="endDate"),
    availability_service: AvailabilityService = Depends(get_availability_service),
    db: Session = Depends(get_db),
) -> AvailabilityResponse:
    """
    Get bookable slots for each date in the range.

    Single-day requests are served from the slot cache when possible.
    """
    result = await availability_service.get_slots(
        db,
        appointment_type_id,
        start_date=start_date,
        end_date=end_date,
        user_id=user_id,
        widget_id=widget_id,
    )
    return AvailabilityResponse(
        appointment_type=_type_summary(result.appointment_type),
        timezone=result.timezone,
        slots=[DaySlotsResponse.model_validate(day.to_dict()) for day in result.days],
        cached=result.cached,
    )


@router.get(
    "/dates",
    response_model=AvailableDatesResponse,
    dependencies=[Depends(rate_limit("availability"))],
    summary="Dates with availability",
)
async def get_available_dates(
    appointment_type_id: int = Query(..., alias="appointmentTypeId"),
    widget_id: Optional[str] = Query(None, alias="widgetId"),
    user_id: Optional[int] = Query(None, alias="userId"),
    days_ahead: int = Query(DEFAULT_AVAILABLE_DATES_DAYS_AHEAD, alias="daysAhead"),
    availability_service: AvailabilityService = Depends(get_availability_service),
    db: Session = Depends(get_db),
) -> AvailableDatesResponse:
    """Dates in the look-ahead window that have at least one slot-sized window."""
    result = availability_service.get_available_dates(
        db,
        appointment_type_id,
        days_ahead=days_ahead,
        user_id=user_id,
        widget_id=widget_id,
    )
    return AvailableDatesResponse(
        appointment_type=_type_summary(result.appointment_type),
        timezone=result.timezone,
        dates=[day.isoformat() for day in result.dates],
        cached=result.cached,
    )


@router.post(
    "/prewarm",
    response_model=PrewarmResponse,
    dependencies=[Depends(rate_limit("availability"))],
    summary="Pre-warm the slot cache",
)
async def prewarm_availability(
    request: PrewarmRequest,
    availability_service: AvailabilityService = Depends(get_availability_service),
    db: Session = Depends(get_db),
) -> PrewarmResponse:
    """Compute and cache per-day slots for the next ``days`` days."""
    days_cached = await availability_service.prewarm(
        db,
        request.appointment_type_id,
        days=request.days,
        user_id=request.user_id,
        widget_id=request.widget_id,
    )
    return PrewarmResponse(success=True, days_cached=days_cached)

"""
Availability routes
Daily shop capacity for the booking calendar and drop-off slot checks
"""
import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from ..errors import SquareAPIError, raise_for_bookings_api
from ..services.availability_service import (
    OPERATING_WEEKDAYS,
    business_timezone,
    compute_drop_off_slots,
    get_day_bookings,
    get_month_availability,
)
from ..services.square_service import get_square_gateway

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/availability", tags=["Availability"])


@router.get("")
async def get_availability(
    month: int,
    year: int,
    day: Optional[int] = None,
    service_variation_id: Optional[str] = Query(None, alias="serviceVariationId"),
    gateway=Depends(get_square_gateway),
):
    """
    Remaining hours per weekday of the month (or a single day).
    With serviceVariationId, a day is only available when the service fits.
    """
    try:
        days = await get_month_availability(gateway, year, month, day, service_variation_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except SquareAPIError as e:
        logger.error(f"Failed to load availability for {year}-{month:02d}: {e.detail}")
        raise_for_bookings_api(e)

    return {"availability": days}


@router.get("/slots")
async def get_drop_off_slots(
    date_param: str = Query(..., alias="date"),
    service_type: Optional[str] = Query(None, alias="serviceType"),
    vehicle_type: Optional[str] = Query(None, alias="vehicleType"),
    gateway=Depends(get_square_gateway),
):
    """Drop-off slots for a day, limited by the number of bays"""
    try:
        day = date.fromisoformat(date_param)
    except ValueError:
        raise HTTPException(status_code=400, detail="date must be in YYYY-MM-DD format")

    bookings = []
    if day.weekday() in OPERATING_WEEKDAYS:
        try:
            bookings = await get_day_bookings(gateway, day)
        except SquareAPIError as e:
            logger.error(f"Failed to load bookings for {day}: {e.detail}")
            raise_for_bookings_api(e)

    return compute_drop_off_slots(day, bookings, service_type, vehicle_type, business_timezone())

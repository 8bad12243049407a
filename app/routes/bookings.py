"""
Booking routes
Customer booking creation, the admin booking list, cancellation and no-show charges
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ..auth import require_admin
from ..database import get_db
from ..errors import SquareAPIError, raise_for_bookings_api
from ..schemas import CreateBookingRequest
from ..services import booking_service
from ..services.availability_service import search_square_availability
from ..services.no_show_service import NoShowCollector
from ..services.square_service import get_square_gateway

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/bookings", tags=["Bookings"])


@router.get("")
async def list_bookings(
    limit: Optional[int] = None,
    cursor: Optional[str] = None,
    location_id: Optional[str] = None,
    customer_id: Optional[str] = None,
    team_member_id: Optional[str] = None,
    start_at_min: Optional[str] = None,
    start_at_max: Optional[str] = None,
    gateway=Depends(get_square_gateway),
    db: Session = Depends(get_db),
    _: str = Depends(require_admin),
):
    """Enriched bookings page for the admin dashboard"""
    try:
        return await booking_service.list_bookings_page(
            gateway,
            db,
            limit=limit,
            cursor=cursor,
            location_id=location_id,
            customer_id=customer_id,
            team_member_id=team_member_id,
            start_at_min=start_at_min,
            start_at_max=start_at_max,
        )
    except SquareAPIError as e:
        logger.error(f"Failed to fetch bookings: {e.detail}")
        raise_for_bookings_api(e)


@router.post("")
async def create_booking(
    data: CreateBookingRequest,
    gateway=Depends(get_square_gateway),
    db: Session = Depends(get_db),
):
    """Create a booking from the customer booking flow"""
    request = booking_service.NewBooking(**data.model_dump())
    try:
        return await booking_service.create_booking(gateway, db, request)
    except SquareAPIError as e:
        logger.error(f"Failed to create booking: {e.detail}")
        raise_for_bookings_api(e)


@router.get("/availability/search")
async def search_availability(
    month: int,
    year: int,
    service_variation_id: str = Query(..., alias="serviceVariationId"),
    day: Optional[int] = None,
    gateway=Depends(get_square_gateway),
):
    """First open Square slot per date for a service"""
    try:
        availability = await search_square_availability(gateway, service_variation_id, year, month, day)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except SquareAPIError as e:
        logger.error(f"Error fetching availability: {e.detail}")
        raise_for_bookings_api(e)

    return {"availability": availability}


@router.delete("/{booking_id}")
async def cancel_booking(booking_id: str, gateway=Depends(get_square_gateway)):
    booking = await booking_service.cancel_booking(gateway, booking_id)
    return {"booking": booking}


@router.post("/{booking_id}/charge-no-show")
async def charge_no_show(
    booking_id: str,
    gateway=Depends(get_square_gateway),
    db: Session = Depends(get_db),
    _: str = Depends(require_admin),
):
    """Charge the no-show fee for one booking"""
    logger.info(f"Manual no-show charge requested for booking {booking_id}")
    return await NoShowCollector(gateway, db).charge_by_id(booking_id)

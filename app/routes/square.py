"""
Square booking administration
Raw booking and team member access for the admin dashboard
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends

from ..auth import require_admin
from ..errors import SquareAPIError, raise_for_bookings_api
from ..schemas import CancelBookingRequest, StatusChangeRequest, TeamMemberSearchRequest
from ..services import booking_service
from ..services.square_service import get_square_gateway

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/square", tags=["Square"], dependencies=[Depends(require_admin)])

DEFAULT_CANCELLATION_REASON = "Cancelled by admin"


@router.get("/bookings")
async def list_bookings(
    start_at_min: Optional[str] = None,
    start_at_max: Optional[str] = None,
    location_id: Optional[str] = None,
    customer_id: Optional[str] = None,
    team_member_id: Optional[str] = None,
    limit: Optional[int] = None,
    cursor: Optional[str] = None,
    gateway=Depends(get_square_gateway),
):
    try:
        return await gateway.list_bookings(
            start_at_min=start_at_min,
            start_at_max=start_at_max,
            location_id=location_id,
            customer_id=customer_id,
            team_member_id=team_member_id,
            limit=limit,
            cursor=cursor,
        )
    except SquareAPIError as e:
        raise_for_bookings_api(e)


@router.post("/bookings")
async def create_booking(body: Dict[str, Any] = Body(...), gateway=Depends(get_square_gateway)):
    """Create a booking from a Square-shaped body ({"booking": {...}} or the booking itself)"""
    booking = body.get("booking", body)
    try:
        return await gateway.create_booking(booking, idempotency_key=body.get("idempotency_key"))
    except SquareAPIError as e:
        raise_for_bookings_api(e)


@router.get("/bookings/today")
async def today_bookings(gateway=Depends(get_square_gateway)):
    """Today's bookings sorted by start time, with progress stats"""
    try:
        return await booking_service.get_today_bookings(gateway, datetime.now(timezone.utc))
    except SquareAPIError as e:
        logger.error(f"Failed to fetch today's bookings: {e.detail}")
        raise_for_bookings_api(e)


@router.get("/bookings/{booking_id}")
async def get_booking(booking_id: str, gateway=Depends(get_square_gateway)):
    return await gateway.retrieve_booking(booking_id)


@router.put("/bookings/{booking_id}")
async def update_booking(
    booking_id: str,
    changes: Dict[str, Any] = Body(...),
    gateway=Depends(get_square_gateway),
):
    """Update notes and other writable fields; the current version is filled in"""
    return await booking_service.update_booking(gateway, booking_id, changes)


@router.patch("/bookings/{booking_id}")
async def change_booking_status(
    booking_id: str,
    data: StatusChangeRequest,
    gateway=Depends(get_square_gateway),
):
    booking = await booking_service.change_booking_status(gateway, booking_id, data.status)
    logger.info(f"Booking {booking_id} status change to {data.status} handled")
    return {"booking": booking}


@router.delete("/bookings/{booking_id}")
async def cancel_booking(
    booking_id: str,
    data: Optional[CancelBookingRequest] = None,
    gateway=Depends(get_square_gateway),
):
    reason = (data.cancellation_reason if data else None) or DEFAULT_CANCELLATION_REASON
    booking = await booking_service.cancel_booking(gateway, booking_id)
    return {"booking": {**booking, "cancellation_reason": reason}}


@router.get("/team-members")
async def list_team_members(
    location_ids: Optional[str] = None,
    status: Optional[str] = None,
    limit: Optional[int] = None,
    cursor: Optional[str] = None,
    gateway=Depends(get_square_gateway),
):
    query_filter = {}
    if location_ids:
        query_filter["location_ids"] = location_ids.split(",")
    if status:
        query_filter["status"] = status

    body: Dict[str, Any] = {"query": {"filter": query_filter}}
    if limit:
        body["limit"] = limit
    if cursor:
        body["cursor"] = cursor
    return await gateway.search_team_members(body)


@router.post("/team-members")
async def search_team_members(data: TeamMemberSearchRequest, gateway=Depends(get_square_gateway)):
    return await gateway.search_team_members(data.model_dump(exclude_none=True))

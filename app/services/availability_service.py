"""
Availability Service
Daily capacity against a fixed 9-hour business day, drop-off slot checks
and Square's availability search
"""
import calendar
import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from .. import config
from ..errors import SquareAPIError

logger = logging.getLogger(__name__)

# 08:00 to 17:00
BUSINESS_DAY_HOURS = 9
BUSINESS_DAY_MINUTES = BUSINESS_DAY_HOURS * 60
DEFAULT_BOOKING_MINUTES = 240
MAX_SQUARE_WINDOW_DAYS = 31
OPERATING_WEEKDAYS = {0, 1, 2, 3, 4}  # Monday to Friday

# Bookings in these states do not occupy the shop
INACTIVE_STATUSES = {"CANCELLED_BY_CUSTOMER", "CANCELLED_BY_SELLER", "DECLINED"}

MAX_CONCURRENT_SERVICES = 3  # bays
DROP_OFF_TIMES = ["08:00", "09:00"]
PICKUP_TIME = "17:00"

SERVICE_DURATIONS = {
    "interior": {"small": 210, "truck": 270, "minivan": 300},
    "exterior": {"small": 180, "truck": 210, "minivan": 210},
    "full": {"small": 240, "truck": 300, "minivan": 330},
}


def business_timezone() -> ZoneInfo:
    return ZoneInfo(config.BUSINESS_TIMEZONE)


def parse_start_at(value: str) -> datetime:
    """Parse Square's RFC 3339 timestamps (trailing Z included)"""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def to_rfc3339(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def booking_duration_minutes(booking: dict) -> int:
    segments = booking.get("appointment_segments") or []
    if segments and segments[0].get("duration_minutes"):
        return int(segments[0]["duration_minutes"])
    return DEFAULT_BOOKING_MINUTES


def is_active_booking(booking: dict) -> bool:
    return booking.get("status") not in INACTIVE_STATUSES


def summarize_day(day: date, bookings: list[dict], required_minutes: int = 0) -> dict:
    """Capacity for one day from the bookings that start on it"""
    booked_minutes = sum(booking_duration_minutes(b) for b in bookings)
    booked_hours = booked_minutes / 60
    remaining_hours = max(0.0, BUSINESS_DAY_HOURS - booked_hours)
    available = remaining_hours > 0 and remaining_hours * 60 >= required_minutes

    return {
        "date": day.isoformat(),
        "totalHours": BUSINESS_DAY_HOURS,
        "bookedHours": round(booked_hours, 2),
        "remainingHours": round(remaining_hours, 2),
        "available": available,
    }


def validate_month(year: int, month: int, day: Optional[int] = None) -> None:
    if month < 1 or month > 12:
        raise ValueError("Month must be between 1 and 12")
    if day is not None:
        days_in_month = calendar.monthrange(year, month)[1]
        if day < 1 or day > days_in_month:
            raise ValueError(f"Day must be between 1 and {days_in_month}")


def date_range(year: int, month: int, day: Optional[int] = None) -> tuple[date, date]:
    """[first, last] calendar days covered by the request"""
    validate_month(year, month, day)
    if day is not None:
        single = date(year, month, day)
        return single, single
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last_day)


def day_bounds(first: date, last: date, tz: ZoneInfo) -> tuple[datetime, datetime]:
    """Start of ``first`` and start of the day after ``last`` in ``tz``"""
    start = datetime.combine(first, time.min, tzinfo=tz)
    end = datetime.combine(last + timedelta(days=1), time.min, tzinfo=tz)
    return start, end


def split_range_into_windows(start: datetime, end: datetime) -> list[tuple[datetime, datetime]]:
    """Square only lists bookings over windows of at most 31 days"""
    windows = []
    cursor = start
    while cursor < end:
        window_end = min(end, cursor + timedelta(days=MAX_SQUARE_WINDOW_DAYS))
        windows.append((cursor, window_end))
        cursor = window_end
    return windows


async def list_bookings_between(gateway, start: datetime, end: datetime) -> list[dict]:
    """Every booking starting in [start, end), fetched window by window"""
    bookings: list[dict] = []
    for window_start, window_end in split_range_into_windows(start, end):
        bookings.extend(
            await gateway.list_all_bookings(
                start_at_min=to_rfc3339(window_start),
                start_at_max=to_rfc3339(window_end),
            )
        )
    return bookings


def compute_availability(
    bookings: list[dict],
    year: int,
    month: int,
    day: Optional[int] = None,
    required_minutes: int = 0,
    tz: Optional[ZoneInfo] = None,
) -> list[dict]:
    """
    Per-day capacity for the month (or one day), Monday to Friday only.
    Bookings are bucketed by their start date in ``tz``.
    """
    tz = tz or business_timezone()
    first, last = date_range(year, month, day)

    by_day: dict[date, list[dict]] = {}
    for booking in bookings:
        if not booking.get("start_at") or not is_active_booking(booking):
            continue
        local_day = parse_start_at(booking["start_at"]).astimezone(tz).date()
        by_day.setdefault(local_day, []).append(booking)

    days = []
    current = first
    while current <= last:
        if current.weekday() in OPERATING_WEEKDAYS:
            days.append(summarize_day(current, by_day.get(current, []), required_minutes))
        current += timedelta(days=1)
    return days


async def get_service_duration_minutes(gateway, service_variation_id: str) -> Optional[int]:
    """Duration configured on a catalog variation, if Square has one"""
    try:
        result = await gateway.retrieve_catalog_object(service_variation_id)
    except SquareAPIError as e:
        logger.warning(f"Could not load service variation {service_variation_id}: {e.detail}")
        return None

    variation_data = (result.get("object") or {}).get("item_variation_data") or {}
    duration_ms = variation_data.get("service_duration")
    if duration_ms:
        return round(int(duration_ms) / 60000)
    return None


async def get_month_availability(
    gateway,
    year: int,
    month: int,
    day: Optional[int] = None,
    service_variation_id: Optional[str] = None,
) -> list[dict]:
    tz = business_timezone()
    first, last = date_range(year, month, day)
    start, end = day_bounds(first, last, tz)

    # A local month can run past 31 days of UTC time across a DST change
    bookings = await list_bookings_between(gateway, start, end)

    required_minutes = 0
    if service_variation_id:
        required_minutes = await get_service_duration_minutes(gateway, service_variation_id) or 0

    return compute_availability(bookings, year, month, day, required_minutes, tz)


def remaining_minutes_for_day(bookings: list[dict]) -> int:
    booked = sum(booking_duration_minutes(b) for b in bookings if is_active_booking(b))
    return max(0, BUSINESS_DAY_MINUTES - booked)


async def get_day_bookings(gateway, day: date) -> list[dict]:
    start, end = day_bounds(day, day, business_timezone())
    return await list_bookings_between(gateway, start, end)


def compute_drop_off_slots(
    day: date,
    bookings: list[dict],
    service_type: Optional[str] = None,
    vehicle_type: Optional[str] = None,
    tz: Optional[ZoneInfo] = None,
) -> dict:
    """Drop-off slots for a day; a slot is open while fewer than 3 bookings overlap it"""
    tz = tz or business_timezone()

    if day.weekday() not in OPERATING_WEEKDAYS:
        return {
            "date": day.isoformat(),
            "available": False,
            "reason": "We are only open Monday through Friday",
            "slots": [],
        }

    duration = DEFAULT_BOOKING_MINUTES
    if service_type and vehicle_type:
        duration = SERVICE_DURATIONS.get(service_type, {}).get(vehicle_type, DEFAULT_BOOKING_MINUTES)

    intervals = []
    for booking in bookings:
        if not booking.get("start_at") or not is_active_booking(booking):
            continue
        booking_start = parse_start_at(booking["start_at"])
        intervals.append((booking_start, booking_start + timedelta(minutes=booking_duration_minutes(booking))))

    slots = []
    for drop_off in DROP_OFF_TIMES:
        hours, minutes = (int(part) for part in drop_off.split(":"))
        slot_start = datetime.combine(day, time(hours, minutes), tzinfo=tz)
        slot_end = slot_start + timedelta(minutes=duration)
        overlapping = sum(1 for start, end in intervals if start < slot_end and end > slot_start)
        slots.append(
            {
                "time": drop_off,
                "available": overlapping < MAX_CONCURRENT_SERVICES,
                "spotsLeft": max(0, MAX_CONCURRENT_SERVICES - overlapping),
                "totalSpots": MAX_CONCURRENT_SERVICES,
            }
        )

    return {
        "date": day.isoformat(),
        "available": any(slot["available"] for slot in slots),
        "slots": slots,
        "businessRules": {
            "maxConcurrentServices": MAX_CONCURRENT_SERVICES,
            "pickupTime": PICKUP_TIME,
        },
    }


async def search_square_availability(
    gateway,
    service_variation_id: str,
    year: int,
    month: int,
    day: Optional[int] = None,
    now: Optional[datetime] = None,
) -> dict[str, dict]:
    """
    First open Square slot per date for a service variation.
    Searches never start before tomorrow; a specific day that is already
    past returns an empty map.
    """
    tz = business_timezone()
    first, last = date_range(year, month, day)
    start, end = day_bounds(first, last, tz)

    now = now or datetime.now(tz)
    tomorrow = datetime.combine(now.astimezone(tz).date() + timedelta(days=1), time.min, tzinfo=tz)
    if start < tomorrow:
        if end <= tomorrow:
            return {}
        start = tomorrow

    location_id = await gateway.get_location_id()
    team_member_id = await gateway.get_team_member_id()
    response = await gateway.search_availability(
        {
            "filter": {
                "start_at_range": {"start_at": to_rfc3339(start), "end_at": to_rfc3339(end)},
                "location_id": location_id,
                "segment_filters": [
                    {
                        "service_variation_id": service_variation_id,
                        "team_member_id_filter": {"any": [team_member_id]},
                    }
                ],
            }
        }
    )

    availabilities = sorted(
        response.get("availabilities") or [],
        key=lambda slot: parse_start_at(slot["start_at"]),
    )

    by_date: dict[str, dict] = {}
    for slot in availabilities:
        date_key = parse_start_at(slot["start_at"]).astimezone(tz).date().isoformat()
        by_date.setdefault(date_key, slot)
    return by_date

"""
Booking Service
Customer booking creation, the enriched admin listing and the status
changes the dashboard performs on Square bookings
"""
import asyncio
import base64
import json
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy.orm import Session

from ..errors import SquareAPIError
from ..repository import BookingPaymentRepository
from ..shared.validators import normalize_phone_number, split_full_name
from .availability_service import (
    business_timezone,
    get_day_bookings,
    parse_start_at,
    remaining_minutes_for_day,
    search_square_availability,
    split_range_into_windows,
    to_rfc3339,
)
from .no_show_service import DEFAULT_CURRENCY, parse_seller_note

logger = logging.getLogger(__name__)

DEFAULT_PAST_DAYS = 60
DEFAULT_FUTURE_DAYS = 60
MAX_TOTAL_RANGE_DAYS = 365
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100
DEFAULT_DROP_OFF_TIME = "8:00 AM"
TODAY_DEFAULT_DURATION_MINUTES = 60

CANCEL_STATUSES = {"DECLINED", "CANCELLED_BY_SELLER"}

CURRENCY_SYMBOLS = {"USD": "$", "CAD": "$", "AUD": "$", "EUR": "€", "GBP": "£"}


class BookingRequestError(Exception):
    """A booking request that cannot be fulfilled as sent"""

    def __init__(self, status_code: int, message: str, code: Optional[str] = None):
        self.status_code = status_code
        self.message = message
        self.code = code
        super().__init__(message)


@dataclass
class ServicePricing:
    amount: int
    currency: str
    service_name: str
    duration_minutes: Optional[int] = None


@dataclass
class NewBooking:
    email: Optional[str] = None
    full_name: Optional[str] = None
    phone: Optional[str] = None
    start_at: Optional[str] = None
    service_variation_id: Optional[str] = None
    notes: Optional[str] = None
    drop_off_time: Optional[str] = None
    vehicle_make: Optional[str] = None
    vehicle_model: Optional[str] = None
    vehicle_year: Optional[str] = None
    vehicle_color: Optional[str] = None
    payment_token: Optional[str] = None
    card_brand: Optional[str] = None
    card_last_four: Optional[str] = None


def _clean(value: Optional[str]) -> str:
    return value.strip() if isinstance(value, str) else ""


def format_money(amount: int, currency: str) -> str:
    symbol = CURRENCY_SYMBOLS.get(currency)
    if symbol:
        return f"{symbol}{amount / 100:,.2f}"
    return f"{amount / 100:,.2f} {currency}"


# ----------------------------------------------------------------------
# Catalog lookups
# ----------------------------------------------------------------------


async def get_service_pricing(gateway, service_variation_id: str) -> ServicePricing:
    """Price, currency and display name of a catalog variation"""
    response = await gateway.retrieve_catalog_object(service_variation_id, include_related_objects=True)
    related = response.get("related_objects") or []

    variation = response.get("object")
    if not variation or variation.get("type") != "ITEM_VARIATION":
        variation = next(
            (
                obj
                for obj in related
                if obj.get("id") == service_variation_id and obj.get("type") == "ITEM_VARIATION"
            ),
            None,
        )
    variation_data = (variation or {}).get("item_variation_data")
    if not variation_data:
        raise BookingRequestError(400, "Service variation could not be found in Square catalog")

    price_money = variation_data.get("price_money") or {}
    if price_money.get("amount") is None:
        raise BookingRequestError(400, "Service price is not configured in Square")
    try:
        amount = int(price_money["amount"])
    except (TypeError, ValueError) as e:
        raise BookingRequestError(400, "Invalid service price configured in Square") from e

    service_name = variation_data.get("name") or ""
    if not service_name and variation_data.get("item_id"):
        parent = next((obj for obj in related if obj.get("id") == variation_data["item_id"]), None)
        if parent and (parent.get("item_data") or {}).get("name"):
            service_name = parent["item_data"]["name"]

    duration_ms = variation_data.get("service_duration")
    return ServicePricing(
        amount=amount,
        currency=_clean(price_money.get("currency")) or DEFAULT_CURRENCY,
        service_name=service_name or "Detail Service",
        duration_minutes=round(int(duration_ms) / 60000) if duration_ms else None,
    )


async def fetch_service_details(gateway, variation_ids: list[str]) -> dict[str, dict]:
    """{variation id: {amountCents, currency, serviceName, durationMinutes}}"""
    if not variation_ids:
        return {}

    try:
        response = await gateway.batch_retrieve_catalog_objects(variation_ids, include_related_objects=True)
    except SquareAPIError as e:
        logger.warning(f"Failed to fetch service details batch: {e.detail}")
        return {}

    item_names = {
        obj["id"]: obj["item_data"]["name"]
        for obj in response.get("related_objects") or []
        if obj.get("type") == "ITEM" and (obj.get("item_data") or {}).get("name")
    }

    details = {}
    for obj in response.get("objects") or []:
        if obj.get("type") != "ITEM_VARIATION" or not obj.get("item_variation_data"):
            continue
        variation_data = obj["item_variation_data"]
        price_money = variation_data.get("price_money") or {}
        parent_name = item_names.get(variation_data.get("item_id"))
        variation_name = variation_data.get("name") or ""

        service_name = parent_name or variation_name or "Service"
        if parent_name and variation_name and variation_name != "Normal":
            service_name = f"{parent_name} ({variation_name})"

        duration_ms = variation_data.get("service_duration")
        details[obj["id"]] = {
            "amountCents": int(price_money.get("amount") or 0),
            "currency": price_money.get("currency") or DEFAULT_CURRENCY,
            "serviceName": service_name,
            "durationMinutes": round(int(duration_ms) / 60000) if duration_ms else None,
        }
    return details


# ----------------------------------------------------------------------
# Customers
# ----------------------------------------------------------------------


async def find_or_create_customer(gateway, email: str, phone: Optional[str], full_name: Optional[str]) -> dict:
    """Square customer for an email address, updating phone and name when they changed"""
    given_name, family_name = split_full_name(full_name)

    response = await gateway.search_customers(
        {"query": {"filter": {"email_address": {"exact": email}}}, "limit": 1}
    )
    customers = response.get("customers") or []

    if customers:
        customer = customers[0]
        updates = {}
        if phone and customer.get("phone_number") != phone:
            updates["phone_number"] = phone
        if given_name and customer.get("given_name") != given_name:
            updates["given_name"] = given_name
        if family_name and customer.get("family_name") != family_name:
            updates["family_name"] = family_name

        if updates:
            try:
                await gateway.update_customer(customer["id"], updates)
                customer.update(updates)
            except SquareAPIError as e:
                logger.warning(f"Failed to update customer record {customer['id']}: {e.detail}")
        return customer

    payload = {"email_address": email}
    if phone:
        payload["phone_number"] = phone
    if given_name:
        payload["given_name"] = given_name
    if family_name:
        payload["family_name"] = family_name

    created = await gateway.create_customer(payload)
    customer = created.get("customer")
    if not customer:
        raise BookingRequestError(500, "Unable to create or find customer")
    logger.info(f"Created Square customer {customer.get('id')}")
    return customer


async def fetch_customers(gateway, customer_ids: list[str]) -> dict[str, dict]:
    """Customers by id; lookups that fail are left out"""

    async def fetch(customer_id: str) -> Optional[dict]:
        try:
            return (await gateway.retrieve_customer(customer_id)).get("customer")
        except SquareAPIError as e:
            logger.warning(f"Failed to fetch customer {customer_id}: {e.detail}")
            return None

    results = await asyncio.gather(*(fetch(customer_id) for customer_id in customer_ids))
    return {customer_id: customer for customer_id, customer in zip(customer_ids, results) if customer}


# ----------------------------------------------------------------------
# Creation
# ----------------------------------------------------------------------


def build_seller_note(card_id: Optional[str], pricing: ServicePricing) -> str:
    complimentary = pricing.amount == 0
    parts = [
        f"Card ID: {card_id}" if card_id and not complimentary else None,
        f"Service Amount (cents): {pricing.amount}",
        f"Currency: {pricing.currency}",
        "Card on file for no-show protection" if card_id and not complimentary else None,
        "Complimentary booking - no card required" if complimentary else None,
    ]
    return " | ".join(part for part in parts if part)


def build_customer_note(request: NewBooking, pricing: ServicePricing) -> str:
    if pricing.amount == 0:
        payment_line = "Payment: Complimentary service"
    else:
        if request.card_brand and request.card_last_four:
            method = f"{request.card_brand} ending in {request.card_last_four} (on file)"
        else:
            method = "Card on file"
        payment_line = f"Payment: {format_money(pricing.amount, pricing.currency)} (pay at service) - {method}"

    parts = [
        f"Drop-off Time: {request.drop_off_time}" if request.drop_off_time else None,
        f"Name: {request.full_name}" if request.full_name else None,
        f"Phone: {request.phone}" if request.phone else None,
        f"Make: {request.vehicle_make}" if request.vehicle_make else None,
        f"Model: {request.vehicle_model}" if request.vehicle_model else None,
        f"Year: {request.vehicle_year}" if request.vehicle_year else None,
        f"Color: {request.vehicle_color}" if request.vehicle_color else None,
        payment_line,
        f"Notes: {request.notes}" if request.notes else None,
    ]
    return " | ".join(part for part in parts if part)


def _appointment_segments(slot: dict, service_variation_id: str, team_member_id: str) -> list[dict]:
    segments = slot.get("appointment_segments") or []
    if not segments:
        return [
            {
                "team_member_id": team_member_id,
                "service_variation_id": service_variation_id,
                "service_variation_version": 1,
            }
        ]

    shaped = []
    for segment in segments:
        shaped.append(
            {
                key: value
                for key, value in {
                    "duration_minutes": segment.get("duration_minutes"),
                    "intermission_minutes": segment.get("intermission_minutes"),
                    "any_team_member": segment.get("any_team_member"),
                    "resource_ids": segment.get("resource_ids"),
                    "team_member_id": segment.get("team_member_id") or team_member_id,
                    "service_variation_id": segment.get("service_variation_id") or service_variation_id,
                    "service_variation_version": int(segment.get("service_variation_version") or 1),
                }.items()
                if value is not None
            }
        )
    return shaped


def _normalize_request(request: NewBooking) -> NewBooking:
    return NewBooking(
        email=_clean(request.email),
        full_name=_clean(request.full_name),
        phone=_clean(request.phone),
        start_at=_clean(request.start_at),
        service_variation_id=_clean(request.service_variation_id),
        notes=_clean(request.notes),
        drop_off_time=_clean(request.drop_off_time) or DEFAULT_DROP_OFF_TIME,
        vehicle_make=_clean(request.vehicle_make),
        vehicle_model=_clean(request.vehicle_model),
        vehicle_year=_clean(request.vehicle_year),
        vehicle_color=_clean(request.vehicle_color),
        payment_token=_clean(request.payment_token),
        card_brand=_clean(request.card_brand),
        card_last_four=_clean(request.card_last_four),
    )


async def _disable_card(gateway, card_id: str) -> None:
    try:
        await gateway.disable_card(card_id)
        logger.info(f"Disabled card on file {card_id} after failed booking")
    except SquareAPIError as e:
        logger.error(f"Failed to disable card on file {card_id}: {e.detail}")


async def create_booking(gateway, db: Session, request: NewBooking) -> dict:
    """
    Run the customer booking flow: validate, pick the Square slot, check the
    day's capacity, find or create the customer, store the card on file,
    create the booking and persist its payment record.
    """
    request = _normalize_request(request)

    if not all([request.email, request.full_name, request.phone, request.start_at, request.service_variation_id]):
        raise BookingRequestError(400, "email, fullName, phone, startAt, and serviceVariationId are required")

    phone = normalize_phone_number(request.phone)
    if not phone:
        raise BookingRequestError(400, "A valid phone number is required")

    try:
        requested_start = parse_start_at(request.start_at)
    except ValueError as e:
        raise BookingRequestError(400, "startAt must be an ISO 8601 timestamp") from e
    local_day = requested_start.astimezone(business_timezone()).date()

    availability = await search_square_availability(
        gateway, request.service_variation_id, local_day.year, local_day.month, local_day.day
    )
    slots = [slot for slot in availability.values() if slot.get("start_at")]
    if not slots:
        raise BookingRequestError(400, "No available slots for the selected date and service")

    selected_slot = next(
        (slot for slot in slots if parse_start_at(slot["start_at"]) == requested_start),
        slots[0],
    )
    start_at = selected_slot["start_at"]

    pricing = await get_service_pricing(gateway, request.service_variation_id)
    if pricing.amount < 0:
        raise BookingRequestError(400, "Selected service has an invalid price configured before booking")

    segments_from_slot = selected_slot.get("appointment_segments") or []
    required_minutes = pricing.duration_minutes or next(
        (s.get("duration_minutes") for s in segments_from_slot if s.get("duration_minutes")), 0
    )
    if required_minutes:
        remaining = remaining_minutes_for_day(await get_day_bookings(gateway, local_day))
        if required_minutes > remaining:
            raise BookingRequestError(
                422,
                f"Not enough time left on {local_day.isoformat()} for this service "
                f"({remaining / 60:.1f} hours remaining)",
            )

    complimentary = pricing.amount == 0
    if not complimentary and not request.payment_token:
        raise BookingRequestError(400, "Card information is required to secure your appointment")

    team_member_id = next(
        (s["team_member_id"] for s in segments_from_slot if s.get("team_member_id")), None
    ) or await gateway.get_team_member_id()

    customer = await find_or_create_customer(gateway, request.email, phone, request.full_name)
    location_id = await gateway.get_location_id()

    card = None
    if not complimentary:
        try:
            card_response = await gateway.create_card(
                source_id=request.payment_token,
                customer_id=customer["id"],
                idempotency_key=str(uuid.uuid4()),
            )
        except SquareAPIError as e:
            raise BookingRequestError(400, e.detail or "Failed to store card information") from e
        card = card_response.get("card")
        if not card or not card.get("id"):
            raise BookingRequestError(500, "Card could not be stored")

    card_id = card["id"] if card else None
    booking_body = {
        "location_id": location_id,
        "customer_id": customer["id"],
        "start_at": start_at,
        "seller_note": build_seller_note(card_id, pricing),
        "customer_note": build_customer_note(request, pricing),
        "appointment_segments": _appointment_segments(
            selected_slot, request.service_variation_id, team_member_id
        ),
    }

    try:
        response = await gateway.create_booking(booking_body, idempotency_key=str(uuid.uuid4()))
    except SquareAPIError:
        if card_id:
            await _disable_card(gateway, card_id)
        raise

    booking = response.get("booking") or response
    if booking.get("id"):
        BookingPaymentRepository.save_payment_details(
            db,
            booking_id=booking["id"],
            customer_id=customer["id"],
            card_id=card_id,
            amount_cents=pricing.amount,
            currency=pricing.currency,
        )
    logger.info(f"✅ Booking {booking.get('id')} created for {start_at}")

    return {"booking": booking, "cardOnFile": card, "payment": None}


# ----------------------------------------------------------------------
# Listing
# ----------------------------------------------------------------------


def parse_datetime_param(value: Optional[str], name: str) -> Optional[datetime]:
    if not value:
        return None
    try:
        return parse_start_at(value)
    except ValueError as e:
        raise BookingRequestError(400, f"Invalid {name} value") from e


def resolve_date_range(
    start_at_min: Optional[str],
    start_at_max: Optional[str],
    now: Optional[datetime] = None,
) -> tuple[datetime, datetime]:
    """Requested listing range, defaulting to 60 days either side"""
    start = parse_datetime_param(start_at_min, "start_at_min")
    end = parse_datetime_param(start_at_max, "start_at_max")
    now = now or datetime.now(timezone.utc)

    if start and not end:
        end = start + timedelta(days=DEFAULT_FUTURE_DAYS)
    elif end and not start:
        start = end - timedelta(days=DEFAULT_PAST_DAYS)
    elif not start and not end:
        start = now - timedelta(days=DEFAULT_PAST_DAYS)
        end = now + timedelta(days=DEFAULT_FUTURE_DAYS)

    if end <= start:
        raise BookingRequestError(400, "start_at_max must be after start_at_min")
    if end - start > timedelta(days=MAX_TOTAL_RANGE_DAYS):
        raise BookingRequestError(400, f"Requested range cannot exceed {MAX_TOTAL_RANGE_DAYS} days")
    return start, end


def clamp_page_size(limit: Optional[int]) -> int:
    if not limit:
        return DEFAULT_PAGE_SIZE
    return min(max(1, limit), MAX_PAGE_SIZE)


async def enrich_bookings(gateway, db: Session, bookings: list[dict]) -> list[dict]:
    """Attach customer, serviceAmount and serviceDetails to each booking"""
    customer_ids = list(dict.fromkeys(b["customer_id"] for b in bookings if b.get("customer_id")))
    variation_ids = list(
        dict.fromkeys(
            b["appointment_segments"][0]["service_variation_id"]
            for b in bookings
            if b.get("appointment_segments") and b["appointment_segments"][0].get("service_variation_id")
        )
    )

    customers = await fetch_customers(gateway, customer_ids)
    service_details = await fetch_service_details(gateway, variation_ids)
    records = BookingPaymentRepository.get_many(db, [b["id"] for b in bookings if b.get("id")])

    enriched = []
    for booking in bookings:
        segments = booking.get("appointment_segments") or []
        first_segment = segments[0] if segments else {}
        catalog = service_details.get(first_segment.get("service_variation_id"))
        segment_duration = first_segment.get("duration_minutes")

        record = records.get(booking.get("id"))
        note = parse_seller_note(booking.get("seller_note"))
        if record is not None and record.amount_cents is not None:
            service_amount = {"amountCents": record.amount_cents, "currency": record.currency or DEFAULT_CURRENCY}
        elif note.amount_cents is not None:
            service_amount = {"amountCents": note.amount_cents, "currency": note.currency or DEFAULT_CURRENCY}
        elif catalog:
            service_amount = {"amountCents": catalog["amountCents"], "currency": catalog["currency"]}
        else:
            service_amount = None

        if catalog:
            service_details_entry = {
                "serviceName": catalog["serviceName"],
                "durationMinutes": segment_duration or catalog["durationMinutes"],
            }
        elif segment_duration:
            service_details_entry = {"serviceName": None, "durationMinutes": segment_duration}
        else:
            service_details_entry = None

        enriched.append(
            {
                **booking,
                "customer": customers.get(booking.get("customer_id")),
                "serviceAmount": service_amount,
                "serviceDetails": service_details_entry,
            }
        )
    return enriched


def encode_listing_cursor(start: datetime, end: datetime, window: int, square_cursor: Optional[str]) -> str:
    state = {"start": to_rfc3339(start), "end": to_rfc3339(end), "window": window, "square": square_cursor}
    return base64.urlsafe_b64encode(json.dumps(state).encode()).decode()


def decode_listing_cursor(cursor: str) -> tuple[datetime, datetime, int, Optional[str]]:
    try:
        state = json.loads(base64.urlsafe_b64decode(cursor.encode()))
        return (
            parse_start_at(state["start"]),
            parse_start_at(state["end"]),
            int(state["window"]),
            state.get("square"),
        )
    except (ValueError, KeyError, TypeError) as e:
        raise BookingRequestError(400, "Invalid cursor") from e


async def list_bookings_page(
    gateway,
    db: Session,
    limit: Optional[int] = None,
    cursor: Optional[str] = None,
    location_id: Optional[str] = None,
    customer_id: Optional[str] = None,
    team_member_id: Optional[str] = None,
    start_at_min: Optional[str] = None,
    start_at_max: Optional[str] = None,
) -> dict:
    """
    One enriched page of bookings for the admin dashboard.

    The range is walked window by window; the returned cursor records the
    window and the Square cursor inside it so the next page resumes there.
    """
    page_size = clamp_page_size(limit)
    if cursor:
        start, end, window_index, square_cursor = decode_listing_cursor(cursor)
    else:
        start, end = resolve_date_range(start_at_min, start_at_max)
        window_index, square_cursor = 0, None

    windows = split_range_into_windows(start, end)
    location_id = location_id or await gateway.get_location_id()

    raw_bookings: list[dict] = []
    while window_index < len(windows) and len(raw_bookings) < page_size:
        window_start, window_end = windows[window_index]
        page = await gateway.list_bookings(
            start_at_min=to_rfc3339(window_start),
            start_at_max=to_rfc3339(window_end),
            location_id=location_id,
            customer_id=customer_id,
            team_member_id=team_member_id,
            limit=page_size - len(raw_bookings),
            cursor=square_cursor,
        )
        raw_bookings.extend(page.get("bookings") or [])
        square_cursor = page.get("cursor")
        if not square_cursor:
            window_index += 1

    next_cursor = None
    if window_index < len(windows):
        next_cursor = encode_listing_cursor(start, end, window_index, square_cursor)

    bookings = await enrich_bookings(gateway, db, raw_bookings[:page_size])
    return {
        "bookings": bookings,
        "startAtMin": to_rfc3339(start),
        "startAtMax": to_rfc3339(end),
        "cursor": next_cursor,
        "hasMore": bool(next_cursor),
        "count": len(bookings),
    }


# ----------------------------------------------------------------------
# Cancellation / status changes
# ----------------------------------------------------------------------


async def _current_booking(gateway, booking_id: str) -> dict:
    booking = (await gateway.retrieve_booking(booking_id)).get("booking")
    if not booking:
        raise BookingRequestError(404, "Booking not found")
    return booking


async def cancel_booking(gateway, booking_id: str) -> dict:
    """Cancel with the booking's current version"""
    try:
        booking = await _current_booking(gateway, booking_id)
        response = await gateway.cancel_booking(booking_id, booking.get("version"))
    except SquareAPIError as e:
        if e.status_code == 400 and e.code == "INVALID_BOOKING_STATE":
            raise BookingRequestError(
                400,
                "Booking is already cancelled or in an invalid state for cancellation",
                code="INVALID_BOOKING_STATE",
            ) from e
        raise

    logger.info(f"Booking {booking_id} cancelled")
    return response.get("booking") or {}


async def update_booking(gateway, booking_id: str, changes: dict) -> dict:
    booking = await _current_booking(gateway, booking_id)
    return await gateway.update_booking(booking_id, {**changes, "version": booking.get("version")})


async def change_booking_status(gateway, booking_id: str, status: Optional[str]) -> dict:
    """
    Square statuses are read-only, so ACCEPTED is echoed back and
    DECLINED / CANCELLED_BY_SELLER cancel the booking
    """
    if status == "ACCEPTED":
        booking = await _current_booking(gateway, booking_id)
        return {**booking, "status": "ACCEPTED"}

    if status in CANCEL_STATUSES:
        cancelled = await cancel_booking(gateway, booking_id)
        return {**cancelled, "status": "CANCELLED_BY_SELLER"}

    raise BookingRequestError(400, f"Cannot change status to {status}")


def summarize_today(bookings: list[dict], now: datetime) -> dict:
    upcoming = in_progress = completed = 0
    for booking in bookings:
        start = parse_start_at(booking["start_at"])
        segments = booking.get("appointment_segments") or []
        duration = (segments[0].get("duration_minutes") if segments else None) or TODAY_DEFAULT_DURATION_MINUTES
        end = start + timedelta(minutes=duration)
        if start > now:
            upcoming += 1
        elif end > now:
            in_progress += 1
        else:
            completed += 1
    return {
        "total": len(bookings),
        "upcoming": upcoming,
        "inProgress": in_progress,
        "completed": completed,
    }


async def get_today_bookings(gateway, now: Optional[datetime] = None) -> dict:
    tz = business_timezone()
    now = now or datetime.now(timezone.utc)
    today = now.astimezone(tz).date()

    bookings = [b for b in await get_day_bookings(gateway, today) if b.get("start_at")]
    bookings.sort(key=lambda b: parse_start_at(b["start_at"]))

    return {
        "bookings": bookings,
        "stats": summarize_today(bookings, now),
        "date": today.isoformat(),
    }

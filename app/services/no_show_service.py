"""
No-Show Fee Collector
Charges a percentage of the service price for ACCEPTED bookings the customer
never showed up to, using the card stored on file at booking time
"""
import logging
import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import httpx
from sqlalchemy.orm import Session

from ..errors import SquareAPIError
from ..models import CHARGE_STATUS_CHARGED
from ..repository import BookingPaymentRepository
from .availability_service import parse_start_at, to_rfc3339

logger = logging.getLogger(__name__)

NO_SHOW_FEE_PERCENTAGE = 30
NO_SHOW_WINDOW_HOURS = 48
NO_SHOW_LOOKBACK_DAYS = 7
CHARGE_MARKER = "No-show fee charged:"
DEFAULT_CURRENCY = "USD"

CARD_ID_PATTERN = re.compile(r"Card ID: ([^\s|]+)")
AMOUNT_PATTERN = re.compile(r"Service Amount \(cents\): (\d+)")
CURRENCY_PATTERN = re.compile(r"Currency: ([A-Z]{3})")
CHARGED_PAYMENT_PATTERN = re.compile(r"No-show fee charged: ([^\s|]+)")


class NoShowChargeError(Exception):
    """A booking that cannot (or must not) be charged"""

    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        self.message = message
        super().__init__(message)


@dataclass
class SellerNoteDetails:
    card_id: Optional[str] = None
    amount_cents: Optional[int] = None
    currency: Optional[str] = None
    charged_payment_id: Optional[str] = None


@dataclass
class PaymentDetails:
    card_id: Optional[str]
    amount_cents: Optional[int]
    currency: str


def calculate_no_show_fee(amount_cents: int, percentage: int = NO_SHOW_FEE_PERCENTAGE) -> int:
    """Integer fee in minor units, rounded down"""
    return amount_cents * percentage // 100


def parse_seller_note(note: Optional[str]) -> SellerNoteDetails:
    if not note:
        return SellerNoteDetails()

    card_match = CARD_ID_PATTERN.search(note)
    amount_match = AMOUNT_PATTERN.search(note)
    currency_match = CURRENCY_PATTERN.search(note)
    charged_match = CHARGED_PAYMENT_PATTERN.search(note)

    return SellerNoteDetails(
        card_id=card_match.group(1) if card_match else None,
        amount_cents=int(amount_match.group(1)) if amount_match else None,
        currency=currency_match.group(1) if currency_match else None,
        charged_payment_id=charged_match.group(1) if charged_match else None,
    )


def has_been_charged(booking: dict, record=None) -> bool:
    if CHARGE_MARKER in (booking.get("seller_note") or ""):
        return True
    return record is not None and record.charge_status == CHARGE_STATUS_CHARGED


def is_no_show_candidate(booking: dict, record=None, now: Optional[datetime] = None) -> bool:
    """
    ACCEPTED, 48+ hours past start and not yet charged. Bookings with neither
    a payment record nor a seller note are complimentary and never charged.
    """
    if booking.get("status") != "ACCEPTED" or not booking.get("start_at"):
        return False

    now = now or datetime.now(timezone.utc)
    if now - parse_start_at(booking["start_at"]) < timedelta(hours=NO_SHOW_WINDOW_HOURS):
        return False

    if record is None and not booking.get("seller_note"):
        return False
    return not has_been_charged(booking, record)


def append_charge_marker(note: Optional[str], payment_id: str) -> str:
    marker = f"{CHARGE_MARKER} {payment_id}"
    return f"{note} | {marker}" if note else marker


class NoShowCollector:
    """Charges no-show fees for one booking or for every booking in the scan window"""

    def __init__(self, gateway, db: Session, now: Optional[datetime] = None):
        self.gateway = gateway
        self.db = db
        self.now = now or datetime.now(timezone.utc)

    async def _first_enabled_card(self, customer_id: str) -> Optional[str]:
        try:
            result = await self.gateway.list_cards(customer_id)
        except SquareAPIError as e:
            logger.warning(f"Failed to fetch cards for customer {customer_id}: {e.detail}")
            return None
        for card in result.get("cards") or []:
            if card.get("enabled") and card.get("id"):
                return card["id"]
        return None

    async def _catalog_price(self, booking: dict) -> tuple[Optional[int], Optional[str]]:
        segments = booking.get("appointment_segments") or []
        variation_id = segments[0].get("service_variation_id") if segments else None
        if not variation_id:
            return None, None
        try:
            result = await self.gateway.retrieve_catalog_object(variation_id)
        except SquareAPIError as e:
            logger.warning(f"Failed to fetch service pricing from catalog: {e.detail}")
            return None, None
        price_money = ((result.get("object") or {}).get("item_variation_data") or {}).get("price_money") or {}
        if price_money.get("amount") is None:
            return None, None
        return int(price_money["amount"]), price_money.get("currency")

    async def resolve_payment_details(self, booking: dict, record=None) -> PaymentDetails:
        """
        Card and price for a booking: payment record, then seller note, then
        the customer's card on file and the catalog price.
        """
        note = parse_seller_note(booking.get("seller_note"))

        card_id = (record.card_id if record else None) or note.card_id
        amount_cents = record.amount_cents if record and record.amount_cents is not None else note.amount_cents
        currency = (record.currency if record else None) or note.currency or DEFAULT_CURRENCY

        if not card_id and booking.get("customer_id"):
            card_id = await self._first_enabled_card(booking["customer_id"])

        if not amount_cents:
            catalog_amount, catalog_currency = await self._catalog_price(booking)
            if catalog_amount:
                amount_cents = catalog_amount
                currency = catalog_currency or currency

        return PaymentDetails(card_id=card_id, amount_cents=amount_cents, currency=currency)

    async def charge_booking(self, booking: dict) -> dict:
        """
        Charge the no-show fee for a booking.

        Raises NoShowChargeError when the booking is not chargeable, the claim is
        lost to a concurrent run, or Square rejects the payment.
        """
        booking_id = booking["id"]
        record = BookingPaymentRepository.get(self.db, booking_id)

        if booking.get("status") != "ACCEPTED":
            raise NoShowChargeError(
                400,
                f"Cannot charge no-show fee: booking status is {booking.get('status')}. "
                "Only ACCEPTED bookings can be charged.",
            )

        if has_been_charged(booking, record):
            raise NoShowChargeError(400, "No-show fee has already been charged for this booking")

        details = await self.resolve_payment_details(booking, record)
        if not details.card_id:
            raise NoShowChargeError(400, "No card on file for this booking")
        if not details.amount_cents:
            raise NoShowChargeError(400, "Missing amount or currency information for this booking")

        claimed = BookingPaymentRepository.claim_charge(
            self.db,
            booking_id,
            booking.get("version"),
            details.card_id,
            details.amount_cents,
            details.currency,
        )
        if not claimed:
            raise NoShowChargeError(409, "A no-show charge for this booking is already in progress")

        fee = calculate_no_show_fee(details.amount_cents)
        start_date = parse_start_at(booking["start_at"]).date().isoformat() if booking.get("start_at") else "unknown date"

        try:
            location_id = await self.gateway.get_location_id()
            payment_response = await self.gateway.create_payment(
                {
                    "source_id": details.card_id,
                    "idempotency_key": str(uuid.uuid4()),
                    "amount_money": {"amount": fee, "currency": details.currency},
                    "customer_id": booking.get("customer_id"),
                    "location_id": location_id,
                    "reference_id": booking_id,
                    "autocomplete": True,
                    "note": f"No-show fee ({NO_SHOW_FEE_PERCENTAGE}%) for booking {booking_id} on {start_date}",
                }
            )
        except SquareAPIError as e:
            BookingPaymentRepository.mark_failed(self.db, booking_id, e.detail)
            logger.error(f"❌ No-show charge failed for booking {booking_id}: {e.detail}")
            raise NoShowChargeError(400, e.detail or "Failed to charge no-show fee") from e
        except httpx.HTTPError as e:
            error = f"Square API request failed: {e}"
            BookingPaymentRepository.mark_failed(self.db, booking_id, error)
            logger.error(f"❌ No-show charge for booking {booking_id} did not reach Square: {e!r}")
            raise NoShowChargeError(502, error) from e

        payment_id = (payment_response.get("payment") or {}).get("id")
        BookingPaymentRepository.mark_charged(self.db, booking_id, payment_id, fee)
        logger.info(f"✅ Charged no-show fee {fee} {details.currency} for booking {booking_id}: {payment_id}")

        note_updated = True
        try:
            await self.gateway.update_booking(
                booking_id,
                {
                    "version": booking.get("version"),
                    "seller_note": append_charge_marker(booking.get("seller_note"), payment_id),
                },
            )
        except SquareAPIError as e:
            note_updated = False
            logger.warning(f"⚠️ Failed to update booking {booking_id} after charging no-show fee: {e.detail}")

        return {
            "success": True,
            "bookingId": booking_id,
            "paymentId": payment_id,
            "fullAmount": str(details.amount_cents),
            "noShowFeeAmount": str(fee),
            "feePercentage": NO_SHOW_FEE_PERCENTAGE,
            "currency": details.currency,
            "noteUpdated": note_updated,
        }

    async def charge_by_id(self, booking_id: str) -> dict:
        try:
            booking = (await self.gateway.retrieve_booking(booking_id)).get("booking")
        except SquareAPIError as e:
            if e.status_code == 404:
                raise NoShowChargeError(404, e.detail or "Booking not found") from e
            raise
        if not booking:
            raise NoShowChargeError(404, "Booking not found")
        return await self.charge_booking(booking)

    async def run(self) -> dict:
        """Scan [now - 7 days, now - 48 hours] and charge every unclaimed no-show"""
        cutoff = self.now - timedelta(hours=NO_SHOW_WINDOW_HOURS)
        window_start = self.now - timedelta(days=NO_SHOW_LOOKBACK_DAYS)

        bookings = await self.gateway.list_all_bookings(
            start_at_min=to_rfc3339(window_start),
            start_at_max=to_rfc3339(cutoff),
        )
        records = BookingPaymentRepository.get_many(self.db, [b["id"] for b in bookings if b.get("id")])

        no_show_count = 0
        charge_results = []
        for booking in bookings:
            if not is_no_show_candidate(booking, records.get(booking["id"]), self.now):
                continue

            no_show_count += 1
            try:
                charge_results.append(await self.charge_booking(booking))
            except NoShowChargeError as e:
                logger.error(f"Error charging no-show fee for booking {booking['id']}: {e.message}")
                charge_results.append({"bookingId": booking["id"], "success": False, "error": e.message})
            except SquareAPIError as e:
                logger.error(f"Error charging no-show fee for booking {booking['id']}: {e.detail}")
                charge_results.append({"bookingId": booking["id"], "success": False, "error": e.detail})

        return {
            "message": "No-show check completed",
            "noShowBookings": no_show_count,
            "chargeResults": charge_results,
            "timestamp": to_rfc3339(self.now),
        }

"""Booking payment repository - Database operations for payment records"""

import logging
from typing import Optional

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .models import (
    CHARGE_STATUS_CHARGED,
    CHARGE_STATUS_FAILED,
    CHARGE_STATUS_PENDING,
    BookingPaymentRecord,
)

logger = logging.getLogger(__name__)


class BookingPaymentRepository:
    """Repository for booking payment record operations"""

    @staticmethod
    def get(db: Session, booking_id: str) -> Optional[BookingPaymentRecord]:
        """Get the payment record for a booking"""
        return (
            db.query(BookingPaymentRecord)
            .filter(BookingPaymentRecord.booking_id == booking_id)
            .first()
        )

    @staticmethod
    def get_many(db: Session, booking_ids: list[str]) -> dict[str, BookingPaymentRecord]:
        """Get payment records for several bookings, keyed by booking id"""
        if not booking_ids:
            return {}
        records = (
            db.query(BookingPaymentRecord)
            .filter(BookingPaymentRecord.booking_id.in_(booking_ids))
            .all()
        )
        return {record.booking_id: record for record in records}

    @staticmethod
    def save_payment_details(
        db: Session,
        booking_id: str,
        customer_id: Optional[str],
        card_id: Optional[str],
        amount_cents: int,
        currency: str,
    ) -> BookingPaymentRecord:
        """Store card and price for a newly created booking"""
        record = BookingPaymentRecord(
            booking_id=booking_id,
            customer_id=customer_id,
            card_id=card_id,
            amount_cents=amount_cents,
            currency=currency,
        )
        db.add(record)
        db.commit()
        db.refresh(record)
        return record

    @staticmethod
    def claim_charge(
        db: Session,
        booking_id: str,
        booking_version: Optional[int],
        card_id: str,
        amount_cents: int,
        currency: str,
    ) -> bool:
        """
        Mark a booking as being charged.

        The write is conditional: an existing record is only claimed when it has
        never been charged or its last attempt failed, and a missing record is
        inserted under the booking id primary key. Exactly one concurrent caller
        gets True.
        """
        result = db.execute(
            update(BookingPaymentRecord)
            .where(
                BookingPaymentRecord.booking_id == booking_id,
                or_(
                    BookingPaymentRecord.charge_status.is_(None),
                    BookingPaymentRecord.charge_status == CHARGE_STATUS_FAILED,
                ),
            )
            .values(
                charge_status=CHARGE_STATUS_PENDING,
                claimed_version=booking_version,
                card_id=card_id,
                amount_cents=amount_cents,
                currency=currency,
                last_error=None,
            )
        )
        if result.rowcount == 1:
            db.commit()
            return True

        if BookingPaymentRepository.get(db, booking_id) is not None:
            # Held by another run, or already charged
            db.rollback()
            return False

        db.add(
            BookingPaymentRecord(
                booking_id=booking_id,
                card_id=card_id,
                amount_cents=amount_cents,
                currency=currency,
                charge_status=CHARGE_STATUS_PENDING,
                claimed_version=booking_version,
            )
        )
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            logger.info(f"Charge claim for booking {booking_id} lost to a concurrent run")
            return False
        return True

    @staticmethod
    def mark_charged(db: Session, booking_id: str, payment_id: str, fee_amount_cents: int) -> None:
        """Commit a successful no-show charge"""
        record = BookingPaymentRepository.get(db, booking_id)
        if record is None:
            return
        record.charge_status = CHARGE_STATUS_CHARGED
        record.charged_payment_id = payment_id
        record.fee_amount_cents = fee_amount_cents
        record.last_error = None
        db.commit()

    @staticmethod
    def mark_failed(db: Session, booking_id: str, error: str) -> None:
        """Release a claim after a failed charge so a later run can retry"""
        record = BookingPaymentRepository.get(db, booking_id)
        if record is None:
            return
        record.charge_status = CHARGE_STATUS_FAILED
        record.last_error = error
        db.commit()

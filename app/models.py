"""
Booking payment models
Persisted payment metadata for Square bookings, keyed by booking id
"""

from datetime import datetime

from sqlalchemy import BigInteger, Column, DateTime, Integer, String, Text

from .database import Base

# charge_status values
CHARGE_STATUS_PENDING = "pending"
CHARGE_STATUS_CHARGED = "charged"
CHARGE_STATUS_FAILED = "failed"


class BookingPaymentRecord(Base):
    """Card on file, service price and no-show charge state for one booking"""

    __tablename__ = "booking_payment_records"

    booking_id = Column(String, primary_key=True, index=True)
    customer_id = Column(String, nullable=True)
    card_id = Column(String, nullable=True)
    amount_cents = Column(BigInteger, nullable=True)
    currency = Column(String(3), nullable=True, default="USD")

    # None until a no-show charge is attempted
    charge_status = Column(String, nullable=True)
    charged_payment_id = Column(String, nullable=True)
    fee_amount_cents = Column(BigInteger, nullable=True)
    claimed_version = Column(Integer, nullable=True)
    last_error = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

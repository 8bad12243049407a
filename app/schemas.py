from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Request bodies arrive camelCased from the booking UI"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AdminLoginRequest(BaseModel):
    password: Optional[str] = None


class CreateBookingRequest(CamelModel):
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


class StatusChangeRequest(BaseModel):
    status: Optional[str] = None


class CancelBookingRequest(BaseModel):
    cancellation_reason: Optional[str] = None


class StoreCardRequest(CamelModel):
    customer_id: Optional[str] = None
    payment_token: Optional[str] = None


class TeamMemberSearchRequest(BaseModel):
    query: Optional[Dict[str, Any]] = None
    limit: Optional[int] = None
    cursor: Optional[str] = None

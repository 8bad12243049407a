"""
Customer and location routes
"""
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, HTTPException

from ..auth import require_admin
from ..services.square_service import get_square_gateway
from ..shared.validators import normalize_phone_number, validate_email

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Customers"])


@router.get("/api/customers")
async def list_customers(
    cursor: Optional[str] = None,
    limit: Optional[int] = None,
    sort_field: Optional[str] = None,
    sort_order: Optional[str] = None,
    gateway=Depends(get_square_gateway),
    _: str = Depends(require_admin),
):
    params = {"cursor": cursor, "limit": limit, "sort_field": sort_field, "sort_order": sort_order}
    return await gateway.list_customers({key: value for key, value in params.items() if value is not None})


@router.post("/api/customers")
async def create_customer(body: Dict[str, Any] = Body(...), gateway=Depends(get_square_gateway)):
    """Create a Square customer; email and phone are validated before sending"""
    payload = dict(body)

    if payload.get("email_address"):
        try:
            payload["email_address"] = validate_email(payload["email_address"])
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))

    if payload.get("phone_number"):
        phone = normalize_phone_number(payload["phone_number"])
        if not phone:
            raise HTTPException(status_code=400, detail="A valid phone number is required")
        payload["phone_number"] = phone

    response = await gateway.create_customer(payload)
    logger.info(f"Created Square customer {(response.get('customer') or {}).get('id')}")
    return response


@router.get("/api/customers/{customer_id}")
async def get_customer(
    customer_id: str,
    gateway=Depends(get_square_gateway),
    _: str = Depends(require_admin),
):
    return await gateway.retrieve_customer(customer_id)


@router.get("/api/locations", tags=["Locations"])
async def list_locations(gateway=Depends(get_square_gateway)):
    return await gateway.list_locations()

"""
Payment and card routes
Thin proxies over Square Payments and Cards
"""
import logging
import uuid
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, HTTPException

from ..auth import require_admin
from ..schemas import StoreCardRequest
from ..services.square_service import get_square_gateway

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Payments"])


@router.post("/api/payments")
async def create_payment(body: Dict[str, Any] = Body(...), gateway=Depends(get_square_gateway)):
    """
    Create a payment from a Square-shaped body.

    ``source_id`` and ``amount_money`` are required; the idempotency key and
    location default when missing and ``autocomplete`` defaults to true.
    """
    if not body.get("source_id"):
        raise HTTPException(status_code=400, detail="source_id is required for payment")
    if not body.get("amount_money"):
        raise HTTPException(status_code=400, detail="amount_money is required for payment")

    payment = {key: value for key, value in body.items() if value is not None}
    payment.setdefault("idempotency_key", str(uuid.uuid4()))
    payment["autocomplete"] = body.get("autocomplete") is not False
    if not payment.get("location_id"):
        payment["location_id"] = await gateway.get_location_id()

    response = await gateway.create_payment(payment)
    logger.info(f"💳 Payment created: {(response.get('payment') or {}).get('id')}")
    return response


@router.get("/api/payments")
async def list_payments(
    begin_time: Optional[str] = None,
    end_time: Optional[str] = None,
    sort_order: Optional[str] = None,
    cursor: Optional[str] = None,
    location_id: Optional[str] = None,
    limit: Optional[int] = None,
    gateway=Depends(get_square_gateway),
    _: str = Depends(require_admin),
):
    params = {
        "begin_time": begin_time,
        "end_time": end_time,
        "sort_order": sort_order,
        "cursor": cursor,
        "location_id": location_id,
        "limit": limit,
    }
    return await gateway.list_payments({key: value for key, value in params.items() if value is not None})


@router.post("/api/cards", tags=["Cards"])
async def store_card(data: StoreCardRequest, gateway=Depends(get_square_gateway)):
    """Store a Web Payments SDK token as a card on file for a customer"""
    if not data.customer_id or not data.payment_token:
        raise HTTPException(status_code=400, detail="customerId and paymentToken are required")

    response = await gateway.create_card(
        source_id=data.payment_token,
        customer_id=data.customer_id,
        idempotency_key=str(uuid.uuid4()),
    )
    return response.get("card")

"""
Scheduled jobs
Called daily by an external scheduler with ``Authorization: Bearer <CRON_SECRET>``
"""
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth import require_cron_or_admin
from ..database import get_db
from ..errors import SquareAPIError, raise_for_bookings_api
from ..services.no_show_service import NoShowCollector
from ..services.square_service import get_square_gateway

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/cron", tags=["Cron"])


@router.api_route("/no-show-check", methods=["GET", "POST"])
async def no_show_check(
    gateway=Depends(get_square_gateway),
    db: Session = Depends(get_db),
    caller: str = Depends(require_cron_or_admin),
):
    """Charge no-show fees for ACCEPTED bookings 48 hours to 7 days past their start"""
    logger.info(f"🕒 No-show check started by {caller}")
    try:
        result = await NoShowCollector(gateway, db).run()
    except SquareAPIError as e:
        logger.error(f"❌ No-show check failed: {e.detail}")
        raise_for_bookings_api(e)

    logger.info(
        f"✅ No-show check finished: {result['noShowBookings']} no-shows, "
        f"{sum(1 for r in result['chargeResults'] if r.get('success'))} charged"
    )
    return result

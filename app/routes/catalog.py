"""
Catalog route
Square catalog reshaped for the booking UI, with a static fallback
"""
import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from ..auth import require_admin
from ..cache import invalidate_catalog_cache
from ..errors import SquareAPIError
from ..services.catalog_service import build_catalog, get_fallback_catalog, load_catalog_objects
from ..services.square_service import get_square_gateway

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/catalog", tags=["Catalog"])


@router.get("")
async def get_catalog(refresh: bool = False, gateway=Depends(get_square_gateway)):
    try:
        objects = await load_catalog_objects(gateway, refresh=refresh)
    except SquareAPIError as e:
        logger.error(f"Failed to fetch catalog: {e.detail}")
        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "error": "Failed to fetch catalog",
                "data": get_fallback_catalog(),
            },
        )

    return {"success": True, "data": build_catalog(objects)}


@router.delete("/cache")
async def clear_catalog_cache(_: str = Depends(require_admin)):
    """Drop the cached catalog so the next read goes to Square"""
    invalidate_catalog_cache()
    logger.info("Catalog cache cleared")
    return {"success": True}

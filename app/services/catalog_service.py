"""
Catalog shaping
Turns Square catalog objects into the lookup tables the booking UI uses
"""
import logging
import re
from typing import Any, Optional

from .. import config
from ..cache import get_catalog_cached, set_catalog_cached

logger = logging.getLogger(__name__)

# Item name fragment -> service type
SERVICE_TYPE_MAP = {
    "Interior Only": "interior",
    "Exterior Only": "exterior",
    "Full Detail": "full",
}

# Category name -> vehicle type
VEHICLE_TYPE_MAP = {
    "SMALL CAR": "small",
    "TRUCK": "truck",
    "MINIVAN": "minivan",
}

DEFAULT_SERVICE_MINUTES = 240
KEYWORD_DURATIONS = {
    "Interior Only": 210,
    "Exterior Only": 180,
    "Full Detail": 240,
}

DURATION_PATTERN = re.compile(r"(\d+)h\s*(?:(\d+)m)?")


def format_price(amount: int, currency: Optional[str]) -> str:
    """TND amounts are in millimes; everything else is treated as cents"""
    if currency == "TND":
        return f"{amount / 1000:.0f} TND"
    return f"${amount / 100:.2f}"


def extract_duration(name: str) -> int:
    """Minutes from a "2h 30m" pattern in the name, else a keyword default"""
    match = DURATION_PATTERN.search(name or "")
    if match:
        hours = int(match.group(1) or 0)
        minutes = int(match.group(2) or 0)
        return hours * 60 + minutes

    for keyword, minutes in KEYWORD_DURATIONS.items():
        if keyword in (name or ""):
            return minutes

    return DEFAULT_SERVICE_MINUTES


def _item_category_id(item_data: dict) -> Optional[str]:
    if item_data.get("category_id"):
        return item_data["category_id"]
    categories = item_data.get("categories") or []
    if categories:
        return categories[0].get("id")
    return None


def shape_catalog(objects: list[dict]) -> dict[str, Any]:
    """
    Build {categories, services, variations, serviceDurations, priceMap,
    simplifiedServices, serviceTypeMap, vehicleTypeMap} from catalog objects.
    """
    categories: dict[str, dict] = {}
    services: dict[str, dict] = {}
    variations: dict[str, dict] = {}
    service_durations: dict[str, int] = {}
    price_map: dict[str, int] = {}

    for obj in objects:
        if obj.get("type") == "CATEGORY":
            category_data = obj.get("category_data") or {}
            categories[obj["id"]] = {
                "id": obj["id"],
                "name": category_data.get("name", ""),
                "ordinal": category_data.get("ordinal") or 0,
            }

    for obj in objects:
        if obj.get("type") != "ITEM":
            continue

        item_data = obj.get("item_data") or {}
        item_id = obj["id"]
        category_id = _item_category_id(item_data)
        service = {
            "id": item_id,
            "name": item_data.get("name", ""),
            "description": item_data.get("description") or "",
            "categoryId": category_id,
            "categoryName": categories.get(category_id, {}).get("name", ""),
            "variations": [],
        }
        services[item_id] = service

        for variation in item_data.get("variations") or []:
            variation_data = variation.get("item_variation_data") or {}
            price_money = variation_data.get("price_money")
            variations[variation["id"]] = {
                "id": variation["id"],
                "itemId": item_id,
                "name": variation_data.get("name", ""),
                "price": (
                    {
                        "amount": price_money.get("amount"),
                        "currency": price_money.get("currency"),
                        "formatted": format_price(price_money.get("amount") or 0, price_money.get("currency")),
                    }
                    if price_money
                    else None
                ),
                "ordinal": variation_data.get("ordinal") or 0,
            }
            service["variations"].append(variation["id"])

            if price_money:
                price_map[f"{item_id}_{variation['id']}"] = price_money.get("amount")

        service_durations[item_id] = extract_duration(service["name"])

    simplified_services: dict[str, dict] = {}
    for service in services.values():
        service_type = next(
            (value for key, value in SERVICE_TYPE_MAP.items() if key in service["name"]),
            None,
        )
        vehicle_type = VEHICLE_TYPE_MAP.get(service["categoryName"])
        if service_type and vehicle_type:
            simplified_services[f"{vehicle_type}_{service_type}"] = {
                **service,
                "serviceType": service_type,
                "vehicleType": vehicle_type,
                "duration": service_durations.get(service["id"]),
            }

    return {
        "categories": categories,
        "services": services,
        "variations": variations,
        "serviceDurations": service_durations,
        "priceMap": price_map,
        "simplifiedServices": simplified_services,
        "serviceTypeMap": SERVICE_TYPE_MAP,
        "vehicleTypeMap": VEHICLE_TYPE_MAP,
    }


# (vehicle, service) -> (minutes, base price in dollars)
_FALLBACK_SERVICES = {
    ("small", "interior"): (210, 120),
    ("small", "exterior"): (180, 100),
    ("small", "full"): (240, 200),
    ("truck", "interior"): (270, 144),
    ("truck", "exterior"): (210, 120),
    ("truck", "full"): (300, 240),
    ("minivan", "interior"): (300, 156),
    ("minivan", "exterior"): (210, 130),
    ("minivan", "full"): (330, 260),
}

_FALLBACK_SERVICE_NAMES = {
    "interior": "Interior Only",
    "exterior": "Exterior Only",
    "full": "Full Detail",
}


def get_fallback_catalog() -> dict[str, Any]:
    """Static catalog that keeps the booking UI usable when Square is unreachable"""
    return {
        "categories": {
            "SMALL_CAR": {"id": "SMALL_CAR", "name": "Small Car", "ordinal": 0},
            "TRUCK": {"id": "TRUCK", "name": "Truck", "ordinal": 1},
            "MINIVAN": {"id": "MINIVAN", "name": "Minivan", "ordinal": 2},
        },
        "services": {},
        "variations": {},
        "serviceDurations": {
            f"{service}_{vehicle}": minutes
            for (vehicle, service), (minutes, _) in _FALLBACK_SERVICES.items()
        },
        "priceMap": {},
        "simplifiedServices": {
            f"{vehicle}_{service}": {
                "name": _FALLBACK_SERVICE_NAMES[service],
                "vehicleType": vehicle,
                "serviceType": service,
                "duration": minutes,
                "basePrice": base_price,
            }
            for (vehicle, service), (minutes, base_price) in _FALLBACK_SERVICES.items()
        },
        "serviceTypeMap": SERVICE_TYPE_MAP,
        "vehicleTypeMap": VEHICLE_TYPE_MAP,
    }


def build_catalog(objects: Optional[list[dict]]) -> dict[str, Any]:
    """Shaped catalog, or the fallback when there is nothing usable to shape"""
    if not objects:
        logger.warning("⚠️ Catalog is empty, serving fallback catalog")
        return get_fallback_catalog()

    shaped = shape_catalog(objects)
    if not shaped["services"]:
        logger.warning("⚠️ Catalog has no items, serving fallback catalog")
        return get_fallback_catalog()
    return shaped


async def load_catalog_objects(gateway, refresh: bool = False) -> list[dict]:
    """Catalog items and categories, read through the cache"""
    if not refresh:
        cached_objects = get_catalog_cached()
        if cached_objects is not None:
            return cached_objects

    objects = await gateway.list_catalog(types="ITEM,CATEGORY")
    set_catalog_cached(objects, ttl=config.CATALOG_CACHE_TTL)
    logger.info(f"Loaded {len(objects)} catalog objects from Square")
    return objects

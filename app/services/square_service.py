"""
Square API Gateway
Thin async client over Square's REST API v2 for bookings, payments,
customers, catalog, team members, cards and locations
"""
import logging
import time
from typing import Any, Optional

import httpx

from .. import config
from ..errors import SquareAPIError

logger = logging.getLogger(__name__)

SQUARE_PRODUCTION_API_URL = "https://connect.squareup.com/v2"
SQUARE_SANDBOX_API_URL = "https://connect.squareupsandbox.com/v2"


def get_api_url(environment: str) -> str:
    if environment == "production":
        return SQUARE_PRODUCTION_API_URL
    return SQUARE_SANDBOX_API_URL


def _drop_none(values: dict) -> dict:
    return {key: value for key, value in values.items() if value is not None}


class SquareGateway:
    """
    Async Square client.

    One httpx.AsyncClient is opened per call. The location id and default team
    member id are cached on the instance and refreshed after ``id_cache_ttl``
    seconds.
    """

    def __init__(
        self,
        access_token: Optional[str],
        environment: str = "sandbox",
        location_id: Optional[str] = None,
        api_version: str = "2024-12-18",
        id_cache_ttl: int = 3600,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.access_token = access_token
        self.api_url = get_api_url(environment)
        self.api_version = api_version
        self.configured_location_id = location_id
        self.id_cache_ttl = id_cache_ttl
        self._transport = transport
        self._location_id: Optional[str] = None
        self._location_fetched_at = 0.0
        self._team_member_id: Optional[str] = None
        self._team_member_fetched_at = 0.0

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------

    def _headers(self) -> dict:
        return {
            "Square-Version": self.api_version,
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
        }

    async def _request(
        self,
        method: str,
        path: str,
        json: Optional[dict] = None,
        params: Optional[dict] = None,
    ) -> dict:
        if not self.access_token:
            raise SquareAPIError(500, message="SQUARE_ACCESS_TOKEN is not configured")

        try:
            async with httpx.AsyncClient(timeout=30.0, transport=self._transport) as http_client:
                response = await http_client.request(
                    method,
                    f"{self.api_url}{path}",
                    json=json,
                    params=_drop_none(params) if params else None,
                    headers=self._headers(),
                )
        except httpx.HTTPError as e:
            logger.error(f"❌ Square API {method} {path} unreachable: {e!r}")
            raise SquareAPIError(502, message=f"Square API request failed: {e}") from e

        try:
            data = response.json() if response.content else {}
        except ValueError:
            data = {}

        if response.status_code >= 400:
            errors = data.get("errors") if isinstance(data, dict) else None
            logger.error(f"Square API {method} {path} failed ({response.status_code}): {response.text}")
            raise SquareAPIError(
                response.status_code,
                errors=errors,
                message=(errors[0].get("detail") if errors else None) or response.text,
            )

        return data

    # ------------------------------------------------------------------
    # Locations / team members
    # ------------------------------------------------------------------

    async def list_locations(self) -> dict:
        return await self._request("GET", "/locations")

    async def get_location_id(self) -> str:
        """Configured location id, else the first location of the account"""
        if self.configured_location_id:
            return self.configured_location_id

        if self._location_id and time.time() - self._location_fetched_at < self.id_cache_ttl:
            return self._location_id

        locations = (await self.list_locations()).get("locations") or []
        if not locations:
            logger.error("⚠️ No locations found in the Square account")
            raise SquareAPIError(404, message="No Square locations found")

        active = [loc for loc in locations if loc.get("status") == "ACTIVE"]
        self._location_id = (active or locations)[0]["id"]
        self._location_fetched_at = time.time()
        logger.info(f"✅ Using Square location: {self._location_id}")
        return self._location_id

    async def search_team_members(self, body: dict) -> dict:
        return await self._request("POST", "/team-members/search", json=body)

    async def get_team_member_id(self) -> str:
        """First active, non-owner team member at the location"""
        if self._team_member_id and time.time() - self._team_member_fetched_at < self.id_cache_ttl:
            return self._team_member_id

        location_id = await self.get_location_id()
        result = await self.search_team_members(
            {"query": {"filter": {"location_ids": [location_id], "status": "ACTIVE"}}}
        )
        members = [m for m in result.get("team_members") or [] if not m.get("is_owner")]
        if not members:
            raise SquareAPIError(404, message="No active team members found for the location")

        self._team_member_id = members[0]["id"]
        self._team_member_fetched_at = time.time()
        return self._team_member_id

    # ------------------------------------------------------------------
    # Bookings
    # ------------------------------------------------------------------

    async def list_bookings(
        self,
        start_at_min: Optional[str] = None,
        start_at_max: Optional[str] = None,
        location_id: Optional[str] = None,
        customer_id: Optional[str] = None,
        team_member_id: Optional[str] = None,
        limit: Optional[int] = None,
        cursor: Optional[str] = None,
    ) -> dict:
        """One page of bookings: {"bookings": [...], "cursor": ...}"""
        return await self._request(
            "GET",
            "/bookings",
            params={
                "start_at_min": start_at_min,
                "start_at_max": start_at_max,
                "location_id": location_id,
                "customer_id": customer_id,
                "team_member_id": team_member_id,
                "limit": limit,
                "cursor": cursor,
            },
        )

    async def list_all_bookings(
        self,
        start_at_min: Optional[str] = None,
        start_at_max: Optional[str] = None,
        location_id: Optional[str] = None,
    ) -> list[dict]:
        """Follow cursors until every booking in the range is fetched"""
        bookings: list[dict] = []
        cursor = None
        while True:
            page = await self.list_bookings(
                start_at_min=start_at_min,
                start_at_max=start_at_max,
                location_id=location_id,
                limit=100,
                cursor=cursor,
            )
            bookings.extend(page.get("bookings") or [])
            cursor = page.get("cursor")
            if not cursor:
                return bookings

    async def retrieve_booking(self, booking_id: str) -> dict:
        return await self._request("GET", f"/bookings/{booking_id}")

    async def create_booking(self, booking: dict, idempotency_key: Optional[str] = None) -> dict:
        return await self._request(
            "POST",
            "/bookings",
            json=_drop_none({"booking": booking, "idempotency_key": idempotency_key}),
        )

    async def update_booking(self, booking_id: str, booking: dict) -> dict:
        return await self._request("PUT", f"/bookings/{booking_id}", json={"booking": booking})

    async def cancel_booking(self, booking_id: str, booking_version: Optional[int]) -> dict:
        return await self._request(
            "POST",
            f"/bookings/{booking_id}/cancel",
            json=_drop_none({"booking_version": booking_version}),
        )

    async def search_availability(self, query: dict) -> dict:
        return await self._request("POST", "/bookings/availability/search", json={"query": query})

    # ------------------------------------------------------------------
    # Payments / cards
    # ------------------------------------------------------------------

    async def create_payment(self, body: dict) -> dict:
        return await self._request("POST", "/payments", json=body)

    async def list_payments(self, params: Optional[dict] = None) -> dict:
        return await self._request("GET", "/payments", params=params or {})

    async def create_card(self, source_id: str, customer_id: str, idempotency_key: str) -> dict:
        return await self._request(
            "POST",
            "/cards",
            json={
                "idempotency_key": idempotency_key,
                "source_id": source_id,
                "card": {"customer_id": customer_id},
            },
        )

    async def list_cards(self, customer_id: str) -> dict:
        return await self._request("GET", "/cards", params={"customer_id": customer_id})

    async def disable_card(self, card_id: str) -> dict:
        return await self._request("POST", f"/cards/{card_id}/disable")

    # ------------------------------------------------------------------
    # Customers
    # ------------------------------------------------------------------

    async def list_customers(self, params: Optional[dict] = None) -> dict:
        return await self._request("GET", "/customers", params=params or {})

    async def retrieve_customer(self, customer_id: str) -> dict:
        return await self._request("GET", f"/customers/{customer_id}")

    async def search_customers(self, body: dict) -> dict:
        return await self._request("POST", "/customers/search", json=body)

    async def create_customer(self, body: dict) -> dict:
        return await self._request("POST", "/customers", json=body)

    async def update_customer(self, customer_id: str, body: dict) -> dict:
        return await self._request("PUT", f"/customers/{customer_id}", json=body)

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    async def list_catalog(self, types: str = "ITEM,CATEGORY") -> list[dict]:
        """Every catalog object of the given types, across all pages"""
        objects: list[dict] = []
        cursor = None
        while True:
            page = await self._request("GET", "/catalog/list", params={"types": types, "cursor": cursor})
            objects.extend(page.get("objects") or [])
            cursor = page.get("cursor")
            if not cursor:
                return objects

    async def retrieve_catalog_object(self, object_id: str, include_related_objects: bool = False) -> dict:
        return await self._request(
            "GET",
            f"/catalog/object/{object_id}",
            params={"include_related_objects": "true" if include_related_objects else None},
        )

    async def batch_retrieve_catalog_objects(
        self, object_ids: list[str], include_related_objects: bool = False
    ) -> dict:
        return await self._request(
            "POST",
            "/catalog/batch-retrieve",
            json={"object_ids": object_ids, "include_related_objects": include_related_objects},
        )


_gateway: Optional[SquareGateway] = None


def get_square_gateway() -> SquareGateway:
    """FastAPI dependency returning the process-wide gateway"""
    global _gateway
    if _gateway is None:
        if not config.SQUARE_ACCESS_TOKEN:
            logger.warning("⚠️ SQUARE_ACCESS_TOKEN not configured - Square calls will fail")
        _gateway = SquareGateway(
            access_token=config.SQUARE_ACCESS_TOKEN,
            environment=config.SQUARE_ENVIRONMENT,
            location_id=config.SQUARE_LOCATION_ID,
            api_version=config.SQUARE_API_VERSION,
            id_cache_ttl=config.SQUARE_ID_CACHE_TTL,
        )
    return _gateway

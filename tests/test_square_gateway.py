import asyncio
import json

import httpx
import pytest

from app.errors import SquareAPIError
from app.services.square_service import SQUARE_PRODUCTION_API_URL, SquareGateway


def make_gateway(handler, **kwargs):
    kwargs.setdefault("environment", "production")
    return SquareGateway("sq-token", transport=httpx.MockTransport(handler), **kwargs)


def test_requests_carry_square_headers():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"booking": {"id": "B1"}})

    result = asyncio.run(make_gateway(handler).retrieve_booking("B1"))

    assert result == {"booking": {"id": "B1"}}
    [request] = seen
    assert str(request.url) == f"{SQUARE_PRODUCTION_API_URL}/bookings/B1"
    assert request.headers["Authorization"] == "Bearer sq-token"
    assert request.headers["Square-Version"] == "2024-12-18"


def test_error_response_raises_square_error():
    def handler(request):
        return httpx.Response(
            400,
            json={"errors": [{"category": "INVALID_REQUEST_ERROR", "code": "INVALID_BOOKING_STATE", "detail": "Nope"}]},
        )

    with pytest.raises(SquareAPIError) as exc:
        asyncio.run(make_gateway(handler).cancel_booking("B1", 3))

    assert exc.value.status_code == 400
    assert exc.value.code == "INVALID_BOOKING_STATE"
    assert exc.value.detail == "Nope"


def test_missing_token_fails_before_any_request():
    gateway = SquareGateway(None, transport=httpx.MockTransport(lambda request: httpx.Response(200)))
    with pytest.raises(SquareAPIError) as exc:
        asyncio.run(gateway.list_locations())
    assert exc.value.status_code == 500


def test_transport_failure_becomes_bad_gateway():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(SquareAPIError) as exc:
        asyncio.run(make_gateway(handler).list_locations())

    assert exc.value.status_code == 502
    assert "timed out" in exc.value.detail
    assert isinstance(exc.value.__cause__, httpx.ReadTimeout)


def test_location_id_prefers_active_and_is_cached():
    calls = []

    def handler(request):
        calls.append(request.url.path)
        return httpx.Response(
            200,
            json={"locations": [{"id": "L0", "status": "INACTIVE"}, {"id": "L1", "status": "ACTIVE"}]},
        )

    gateway = make_gateway(handler)

    async def lookup_twice():
        return await gateway.get_location_id(), await gateway.get_location_id()

    assert asyncio.run(lookup_twice()) == ("L1", "L1")
    assert calls == ["/v2/locations"]


def test_configured_location_skips_lookup():
    def handler(request):
        raise AssertionError("no request expected")

    assert asyncio.run(make_gateway(handler, location_id="LOC9").get_location_id()) == "LOC9"


def test_team_member_skips_owner():
    def handler(request):
        if request.url.path.endswith("/team-members/search"):
            body = json.loads(request.content)
            assert body["query"]["filter"]["location_ids"] == ["LOC9"]
            return httpx.Response(
                200, json={"team_members": [{"id": "OWNER", "is_owner": True}, {"id": "TM2"}]}
            )
        raise AssertionError(request.url)

    assert asyncio.run(make_gateway(handler, location_id="LOC9").get_team_member_id()) == "TM2"


def test_list_all_bookings_follows_cursors():
    pages = {
        None: {"bookings": [{"id": "B1"}], "cursor": "c2"},
        "c2": {"bookings": [{"id": "B2"}]},
    }
    seen_params = []

    def handler(request):
        seen_params.append(dict(request.url.params))
        return httpx.Response(200, json=pages[request.url.params.get("cursor")])

    bookings = asyncio.run(
        make_gateway(handler).list_all_bookings(
            start_at_min="2025-03-01T00:00:00Z", start_at_max="2025-03-31T00:00:00Z", location_id="LOC1"
        )
    )

    assert [b["id"] for b in bookings] == ["B1", "B2"]
    assert seen_params[0]["limit"] == "100"
    assert "cursor" not in seen_params[0]
    assert seen_params[1]["cursor"] == "c2"


def test_sandbox_url_by_default():
    gateway = SquareGateway("sq-token")
    assert gateway.api_url == "https://connect.squareupsandbox.com/v2"

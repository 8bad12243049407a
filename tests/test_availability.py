import asyncio
from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from app import config
from app.services.availability_service import (
    BUSINESS_DAY_HOURS,
    compute_availability,
    compute_drop_off_slots,
    get_month_availability,
    parse_start_at,
    search_square_availability,
    summarize_day,
)

UTC = ZoneInfo("UTC")


def booking(start_at, minutes=None, status="ACCEPTED", booking_id="B1"):
    segments = [{"duration_minutes": minutes}] if minutes is not None else []
    return {"id": booking_id, "start_at": start_at, "status": status, "appointment_segments": segments}


def test_day_without_bookings_is_fully_available():
    day = summarize_day(date(2025, 3, 3), [])
    assert day["remainingHours"] == day["totalHours"] == BUSINESS_DAY_HOURS
    assert day["bookedHours"] == 0
    assert day["available"] is True


def test_fully_booked_day_never_goes_negative():
    bookings = [booking("2025-03-03T08:00:00Z", 300), booking("2025-03-03T13:00:00Z", 300)]
    day = summarize_day(date(2025, 3, 3), bookings)
    assert day["remainingHours"] == 0
    assert day["available"] is False


def test_missing_duration_counts_as_four_hours():
    day = summarize_day(date(2025, 3, 3), [booking("2025-03-03T08:00:00Z")])
    assert day["bookedHours"] == 4
    assert day["remainingHours"] == 5


def test_requested_service_must_fit():
    bookings = [booking("2025-03-03T08:00:00Z", 360)]
    assert summarize_day(date(2025, 3, 3), bookings, required_minutes=180)["available"] is True
    assert summarize_day(date(2025, 3, 3), bookings, required_minutes=240)["available"] is False


def test_month_omits_weekends():
    # March 2025 has 21 weekdays
    days = compute_availability([], 2025, 3, tz=UTC)
    assert len(days) == 21
    assert all(date.fromisoformat(d["date"]).weekday() < 5 for d in days)


def test_cancelled_bookings_do_not_use_capacity():
    bookings = [
        booking("2025-03-03T08:00:00Z", 540, status="CANCELLED_BY_CUSTOMER"),
        booking("2025-03-03T08:00:00Z", 540, status="DECLINED", booking_id="B2"),
    ]
    [day] = compute_availability(bookings, 2025, 3, day=3, tz=UTC)
    assert day["available"] is True
    assert day["remainingHours"] == 9


def test_bookings_are_bucketed_in_business_timezone():
    # 02:00 UTC on the 4th is still the 3rd in New York
    bookings = [booking("2025-03-04T02:00:00Z", 120)]
    days = compute_availability(bookings, 2025, 3, tz=ZoneInfo("America/New_York"))
    by_date = {d["date"]: d for d in days}
    assert by_date["2025-03-03"]["bookedHours"] == 2
    assert by_date["2025-03-04"]["bookedHours"] == 0


@pytest.mark.parametrize("month,day", [(0, None), (13, None), (2, 30)])
def test_invalid_dates_are_rejected(month, day):
    with pytest.raises(ValueError):
        compute_availability([], 2025, month, day=day, tz=UTC)


def test_drop_off_slot_closes_when_bays_are_full():
    bookings = [booking("2025-03-03T08:00:00Z", 240, booking_id=f"B{i}") for i in range(3)]
    result = compute_drop_off_slots(date(2025, 3, 3), bookings, "full", "small", tz=UTC)

    slots = {slot["time"]: slot for slot in result["slots"]}
    assert slots["08:00"]["available"] is False
    assert slots["08:00"]["spotsLeft"] == 0
    assert slots["09:00"]["available"] is False
    assert result["available"] is False


def test_drop_off_on_weekend():
    result = compute_drop_off_slots(date(2025, 3, 8), [], tz=UTC)
    assert result["available"] is False
    assert result["reason"] == "We are only open Monday through Friday"


def test_availability_endpoint(client, gateway):
    gateway.bookings["B1"] = booking("2025-03-03T08:00:00Z", 540)
    response = client.get("/api/availability", params={"month": 3, "year": 2025, "day": 3})

    assert response.status_code == 200
    [day] = response.json()["availability"]
    assert day == {
        "date": "2025-03-03",
        "totalHours": 9,
        "bookedHours": 9,
        "remainingHours": 0,
        "available": False,
    }


def test_availability_endpoint_validates_month(client):
    response = client.get("/api/availability", params={"month": 13, "year": 2025})
    assert response.status_code == 400


def test_availability_endpoint_requires_month_and_year(client):
    response = client.get("/api/availability", params={"year": 2025})
    assert response.status_code == 400


def test_slots_endpoint_rejects_bad_date(client):
    response = client.get("/api/availability/slots", params={"date": "03/03/2025"})
    assert response.status_code == 400


def test_square_search_keeps_first_slot_per_day(gateway):
    gateway.availabilities = [
        {"start_at": "2025-03-04T13:00:00Z"},
        {"start_at": "2025-03-04T09:00:00Z"},
        {"start_at": "2025-03-05T09:00:00Z"},
    ]
    now = datetime(2025, 3, 1, 12, tzinfo=timezone.utc)
    result = asyncio.run(search_square_availability(gateway, "VAR1", 2025, 3, now=now))

    assert list(result) == ["2025-03-04", "2025-03-05"]
    assert result["2025-03-04"]["start_at"] == "2025-03-04T09:00:00Z"


def test_square_search_for_past_day_is_empty(gateway):
    gateway.availabilities = [{"start_at": "2025-03-04T09:00:00Z"}]
    now = datetime(2025, 3, 10, 12, tzinfo=timezone.utc)
    assert asyncio.run(search_square_availability(gateway, "VAR1", 2025, 3, day=4, now=now)) == {}


def test_month_across_dst_change_is_fetched_in_31_day_windows(gateway, monkeypatch):
    monkeypatch.setattr(config, "BUSINESS_TIMEZONE", "Europe/Paris")
    requested = []
    list_all_bookings = gateway.list_all_bookings

    async def recording_list_all_bookings(start_at_min=None, start_at_max=None, location_id=None):
        requested.append((parse_start_at(start_at_min), parse_start_at(start_at_max)))
        return await list_all_bookings(start_at_min, start_at_max, location_id)

    monkeypatch.setattr(gateway, "list_all_bookings", recording_list_all_bookings)
    # Friday the 31st, 10:00 in Paris after clocks went back
    gateway.bookings["B1"] = booking("2025-10-31T09:00:00Z", 120)

    days = asyncio.run(get_month_availability(gateway, 2025, 10))

    assert len(requested) == 2
    assert all(end - start <= timedelta(days=31) for start, end in requested)
    assert requested[0][0] == datetime(2025, 9, 30, 22, tzinfo=timezone.utc)
    assert requested[-1][1] == datetime(2025, 10, 31, 23, tzinfo=timezone.utc)
    assert {d["date"]: d["bookedHours"] for d in days}["2025-10-31"] == 2

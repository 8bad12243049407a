import os

os.environ.setdefault("ADMIN_PASSWORD", "test-password")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECURITY_HEADERS_ENABLED", "false")
os.environ.pop("REDIS_URL", None)
os.environ.pop("REDIS_HOST", None)

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app import config, rate_limiter
from app.cache import invalidate_catalog_cache
from app.database import Base, get_db
from app.errors import SquareAPIError
from app.main import app
from app.services.availability_service import parse_start_at
from app.services.square_service import get_square_gateway
from app.session_store import MemorySessionStore, get_session_store


class FakeGateway:
    """In-memory stand-in for SquareGateway that records every call"""

    def __init__(self):
        self.bookings: dict[str, dict] = {}
        self.catalog_objects: dict[str, dict] = {}
        self.catalog_list: list[dict] = []
        self.customers: dict[str, dict] = {}
        self.cards: dict[str, list[dict]] = {}
        self.availabilities: list[dict] = []
        self.payments: list[dict] = []
        self.updates: list[tuple[str, dict]] = []
        self.cancelled: list[str] = []
        self.disabled_cards: list[str] = []
        self.created_bookings: list[dict] = []
        self.payment_error: SquareAPIError | None = None
        self.payment_errors_by_booking: dict[str, Exception] = {}
        self.cancel_error: SquareAPIError | None = None
        self.create_booking_error: SquareAPIError | None = None
        self.catalog_error: SquareAPIError | None = None

    async def get_location_id(self):
        return "LOC1"

    async def get_team_member_id(self):
        return "TM1"

    async def list_locations(self):
        return {"locations": [{"id": "LOC1", "status": "ACTIVE"}]}

    async def search_team_members(self, body):
        return {"team_members": [{"id": "TM1", "status": "ACTIVE"}]}

    async def list_bookings(self, start_at_min=None, start_at_max=None, location_id=None,
                            customer_id=None, team_member_id=None, limit=None, cursor=None):
        return {"bookings": await self.list_all_bookings(start_at_min, start_at_max, location_id)}

    async def list_all_bookings(self, start_at_min=None, start_at_max=None, location_id=None):
        result = []
        for booking in self.bookings.values():
            start = parse_start_at(booking["start_at"])
            if start_at_min and start < parse_start_at(start_at_min):
                continue
            if start_at_max and start >= parse_start_at(start_at_max):
                continue
            result.append(booking)
        return result

    async def retrieve_booking(self, booking_id):
        if booking_id not in self.bookings:
            raise SquareAPIError(404, [{"code": "NOT_FOUND", "detail": "Booking not found"}])
        return {"booking": dict(self.bookings[booking_id])}

    async def create_booking(self, booking, idempotency_key=None):
        if self.create_booking_error:
            raise self.create_booking_error
        created = {**booking, "id": f"BK{len(self.created_bookings) + 1}", "status": "ACCEPTED", "version": 0}
        self.created_bookings.append(created)
        self.bookings[created["id"]] = created
        return {"booking": created}

    async def update_booking(self, booking_id, booking):
        self.updates.append((booking_id, booking))
        self.bookings[booking_id] = {**self.bookings.get(booking_id, {}), **booking}
        return {"booking": self.bookings[booking_id]}

    async def cancel_booking(self, booking_id, booking_version):
        if self.cancel_error:
            raise self.cancel_error
        self.cancelled.append(booking_id)
        self.bookings[booking_id]["status"] = "CANCELLED_BY_SELLER"
        return {"booking": dict(self.bookings[booking_id])}

    async def search_availability(self, query):
        return {"availabilities": list(self.availabilities)}

    async def create_payment(self, body):
        if body.get("reference_id") in self.payment_errors_by_booking:
            raise self.payment_errors_by_booking[body["reference_id"]]
        if self.payment_error:
            raise self.payment_error
        self.payments.append(body)
        return {"payment": {"id": f"PAY{len(self.payments)}", "status": "COMPLETED"}}

    async def list_payments(self, params=None):
        return {"payments": []}

    async def create_card(self, source_id, customer_id, idempotency_key):
        card = {"id": f"ccof:{source_id}", "customer_id": customer_id, "enabled": True}
        self.cards.setdefault(customer_id, []).append(card)
        return {"card": card}

    async def list_cards(self, customer_id):
        return {"cards": self.cards.get(customer_id, [])}

    async def disable_card(self, card_id):
        self.disabled_cards.append(card_id)
        return {"card": {"id": card_id, "enabled": False}}

    async def list_customers(self, params=None):
        return {"customers": list(self.customers.values())}

    async def retrieve_customer(self, customer_id):
        if customer_id not in self.customers:
            raise SquareAPIError(404, [{"code": "NOT_FOUND", "detail": "Customer not found"}])
        return {"customer": self.customers[customer_id]}

    async def search_customers(self, body):
        email = body["query"]["filter"]["email_address"]["exact"]
        return {"customers": [c for c in self.customers.values() if c.get("email_address") == email]}

    async def create_customer(self, body):
        customer = {**body, "id": f"CUST{len(self.customers) + 1}"}
        self.customers[customer["id"]] = customer
        return {"customer": customer}

    async def update_customer(self, customer_id, body):
        self.customers[customer_id].update(body)
        return {"customer": self.customers[customer_id]}

    async def list_catalog(self, types="ITEM,CATEGORY"):
        if self.catalog_error:
            raise self.catalog_error
        return list(self.catalog_list)

    async def retrieve_catalog_object(self, object_id, include_related_objects=False):
        if object_id not in self.catalog_objects:
            raise SquareAPIError(404, [{"code": "NOT_FOUND", "detail": "Object not found"}])
        return {"object": self.catalog_objects[object_id], "related_objects": []}

    async def batch_retrieve_catalog_objects(self, object_ids, include_related_objects=False):
        return {
            "objects": [self.catalog_objects[i] for i in object_ids if i in self.catalog_objects],
            "related_objects": [],
        }


def build_variation(variation_id="VAR1", amount=20000, currency="USD", duration_minutes=240, name="Regular"):
    return {
        "id": variation_id,
        "type": "ITEM_VARIATION",
        "item_variation_data": {
            "item_id": "ITEM1",
            "name": name,
            "price_money": {"amount": amount, "currency": currency},
            "service_duration": duration_minutes * 60000,
        },
    }


@pytest.fixture
def make_variation():
    return build_variation


@pytest.fixture
def db_session():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def session_store():
    return MemorySessionStore(max_sessions=10)


@pytest.fixture
def client(gateway, db_session, session_store, monkeypatch):
    monkeypatch.setattr(config, "NODE_ENV", "production")
    rate_limiter.memory_cache.clear()
    invalidate_catalog_cache()

    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_square_gateway] = lambda: gateway
    app.dependency_overrides[get_session_store] = lambda: session_store
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def admin_client(client, session_store):
    token = session_store.create(config.SESSION_MAX_AGE)
    client.cookies.set(config.SESSION_COOKIE_NAME, token)
    return client

from app.errors import SquareAPIError


def test_payment_requires_source_and_amount(client, gateway):
    response = client.post("/api/payments", json={"amount_money": {"amount": 100, "currency": "USD"}})
    assert response.status_code == 400
    assert response.json() == {"error": "source_id is required for payment"}

    response = client.post("/api/payments", json={"source_id": "cnon:tok"})
    assert response.status_code == 400
    assert gateway.payments == []


def test_payment_defaults(client, gateway):
    response = client.post(
        "/api/payments",
        json={"source_id": "cnon:tok", "amount_money": {"amount": 5000, "currency": "USD"}},
    )

    assert response.status_code == 200
    assert response.json()["payment"]["status"] == "COMPLETED"
    [payment] = gateway.payments
    assert payment["location_id"] == "LOC1"
    assert payment["autocomplete"] is True
    assert payment["idempotency_key"]


def test_payment_keeps_explicit_autocomplete_false(client, gateway):
    client.post(
        "/api/payments",
        json={
            "source_id": "cnon:tok",
            "amount_money": {"amount": 5000, "currency": "USD"},
            "autocomplete": False,
            "idempotency_key": "fixed",
        },
    )
    assert gateway.payments[0]["autocomplete"] is False
    assert gateway.payments[0]["idempotency_key"] == "fixed"


def test_payment_list(admin_client):
    assert admin_client.get("/api/payments").json() == {"payments": []}


def test_store_card(client, gateway):
    response = client.post("/api/cards", json={"customerId": "CUST1", "paymentToken": "cnon:abc"})

    assert response.status_code == 200
    assert response.json() == {"id": "ccof:cnon:abc", "customer_id": "CUST1", "enabled": True}


def test_store_card_requires_fields(client):
    response = client.post("/api/cards", json={"customerId": "CUST1"})
    assert response.status_code == 400
    assert response.json() == {"error": "customerId and paymentToken are required"}


def test_create_customer_normalizes_contact_details(client, gateway):
    response = client.post(
        "/api/customers",
        json={"given_name": "Sam", "email_address": "Sam@Example.com", "phone_number": "555.123.4567"},
    )

    assert response.status_code == 200
    customer = response.json()["customer"]
    assert customer["email_address"] == "sam@example.com"
    assert customer["phone_number"] == "+15551234567"


def test_create_customer_rejects_bad_email(client):
    response = client.post("/api/customers", json={"email_address": "nope"})
    assert response.status_code == 400
    assert response.json() == {"error": "Invalid email format"}


def test_customer_routes_require_admin(client):
    assert client.get("/api/customers").status_code == 401
    assert client.get("/api/customers/CUST1").status_code == 401


def test_locations_are_public(client):
    assert client.get("/api/locations").json()["locations"][0]["id"] == "LOC1"


def test_unstructured_square_failure_keeps_cause_in_details(client, gateway, monkeypatch):
    async def unreachable():
        raise SquareAPIError(502, message="Square API request failed: ConnectTimeout('timed out')")

    monkeypatch.setattr(gateway, "list_locations", unreachable)

    response = client.get("/api/locations")

    assert response.status_code == 502
    assert response.json() == {
        "error": "Square API request failed",
        "details": "Square API request failed: ConnectTimeout('timed out')",
    }

from datetime import timedelta
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from bookstore import api
from bookstore.config import settings
from bookstore.database import format_timestamp, get_db_connection, parse_timestamp, utcnow
from bookstore.exceptions import ConfigurationMissing, TransactionFailure

ADMIN = {"X-API-Key": settings.api_key}
ALICE = {"X-User-Id": "alice"}
BOB = {"X-User-Id": "bob"}

CARD = {
    "name_on_card": "Alice Liddell",
    "card_number": "4111111111111111",
    "expiration_date": "12/30",
    "cvv": "123",
    "payment_method": "credit_card",
}


@pytest.fixture
def client():
    # Entering the client runs the lifespan (schema + config check)
    with TestClient(api.app) as test_client:
        yield test_client


@pytest.fixture
def book_id(client):
    payload = {"title": "Dune", "author": "Frank Herbert", "isbn": "9780441013593", "purchase_amount": "24.99"}
    response = client.post("/books", headers=ADMIN, json=payload)
    assert response.status_code == 200
    return response.json()["id"]


def _backdate(rental_id, days):
    # Started ``days`` days ago, minus an hour, so it is in its ``days``-th day
    rented_at = utcnow() - timedelta(days=days) + timedelta(hours=1)
    conn = get_db_connection()
    try:
        conn.execute("UPDATE rentals SET rented_at = ? WHERE id = ?", (format_timestamp(rented_at), rental_id))
        conn.commit()
    finally:
        conn.close()


def _rent(client, book_id, headers=ALICE, days=0):
    response = client.post(f"/books/{book_id}/rent", headers=headers)
    assert response.status_code == 200
    rental_id = response.json()["id"]
    if days:
        _backdate(rental_id, days)
    return rental_id


def test_root_and_health(client):
    root = client.get("/").json()
    assert root["docs"] == "/docs"
    assert root["environment"] == settings.environment
    health = client.get("/health").json()
    assert health["status"] == "healthy"
    assert health["rental_config"] is True
    assert parse_timestamp(health["timestamp"]).utcoffset() == timedelta(0)


def test_app_debug_follows_settings():
    assert api.app.debug == settings.debug


def test_get_books(client, book_id):
    response = client.get("/books")
    assert response.status_code == 200
    books = response.json()
    assert [b["id"] for b in books] == [book_id]
    assert books[0]["purchase_amount"] == "24.99"


def test_search_and_get_book(client, book_id):
    assert client.get("/books/search", params={"q": "dune"}).json()[0]["id"] == book_id
    assert client.get(f"/books/{book_id}").json()["title"] == "Dune"
    assert client.get("/books/999").status_code == 404


def test_add_book_with_invalid_api_key(client):
    payload = {"title": "Dune", "author": "Frank Herbert", "isbn": "9780441013593", "purchase_amount": "24.99"}
    response = client.post("/books", headers={"X-API-Key": "invalid-key"}, json=payload)
    assert response.status_code == 403


def test_add_book_with_bad_isbn(client):
    payload = {"title": "Dune", "author": "Frank Herbert", "isbn": "123", "purchase_amount": "1"}
    response = client.post("/books", headers=ADMIN, json=payload)
    assert response.status_code == 422
    assert response.json()["detail"]["field_errors"] == {"isbn": "Invalid ISBN"}


def test_update_and_delete_book(client, book_id):
    response = client.put(f"/books/{book_id}", headers=ADMIN, json={"purchase_amount": "30"})
    assert response.status_code == 200
    assert response.json()["purchase_amount"] == "30"

    assert client.delete(f"/books/{book_id}", headers=ADMIN).status_code == 200
    assert client.delete(f"/books/{book_id}", headers=ADMIN).status_code == 404


def test_delete_rented_book_conflicts(client, book_id):
    _rent(client, book_id)
    assert client.delete(f"/books/{book_id}", headers=ADMIN).status_code == 409


def test_user_endpoints_require_a_user(client, book_id):
    assert client.post(f"/books/{book_id}/rent").status_code == 401
    assert client.get("/rentals").status_code == 401
    assert client.get("/payments").status_code == 401


def test_rent_and_list(client, book_id):
    rental_id = _rent(client, book_id)
    rentals = client.get("/rentals", headers=ALICE).json()
    assert [r["id"] for r in rentals] == [rental_id]
    assert rentals[0]["is_returned"] is False
    assert rentals[0]["payment"] is None
    assert client.get("/rentals", headers=BOB).json() == []


def test_rent_missing_book(client):
    assert client.post("/books/404/rent", headers=ALICE).status_code == 404


def test_cost_preview(client, book_id):
    rental_id = _rent(client, book_id, days=45)
    response = client.get(f"/rentals/{rental_id}/cost", headers=ALICE)
    assert response.status_code == 200
    cost = response.json()
    assert cost["rental_days"] == 45
    assert cost["tier_one_cost"] == "90.00"
    assert cost["discount"] == "9.00"
    assert cost["total"] == "81.00"


def test_cost_preview_after_cap(client, book_id):
    rental_id = _rent(client, book_id, days=110)
    assert client.get(f"/rentals/{rental_id}/cost", headers=ALICE).json()["total"] == "22.49"


def test_other_users_rental_is_hidden(client, book_id):
    rental_id = _rent(client, book_id)
    assert client.get(f"/rentals/{rental_id}", headers=BOB).status_code == 404
    assert client.get(f"/rentals/{rental_id}/cost", headers=BOB).status_code == 404
    assert client.post(f"/rentals/{rental_id}/return", headers=BOB, json=CARD).status_code == 404


def test_return_rental(client, book_id):
    rental_id = _rent(client, book_id, days=75)

    response = client.post(f"/rentals/{rental_id}/return", headers=ALICE, json=CARD)
    assert response.status_code == 200
    payment = response.json()
    assert payment["amount"] == "202.50"
    assert payment["type"] == "rent"
    assert payment["rental_book_id"] == rental_id

    rental = client.get(f"/rentals/{rental_id}", headers=ALICE).json()
    assert rental["is_returned"] is True
    assert rental["return_date"] is not None
    assert rental["payment"]["id"] == payment["id"]


def test_second_return_conflicts(client, book_id):
    rental_id = _rent(client, book_id, days=45)
    assert client.post(f"/rentals/{rental_id}/return", headers=ALICE, json=CARD).status_code == 200

    response = client.post(f"/rentals/{rental_id}/return", headers=ALICE, json=CARD)
    assert response.status_code == 409
    assert len(client.get("/payments", headers=ALICE).json()) == 1


def test_return_with_wrong_echo(client, book_id):
    rental_id = _rent(client, book_id, days=45)
    response = client.post(f"/rentals/{rental_id}/return", headers=ALICE, json={**CARD, "payment_amount": "5.00"})
    assert response.status_code == 422
    assert "payment_amount" in response.json()["detail"]["field_errors"]
    assert client.get(f"/rentals/{rental_id}", headers=ALICE).json()["is_returned"] is False


@pytest.mark.parametrize("field, value", [
    ("card_number", "4111"),
    ("cvv", "12"),
    ("name_on_card", "  "),
    ("payment_method", "cash"),
])
def test_return_with_bad_card_details(client, book_id, field, value):
    rental_id = _rent(client, book_id)
    response = client.post(f"/rentals/{rental_id}/return", headers=ALICE, json={**CARD, field: value})
    assert response.status_code == 422


def test_storage_failure_is_reported(client, book_id, monkeypatch):
    rental_id = _rent(client, book_id)
    monkeypatch.setattr(api.rentals, "settle_rental", MagicMock(side_effect=TransactionFailure("disk full")))
    response = client.post(f"/rentals/{rental_id}/return", headers=ALICE, json=CARD)
    assert response.status_code == 500
    assert "nothing was saved" in response.json()["detail"]


def test_missing_config_fails_pricing(client, book_id):
    rental_id = _rent(client, book_id, days=45)
    conn = get_db_connection()
    try:
        conn.execute("DELETE FROM rental_config")
        conn.commit()
    finally:
        conn.close()

    response = client.get(f"/rentals/{rental_id}/cost", headers=ALICE)
    assert response.status_code == 500
    assert response.json()["detail"] == "rental config not found"
    assert client.get("/health").json()["status"] == "degraded"


def test_startup_refused_without_config(monkeypatch):
    conn = get_db_connection()
    try:
        conn.execute("DELETE FROM rental_config")
        conn.commit()
    finally:
        conn.close()
    monkeypatch.setattr(settings, "seed_rental_config", False)

    with pytest.raises(ConfigurationMissing):
        with TestClient(api.app):
            pass


def test_purchase_and_invoices(client, book_id):
    response = client.post(f"/books/{book_id}/purchase", headers=ALICE, json={**CARD, "payment_amount": "24.99"})
    assert response.status_code == 200
    payment = response.json()
    assert payment["type"] == "purchase"
    assert payment["amount"] == "24.99"

    assert [b["id"] for b in client.get("/purchases", headers=ALICE).json()] == [book_id]
    invoices = client.get("/payments", headers=ALICE).json()
    assert [p["id"] for p in invoices] == [payment["id"]]

    assert client.get(f"/payments/{payment['id']}", headers=ALICE).status_code == 200
    assert client.get(f"/payments/{payment['id']}", headers=BOB).status_code == 404
    assert client.get("/payments/999", headers=ALICE).status_code == 404


def test_purchase_with_wrong_echo(client, book_id):
    response = client.post(f"/books/{book_id}/purchase", headers=ALICE, json={**CARD, "payment_amount": "1"})
    assert response.status_code == 422
    assert client.get("/purchases", headers=ALICE).json() == []


def test_admin_config(client):
    assert client.get("/admin/config").status_code == 403
    config = client.get("/admin/config", headers=ADMIN).json()
    assert config["tier_one_rate_per_day"] == "6"

    response = client.put("/admin/config", headers=ADMIN, json={"tier_one_rate_per_day": "8", "tier_two_rate_per_day": "2"})
    assert response.status_code == 200
    assert response.json()["tier_two_rate_per_day"] == "2"

    bad = client.put("/admin/config", headers=ADMIN, json={"tier_one_rate_per_day": "-1", "tier_two_rate_per_day": "2"})
    assert bad.status_code == 422


def test_new_rates_apply_to_active_rentals(client, book_id):
    rental_id = _rent(client, book_id, days=45)
    client.put("/admin/config", headers=ADMIN, json={"tier_one_rate_per_day": "10", "tier_two_rate_per_day": "3"})
    # 15 days at 10, minus 10%
    assert client.get(f"/rentals/{rental_id}/cost", headers=ALICE).json()["total"] == "135.00"


def test_admin_listings_and_stats(client, book_id):
    rental_id = _rent(client, book_id, days=45)
    client.post(f"/rentals/{rental_id}/return", headers=ALICE, json=CARD)
    client.post(f"/books/{book_id}/purchase", headers=BOB, json=CARD)

    assert len(client.get("/admin/rentals", headers=ADMIN).json()) == 1
    sales = client.get("/admin/sales", headers=ADMIN).json()
    assert sales[0]["user_id"] == "bob"
    assert sales[0]["payment"]["amount"] == "24.99"

    stats = client.get("/stats", headers=ADMIN).json()
    assert stats["returned_rentals"] == 1
    assert stats["rental_revenue"] == "81.00"
    assert stats["sales_revenue"] == "24.99"


def test_oversized_amounts_are_rejected(client, book_id):
    bad_config = {"tier_one_rate_per_day": "1e27", "tier_two_rate_per_day": "1"}
    response = client.put("/admin/config", headers=ADMIN, json=bad_config)
    assert response.status_code == 422
    assert response.json()["detail"]["field_errors"] == {"tier_one_rate_per_day": "Amount is too large"}

    rental_id = _rent(client, book_id, days=45)
    assert client.get(f"/rentals/{rental_id}/cost", headers=ALICE).json()["total"] == "81.00"

import pytest
from fastapi.testclient import TestClient

from circulation.api import create_app
from circulation.errors import DataAccessError
from circulation.stores import BookInventoryStore

ADMIN = {"X-API-Key": "test-key", "X-Actor-Role": "ADMIN"}
ASSISTANT = {"X-API-Key": "test-key", "X-Actor-Role": "ASSISTANT"}


@pytest.fixture
def client(settings):
    # Per-test database from the settings fixture; the lifespan builds the services
    with TestClient(create_app(settings)) as test_client:
        yield test_client


@pytest.fixture
def stocked(client):
    client.post("/members", headers=ADMIN, json={"name": "Ada Lovelace"})
    client.post("/books", headers=ADMIN,
                json={"isbn": "9780321765723", "title": "The Lord of the Rings",
                      "author": "J. R. R. Tolkien", "category": "FICTION", "quantity": 1})
    return client


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_invalid_api_key(client):
    response = client.get("/books", headers={"X-API-Key": "invalid-key", "X-Actor-Role": "ADMIN"})
    assert response.status_code == 403


def test_create_book(client):
    payload = {"isbn": "9780321765723", "title": "The C++ Programming Language", "author": "Bjarne Stroustrup"}
    response = client.post("/books", headers=ADMIN, json=payload)
    assert response.status_code == 201
    body = response.json()
    assert body["isbn"] == "9780321765723"
    assert body["category"] == "UNKNOWN"
    assert body["available"] == body["quantity"] == 1


def test_assistant_cannot_create_book(client):
    response = client.post("/books", headers=ASSISTANT, json={"isbn": "1", "title": "T", "author": "A"})
    assert response.status_code == 403


def test_create_book_rejects_long_isbn(client):
    response = client.post("/books", headers=ADMIN, json={"isbn": "9" * 156, "title": "T", "author": "A"})
    assert response.status_code == 422


def test_missing_role_header(stocked):
    response = stocked.get("/books", headers={"X-API-Key": "test-key"})
    assert response.status_code == 403
    assert response.json()["detail"] == "User role is required"


def test_loan_round_trip(stocked):
    response = stocked.post("/loans", headers=ASSISTANT, json={"member_id": 1, "isbn": "9780321765723"})
    assert response.status_code == 201
    loan = response.json()
    assert loan["status"] == "BORROWED"
    assert loan["member_name"] == "Ada Lovelace"
    assert loan["book_title"] == "The Lord of the Rings"
    assert stocked.get("/books/9780321765723", headers=ASSISTANT).json()["available"] == 0

    response = stocked.post(f"/loans/{loan['id']}/return", headers=ASSISTANT)
    assert response.status_code == 200
    assert response.json()["status"] == "RETURNED"
    assert response.json()["fine_amount"] == 0.0
    assert stocked.get("/books/9780321765723", headers=ASSISTANT).json()["available"] == 1

    response = stocked.post(f"/loans/{loan['id']}/return", headers=ASSISTANT)
    assert response.status_code == 400
    assert stocked.get("/books/9780321765723", headers=ASSISTANT).json()["available"] == 1


def test_duplicate_loan_conflicts(stocked):
    stocked.patch("/books/9780321765723", headers=ADMIN, json={"quantity": 2, "available": 2})
    stocked.post("/loans", headers=ADMIN, json={"member_id": 1, "isbn": "9780321765723"})

    response = stocked.post("/loans", headers=ADMIN, json={"member_id": 1, "isbn": "9780321765723"})
    assert response.status_code == 409


def test_register_loan_unknown_member(stocked):
    response = stocked.post("/loans", headers=ADMIN, json={"member_id": 99, "isbn": "9780321765723"})
    assert response.status_code == 404


def test_delete_loan_needs_admin(stocked):
    loan = stocked.post("/loans", headers=ADMIN, json={"member_id": 1, "isbn": "9780321765723"}).json()

    assert stocked.delete(f"/loans/{loan['id']}", headers=ASSISTANT).status_code == 403
    assert stocked.delete(f"/loans/{loan['id']}", headers=ADMIN).status_code == 204
    assert stocked.get(f"/loans/{loan['id']}", headers=ADMIN).status_code == 404
    assert stocked.get("/books/9780321765723", headers=ADMIN).json()["available"] == 1


def test_list_loans_filters(stocked):
    stocked.post("/loans", headers=ADMIN, json={"member_id": 1, "isbn": "9780321765723"})

    assert len(stocked.get("/loans", headers=ADMIN).json()) == 1
    assert len(stocked.get("/loans", headers=ADMIN, params={"member_id": 1}).json()) == 1
    assert len(stocked.get("/loans", headers=ADMIN, params={"isbn": "9780321765723"}).json()) == 1
    assert stocked.get("/loans", headers=ADMIN, params={"status": "OVERDUE"}).status_code == 404
    assert stocked.get("/loans", headers=ADMIN, params={"status": "LOST"}).status_code == 400


def test_assistant_book_update(stocked):
    response = stocked.patch("/books/9780321765723", headers=ASSISTANT, json={"title": "New"})
    assert response.status_code == 403

    response = stocked.patch("/books/9780321765723", headers=ASSISTANT, json={"price": 19.5})
    assert response.status_code == 200
    assert response.json()["price"] == 19.5


def test_delete_book_with_open_loan(stocked):
    stocked.post("/loans", headers=ADMIN, json={"member_id": 1, "isbn": "9780321765723"})
    assert stocked.delete("/books/9780321765723", headers=ADMIN).status_code == 409


def test_members(client):
    response = client.post("/members", headers=ADMIN, json={"name": "Grace Hopper", "email": "grace@example.com"})
    assert response.status_code == 201
    member_id = response.json()["id"]

    response = client.get(f"/members/{member_id}", headers=ADMIN)
    assert response.json()["name"] == "Grace Hopper"
    assert response.json()["is_active"] is True
    assert client.get("/members/999", headers=ADMIN).status_code == 404


def test_persistence_failure_hides_details(stocked, monkeypatch):
    def broken(self, isbn, delta):
        raise DataAccessError("database disk image is malformed")

    monkeypatch.setattr(BookInventoryStore, "adjust_available", broken)
    response = stocked.post("/loans", headers=ADMIN, json={"member_id": 1, "isbn": "9780321765723"})

    assert response.status_code == 500
    assert response.json()["detail"] == "Internal server error. Please try again later"

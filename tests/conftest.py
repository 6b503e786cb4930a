"""Pytest fixtures for the shoe store tests."""

import mongomock
import pytest
from fastapi.testclient import TestClient

import auth
from catalog import create_product
from database import get_db
from schemas import Address, ProductIn, RegisterRequest


@pytest.fixture(autouse=True)
def fast_hashing(monkeypatch):
    """Keep PBKDF2 cheap so auth-heavy tests stay quick."""
    monkeypatch.setattr(auth, "PBKDF2_ITERATIONS", 1000)


@pytest.fixture
def db():
    """A fresh in-memory MongoDB database."""
    return mongomock.MongoClient()["shoestore_test"]


@pytest.fixture
def make_product(db):
    """Factory that inserts a product and returns its id as a string."""

    def _make(**overrides) -> str:
        payload = {
            "name": "Runner One",
            "description": "A light test running shoe",
            "brand": "Nike",
            "category": "Running",
            "price": 60.0,
            "sizes": [{"size": 9, "stock": 5}, {"size": 10, "stock": 2}],
            "images": [{"url": "https://img.example.com/runner-one.jpg"}],
        }
        payload.update(overrides)
        return create_product(db, ProductIn(**payload))

    return _make


@pytest.fixture
def product_id(make_product):
    return make_product()


@pytest.fixture
def address():
    return Address(
        first_name="Sam",
        last_name="Shopper",
        street="1 Main St",
        city="Springfield",
        state="IL",
        zip_code="62701",
    )


@pytest.fixture
def client(db):
    """Test client with the app wired to the in-memory database."""
    from main import app

    app.dependency_overrides[get_db] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def customer(client):
    """The test client, registered and logged in as a customer."""
    response = client.post(
        "/auth/register",
        json={"email": "shopper@example.com", "password": "secret123", "firstName": "Sam", "lastName": "Shopper"},
    )
    assert response.status_code == 201
    return client


@pytest.fixture
def admin(client, db):
    """A second client (own cookie jar) logged in as an admin."""
    from main import app

    auth.register_user(
        db,
        RegisterRequest(email="admin@example.com", password="admin123", first_name="Ada", last_name="Admin"),
        role="admin",
    )
    admin_client = TestClient(app)
    response = admin_client.post("/auth/login", json={"email": "admin@example.com", "password": "admin123"})
    assert response.status_code == 200
    return admin_client

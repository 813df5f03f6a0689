import mongomock
import pytest
from fastapi.testclient import TestClient

import database
from main import app

ADMIN = {"fullName": "Store Admin", "email": "admin@example.com", "password": "secret123"}
SHOPPER = {"fullName": "Regular Shopper", "email": "shopper@example.com", "password": "secret123"}


@pytest.fixture
def db():
    handle = database.connect(client=mongomock.MongoClient(), name="catalog_test")
    yield handle
    database.close()


@pytest.fixture
def client(db):
    with TestClient(app) as c:
        yield c


def login(client, email, password):
    response = client.post("/api/auth/login", json={"email": email, "password": password})
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['data']['accessToken']}"}


@pytest.fixture
def admin_headers(client):
    assert client.post("/api/auth/register", json=ADMIN).status_code == 201
    return login(client, ADMIN["email"], ADMIN["password"])


@pytest.fixture
def user_headers(client, admin_headers):
    assert client.post("/api/auth/register", json=SHOPPER).status_code == 201
    return login(client, SHOPPER["email"], SHOPPER["password"])


@pytest.fixture
def category(client, admin_headers):
    response = client.post("/api/categories", json={"name": "Shoes"}, headers=admin_headers)
    assert response.status_code == 201, response.text
    return response.json()["data"]


@pytest.fixture
def make_product(client, admin_headers, category):
    def _make(name, variants=None, **fields):
        body = {"name": name, "category": category["id"], **fields}
        if variants is not None:
            body["variants"] = variants
        response = client.post("/api/admin/products", json=body, headers=admin_headers)
        assert response.status_code == 201, response.text
        return response.json()["data"]
    return _make

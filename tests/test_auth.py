from datetime import timedelta

from jose import jwt

from security import ALGORITHM, SECRET_KEY, create_access_token, decode_access_token


def test_first_user_is_admin_then_users(client):
    first = client.post("/api/auth/register", json={"fullName": "First", "email": "first@example.com", "password": "secret123"})
    second = client.post("/api/auth/register", json={"fullName": "Second", "email": "second@example.com", "password": "secret123"})
    third = client.post("/api/auth/register", json={"fullName": "Third", "email": "third@example.com", "password": "secret123"})
    assert first.status_code == 201
    assert first.json()["data"]["role"] == "ADMIN"
    assert second.json()["data"]["role"] == "USER"
    assert third.json()["data"]["role"] == "USER"


def test_register_never_returns_password(client, db):
    response = client.post("/api/auth/register", json={"fullName": "Ann", "email": "Ann@Example.com", "password": "secret123"})
    body = response.json()
    assert body["success"] is True
    assert "password" not in body["data"]
    assert body["data"]["email"] == "ann@example.com"
    stored = db["user"].find_one({"email": "ann@example.com"})
    assert stored["password"] != "secret123"


def test_register_duplicate_email(client):
    payload = {"fullName": "Ann", "email": "ann@example.com", "password": "secret123"}
    client.post("/api/auth/register", json=payload)
    response = client.post("/api/auth/register", json={**payload, "email": "ANN@example.com"})
    assert response.status_code == 400
    assert response.json() == {"success": False, "message": "Email already registered"}


def test_register_validation(client):
    short = client.post("/api/auth/register", json={"fullName": "Ann", "email": "ann@example.com", "password": "123"})
    assert short.status_code == 400
    assert short.json()["success"] is False

    phone = client.post("/api/auth/register", json={"fullName": "Ann", "email": "ann@example.com", "password": "secret123", "phone": "12345"})
    assert phone.status_code == 400

    missing = client.post("/api/auth/register", json={"email": "ann@example.com", "password": "secret123"})
    assert missing.status_code == 400


def test_login_and_me(client):
    client.post("/api/auth/register", json={"fullName": "Ann", "email": "ann@example.com", "password": "secret123", "phone": "0912345678"})
    response = client.post("/api/auth/login", json={"email": "ann@example.com", "password": "secret123"})
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["user"]["email"] == "ann@example.com"

    me = client.get("/api/users/me", headers={"Authorization": f"Bearer {data['accessToken']}"})
    assert me.status_code == 200
    assert me.json()["data"]["fullName"] == "Ann"
    assert me.json()["data"]["phone"] == "0912345678"
    assert "password" not in me.json()["data"]


def test_login_wrong_password(client):
    client.post("/api/auth/register", json={"fullName": "Ann", "email": "ann@example.com", "password": "secret123"})
    response = client.post("/api/auth/login", json={"email": "ann@example.com", "password": "wrong-one"})
    assert response.status_code == 401
    unknown = client.post("/api/auth/login", json={"email": "nobody@example.com", "password": "secret123"})
    assert unknown.status_code == 401


def test_me_requires_token(client):
    assert client.get("/api/users/me").status_code == 401
    bad = client.get("/api/users/me", headers={"Authorization": "Bearer not-a-token"})
    assert bad.status_code == 401
    assert bad.json()["success"] is False


def test_token_carries_principal():
    token = create_access_token("abc", "a@example.com", "ADMIN")
    payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    assert payload["userId"] == "abc"
    assert payload["role"] == "ADMIN"
    principal = decode_access_token(token)
    assert principal.is_admin
    assert principal.email == "a@example.com"


def test_expired_token_rejected(client):
    token = create_access_token("abc", "a@example.com", "ADMIN", expires_delta=timedelta(seconds=-10))
    response = client.get("/api/users/me", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401


def test_admin_routes_reject_regular_users(client, user_headers):
    response = client.post("/api/categories", json={"name": "Hats"}, headers=user_headers)
    assert response.status_code == 403
    assert client.post("/api/categories", json={"name": "Hats"}).status_code == 401
    assert client.get("/api/coupons", headers=user_headers).status_code == 403

import pytest
from fastapi.testclient import TestClient

import access
from config import Settings
from main import app
from tests.conftest import login

AUTHENTICATED = [
    ("get", "/cart", None),
    ("post", "/cart", {"product_id": 1, "quantity": 1}),
    ("delete", "/cart/1", None),
    ("delete", "/cart", None),
    ("get", "/orders", None),
    ("post", "/orders", {"total_amount": 100, "items": []}),
    ("post", "/payments/requests", {"product_id": 1, "amount": 100, "transaction_id": "UTR1"}),
    ("get", "/payments/requests", None),
    ("get", "/payments/requests/1", None),
    ("get", "/deliverables", None),
    ("get", "/deliverables/1", None),
]

ADMIN = [
    ("get", "/admin/products", None),
    ("post", "/admin/products", {"category_id": 1, "name": "Test", "price": 100, "stock": 10}),
    ("delete", "/admin/products/1", None),
    ("get", "/admin/categories", None),
    ("post", "/admin/categories", {"name": "Test"}),
    ("get", "/admin/orders", None),
    ("get", "/admin/settings", None),
    ("put", "/admin/settings", {"upi_id": "shop@upi"}),
    ("get", "/admin/payments", None),
    ("get", "/admin/payments/1", None),
    ("post", "/admin/payments/1/approve", {"notes": "ok"}),
    ("post", "/admin/payments/1/reject", {"notes": "no"}),
    ("post", "/admin/payments/1/deliver", {"delivery_type": "course"}),
    ("patch", "/admin/deliverables/1", {"is_active": False}),
    ("post", "/admin/seed", None),
]


def call(client, method, path, body, headers=None):
    kwargs = {"headers": headers or {}}
    if body is not None:
        kwargs["json"] = body
    return client.request(method.upper(), path, **kwargs)


def snapshot(db):
    return {name: list(db[name].find({})) for name in db.collection_names() if name != "user"}


@pytest.mark.parametrize("method,path,body", AUTHENTICATED)
def test_authenticated_routes_reject_anonymous(client, db, method, path, body):
    before = snapshot(db)
    res = call(client, method, path, body)
    assert res.status_code == 401
    assert snapshot(db) == before


@pytest.mark.parametrize("method,path,body", ADMIN)
def test_admin_routes_reject_anonymous(client, db, method, path, body):
    before = snapshot(db)
    res = call(client, method, path, body)
    assert res.status_code == 403
    assert snapshot(db) == before


@pytest.mark.parametrize("method,path,body", ADMIN)
def test_admin_routes_reject_regular_users(client, db, user_headers, method, path, body):
    before = snapshot(db)
    res = call(client, method, path, body, headers=user_headers)
    assert res.status_code == 403
    assert snapshot(db) == before


def test_admin_can_reach_admin_routes(client, admin_headers):
    res = client.get("/admin/products", headers=admin_headers)
    assert res.status_code == 200
    assert res.json() == []


def test_me_returns_current_user(client, user_headers):
    res = client.get("/auth/me", headers=user_headers)
    assert res.status_code == 200
    data = res.json()
    assert data["open_id"] == "alice"
    assert data["role"] == "user"
    assert data["last_signed_in"] is not None


def test_me_is_null_without_identity(client):
    res = client.get("/auth/me")
    assert res.status_code == 200
    assert res.json() is None


def test_session_cookie_is_accepted(client, db):
    login(db, "carol")
    client.cookies.set(access.settings.cookie_name, access.create_session_token("carol"))
    res = client.get("/cart")
    assert res.status_code == 200
    client.cookies.clear()


def test_invalid_token_counts_as_anonymous(client):
    res = client.get("/cart", headers={"Authorization": "Bearer not-a-token"})
    assert res.status_code == 401


def test_token_signed_with_other_secret_is_rejected(client, monkeypatch):
    monkeypatch.setattr(access, "settings", Settings(jwt_secret="elsewhere"))
    token = access.create_session_token("mallory")
    monkeypatch.undo()
    res = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert res.json() is None


def test_first_sign_in_registers_user(client, db):
    token = access.create_session_token("dave", name="Dave", email="dave@example.com", login_method="github")
    res = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
    data = res.json()
    assert data["name"] == "Dave"
    assert data["email"] == "dave@example.com"
    assert data["login_method"] == "github"
    assert data["role"] == "user"
    assert db["user"].count_documents({"open_id": "dave"}) == 1

    client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert db["user"].count_documents({"open_id": "dave"}) == 1


def test_owner_is_registered_as_admin(client, monkeypatch):
    monkeypatch.setattr(access, "settings", Settings(owner_open_id="owner-1"))
    token = access.create_session_token("owner-1")
    res = client.get("/admin/orders", headers={"Authorization": f"Bearer {token}"})
    assert res.status_code == 200


def test_logout_clears_session_cookie(client):
    res = client.post("/auth/logout")
    assert res.status_code == 200
    assert res.json() == {"success": True}
    assert access.settings.cookie_name in res.headers["set-cookie"]


@pytest.mark.parametrize("email", ["", "not-an-email"])
def test_unusable_email_claim_does_not_block_sign_in(client, db, email):
    token = access.create_session_token("erin", name="Erin", email=email)
    res = client.get("/cart", headers={"Authorization": f"Bearer {token}"})
    assert res.status_code == 200
    user = db["user"].find_one({"open_id": "erin"})
    assert user["name"] == "Erin"
    assert user.get("email") is None


def test_anonymous_callers_are_turned_away_while_database_is_down():
    app.dependency_overrides.clear()
    app.state.database = None
    down = TestClient(app)
    assert down.get("/cart").status_code == 401
    assert down.get("/orders").status_code == 401
    assert down.get("/admin/orders").status_code == 403
    assert down.get("/products").status_code == 503

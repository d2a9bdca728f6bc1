import pytest

import services
from errors import BadRequest
from tests.conftest import login


def test_public_settings_empty_until_configured(client):
    res = client.get("/admin/settings/public")
    assert res.status_code == 200
    assert res.json() is None


def test_admin_saves_and_reads_settings(client, admin_headers):
    res = client.put("/admin/settings", headers=admin_headers, json={
        "upi_id": "shop@okbank",
        "upi_name": "Tool Shop",
        "phone_number": "9999999999",
        "qr_code": "data:image/png;base64,iVBORw0KGgo=",
    })
    assert res.status_code == 200
    saved = res.json()
    assert saved["is_active"] is True

    mine = client.get("/admin/settings", headers=admin_headers).json()
    assert mine["upi_id"] == "shop@okbank"
    assert mine["qr_code"].startswith("data:image/png")

    public = client.get("/admin/settings/public").json()
    assert public["id"] == saved["id"]
    assert public["upi_name"] == "Tool Shop"


def test_update_in_place_clears_omitted_fields(client, db, admin_headers):
    first = client.put("/admin/settings", headers=admin_headers, json={
        "upi_id": "shop@okbank", "upi_name": "Tool Shop", "bank_account": "XX01",
    }).json()
    second = client.put("/admin/settings", headers=admin_headers, json={"upi_id": "shop@newbank"}).json()

    assert second["id"] == first["id"]
    assert second["upi_id"] == "shop@newbank"
    assert second["upi_name"] is None
    assert second["bank_account"] is None
    assert db["adminsettings"].count_documents({}) == 1


def test_upi_id_is_required(client, admin_headers):
    assert client.put("/admin/settings", headers=admin_headers, json={"upi_name": "x"}).status_code == 422
    assert client.put("/admin/settings", headers=admin_headers, json={"upi_id": ""}).status_code == 422


def test_blank_upi_id_is_rejected_by_service(db):
    with pytest.raises(BadRequest):
        services.upsert_admin_settings(db, 1, "   ")


def test_settings_are_per_admin(client, db, admin_headers):
    other_admin = login(db, "root2", role="admin")
    client.put("/admin/settings", headers=admin_headers, json={"upi_id": "first@upi"})
    client.put("/admin/settings", headers=other_admin, json={"upi_id": "second@upi"})

    assert client.get("/admin/settings", headers=admin_headers).json()["upi_id"] == "first@upi"
    assert client.get("/admin/settings", headers=other_admin).json()["upi_id"] == "second@upi"
    # latest saved active profile wins
    assert client.get("/admin/settings/public").json()["upi_id"] == "second@upi"


def test_inactive_profiles_are_not_public(db):
    saved = services.upsert_admin_settings(db, 1, "only@upi")
    db["adminsettings"].update_one({"_id": saved["id"]}, {"$set": {"is_active": False}})
    assert services.get_public_settings(db) is None

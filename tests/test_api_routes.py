"""HTTP tests for the owner API."""

from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session

from crowdpulse.registry.store import create_device, create_shop, record_contact, set_crowd_count


def _auth(user) -> dict[str, str]:
    return {"Authorization": f"Bearer {user.session_token}"}


class TestHealthEndpoint:
    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}
        assert resp.headers["X-Content-Type-Options"] == "nosniff"


class TestAccount:
    def test_signup(self, client: TestClient):
        resp = client.post("/api/users", json={"email": "dana@example.com", "full_name": "Dana"})
        assert resp.status_code == 201
        data = resp.json()
        assert data["email"] == "dana@example.com"
        assert len(data["api_key"]) == 64

        me = client.get("/api/me", headers={"Authorization": f"Bearer {data['session_token']}"})
        assert me.status_code == 200
        assert me.json()["full_name"] == "Dana"
        assert "session_token" not in me.json()

    def test_signup_duplicate(self, client: TestClient, alice):
        resp = client.post("/api/users", json={"email": "alice@example.com"})
        assert resp.status_code == 409

    def test_signup_invalid_email(self, client: TestClient):
        assert client.post("/api/users", json={"email": "nope"}).status_code == 400

    def test_requires_token(self, client: TestClient):
        assert client.get("/api/me").status_code == 401
        resp = client.get("/api/me", headers={"Authorization": "Bearer bogus"})
        assert resp.status_code == 401
        assert resp.json() == {"error": "Not authenticated"}

    def test_update_profile(self, client: TestClient, alice):
        resp = client.patch("/api/me", json={"full_name": "Alice L."}, headers=_auth(alice))
        assert resp.status_code == 200
        assert resp.json()["full_name"] == "Alice L."

    def test_get_and_regenerate_key(self, client: TestClient, alice, alice_key):
        assert client.get("/api/api-key", headers=_auth(alice)).json() == {"api_key": alice_key}
        new = client.post("/api/api-key/regenerate", headers=_auth(alice)).json()["api_key"]
        assert new != alice_key
        assert client.get("/api/api-key", headers=_auth(alice)).json() == {"api_key": new}


class TestShops:
    def test_create_and_list(self, client: TestClient, alice):
        resp = client.post(
            "/api/shops", json={"name": "Cafe", "location": "Main St"}, headers=_auth(alice)
        )
        assert resp.status_code == 201
        assert resp.json()["crowd_status"] == "Low"

        shops = client.get("/api/shops", headers=_auth(alice)).json()
        assert [s["name"] for s in shops] == ["Cafe"]

    def test_blank_fields_rejected(self, client: TestClient, alice):
        resp = client.post(
            "/api/shops", json={"name": "  ", "location": "Main St"}, headers=_auth(alice)
        )
        assert resp.status_code == 400

    def test_crowd_status_in_listing(self, client: TestClient, session: Session, alice, clock):
        shop = create_shop(session, alice, "Cafe", "X")
        set_crowd_count(session, shop.id, 26, clock.now)
        shops = client.get("/api/shops", headers=_auth(alice)).json()
        assert shops[0]["crowd_count"] == 26
        assert shops[0]["crowd_status"] == "High"

    def test_update(self, client: TestClient, session: Session, alice):
        shop = create_shop(session, alice, "Cafe", "X")
        resp = client.patch(
            f"/api/shops/{shop.id}", json={"is_public": False}, headers=_auth(alice)
        )
        assert resp.status_code == 200
        assert resp.json()["is_public"] is False
        assert resp.json()["name"] == "Cafe"

    def test_other_users_shop_hidden(self, client: TestClient, session: Session, alice, bob):
        shop = create_shop(session, bob, "Bob's", "Y")
        assert client.get(f"/api/shops/{shop.id}", headers=_auth(alice)).status_code == 404
        assert client.delete(f"/api/shops/{shop.id}", headers=_auth(alice)).status_code == 404

    def test_delete(self, client: TestClient, session: Session, alice):
        shop = create_shop(session, alice, "Cafe", "X")
        assert client.delete(f"/api/shops/{shop.id}", headers=_auth(alice)).status_code == 200
        assert client.get(f"/api/shops/{shop.id}", headers=_auth(alice)).status_code == 404


class TestDevices:
    def test_register_and_list(self, client: TestClient, session: Session, alice):
        shop = create_shop(session, alice, "Cafe", "X")
        resp = client.post(
            "/api/devices",
            json={"device_name": "Door", "device_uid": "esp-1", "shop_id": shop.id},
            headers=_auth(alice),
        )
        assert resp.status_code == 201
        assert resp.json()["shop_id"] == shop.id
        assert resp.json()["status"] == "offline"

        devices = client.get("/api/devices", headers=_auth(alice)).json()
        assert [d["device_uid"] for d in devices] == ["esp-1"]

    def test_duplicate_uid(self, client: TestClient, session: Session, alice, bob):
        create_device(session, bob, "Other", "esp-1")
        resp = client.post(
            "/api/devices",
            json={"device_name": "Door", "device_uid": "esp-1"},
            headers=_auth(alice),
        )
        assert resp.status_code == 409
        assert resp.json() == {"error": "Device ID already in use"}

    def test_link_to_foreign_shop(self, client: TestClient, session: Session, alice, bob):
        shop = create_shop(session, bob, "Bob's", "Y")
        resp = client.post(
            "/api/devices",
            json={"device_name": "Door", "device_uid": "esp-1", "shop_id": shop.id},
            headers=_auth(alice),
        )
        assert resp.status_code == 404

    def test_online_status(self, client: TestClient, session: Session, alice, clock):
        device = create_device(session, alice, "Door", "esp-1")
        record_contact(session, device, clock.now - timedelta(seconds=60))
        resp = client.get(f"/api/devices/{device.id}", headers=_auth(alice))
        assert resp.json()["status"] == "online"

    def test_timestamps_carry_utc_offset(self, client: TestClient, session: Session, alice, clock):
        device = create_device(session, alice, "Door", "esp-1")
        record_contact(session, device, clock.now)
        data = client.get(f"/api/devices/{device.id}", headers=_auth(alice)).json()
        assert datetime.fromisoformat(data["last_seen"]) == clock.now
        for field in ("created_at", "updated_at"):
            assert datetime.fromisoformat(data[field]).utcoffset() == timedelta(0)

    def test_sketch_has_key_and_url(self, client: TestClient, alice, alice_key):
        resp = client.get("/api/devices/sketch", headers=_auth(alice))
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/plain")
        assert f'const char* apiKey = "{alice_key}";' in resp.text
        assert 'const char* serverUrl = "http://testserver/esp32-update";' in resp.text
        assert 'const char* deviceId = "YOUR_DEVICE_UID";' in resp.text

    def test_sketch_for_own_device(self, client: TestClient, session: Session, alice):
        create_device(session, alice, "Door", "esp-1")
        resp = client.get("/api/devices/sketch?device_uid=esp-1", headers=_auth(alice))
        assert 'const char* deviceId = "esp-1";' in resp.text

    def test_sketch_for_foreign_device(self, client: TestClient, session: Session, alice, bob):
        create_device(session, bob, "Other", "esp-9")
        resp = client.get("/api/devices/sketch?device_uid=esp-9", headers=_auth(alice))
        assert resp.status_code == 404

    def test_sketch_requires_auth(self, client: TestClient):
        assert client.get("/api/devices/sketch").status_code == 401

    def test_unlink_with_explicit_null(self, client: TestClient, session: Session, alice):
        shop = create_shop(session, alice, "Cafe", "X")
        device = create_device(session, alice, "Door", "esp-1", shop_id=shop.id)

        renamed = client.patch(
            f"/api/devices/{device.id}", json={"device_name": "Front"}, headers=_auth(alice)
        )
        assert renamed.json()["shop_id"] == shop.id

        resp = client.patch(
            f"/api/devices/{device.id}", json={"shop_id": None}, headers=_auth(alice)
        )
        assert resp.status_code == 200
        assert resp.json()["shop_id"] is None
        assert resp.json()["device_name"] == "Front"

    def test_delete(self, client: TestClient, session: Session, alice):
        device = create_device(session, alice, "Door", "esp-1")
        assert client.delete(f"/api/devices/{device.id}", headers=_auth(alice)).status_code == 200
        assert client.get(f"/api/devices/{device.id}", headers=_auth(alice)).status_code == 404


class TestDashboard:
    def test_stats(self, client: TestClient, session: Session, alice, clock):
        shop = create_shop(session, alice, "Cafe", "X")
        set_crowd_count(session, shop.id, 14, clock.now)
        device = create_device(session, alice, "Door", "esp-1", shop_id=shop.id)
        record_contact(session, device, clock.now)

        data = client.get("/api/dashboard", headers=_auth(alice)).json()
        assert data["shop_count"] == 1
        assert data["device_count"] == 1
        assert data["online_devices"] == 1
        assert data["avg_crowd_count"] == 14
        assert data["top_shop"] == {"name": "Cafe", "crowd_count": 14, "crowd_status": "Medium"}

    def test_requires_auth(self, client: TestClient):
        assert client.get("/api/dashboard").status_code == 401


class TestCrowdCheck:
    def test_anonymous_search(self, client: TestClient, session: Session, alice, clock):
        shop = create_shop(session, alice, "Bean Bar", "Harbour")
        set_crowd_count(session, shop.id, 30, clock.now)
        create_shop(session, alice, "Hidden Bean", "X", is_public=False)

        resp = client.get("/api/crowd-check", params={"q": "bean"})
        assert resp.status_code == 200
        data = resp.json()
        assert len(data) == 1
        assert data[0]["name"] == "Bean Bar"
        assert data[0]["crowd_status"] == "High"
        assert data[0]["advice"] == "Very busy right now. Consider visiting later."

    @pytest.mark.parametrize("q", ["", "   "])
    def test_blank_query(self, client: TestClient, q):
        assert client.get("/api/crowd-check", params={"q": q}).status_code == 400

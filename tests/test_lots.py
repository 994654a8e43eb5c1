from datetime import datetime

from fastapi.testclient import TestClient

from app import create_app
from models import Lot, Role

from conftest import DEVICE_KEY


def test_healthz(client):
    assert client.get("/healthz").json() == {"ok": True}


def test_public_lot_has_farm_and_ordered_events(client, lot, add_event):
    add_event(lot, 20, datetime(2024, 1, 2), type="HARVESTED")
    add_event(lot, None, datetime(2024, 1, 1), type="PLANTED")

    r = client.get("/api/public/lot/DEMOLOT")

    assert r.status_code == 200
    body = r.json()
    assert body["publicId"] == "DEMOLOT"
    assert body["farm"]["name"] == "Green Valley Farm"
    assert [e["type"] for e in body["events"]] == ["PLANTED", "HARVESTED"]


def test_public_lot_not_found(client):
    r = client.get("/api/public/lot/NOPE")
    assert r.status_code == 404
    assert r.json() == {"error": "Not found"}


def test_qrcode_is_png(client, lot):
    r = client.get("/api/public/lot/DEMOLOT/qrcode")

    assert r.status_code == 200
    assert r.headers["content-type"] == "image/png"
    assert r.content.startswith(b"\x89PNG")


def test_qrcode_unknown_lot(client):
    assert client.get("/api/public/lot/NOPE/qrcode").status_code == 404


def test_pilot_request(client):
    assert client.post("/api/pilot", json={"name": "Somchai", "farm": "Rice"}).json() == {"ok": True}


def test_farms_require_auth(client, farm, auth_headers):
    assert client.get("/api/farms").status_code == 401

    r = client.get("/api/farms", headers=auth_headers(Role.BUYER))
    assert r.status_code == 200
    assert r.json()[0]["name"] == "Green Valley Farm"


class TestLotList:
    def test_search_and_event_counts(self, client, db, farm, lot, add_event, auth_headers):
        db.add(Lot(public_id="LOT-LETTUCE", farm_id=farm.id, produce="Lettuce"))
        db.commit()
        add_event(lot, 5, datetime(2024, 1, 1))
        add_event(lot, 6, datetime(2024, 1, 2))

        r = client.get("/api/lots", params={"q": "tomato"}, headers=auth_headers())

        assert r.status_code == 200
        body = r.json()
        assert body["total"] == 1
        assert body["pageSize"] == 10
        assert body["items"][0]["publicId"] == "DEMOLOT"
        assert body["items"][0]["farmName"] == "Green Valley Farm"
        assert body["items"][0]["totalEvents"] == 2

    def test_pagination(self, client, db, farm, auth_headers):
        db.add_all([Lot(public_id=f"LOT-P{i}", farm_id=farm.id, produce="Carrots") for i in range(5)])
        db.commit()

        r = client.get("/api/lots", params={"page": 2, "page_size": 2}, headers=auth_headers())

        assert r.json()["total"] == 5
        assert len(r.json()["items"]) == 2

    def test_requires_auth(self, client):
        assert client.get("/api/lots").status_code == 401


class TestCreateLot:
    def test_generates_public_id(self, client, farm, auth_headers):
        r = client.post("/api/lots", json={"farmId": farm.id, "produce": "Kale"}, headers=auth_headers(Role.FARMER))

        assert r.status_code == 201
        assert r.json()["publicId"].startswith("LOT-")
        assert r.json()["events"] == []

    def test_duplicate_public_id(self, client, farm, lot, auth_headers):
        r = client.post("/api/lots", json={"farmId": farm.id, "produce": "Kale", "publicId": "DEMOLOT"},
                        headers=auth_headers())
        assert r.status_code == 400
        assert r.json() == {"error": "publicId already exists"}

    def test_unknown_farm(self, client, auth_headers):
        r = client.post("/api/lots", json={"farmId": "nope", "produce": "Kale"}, headers=auth_headers())
        assert r.status_code == 404

    def test_buyer_is_forbidden(self, client, farm, auth_headers):
        r = client.post("/api/lots", json={"farmId": farm.id, "produce": "Kale"}, headers=auth_headers(Role.BUYER))

        assert r.status_code == 403
        assert r.json() == {"error": "Insufficient permissions", "required": ["FARMER", "ADMIN"], "current": "BUYER"}


class TestLotEvents:
    def test_add_event_is_broadcast(self, client, lot, broadcaster, auth_headers):
        r = client.post(f"/api/lots/{lot.id}/events",
                        json={"type": "WATERED", "note": "drip line", "temp": 22.5, "at": "2024-01-01T06:00:00Z"},
                        headers=auth_headers(Role.FARMER))

        assert r.status_code == 201
        assert r.json()["at"] == "2024-01-01T06:00:00.000Z"
        assert broadcaster.published[0][1]["event"]["type"] == "WATERED"

        listed = client.get(f"/api/lots/{lot.id}/events", headers=auth_headers(Role.BUYER))
        assert [e["id"] for e in listed.json()] == [r.json()["id"]]

    def test_add_event_unknown_lot(self, client, auth_headers):
        r = client.post("/api/lots/nope/events", json={"type": "WATERED"}, headers=auth_headers())
        assert r.status_code == 404

    def test_add_event_validation(self, client, lot, auth_headers):
        r = client.post(f"/api/lots/{lot.id}/events", json={"temp": 500}, headers=auth_headers())

        assert r.status_code == 400
        assert {d["field"] for d in r.json()["details"]} == {"type", "temp"}


class TestDevices:
    def test_list_hides_key_hash(self, client, device):
        r = client.get("/api/iot/devices")

        assert r.status_code == 200
        [entry] = r.json()
        assert entry["name"] == "Demo Temperature Sensor"
        assert entry["boundLot"]["publicId"] == "DEMOLOT"
        assert DEVICE_KEY not in r.text
        assert device.api_key_hash not in r.text

    def test_admin_only_when_configured(self, settings, engine, device, auth_headers):
        locked = settings.model_copy(update={"IOT_DEVICES_REQUIRE_AUTH": True})
        client = TestClient(create_app(settings=locked, engine=engine))

        assert client.get("/api/iot/devices").status_code == 401
        assert client.get("/api/iot/devices", headers=auth_headers(Role.FARMER)).status_code == 403
        assert client.get("/api/iot/devices", headers=auth_headers(Role.ADMIN)).status_code == 200

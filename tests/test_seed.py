import random

from sqlalchemy import select, func

from models import Lot, SensorDevice, User
from seed import DEMO_DEVICE_KEY, DEMO_LOT_PUBLIC_ID, seed_demo
from utils import hash_api_key

from conftest import MASTER_KEY


def test_seed_is_idempotent(db):
    first = seed_demo(db, rng=random.Random(1))
    second = seed_demo(db, rng=random.Random(1))

    assert first["lots_created"] == 16
    assert first["events_created"] > 0
    assert second["lots_created"] == 0
    assert second["events_created"] == 0
    assert db.scalar(select(func.count()).select_from(User)) == 4
    assert db.scalar(select(func.count()).select_from(SensorDevice)) == 1


def test_demo_device_is_bound_to_demo_lot(db):
    seed_demo(db, rng=random.Random(2))

    device = db.scalar(select(SensorDevice))
    assert device.api_key_hash == hash_api_key(DEMO_DEVICE_KEY)
    assert device.bound_lot.public_id == DEMO_LOT_PUBLIC_ID


def test_seeded_data_accepts_demo_ingest(client, db):
    seed_demo(db, rng=random.Random(3))

    r = client.post("/api/iot/ingest", json={"lotPublicId": DEMO_LOT_PUBLIC_ID, "temp": 6.5},
                    headers={"x-api-key": DEMO_DEVICE_KEY})
    assert r.status_code == 200
    assert r.json()["message"] == "Data received from Demo Temperature Sensor"

    lot = db.scalar(select(Lot).where(Lot.public_id == DEMO_LOT_PUBLIC_ID))
    assert lot is not None
    assert client.post("/api/iot/ingest", json={"lotId": lot.id, "temp": 6.5},
                       headers={"x-api-key": MASTER_KEY}).status_code == 200

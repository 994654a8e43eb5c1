"""
Demo data for local runs and the IoT simulator.
Run:
    python seed.py
"""
import logging
import random
from datetime import timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session

from config import get_settings, configure_logging
from database import Base, make_engine, make_session_factory
from models import User, Farm, Lot, Event, SensorDevice, Role
from security import get_password_hash
from utils import hash_api_key, utcnow

logger = logging.getLogger(__name__)

DEMO_PASSWORD = "password123"
DEMO_LOT_PUBLIC_ID = "DEMOLOT"
DEMO_DEVICE_KEY = "DEMO_IOT_KEY_123"

DEMO_USERS = [
    ("farmer@agrilink.local", "John Farmer", Role.FARMER),
    ("buyer@agrilink.local", "Jane Buyer", Role.BUYER),
    ("inspector@agrilink.local", "Mike Inspector", Role.INSPECTOR),
    ("admin@agrilink.local", "Sarah Admin", Role.ADMIN),
]
DEMO_FARMS = [
    ("farm-1", "Green Valley Farm", "Chiang Mai"),
    ("farm-2", "Organic Hills", "Chiang Rai"),
    ("farm-3", "Smart Agriculture Co.", "Nakhon Pathom"),
]
PRODUCES = ["Tomatoes", "Lettuce", "Cucumbers", "Bell Peppers", "Carrots"]
EVENT_TYPES = ["PLANTED", "WATERED", "FERTILIZED", "HARVESTED", "PACKAGED", "SHIPPED"]


def _get_or_create_lot(db: Session, public_id: str, farm: Farm, produce: str) -> tuple[Lot, bool]:
    lot = db.scalar(select(Lot).where(Lot.public_id == public_id))
    if lot:
        return lot, False
    lot = Lot(public_id=public_id, farm_id=farm.id, produce=produce)
    db.add(lot); db.flush()
    return lot, True


def seed_demo(db: Session, rng: random.Random | None = None) -> dict:
    """Create the demo dataset; rows that already exist are left alone."""
    rng = rng or random.Random()
    users = {}
    for email, name, role in DEMO_USERS:
        user = db.scalar(select(User).where(User.email == email))
        if not user:
            user = User(email=email, name=name, password=get_password_hash(DEMO_PASSWORD), role=role)
            db.add(user); db.flush()
        users[role] = user

    farms = []
    for farm_id, name, district in DEMO_FARMS:
        farm = db.get(Farm, farm_id)
        if not farm:
            farm = Farm(id=farm_id, name=name, district=district, owner_id=users[Role.FARMER].id)
            db.add(farm); db.flush()
        farms.append(farm)

    new_lots = []
    for farm in farms:
        for i, produce in enumerate(PRODUCES):
            public_id = f"LOT-{farm.name.replace(' ', '').replace('.', '').upper()}-{i + 1}"
            lot, created = _get_or_create_lot(db, public_id, farm, produce)
            if created:
                new_lots.append(lot)
    demo_lot, created = _get_or_create_lot(db, DEMO_LOT_PUBLIC_ID, farms[0], "Demo Tomatoes (IoT)")
    if created:
        new_lots.append(demo_lot)

    events = 0
    now = utcnow()
    for lot in new_lots:
        n = rng.randint(3, 6)
        for i in range(n):
            ev_type = EVENT_TYPES[i % len(EVENT_TYPES)]
            db.add(Event(
                lot_id=lot.id,
                type=ev_type,
                note=f"{ev_type} event for {lot.produce}",
                temp=round(rng.uniform(15, 25), 1),
                hum=round(rng.uniform(50, 80), 1),
                at=now - timedelta(days=n - i),
                place=f"Field Section {rng.randint(1, 5)}",
            ))
            events += 1

    key_hash = hash_api_key(DEMO_DEVICE_KEY)
    if not db.scalar(select(SensorDevice).where(SensorDevice.api_key_hash == key_hash)):
        db.add(SensorDevice(name="Demo Temperature Sensor", api_key_hash=key_hash, bound_lot_id=demo_lot.id))

    db.commit()
    summary = {"users": len(users), "farms": len(farms), "lots_created": len(new_lots), "events_created": events}
    logger.info("Seed complete: %s", summary)
    return summary


def main():
    settings = get_settings()
    configure_logging(settings.LOG_LEVEL)
    engine = make_engine(settings.DATABASE_URL)
    Base.metadata.create_all(bind=engine)
    SessionLocal = make_session_factory(engine)
    with SessionLocal() as db:
        seed_demo(db)
    logger.info("Demo logins: farmer|buyer|inspector|admin@agrilink.local / %s", DEMO_PASSWORD)
    logger.info("Demo device key: %s, demo lot: %s", DEMO_DEVICE_KEY, DEMO_LOT_PUBLIC_ID)


if __name__ == "__main__":
    main()

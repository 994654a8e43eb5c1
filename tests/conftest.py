"""
Shared fixtures: an in-memory database, an app built around it and a few
demo rows (users of every role, one farm, the DEMOLOT lot and a device).
"""
import pytest
from fastapi.testclient import TestClient

from app import create_app
from config import Settings
from database import Base, make_engine, make_session_factory
from models import User, Farm, Lot, Event, SensorDevice, Role
from realtime import Broadcaster
from security import create_access_token, get_password_hash
from utils import hash_api_key

MASTER_KEY = "TEST_MASTER_KEY"
DEVICE_KEY = "DEMO_IOT_KEY_123"
PASSWORD = "password123"


class RecordingBroadcaster(Broadcaster):
    """Broadcaster that also remembers everything published."""

    def __init__(self):
        super().__init__()
        self.published = []

    def publish(self, event, data):
        self.published.append((event, data))
        return super().publish(event, data)


@pytest.fixture(scope="session")
def password_hash():
    return get_password_hash(PASSWORD)


@pytest.fixture
def settings():
    return Settings(
        DATABASE_URL="sqlite://",
        JWT_SECRET="test-secret",
        IOT_MASTER_KEY=MASTER_KEY,
        LOG_LEVEL="WARNING",
    )


@pytest.fixture
def engine(settings):
    engine = make_engine(settings.DATABASE_URL)
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def broadcaster():
    return RecordingBroadcaster()


@pytest.fixture
def app(settings, engine, broadcaster):
    return create_app(settings=settings, engine=engine, broadcaster=broadcaster)


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def db(engine):
    session = make_session_factory(engine)()
    yield session
    session.close()


def make_user(db, email, role, password_hash, name=None):
    user = User(email=email, name=name or email.split("@")[0].title(), password=password_hash, role=role)
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def users(db, password_hash):
    return {
        role: make_user(db, f"{role.value.lower()}@agrilink.local", role, password_hash)
        for role in Role
    }


@pytest.fixture
def tokens(settings, users):
    return {
        role: create_access_token(settings, user.id, user.email, user.role.value)
        for role, user in users.items()
    }


@pytest.fixture
def auth_headers(tokens):
    def _headers(role=Role.ADMIN):
        return {"Authorization": f"Bearer {tokens[role]}"}
    return _headers


@pytest.fixture
def farm(db, users):
    farm = Farm(id="farm-1", name="Green Valley Farm", district="Chiang Mai", owner_id=users[Role.FARMER].id)
    db.add(farm)
    db.commit()
    return farm


@pytest.fixture
def lot(db, farm):
    lot = Lot(public_id="DEMOLOT", farm_id=farm.id, produce="Demo Tomatoes (IoT)")
    db.add(lot)
    db.commit()
    return lot


@pytest.fixture
def device(db, lot):
    device = SensorDevice(name="Demo Temperature Sensor", api_key_hash=hash_api_key(DEVICE_KEY), bound_lot_id=lot.id)
    db.add(device)
    db.commit()
    return device


@pytest.fixture
def add_event(db):
    def _add(lot, temp, at, type="SENSOR", hum=None):
        event = Event(lot_id=lot.id, type=type, temp=temp, hum=hum, at=at)
        db.add(event)
        db.commit()
        return event
    return _add
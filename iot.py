import logging
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Header
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy import select
from sqlalchemy.orm import Session, joinedload

from config import Settings
from deps import bearer, get_db, get_settings, get_broadcaster, get_current_user
from errors import AuthenticationFailure, NotFound, PermissionDenied
from models import Lot, Event, SensorDevice, Role
from realtime import Broadcaster, SENSOR_UPDATE
from schemas import IngestPayload, device_out
from security import is_master_key
from utils import hash_api_key, to_utc_naive, utcnow, isoformat
from validation import validate, unwrap_or_fail

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/iot", tags=["iot"])

MASTER_DEVICE_NAME = "Master Device"


def authenticate_device(db: Session, settings: Settings, api_key: Optional[str]) -> str:
    """Return the name of the device owning ``api_key``.

    The master key maps to a fixed identity; any other key must hash to a
    registered device.
    """
    if not api_key:
        raise AuthenticationFailure("API key required in x-api-key header")
    if is_master_key(settings, api_key):
        return MASTER_DEVICE_NAME
    device = db.scalar(select(SensorDevice).where(SensorDevice.api_key_hash == hash_api_key(api_key)))
    if device is None:
        raise AuthenticationFailure("Invalid API key")
    return device.name


def resolve_lot(db: Session, lot_id: Optional[str], lot_public_id: Optional[str]) -> Lot:
    q = select(Lot).options(joinedload(Lot.farm))
    if lot_id:
        lot = db.scalar(q.where(Lot.id == lot_id))
    else:
        lot = db.scalar(q.where(Lot.public_id == lot_public_id))
    if lot is None:
        raise NotFound("Lot not found")
    return lot


def sensor_update(lot: Lot, event: Event, device_name: Optional[str] = None) -> dict:
    return {
        "lotId": lot.id,
        "lotPublicId": lot.public_id,
        "farmName": lot.farm.name,
        "produce": lot.produce,
        "event": {
            "id": event.id,
            "type": event.type,
            "temp": event.temp,
            "hum": event.hum,
            "at": isoformat(event.at),
            "place": event.place,
            "note": event.note,
        },
        "deviceName": device_name,
        "timestamp": isoformat(utcnow()),
    }


def publish_quietly(broadcaster: Broadcaster, payload: dict) -> None:
    # the event is already committed; a failed broadcast must not fail the request
    try:
        broadcaster.publish(SENSOR_UPDATE, payload)
    except Exception:
        logger.exception("Realtime broadcast failed for lot %s", payload.get("lotPublicId"))


@router.post("/ingest")
def ingest(
    body: Any = Body(None),
    x_api_key: Optional[str] = Header(None),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    broadcaster: Broadcaster = Depends(get_broadcaster),
):
    data = unwrap_or_fail(validate(IngestPayload, body))
    device_name = authenticate_device(db, settings, x_api_key)
    lot = resolve_lot(db, data.lot_id, data.lot_public_id)

    event = Event(
        lot_id=lot.id,
        type="SENSOR",
        note=f"Sensor reading from {device_name}",
        temp=data.temp,
        hum=data.hum,
        at=to_utc_naive(data.at) if data.at else utcnow(),
        place=data.location or "IoT Device",
    )
    db.add(event); db.commit(); db.refresh(event)
    logger.info("Ingested %.2f from %s for lot %s", event.temp, device_name, lot.public_id)

    publish_quietly(broadcaster, sensor_update(lot, event, device_name))

    return {
        "success": True,
        "event": {
            "id": event.id,
            "lotId": lot.id,
            "lotPublicId": lot.public_id,
            "temp": event.temp,
            "hum": event.hum,
            "at": isoformat(event.at),
        },
        "message": f"Data received from {device_name}",
    }


def device_list_guard(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
    settings: Settings = Depends(get_settings),
    db: Session = Depends(get_db),
) -> None:
    """Admin-only when IOT_DEVICES_REQUIRE_AUTH is set, public otherwise."""
    if not settings.IOT_DEVICES_REQUIRE_AUTH:
        return
    user = get_current_user(credentials=credentials, settings=settings, db=db)
    if user.role != Role.ADMIN:
        raise PermissionDenied(required=[Role.ADMIN.value], current=user.role.value)


@router.get("/devices", dependencies=[Depends(device_list_guard)])
def list_devices(db: Session = Depends(get_db)):
    devices = db.scalars(
        select(SensorDevice)
        .options(joinedload(SensorDevice.bound_lot).joinedload(Lot.farm))
        .order_by(SensorDevice.created_at.desc())
    ).all()
    return [device_out(d) for d in devices]

import json
import re
from datetime import datetime
from typing import Optional, Any, Dict, List

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from models import Role, Grade, User, Lot, Event, QaInspection, Certificate, SensorDevice
from utils import isoformat

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
PUBLIC_ID_REGEX = r"^[A-Za-z0-9_-]{3,64}$"
ISO_DATETIME = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}")


def iso_datetime_string(value: Any) -> Any:
    """Only ISO-8601 date-time strings become datetimes; epoch numbers and bare dates are rejected."""
    if value is None or isinstance(value, datetime):
        return value
    if not isinstance(value, str) or not ISO_DATETIME.match(value):
        raise ValueError("must be an ISO-8601 date-time string")
    return value


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------- Requests ----------
class IngestPayload(CamelModel):
    lot_id: Optional[str] = None
    lot_public_id: Optional[str] = None
    # strict: booleans and numeric strings are not readings
    temp: float = Field(..., ge=-50, le=100, strict=True, allow_inf_nan=False)
    hum: Optional[float] = Field(None, ge=0, le=100, strict=True, allow_inf_nan=False)
    location: Optional[str] = None
    at: Optional[datetime] = None

    @field_validator("at", mode="before")
    @classmethod
    def at_is_iso_string(cls, v):
        return iso_datetime_string(v)

    @model_validator(mode="after")
    def lot_selector(self):
        if not self.lot_id and not self.lot_public_id:
            raise ValueError("Either lotId or lotPublicId must be provided")
        return self


class QaKpiQuery(CamelModel):
    lot_public_id: Optional[str] = None
    farm_id: Optional[str] = None
    from_: Optional[datetime] = Field(None, alias="from")
    to: Optional[datetime] = None
    temp_threshold: Optional[float] = Field(None, allow_inf_nan=False)

    @field_validator("from_", "to", mode="before")
    @classmethod
    def period_is_iso_string(cls, v):
        return iso_datetime_string(v)

    @model_validator(mode="after")
    def target_selector(self):
        if not self.lot_public_id and not self.farm_id:
            raise ValueError("Either lotPublicId or farmId must be provided")
        return self


class InspectionCreate(CamelModel):
    lot_id: Optional[str] = None
    lot_public_id: Optional[str] = None
    defects: int = Field(..., ge=0)
    grade: Grade
    notes: Optional[str] = None
    images: Optional[List[str]] = None

    @model_validator(mode="after")
    def lot_selector(self):
        if not self.lot_id and not self.lot_public_id:
            raise ValueError("Either lotId or lotPublicId must be provided")
        return self


class CertificateCreate(CamelModel):
    farm_id: Optional[str] = None
    lot_id: Optional[str] = None
    lot_public_id: Optional[str] = None
    type: str = Field(..., min_length=1, max_length=100)
    issuer: str = Field(..., min_length=1, max_length=255)
    file_url: str = Field(..., min_length=1, max_length=512)
    issued_at: datetime
    expires_at: Optional[datetime] = None

    @field_validator("issued_at", "expires_at", mode="before")
    @classmethod
    def dates_are_iso_strings(cls, v):
        return iso_datetime_string(v)

    @model_validator(mode="after")
    def owner_selector(self):
        if not (self.farm_id or self.lot_id or self.lot_public_id):
            raise ValueError("Either farmId, lotId, or lotPublicId must be provided")
        return self


class RegisterRequest(CamelModel):
    email: str = Field(..., pattern=EMAIL_PATTERN, max_length=255)
    name: str = Field(..., min_length=2, max_length=255)
    password: str = Field(..., min_length=6)
    role: Role = Role.FARMER


class LoginRequest(CamelModel):
    email: str
    password: str


class RefreshRequest(CamelModel):
    refresh_token: str


class CreateLot(CamelModel):
    farm_id: str
    produce: str = Field(..., min_length=1, max_length=255)
    public_id: Optional[str] = Field(None, pattern=PUBLIC_ID_REGEX)


class EventCreate(CamelModel):
    type: str = Field(..., min_length=1, max_length=50)
    note: Optional[str] = None
    temp: Optional[float] = Field(None, ge=-50, le=100, strict=True, allow_inf_nan=False)
    hum: Optional[float] = Field(None, ge=0, le=100, strict=True, allow_inf_nan=False)
    at: Optional[datetime] = None
    place: Optional[str] = Field(None, max_length=255)

    @field_validator("at", mode="before")
    @classmethod
    def at_is_iso_string(cls, v):
        return iso_datetime_string(v)


# ---------- Responses ----------
class LotBrief(CamelModel):
    id: str
    public_id: str
    produce: str
    farm_name: str
    total_events: int


class LotList(CamelModel):
    items: List[LotBrief]
    total: int
    page: int
    page_size: int


def user_out(user: User) -> Dict[str, Any]:
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "role": user.role.value,
        "createdAt": isoformat(user.created_at),
    }


def event_out(e: Event) -> Dict[str, Any]:
    return {
        "id": e.id,
        "lotId": e.lot_id,
        "type": e.type,
        "note": e.note,
        "temp": e.temp,
        "hum": e.hum,
        "at": isoformat(e.at),
        "place": e.place,
    }


def lot_summary(lot: Lot) -> Dict[str, Any]:
    return {
        "id": lot.id,
        "publicId": lot.public_id,
        "produce": lot.produce,
        "farmName": lot.farm.name,
    }


def lot_detail(lot: Lot) -> Dict[str, Any]:
    return {
        "id": lot.id,
        "publicId": lot.public_id,
        "produce": lot.produce,
        "farmId": lot.farm_id,
        "createdAt": isoformat(lot.created_at),
        "farm": {"id": lot.farm.id, "name": lot.farm.name, "district": lot.farm.district},
        "events": [event_out(e) for e in lot.events],
    }


def device_out(device: SensorDevice) -> Dict[str, Any]:
    # key hash stays server-side
    return {
        "id": device.id,
        "name": device.name,
        "boundLot": lot_summary(device.bound_lot) if device.bound_lot else None,
        "createdAt": isoformat(device.created_at),
    }


def inspection_out(i: QaInspection) -> Dict[str, Any]:
    return {
        "id": i.id,
        "lotId": i.lot_id,
        "lotPublicId": i.lot.public_id,
        "defects": i.defects,
        "grade": i.grade.value,
        "notes": i.notes,
        "images": json.loads(i.images) if i.images else [],
        "inspector": {"id": i.inspector.id, "name": i.inspector.name},
        "createdAt": isoformat(i.created_at),
    }


def certificate_out(c: Certificate) -> Dict[str, Any]:
    return {
        "id": c.id,
        "type": c.type,
        "issuer": c.issuer,
        "fileUrl": c.file_url,
        "issuedAt": isoformat(c.issued_at),
        "expiresAt": isoformat(c.expires_at),
        "farm": {"id": c.farm.id, "name": c.farm.name},
        "lot": {"id": c.lot.id, "publicId": c.lot.public_id, "produce": c.lot.produce} if c.lot else None,
        "createdAt": isoformat(c.created_at),
    }

import enum
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import String, Text, Integer, Float, DateTime, Enum, ForeignKey
from database import Base
from utils import utcnow


def _uuid() -> str:
    return str(uuid.uuid4())


class Role(str, enum.Enum):
    FARMER = "FARMER"
    BUYER = "BUYER"
    INSPECTOR = "INSPECTOR"
    ADMIN = "ADMIN"


class Grade(str, enum.Enum):
    A = "A"
    B = "B"
    C = "C"
    REJECT = "REJECT"


class User(Base):
    __tablename__ = "users"
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    name: Mapped[str] = mapped_column(String(255))
    password: Mapped[str] = mapped_column(String(255))
    role: Mapped[Role] = mapped_column(Enum(Role, native_enum=False), default=Role.FARMER)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    sessions: Mapped[list["Session"]] = relationship("Session", back_populates="user", cascade="all, delete-orphan")
    farms: Mapped[list["Farm"]] = relationship("Farm", back_populates="owner")


class Session(Base):
    __tablename__ = "sessions"
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id", ondelete="CASCADE"), index=True)
    refresh_token: Mapped[str] = mapped_column(String(128), unique=True, index=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    user: Mapped[User] = relationship("User", back_populates="sessions")


class Farm(Base):
    __tablename__ = "farms"
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(255))
    district: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    owner_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("users.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    owner: Mapped[Optional[User]] = relationship("User", back_populates="farms")
    lots: Mapped[list["Lot"]] = relationship("Lot", back_populates="farm")
    certificates: Mapped[list["Certificate"]] = relationship("Certificate", back_populates="farm")


class Lot(Base):
    __tablename__ = "lots"
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    public_id: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    farm_id: Mapped[str] = mapped_column(String(36), ForeignKey("farms.id"), index=True)
    produce: Mapped[str] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    farm: Mapped[Farm] = relationship("Farm", back_populates="lots")
    events: Mapped[list["Event"]] = relationship(
        "Event", back_populates="lot", cascade="all, delete-orphan", order_by="Event.at"
    )
    inspections: Mapped[list["QaInspection"]] = relationship("QaInspection", back_populates="lot")


class Event(Base):
    __tablename__ = "events"
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    lot_id: Mapped[str] = mapped_column(String(36), ForeignKey("lots.id"), index=True)
    type: Mapped[str] = mapped_column(String(50))
    note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    temp: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    hum: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)
    place: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    lot: Mapped[Lot] = relationship("Lot", back_populates="events")


class SensorDevice(Base):
    __tablename__ = "sensor_devices"
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(255))
    api_key_hash: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    bound_lot_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("lots.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    bound_lot: Mapped[Optional[Lot]] = relationship("Lot")


class QaInspection(Base):
    __tablename__ = "qa_inspections"
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    lot_id: Mapped[str] = mapped_column(String(36), ForeignKey("lots.id"), index=True)
    inspector_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"))
    defects: Mapped[int] = mapped_column(Integer, default=0)
    grade: Mapped[Grade] = mapped_column(Enum(Grade, native_enum=False))
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    images: Mapped[Optional[str]] = mapped_column(Text, nullable=True)  # json list
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)
    lot: Mapped[Lot] = relationship("Lot", back_populates="inspections")
    inspector: Mapped[User] = relationship("User")


class Certificate(Base):
    __tablename__ = "certificates"
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    farm_id: Mapped[str] = mapped_column(String(36), ForeignKey("farms.id"), index=True)
    lot_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("lots.id"), nullable=True)
    type: Mapped[str] = mapped_column(String(100))
    issuer: Mapped[str] = mapped_column(String(255))
    file_url: Mapped[str] = mapped_column(String(512))
    issued_at: Mapped[datetime] = mapped_column(DateTime)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    farm: Mapped[Farm] = relationship("Farm", back_populates="certificates")
    lot: Mapped[Optional[Lot]] = relationship("Lot")

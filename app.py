import io
from contextlib import asynccontextmanager
import logging
import time
from typing import Any, Optional

from fastapi import FastAPI, Body, Depends, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import select, func
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload, selectinload

import qrcode

from config import Settings, get_settings as load_settings, configure_logging
from database import Base, make_engine, make_session_factory
from deps import get_db, get_settings, get_broadcaster, get_current_user, require_role
from errors import Conflict, NotFound, install_error_handlers
from iot import publish_quietly, sensor_update
from models import Farm, Lot, Event, Role
from realtime import Broadcaster
import auth
import iot
import qa
import realtime
import schemas
from schemas import CreateLot, EventCreate, event_out, lot_detail
from utils import generate_public_id, to_utc_naive, utcnow
from validation import validate, unwrap_or_fail

logger = logging.getLogger("agrilink")


def create_app(settings: Optional[Settings] = None,
               engine: Optional[Engine] = None,
               broadcaster: Optional[Broadcaster] = None) -> FastAPI:
    """Build the API with its database and realtime channel wired in."""
    settings = settings or load_settings()
    configure_logging(settings.LOG_LEVEL)
    engine = engine or make_engine(settings.DATABASE_URL)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        Base.metadata.create_all(bind=engine)
        logger.info("%s %s started", settings.APP_NAME, settings.APP_VERSION)
        yield
        engine.dispose()

    app = FastAPI(title=settings.APP_NAME, version=settings.APP_VERSION, lifespan=lifespan)
    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = make_session_factory(engine)
    app.state.broadcaster = broadcaster or Broadcaster()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def access_log(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        logger.info("%s %s %s %.1fms", request.method, request.url.path,
                    response.status_code, (time.perf_counter() - start) * 1000)
        return response

    install_error_handlers(app)
    app.include_router(auth.router)
    app.include_router(iot.router)
    app.include_router(qa.router)
    app.include_router(realtime.router)
    register_routes(app)
    return app


def register_routes(app: FastAPI) -> None:
    @app.get("/healthz")
    def healthz():
        return {"ok": True}

    # ---------- Public ----------
    @app.post("/api/pilot")
    def pilot_request(body: Any = Body(None)):
        logger.info("Pilot request form: %s", body)
        return {"ok": True}

    @app.get("/api/public/lot/{public_id}")
    def public_lot(public_id: str, db: Session = Depends(get_db)):
        lot = db.scalar(
            select(Lot).options(joinedload(Lot.farm), selectinload(Lot.events)).where(Lot.public_id == public_id)
        )
        if not lot:
            raise NotFound("Not found")
        return lot_detail(lot)

    @app.get("/api/public/lot/{public_id}/qrcode")
    def lot_qrcode(public_id: str, db: Session = Depends(get_db),
                   settings: Settings = Depends(get_settings)):
        if not db.scalar(select(Lot.id).where(Lot.public_id == public_id)):
            raise NotFound("Not found")
        url = f"{settings.BASE_URL.rstrip('/')}/qr/{public_id}"
        img = qrcode.make(url)
        buf = io.BytesIO()
        img.save(buf, format="PNG")
        return Response(content=buf.getvalue(), media_type="image/png")

    # ---------- Farms & lots ----------
    @app.get("/api/farms", dependencies=[Depends(get_current_user)])
    def list_farms(db: Session = Depends(get_db)):
        farms = db.scalars(select(Farm).order_by(Farm.created_at).limit(50)).all()
        return [{"id": f.id, "name": f.name, "district": f.district, "ownerId": f.owner_id} for f in farms]

    @app.get("/api/lots", response_model=schemas.LotList, dependencies=[Depends(get_current_user)])
    def list_lots(
        q: Optional[str] = Query(None, description="search public id, produce or farm name"),
        page: int = Query(1, ge=1),
        page_size: int = Query(10, ge=1, le=100),
        db: Session = Depends(get_db),
    ):
        base = select(Lot).join(Farm)
        if q:
            like = f"%{q}%"
            base = base.where(
                (Lot.public_id.ilike(like)) |
                (Lot.produce.ilike(like)) |
                (Farm.name.ilike(like))
            )

        total = db.scalar(select(func.count()).select_from(base.subquery()))
        rows = db.scalars(
            base.options(joinedload(Lot.farm))
                .order_by(Lot.created_at.desc())
                .offset((page - 1) * page_size)
                .limit(page_size)
        ).all()

        counts = dict(db.execute(
            select(Event.lot_id, func.count(Event.id))
            .where(Event.lot_id.in_([lot.id for lot in rows]))
            .group_by(Event.lot_id)
        ).all()) if rows else {}

        items = [schemas.LotBrief(
            id=lot.id,
            public_id=lot.public_id,
            produce=lot.produce,
            farm_name=lot.farm.name,
            total_events=counts.get(lot.id, 0),
        ) for lot in rows]
        return schemas.LotList(items=items, total=total or 0, page=page, page_size=page_size)

    @app.post("/api/lots", status_code=201)
    def create_lot(body: Any = Body(None), db: Session = Depends(get_db),
                   user=Depends(require_role(Role.FARMER, Role.ADMIN))):
        data = unwrap_or_fail(validate(CreateLot, body))
        if db.get(Farm, data.farm_id) is None:
            raise NotFound("Farm not found")
        public_id = data.public_id or generate_public_id()
        if db.scalar(select(Lot.id).where(Lot.public_id == public_id)):
            raise Conflict("publicId already exists")
        lot = Lot(public_id=public_id, farm_id=data.farm_id, produce=data.produce)
        db.add(lot)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            raise Conflict("publicId already exists")
        db.refresh(lot)
        logger.info("Lot %s created on farm %s by %s", lot.public_id, lot.farm_id, user.email)
        return lot_detail(lot)

    @app.get("/api/lots/{lot_id}/events", dependencies=[Depends(get_current_user)])
    def lot_events(lot_id: str, db: Session = Depends(get_db)):
        events = db.scalars(select(Event).where(Event.lot_id == lot_id).order_by(Event.at.asc())).all()
        return [event_out(e) for e in events]

    @app.post("/api/lots/{lot_id}/events", status_code=201,
              dependencies=[Depends(require_role(Role.FARMER, Role.INSPECTOR, Role.ADMIN))])
    def add_lot_event(lot_id: str, body: Any = Body(None), db: Session = Depends(get_db),
                      broadcaster: Broadcaster = Depends(get_broadcaster)):
        data = unwrap_or_fail(validate(EventCreate, body))
        lot = db.scalar(select(Lot).options(joinedload(Lot.farm)).where(Lot.id == lot_id))
        if not lot:
            raise NotFound("Lot not found")
        event = Event(
            lot_id=lot.id,
            type=data.type,
            note=data.note,
            temp=data.temp,
            hum=data.hum,
            at=to_utc_naive(data.at) if data.at else utcnow(),
            place=data.place,
        )
        db.add(event); db.commit(); db.refresh(event)
        publish_quietly(broadcaster, sensor_update(lot, event))
        return event_out(event)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("app:create_app", factory=True, host="0.0.0.0", port=8080)

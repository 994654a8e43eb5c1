import json
import logging
from datetime import timedelta
from typing import Any, List, Optional

from fastapi import APIRouter, Body, Depends, Query, Request
from sqlalchemy import select
from sqlalchemy.orm import Session, joinedload

from config import Settings
from deps import get_db, get_settings, get_current_user, require_role
from errors import NotFound, ValidationFailure
from iot import resolve_lot
from models import Farm, Lot, Event, QaInspection, Certificate, User, Role
from schemas import QaKpiQuery, InspectionCreate, CertificateCreate, inspection_out, certificate_out, lot_summary
from utils import qa_kpis, daily_series, to_utc_naive, utcnow, isoformat
from validation import validate, unwrap_or_fail

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/qa", tags=["qa"])


def resolve_target_lots(db: Session, lot_public_id: Optional[str], farm_id: Optional[str]) -> List[Lot]:
    """Lots selected by a public lot id, or every lot of a farm.

    An unknown lot or farm is not found; a known farm without lots is an
    empty selection.
    """
    if lot_public_id:
        lot = db.scalar(select(Lot).options(joinedload(Lot.farm)).where(Lot.public_id == lot_public_id))
        if lot is None:
            raise NotFound("No lots found")
        return [lot]
    if db.get(Farm, farm_id) is None:
        raise NotFound("Farm not found")
    return list(db.scalars(
        select(Lot).options(joinedload(Lot.farm)).where(Lot.farm_id == farm_id).order_by(Lot.created_at)
    ).all())


@router.get("/kpi", dependencies=[Depends(get_current_user)])
def qa_kpi(request: Request, db: Session = Depends(get_db), settings: Settings = Depends(get_settings)):
    params = unwrap_or_fail(validate(QaKpiQuery, dict(request.query_params)))

    to_date = to_utc_naive(params.to) if params.to else utcnow()
    from_date = (to_utc_naive(params.from_) if params.from_
                 else utcnow() - timedelta(days=settings.QA_DEFAULT_PERIOD_DAYS))
    threshold = (params.temp_threshold if params.temp_threshold is not None
                 else settings.QA_DEFAULT_TEMP_THRESHOLD)

    lots = resolve_target_lots(db, params.lot_public_id, params.farm_id)
    lot_ids = [lot.id for lot in lots]

    inspections = db.scalars(
        select(QaInspection).where(
            QaInspection.lot_id.in_(lot_ids),
            QaInspection.created_at >= from_date,
            QaInspection.created_at <= to_date,
        )
    ).all() if lot_ids else []
    temp_events = db.scalars(
        select(Event).where(
            Event.lot_id.in_(lot_ids),
            Event.temp.is_not(None),
            Event.at >= from_date,
            Event.at <= to_date,
        ).order_by(Event.at.asc())
    ).all() if lot_ids else []

    kpis = qa_kpis([i.defects for i in inspections], [e.temp for e in temp_events], threshold)
    series = daily_series(
        ((i.created_at, i.defects) for i in inspections),
        ((e.at, e.temp) for e in temp_events),
    )
    return {
        "kpis": kpis,
        "series": series,
        "period": {"from": isoformat(from_date), "to": isoformat(to_date)},
        "lots": [lot_summary(lot) for lot in lots],
    }


@router.post("/inspections", status_code=201)
def create_inspection(
    body: Any = Body(None),
    db: Session = Depends(get_db),
    user: User = Depends(require_role(Role.INSPECTOR, Role.ADMIN)),
):
    data = unwrap_or_fail(validate(InspectionCreate, body))
    lot = resolve_lot(db, data.lot_id, data.lot_public_id)
    inspection = QaInspection(
        lot_id=lot.id,
        inspector_id=user.id,
        defects=data.defects,
        grade=data.grade,
        notes=data.notes,
        images=json.dumps(data.images) if data.images else None,
    )
    db.add(inspection); db.commit(); db.refresh(inspection)
    logger.info("Inspection %s recorded for lot %s by %s", inspection.id, lot.public_id, user.email)
    return inspection_out(inspection)


@router.get("/certificates")
def list_certificates(
    lot_public_id: Optional[str] = Query(None, alias="lotPublicId"),
    farm_id: Optional[str] = Query(None, alias="farmId"),
    db: Session = Depends(get_db),
):
    q = select(Certificate).options(joinedload(Certificate.farm), joinedload(Certificate.lot))
    if lot_public_id:
        lot = db.scalar(select(Lot).where(Lot.public_id == lot_public_id))
        if lot is None:
            raise NotFound("Lot not found")
        q = q.where(Certificate.lot_id == lot.id)
    elif farm_id:
        q = q.where(Certificate.farm_id == farm_id)
    certificates = db.scalars(q.order_by(Certificate.created_at.desc())).all()
    return [certificate_out(c) for c in certificates]


@router.post("/certificates", status_code=201)
def create_certificate(
    body: Any = Body(None),
    db: Session = Depends(get_db),
    user: User = Depends(require_role(Role.FARMER, Role.INSPECTOR, Role.ADMIN)),
):
    data = unwrap_or_fail(validate(CertificateCreate, body))
    farm_id, lot_id = data.farm_id, None
    if data.lot_id or data.lot_public_id:
        lot = resolve_lot(db, data.lot_id, data.lot_public_id)
        farm_id, lot_id = lot.farm_id, lot.id
    elif db.get(Farm, farm_id) is None:
        raise NotFound("Farm not found")
    issued_at = to_utc_naive(data.issued_at)
    expires_at = to_utc_naive(data.expires_at) if data.expires_at else None
    if expires_at and expires_at < issued_at:
        raise ValidationFailure([{"field": "expiresAt", "message": "expiresAt must not precede issuedAt"}])

    certificate = Certificate(
        farm_id=farm_id,
        lot_id=lot_id,
        type=data.type,
        issuer=data.issuer,
        file_url=data.file_url,
        issued_at=issued_at,
        expires_at=expires_at,
    )
    db.add(certificate); db.commit(); db.refresh(certificate)
    logger.info("Certificate %s (%s) added for farm %s by %s", certificate.id, certificate.type, farm_id, user.email)
    return certificate_out(certificate)

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.auth import Principal, get_current_principal
from app.config import settings
from app.db import get_db
from app.schemas import StageRequest, StatusUpdateRequest
from app.services.board_service import list_spots
from app.services.lifecycle_service import update_status
from app.services.staging_service import (
    StageLine,
    list_active_staging,
    serialize_staging_record,
    stage_items,
)

router = APIRouter(prefix='/staging', tags=['staging'])


@router.get('')
def active_staging(
    _principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    return {'records': list_active_staging(db)}


@router.post('', status_code=201)
def create_staging_record(
    payload: StageRequest,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    record = stage_items(
        db,
        principal=principal,
        po_id=payload.po_id,
        lines=[StageLine(po_item_id=line.item_id, quantity=line.quantity) for line in payload.items],
        spot_id=payload.spot_id,
        custom_location=payload.custom_location,
        pack_number=payload.pack_number,
        notes=payload.notes,
        request_id=payload.request_id,
    )
    db.commit()
    return {'success': True, 'staging_id': record.id, 'record': serialize_staging_record(record)}


@router.get('/spots')
def staging_spots(
    available: bool = False,
    location: int | None = Query(default=None),
    _principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    location_id = location if location is not None else settings.default_location_id
    return {'spots': list_spots(db, location_id=location_id, available_only=available)}


@router.post('/{staging_record_id}/status')
def change_status(
    staging_record_id: int,
    payload: StatusUpdateRequest,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    record = update_status(db, principal=principal, staging_record_id=staging_record_id, status=payload.status)
    db.commit()
    return {'success': True, 'record': serialize_staging_record(record)}

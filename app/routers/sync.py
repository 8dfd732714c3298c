from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.auth import Principal, get_current_principal
from app.db import get_db
from app.models import SyncKind
from app.schemas import JobBatch, LocationBatch, PurchaseOrderBatch, ReceivedItemBatch
from app.security.sync_key import verify_sync_key
from app.services.sync_service import run_sync, sync_status

router = APIRouter(prefix='/sync', tags=['sync'])


def _response(result) -> dict:
    return {
        'success': True,
        'inserted': result.inserted,
        'updated': result.updated,
        'skipped': result.skipped,
        'total': result.total,
        'details': result.as_dict(),
    }


@router.post('/pos', dependencies=[Depends(verify_sync_key)])
def sync_purchase_orders(payload: PurchaseOrderBatch, db: Session = Depends(get_db)):
    return _response(run_sync(db, SyncKind.PURCHASE_ORDERS, payload.purchase_orders))


@router.post('/received', dependencies=[Depends(verify_sync_key)])
def sync_received_items(payload: ReceivedItemBatch, db: Session = Depends(get_db)):
    return _response(run_sync(db, SyncKind.RECEIVED_ITEMS, payload.received_items))


@router.post('/locations', dependencies=[Depends(verify_sync_key)])
def sync_locations(payload: LocationBatch, db: Session = Depends(get_db)):
    return _response(run_sync(db, SyncKind.LOCATIONS, payload.locations))


@router.post('/jobs', dependencies=[Depends(verify_sync_key)])
def sync_jobs(payload: JobBatch, db: Session = Depends(get_db)):
    return _response(run_sync(db, SyncKind.JOBS, payload.jobs))


@router.get('/status')
def get_sync_status(
    _principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    return sync_status(db)

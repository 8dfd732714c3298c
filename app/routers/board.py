from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.auth import Principal, get_current_principal
from app.config import settings
from app.db import get_db
from app.services.board_service import dashboard_summary, get_board
from app.services.purchase_order_service import list_open_purchase_orders, list_po_items

router = APIRouter(tags=['board'])


@router.get('/board')
def board(
    location: int | None = Query(default=None),
    _principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    location_id = location if location is not None else settings.default_location_id
    return {'sections': get_board(db, location_id=location_id)}


@router.get('/dashboard')
def dashboard(
    _principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    return dashboard_summary(db)


@router.get('/pos')
def open_purchase_orders(
    _principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    return {'purchase_orders': list_open_purchase_orders(db)}


@router.get('/pos/{po_id}/items')
def purchase_order_items(
    po_id: int,
    _principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    return {'items': list_po_items(db, po_id=po_id)}

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.auth import Principal, get_current_principal
from app.db import get_db
from app.schemas import DeliveryRequest
from app.services.lifecycle_service import confirm_delivery, list_recent_deliveries

router = APIRouter(prefix='/delivery', tags=['delivery'])


@router.post('', status_code=201)
def create_delivery(
    payload: DeliveryRequest,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    delivery = confirm_delivery(
        db,
        principal=principal,
        staging_record_id=payload.staging_record_id,
        signer_name=payload.signer_name,
        signature_data=payload.signature_data,
        notes=payload.notes,
    )
    db.commit()
    return {
        'success': True,
        'delivery_id': delivery.id,
        'signer_first_initial': delivery.signer_first_initial,
        'signer_last_name': delivery.signer_last_name,
        'message': 'Delivery confirmed successfully',
    }


@router.get('')
def recent_deliveries(
    _principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    return {'deliveries': list_recent_deliveries(db)}

from __future__ import annotations

from sqlalchemy import and_, case, func, select
from sqlalchemy.orm import Session

from app.models import (
    ACTIVE_STAGING_STATUSES,
    PurchaseOrder,
    PurchaseOrderStatus,
    SpotType,
    StagingRecord,
    StagingSpot,
    StagingStatus,
    User,
)

# Board section order, matching the physical floor layout.
SPOT_TYPE_ORDER: tuple[SpotType, ...] = (
    SpotType.WILL_CALL_CONSTRUCTION,
    SpotType.WILL_CALL_SERVICE,
    SpotType.STAGING,
    SpotType.DELIVERY,
    SpotType.LONG_TERM,
    SpotType.PENDING_RETURNS,
)

SECTION_TITLES = {
    SpotType.WILL_CALL_CONSTRUCTION: 'Will Call - Construction',
    SpotType.WILL_CALL_SERVICE: 'Will Call - Service',
    SpotType.STAGING: 'Staging in Warehouse',
    SpotType.DELIVERY: 'Customer Delivery',
    SpotType.LONG_TERM: 'Long Term Storage',
    SpotType.PENDING_RETURNS: 'Pending Returns',
}

ACTIVITY_LABELS = {
    StagingStatus.STAGED: 'Item Staged',
    StagingStatus.READY: 'Ready for Pickup',
    StagingStatus.PICKED_UP: 'Picked Up',
    StagingStatus.DELIVERED: 'Delivered',
    StagingStatus.RETURNED: 'Returned',
}


def _spot_order():
    position = case(
        {spot_type: index for index, spot_type in enumerate(SPOT_TYPE_ORDER)},
        value=StagingSpot.spot_type,
        else_=len(SPOT_TYPE_ORDER),
    )
    return (position, StagingSpot.grid_row, StagingSpot.grid_col, StagingSpot.code)


def list_spots(db: Session, *, location_id: int, available_only: bool = False) -> list[dict]:
    query = select(StagingSpot).where(StagingSpot.location_id == location_id, StagingSpot.active.is_(True))
    if available_only:
        occupied = (
            select(StagingRecord.spot_id)
            .where(StagingRecord.spot_id.is_not(None), StagingRecord.status.in_(ACTIVE_STAGING_STATUSES))
        )
        query = query.where(StagingSpot.id.not_in(occupied))
    spots = db.execute(query.order_by(*_spot_order())).scalars().all()
    return [
        {
            'id': spot.id,
            'code': spot.code,
            'name': spot.name,
            'spot_type': spot.spot_type.value,
            'grid_row': spot.grid_row,
            'grid_col': spot.grid_col,
        }
        for spot in spots
    ]


def get_board(db: Session, *, location_id: int) -> list[dict]:
    rows = db.execute(
        select(StagingSpot, StagingRecord, PurchaseOrder.ce_ponum)
        .outerjoin(
            StagingRecord,
            and_(
                StagingRecord.spot_id == StagingSpot.id,
                StagingRecord.status.in_(ACTIVE_STAGING_STATUSES),
            ),
        )
        .outerjoin(PurchaseOrder, PurchaseOrder.id == StagingRecord.po_id)
        .where(StagingSpot.location_id == location_id, StagingSpot.active.is_(True))
        .order_by(*_spot_order())
    ).all()

    spots_by_type: dict[SpotType, list[dict]] = {spot_type: [] for spot_type in SPOT_TYPE_ORDER}
    for spot, record, po_num in rows:
        occupant = None
        if record is not None:
            occupant = {
                'staging_id': record.id,
                'request_id': record.request_id,
                'po_num': po_num,
                'job_num': record.job_num,
                'job_name': record.job_name,
                'job_address': record.job_address,
                'pack_number': record.pack_number,
                'item_descriptions': record.item_descriptions,
                'status': record.status.value,
                'staged_at': record.staged_at,
            }
        spots_by_type.setdefault(spot.spot_type, []).append(
            {
                'id': spot.id,
                'code': spot.code,
                'name': spot.name,
                'spot_type': spot.spot_type.value,
                'grid_row': spot.grid_row,
                'grid_col': spot.grid_col,
                'occupant': occupant,
            }
        )

    return [
        {
            'type': spot_type.value,
            'title': SECTION_TITLES[spot_type],
            'class_name': spot_type.value.replace('_', '-'),
            'spots': spots,
        }
        for spot_type, spots in spots_by_type.items()
        if spots
    ]


def dashboard_summary(db: Session, *, recent_limit: int = 10) -> dict:
    def _count_status(*statuses: StagingStatus) -> int:
        return db.execute(
            select(func.count()).select_from(StagingRecord).where(StagingRecord.status.in_(statuses))
        ).scalar_one()

    open_pos = db.execute(
        select(func.count())
        .select_from(PurchaseOrder)
        .where(PurchaseOrder.status.in_((PurchaseOrderStatus.OPEN, PurchaseOrderStatus.PARTIAL)))
    ).scalar_one()

    recent = db.execute(
        select(
            StagingRecord.staged_at,
            StagingRecord.status,
            StagingRecord.request_id,
            func.coalesce(StagingSpot.code, StagingRecord.custom_location, '-').label('location'),
            func.coalesce(User.username, 'System').label('username'),
        )
        .outerjoin(StagingSpot, StagingSpot.id == StagingRecord.spot_id)
        .outerjoin(User, User.id == StagingRecord.staged_by)
        .order_by(StagingRecord.staged_at.desc(), StagingRecord.id.desc())
        .limit(recent_limit)
    ).all()

    return {
        'stats': {
            'total_staged': _count_status(StagingStatus.STAGED),
            'ready_for_pickup': _count_status(StagingStatus.READY),
            'pending_delivery': _count_status(*ACTIVE_STAGING_STATUSES),
            'open_pos': open_pos,
        },
        'recent_activity': [
            {
                'time': row.staged_at,
                'action': ACTIVITY_LABELS.get(row.status, row.status.value),
                'request_id': row.request_id,
                'location': row.location,
                'user': row.username,
            }
            for row in recent
        ],
    }

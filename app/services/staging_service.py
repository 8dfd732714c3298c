from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.auth import Principal, ensure_can_mutate
from app.models import (
    ACTIVE_STAGING_STATUSES,
    Job,
    PODistribution,
    POItem,
    PurchaseOrder,
    StagingRecord,
    StagingRecordLine,
    StagingSpot,
    StagingStatus,
    User,
)
from app.services.audit_service import log_status_change
from app.services.errors import InvalidInput, NotFound, SpotOccupied

logger = logging.getLogger(__name__)

# Scale of the quantity columns.
QUANTITY_PLACES = 4


@dataclass(frozen=True)
class StageLine:
    po_item_id: int
    quantity: Decimal


@dataclass(frozen=True)
class _JobIdentity:
    job_num: str | None
    job_name: str | None


def _clean_text(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


def _parse_quantity(raw, *, item_id: int) -> Decimal:
    try:
        qty = raw if isinstance(raw, Decimal) else Decimal(str(raw))
    except (InvalidOperation, ValueError) as exc:
        raise InvalidInput(f'Invalid quantity for item {item_id}') from exc
    if not qty.is_finite() or qty <= 0:
        raise InvalidInput(f'Quantity must be greater than zero for item {item_id}')
    if qty.normalize().as_tuple().exponent < -QUANTITY_PLACES:
        raise InvalidInput(f'Quantity for item {item_id} has more than {QUANTITY_PLACES} decimal places')
    return qty


def format_quantity(qty: Decimal) -> str:
    normalized = qty.normalize()
    if normalized == normalized.to_integral_value():
        return str(normalized.quantize(Decimal('1')))
    return format(normalized, 'f')


def staged_quantity(db: Session, po_item_id: int) -> Decimal:
    total = db.execute(
        select(func.coalesce(func.sum(StagingRecordLine.quantity), 0))
        .join(StagingRecord, StagingRecord.id == StagingRecordLine.staging_record_id)
        .where(
            StagingRecordLine.po_item_id == po_item_id,
            StagingRecord.status != StagingStatus.RETURNED,
        )
    ).scalar_one()
    return Decimal(str(total))


def available_quantity(db: Session, po_item_id: int) -> Decimal:
    item = db.get(POItem, po_item_id)
    if item is None:
        raise NotFound('PO item not found')
    return max(Decimal(str(item.received)) - staged_quantity(db, po_item_id), Decimal('0'))


def _job_identity(db: Session, po_item_id: int) -> _JobIdentity:
    dist = db.execute(
        select(PODistribution.job_num, PODistribution.job_name)
        .where(PODistribution.po_item_id == po_item_id)
        .order_by(PODistribution.id.asc())
        .limit(1)
    ).first()
    if not dist:
        return _JobIdentity(job_num=None, job_name=None)
    return _JobIdentity(job_num=dist.job_num, job_name=dist.job_name)


def _job_address(db: Session, job_num: str | None) -> str | None:
    if not job_num:
        return None
    job = db.execute(select(Job).where(Job.job_num == job_num)).scalar_one_or_none()
    if not job:
        return None
    parts = [job.address, ' '.join(p for p in (job.city, job.state, job.zip) if p)]
    return ', '.join(p for p in parts if p) or None


def describe_items(items_with_qty: list[tuple[POItem, Decimal]]) -> str:
    labels = []
    for item, qty in items_with_qty:
        head = ' - '.join(p for p in (item.item_num, item.description) if p) or f'Item {item.ce_itemid}'
        labels.append(f'{head} (x{format_quantity(qty)})')
    return ', '.join(labels)


def _find_active_occupant(db: Session, spot_id: int) -> int | None:
    return db.execute(
        select(StagingRecord.id)
        .where(StagingRecord.spot_id == spot_id, StagingRecord.status.in_(ACTIVE_STAGING_STATUSES))
        .limit(1)
    ).scalar_one_or_none()


def _lock_spot(db: Session, spot_id: int) -> StagingSpot:
    # Serializes concurrent stagers of the same spot on PostgreSQL; the partial
    # unique index still backs this up where row locks are not available.
    spot = db.execute(
        select(StagingSpot).where(StagingSpot.id == spot_id).with_for_update()
    ).scalar_one_or_none()
    if not spot or not spot.active:
        raise NotFound('Staging spot not found')
    return spot


def _validate_destination(spot_id: int | None, custom_location: str | None) -> str | None:
    custom_location = _clean_text(custom_location)
    if spot_id is not None and custom_location:
        raise InvalidInput('Choose either a staging spot or a custom location, not both')
    if spot_id is None and not custom_location:
        raise InvalidInput('A staging spot or a custom location is required')
    return custom_location


def stage_items(
    db: Session,
    *,
    principal: Principal | None,
    po_id: int | None,
    lines: list[StageLine],
    spot_id: int | None = None,
    custom_location: str | None = None,
    pack_number: str | None = None,
    notes: str | None = None,
    request_id: str | None = None,
) -> StagingRecord:
    principal = ensure_can_mutate(principal, action='stage items')
    custom_location = _validate_destination(spot_id, custom_location)

    if po_id is None:
        raise InvalidInput('A purchase order is required')
    if not lines:
        raise InvalidInput('Select at least one item to stage')

    requested: dict[int, Decimal] = {}
    for line in lines:
        if line.po_item_id in requested:
            raise InvalidInput(f'Item {line.po_item_id} is listed more than once')
        requested[line.po_item_id] = _parse_quantity(line.quantity, item_id=line.po_item_id)

    po = db.get(PurchaseOrder, po_id)
    if not po:
        raise NotFound('Purchase order not found')

    items_by_id = {
        item.id: item
        for item in db.execute(
            select(POItem).where(POItem.po_id == po.id, POItem.id.in_(list(requested)))
        ).scalars()
    }
    missing = [item_id for item_id in requested if item_id not in items_by_id]
    if missing:
        raise NotFound(f'Items not found on PO {po.ce_ponum}: {", ".join(str(i) for i in missing)}')

    for item_id, qty in requested.items():
        available = available_quantity(db, item_id)
        if qty > available:
            item = items_by_id[item_id]
            raise InvalidInput(
                f'Cannot stage {format_quantity(qty)} of {item.item_num or item.ce_itemid}; '
                f'only {format_quantity(available)} received and unstaged'
            )

    spot = None
    if spot_id is not None:
        spot = _lock_spot(db, spot_id)
        spot_code = spot.code
        if _find_active_occupant(db, spot.id) is not None:
            logger.warning('Spot %s already occupied; staging rejected', spot_code)
            db.rollback()
            raise SpotOccupied(spot_code)

    selected = [(items_by_id[item_id], qty) for item_id, qty in requested.items()]
    jobs = {item_id: _job_identity(db, item_id) for item_id in requested}
    # Record-level job identity follows the first selected line; each line keeps its own.
    first_job = jobs[selected[0][0].id]

    record = StagingRecord(
        po_id=po.id,
        request_id=_clean_text(request_id) or po.request_id,
        job_num=first_job.job_num,
        job_name=first_job.job_name,
        job_address=_job_address(db, first_job.job_num),
        spot_id=spot.id if spot else None,
        custom_location=custom_location,
        pack_number=_clean_text(pack_number),
        item_descriptions=describe_items(selected),
        notes=_clean_text(notes),
        status=StagingStatus.STAGED,
        staged_by=principal.id,
        staged_at=datetime.now(tz=timezone.utc),
    )
    db.add(record)
    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        if spot is None:
            raise
        logger.warning('Spot %s claimed concurrently; staging rejected', spot_code)
        raise SpotOccupied(spot_code) from exc

    for item, qty in selected:
        job = jobs[item.id]
        db.add(
            StagingRecordLine(
                staging_record_id=record.id,
                po_item_id=item.id,
                quantity=qty,
                job_num=job.job_num,
                job_name=job.job_name,
            )
        )
    log_status_change(db, record=record, from_status=None, actor_user_id=principal.id)
    db.flush()

    logger.info(
        'Staged record %s for PO %s at %s by %s',
        record.id,
        po.ce_ponum,
        spot.code if spot else custom_location,
        principal.username,
    )
    return record


def list_active_staging(db: Session) -> list[dict]:
    rows = db.execute(
        select(
            StagingRecord,
            StagingSpot.code.label('spot_code'),
            StagingSpot.name.label('spot_name'),
            User.full_name.label('staged_by_name'),
            PurchaseOrder.ce_ponum.label('po_num'),
        )
        .outerjoin(StagingSpot, StagingSpot.id == StagingRecord.spot_id)
        .outerjoin(User, User.id == StagingRecord.staged_by)
        .outerjoin(PurchaseOrder, PurchaseOrder.id == StagingRecord.po_id)
        .where(StagingRecord.status.in_(ACTIVE_STAGING_STATUSES))
        .order_by(StagingRecord.staged_at.desc(), StagingRecord.id.desc())
    ).all()
    return [
        {
            **serialize_staging_record(record),
            'spot_code': spot_code,
            'spot_name': spot_name,
            'staged_by_name': staged_by_name,
            'po_num': po_num,
        }
        for record, spot_code, spot_name, staged_by_name, po_num in rows
    ]


def serialize_staging_record(record: StagingRecord) -> dict:
    return {
        'id': record.id,
        'po_id': record.po_id,
        'request_id': record.request_id,
        'job_num': record.job_num,
        'job_name': record.job_name,
        'job_address': record.job_address,
        'spot_id': record.spot_id,
        'custom_location': record.custom_location,
        'pack_number': record.pack_number,
        'item_descriptions': record.item_descriptions,
        'notes': record.notes,
        'status': record.status.value,
        'staged_by': record.staged_by,
        'staged_at': record.staged_at,
    }

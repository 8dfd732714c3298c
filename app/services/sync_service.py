"""Idempotent reconciliation of ERP sync batches into local storage.

Every external-keyed row is looked up by its ERP key and either inserted or
overwritten in place. Each record (a whole PO tree for purchase-order batches) is
committed on its own, so a batch that aborts part way leaves the earlier records
in place; re-sending the full batch is always safe.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import asdict, dataclass
from datetime import datetime, timezone

from pydantic import BaseModel
from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import settings
from app.models import (
    Job,
    Location,
    PODistribution,
    POItem,
    PurchaseOrder,
    ReceivedItem,
    SyncKind,
    SyncLog,
    SyncOutcome,
)
from app.schemas import (
    ErpDistribution,
    ErpJob,
    ErpLocation,
    ErpPurchaseOrder,
    ErpPurchaseOrderItem,
    ErpReceivedItem,
)
from app.services.errors import InvalidInput, UpstreamSyncFailure

logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 1000


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


@dataclass
class SyncResult:
    kind: SyncKind
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    total: int = 0
    items_inserted: int = 0
    items_updated: int = 0
    distributions_inserted: int = 0
    distributions_updated: int = 0

    @property
    def affected(self) -> int:
        return self.inserted + self.updated

    def absorb(self, other: SyncResult) -> None:
        self.inserted += other.inserted
        self.updated += other.updated
        self.skipped += other.skipped
        self.items_inserted += other.items_inserted
        self.items_updated += other.items_updated
        self.distributions_inserted += other.distributions_inserted
        self.distributions_updated += other.distributions_updated

    def as_dict(self) -> dict:
        data = asdict(self)
        data['kind'] = self.kind.value
        return data


# -- purchase orders ---------------------------------------------------------


def _apply_po_fields(po: PurchaseOrder, record: ErpPurchaseOrder, now: datetime) -> None:
    po.vendor_num = record.vennum
    po.vendor_name = record.vendor_name
    po.po_date = record.podate
    po.blurb = record.blurb
    po.request_id = record.user_5
    po.ce_attachid = record.attachid
    po.status = record.status
    po.synced_at = now


def _apply_item_fields(item: POItem, record: ErpPurchaseOrderItem, now: datetime) -> None:
    item.item_order = record.order
    item.item_num = record.itemnum
    item.description = record.des
    item.vendor_item_num = record.venitemnum
    item.outstanding = record.outstanding
    item.received = record.received
    item.unposted = record.unposted
    item.synced_at = now


def _apply_distribution_fields(row: PODistribution, record: ErpDistribution) -> None:
    row.ce_itemid = record.itemid
    row.job_num = record.jobnum
    row.job_name = record.job_name
    row.phase_num = record.phasenum
    row.phase_name = record.phase_name
    row.cat_num = record.catnum
    row.cat_name = record.cat_name
    row.outstanding = record.outstanding
    row.received = record.received
    row.unposted = record.unposted


def _insert_item(db: Session, po_id: int, record: ErpPurchaseOrderItem, now: datetime) -> POItem:
    item = POItem(po_id=po_id, ce_itemid=record.itemid)
    _apply_item_fields(item, record, now)
    db.add(item)
    db.flush()
    return item


def _insert_distributions(
    db: Session, item: POItem, records: list[ErpDistribution], counts: SyncResult
) -> None:
    for record in records:
        row = PODistribution(po_item_id=item.id)
        _apply_distribution_fields(row, record)
        db.add(row)
        counts.distributions_inserted += 1
    db.flush()


def _merge_distributions(
    db: Session, item: POItem, records: list[ErpDistribution], counts: SyncResult
) -> None:
    # The feed has no distribution key of its own, so rows are matched on the
    # ERP item id, each stored row claimed at most once, oldest first.
    existing = db.execute(
        select(PODistribution).where(PODistribution.po_item_id == item.id).order_by(PODistribution.id.asc())
    ).scalars().all()
    unclaimed: dict[int | None, list[PODistribution]] = {}
    for row in existing:
        unclaimed.setdefault(row.ce_itemid, []).append(row)

    for record in records:
        candidates = unclaimed.get(record.itemid)
        if candidates:
            _apply_distribution_fields(candidates.pop(0), record)
            counts.distributions_updated += 1
            continue
        row = PODistribution(po_item_id=item.id)
        _apply_distribution_fields(row, record)
        db.add(row)
        counts.distributions_inserted += 1
    db.flush()


def _link_waiting_received_items(db: Session, po: PurchaseOrder) -> int:
    result = db.execute(
        update(ReceivedItem)
        .where(ReceivedItem.ce_ponum == po.ce_ponum, ReceivedItem.po_id.is_(None))
        .values(po_id=po.id)
    )
    return result.rowcount or 0


def _upsert_purchase_order(db: Session, record: ErpPurchaseOrder, counts: SyncResult, now: datetime) -> None:
    po = db.execute(select(PurchaseOrder).where(PurchaseOrder.ce_ponum == record.ponum)).scalar_one_or_none()

    if po is None:
        po = PurchaseOrder(ce_ponum=record.ponum)
        _apply_po_fields(po, record, now)
        db.add(po)
        db.flush()
        counts.inserted += 1
        for item_record in record.items:
            item = _insert_item(db, po.id, item_record, now)
            counts.items_inserted += 1
            _insert_distributions(db, item, item_record.distributions, counts)
        linked = _link_waiting_received_items(db, po)
        if linked:
            logger.info('Linked %d received items to new PO %s', linked, po.ce_ponum)
        return

    _apply_po_fields(po, record, now)
    counts.updated += 1
    for item_record in record.items:
        item = db.execute(
            select(POItem).where(POItem.po_id == po.id, POItem.ce_itemid == item_record.itemid)
        ).scalar_one_or_none()
        if item is None:
            item = _insert_item(db, po.id, item_record, now)
            counts.items_inserted += 1
            _insert_distributions(db, item, item_record.distributions, counts)
            continue
        _apply_item_fields(item, item_record, now)
        counts.items_updated += 1
        _merge_distributions(db, item, item_record.distributions, counts)
    db.flush()


# -- received items, locations, jobs ------------------------------------------


def _upsert_received_item(db: Session, record: ErpReceivedItem, counts: SyncResult, now: datetime) -> None:
    po_id = None
    if record.ponum is not None:
        # Receiving events can arrive ahead of their PO; keep them unlinked.
        po_id = db.execute(
            select(PurchaseOrder.id).where(PurchaseOrder.ce_ponum == record.ponum)
        ).scalar_one_or_none()

    row = db.execute(
        select(ReceivedItem).where(ReceivedItem.ce_serialnum == record.serialnum)
    ).scalar_one_or_none()
    if row is None:
        row = ReceivedItem(ce_serialnum=record.serialnum)
        db.add(row)
        counts.inserted += 1
    else:
        counts.updated += 1

    row.po_id = po_id
    row.ce_ponum = record.ponum
    row.ce_itemnum = record.itemnum
    row.job_num = record.jobnum
    row.received_date = record.received_date
    row.quantity = record.quantity
    row.synced_at = now
    db.flush()


def _upsert_location(db: Session, record: ErpLocation, counts: SyncResult, now: datetime) -> None:
    if record.location_type != settings.warehouse_location_type:
        counts.skipped += 1
        return

    row = db.execute(
        select(Location).where(Location.ce_locationnum == record.locationnum)
    ).scalar_one_or_none()
    if row is None:
        row = Location(ce_locationnum=record.locationnum, active=True)
        db.add(row)
        counts.inserted += 1
    else:
        counts.updated += 1

    row.name = record.name
    row.location_type = record.location_type
    row.synced_at = now
    db.flush()


def _upsert_job(db: Session, record: ErpJob, counts: SyncResult, now: datetime) -> None:
    row = db.execute(select(Job).where(Job.job_num == record.jobnum)).scalar_one_or_none()
    if row is None:
        row = Job(job_num=record.jobnum)
        db.add(row)
        counts.inserted += 1
    else:
        counts.updated += 1

    row.name = record.name
    row.address = record.address
    row.city = record.city
    row.state = record.state
    row.zip = record.zip
    row.status = record.status
    row.ce_attachid = record.attachid
    row.synced_at = now
    db.flush()


_HANDLERS: dict[SyncKind, tuple[type[BaseModel], Callable[..., None]]] = {
    SyncKind.PURCHASE_ORDERS: (ErpPurchaseOrder, _upsert_purchase_order),
    SyncKind.RECEIVED_ITEMS: (ErpReceivedItem, _upsert_received_item),
    SyncKind.LOCATIONS: (ErpLocation, _upsert_location),
    SyncKind.JOBS: (ErpJob, _upsert_job),
}


# -- batch driver -------------------------------------------------------------


def _write_sync_log(
    db: Session,
    *,
    kind: SyncKind,
    outcome: SyncOutcome,
    records_synced: int,
    started_at: datetime,
    error_message: str | None = None,
) -> SyncLog:
    entry = SyncLog(
        sync_type=kind,
        status=outcome,
        records_synced=records_synced,
        error_message=error_message,
        started_at=started_at,
        completed_at=_now(),
    )
    db.add(entry)
    db.flush()
    return entry


def _describe_failure(exc: Exception) -> str:
    # Driver errors carry the SQL and bound parameters; keep only the database's own message.
    if isinstance(exc, SQLAlchemyError):
        orig = getattr(exc, 'orig', None)
        text = str(orig) if orig is not None else str(exc).split('(Background on this error', 1)[0]
        text = text.split('[SQL:', 1)[0]
    else:
        text = str(exc)
    message = ' '.join(text.split())
    return message[:MAX_ERROR_LENGTH] or exc.__class__.__name__


def run_sync(db: Session, kind: SyncKind | str, records: list) -> SyncResult:
    try:
        kind = SyncKind(kind)
    except ValueError as exc:
        raise InvalidInput(f'Unknown sync kind: {kind}') from exc
    if not isinstance(records, list):
        raise InvalidInput(f'{kind.value} batch must be a list of records')

    model, upsert = _HANDLERS[kind]
    started_at = _now()
    result = SyncResult(kind=kind, total=len(records))

    for index, raw in enumerate(records):
        delta = SyncResult(kind=kind)
        try:
            record = model.model_validate(raw)
            upsert(db, record, delta, _now())
            db.commit()
        except (SQLAlchemyError, ValueError, TypeError) as exc:
            db.rollback()
            message = _describe_failure(exc)
            logger.error(
                '%s sync aborted at record %d of %d: %s',
                kind.value,
                index + 1,
                len(records),
                message,
                exc_info=True,
            )
            _write_sync_log(
                db,
                kind=kind,
                outcome=SyncOutcome.FAILED,
                records_synced=result.affected,
                started_at=started_at,
                error_message=f'record {index + 1}: {message}',
            )
            db.commit()
            raise UpstreamSyncFailure(
                f'{kind.value} sync failed at record {index + 1}: {message}',
                extra={'failed_index': index, 'counts': result.as_dict()},
            ) from exc
        result.absorb(delta)

    _write_sync_log(
        db,
        kind=kind,
        outcome=SyncOutcome.SUCCESS,
        records_synced=result.affected,
        started_at=started_at,
    )
    db.commit()
    logger.info(
        '%s sync complete: inserted=%d updated=%d skipped=%d total=%d',
        kind.value,
        result.inserted,
        result.updated,
        result.skipped,
        result.total,
    )
    return result


def reconcile_purchase_orders(db: Session, records: list) -> SyncResult:
    return run_sync(db, SyncKind.PURCHASE_ORDERS, records)


def reconcile_received_items(db: Session, records: list) -> SyncResult:
    return run_sync(db, SyncKind.RECEIVED_ITEMS, records)


def reconcile_locations(db: Session, records: list) -> SyncResult:
    return run_sync(db, SyncKind.LOCATIONS, records)


def reconcile_jobs(db: Session, records: list) -> SyncResult:
    return run_sync(db, SyncKind.JOBS, records)


def sync_status(db: Session) -> dict:
    status_by_kind: dict[str, dict] = {}
    for kind in SyncKind:
        last = db.execute(
            select(SyncLog)
            .where(SyncLog.sync_type == kind)
            .order_by(SyncLog.completed_at.desc(), SyncLog.id.desc())
            .limit(1)
        ).scalar_one_or_none()
        if last is None:
            status_by_kind[kind.value] = {
                'sync_type': kind.value,
                'status': 'never',
                'records_synced': 0,
                'error_message': None,
                'completed_at': None,
            }
            continue
        status_by_kind[kind.value] = {
            'sync_type': kind.value,
            'status': last.status.value,
            'records_synced': last.records_synced,
            'error_message': last.error_message,
            'completed_at': last.completed_at,
        }

    def _count(model) -> int:
        return db.execute(select(func.count()).select_from(model)).scalar_one()

    counts = {
        'purchase_orders': _count(PurchaseOrder),
        'po_items': _count(POItem),
        'received_items': _count(ReceivedItem),
        'locations': _count(Location),
        'jobs': _count(Job),
    }
    return {'sync_status': status_by_kind, 'counts': counts}

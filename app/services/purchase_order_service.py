from __future__ import annotations

from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.models import PODistribution, POItem, PurchaseOrder, PurchaseOrderStatus
from app.services.errors import NotFound
from app.services.staging_service import staged_quantity


def list_open_purchase_orders(db: Session) -> list[dict]:
    item_count = (
        select(func.count(POItem.id)).where(POItem.po_id == PurchaseOrder.id).correlate(PurchaseOrder).scalar_subquery()
    )
    rows = db.execute(
        select(PurchaseOrder, item_count.label('items_count'))
        .where(PurchaseOrder.status.in_((PurchaseOrderStatus.OPEN, PurchaseOrderStatus.PARTIAL)))
        .order_by(PurchaseOrder.po_date.desc(), PurchaseOrder.ce_ponum.desc())
    ).all()
    return [
        {
            'id': po.id,
            'ce_ponum': po.ce_ponum,
            'vendor_name': po.vendor_name,
            'po_date': po.po_date,
            'request_id': po.request_id,
            'status': po.status.value,
            'items_count': items_count,
        }
        for po, items_count in rows
    ]


def list_po_items(db: Session, *, po_id: int) -> list[dict]:
    if db.get(PurchaseOrder, po_id) is None:
        raise NotFound('Purchase order not found')

    items = db.execute(
        select(POItem).where(POItem.po_id == po_id).order_by(POItem.item_order.asc(), POItem.id.asc())
    ).scalars().all()

    first_dist_ids = (
        select(func.min(PODistribution.id))
        .where(PODistribution.po_item_id.in_([item.id for item in items]))
        .group_by(PODistribution.po_item_id)
    )
    jobs_by_item = {
        dist.po_item_id: dist
        for dist in db.execute(select(PODistribution).where(PODistribution.id.in_(first_dist_ids))).scalars()
    }

    result = []
    for item in items:
        dist = jobs_by_item.get(item.id)
        received = Decimal(str(item.received))
        staged = staged_quantity(db, item.id)
        result.append(
            {
                'id': item.id,
                'ce_itemid': item.ce_itemid,
                'item_num': item.item_num,
                'description': item.description,
                'outstanding': item.outstanding,
                'received': item.received,
                'staged': staged,
                'available': max(received - staged, Decimal('0')),
                'job_num': dist.job_num if dist else None,
                'job_name': dist.job_name if dist else None,
            }
        )
    return result

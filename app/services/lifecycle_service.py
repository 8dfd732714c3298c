from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.auth import Principal, ensure_can_mutate
from app.models import Delivery, StagingRecord, StagingStatus, User
from app.services.audit_service import log_status_change
from app.services.errors import Conflict, InvalidInput, InvalidTransition, NotFound

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[StagingStatus, frozenset[StagingStatus]] = {
    StagingStatus.STAGED: frozenset(
        {StagingStatus.READY, StagingStatus.PICKED_UP, StagingStatus.DELIVERED, StagingStatus.RETURNED}
    ),
    StagingStatus.READY: frozenset({StagingStatus.PICKED_UP, StagingStatus.DELIVERED, StagingStatus.RETURNED}),
    StagingStatus.PICKED_UP: frozenset(),
    StagingStatus.DELIVERED: frozenset(),
    StagingStatus.RETURNED: frozenset(),
}

# picked_up is only reachable through confirm_delivery.
DIRECT_STATUSES = frozenset({StagingStatus.READY, StagingStatus.DELIVERED, StagingStatus.RETURNED})


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def can_transition(current: StagingStatus, requested: StagingStatus) -> bool:
    return requested in ALLOWED_TRANSITIONS.get(current, frozenset())


def split_signer_name(full_name: str) -> tuple[str, str]:
    """Return ``(first_initial, LAST_NAME)`` for a signer's printed name.

    The last whitespace-separated word is taken as the last name, so a single
    word name yields the same word for both parts.
    """
    parts = full_name.split()
    if not parts:
        return '', ''
    return parts[0][0].upper(), parts[-1].upper()


def _load_for_update(db: Session, staging_record_id: int) -> StagingRecord:
    record = db.execute(
        select(StagingRecord).where(StagingRecord.id == staging_record_id).with_for_update()
    ).scalar_one_or_none()
    if not record:
        raise NotFound('Staging record not found')
    return record


def _apply_transition(
    db: Session, record: StagingRecord, requested: StagingStatus, *, actor: Principal
) -> StagingStatus:
    current = record.status
    if not can_transition(current, requested):
        raise InvalidTransition(current.value, requested.value)
    record.status = requested
    record.updated_at = _now()
    log_status_change(db, record=record, from_status=current, actor_user_id=actor.id)
    return current


def update_status(
    db: Session,
    *,
    principal: Principal | None,
    staging_record_id: int,
    status: StagingStatus | str,
) -> StagingRecord:
    principal = ensure_can_mutate(principal, action='update staging records')
    try:
        requested = StagingStatus(status)
    except ValueError as exc:
        raise InvalidInput(f'Unknown staging status: {status}') from exc
    if requested == StagingStatus.PICKED_UP:
        raise InvalidInput('Pickups are recorded by confirming a delivery')

    record = _load_for_update(db, staging_record_id)
    if requested not in DIRECT_STATUSES:
        raise InvalidTransition(record.status.value, requested.value)
    previous = _apply_transition(db, record, requested, actor=principal)
    db.flush()

    logger.info(
        'Staging record %s moved %s -> %s by %s',
        record.id,
        previous.value,
        requested.value,
        principal.username,
    )
    return record


def confirm_delivery(
    db: Session,
    *,
    principal: Principal | None,
    staging_record_id: int | None,
    signer_name: str | None,
    signature_data: str | None,
    notes: str | None = None,
) -> Delivery:
    principal = ensure_can_mutate(principal, action='process deliveries')

    signer_name = (signer_name or '').strip()
    if not staging_record_id or not signer_name or not signature_data:
        raise InvalidInput('Missing required fields')

    record = _load_for_update(db, staging_record_id)
    _apply_transition(db, record, StagingStatus.PICKED_UP, actor=principal)

    first_initial, last_name = split_signer_name(signer_name)
    now = _now()
    delivery = Delivery(
        staging_record_id=record.id,
        delivery_date=now.date(),
        signer_name=signer_name,
        signer_first_initial=first_initial,
        signer_last_name=last_name,
        signature_data=signature_data,
        signed_at=now,
        delivered_by=principal.id,
        notes=(notes or '').strip() or None,
    )
    db.add(delivery)
    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        raise Conflict('A delivery is already recorded for this staging record') from exc

    logger.info(
        'Delivery %s confirmed for staging record %s (signed by %s. %s)',
        delivery.id,
        record.id,
        first_initial,
        last_name,
    )
    return delivery


def list_recent_deliveries(db: Session, *, limit: int = 50) -> list[dict]:
    rows = db.execute(
        select(
            Delivery,
            StagingRecord.request_id,
            StagingRecord.job_num,
            StagingRecord.job_name,
            StagingRecord.item_descriptions,
            User.full_name.label('delivered_by_name'),
        )
        .join(StagingRecord, StagingRecord.id == Delivery.staging_record_id)
        .outerjoin(User, User.id == Delivery.delivered_by)
        .order_by(Delivery.signed_at.desc(), Delivery.id.desc())
        .limit(limit)
    ).all()
    return [
        {
            'id': delivery.id,
            'staging_record_id': delivery.staging_record_id,
            'delivery_date': delivery.delivery_date,
            'signer_name': delivery.signer_name,
            'signer_first_initial': delivery.signer_first_initial,
            'signer_last_name': delivery.signer_last_name,
            'signed_at': delivery.signed_at,
            'delivered_by': delivery.delivered_by,
            'delivered_by_name': delivered_by_name,
            'notes': delivery.notes,
            'request_id': request_id,
            'job_num': job_num,
            'job_name': job_name,
            'item_descriptions': item_descriptions,
        }
        for delivery, request_id, job_num, job_name, item_descriptions, delivered_by_name in rows
    ]

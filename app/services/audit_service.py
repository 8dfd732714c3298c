from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models import StagingRecord, StagingStatus, StagingStatusEvent


def log_status_change(
    db: Session,
    *,
    record: StagingRecord,
    from_status: StagingStatus | None,
    actor_user_id: int | None,
) -> None:
    db.add(
        StagingStatusEvent(
            staging_record_id=record.id,
            from_status=from_status,
            to_status=record.status,
            actor_user_id=actor_user_id,
            created_at=datetime.now(tz=timezone.utc),
        )
    )


def status_history(db: Session, *, staging_record_id: int) -> list[StagingStatus]:
    return list(
        db.execute(
            select(StagingStatusEvent.to_status)
            .where(StagingStatusEvent.staging_record_id == staging_record_id)
            .order_by(StagingStatusEvent.id.asc())
        ).scalars()
    )

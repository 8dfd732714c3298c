from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path

from app.db import SessionLocal, engine, init_db
from app.models import SyncKind
from app.services.errors import UpstreamSyncFailure
from app.services.sync_service import run_sync

# Top-level keys the sync agent uses when it posts a batch over HTTP.
BATCH_KEYS = {
    SyncKind.PURCHASE_ORDERS: 'purchaseOrders',
    SyncKind.RECEIVED_ITEMS: 'receivedItems',
    SyncKind.LOCATIONS: 'locations',
    SyncKind.JOBS: 'jobs',
}


def load_records(path: Path, kind: SyncKind) -> list:
    payload = json.loads(path.read_text(encoding='utf-8'))
    if isinstance(payload, dict):
        payload = payload.get(BATCH_KEYS[kind], payload.get(kind.value))
    if not isinstance(payload, list):
        raise ValueError(f'{path} does not contain a {kind.value} record list')
    return payload


def main() -> None:
    parser = argparse.ArgumentParser(description='Reconcile one ERP export file into the staging database.')
    parser.add_argument('kind', choices=[kind.value for kind in SyncKind])
    parser.add_argument('path', type=Path, help='JSON file holding a record list or an HTTP-style batch body.')
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format='%(levelname)s %(name)s: %(message)s')
    kind = SyncKind(args.kind)
    records = load_records(args.path, kind)

    init_db(engine)
    with SessionLocal() as db:
        try:
            result = run_sync(db, kind, records)
        except UpstreamSyncFailure as exc:
            raise SystemExit(f'{kind.value} sync failed: {exc.message}') from exc

    print(
        f'{kind.value} sync complete: inserted={result.inserted}, updated={result.updated}, '
        f'skipped={result.skipped}, total={result.total}'
    )


if __name__ == '__main__':
    main()

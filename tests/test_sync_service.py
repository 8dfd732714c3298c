from __future__ import annotations

import copy
import unittest
from datetime import date
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.pool import StaticPool

from app.db import build_engine, build_session_factory, init_db
from app.models import (
    Job,
    Location,
    PODistribution,
    POItem,
    PurchaseOrder,
    PurchaseOrderStatus,
    ReceivedItem,
    SyncKind,
    SyncLog,
    SyncOutcome,
)
from app.services.errors import InvalidInput, UpstreamSyncFailure
from app.services.sync_service import (
    reconcile_jobs,
    reconcile_locations,
    reconcile_purchase_orders,
    reconcile_received_items,
    run_sync,
    sync_status,
)

PO_1001 = {
    'ponum': 1001,
    'vennum': 'V-44',
    'vendor_name': 'Ferguson Supply',
    'podate': '2024-03-01T00:00:00',
    'blurb': 'Rough-in material',
    'user_5': 'REQ-7',
    'status': 'Open',
    'items': [
        {
            'itemid': 1,
            'order': 1,
            'itemnum': 'PIPE-2',
            'des': '2in copper pipe',
            'outstanding': 10,
            'received': 0,
            'unposted': 0,
            'distributions': [
                {'itemid': 1, 'jobnum': 'J100', 'job_name': 'Main St Clinic', 'outstanding': 10},
            ],
        },
        {
            'itemid': 2,
            'order': 2,
            'itemnum': 'VALVE-1',
            'des': 'Ball valve',
            'outstanding': 4,
            'received': None,
            'unposted': '',
            'distributions': [
                {'itemid': 2, 'jobnum': 'J200', 'job_name': 'Oak Ave Retail', 'outstanding': 4},
            ],
        },
    ],
}


def _session_factory():
    engine = build_engine('sqlite://', poolclass=StaticPool)
    init_db(engine)
    return build_session_factory(engine)


def _count(db, model) -> int:
    return db.execute(select(func.count()).select_from(model)).scalar_one()


class PurchaseOrderReconcileTests(unittest.TestCase):
    def setUp(self) -> None:
        self.SessionLocal = _session_factory()

    def test_first_sync_inserts_the_whole_po_tree(self) -> None:
        with self.SessionLocal() as db:
            result = reconcile_purchase_orders(db, [copy.deepcopy(PO_1001)])

        self.assertEqual(result.inserted, 1)
        self.assertEqual(result.updated, 0)
        self.assertEqual(result.total, 1)
        self.assertEqual(result.items_inserted, 2)
        self.assertEqual(result.distributions_inserted, 2)

        with self.SessionLocal() as db:
            po = db.execute(select(PurchaseOrder).where(PurchaseOrder.ce_ponum == 1001)).scalar_one()
            self.assertEqual(po.vendor_name, 'Ferguson Supply')
            self.assertEqual(po.request_id, 'REQ-7')
            self.assertEqual(po.po_date, date(2024, 3, 1))
            self.assertEqual(po.status, PurchaseOrderStatus.OPEN)
            self.assertEqual([item.item_num for item in po.items], ['PIPE-2', 'VALVE-1'])
            self.assertEqual(po.items[1].received, Decimal('0'))
            self.assertEqual(po.items[0].distributions[0].job_num, 'J100')

    def test_resending_a_batch_updates_in_place(self) -> None:
        with self.SessionLocal() as db:
            reconcile_purchase_orders(db, [copy.deepcopy(PO_1001)])
        with self.SessionLocal() as db:
            result = reconcile_purchase_orders(db, [copy.deepcopy(PO_1001)])

        self.assertEqual(result.inserted, 0)
        self.assertEqual(result.updated, 1)
        self.assertEqual(result.items_updated, 2)
        self.assertEqual(result.distributions_updated, 2)
        self.assertEqual(result.distributions_inserted, 0)

        with self.SessionLocal() as db:
            self.assertEqual(_count(db, PurchaseOrder), 1)
            self.assertEqual(_count(db, POItem), 2)
            self.assertEqual(_count(db, PODistribution), 2)
            logs = db.execute(select(SyncLog).order_by(SyncLog.id)).scalars().all()
            self.assertEqual([log.status for log in logs], [SyncOutcome.SUCCESS, SyncOutcome.SUCCESS])

    def test_changed_fields_overwrite_stored_values(self) -> None:
        with self.SessionLocal() as db:
            reconcile_purchase_orders(db, [copy.deepcopy(PO_1001)])

        changed = copy.deepcopy(PO_1001)
        changed['status'] = 'PARTIAL'
        changed['items'][0]['received'] = '6.5'
        changed['items'][0]['outstanding'] = '3.5'
        with self.SessionLocal() as db:
            reconcile_purchase_orders(db, [changed])

        with self.SessionLocal() as db:
            po = db.execute(select(PurchaseOrder).where(PurchaseOrder.ce_ponum == 1001)).scalar_one()
            self.assertEqual(po.status, PurchaseOrderStatus.PARTIAL)
            self.assertEqual(po.items[0].received, Decimal('6.5'))
            self.assertEqual(po.items[0].outstanding, Decimal('3.5'))

    def test_new_item_on_known_po_is_inserted(self) -> None:
        with self.SessionLocal() as db:
            reconcile_purchase_orders(db, [copy.deepcopy(PO_1001)])

        grown = copy.deepcopy(PO_1001)
        grown['items'].append({'itemid': 3, 'order': 3, 'itemnum': 'TEE-2', 'des': '2in tee', 'outstanding': 8})
        with self.SessionLocal() as db:
            result = reconcile_purchase_orders(db, [grown])

        self.assertEqual(result.items_inserted, 1)
        self.assertEqual(result.items_updated, 2)
        with self.SessionLocal() as db:
            self.assertEqual(_count(db, POItem), 3)

    def test_distribution_rows_are_claimed_once_per_batch(self) -> None:
        split = copy.deepcopy(PO_1001)
        split['items'][0]['distributions'] = [
            {'itemid': 1, 'jobnum': 'J100', 'job_name': 'Main St Clinic', 'outstanding': 6},
            {'itemid': 1, 'jobnum': 'J300', 'job_name': 'Elm St School', 'outstanding': 4},
        ]
        with self.SessionLocal() as db:
            reconcile_purchase_orders(db, [split])

        three_way = copy.deepcopy(split)
        three_way['items'][0]['distributions'].append(
            {'itemid': 1, 'jobnum': 'J400', 'job_name': 'Pine Warehouse', 'outstanding': 1}
        )
        with self.SessionLocal() as db:
            first = reconcile_purchase_orders(db, [three_way])
        with self.SessionLocal() as db:
            second = reconcile_purchase_orders(db, [copy.deepcopy(three_way)])

        # item 1 reuses its two rows and adds one; item 2 reuses its single row
        self.assertEqual(first.distributions_updated, 3)
        self.assertEqual(first.distributions_inserted, 1)
        self.assertEqual(second.distributions_updated, 4)
        self.assertEqual(second.distributions_inserted, 0)

        with self.SessionLocal() as db:
            item = db.execute(select(POItem).where(POItem.ce_itemid == 1)).scalar_one()
            self.assertEqual([dist.job_num for dist in item.distributions], ['J100', 'J300', 'J400'])

    def test_same_erp_item_id_on_two_pos_stays_separate(self) -> None:
        batch = [
            {'ponum': 1, 'items': [{'itemid': 7, 'itemnum': 'A'}]},
            {'ponum': 2, 'items': [{'itemid': 7, 'itemnum': 'B'}]},
        ]
        with self.SessionLocal() as db:
            reconcile_purchase_orders(db, copy.deepcopy(batch))
        with self.SessionLocal() as db:
            again = reconcile_purchase_orders(db, copy.deepcopy(batch))

        self.assertEqual((again.inserted, again.updated, again.items_inserted), (0, 2, 0))
        with self.SessionLocal() as db:
            rows = db.execute(
                select(PurchaseOrder.ce_ponum, POItem.item_num)
                .join(POItem, POItem.po_id == PurchaseOrder.id)
                .where(POItem.ce_itemid == 7)
                .order_by(PurchaseOrder.ce_ponum)
            ).all()
        self.assertEqual([tuple(row) for row in rows], [(1, 'A'), (2, 'B')])

    def test_database_failure_is_logged_without_sql_text(self) -> None:
        # the ERP repeats an item id within one PO, which breaks (po_id, ce_itemid) uniqueness
        doubled = {'ponum': 3003, 'items': [{'itemid': 5, 'itemnum': 'A'}, {'itemid': 5, 'itemnum': 'B'}]}
        with self.SessionLocal() as db:
            with self.assertLogs('app.services.sync_service', level='ERROR'):
                with self.assertRaises(UpstreamSyncFailure) as ctx:
                    reconcile_purchase_orders(db, [doubled])

        self.assertNotIn('[SQL:', ctx.exception.message)
        self.assertNotIn('sqlalche.me', ctx.exception.message)
        with self.SessionLocal() as db:
            log = db.execute(select(SyncLog)).scalar_one()
            self.assertIn('UNIQUE constraint failed', log.error_message)
            self.assertNotIn('[SQL:', log.error_message)
            self.assertNotIn('[parameters:', log.error_message)
            self.assertEqual(_count(db, PurchaseOrder), 0)

    def test_invalid_record_aborts_batch_and_logs_failure(self) -> None:
        broken = {'vendor_name': 'No PO number'}
        with self.SessionLocal() as db:
            with self.assertLogs('app.services.sync_service', level='ERROR'):
                with self.assertRaises(UpstreamSyncFailure) as ctx:
                    reconcile_purchase_orders(db, [copy.deepcopy(PO_1001), broken])

        self.assertEqual(ctx.exception.status_code, 502)
        self.assertEqual(ctx.exception.extra['failed_index'], 1)
        self.assertEqual(ctx.exception.extra['counts']['inserted'], 1)

        with self.SessionLocal() as db:
            # the record committed ahead of the failure stays
            self.assertEqual(_count(db, PurchaseOrder), 1)
            log = db.execute(select(SyncLog)).scalar_one()
            self.assertEqual(log.status, SyncOutcome.FAILED)
            self.assertEqual(log.sync_type, SyncKind.PURCHASE_ORDERS)
            self.assertEqual(log.records_synced, 1)
            self.assertTrue(log.error_message.startswith('record 2:'))


class ReferenceDataReconcileTests(unittest.TestCase):
    def setUp(self) -> None:
        self.SessionLocal = _session_factory()

    def test_only_warehouse_locations_are_kept(self) -> None:
        records = [
            {'locationnum': 1, 'name': 'GLENDORA', 'type': 1},
            {'locationnum': 7, 'name': 'Service Truck 7', 'type': 2},
        ]
        with self.SessionLocal() as db:
            result = reconcile_locations(db, records)

        self.assertEqual((result.inserted, result.updated, result.skipped, result.total), (1, 0, 1, 2))
        with self.SessionLocal() as db:
            names = db.execute(select(Location.name)).scalars().all()
            self.assertEqual(names, ['GLENDORA'])

    def test_location_rename_updates_existing_row(self) -> None:
        with self.SessionLocal() as db:
            reconcile_locations(db, [{'locationnum': 1, 'name': 'GLENDORA', 'type': 1}])
        with self.SessionLocal() as db:
            result = reconcile_locations(db, [{'locationnum': 1, 'name': 'GLENDORA MAIN', 'type': 1}])

        self.assertEqual((result.inserted, result.updated), (0, 1))
        with self.SessionLocal() as db:
            self.assertEqual(db.execute(select(Location.name)).scalar_one(), 'GLENDORA MAIN')

    def test_jobs_upsert_by_job_number(self) -> None:
        job = {'jobnum': 'J100', 'name': 'Main St Clinic', 'address': '1 Main St', 'city': 'Glendora'}
        with self.SessionLocal() as db:
            first = reconcile_jobs(db, [job])
        with self.SessionLocal() as db:
            second = reconcile_jobs(db, [{**job, 'status': 'closed'}])

        self.assertEqual(first.inserted, 1)
        self.assertEqual(second.updated, 1)
        with self.SessionLocal() as db:
            stored = db.execute(select(Job)).scalar_one()
            self.assertEqual(stored.status, 'closed')
            self.assertEqual(stored.city, 'Glendora')

    def test_unknown_kind_is_rejected(self) -> None:
        with self.SessionLocal() as db:
            with self.assertRaises(InvalidInput):
                run_sync(db, 'vendors', [])


class ReceivedItemReconcileTests(unittest.TestCase):
    def setUp(self) -> None:
        self.SessionLocal = _session_factory()

    def test_receipt_ahead_of_its_po_is_stored_unlinked(self) -> None:
        receipt = {'serialnum': 9001, 'ponum': 2002, 'itemnum': 'PIPE-2', 'date': '2024-03-05 08:30:00', 'quantity': 5}
        with self.SessionLocal() as db:
            result = reconcile_received_items(db, [receipt])

        self.assertEqual(result.inserted, 1)
        with self.SessionLocal() as db:
            row = db.execute(select(ReceivedItem)).scalar_one()
            self.assertIsNone(row.po_id)
            self.assertEqual(row.ce_ponum, 2002)
            self.assertEqual(row.received_date, date(2024, 3, 5))
            self.assertEqual(row.quantity, Decimal('5'))

    def test_waiting_receipts_link_when_po_arrives(self) -> None:
        with self.SessionLocal() as db:
            reconcile_received_items(db, [{'serialnum': 9001, 'ponum': 1001, 'quantity': 2}])
        with self.SessionLocal() as db:
            reconcile_purchase_orders(db, [copy.deepcopy(PO_1001)])

        with self.SessionLocal() as db:
            po_id = db.execute(select(PurchaseOrder.id)).scalar_one()
            self.assertEqual(db.execute(select(ReceivedItem.po_id)).scalar_one(), po_id)

    def test_resync_resolves_po_reference(self) -> None:
        with self.SessionLocal() as db:
            reconcile_purchase_orders(db, [copy.deepcopy(PO_1001)])
        with self.SessionLocal() as db:
            result = reconcile_received_items(db, [{'serialnum': 9002, 'ponum': 1001, 'quantity': 1}])
        with self.SessionLocal() as db:
            again = reconcile_received_items(db, [{'serialnum': 9002, 'ponum': 1001, 'quantity': 3}])

        self.assertEqual((result.inserted, again.updated), (1, 1))
        with self.SessionLocal() as db:
            row = db.execute(select(ReceivedItem)).scalar_one()
            self.assertIsNotNone(row.po_id)
            self.assertEqual(row.quantity, Decimal('3'))


class SyncStatusTests(unittest.TestCase):
    def setUp(self) -> None:
        self.SessionLocal = _session_factory()

    def test_status_reports_never_until_a_batch_runs(self) -> None:
        with self.SessionLocal() as db:
            status = sync_status(db)
        self.assertEqual(status['sync_status']['jobs']['status'], 'never')
        self.assertEqual(status['counts']['purchase_orders'], 0)

    def test_status_reports_last_run_and_counts(self) -> None:
        with self.SessionLocal() as db:
            reconcile_purchase_orders(db, [copy.deepcopy(PO_1001)])
            status = sync_status(db)

        po_status = status['sync_status']['purchase_orders']
        self.assertEqual(po_status['status'], 'success')
        self.assertEqual(po_status['records_synced'], 1)
        self.assertEqual(status['counts']['po_items'], 2)
        self.assertEqual(status['sync_status']['locations']['status'], 'never')


if __name__ == '__main__':
    unittest.main()

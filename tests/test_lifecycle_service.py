from __future__ import annotations

import unittest
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.pool import StaticPool

from app.auth import Principal, Role
from app.db import build_engine, build_session_factory, init_db
from app.models import (
    Delivery,
    Location,
    PODistribution,
    POItem,
    PurchaseOrder,
    SpotType,
    StagingSpot,
    StagingStatus,
    User,
    UserRole,
)
from app.services.audit_service import status_history
from app.services.errors import Forbidden, InvalidInput, InvalidTransition, NotFound
from app.services.lifecycle_service import (
    can_transition,
    confirm_delivery,
    list_recent_deliveries,
    split_signer_name,
    update_status,
)
from app.services.staging_service import StageLine, stage_items


def _session_factory():
    engine = build_engine('sqlite://', poolclass=StaticPool)
    init_db(engine)
    return build_session_factory(engine)


class SignerNameTests(unittest.TestCase):
    def test_first_initial_and_last_word(self) -> None:
        self.assertEqual(split_signer_name('john q smith'), ('J', 'SMITH'))
        self.assertEqual(split_signer_name('  Maria   de la Cruz '), ('M', 'CRUZ'))

    def test_single_word_name(self) -> None:
        self.assertEqual(split_signer_name('Cher'), ('C', 'CHER'))

    def test_blank_name(self) -> None:
        self.assertEqual(split_signer_name('   '), ('', ''))


class TransitionTableTests(unittest.TestCase):
    def test_active_states_move_forward(self) -> None:
        self.assertTrue(can_transition(StagingStatus.STAGED, StagingStatus.READY))
        self.assertTrue(can_transition(StagingStatus.STAGED, StagingStatus.DELIVERED))
        self.assertTrue(can_transition(StagingStatus.READY, StagingStatus.PICKED_UP))
        self.assertTrue(can_transition(StagingStatus.READY, StagingStatus.RETURNED))

    def test_nothing_reenters_staged_or_leaves_terminal_states(self) -> None:
        self.assertFalse(can_transition(StagingStatus.READY, StagingStatus.STAGED))
        self.assertFalse(can_transition(StagingStatus.READY, StagingStatus.READY))
        for terminal in (StagingStatus.PICKED_UP, StagingStatus.DELIVERED, StagingStatus.RETURNED):
            for target in StagingStatus:
                self.assertFalse(can_transition(terminal, target))


class LifecycleServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.SessionLocal = _session_factory()
        with self.SessionLocal() as db:
            location = Location(ce_locationnum=1, name='GLENDORA')
            db.add(location)
            db.flush()
            spot = StagingSpot(location_id=location.id, code='W1A', name='W1A', spot_type=SpotType.WILL_CALL_CONSTRUCTION)
            user = User(username='CAMES', full_name='Chris Ames', role=UserRole.ADMIN)
            po = PurchaseOrder(ce_ponum=1001, request_id='REQ-7')
            db.add_all([spot, user, po])
            db.flush()
            item = POItem(po_id=po.id, ce_itemid=1, item_num='PIPE-2', description='2in copper pipe', received=Decimal('5'))
            db.add(item)
            db.flush()
            db.add(PODistribution(po_item_id=item.id, ce_itemid=1, job_num='J100', job_name='Main St Clinic'))
            db.commit()

            self.principal = Principal(id=user.id, username=user.username, full_name=user.full_name, role=Role.ADMIN)
            record = stage_items(
                db,
                principal=self.principal,
                po_id=po.id,
                lines=[StageLine(po_item_id=item.id, quantity=Decimal('5'))],
                spot_id=spot.id,
            )
            db.commit()
            self.record_id = record.id

    def test_pickup_with_signature(self) -> None:
        with self.SessionLocal() as db:
            update_status(db, principal=self.principal, staging_record_id=self.record_id, status=StagingStatus.READY)
            delivery = confirm_delivery(
                db,
                principal=self.principal,
                staging_record_id=self.record_id,
                signer_name='john q smith',
                signature_data='data:image/png;base64,AAAA',
                notes='  left at gate ',
            )
            db.commit()

            self.assertEqual(delivery.signer_first_initial, 'J')
            self.assertEqual(delivery.signer_last_name, 'SMITH')
            self.assertEqual(delivery.signer_name, 'john q smith')
            self.assertEqual(delivery.delivered_by, self.principal.id)
            self.assertEqual(delivery.delivery_date, datetime.now(tz=timezone.utc).date())
            self.assertEqual(delivery.notes, 'left at gate')
            self.assertEqual(
                status_history(db, staging_record_id=self.record_id),
                [StagingStatus.STAGED, StagingStatus.READY, StagingStatus.PICKED_UP],
            )

        with self.SessionLocal() as db:
            rows = list_recent_deliveries(db)
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0]['job_num'], 'J100')
        self.assertEqual(rows[0]['delivered_by_name'], 'Chris Ames')
        self.assertEqual(rows[0]['item_descriptions'], 'PIPE-2 - 2in copper pipe (x5)')

    def test_second_pickup_is_rejected(self) -> None:
        with self.SessionLocal() as db:
            confirm_delivery(
                db,
                principal=self.principal,
                staging_record_id=self.record_id,
                signer_name='Ann Lee',
                signature_data='sig',
            )
            db.commit()
            with self.assertRaises(InvalidTransition):
                confirm_delivery(
                    db,
                    principal=self.principal,
                    staging_record_id=self.record_id,
                    signer_name='Ann Lee',
                    signature_data='sig',
                )
            self.assertEqual(db.execute(select(func.count()).select_from(Delivery)).scalar_one(), 1)

    def test_delivery_requires_signer_and_signature(self) -> None:
        with self.SessionLocal() as db:
            with self.assertRaises(InvalidInput):
                confirm_delivery(
                    db, principal=self.principal, staging_record_id=self.record_id, signer_name='  ', signature_data='sig'
                )
            with self.assertRaises(InvalidInput):
                confirm_delivery(
                    db, principal=self.principal, staging_record_id=self.record_id, signer_name='Ann', signature_data=''
                )
            with self.assertRaises(NotFound):
                confirm_delivery(db, principal=self.principal, staging_record_id=999, signer_name='Ann', signature_data='sig')

    def test_terminal_state_cannot_be_changed(self) -> None:
        with self.SessionLocal() as db:
            update_status(db, principal=self.principal, staging_record_id=self.record_id, status='delivered')
            db.commit()
            with self.assertRaises(InvalidTransition) as ctx:
                update_status(db, principal=self.principal, staging_record_id=self.record_id, status='ready')
        self.assertEqual(ctx.exception.extra['current_status'], 'delivered')
        self.assertEqual(ctx.exception.status_code, 409)

    def test_direct_status_updates_are_limited(self) -> None:
        with self.SessionLocal() as db:
            with self.assertRaises(InvalidInput):
                update_status(db, principal=self.principal, staging_record_id=self.record_id, status='picked_up')
            with self.assertRaises(InvalidInput):
                update_status(db, principal=self.principal, staging_record_id=self.record_id, status='lost')
            with self.assertRaises(InvalidTransition):
                update_status(db, principal=self.principal, staging_record_id=self.record_id, status='staged')
            with self.assertRaises(NotFound):
                update_status(db, principal=self.principal, staging_record_id=999, status='ready')

    def test_field_users_cannot_change_status(self) -> None:
        field = Principal(id=self.principal.id, username='FIELD', full_name='Field User', role=Role.FIELD)
        with self.SessionLocal() as db:
            with self.assertRaises(Forbidden):
                update_status(db, principal=field, staging_record_id=self.record_id, status='ready')
            with self.assertRaises(Forbidden):
                confirm_delivery(
                    db, principal=field, staging_record_id=self.record_id, signer_name='Ann', signature_data='sig'
                )


if __name__ == '__main__':
    unittest.main()

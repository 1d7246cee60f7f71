from __future__ import annotations

import unittest
import uuid
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import patch

from sqlalchemy import select, update

from dalcoffee.models import (
    AppRole,
    AuditLog,
    Commission,
    CommissionSetting,
    Order,
    OrderStatus,
    PaymentStatus,
    ShipmentTracking,
)
from dalcoffee.services.order_service import (
    OrderTransitionError,
    TrackingInput,
    available_order_actions,
    check_order_transition,
    create_order,
    list_orders,
    record_payment,
    update_order_status,
)
from dalcoffee.services.transitions import ConcurrentUpdateError
from tests.support import add_order, add_supplier, add_user, make_session_factory, principal_for


class OrderTransitionRuleTests(unittest.TestCase):
    def test_shipped_requires_paid_payment_status(self) -> None:
        for payment_status in (PaymentStatus.UNPAID, PaymentStatus.RELEASED):
            order = SimpleNamespace(status=OrderStatus.CONFIRMED, payment_status=payment_status)
            with self.assertRaises(OrderTransitionError):
                check_order_transition(order, OrderStatus.SHIPPED)

        paid = SimpleNamespace(status=OrderStatus.CONFIRMED, payment_status=PaymentStatus.PAID)
        check_order_transition(paid, OrderStatus.SHIPPED)

    def test_delivered_only_from_shipped(self) -> None:
        for status in (OrderStatus.PENDING, OrderStatus.CONFIRMED, OrderStatus.PAID, OrderStatus.CANCELLED):
            order = SimpleNamespace(status=status, payment_status=PaymentStatus.PAID)
            with self.assertRaises(OrderTransitionError):
                check_order_transition(order, OrderStatus.DELIVERED)

        shipped = SimpleNamespace(status=OrderStatus.SHIPPED, payment_status=PaymentStatus.PAID)
        check_order_transition(shipped, OrderStatus.DELIVERED)

    def test_terminal_states_have_no_actions(self) -> None:
        delivered = SimpleNamespace(status=OrderStatus.DELIVERED, payment_status=PaymentStatus.RELEASED)
        self.assertEqual(available_order_actions(delivered), [])

    def test_unpaid_confirmed_order_cannot_be_offered_shipping(self) -> None:
        order = SimpleNamespace(status=OrderStatus.CONFIRMED, payment_status=PaymentStatus.UNPAID)
        self.assertEqual(available_order_actions(order), ['cancelled'])


class OrderServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session_factory()()
        self.buyer_id = add_user(self.db, role=AppRole.ROASTER, email='buyer@example.com')
        self.owner_id = add_user(self.db, role=AppRole.SUPPLIER, email='supplier@example.com')
        self.admin_id = add_user(self.db, role=AppRole.ADMIN, email='admin@example.com')
        self.supplier = add_supplier(self.db, owner_id=self.owner_id)
        self.buyer = principal_for(self.db, self.buyer_id)
        self.owner = principal_for(self.db, self.owner_id)
        self.admin = principal_for(self.db, self.admin_id)
        self.feed = patch('dalcoffee.services.change_feed.change_feed').start()
        self.addCleanup(patch.stopall)
        self.addCleanup(self.db.close)

    def test_create_order_computes_total_and_starts_pending(self) -> None:
        order = create_order(
            self.db,
            buyer=self.buyer,
            supplier_id=self.supplier.id,
            quantity_kg='12.5',
            price_per_kg='40',
        )
        self.assertEqual(order.total_price, Decimal('500.00'))
        self.assertEqual(order.status, OrderStatus.PENDING)
        self.assertEqual(order.payment_status, PaymentStatus.UNPAID)
        self.feed.publish.assert_not_called()

        self.db.commit()
        self.feed.publish.assert_called_once_with('orders', 'INSERT', order.id)

    def test_rolled_back_status_change_is_never_announced(self) -> None:
        order = add_order(self.db, buyer_id=self.buyer_id, supplier=self.supplier)
        self.db.commit()
        self.feed.publish.reset_mock()

        update_order_status(self.db, order_id=order.id, new_status=OrderStatus.CONFIRMED, actor=self.owner)
        self.db.rollback()
        self.feed.publish.assert_not_called()

        # The next commit on the same session must not replay the discarded event.
        self.db.refresh(order)
        self.assertEqual(order.status, OrderStatus.PENDING)
        update_order_status(self.db, order_id=order.id, new_status=OrderStatus.CANCELLED, actor=self.owner)
        self.db.commit()
        self.feed.publish.assert_called_once_with('orders', 'UPDATE', order.id)

    def test_create_order_rejects_non_positive_quantity(self) -> None:
        with self.assertRaises(ValueError):
            create_order(self.db, buyer=self.buyer, supplier_id=self.supplier.id, quantity_kg='0', price_per_kg='40')

    def test_shipping_an_unpaid_order_is_rejected_and_nothing_changes(self) -> None:
        order = add_order(self.db, buyer_id=self.buyer_id, supplier=self.supplier, status=OrderStatus.CONFIRMED)
        with self.assertRaises(OrderTransitionError):
            update_order_status(self.db, order_id=order.id, new_status=OrderStatus.SHIPPED, actor=self.owner)

        self.db.refresh(order)
        self.assertEqual(order.status, OrderStatus.CONFIRMED)
        self.assertEqual(self.db.execute(select(ShipmentTracking)).scalars().all(), [])

    def test_full_lifecycle_releases_escrow_and_records_commission(self) -> None:
        self.db.add(CommissionSetting(supplier_rate=Decimal('4'), roaster_rate=Decimal('6')))
        order = add_order(self.db, buyer_id=self.buyer_id, supplier=self.supplier, total='2000.00')

        update_order_status(self.db, order_id=order.id, new_status=OrderStatus.CONFIRMED, actor=self.owner)
        record_payment(self.db, order_id=order.id, actor=self.buyer, escrow_id='ESC-1')
        update_order_status(
            self.db,
            order_id=order.id,
            new_status=OrderStatus.SHIPPED,
            actor=self.owner,
            tracking=TrackingInput(tracking_number='TRK-9', carrier='SMSA'),
        )
        delivered = update_order_status(self.db, order_id=order.id, new_status=OrderStatus.DELIVERED, actor=self.admin)

        self.assertEqual(delivered.status, OrderStatus.DELIVERED)
        self.assertEqual(delivered.payment_status, PaymentStatus.RELEASED)
        self.assertEqual(delivered.escrow_id, 'ESC-1')
        self.assertIsNotNone(delivered.actual_delivery)

        tracking = self.db.execute(select(ShipmentTracking).order_by(ShipmentTracking.status.desc())).scalars().all()
        self.assertEqual([row.status for row in tracking], ['shipped', 'delivered'])
        self.assertEqual(tracking[0].tracking_number, 'TRK-9')

        commission = self.db.execute(select(Commission)).scalar_one()
        self.assertEqual(commission.supplier_commission, Decimal('80.00'))
        self.assertEqual(commission.roaster_commission, Decimal('120.00'))
        self.assertEqual(commission.total_commission, Decimal('200.00'))

        actions = self.db.execute(select(AuditLog.action)).scalars().all()
        self.assertEqual(actions.count('ORDER_STATUS_CHANGED'), 3)
        self.assertIn('ORDER_PAID', actions)

    def test_delivery_uses_default_rates_without_settings_row(self) -> None:
        order = add_order(
            self.db,
            buyer_id=self.buyer_id,
            supplier=self.supplier,
            status=OrderStatus.SHIPPED,
            payment_status=PaymentStatus.PAID,
        )
        update_order_status(self.db, order_id=order.id, new_status=OrderStatus.DELIVERED, actor=self.owner)
        commission = self.db.execute(select(Commission)).scalar_one()
        self.assertEqual(commission.total_commission, Decimal('100.00'))

    def test_buyer_can_only_cancel_while_pending(self) -> None:
        order = add_order(self.db, buyer_id=self.buyer_id, supplier=self.supplier)
        with self.assertRaises(PermissionError):
            update_order_status(self.db, order_id=order.id, new_status=OrderStatus.CONFIRMED, actor=self.buyer)

        cancelled = update_order_status(self.db, order_id=order.id, new_status=OrderStatus.CANCELLED, actor=self.buyer)
        self.assertEqual(cancelled.status, OrderStatus.CANCELLED)

    def test_stranger_cannot_change_status(self) -> None:
        stranger = principal_for(self.db, add_user(self.db, role=AppRole.CAFE))
        order = add_order(self.db, buyer_id=self.buyer_id, supplier=self.supplier)
        with self.assertRaises(PermissionError):
            update_order_status(self.db, order_id=order.id, new_status=OrderStatus.CANCELLED, actor=stranger)

    def test_unknown_order_raises_lookup_error(self) -> None:
        with self.assertRaises(LookupError):
            update_order_status(self.db, order_id=uuid.uuid4(), new_status=OrderStatus.CONFIRMED, actor=self.admin)

    def test_status_write_refuses_when_row_changed_underneath(self) -> None:
        order = add_order(self.db, buyer_id=self.buyer_id, supplier=self.supplier)
        # Another request cancels the order; this session still holds the pending copy.
        self.db.execute(
            update(Order)
            .where(Order.id == order.id)
            .values(status=OrderStatus.CANCELLED)
            .execution_options(synchronize_session=False)
        )
        self.assertEqual(order.status, OrderStatus.PENDING)

        with self.assertRaises(ConcurrentUpdateError):
            update_order_status(self.db, order_id=order.id, new_status=OrderStatus.CONFIRMED, actor=self.owner)

        self.db.refresh(order)
        self.assertEqual(order.status, OrderStatus.CANCELLED)

    def test_record_payment_requires_confirmed_order(self) -> None:
        order = add_order(self.db, buyer_id=self.buyer_id, supplier=self.supplier)
        with self.assertRaises(OrderTransitionError):
            record_payment(self.db, order_id=order.id, actor=self.buyer)

    def test_record_payment_generates_escrow_reference(self) -> None:
        order = add_order(self.db, buyer_id=self.buyer_id, supplier=self.supplier, status=OrderStatus.CONFIRMED)
        paid = record_payment(self.db, order_id=order.id, actor=self.buyer)
        self.assertEqual(paid.status, OrderStatus.PAID)
        self.assertEqual(paid.payment_status, PaymentStatus.PAID)
        self.assertTrue(paid.escrow_id.startswith('ESC-'))

    def test_list_orders_by_view(self) -> None:
        add_order(self.db, buyer_id=self.buyer_id, supplier=self.supplier)
        other_owner = add_user(self.db, role=AppRole.SUPPLIER)
        other_supplier = add_supplier(self.db, owner_id=other_owner, name='Other')
        add_order(self.db, buyer_id=self.buyer_id, supplier=other_supplier)

        self.assertEqual(len(list_orders(self.db, principal=self.buyer, view='buyer')), 2)
        self.assertEqual(len(list_orders(self.db, principal=self.owner, view='supplier')), 1)
        self.assertEqual(len(list_orders(self.db, principal=self.admin, view='all')), 2)
        with self.assertRaises(PermissionError):
            list_orders(self.db, principal=self.buyer, view='all')


if __name__ == '__main__':
    unittest.main()

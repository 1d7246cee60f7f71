from __future__ import annotations

import secrets
import uuid
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation

from sqlalchemy import select
from sqlalchemy.orm import Session

from dalcoffee.auth import Principal
from dalcoffee.models import (
    Commission,
    CommissionSetting,
    Order,
    OrderStatus,
    PaymentStatus,
    ShipmentTracking,
    Supplier,
)
from dalcoffee.services.audit_service import log_audit
from dalcoffee.services.change_feed import publish_on_commit
from dalcoffee.services.transitions import (
    TransitionError,
    apply_guarded_update,
    check_transition,
    utcnow,
)


AUTO_REORDER_NOTE = 'إعادة طلب تلقائي'
DEFAULT_SUPPLIER_RATE = Decimal('5')
DEFAULT_ROASTER_RATE = Decimal('5')

ORDER_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.PAID, OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.PAID: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

# Targets that additionally need the buyer's money in escrow.
REQUIRES_PAYMENT = frozenset({OrderStatus.PAID, OrderStatus.SHIPPED})


class OrderTransitionError(TransitionError):
    pass


@dataclass(frozen=True)
class TrackingInput:
    tracking_number: str | None = None
    carrier: str | None = None
    location: str | None = None
    notes: str | None = None


def _parse_positive_decimal(raw: object, *, field: str) -> Decimal:
    try:
        value = Decimal(str(raw))
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise ValueError(f'Invalid {field}') from exc
    if value <= 0:
        raise ValueError(f'{field} must be greater than zero')
    return value


def _money(value: Decimal) -> Decimal:
    return value.quantize(Decimal('0.01'))


def check_order_transition(order: Order, new_status: OrderStatus) -> None:
    try:
        check_transition(ORDER_TRANSITIONS, order.status, new_status, label='Order')
    except TransitionError as exc:
        raise OrderTransitionError(str(exc)) from exc
    if new_status in REQUIRES_PAYMENT and order.payment_status != PaymentStatus.PAID:
        raise OrderTransitionError(f'Order must be paid before it can be marked {new_status.value}')


def available_order_actions(order: Order) -> list[str]:
    actions = []
    for target in sorted(ORDER_TRANSITIONS[order.status], key=lambda s: list(OrderStatus).index(s)):
        try:
            check_order_transition(order, target)
        except OrderTransitionError:
            continue
        actions.append(target.value)
    return actions


def _get_order(db: Session, order_id: uuid.UUID) -> Order:
    order = db.get(Order, order_id)
    if order is None:
        raise LookupError('Order not found')
    return order


def _supplier_owner_id(db: Session, supplier_id: uuid.UUID) -> uuid.UUID | None:
    return db.execute(select(Supplier.user_id).where(Supplier.id == supplier_id)).scalar_one_or_none()


def get_order_for(db: Session, *, order_id: uuid.UUID, principal: Principal) -> Order:
    order = _get_order(db, order_id)
    if principal.is_admin or principal.user_id == order.user_id:
        return order
    if principal.user_id == _supplier_owner_id(db, order.supplier_id):
        return order
    raise PermissionError('You cannot view this order')


def _assert_can_change_status(db: Session, order: Order, principal: Principal, new_status: OrderStatus) -> None:
    if principal.is_admin:
        return
    if principal.user_id == _supplier_owner_id(db, order.supplier_id):
        return
    if (
        principal.user_id == order.user_id
        and new_status == OrderStatus.CANCELLED
        and order.status == OrderStatus.PENDING
    ):
        return
    raise PermissionError('You cannot change the status of this order')


def create_order(
    db: Session,
    *,
    buyer: Principal,
    supplier_id: uuid.UUID,
    quantity_kg: object,
    price_per_kg: object,
    currency: str = 'SAR',
    coffee_id: uuid.UUID | None = None,
    expected_delivery: date | None = None,
    notes: str | None = None,
) -> Order:
    supplier = db.get(Supplier, supplier_id)
    if supplier is None:
        raise LookupError('Supplier not found')
    quantity = _parse_positive_decimal(quantity_kg, field='Quantity')
    price = _parse_positive_decimal(price_per_kg, field='Price per kg')

    order = Order(
        user_id=buyer.user_id,
        supplier_id=supplier.id,
        coffee_id=coffee_id,
        quantity_kg=quantity,
        price_per_kg=price,
        total_price=_money(quantity * price),
        currency=(currency or 'SAR').strip().upper(),
        status=OrderStatus.PENDING,
        payment_status=PaymentStatus.UNPAID,
        expected_delivery=expected_delivery,
        notes=(notes or '').strip() or None,
    )
    db.add(order)
    db.flush()
    log_audit(
        db,
        actor_user_id=buyer.user_id,
        action='ORDER_CREATED',
        entity_type='order',
        entity_id=order.id,
        metadata={'supplier_id': str(supplier.id), 'total_price': str(order.total_price)},
    )
    publish_on_commit(db, 'orders', 'INSERT', order.id)
    return order


def list_orders(db: Session, *, principal: Principal, view: str, status: OrderStatus | None = None) -> list[Order]:
    query = select(Order).order_by(Order.order_date.desc())
    if view == 'buyer':
        query = query.where(Order.user_id == principal.user_id)
    elif view == 'supplier':
        query = query.join(Supplier, Supplier.id == Order.supplier_id).where(Supplier.user_id == principal.user_id)
    elif view == 'all':
        if not principal.is_admin:
            raise PermissionError('Only admins can list all orders')
    else:
        raise ValueError('View must be buyer, supplier or all')
    if status is not None:
        query = query.where(Order.status == status)
    return db.execute(query).scalars().all()


def _commission_rates(db: Session) -> tuple[Decimal, Decimal]:
    row = db.execute(select(CommissionSetting).order_by(CommissionSetting.updated_at.desc())).scalars().first()
    if row is None:
        return DEFAULT_SUPPLIER_RATE, DEFAULT_ROASTER_RATE
    return Decimal(row.supplier_rate), Decimal(row.roaster_rate)


def record_commission(db: Session, order: Order) -> Commission:
    supplier_rate, roaster_rate = _commission_rates(db)
    order_total = Decimal(order.total_price or 0)
    supplier_commission = _money(order_total * supplier_rate / Decimal('100'))
    roaster_commission = _money(order_total * roaster_rate / Decimal('100'))
    commission = Commission(
        order_id=order.id,
        supplier_id=order.supplier_id,
        roaster_id=order.user_id,
        order_total=_money(order_total),
        supplier_rate=supplier_rate,
        roaster_rate=roaster_rate,
        supplier_commission=supplier_commission,
        roaster_commission=roaster_commission,
        total_commission=supplier_commission + roaster_commission,
    )
    db.add(commission)
    return commission


def update_order_status(
    db: Session,
    *,
    order_id: uuid.UUID,
    new_status: OrderStatus,
    actor: Principal,
    tracking: TrackingInput | None = None,
) -> Order:
    order = _get_order(db, order_id)
    _assert_can_change_status(db, order, actor, new_status)
    check_order_transition(order, new_status)

    previous_status = order.status
    values: dict = {'status': new_status}
    if new_status == OrderStatus.DELIVERED:
        values['payment_status'] = PaymentStatus.RELEASED
        values['actual_delivery'] = utcnow()

    apply_guarded_update(
        db,
        Order,
        row_id=order.id,
        expected={'status': order.status, 'payment_status': order.payment_status},
        values=values,
        label='Order',
    )
    db.refresh(order)

    if new_status in {OrderStatus.SHIPPED, OrderStatus.DELIVERED}:
        tracking = tracking or TrackingInput()
        db.add(
            ShipmentTracking(
                order_id=order.id,
                status=new_status.value,
                tracking_number=tracking.tracking_number,
                carrier=tracking.carrier,
                location=tracking.location,
                notes=tracking.notes,
            )
        )
    if new_status == OrderStatus.DELIVERED:
        record_commission(db, order)

    log_audit(
        db,
        actor_user_id=actor.user_id,
        action='ORDER_STATUS_CHANGED',
        entity_type='order',
        entity_id=order.id,
        metadata={'from': previous_status.value, 'to': new_status.value},
    )
    db.flush()
    publish_on_commit(db, 'orders', 'UPDATE', order.id)
    return order


def record_payment(
    db: Session,
    *,
    order_id: uuid.UUID,
    actor: Principal,
    escrow_id: str | None = None,
) -> Order:
    order = _get_order(db, order_id)
    if not actor.is_admin and actor.user_id != order.user_id:
        raise PermissionError('Only the buyer can pay for this order')
    if order.payment_status != PaymentStatus.UNPAID:
        raise OrderTransitionError('Order has already been paid')
    if order.status != OrderStatus.CONFIRMED:
        raise OrderTransitionError('Only confirmed orders can be paid')

    escrow_ref = (escrow_id or '').strip() or f'ESC-{secrets.token_hex(6).upper()}'
    apply_guarded_update(
        db,
        Order,
        row_id=order.id,
        expected={'status': OrderStatus.CONFIRMED, 'payment_status': PaymentStatus.UNPAID},
        values={'payment_status': PaymentStatus.PAID, 'status': OrderStatus.PAID, 'escrow_id': escrow_ref},
        label='Order',
    )
    db.refresh(order)

    log_audit(
        db,
        actor_user_id=actor.user_id,
        action='ORDER_PAID',
        entity_type='order',
        entity_id=order.id,
        metadata={'escrow_id': escrow_ref, 'amount': str(order.total_price)},
    )
    db.flush()
    publish_on_commit(db, 'orders', 'UPDATE', order.id)
    return order


def serialize_order(order: Order) -> dict:
    return {
        'id': str(order.id),
        'buyer_id': str(order.user_id),
        'supplier_id': str(order.supplier_id),
        'quantity_kg': float(order.quantity_kg),
        'price_per_kg': float(order.price_per_kg) if order.price_per_kg is not None else None,
        'total_price': float(order.total_price) if order.total_price is not None else None,
        'currency': order.currency,
        'status': order.status.value,
        'payment_status': order.payment_status.value,
        'escrow_id': order.escrow_id,
        'order_date': order.order_date.isoformat() if order.order_date else None,
        'expected_delivery': order.expected_delivery.isoformat() if order.expected_delivery else None,
        'actual_delivery': order.actual_delivery.isoformat() if order.actual_delivery else None,
        'available_actions': available_order_actions(order),
    }

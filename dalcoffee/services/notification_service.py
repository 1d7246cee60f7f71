"""Transactional emails sent after a committed change.

Delivery is best-effort: a failed send is logged and never undoes the change
that triggered it.
"""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from dalcoffee.models import DirectSupplyContract, Order, OrderStatus, Profile, ShipmentTracking, Supplier
from dalcoffee.services.email_service import EmailDeliveryError, EmailMessage, send_email
from dalcoffee.templating import render_email


logger = logging.getLogger(__name__)

SHIPMENT_STATUS_MESSAGES = {
    OrderStatus.CONFIRMED: 'تم تأكيد طلبك من قبل المورد',
    OrderStatus.SHIPPED: 'تم شحن طلبك وهو في الطريق إليك',
    OrderStatus.DELIVERED: 'تم تسليم طلبك بنجاح',
    OrderStatus.CANCELLED: 'تم إلغاء طلبك',
}


def _profile(db: Session, user_id) -> Profile | None:
    if user_id is None:
        return None
    return db.execute(select(Profile).where(Profile.user_id == user_id)).scalar_one_or_none()


def _order_ref(order: Order) -> str:
    return str(order.id)[:8].upper()


def _send(message: EmailMessage) -> bool:
    try:
        send_email(message)
    except EmailDeliveryError as exc:
        logger.warning('Notification "%s" to %s failed: %s', message.subject, ', '.join(message.to), exc)
        return False
    return True


def notify_supplier_new_order(db: Session, order: Order) -> bool:
    supplier = db.get(Supplier, order.supplier_id)
    owner = _profile(db, supplier.user_id if supplier else None)
    if owner is None or not owner.email:
        logger.info('Supplier for order %s has no email; skipping new-order notification', order.id)
        return False
    buyer = _profile(db, order.user_id)
    buyer_name = (buyer.business_name or buyer.full_name) if buyer else None
    html = render_email(
        'new_order.html',
        supplier_name=supplier.name,
        buyer_name=buyer_name or 'عميل',
        order_ref=_order_ref(order),
        quantity_kg=float(order.quantity_kg),
        price_per_kg=order.price_per_kg,
        total_price=order.total_price,
        currency=order.currency,
    )
    return _send(EmailMessage(to=[owner.email], subject=f'طلب جديد من {buyer_name or "عميل"}', html=html))


def notify_buyer_shipment_update(db: Session, order: Order, tracking: ShipmentTracking | None = None) -> bool:
    status_message = SHIPMENT_STATUS_MESSAGES.get(order.status)
    if status_message is None:
        return False
    buyer = _profile(db, order.user_id)
    if buyer is None or not buyer.email:
        logger.info('Buyer for order %s has no email; skipping shipment notification', order.id)
        return False
    supplier = db.get(Supplier, order.supplier_id)
    html = render_email(
        'shipment_update.html',
        status_message=status_message,
        order_ref=_order_ref(order),
        supplier_name=supplier.name if supplier else '',
        quantity_kg=float(order.quantity_kg),
        tracking_number=tracking.tracking_number if tracking else None,
        carrier=tracking.carrier if tracking else None,
        expected_delivery=order.expected_delivery.isoformat() if order.expected_delivery else None,
    )
    return _send(EmailMessage(to=[buyer.email], subject=f'تحديث الشحنة: {status_message}', html=html))


def notify_contract_signed(db: Session, contract: DirectSupplyContract) -> int:
    sent = 0
    for role, user_id, role_label in (
        ('buyer', contract.buyer_id, 'المشتري'),
        ('seller', contract.seller_id, 'البائع'),
    ):
        profile = _profile(db, user_id)
        if profile is None or not profile.email:
            logger.info('Contract %s %s has no email; skipping', contract.contract_number, role)
            continue
        html = render_email(
            'contract_signed.html',
            recipient_name=profile.full_name or '',
            contract_number=contract.contract_number,
            role=role,
            role_label=role_label,
            total_amount=contract.total_amount,
            commission_amount=contract.platform_commission_amount,
            currency=contract.currency,
        )
        subject = f'تم توقيع العقد {contract.contract_number} من جميع الأطراف'
        if _send(EmailMessage(to=[profile.email], subject=subject, html=html)):
            sent += 1
    return sent


def latest_tracking(db: Session, order_id) -> ShipmentTracking | None:
    return db.execute(
        select(ShipmentTracking).where(ShipmentTracking.order_id == order_id).order_by(ShipmentTracking.created_at.desc())
    ).scalars().first()

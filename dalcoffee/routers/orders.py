from __future__ import annotations

import uuid
from datetime import date

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.orm import Session

from dalcoffee.auth import Principal, get_current_principal
from dalcoffee.db import get_db
from dalcoffee.errors import http_error
from dalcoffee.models import OrderStatus, ShipmentTracking
from dalcoffee.services.notification_service import (
    latest_tracking,
    notify_buyer_shipment_update,
    notify_supplier_new_order,
)
from dalcoffee.services.order_service import (
    TrackingInput,
    create_order,
    get_order_for,
    list_orders,
    record_payment,
    serialize_order,
    update_order_status,
)

router = APIRouter(prefix='/orders', tags=['orders'])


class OrderCreate(BaseModel):
    supplier_id: uuid.UUID
    quantity_kg: float
    price_per_kg: float
    currency: str = 'SAR'
    coffee_id: uuid.UUID | None = None
    expected_delivery: date | None = None
    notes: str | None = None


class StatusChange(BaseModel):
    status: OrderStatus
    tracking_number: str | None = None
    carrier: str | None = None
    location: str | None = None
    notes: str | None = None


class PaymentIn(BaseModel):
    escrow_id: str | None = None


@router.get('')
def orders_index(
    view: str = 'buyer',
    status: OrderStatus | None = None,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    try:
        orders = list_orders(db, principal=principal, view=view, status=status)
    except (PermissionError, ValueError) as exc:
        raise http_error(exc) from exc
    return {'orders': [serialize_order(order) for order in orders]}


@router.post('', status_code=201)
def orders_create(
    body: OrderCreate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    try:
        order = create_order(
            db,
            buyer=principal,
            supplier_id=body.supplier_id,
            quantity_kg=body.quantity_kg,
            price_per_kg=body.price_per_kg,
            currency=body.currency,
            coffee_id=body.coffee_id,
            expected_delivery=body.expected_delivery,
            notes=body.notes,
        )
    except (LookupError, ValueError) as exc:
        raise http_error(exc) from exc
    db.commit()
    notify_supplier_new_order(db, order)
    return serialize_order(order)


@router.get('/{order_id}')
def orders_detail(
    order_id: uuid.UUID,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    try:
        order = get_order_for(db, order_id=order_id, principal=principal)
    except (LookupError, PermissionError) as exc:
        raise http_error(exc) from exc
    tracking = db.execute(
        select(ShipmentTracking).where(ShipmentTracking.order_id == order.id).order_by(ShipmentTracking.created_at)
    ).scalars().all()
    return {
        **serialize_order(order),
        'tracking': [
            {
                'status': row.status,
                'tracking_number': row.tracking_number,
                'carrier': row.carrier,
                'location': row.location,
                'notes': row.notes,
                'created_at': row.created_at.isoformat() if row.created_at else None,
            }
            for row in tracking
        ],
    }


@router.post('/{order_id}/status')
def orders_update_status(
    order_id: uuid.UUID,
    body: StatusChange,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    tracking = TrackingInput(
        tracking_number=body.tracking_number,
        carrier=body.carrier,
        location=body.location,
        notes=body.notes,
    )
    try:
        order = update_order_status(db, order_id=order_id, new_status=body.status, actor=principal, tracking=tracking)
    except (LookupError, PermissionError, ValueError) as exc:
        db.rollback()
        raise http_error(exc) from exc
    db.commit()
    notify_buyer_shipment_update(db, order, latest_tracking(db, order.id))
    return serialize_order(order)


@router.post('/{order_id}/pay')
def orders_pay(
    order_id: uuid.UUID,
    body: PaymentIn,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    try:
        order = record_payment(db, order_id=order_id, actor=principal, escrow_id=body.escrow_id)
    except (LookupError, PermissionError, ValueError) as exc:
        db.rollback()
        raise http_error(exc) from exc
    db.commit()
    return serialize_order(order)

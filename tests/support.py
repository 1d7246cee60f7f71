from __future__ import annotations

import uuid
from decimal import Decimal

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from dalcoffee.auth import Principal, load_principal
from dalcoffee.models import AccountStatus, AppRole, Base, Order, OrderStatus, PaymentStatus, Profile, Supplier, UserRole


def make_session_factory() -> sessionmaker:
    engine = create_engine('sqlite://', connect_args={'check_same_thread': False}, poolclass=StaticPool)
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def add_user(
    db: Session,
    *,
    role: AppRole | None = None,
    status: AccountStatus = AccountStatus.APPROVED,
    email: str | None = None,
    full_name: str | None = None,
) -> uuid.UUID:
    user_id = uuid.uuid4()
    db.add(Profile(user_id=user_id, email=email, full_name=full_name))
    if role is not None:
        db.add(UserRole(user_id=user_id, role=role, status=status))
    db.flush()
    return user_id


def principal_for(db: Session, user_id: uuid.UUID) -> Principal:
    return load_principal(db, user_id=user_id)


def add_supplier(db: Session, *, owner_id: uuid.UUID, name: str = 'Green Bean Co') -> Supplier:
    supplier = Supplier(user_id=owner_id, name=name)
    db.add(supplier)
    db.flush()
    return supplier


def add_order(
    db: Session,
    *,
    buyer_id: uuid.UUID,
    supplier: Supplier,
    status: OrderStatus = OrderStatus.PENDING,
    payment_status: PaymentStatus = PaymentStatus.UNPAID,
    total: str = '1000.00',
) -> Order:
    order = Order(
        user_id=buyer_id,
        supplier_id=supplier.id,
        quantity_kg=Decimal('10'),
        price_per_kg=Decimal(total) / Decimal('10'),
        total_price=Decimal(total),
        status=status,
        payment_status=payment_status,
    )
    db.add(order)
    db.flush()
    return order

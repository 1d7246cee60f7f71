from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Integer,
    Numeric,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


def _enum(enum_cls: type[Enum], name: str) -> SQLEnum:
    return SQLEnum(enum_cls, name=name, values_callable=lambda members: [m.value for m in members])


class AppRole(str, Enum):
    ADMIN = 'admin'
    SUPPLIER = 'supplier'
    ROASTER = 'roaster'
    CAFE = 'cafe'
    FARM = 'farm'
    MAINTENANCE = 'maintenance'
    SUPERVISOR = 'supervisor'
    SUPPORT = 'support'
    VIEWER = 'viewer'


class AccountStatus(str, Enum):
    PENDING = 'pending'
    APPROVED = 'approved'
    REJECTED = 'rejected'
    SUSPENDED = 'suspended'


class OrderStatus(str, Enum):
    PENDING = 'pending'
    CONFIRMED = 'confirmed'
    PAID = 'paid'
    SHIPPED = 'shipped'
    DELIVERED = 'delivered'
    CANCELLED = 'cancelled'


class PaymentStatus(str, Enum):
    UNPAID = 'unpaid'
    PAID = 'paid'
    RELEASED = 'released'


class ContractStatus(str, Enum):
    PENDING_SELLER = 'pending_seller'
    PENDING_COMMISSION = 'pending_commission'
    COMMISSION_PAID = 'commission_paid'
    AWAITING_SELLER_SIGN = 'awaiting_seller_sign'
    AWAITING_BUYER_SIGN = 'awaiting_buyer_sign'
    AWAITING_PLATFORM_SIGN = 'awaiting_platform_sign'
    FULLY_SIGNED = 'fully_signed'
    AWAITING_SELLER_PAYMENT = 'awaiting_seller_payment'
    COMPLETED = 'completed'
    SELLER_REJECTED = 'seller_rejected'
    REFUND_PENDING = 'refund_pending'
    REFUNDED = 'refunded'
    CANCELLED = 'cancelled'
    DISPUTED = 'disputed'


class CommissionPaymentMethod(str, Enum):
    ONLINE_PAYMENT = 'online_payment'
    BANK_TRANSFER = 'bank_transfer'


class ReportStatus(str, Enum):
    SENT = 'sent'
    FAILED = 'failed'


class ReportType(str, Enum):
    SCHEDULED_COMMISSION = 'scheduled_commission'
    WEEKLY_COMMISSION = 'weekly_commission'
    WEEKLY_INVENTORY = 'weekly'
    WEEKLY_SMART_CHECK = 'weekly_smart_check'
    DELAYED_SHIPMENTS_DAILY = 'delayed_shipments_daily'


class Profile(Base):
    __tablename__ = 'profiles'

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, unique=True)
    full_name: Mapped[str | None] = mapped_column(Text)
    email: Mapped[str | None] = mapped_column(Text)
    business_name: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class UserRole(Base):
    __tablename__ = 'user_roles'
    __table_args__ = (UniqueConstraint('user_id', 'role', name='user_roles_user_id_role_key'),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    role: Mapped[AppRole] = mapped_column(_enum(AppRole, 'app_role'), nullable=False)
    status: Mapped[AccountStatus] = mapped_column(
        _enum(AccountStatus, 'account_status'), nullable=False, default=AccountStatus.PENDING
    )
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Supplier(Base):
    __tablename__ = 'suppliers'

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, index=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Order(Base):
    __tablename__ = 'orders'

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    supplier_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey('suppliers.id'), nullable=False)
    coffee_id: Mapped[uuid.UUID | None] = mapped_column(Uuid)
    quantity_kg: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    price_per_kg: Mapped[Decimal | None] = mapped_column(Numeric(12, 2))
    total_price: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))
    currency: Mapped[str] = mapped_column(Text, nullable=False, default='SAR', server_default='SAR')
    status: Mapped[OrderStatus] = mapped_column(
        _enum(OrderStatus, 'order_status'), nullable=False, default=OrderStatus.PENDING
    )
    payment_status: Mapped[PaymentStatus] = mapped_column(
        _enum(PaymentStatus, 'payment_status'), nullable=False, default=PaymentStatus.UNPAID
    )
    escrow_id: Mapped[str | None] = mapped_column(Text)
    notes: Mapped[str | None] = mapped_column(Text)
    order_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    expected_delivery: Mapped[date | None] = mapped_column(Date)
    actual_delivery: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class ShipmentTracking(Base):
    __tablename__ = 'shipment_tracking'

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey('orders.id', ondelete='CASCADE'), nullable=False)
    status: Mapped[str] = mapped_column(Text, nullable=False)
    tracking_number: Mapped[str | None] = mapped_column(Text)
    carrier: Mapped[str | None] = mapped_column(Text)
    location: Mapped[str | None] = mapped_column(Text)
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class CommissionSetting(Base):
    __tablename__ = 'commission_settings'

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    supplier_rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False, default=Decimal('5'))
    roaster_rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False, default=Decimal('5'))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Commission(Base):
    __tablename__ = 'commissions'

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey('orders.id'), nullable=False, unique=True)
    supplier_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey('suppliers.id'), nullable=False)
    roaster_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    order_total: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    supplier_rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    roaster_rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    supplier_commission: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    roaster_commission: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    total_commission: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    status: Mapped[str] = mapped_column(Text, nullable=False, default='pending', server_default='pending')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class DirectSupplyContract(Base):
    __tablename__ = 'direct_supply_contracts'

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    contract_number: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    buyer_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    seller_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    items: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    currency: Mapped[str] = mapped_column(Text, nullable=False, default='SAR', server_default='SAR')
    platform_commission_rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    platform_commission_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    commission_payment_method: Mapped[CommissionPaymentMethod | None] = mapped_column(
        _enum(CommissionPaymentMethod, 'commission_payment_method')
    )
    commission_paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    commission_transfer_receipt: Mapped[str | None] = mapped_column(Text)
    commission_confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    seller_signature: Mapped[str | None] = mapped_column(Text)
    seller_signed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    buyer_signature: Mapped[str | None] = mapped_column(Text)
    buyer_signed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    platform_signature: Mapped[str | None] = mapped_column(Text)
    platform_signed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    platform_signed_by: Mapped[uuid.UUID | None] = mapped_column(Uuid)
    seller_payment_confirmed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    seller_transfer_receipt: Mapped[str | None] = mapped_column(Text)
    seller_rejection_reason: Mapped[str | None] = mapped_column(Text)
    commission_refund_status: Mapped[str | None] = mapped_column(Text)
    cancellation_reason: Mapped[str | None] = mapped_column(Text)
    cancelled_by: Mapped[uuid.UUID | None] = mapped_column(Uuid)
    notes: Mapped[str | None] = mapped_column(Text)
    status: Mapped[ContractStatus] = mapped_column(
        _enum(ContractStatus, 'contract_status'), nullable=False, default=ContractStatus.PENDING_SELLER
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class ContractCopy(Base):
    __tablename__ = 'contract_copies'
    __table_args__ = (UniqueConstraint('contract_id', 'user_id', name='contract_copies_contract_user_key'),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    contract_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey('direct_supply_contracts.id', ondelete='CASCADE'), nullable=False
    )
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    user_role: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class InventoryItem(Base):
    __tablename__ = 'inventory'

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    coffee_name: Mapped[str] = mapped_column(Text, nullable=False)
    quantity_kg: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal('0'))
    min_quantity_kg: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal('0'))
    auto_reorder_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class CommissionReportSetting(Base):
    __tablename__ = 'commission_report_settings'

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, unique=True)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    report_day: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    report_hour: Mapped[int] = mapped_column(Integer, nullable=False, default=9)
    timezone: Mapped[str] = mapped_column(Text, nullable=False, default='Asia/Riyadh')
    email_override: Mapped[str | None] = mapped_column(Text)
    last_sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class ReportPreference(Base):
    __tablename__ = 'report_preferences'

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, unique=True)
    weekly_report_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    report_day: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    report_hour: Mapped[int] = mapped_column(Integer, nullable=False, default=9)
    email_override: Mapped[str | None] = mapped_column(Text)
    include_orders: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    include_low_stock: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    include_auto_reorders: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class DelayedShipmentAlertPreference(Base):
    __tablename__ = 'delayed_shipment_alert_preferences'

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, unique=True)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    email_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    days_threshold: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    report_hour: Mapped[int] = mapped_column(Integer, nullable=False, default=8)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class PerformanceAlertSetting(Base):
    __tablename__ = 'performance_alert_settings'

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, unique=True)
    threshold: Mapped[int] = mapped_column(Integer, nullable=False, default=40)
    timezone: Mapped[str] = mapped_column(Text, nullable=False, default='Asia/Riyadh')
    email_alerts: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    push_alerts: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    weekly_report_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    weekly_report_day: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    weekly_report_hour: Mapped[int] = mapped_column(Integer, nullable=False, default=9)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class PerformanceAlertLog(Base):
    __tablename__ = 'performance_alert_logs'

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    recipient_email: Mapped[str] = mapped_column(Text, nullable=False)
    score: Mapped[Decimal] = mapped_column(Numeric(6, 2), nullable=False)
    threshold: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(Text, nullable=False)
    alert_data: Mapped[dict | None] = mapped_column(JSON)
    sent_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class SentReport(Base):
    __tablename__ = 'sent_reports'

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    report_type: Mapped[str] = mapped_column(Text, nullable=False)
    recipient_email: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[ReportStatus] = mapped_column(_enum(ReportStatus, 'report_status'), nullable=False)
    is_test: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    error_message: Mapped[str | None] = mapped_column(Text)
    report_data: Mapped[dict | None] = mapped_column(JSON)
    sent_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class AuditLog(Base):
    __tablename__ = 'audit_log'

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    actor_user_id: Mapped[uuid.UUID | None] = mapped_column(Uuid)
    action: Mapped[str] = mapped_column(Text, nullable=False)
    entity_type: Mapped[str] = mapped_column(Text, nullable=False)
    entity_id: Mapped[uuid.UUID | None] = mapped_column(Uuid)
    meta: Mapped[dict] = mapped_column('metadata', JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

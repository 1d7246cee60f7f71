from __future__ import annotations

import logging
import uuid
from datetime import date, datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from dalcoffee.config import settings
from dalcoffee.models import DelayedShipmentAlertPreference, Order, OrderStatus, ReportType, Supplier
from dalcoffee.services.reports.runner import (
    Delivery,
    JobRequest,
    RunResult,
    deliver,
    format_arabic_date,
    is_due,
    profile_emails,
    resolve_zone,
    utcnow,
)
from dalcoffee.templating import render_email


logger = logging.getLogger(__name__)

CRITICAL_DELAY_DAYS = 7
UNKNOWN_SUPPLIER = 'غير معروف'


def local_today(now: datetime) -> date:
    return now.astimezone(resolve_zone(settings.default_timezone)).date()


def summarize_delayed_shipments(db: Session, *, user_id: uuid.UUID, today: date, days_threshold: int = 1) -> dict:
    """Open orders of one buyer whose expected delivery date has passed."""
    rows = db.execute(
        select(Order, Supplier.name)
        .outerjoin(Supplier, Supplier.id == Order.supplier_id)
        .where(
            Order.user_id == user_id,
            Order.status.not_in([OrderStatus.DELIVERED, OrderStatus.CANCELLED]),
            Order.expected_delivery.is_not(None),
            Order.expected_delivery < today,
        )
        .order_by(Order.expected_delivery)
    ).all()

    orders = []
    for order, supplier_name in rows:
        days_delayed = (today - order.expected_delivery).days
        if days_delayed < days_threshold:
            continue
        orders.append(
            {
                'id': str(order.id),
                'expected_delivery': order.expected_delivery.isoformat(),
                'quantity_kg': float(order.quantity_kg),
                'days_delayed': days_delayed,
                'supplier_name': supplier_name or UNKNOWN_SUPPLIER,
            }
        )

    total = len(orders)
    return {
        'total_delayed': total,
        'avg_delay': round(sum(o['days_delayed'] for o in orders) / total) if total else 0,
        'critical_count': sum(1 for o in orders if o['days_delayed'] > CRITICAL_DELAY_DAYS),
        'orders': orders,
    }


def run_daily_delayed_shipment_report(db: Session, request: JobRequest, *, now: datetime | None = None) -> RunResult:
    """Daily list of overdue shipments for buyers with delayed-shipment email alerts on."""
    now = now or utcnow()
    today = local_today(now)

    query = select(DelayedShipmentAlertPreference)
    if request.user_id is not None:
        query = query.where(DelayedShipmentAlertPreference.user_id == request.user_id)
    else:
        query = query.where(
            DelayedShipmentAlertPreference.enabled.is_(True),
            DelayedShipmentAlertPreference.email_enabled.is_(True),
        )
    subscribers = db.execute(query).scalars().all()
    if not subscribers:
        return RunResult(message='No reports to send')

    due = [
        s for s in subscribers if request.test_mode or is_due(now, settings.default_timezone, s.report_hour, None)
    ]
    emails = profile_emails(db, [s.user_id for s in due])

    result = RunResult()
    deliveries = []
    for subscriber in due:
        data = summarize_delayed_shipments(
            db, user_id=subscriber.user_id, today=today, days_threshold=subscriber.days_threshold
        )
        if not data['total_delayed']:
            logger.info('No delayed shipments for user %s', subscriber.user_id)
            continue
        recipient = request.email if request.test_mode and request.email else emails.get(subscriber.user_id)
        if not recipient:
            logger.warning('No email address for delayed-shipment subscriber %s', subscriber.user_id)
            result.errors.append(f'No email address for user {subscriber.user_id}')
            continue
        deliveries.append(
            Delivery(
                user_id=subscriber.user_id,
                recipients=[recipient],
                subject=f"تقرير الشحنات المتأخرة - {data['total_delayed']} شحنة متأخرة",
                html=render_email(
                    'delayed_shipment_report.html',
                    data=data,
                    report_date=format_arabic_date(now),
                    critical_days=CRITICAL_DELAY_DAYS,
                    is_test=request.test_mode,
                ),
                report_data=data,
            )
        )

    if not deliveries and not result.errors:
        return RunResult(message='No delayed shipments')
    return deliver(
        db, deliveries, report_type=ReportType.DELAYED_SHIPMENTS_DAILY.value, is_test=request.test_mode, result=result
    )

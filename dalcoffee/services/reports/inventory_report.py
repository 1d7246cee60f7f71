from __future__ import annotations

import logging
import uuid
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from dalcoffee.config import settings
from dalcoffee.models import InventoryItem, Order, ReportPreference, ReportType
from dalcoffee.services.order_service import AUTO_REORDER_NOTE
from dalcoffee.services.reports.runner import (
    Delivery,
    JobRequest,
    ReportWindow,
    RunResult,
    deliver,
    format_arabic_date,
    is_due,
    profile_emails,
    profile_names,
    trailing_window,
    utcnow,
)
from dalcoffee.templating import render_email


logger = logging.getLogger(__name__)


def summarize_inventory(db: Session, *, user_id: uuid.UUID, window: ReportWindow) -> dict:
    orders = db.execute(
        select(Order.total_price, Order.notes).where(
            Order.user_id == user_id,
            Order.created_at >= window.start,
            Order.created_at < window.end,
        )
    ).all()
    low_stock = db.execute(
        select(InventoryItem)
        .where(InventoryItem.user_id == user_id, InventoryItem.quantity_kg <= InventoryItem.min_quantity_kg)
        .order_by(InventoryItem.quantity_kg)
    ).scalars().all()

    return {
        'total_orders': len(orders),
        'total_spent': round(sum(float(o.total_price or 0) for o in orders), 2),
        'auto_reorders': sum(1 for o in orders if AUTO_REORDER_NOTE in (o.notes or '')),
        'low_stock_items': [
            {'name': item.coffee_name, 'quantity': float(item.quantity_kg), 'min_quantity': float(item.min_quantity_kg)}
            for item in low_stock
        ],
    }


def run_weekly_inventory_report(db: Session, request: JobRequest, *, now: datetime | None = None) -> RunResult:
    """Weekly orders and low-stock digest for report_preferences subscribers."""
    now = now or utcnow()
    window = trailing_window(now)

    query = select(ReportPreference).where(ReportPreference.weekly_report_enabled.is_(True))
    if request.user_id is not None:
        query = query.where(ReportPreference.user_id == request.user_id)
    subscribers = db.execute(query).scalars().all()
    if not subscribers:
        return RunResult(message='No reports to send')

    due = [
        s
        for s in subscribers
        if request.test_mode or is_due(now, settings.default_timezone, s.report_hour, s.report_day)
    ]
    user_ids = [s.user_id for s in due]
    emails = profile_emails(db, user_ids)
    names = profile_names(db, user_ids)

    result = RunResult()
    deliveries = []
    for subscriber in due:
        if request.test_mode and request.email:
            recipient = request.email
        else:
            recipient = subscriber.email_override or emails.get(subscriber.user_id)
        if not recipient:
            logger.warning('No email address for inventory report subscriber %s', subscriber.user_id)
            result.errors.append(f'No email address for user {subscriber.user_id}')
            continue

        data = summarize_inventory(db, user_id=subscriber.user_id, window=window)
        html = render_email(
            'inventory_report.html',
            data=data,
            user_name=names.get(subscriber.user_id, ''),
            include_orders=subscriber.include_orders,
            include_low_stock=subscriber.include_low_stock,
            include_auto_reorders=subscriber.include_auto_reorders,
            period=window,
            is_test=request.test_mode,
        )
        deliveries.append(
            Delivery(
                user_id=subscriber.user_id,
                recipients=[recipient],
                subject=f'تقرير المخزون الأسبوعي - {format_arabic_date(now)}',
                html=html,
                report_data={
                    'totalOrders': data['total_orders'],
                    'totalSpent': data['total_spent'],
                    'autoReorders': data['auto_reorders'],
                    'lowStockCount': len(data['low_stock_items']),
                },
            )
        )

    return deliver(
        db, deliveries, report_type=ReportType.WEEKLY_INVENTORY.value, is_test=request.test_mode, result=result
    )

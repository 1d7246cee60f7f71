from __future__ import annotations

import logging
import uuid
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from dalcoffee.models import Commission, CommissionReportSetting, ReportType, Supplier
from dalcoffee.services.reports.runner import (
    Delivery,
    JobRequest,
    ReportWindow,
    RunResult,
    approved_admin_ids,
    broadcast,
    deliver,
    format_arabic_date,
    is_due,
    profile_emails,
    trailing_window,
    utcnow,
)
from dalcoffee.templating import render_email


logger = logging.getLogger(__name__)

TOP_SUPPLIERS = 5


def summarize_commissions(db: Session, window: ReportWindow) -> dict:
    rows = db.execute(
        select(Commission, Supplier.name)
        .join(Supplier, Supplier.id == Commission.supplier_id, isouter=True)
        .where(Commission.created_at >= window.start, Commission.created_at < window.end)
        .order_by(Commission.created_at.desc())
    ).all()

    total = supplier_side = roaster_side = order_value = 0.0
    by_supplier: dict[str, dict] = {}
    for commission, supplier_name in rows:
        total += float(commission.total_commission)
        supplier_side += float(commission.supplier_commission)
        roaster_side += float(commission.roaster_commission)
        order_value += float(commission.order_total)
        name = supplier_name or 'Unknown'
        entry = by_supplier.setdefault(name, {'name': name, 'total': 0.0, 'count': 0})
        entry['total'] += float(commission.total_commission)
        entry['count'] += 1

    count = len(rows)
    top = sorted(by_supplier.values(), key=lambda e: e['total'], reverse=True)[:TOP_SUPPLIERS]
    return {
        'total_commission': round(total, 2),
        'supplier_commission': round(supplier_side, 2),
        'roaster_commission': round(roaster_side, 2),
        'order_value': round(order_value, 2),
        'count': count,
        'average_commission': round(total / count, 2) if count else 0.0,
        'top_suppliers': [{**e, 'total': round(e['total'], 2)} for e in top],
    }


def percent_change(current: float, previous: float) -> float:
    if previous == 0:
        return 100.0 if current > 0 else 0.0
    return round((current - previous) / previous * 100, 1)


def _subject(now: datetime) -> str:
    return f'تقرير العمولات الأسبوعي - {format_arabic_date(now)}'


def _report_data(window: ReportWindow, summary: dict) -> dict:
    return {
        'period_start': window.start.isoformat(),
        'period_end': window.end.isoformat(),
        'total_commission': summary['total_commission'],
        'count': summary['count'],
        'average_commission': summary['average_commission'],
    }


def run_scheduled_commission_report(db: Session, request: JobRequest, *, now: datetime | None = None) -> RunResult:
    """Per-subscriber commission summary driven by commission_report_settings."""
    now = now or utcnow()
    window = trailing_window(now)

    if request.test_mode and request.email:
        owner = request.user_id or request.requested_by
        if owner is None:
            raise ValueError('userId is required for a test report sent by the scheduler')
        summary = summarize_commissions(db, window)
        html = render_email('commission_report.html', summary=summary, change=None, period=window, is_test=True)
        delivery = Delivery(
            user_id=owner,
            recipients=[request.email],
            subject=_subject(now),
            html=html,
            report_data=_report_data(window, summary),
        )
        return deliver(db, [delivery], report_type=ReportType.SCHEDULED_COMMISSION.value, is_test=True)

    query = select(CommissionReportSetting).where(CommissionReportSetting.enabled.is_(True))
    if request.user_id is not None:
        query = query.where(CommissionReportSetting.user_id == request.user_id)
    subscribers = db.execute(query).scalars().all()
    if not subscribers:
        logger.info('No enabled commission report settings found')
        return RunResult(message='No reports to send')

    due = [
        s for s in subscribers if request.test_mode or is_due(now, s.timezone, s.report_hour, s.report_day)
    ]
    if not due:
        return RunResult(message='No reports due')

    emails = profile_emails(db, [s.user_id for s in due])
    summary = summarize_commissions(db, window)
    html = render_email('commission_report.html', summary=summary, change=None, period=window, is_test=request.test_mode)

    result = RunResult()
    deliveries = []
    settings_by_user: dict[uuid.UUID, CommissionReportSetting] = {}
    for subscriber in due:
        recipient = subscriber.email_override or emails.get(subscriber.user_id)
        if not recipient:
            logger.warning('No email address for commission report subscriber %s', subscriber.user_id)
            result.errors.append(f'No email address for user {subscriber.user_id}')
            continue
        settings_by_user[subscriber.user_id] = subscriber
        deliveries.append(
            Delivery(
                user_id=subscriber.user_id,
                recipients=[recipient],
                subject=_subject(now),
                html=html,
                report_data=_report_data(window, summary),
            )
        )

    def _mark_sent(delivery: Delivery) -> None:
        settings_by_user[delivery.user_id].last_sent_at = now

    return deliver(
        db,
        deliveries,
        report_type=ReportType.SCHEDULED_COMMISSION.value,
        is_test=request.test_mode,
        result=result,
        on_sent=_mark_sent,
    )


def run_weekly_commission_report(db: Session, request: JobRequest, *, now: datetime | None = None) -> RunResult:
    """Platform-wide commission summary broadcast to every approved admin."""
    now = now or utcnow()
    window = trailing_window(now)

    admin_ids = approved_admin_ids(db)
    if request.test_mode and request.email:
        recipients = [request.email]
    else:
        recipients = list(profile_emails(db, admin_ids).values())
    owner = request.requested_by or (admin_ids[0] if admin_ids else None)
    if owner is None or not recipients:
        logger.info('Weekly commission report has no recipients')
        return RunResult(message='No recipient emails found')

    summary = summarize_commissions(db, window)
    previous = summarize_commissions(db, window.previous())
    change = {
        'total_change': percent_change(summary['total_commission'], previous['total_commission']),
        'count_change': percent_change(summary['count'], previous['count']),
    }
    html = render_email('commission_report.html', summary=summary, change=change, period=window, is_test=request.test_mode)
    delivery = Delivery(
        user_id=owner,
        recipients=recipients,
        subject=f'التقرير الأسبوعي للعمولات - {format_arabic_date(now)}',
        html=html,
        report_data={**_report_data(window, summary), **change},
    )
    return broadcast(db, delivery, report_type=ReportType.WEEKLY_COMMISSION.value, is_test=request.test_mode)

from __future__ import annotations

import logging
import uuid
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from dalcoffee.models import PerformanceAlertLog, PerformanceAlertSetting, ReportType
from dalcoffee.services.reports.runner import (
    Delivery,
    JobRequest,
    ReportWindow,
    RunResult,
    deliver,
    format_arabic_date,
    is_due,
    profile_emails,
    trailing_window,
    utcnow,
)
from dalcoffee.templating import render_email


logger = logging.getLogger(__name__)

SMART_CHECK = 'smart_check'


def summarize_smart_checks(db: Session, *, user_id: uuid.UUID, threshold: int, window: ReportWindow) -> dict:
    logs = db.execute(
        select(PerformanceAlertLog).where(
            PerformanceAlertLog.user_id == user_id,
            PerformanceAlertLog.sent_at >= window.start,
            PerformanceAlertLog.sent_at < window.end,
        )
    ).scalars().all()
    checks = [log for log in logs if (log.alert_data or {}).get('type') == SMART_CHECK]

    high = sum(1 for log in checks if log.alert_data.get('risk_level') == 'high')
    medium = sum(1 for log in checks if log.alert_data.get('risk_level') == 'medium')
    total = len(checks)
    average = sum(float(log.score) for log in checks) / total if total else 0.0
    return {
        'total_checks': total,
        'high_risk': high,
        'medium_risk': medium,
        'low_risk': total - high - medium,
        'average_score': round(average, 1),
        'threshold': threshold,
    }


def run_weekly_smart_check_report(db: Session, request: JobRequest, *, now: datetime | None = None) -> RunResult:
    now = now or utcnow()
    window = trailing_window(now)

    query = select(PerformanceAlertSetting)
    if request.user_id is not None:
        query = query.where(PerformanceAlertSetting.user_id == request.user_id)
    else:
        query = query.where(PerformanceAlertSetting.weekly_report_enabled.is_(True))
    subscribers = db.execute(query).scalars().all()
    if not subscribers:
        return RunResult(message='No reports to send')

    due = [
        s
        for s in subscribers
        if request.test_mode or is_due(now, s.timezone, s.weekly_report_hour, s.weekly_report_day)
    ]
    emails = profile_emails(db, [s.user_id for s in due])

    result = RunResult()
    deliveries = []
    for subscriber in due:
        recipient = request.email if request.test_mode and request.email else emails.get(subscriber.user_id)
        if not recipient:
            logger.warning('No email address for smart-check subscriber %s', subscriber.user_id)
            result.errors.append(f'No email address for user {subscriber.user_id}')
            continue
        data = summarize_smart_checks(db, user_id=subscriber.user_id, threshold=subscriber.threshold, window=window)
        deliveries.append(
            Delivery(
                user_id=subscriber.user_id,
                recipients=[recipient],
                subject=f'التقرير الأسبوعي للفحوصات الذكية - {format_arabic_date(now)}',
                html=render_email('smart_check_report.html', data=data, period=window, is_test=request.test_mode),
                report_data=data,
            )
        )

    return deliver(
        db, deliveries, report_type=ReportType.WEEKLY_SMART_CHECK.value, is_test=request.test_mode, result=result
    )

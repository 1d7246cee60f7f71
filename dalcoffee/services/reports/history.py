from __future__ import annotations

import uuid
from datetime import datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from dalcoffee.auth import Principal
from dalcoffee.models import ReportStatus, SentReport
from dalcoffee.services.reports.registry import JOBS_BY_TYPE
from dalcoffee.services.reports.runner import JobRequest, RunResult, utcnow


def list_sent_reports(
    db: Session,
    *,
    principal: Principal,
    report_type: str | None = None,
    status: ReportStatus | None = None,
    include_test: bool = True,
    limit: int = 100,
) -> list[SentReport]:
    query = select(SentReport).order_by(SentReport.sent_at.desc()).limit(max(1, min(limit, 500)))
    if not principal.is_admin:
        query = query.where(SentReport.user_id == principal.user_id)
    if report_type:
        query = query.where(SentReport.report_type == report_type)
    if status is not None:
        query = query.where(SentReport.status == status)
    if not include_test:
        query = query.where(SentReport.is_test.is_(False))
    return db.execute(query).scalars().all()


def report_statistics(db: Session, *, principal: Principal, now: datetime | None = None) -> dict:
    now = now or utcnow()
    week_start = now - timedelta(days=7)
    month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)

    base = select(SentReport.status, SentReport.sent_at).where(SentReport.is_test.is_(False))
    if not principal.is_admin:
        base = base.where(SentReport.user_id == principal.user_id)
    subquery = base.subquery()

    def _count(*conditions) -> int:
        return db.execute(select(func.count()).select_from(subquery).where(*conditions)).scalar_one()

    total = _count()
    sent = _count(subquery.c.status == ReportStatus.SENT)
    return {
        'total': total,
        'sent': sent,
        'failed': _count(subquery.c.status == ReportStatus.FAILED),
        'success_rate': round(sent / total * 100, 1) if total else 0.0,
        'this_week': _count(subquery.c.sent_at >= week_start),
        'this_month': _count(subquery.c.sent_at >= month_start),
    }


def resend_report(db: Session, *, report_id: uuid.UUID, principal: Principal) -> RunResult:
    """Re-run the job behind a logged report, in test mode, to the same recipient."""
    report = db.get(SentReport, report_id)
    if report is None:
        raise LookupError('Report not found')
    if not principal.is_admin and report.user_id != principal.user_id:
        raise PermissionError('You cannot resend this report')
    job = JOBS_BY_TYPE.get(report.report_type)
    if job is None:
        raise ValueError(f'Reports of type {report.report_type} cannot be resent')

    recipient = report.recipient_email.split(',')[0].strip()
    request = JobRequest(test_mode=True, user_id=report.user_id, email=recipient, requested_by=principal.user_id)
    return job(db, request)

"""Shared pieces of the scheduled report jobs.

Each job selects its due subscribers, aggregates a trailing window, then hands
a list of deliveries to `deliver`, which sends them one at a time and appends
to `sent_reports`. A failed send is recorded and the loop moves on.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import select
from sqlalchemy.orm import Session

from dalcoffee.config import settings
from dalcoffee.models import AccountStatus, AppRole, Profile, ReportStatus, SentReport, UserRole
from dalcoffee.services.change_feed import publish_on_commit
from dalcoffee.services.email_service import EmailDeliveryError, EmailMessage, send_email


logger = logging.getLogger(__name__)

ARABIC_MONTHS = (
    'يناير', 'فبراير', 'مارس', 'أبريل', 'مايو', 'يونيو',
    'يوليو', 'أغسطس', 'سبتمبر', 'أكتوبر', 'نوفمبر', 'ديسمبر',
)


@dataclass(frozen=True)
class JobRequest:
    test_mode: bool = False
    user_id: uuid.UUID | None = None
    email: str | None = None
    requested_by: uuid.UUID | None = None


@dataclass(frozen=True)
class ReportWindow:
    """Half-open interval: rows stamped at `end` belong to the next window."""

    start: datetime
    end: datetime

    @property
    def start_label(self) -> str:
        return format_arabic_date(self.start)

    @property
    def end_label(self) -> str:
        return format_arabic_date(self.end)

    def previous(self) -> ReportWindow:
        return ReportWindow(start=self.start - (self.end - self.start), end=self.start)


@dataclass
class Delivery:
    user_id: uuid.UUID
    recipients: list[str]
    subject: str
    html: str
    report_data: dict = field(default_factory=dict)


@dataclass
class RunResult:
    sent: int = 0
    total: int = 0
    errors: list[str] = field(default_factory=list)
    message: str | None = None

    def as_response(self) -> dict:
        body: dict = {'success': True, 'sent': self.sent, 'total': self.total}
        if self.errors:
            body['errors'] = self.errors
        if self.message:
            body['message'] = self.message
        return body


def utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def format_arabic_date(value: datetime) -> str:
    return f'{value.day} {ARABIC_MONTHS[value.month - 1]} {value.year}'


def trailing_window(now: datetime, days: int | None = None) -> ReportWindow:
    days = settings.report_window_days if days is None else days
    return ReportWindow(start=now - timedelta(days=days), end=now)


def resolve_zone(tz_name: str | None) -> ZoneInfo:
    try:
        return ZoneInfo(tz_name or settings.default_timezone)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning('Unknown timezone %r, falling back to UTC', tz_name)
        return ZoneInfo('UTC')


def is_due(now: datetime, tz_name: str | None, hour: int, day: int | None, *, window_minutes: int | None = None) -> bool:
    """True when `now` falls in the subscriber's scheduled slot.

    `day` counts from Sunday = 0; None means every day. The slot opens on the
    hour and stays open for `window_minutes`, so an hourly trigger that fires a
    little late still matches while a second trigger later in the hour does not.
    """
    window_minutes = settings.schedule_window_minutes if window_minutes is None else window_minutes
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    local = now.astimezone(resolve_zone(tz_name))
    local_day = (local.weekday() + 1) % 7
    return (day is None or local_day == day) and local.hour == hour and local.minute < window_minutes


def approved_admin_ids(db: Session) -> list[uuid.UUID]:
    return list(
        db.execute(
            select(UserRole.user_id)
            .where(UserRole.role == AppRole.ADMIN, UserRole.status == AccountStatus.APPROVED)
            .order_by(UserRole.created_at)
        ).scalars()
    )


def profile_emails(db: Session, user_ids: list[uuid.UUID]) -> dict[uuid.UUID, str]:
    if not user_ids:
        return {}
    rows = db.execute(select(Profile.user_id, Profile.email).where(Profile.user_id.in_(user_ids))).all()
    return {row.user_id: row.email for row in rows if row.email}


def profile_names(db: Session, user_ids: list[uuid.UUID]) -> dict[uuid.UUID, str]:
    if not user_ids:
        return {}
    rows = db.execute(select(Profile.user_id, Profile.full_name).where(Profile.user_id.in_(user_ids))).all()
    return {row.user_id: row.full_name for row in rows if row.full_name}


def record_sent_report(
    db: Session,
    *,
    user_id: uuid.UUID,
    report_type: str,
    recipient_email: str,
    status: ReportStatus,
    is_test: bool,
    report_data: dict | None = None,
    error_message: str | None = None,
    sent_at: datetime | None = None,
) -> SentReport:
    row = SentReport(
        user_id=user_id,
        report_type=report_type,
        recipient_email=recipient_email,
        status=status,
        is_test=is_test,
        report_data=report_data or {},
        error_message=error_message,
        sent_at=sent_at or utcnow(),
    )
    db.add(row)
    db.flush()
    publish_on_commit(db, 'sent_reports', 'INSERT', row.id)
    return row


def deliver(
    db: Session,
    deliveries: list[Delivery],
    *,
    report_type: str,
    is_test: bool,
    result: RunResult | None = None,
    on_sent: Callable[[Delivery], None] | None = None,
) -> RunResult:
    """Send one email per recipient and log each outcome to sent_reports."""
    result = result or RunResult()
    for delivery in deliveries:
        for recipient in delivery.recipients:
            result.total += 1
            try:
                send_email(EmailMessage(to=[recipient], subject=delivery.subject, html=delivery.html))
            except EmailDeliveryError as exc:
                logger.warning('%s report to %s failed: %s', report_type, recipient, exc)
                result.errors.append(f'Failed to send to {recipient}: {exc}')
                record_sent_report(
                    db,
                    user_id=delivery.user_id,
                    report_type=report_type,
                    recipient_email=recipient,
                    status=ReportStatus.FAILED,
                    is_test=is_test,
                    report_data=delivery.report_data,
                    error_message=str(exc),
                )
                continue
            result.sent += 1
            record_sent_report(
                db,
                user_id=delivery.user_id,
                report_type=report_type,
                recipient_email=recipient,
                status=ReportStatus.SENT,
                is_test=is_test,
                report_data=delivery.report_data,
            )
            if on_sent is not None:
                on_sent(delivery)
    logger.info('%s report run finished: %s/%s sent', report_type, result.sent, result.total)
    return result


def broadcast(db: Session, delivery: Delivery, *, report_type: str, is_test: bool) -> RunResult:
    """Send the same report to every recipient and log the run as a single sent_reports row."""
    result = RunResult()
    for recipient in delivery.recipients:
        result.total += 1
        try:
            send_email(EmailMessage(to=[recipient], subject=delivery.subject, html=delivery.html))
        except EmailDeliveryError as exc:
            logger.warning('%s report to %s failed: %s', report_type, recipient, exc)
            result.errors.append(f'Failed to send to {recipient}: {exc}')
            continue
        result.sent += 1

    record_sent_report(
        db,
        user_id=delivery.user_id,
        report_type=report_type,
        recipient_email=', '.join(delivery.recipients),
        status=ReportStatus.SENT if result.sent else ReportStatus.FAILED,
        is_test=is_test,
        report_data={**delivery.report_data, 'recipients': result.total, 'delivered': result.sent},
        error_message='; '.join(result.errors) or None,
    )
    logger.info('%s broadcast finished: %s/%s sent', report_type, result.sent, result.total)
    return result

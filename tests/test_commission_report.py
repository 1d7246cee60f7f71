from __future__ import annotations

import unittest
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import patch

from sqlalchemy import select

from dalcoffee.models import AppRole, Commission, CommissionReportSetting, ReportStatus, SentReport
from dalcoffee.services.reports.commission_report import (
    percent_change,
    run_scheduled_commission_report,
    run_weekly_commission_report,
    summarize_commissions,
)
from dalcoffee.services.reports.runner import JobRequest, trailing_window
from tests.support import add_order, add_supplier, add_user, make_session_factory

# Sunday 09:00 in Riyadh.
NOW = datetime(2024, 6, 2, 6, 0, tzinfo=timezone.utc)


class PercentChangeTests(unittest.TestCase):
    def test_change_against_previous_period(self) -> None:
        self.assertEqual(percent_change(150, 100), 50.0)
        self.assertEqual(percent_change(50, 200), -75.0)

    def test_change_from_zero(self) -> None:
        self.assertEqual(percent_change(10, 0), 100.0)
        self.assertEqual(percent_change(0, 0), 0.0)


class CommissionReportTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session_factory()()
        self.send = patch('dalcoffee.services.reports.runner.send_email', return_value={}).start()
        patch('dalcoffee.services.change_feed.change_feed').start()
        self.addCleanup(patch.stopall)
        self.addCleanup(self.db.close)

        self.buyer_id = add_user(self.db, role=AppRole.ROASTER)
        self.beans = add_supplier(self.db, owner_id=add_user(self.db, role=AppRole.SUPPLIER), name='Beans')
        self.harvest = add_supplier(self.db, owner_id=add_user(self.db, role=AppRole.SUPPLIER), name='Harvest')

    def _commission(self, supplier, total: str, created_at: datetime) -> None:
        order = add_order(self.db, buyer_id=self.buyer_id, supplier=supplier, total=total)
        amount = Decimal(total) / Decimal('10')
        self.db.add(
            Commission(
                order_id=order.id,
                supplier_id=supplier.id,
                roaster_id=self.buyer_id,
                order_total=Decimal(total),
                supplier_rate=Decimal('5'),
                roaster_rate=Decimal('5'),
                supplier_commission=amount / 2,
                roaster_commission=amount / 2,
                total_commission=amount,
                created_at=created_at,
            )
        )
        self.db.flush()

    def _subscriber(self, *, email: str | None = 'owner@example.com', **kwargs) -> CommissionReportSetting:
        user_id = add_user(self.db, role=AppRole.ADMIN, email=email)
        setting = CommissionReportSetting(user_id=user_id, report_day=0, report_hour=9, timezone='Asia/Riyadh', **kwargs)
        self.db.add(setting)
        self.db.flush()
        return setting

    def test_summary_only_counts_the_window(self) -> None:
        self._commission(self.beans, '1000', datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc))
        self._commission(self.beans, '3000', datetime(2024, 5, 30, 12, 0, tzinfo=timezone.utc))
        self._commission(self.harvest, '2000', datetime(2024, 5, 29, 12, 0, tzinfo=timezone.utc))
        self._commission(self.harvest, '9000', datetime(2024, 5, 20, 12, 0, tzinfo=timezone.utc))

        window = trailing_window(NOW)
        summary = summarize_commissions(self.db, window)
        self.assertEqual(summary['count'], 3)
        self.assertEqual(summary['total_commission'], 600.0)
        self.assertEqual(summary['average_commission'], 200.0)
        self.assertEqual(summary['order_value'], 6000.0)
        self.assertEqual([s['name'] for s in summary['top_suppliers']], ['Beans', 'Harvest'])
        self.assertEqual(summary['top_suppliers'][0], {'name': 'Beans', 'total': 400.0, 'count': 2})

        previous = summarize_commissions(self.db, window.previous())
        self.assertEqual(previous['count'], 1)
        self.assertEqual(previous['total_commission'], 900.0)

    def test_commission_on_the_boundary_belongs_to_one_window(self) -> None:
        window = trailing_window(NOW)
        self._commission(self.beans, '1000', window.start)

        self.assertEqual(summarize_commissions(self.db, window)['count'], 1)
        self.assertEqual(summarize_commissions(self.db, window.previous())['count'], 0)

    def test_empty_window_summary(self) -> None:
        summary = summarize_commissions(self.db, trailing_window(NOW))
        self.assertEqual(summary['count'], 0)
        self.assertEqual(summary['average_commission'], 0.0)
        self.assertEqual(summary['top_suppliers'], [])

    def test_scheduled_report_only_sends_to_due_subscribers(self) -> None:
        due = self._subscriber()
        later = self._subscriber(email='later@example.com')
        later.report_hour = 10
        self.db.flush()

        result = run_scheduled_commission_report(self.db, JobRequest(), now=NOW)

        self.assertEqual((result.sent, result.total), (1, 1))
        message = self.send.call_args.args[0]
        self.assertEqual(message.to, ['owner@example.com'])
        self.assertIn('تقرير العمولات', message.subject)
        self.assertEqual(due.last_sent_at, NOW)
        self.assertIsNone(later.last_sent_at)

        row = self.db.execute(select(SentReport)).scalar_one()
        self.assertEqual(row.report_type, 'scheduled_commission')
        self.assertEqual(row.status, ReportStatus.SENT)
        self.assertFalse(row.is_test)

    def test_scheduled_report_outside_the_slot_sends_nothing(self) -> None:
        self._subscriber()
        result = run_scheduled_commission_report(
            self.db, JobRequest(), now=datetime(2024, 6, 2, 6, 30, tzinfo=timezone.utc)
        )
        self.assertEqual(result.message, 'No reports due')
        self.send.assert_not_called()

    def test_scheduled_report_prefers_email_override(self) -> None:
        self._subscriber(email_override='finance@example.com')
        run_scheduled_commission_report(self.db, JobRequest(), now=NOW)
        self.assertEqual(self.send.call_args.args[0].to, ['finance@example.com'])

    def test_scheduled_report_records_missing_email(self) -> None:
        self._subscriber(email=None)
        result = run_scheduled_commission_report(self.db, JobRequest(), now=NOW)
        self.assertEqual(result.sent, 0)
        self.assertEqual(len(result.errors), 1)

    def test_scheduled_test_send_needs_an_owner(self) -> None:
        with self.assertRaises(ValueError):
            run_scheduled_commission_report(self.db, JobRequest(test_mode=True, email='qa@example.com'), now=NOW)

        owner = uuid.uuid4()
        result = run_scheduled_commission_report(
            self.db, JobRequest(test_mode=True, email='qa@example.com', user_id=owner), now=NOW
        )
        self.assertEqual(result.sent, 1)
        row = self.db.execute(select(SentReport)).scalar_one()
        self.assertTrue(row.is_test)
        self.assertEqual(row.user_id, owner)

    def test_weekly_report_runs_each_log_one_row_with_their_test_flag(self) -> None:
        admin_id = add_user(self.db, role=AppRole.ADMIN, email='admin@example.com')

        run_weekly_commission_report(
            self.db, JobRequest(test_mode=True, email='qa@example.com', requested_by=admin_id), now=NOW
        )
        run_weekly_commission_report(self.db, JobRequest(), now=NOW)

        rows = self.db.execute(select(SentReport).order_by(SentReport.recipient_email)).scalars().all()
        self.assertEqual(len(rows), 2)
        self.assertEqual(
            [(r.recipient_email, r.is_test) for r in rows],
            [('admin@example.com', False), ('qa@example.com', True)],
        )
        self.assertTrue(all(r.report_type == 'weekly_commission' for r in rows))

    def test_weekly_report_without_admins(self) -> None:
        result = run_weekly_commission_report(self.db, JobRequest(), now=NOW)
        self.assertEqual(result.message, 'No recipient emails found')
        self.send.assert_not_called()


if __name__ == '__main__':
    unittest.main()

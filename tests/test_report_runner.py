from __future__ import annotations

import unittest
import uuid
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

from sqlalchemy import select

from dalcoffee.models import ReportStatus, SentReport
from dalcoffee.services.email_service import EmailDeliveryError, send_email
from dalcoffee.services.reports.runner import (
    Delivery,
    RunResult,
    broadcast,
    deliver,
    format_arabic_date,
    is_due,
    trailing_window,
)
from tests.support import make_session_factory


def _utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


class IsDueTests(unittest.TestCase):
    # 2024-06-02 is a Sunday; 09:00 in Riyadh is 06:00 UTC.

    def test_due_at_the_top_of_the_local_hour(self) -> None:
        self.assertTrue(is_due(_utc(2024, 6, 2, 6, 0), 'Asia/Riyadh', 9, 0))

    def test_not_due_after_the_window_closes(self) -> None:
        self.assertFalse(is_due(_utc(2024, 6, 2, 6, 1), 'Asia/Riyadh', 9, 0))
        self.assertTrue(is_due(_utc(2024, 6, 2, 6, 4), 'Asia/Riyadh', 9, 0, window_minutes=5))

    def test_not_due_on_another_day_or_hour(self) -> None:
        self.assertFalse(is_due(_utc(2024, 6, 3, 6, 0), 'Asia/Riyadh', 9, 0))
        self.assertFalse(is_due(_utc(2024, 6, 2, 9, 0), 'Asia/Riyadh', 9, 0))

    def test_daily_slot_matches_any_day(self) -> None:
        self.assertTrue(is_due(_utc(2024, 6, 3, 5, 0), 'Asia/Riyadh', 8, None))
        self.assertFalse(is_due(_utc(2024, 6, 3, 6, 0), 'Asia/Riyadh', 8, None))

    def test_local_day_is_used_across_midnight(self) -> None:
        # Saturday 22:00 UTC is already Sunday 01:00 in Riyadh.
        self.assertTrue(is_due(_utc(2024, 6, 1, 22, 0), 'Asia/Riyadh', 1, 0))

    def test_unknown_timezone_falls_back_to_utc(self) -> None:
        with self.assertLogs('dalcoffee.services.reports.runner', level='WARNING'):
            self.assertTrue(is_due(_utc(2024, 6, 2, 9, 0), 'Mars/Olympus', 9, 0))

    def test_naive_datetimes_are_treated_as_utc(self) -> None:
        self.assertTrue(is_due(datetime(2024, 6, 2, 6, 0), 'Asia/Riyadh', 9, 0))


class WindowTests(unittest.TestCase):
    def test_trailing_window_and_previous(self) -> None:
        window = trailing_window(_utc(2024, 6, 15, 12, 0), days=7)
        self.assertEqual(window.start, _utc(2024, 6, 8, 12, 0))
        previous = window.previous()
        self.assertEqual(previous.start, _utc(2024, 6, 1, 12, 0))
        self.assertEqual(previous.end, window.start)

    def test_arabic_date_label(self) -> None:
        self.assertEqual(format_arabic_date(_utc(2024, 6, 2)), '2 يونيو 2024')

    def test_response_omits_empty_fields(self) -> None:
        self.assertEqual(RunResult(sent=1, total=1).as_response(), {'success': True, 'sent': 1, 'total': 1})
        body = RunResult(sent=0, total=1, errors=['x'], message='m').as_response()
        self.assertEqual(body['errors'], ['x'])
        self.assertEqual(body['message'], 'm')


class DeliverTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session_factory()()
        self.send = patch('dalcoffee.services.reports.runner.send_email').start()
        self.feed = patch('dalcoffee.services.change_feed.change_feed').start()
        self.addCleanup(patch.stopall)
        self.addCleanup(self.db.close)

    def _delivery(self, *recipients: str) -> Delivery:
        return Delivery(
            user_id=uuid.uuid4(),
            recipients=list(recipients),
            subject='Weekly',
            html='<p>report</p>',
            report_data={'count': 3},
        )

    def test_one_failed_send_does_not_stop_the_run(self) -> None:
        self.send.side_effect = [{}, EmailDeliveryError('mailbox full'), {}]
        deliveries = [self._delivery('a@example.com'), self._delivery('b@example.com'), self._delivery('c@example.com')]

        result = deliver(self.db, deliveries, report_type='weekly', is_test=False)

        self.assertEqual(self.send.call_count, 3)
        self.assertEqual((result.sent, result.total), (2, 3))
        self.assertEqual(len(result.errors), 1)
        self.assertIn('b@example.com', result.errors[0])

        rows = self.db.execute(select(SentReport)).scalars().all()
        by_recipient = {row.recipient_email: row for row in rows}
        self.assertEqual(by_recipient['a@example.com'].status, ReportStatus.SENT)
        self.assertEqual(by_recipient['b@example.com'].status, ReportStatus.FAILED)
        self.assertEqual(by_recipient['b@example.com'].error_message, 'mailbox full')
        self.assertEqual(by_recipient['c@example.com'].status, ReportStatus.SENT)
        self.feed.publish.assert_not_called()
        self.db.commit()
        self.assertEqual(self.feed.publish.call_count, 3)

    @patch('dalcoffee.services.email_service.urlopen')
    def test_provider_timeout_mid_run_is_logged_and_the_run_continues(self, urlopen) -> None:
        ok = MagicMock()
        ok.read.return_value = b'{"id": "em_1"}'
        ok.__enter__.return_value = ok
        urlopen.side_effect = [ok, TimeoutError('The read operation timed out'), ok]
        self.send.side_effect = send_email
        deliveries = [self._delivery('a@example.com'), self._delivery('b@example.com'), self._delivery('c@example.com')]

        result = deliver(self.db, deliveries, report_type='weekly', is_test=False)

        self.assertEqual(urlopen.call_count, 3)
        self.assertEqual((result.sent, result.total), (2, 3))
        statuses = {row.recipient_email: row.status for row in self.db.execute(select(SentReport)).scalars()}
        self.assertEqual(statuses['b@example.com'], ReportStatus.FAILED)
        self.assertEqual(statuses['c@example.com'], ReportStatus.SENT)

    def test_on_sent_only_runs_for_successful_sends(self) -> None:
        self.send.side_effect = [EmailDeliveryError('down'), {}]
        sent_to = []
        deliver(
            self.db,
            [self._delivery('a@example.com'), self._delivery('b@example.com')],
            report_type='weekly',
            is_test=True,
            on_sent=lambda d: sent_to.append(d.recipients[0]),
        )
        self.assertEqual(sent_to, ['b@example.com'])
        self.assertTrue(all(row.is_test for row in self.db.execute(select(SentReport)).scalars()))

    def test_broadcast_logs_one_row_per_run(self) -> None:
        self.send.side_effect = [{}, EmailDeliveryError('bounced')]
        result = broadcast(
            self.db, self._delivery('a@example.com', 'b@example.com'), report_type='weekly_commission', is_test=False
        )

        self.assertEqual((result.sent, result.total), (1, 2))
        row = self.db.execute(select(SentReport)).scalar_one()
        self.assertEqual(row.status, ReportStatus.SENT)
        self.assertEqual(row.recipient_email, 'a@example.com, b@example.com')
        self.assertEqual(row.report_data['delivered'], 1)
        self.assertEqual(row.error_message, 'Failed to send to b@example.com: bounced')

    def test_broadcast_with_no_successful_send_is_failed(self) -> None:
        self.send.side_effect = EmailDeliveryError('down')
        broadcast(self.db, self._delivery('a@example.com'), report_type='weekly_commission', is_test=False)
        row = self.db.execute(select(SentReport)).scalar_one()
        self.assertEqual(row.status, ReportStatus.FAILED)


if __name__ == '__main__':
    unittest.main()

from __future__ import annotations

import json
import logging
import unittest
from datetime import date, datetime, time

from spotcheck.logging_utils import JsonFormatter
from spotcheck.main import daily_generation_due, parse_cron_time
from spotcheck.services.schedule_window import to_utc


class SchedulerWorkerHelpersTests(unittest.TestCase):
    def test_parse_cron_time(self) -> None:
        self.assertEqual(parse_cron_time("00:05"), time(0, 5))
        self.assertEqual(parse_cron_time("23:59"), time(23, 59))
        self.assertEqual(parse_cron_time("garbage"), time(0, 0))

    def test_generation_waits_for_cron_time(self) -> None:
        before = to_utc(datetime(2026, 3, 2, 0, 4))
        after = to_utc(datetime(2026, 3, 2, 0, 6))
        self.assertFalse(daily_generation_due(before, last_generated=date(2026, 3, 1), cron_time=time(0, 5)))
        self.assertTrue(daily_generation_due(after, last_generated=date(2026, 3, 1), cron_time=time(0, 5)))

    def test_generation_runs_once_per_local_day(self) -> None:
        now_utc = to_utc(datetime(2026, 3, 2, 9, 0))
        self.assertTrue(daily_generation_due(now_utc, last_generated=None, cron_time=time(0, 5)))
        self.assertFalse(daily_generation_due(now_utc, last_generated=date(2026, 3, 2), cron_time=time(0, 5)))


class JsonFormatterTests(unittest.TestCase):
    def test_record_is_rendered_with_extras(self) -> None:
        record = logging.LogRecord(
            name="spotcheck.checkins",
            level=logging.INFO,
            pathname=__file__,
            lineno=1,
            msg="checkin_issued",
            args=None,
            exc_info=None,
        )
        record.employee_id = 7
        record.check_in_request_id = 11

        payload = json.loads(JsonFormatter(service="spotcheck").format(record))

        self.assertEqual(payload["event"], "checkin_issued")
        self.assertEqual(payload["level"], "INFO")
        self.assertEqual(payload["service"], "spotcheck")
        self.assertEqual(payload["logger"], "spotcheck.checkins")
        self.assertEqual(payload["employee_id"], 7)
        self.assertEqual(payload["check_in_request_id"], 11)
        self.assertNotIn("pathname", payload)


if __name__ == "__main__":
    unittest.main()

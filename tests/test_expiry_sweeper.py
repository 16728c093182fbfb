from __future__ import annotations

import unittest
from datetime import timedelta

from spotcheck.errors import ApiError
from spotcheck.models import CheckInRequest, CheckInStatus
from spotcheck.services.checkins import request_check_in, submit_location, submit_photo
from spotcheck.services.expiry_sweeper import sweep_expired

from sqlite_support import RecordingNotifier, add_employee, make_session_factory, utc

NOW = utc(2026, 3, 2, 8, 0)


class ExpirySweeperTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine, self.session_factory = make_session_factory()
        self.db = self.session_factory()
        self.notifier = RecordingNotifier()
        self.employee = add_employee(self.db)

    def tearDown(self) -> None:
        self.db.close()
        self.engine.dispose()

    def test_overdue_request_becomes_missed_and_is_retracted_once(self) -> None:
        request = request_check_in(self.db, employee_id=self.employee.id, now_utc=NOW, notifier=self.notifier)
        request_id = request.id

        expired = sweep_expired(NOW + timedelta(minutes=6), db=self.db, notifier=self.notifier)
        again = sweep_expired(NOW + timedelta(minutes=7), db=self.db, notifier=self.notifier)

        self.assertEqual(expired, [request_id])
        self.assertEqual(again, [])
        self.assertEqual(self.db.get(CheckInRequest, request_id).status, CheckInStatus.MISSED)
        self.assertEqual(self.notifier.retracted, [(self.employee.id, "handle-1")])

    def test_request_inside_deadline_is_untouched(self) -> None:
        request = request_check_in(self.db, employee_id=self.employee.id, now_utc=NOW, notifier=self.notifier)

        self.assertEqual(sweep_expired(NOW + timedelta(minutes=4), db=self.db, notifier=self.notifier), [])
        self.assertEqual(self.db.get(CheckInRequest, request.id).status, CheckInStatus.PENDING)
        self.assertEqual(self.notifier.retracted, [])

    def test_completed_request_is_never_swept(self) -> None:
        request = request_check_in(self.db, employee_id=self.employee.id, now_utc=NOW, notifier=self.notifier)
        submit_location(self.db, request_id=request.id, lat=10.0, lon=10.0, now_utc=NOW, notifier=self.notifier)
        submit_photo(self.db, request_id=request.id, photo_ref="p.jpg", now_utc=NOW, notifier=self.notifier)

        self.assertEqual(sweep_expired(NOW + timedelta(hours=1), db=self.db, notifier=self.notifier), [])
        self.assertEqual(self.db.get(CheckInRequest, request.id).status, CheckInStatus.COMPLETED)

    def test_late_submission_after_sweep_is_rejected(self) -> None:
        request = request_check_in(self.db, employee_id=self.employee.id, now_utc=NOW, notifier=self.notifier)
        sweep_expired(NOW + timedelta(minutes=6), db=self.db, notifier=self.notifier)

        with self.assertRaises(ApiError) as ctx:
            submit_photo(
                self.db,
                request_id=request.id,
                photo_ref="p.jpg",
                now_utc=NOW + timedelta(minutes=6),
                notifier=self.notifier,
            )
        self.assertEqual(ctx.exception.code, "CHECKIN_EXPIRED")

    def test_request_without_handle_is_swept_without_retraction(self) -> None:
        notifier = RecordingNotifier(fail_send=True)
        request = request_check_in(self.db, employee_id=self.employee.id, now_utc=NOW, notifier=notifier)

        expired = sweep_expired(NOW + timedelta(minutes=6), db=self.db, notifier=notifier)

        self.assertEqual(expired, [request.id])
        self.assertEqual(notifier.retracted, [])


if __name__ == "__main__":
    unittest.main()

from __future__ import annotations

import random
import unittest
from datetime import datetime, timedelta

from sqlalchemy import func, select, update

from spotcheck.models import (
    CheckInRequest,
    CheckInSource,
    CheckInStatus,
    Employee,
    ScheduleItem,
    ScheduleItemStatus,
)
from spotcheck.services.checkins import request_check_in
from spotcheck.services.schedule_window import normalize_ts, to_utc
from spotcheck.services.trigger_scheduler import tick

from sqlite_support import RecordingNotifier, add_employee, make_session_factory


def _local(*args: int) -> datetime:
    return to_utc(datetime(*args))


class TriggerSchedulerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine, self.session_factory = make_session_factory()
        self.db = self.session_factory()
        self.notifier = RecordingNotifier()

    def tearDown(self) -> None:
        self.db.close()
        self.engine.dispose()

    def _add_item(self, employee_id: int, local_dt: datetime, sequence: int) -> ScheduleItem:
        item = ScheduleItem(
            employee_id=employee_id,
            local_date=local_dt.date(),
            sequence=sequence,
            scheduled_at=to_utc(local_dt),
            status=ScheduleItemStatus.PENDING,
        )
        self.db.add(item)
        self.db.commit()
        self.db.refresh(item)
        return item

    def _pending_count(self, employee_id: int) -> int:
        return self.db.scalar(
            select(func.count(CheckInRequest.id)).where(
                CheckInRequest.employee_id == employee_id,
                CheckInRequest.status == CheckInStatus.PENDING,
            )
        )

    def test_due_item_issues_scheduled_request(self) -> None:
        employee = add_employee(self.db)
        item = self._add_item(employee.id, datetime(2026, 3, 2, 10, 0), 0)
        now_utc = _local(2026, 3, 2, 10, 0, 30)

        issued = tick(now_utc, db=self.db, notifier=self.notifier, rng=random.Random(1))

        self.assertEqual(len(issued), 1)
        request = self.db.get(CheckInRequest, issued[0].id)
        self.assertEqual(request.status, CheckInStatus.PENDING)
        self.assertEqual(request.source, CheckInSource.SCHEDULED)
        self.assertEqual(normalize_ts(request.expires_at), now_utc + timedelta(minutes=5))
        self.assertEqual(request.notification_handle, "handle-1")
        self.assertEqual(len(self.notifier.sent), 1)
        self.assertTrue(self.notifier.sent[0][2].endswith(f"/employee/check-in/{request.id}"))

        self.db.refresh(item)
        self.assertEqual(item.status, ScheduleItemStatus.SENT)
        self.assertEqual(item.check_in_request_id, request.id)
        self.db.refresh(employee)
        self.assertGreaterEqual(normalize_ts(employee.next_check_in_at), now_utc + timedelta(minutes=25))

    def test_item_not_yet_due_is_left_alone(self) -> None:
        employee = add_employee(self.db)
        item = self._add_item(employee.id, datetime(2026, 3, 2, 14, 0), 0)

        issued = tick(_local(2026, 3, 2, 10, 0), db=self.db, notifier=self.notifier, rng=random.Random(1))

        self.assertEqual(issued, [])
        self.db.refresh(item)
        self.assertEqual(item.status, ScheduleItemStatus.PENDING)
        self.assertEqual(self.notifier.sent, [])

    def test_due_item_is_skipped_while_request_pending(self) -> None:
        employee = add_employee(self.db)
        self._add_item(employee.id, datetime(2026, 3, 2, 10, 0), 0)
        second = self._add_item(employee.id, datetime(2026, 3, 2, 10, 2), 1)

        tick(_local(2026, 3, 2, 10, 0, 30), db=self.db, notifier=self.notifier, rng=random.Random(1))
        issued = tick(_local(2026, 3, 2, 10, 2, 30), db=self.db, notifier=self.notifier, rng=random.Random(2))

        self.assertEqual(issued, [])
        self.assertEqual(self._pending_count(employee.id), 1)
        self.db.refresh(second)
        self.assertEqual(second.status, ScheduleItemStatus.SKIPPED)
        self.assertEqual(len(self.notifier.sent), 1)

    def test_expired_unswept_request_does_not_block_due_item(self) -> None:
        employee = add_employee(self.db)
        first = self._add_item(employee.id, datetime(2026, 3, 2, 10, 0), 0)
        second = self._add_item(employee.id, datetime(2026, 3, 2, 10, 6), 1)
        tick(_local(2026, 3, 2, 10, 0), db=self.db, notifier=self.notifier, rng=random.Random(1))
        self.db.refresh(first)
        old_request_id = first.check_in_request_id

        issued = tick(_local(2026, 3, 2, 10, 7), db=self.db, notifier=self.notifier, rng=random.Random(2))

        self.assertEqual(len(issued), 1)
        self.db.refresh(second)
        self.assertEqual(second.status, ScheduleItemStatus.SENT)
        self.assertEqual(second.check_in_request_id, issued[0].id)
        old_request = self.db.get(CheckInRequest, old_request_id)
        self.db.refresh(old_request)
        self.assertEqual(old_request.status, CheckInStatus.MISSED)
        self.assertEqual(self.notifier.retracted, [(employee.id, "handle-1")])
        self.assertEqual(self._pending_count(employee.id), 1)

    def test_items_from_previous_days_are_skipped(self) -> None:
        employee = add_employee(self.db)
        stale = self._add_item(employee.id, datetime(2026, 3, 2, 17, 0), 0)

        issued = tick(_local(2026, 3, 3, 10, 0), db=self.db, notifier=self.notifier, rng=random.Random(1))

        self.assertEqual(issued, [])
        self.db.refresh(stale)
        self.assertEqual(stale.status, ScheduleItemStatus.SKIPPED)

    def test_fallback_fires_when_day_has_no_schedule(self) -> None:
        employee = add_employee(self.db, next_check_in_at=None)
        now_utc = _local(2026, 3, 2, 10, 0)

        self.assertEqual(tick(now_utc, db=self.db, notifier=self.notifier, rng=random.Random(3)), [])
        self.db.refresh(employee)
        hint = normalize_ts(employee.next_check_in_at)
        self.assertGreaterEqual(hint, now_utc + timedelta(minutes=5))
        self.assertLessEqual(hint, now_utc + timedelta(minutes=15))

        issued = tick(hint, db=self.db, notifier=self.notifier, rng=random.Random(4))

        self.assertEqual(len(issued), 1)
        request = self.db.get(CheckInRequest, issued[0].id)
        self.assertEqual(request.source, CheckInSource.FALLBACK)
        self.db.refresh(employee)
        self.assertGreaterEqual(normalize_ts(employee.next_check_in_at), hint + timedelta(minutes=25))

    def test_stale_hint_outside_window_is_recomputed(self) -> None:
        employee = add_employee(self.db, next_check_in_at=_local(2026, 3, 2, 19, 0))
        now_utc = _local(2026, 3, 2, 10, 0)

        issued = tick(now_utc, db=self.db, notifier=self.notifier, rng=random.Random(5))

        self.assertEqual(issued, [])
        self.db.refresh(employee)
        hint = normalize_ts(employee.next_check_in_at)
        self.assertLessEqual(hint, now_utc + timedelta(minutes=15))

    def test_fallback_does_not_fire_on_day_with_generated_items(self) -> None:
        employee = add_employee(self.db, next_check_in_at=_local(2026, 3, 2, 9, 30))
        self._add_item(employee.id, datetime(2026, 3, 2, 15, 0), 0)

        issued = tick(_local(2026, 3, 2, 10, 0), db=self.db, notifier=self.notifier, rng=random.Random(1))

        self.assertEqual(issued, [])
        self.assertEqual(self._pending_count(employee.id), 0)

    def test_zero_target_never_falls_back(self) -> None:
        employee = add_employee(self.db, daily_check_in_target=0, next_check_in_at=_local(2026, 3, 2, 9, 30))

        issued = tick(_local(2026, 3, 2, 10, 0), db=self.db, notifier=self.notifier, rng=random.Random(1))

        self.assertEqual(issued, [])
        self.assertEqual(self._pending_count(employee.id), 0)

    def test_disabled_employee_is_ignored(self) -> None:
        employee = add_employee(self.db, check_ins_enabled=False)
        self._add_item(employee.id, datetime(2026, 3, 2, 10, 0), 0)

        issued = tick(_local(2026, 3, 2, 10, 1), db=self.db, notifier=self.notifier, rng=random.Random(1))

        self.assertEqual(issued, [])
        self.assertEqual(self.notifier.sent, [])

    def test_fallback_with_pending_manual_request_only_moves_hint(self) -> None:
        employee = add_employee(self.db, next_check_in_at=_local(2026, 3, 2, 9, 59))
        request_check_in(
            self.db,
            employee_id=employee.id,
            now_utc=_local(2026, 3, 2, 9, 58),
            notifier=self.notifier,
        )
        self.db.execute(
            update(Employee)
            .where(Employee.id == employee.id)
            .values(next_check_in_at=_local(2026, 3, 2, 9, 59))
        )
        self.db.commit()
        now_utc = _local(2026, 3, 2, 10, 0)

        issued = tick(now_utc, db=self.db, notifier=self.notifier, rng=random.Random(1))

        self.assertEqual(issued, [])
        self.assertEqual(self._pending_count(employee.id), 1)
        self.db.refresh(employee)
        self.assertGreaterEqual(normalize_ts(employee.next_check_in_at), now_utc + timedelta(minutes=25))

    def test_notifier_failure_keeps_request(self) -> None:
        employee = add_employee(self.db)
        self._add_item(employee.id, datetime(2026, 3, 2, 10, 0), 0)
        notifier = RecordingNotifier(fail_send=True)

        issued = tick(_local(2026, 3, 2, 10, 1), db=self.db, notifier=notifier, rng=random.Random(1))

        self.assertEqual(len(issued), 1)
        request = self.db.get(CheckInRequest, issued[0].id)
        self.assertEqual(request.status, CheckInStatus.PENDING)
        self.assertIsNone(request.notification_handle)

    def test_repeated_ticks_keep_single_pending_request(self) -> None:
        employee = add_employee(self.db, daily_check_in_target=5)
        for sequence, minute in enumerate((0, 1, 2, 3)):
            self._add_item(employee.id, datetime(2026, 3, 2, 10, minute), sequence)

        for second in range(0, 240, 20):
            tick(_local(2026, 3, 2, 10, 0) + timedelta(seconds=second), db=self.db, notifier=self.notifier)
            self.assertLessEqual(self._pending_count(employee.id), 1)
        self.assertEqual(len(self.notifier.sent), 1)


if __name__ == "__main__":
    unittest.main()

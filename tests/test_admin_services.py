from __future__ import annotations

import unittest
from datetime import date

from sqlalchemy import select

from spotcheck.errors import ApiError
from spotcheck.models import AuditLog
from spotcheck.services.employees import toggle_check_ins, update_work_schedule
from spotcheck.services.zones import create_zone, get_zone_or_404
from spotcheck.services.schedule_window import normalize_ts

from sqlite_support import add_employee, make_session_factory, utc

NOW = utc(2026, 3, 2, 8, 0)


class WorkScheduleServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine, self.session_factory = make_session_factory()
        self.db = self.session_factory()
        self.employee = add_employee(self.db, daily_check_in_target=3)

    def tearDown(self) -> None:
        self.db.close()
        self.engine.dispose()

    def _update(self, **overrides: object):  # type: ignore[no-untyped-def]
        values: dict[str, object] = {
            "employee_id": self.employee.id,
            "work_days": [1, 2, 3, 4, 5],
            "work_start_minutes": 480,
            "work_end_minutes": 1020,
            "daily_check_in_target": None,
            "now_utc": NOW,
        }
        values.update(overrides)
        return update_work_schedule(self.db, **values)

    def test_window_applies_now_and_target_is_staged_for_tomorrow(self) -> None:
        employee = self._update(work_days=[3, 1, 1], daily_check_in_target=5)

        self.assertEqual(employee.work_days, [1, 3])
        self.assertEqual(employee.work_start_minutes, 480)
        self.assertEqual(employee.daily_check_in_target, 3)
        self.assertEqual(employee.daily_check_in_target_pending, 5)
        self.assertEqual(employee.daily_check_in_target_pending_from, date(2026, 3, 3))
        self.assertIsNotNone(employee.next_check_in_at)
        self.assertIn("WORK_SCHEDULE_UPDATED", self.db.scalars(select(AuditLog.action)).all())

    def test_setting_current_target_clears_staged_value(self) -> None:
        self._update(daily_check_in_target=5)
        employee = self._update(daily_check_in_target=3)

        self.assertIsNone(employee.daily_check_in_target_pending)
        self.assertIsNone(employee.daily_check_in_target_pending_from)

    def test_invalid_window_is_rejected(self) -> None:
        with self.assertRaises(ApiError) as ctx:
            self._update(work_start_minutes=1020, work_end_minutes=480)
        self.assertEqual(ctx.exception.code, "INVALID_WORK_WINDOW")
        self.assertEqual(ctx.exception.status_code, 422)

    def test_target_outside_range_is_rejected(self) -> None:
        for value in (-1, 21):
            with self.assertRaises(ApiError) as ctx:
                self._update(daily_check_in_target=value)
            self.assertEqual(ctx.exception.code, "INVALID_CHECKIN_TARGET")

    def test_invalid_work_days_are_rejected(self) -> None:
        for days in ([], [0, 1], [8]):
            with self.assertRaises(ApiError) as ctx:
                self._update(work_days=days)
            self.assertEqual(ctx.exception.code, "INVALID_WORK_DAYS")

    def test_unknown_employee(self) -> None:
        with self.assertRaises(ApiError) as ctx:
            self._update(employee_id=999)
        self.assertEqual(ctx.exception.code, "EMPLOYEE_NOT_FOUND")

    def test_toggle_clears_and_restores_next_check_in(self) -> None:
        disabled = toggle_check_ins(self.db, employee_id=self.employee.id, now_utc=NOW)
        self.assertFalse(disabled.check_ins_enabled)
        self.assertIsNone(disabled.next_check_in_at)

        enabled = toggle_check_ins(self.db, employee_id=self.employee.id, now_utc=NOW)
        self.assertTrue(enabled.check_ins_enabled)
        self.assertGreater(normalize_ts(enabled.next_check_in_at), NOW)


class ZoneServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine, self.session_factory = make_session_factory()
        self.db = self.session_factory()
        self.first = add_employee(self.db, full_name="First")
        self.second = add_employee(self.db, full_name="Second")

    def tearDown(self) -> None:
        self.db.close()
        self.engine.dispose()

    def _create(self, **overrides: object):  # type: ignore[no-untyped-def]
        values: dict[str, object] = {
            "name": "  Main   office ",
            "center_lat": 55.7558,
            "center_lon": 37.6173,
            "radius_m": 150,
            "employee_ids": [self.first.id],
            "is_shared": False,
        }
        values.update(overrides)
        return create_zone(self.db, **values)

    def test_individual_zone(self) -> None:
        zone = self._create()
        self.assertEqual(zone.name, "Main office")
        self.assertEqual(zone.employee_ids, [self.first.id])
        self.assertIs(get_zone_or_404(self.db, zone.id), zone)

    def test_shared_zone_with_several_employees(self) -> None:
        zone = self._create(is_shared=True, employee_ids=[self.second.id, self.first.id, self.first.id])
        self.assertEqual(zone.employee_ids, sorted([self.first.id, self.second.id]))

    def test_individual_zone_needs_exactly_one_employee(self) -> None:
        with self.assertRaises(ApiError) as ctx:
            self._create(employee_ids=[self.first.id, self.second.id])
        self.assertEqual(ctx.exception.status_code, 422)

    def test_radius_bounds(self) -> None:
        for radius in (9, 5001):
            with self.assertRaises(ApiError) as ctx:
                self._create(radius_m=radius)
            self.assertEqual(ctx.exception.code, "INVALID_ZONE_RADIUS")
        self.assertEqual(self._create(radius_m=10).radius_m, 10)

    def test_unknown_employee(self) -> None:
        with self.assertRaises(ApiError) as ctx:
            self._create(employee_ids=[999])
        self.assertEqual(ctx.exception.code, "EMPLOYEE_NOT_FOUND")

    def test_unknown_zone(self) -> None:
        with self.assertRaises(ApiError) as ctx:
            get_zone_or_404(self.db, 999)
        self.assertEqual(ctx.exception.code, "ZONE_NOT_FOUND")


if __name__ == "__main__":
    unittest.main()

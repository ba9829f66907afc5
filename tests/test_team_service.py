from __future__ import annotations

import unittest
from datetime import timedelta

from sqlite_support import BASE_TS, SqliteTestCase

from timeclock.errors import AuthorizationError, ConflictError, NotFoundError
from timeclock.models import EntryStatus
from timeclock.security import CAP_VIEW_ALL_ENTRIES, SqlCapabilityChecker
from timeclock.services.directory import (
    DepartmentScope,
    SqlDepartmentDirectory,
    assign_manager,
    list_manager_assignments,
    resolve_department_scope,
    unassign_manager,
)
from timeclock.services.missed_punches import get_missed_punch_entries
from timeclock.services.rules_config import OvertimeSnapshot, RulesSnapshot
from timeclock.services.team import TeamFilters, get_team_totals, list_accessible_departments


class TeamTotalsTests(SqliteTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.sales = self.add_department("Sales")
        self.support = self.add_department("Support")
        self.alice = self.add_user("Alice", department_id=self.sales.id)
        self.bob = self.add_user("Bob", department_id=self.sales.id)
        self.carl = self.add_user("Carl", department_id=self.support.id)
        self.sales_scope = DepartmentScope(unrestricted=False, department_ids=frozenset({self.sales.id}))

    def test_scope_limits_rows_and_totals(self) -> None:
        self.add_entry(self.alice, minutes=9 * 60)
        self.add_entry(self.bob, minutes=7 * 60)
        self.add_entry(self.carl, minutes=10 * 60)

        totals = get_team_totals(
            self.db,
            scope=self.sales_scope,
            filters=TeamFilters(),
            overtime=OvertimeSnapshot(daily_threshold_minutes=8 * 60),
        )

        self.assertEqual({row.entry.user_id for row in totals.entries}, {self.alice.id, self.bob.id})
        self.assertEqual([item.full_name for item in totals.employee_totals], ["Alice", "Bob"])
        alice = totals.employee_totals[0]
        self.assertEqual(alice.daily_overtime_minutes, 60)
        self.assertEqual(alice.regular_minutes, 8 * 60)
        self.assertTrue(alice.has_overtime)
        self.assertFalse(totals.employee_totals[1].has_overtime)
        self.assertEqual([department.name for department in totals.accessible_departments], ["Sales"])

    def test_daily_threshold_flag_uses_day_total(self) -> None:
        morning = self.add_entry(self.alice, minutes=5 * 60)
        afternoon = self.add_entry(self.alice, clock_in=BASE_TS + timedelta(hours=6), minutes=4 * 60)
        next_day = self.add_entry(self.alice, clock_in=BASE_TS + timedelta(days=1), minutes=4 * 60)

        totals = get_team_totals(
            self.db,
            scope=self.sales_scope,
            filters=TeamFilters(user_id=self.alice.id),
            overtime=OvertimeSnapshot(daily_threshold_minutes=8 * 60),
        )

        flags = {row.entry.id: row.exceeds_daily_threshold for row in totals.entries}
        self.assertTrue(flags[morning.id])
        self.assertTrue(flags[afternoon.id])
        self.assertFalse(flags[next_day.id])

    def test_status_and_period_filters(self) -> None:
        self.add_entry(self.alice, status=EntryStatus.APPROVED, is_locked=True)
        self.add_entry(self.alice, clock_in=BASE_TS + timedelta(days=1))
        self.add_entry(self.bob, clock_in=BASE_TS + timedelta(days=5))

        pending = get_team_totals(
            self.db,
            scope=self.sales_scope,
            filters=TeamFilters(status=EntryStatus.PENDING),
            overtime=None,
        )
        self.assertEqual(len(pending.entries), 2)

        window = get_team_totals(
            self.db,
            scope=self.sales_scope,
            filters=TeamFilters(period_start=BASE_TS, period_end=BASE_TS + timedelta(days=1)),
            overtime=None,
        )
        self.assertEqual(len(window.entries), 2)
        self.assertEqual(window.employee_totals[0].status_counts, {"approved": 1, "pending": 1})

    def test_department_outside_scope_is_forbidden(self) -> None:
        with self.assertRaises(AuthorizationError) as ctx:
            get_team_totals(
                self.db,
                scope=self.sales_scope,
                filters=TeamFilters(department_id=self.support.id),
                overtime=None,
            )
        self.assertEqual(ctx.exception.code, "NOT_AUTHORIZED_FOR_DEPARTMENT")

    def test_manager_without_assignments_is_forbidden(self) -> None:
        with self.assertRaises(AuthorizationError) as ctx:
            get_team_totals(self.db, scope=DepartmentScope(unrestricted=False), filters=TeamFilters(), overtime=None)
        self.assertEqual(ctx.exception.code, "NO_DEPARTMENT_ASSIGNMENTS")

    def test_unrestricted_scope_sees_everyone(self) -> None:
        self.add_entry(self.alice)
        self.add_entry(self.carl)
        self.add_department("Archive", is_active=False)

        totals = get_team_totals(
            self.db,
            scope=DepartmentScope(unrestricted=True),
            filters=TeamFilters(),
            overtime=None,
        )

        self.assertEqual(len(totals.entries), 2)
        self.assertEqual([department.name for department in totals.accessible_departments], ["Sales", "Support"])

    def test_open_entries_are_listed_without_minutes(self) -> None:
        self.add_entry(self.alice, minutes=None)

        totals = get_team_totals(self.db, scope=self.sales_scope, filters=TeamFilters(), overtime=None)

        self.assertEqual(len(totals.entries), 1)
        self.assertFalse(totals.entries[0].exceeds_daily_threshold)
        self.assertEqual(totals.employee_totals[0].total_minutes, 0)
        self.assertEqual(totals.employee_totals[0].entry_count, 1)


class MissedPunchTests(SqliteTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.sales = self.add_department("Sales")
        self.support = self.add_department("Support")
        self.alice = self.add_user("Alice", department_id=self.sales.id)
        self.carl = self.add_user("Carl", department_id=self.support.id)
        self.rules = RulesSnapshot(missed_punch_enabled=True, missed_punch_threshold_hours=12)

    def test_stale_open_entries_oldest_first(self) -> None:
        newer = self.add_entry(self.alice, clock_in=BASE_TS - timedelta(hours=13), minutes=None)
        older = self.add_entry(self.carl, clock_in=BASE_TS - timedelta(hours=30), minutes=None)

        missed = get_missed_punch_entries(self.db, self.rules, now=BASE_TS)

        self.assertEqual([entry.id for entry in missed], [older.id, newer.id])

    def test_recent_and_closed_entries_are_not_missed_punches(self) -> None:
        self.add_entry(self.alice, clock_in=BASE_TS - timedelta(hours=2), minutes=None)
        self.add_entry(self.carl, clock_in=BASE_TS - timedelta(days=2), minutes=600)

        self.assertEqual(get_missed_punch_entries(self.db, self.rules, now=BASE_TS), [])

    def test_department_filter_and_disabled_feature(self) -> None:
        self.add_entry(self.alice, clock_in=BASE_TS - timedelta(hours=20), minutes=None)
        self.add_entry(self.carl, clock_in=BASE_TS - timedelta(hours=20), minutes=None)

        scoped = get_missed_punch_entries(self.db, self.rules, department_ids={self.sales.id}, now=BASE_TS)
        self.assertEqual([entry.user_id for entry in scoped], [self.alice.id])
        self.assertEqual(get_missed_punch_entries(self.db, self.rules, department_ids=set(), now=BASE_TS), [])
        self.assertEqual(get_missed_punch_entries(self.db, RulesSnapshot(missed_punch_enabled=False), now=BASE_TS), [])


class DepartmentDirectoryTests(SqliteTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.sales = self.add_department("Sales")
        self.archive = self.add_department("Archive", is_active=False)
        self.manager = self.add_user("Mia Manager")

    def test_assign_and_unassign_manager(self) -> None:
        assignment = assign_manager(self.db, manager_id=self.manager.id, department_id=self.sales.id)
        self.assertEqual(assignment.department_id, self.sales.id)
        self.assertEqual(SqlDepartmentDirectory(self.db).manager_departments(self.manager.id), [self.sales.id])
        self.assertEqual(len(list_manager_assignments(self.db, manager_id=self.manager.id)), 1)

        with self.assertRaises(ConflictError) as ctx:
            assign_manager(self.db, manager_id=self.manager.id, department_id=self.sales.id)
        self.assertEqual(ctx.exception.code, "ASSIGNMENT_EXISTS")

        unassign_manager(self.db, manager_id=self.manager.id, department_id=self.sales.id)
        self.assertEqual(SqlDepartmentDirectory(self.db).manager_departments(self.manager.id), [])
        with self.assertRaises(NotFoundError):
            unassign_manager(self.db, manager_id=self.manager.id, department_id=self.sales.id)

    def test_assign_rejects_unknown_ids(self) -> None:
        with self.assertRaises(NotFoundError) as ctx:
            assign_manager(self.db, manager_id=999, department_id=self.sales.id)
        self.assertEqual(ctx.exception.code, "USER_NOT_FOUND")
        with self.assertRaises(NotFoundError) as ctx:
            assign_manager(self.db, manager_id=self.manager.id, department_id=999)
        self.assertEqual(ctx.exception.code, "DEPARTMENT_NOT_FOUND")

    def test_department_activity(self) -> None:
        directory = SqlDepartmentDirectory(self.db)
        self.assertTrue(directory.is_department_active(self.sales.id))
        self.assertFalse(directory.is_department_active(self.archive.id))
        self.assertFalse(directory.is_department_active(12345))

    def test_assign_refuses_inactive_department(self) -> None:
        with self.assertRaises(ConflictError) as ctx:
            assign_manager(self.db, manager_id=self.manager.id, department_id=self.archive.id)
        self.assertEqual(ctx.exception.code, "DEPARTMENT_INACTIVE")
        self.assertEqual(list_manager_assignments(self.db, manager_id=self.manager.id), [])

    def test_scope_resolution(self) -> None:
        self.assign(self.manager, self.sales)
        directory = SqlDepartmentDirectory(self.db)
        current = self.as_current(self.manager)

        scope = resolve_department_scope(current, checker=SqlCapabilityChecker(self.db), directory=directory)
        self.assertFalse(scope.unrestricted)
        self.assertEqual(scope.department_ids, frozenset({self.sales.id}))
        self.assertFalse(scope.covers(None))

        admin = self.add_user("Ada Admin", capabilities=(CAP_VIEW_ALL_ENTRIES,))
        admin_scope = resolve_department_scope(
            self.as_current(admin),
            checker=SqlCapabilityChecker(self.db),
            directory=directory,
        )
        self.assertTrue(admin_scope.unrestricted)
        self.assertTrue(admin_scope.covers(None))
        self.assertEqual(list_accessible_departments(self.db, admin_scope), [self.sales])


if __name__ == "__main__":
    unittest.main()

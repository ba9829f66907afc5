from __future__ import annotations

import tempfile
import unittest
from datetime import datetime, timedelta, timezone
from pathlib import Path

from sqlalchemy.orm import Session, sessionmaker

from timeclock import models  # noqa: F401
from timeclock.db import Base, build_engine
from timeclock.models import (
    Department,
    EntryStatus,
    ManagerAssignment,
    OvertimeConfig,
    TimeclockEntry,
    User,
    UserCapability,
)
from timeclock.security import TIMECLOCK_RESOURCE, CurrentUser

# A Wednesday, so the surrounding Sunday-start week is unambiguous.
BASE_TS = datetime(2026, 3, 4, 8, 0, tzinfo=timezone.utc)


class SqliteTestCase(unittest.TestCase):
    """Fresh file-backed SQLite schema per test, built from the ORM metadata."""

    def setUp(self) -> None:
        self._tmpdir = tempfile.TemporaryDirectory()
        db_path = Path(self._tmpdir.name) / "timeclock.sqlite3"
        self.engine = build_engine(f"sqlite:///{db_path}")
        Base.metadata.create_all(self.engine)
        self.session_factory = sessionmaker(bind=self.engine, autoflush=False, expire_on_commit=False)
        self.db: Session = self.session_factory()

    def tearDown(self) -> None:
        self.db.close()
        self.engine.dispose()
        self._tmpdir.cleanup()

    def new_session(self) -> Session:
        return self.session_factory()

    def add_department(self, name: str, *, is_active: bool = True) -> Department:
        department = Department(name=name, is_active=is_active)
        self.db.add(department)
        self.db.commit()
        return department

    def add_user(
        self,
        full_name: str,
        *,
        department_id: int | None = None,
        capabilities: tuple[str, ...] = (),
        is_active: bool = True,
    ) -> User:
        user = User(full_name=full_name, department_id=department_id, is_active=is_active)
        self.db.add(user)
        self.db.flush()
        for action in capabilities:
            self.db.add(UserCapability(user_id=user.id, resource=TIMECLOCK_RESOURCE, action=action))
        self.db.commit()
        return user

    def assign(self, manager: User, department: Department) -> ManagerAssignment:
        assignment = ManagerAssignment(manager_id=manager.id, department_id=department.id)
        self.db.add(assignment)
        self.db.commit()
        return assignment

    def add_entry(
        self,
        user: User,
        *,
        clock_in: datetime = BASE_TS,
        minutes: int | None = 480,
        status: EntryStatus = EntryStatus.PENDING,
        is_locked: bool = False,
    ) -> TimeclockEntry:
        """Closed entry of ``minutes`` length; ``minutes=None`` leaves it open."""
        entry = TimeclockEntry(user_id=user.id, clock_in=clock_in, status=status, is_locked=is_locked)
        if minutes is not None:
            entry.clock_out = clock_in + timedelta(minutes=minutes)
            entry.raw_duration = minutes * 60
            entry.duration = minutes * 60
        self.db.add(entry)
        self.db.commit()
        return entry

    def set_overtime(self, **values: object) -> OvertimeConfig:
        config = OvertimeConfig(**values)
        self.db.add(config)
        self.db.commit()
        return config

    @staticmethod
    def as_current(user: User) -> CurrentUser:
        return CurrentUser(id=user.id, department_id=user.department_id, full_name=user.full_name)

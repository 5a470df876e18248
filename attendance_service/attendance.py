"""
Attendance recording module.

Turns a recognized student into a check-in or check-out on today's record.
Business failures (duplicate check-in, check-out without check-in) are
returned as failed results rather than raised, so the recognition loop
keeps running.
"""

import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Deque, Dict, List, Optional

from .errors import AlreadyCheckedIn, AttendanceError, NoCheckInFound
from .logging_config import get_logger
from .models import AttendanceRecord, AttendanceStatus, Direction, Student
from .store import AttendanceStore, SettingsStore, StudentDirectory

logger = get_logger(__name__)


@dataclass(frozen=True)
class CommitResult:
    """Outcome of one commit attempt."""

    ok: bool
    student_id: int
    direction: Direction
    time: Optional[str] = None
    status: Optional[AttendanceStatus] = None
    error: Optional[AttendanceError] = None

    @property
    def message(self) -> str:
        if self.ok:
            return f'{self.direction.label.capitalize()} saved at {self.time} ({self.status.value})'
        return self.error.message if self.error else 'Failed to save attendance'

    @classmethod
    def failure(cls, student_id: int, direction: Direction, error: AttendanceError) -> 'CommitResult':
        return cls(ok=False, student_id=student_id, direction=direction, error=error)


@dataclass(frozen=True)
class ActivityEntry:
    student_id: int
    name: str
    time: str
    status: AttendanceStatus
    direction: Direction

    def to_dict(self) -> Dict[str, Any]:
        return {
            'studentId': self.student_id,
            'name': self.name,
            'time': self.time,
            'status': self.status.value,
            'direction': self.direction.value,
        }


class AttendanceRecorder:
    """
    Commits attendance for one screen session.

    Also keeps the bounded recent-activity feed and the counters shown
    on the attendance screen.
    """

    def __init__(
        self,
        directory: StudentDirectory,
        attendance: AttendanceStore,
        settings: SettingsStore,
        activity_size: int = 8
    ):
        self.directory = directory
        self.attendance = attendance
        self.settings = settings
        self._activity: Deque[ActivityEntry] = deque(maxlen=activity_size)
        self._lock = threading.Lock()
        self.committed_count = 0
        # Late arrivals on check-in, early leaves on check-out
        self.flagged_count = 0

    def commit(self, student_id: int, direction: Direction, now: datetime) -> CommitResult:
        """
        Record a check-in or check-out for ``student_id`` at ``now``.

        Returns:
            CommitResult with the stored time and status, or the error
        """
        today = now.date().isoformat()
        time_now = now.strftime('%H:%M')

        try:
            student = self.directory.get_student(student_id)
            # Lookup and write happen under one database lock
            with self.attendance.db.lock:
                if direction is Direction.CHECK_IN:
                    record = self._check_in(student, today, time_now)
                    stored_time = record.check_in
                else:
                    record = self._check_out(student, today, time_now)
                    stored_time = record.check_out
        except AttendanceError as e:
            logger.warning(f'❌ {direction.label} rejected for student {student_id}: {e.message}')
            return CommitResult.failure(student_id, direction, e)

        entry = ActivityEntry(
            student_id=student.id,
            name=student.full_name,
            time=stored_time,
            status=record.status,
            direction=direction,
        )
        flagged = (
            (direction is Direction.CHECK_IN and record.status is AttendanceStatus.LATE) or
            (direction is Direction.CHECK_OUT and record.status is AttendanceStatus.EARLY_LEAVE)
        )
        with self._lock:
            self._activity.appendleft(entry)
            self.committed_count += 1
            if flagged:
                self.flagged_count += 1

        logger.info(
            f'✅ {direction.label} for {student.full_name} ({student.student_id}) '
            f'at {stored_time}: {record.status.value}'
        )
        return CommitResult(
            ok=True,
            student_id=student_id,
            direction=direction,
            time=stored_time,
            status=record.status,
        )

    def _check_in(self, student: Student, today: str, time_now: str) -> AttendanceRecord:
        settings = self.settings.get()
        status = AttendanceStatus.LATE if time_now > settings.late_time else AttendanceStatus.PRESENT

        existing = self.attendance.find_today_record(student.id, today)
        if existing is not None:
            if existing.check_in:
                raise AlreadyCheckedIn(existing.check_in)
            # Pre-existing row without a check-in (e.g. marked absent)
            return self.attendance.update_record(existing.id, check_in=time_now, status=status)

        return self.attendance.insert_record(AttendanceRecord(
            student_id=student.id,
            date=today,
            check_in=time_now,
            check_out=None,
            status=status,
        ))

    def _check_out(self, student: Student, today: str, time_now: str) -> AttendanceRecord:
        settings = self.settings.get()

        existing = self.attendance.find_today_record(student.id, today)
        if existing is None or not existing.check_in:
            raise NoCheckInFound()

        # Late is never overwritten by the check-out evaluation
        if existing.status is AttendanceStatus.LATE:
            status = AttendanceStatus.LATE
        elif time_now < settings.check_out_time:
            status = AttendanceStatus.EARLY_LEAVE
        else:
            status = AttendanceStatus.PRESENT

        return self.attendance.update_record(existing.id, check_out=time_now, status=status)

    def recent_activity(self) -> List[ActivityEntry]:
        """Most recent commits first."""
        with self._lock:
            return list(self._activity)

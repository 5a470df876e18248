"""
Persistence layer.

A single JSON data file holds students, attendance records and settings.
``Database`` owns the in-memory state and the lock; the repository classes
are the only way the rest of the service reads or mutates it. Repositories
hand out copies, so callers never mutate stored objects directly.
"""

import json
import os
import threading
from dataclasses import replace
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from .errors import InvalidSetting, InvalidStudent, StudentNotFound
from .logging_config import get_logger
from .models import (
    AttendanceRecord,
    AttendanceSettings,
    AttendanceStatus,
    Student,
    StudentStatus,
    is_time_of_day,
)

logger = get_logger(__name__)


class Database:
    """
    In-memory store persisted to a JSON file after every mutation.

    Args:
        path: Data file path, or None for a purely in-memory database
    """

    def __init__(self, path: Optional[str] = None):
        self.path = path
        self.lock = threading.RLock()
        self.students: List[Student] = []
        self.attendance: List[AttendanceRecord] = []
        self.settings = AttendanceSettings()
        self.next_record_id = 1
        self.load()

    def load(self) -> None:
        """Load the data file; corrupted data is discarded."""
        if not self.path or not os.path.exists(self.path):
            logger.debug('Data file not found, starting empty')
            return

        with self.lock:
            try:
                with open(self.path, 'r', encoding='utf-8') as f:
                    data = json.load(f)

                self.students = [Student.from_dict(s) for s in data.get('students', [])]
                self.attendance = [AttendanceRecord.from_dict(r) for r in data.get('attendance', [])]
                self.settings = AttendanceSettings.from_dict(data.get('settings', {}))
            except (OSError, ValueError, KeyError, TypeError) as e:
                logger.error(f'Failed to load data file {self.path}, starting empty: {e}')
                self.students = []
                self.attendance = []
                self.settings = AttendanceSettings()

            ids = [r.id for r in self.attendance if r.id is not None]
            self.next_record_id = max(ids, default=0) + 1
            for record in self.attendance:
                if record.id is None:
                    record.id = self.next_record_id
                    self.next_record_id += 1

            logger.info(
                f'Loaded {len(self.students)} students and '
                f'{len(self.attendance)} attendance records'
            )

    def save(self) -> None:
        """Write the data file atomically."""
        if not self.path:
            return

        with self.lock:
            data = {
                'students': [s.to_dict() for s in self.students],
                'attendance': [r.to_dict() for r in self.attendance],
                'settings': self.settings.to_dict(),
            }
            tmp_path = f'{self.path}.tmp'
            try:
                with open(tmp_path, 'w', encoding='utf-8') as f:
                    json.dump(data, f, ensure_ascii=False)
                os.replace(tmp_path, self.path)
            except OSError as e:
                logger.error(f'Failed to save data file {self.path}: {e}')


class StudentDirectory:
    """Student records and their registered faces."""

    _PATCHABLE = {
        'student_id', 'first_name', 'last_name', 'nickname',
        'class_level', 'class_room', 'status', 'face_descriptor',
    }

    def __init__(self, db: Database):
        self.db = db

    def _find(self, student_id: int) -> Student:
        for student in self.db.students:
            if student.id == student_id:
                return student
        raise StudentNotFound(student_id)

    def list_students(self) -> List[Student]:
        with self.db.lock:
            return [s.copy() for s in sorted(self.db.students, key=lambda s: s.id)]

    def get_student(self, student_id: int) -> Student:
        with self.db.lock:
            return self._find(student_id).copy()

    def add_student(
        self,
        student_id: str,
        first_name: str,
        last_name: str,
        **fields: Any
    ) -> Student:
        with self.db.lock:
            if any(s.student_id == student_id for s in self.db.students):
                raise InvalidStudent(f'Student code {student_id} is already in use')

            new_id = max((s.id for s in self.db.students), default=0) + 1
            student = Student(
                id=new_id,
                student_id=student_id,
                first_name=first_name,
                last_name=last_name,
            )
            # Validate before the student becomes visible
            if fields:
                self._apply_patch(student, fields)
            self.db.students.append(student)
            self.db.save()
            logger.info(f'Added student {student.student_id} (id={new_id})')
            return student.copy()

    def update_student(self, student_id: int, **patch: Any) -> Student:
        with self.db.lock:
            student = self._find(student_id)
            self._apply_patch(student, patch)
            self.db.save()
            return student.copy()

    def _apply_patch(self, student: Student, patch: Dict[str, Any]) -> None:
        unknown = set(patch) - self._PATCHABLE
        if unknown:
            raise InvalidStudent(f'Unknown student fields: {sorted(unknown)}')

        values = {}
        for key, value in patch.items():
            if key == 'status':
                try:
                    value = StudentStatus(value)
                except ValueError:
                    raise InvalidStudent(f'Unknown student status {value!r}')
            elif key == 'face_descriptor' and value is not None:
                value = np.asarray(value, dtype=np.float32).copy()
            values[key] = value

        for key, value in values.items():
            setattr(student, key, value)

    def register_face(self, student_id: int, embedding: np.ndarray) -> Student:
        student = self.update_student(student_id, face_descriptor=embedding)
        logger.info(f'Face registered for {student.full_name} (id={student_id})')
        return student

    def clear_face(self, student_id: int) -> Student:
        student = self.update_student(student_id, face_descriptor=None)
        logger.info(f'Face data removed for {student.full_name} (id={student_id})')
        return student

    def registered_embeddings(self) -> List[Tuple[int, np.ndarray]]:
        """Snapshot of (student id, descriptor) for every registered face."""
        with self.db.lock:
            return [
                (s.id, s.face_descriptor.copy())
                for s in self.db.students
                if s.face_descriptor is not None
            ]

    def filter_students(
        self,
        search: str = '',
        class_level: str = '',
        registration: str = ''
    ) -> List[Student]:
        """
        Filter students for the registration screen.

        Args:
            search: Case-insensitive match on full name or student code
            class_level: Exact class level, empty for all
            registration: 'registered', 'not_registered' or empty for all
        """
        needle = search.lower()
        result = []
        for student in self.list_students():
            if needle and needle not in student.full_name.lower() \
                    and needle not in student.student_id.lower():
                continue
            if class_level and student.class_level != class_level:
                continue
            if registration == 'registered' and not student.face_registered:
                continue
            if registration == 'not_registered' and student.face_registered:
                continue
            result.append(student)
        return result


class AttendanceStore:
    """Attendance records, at most one per (student, date)."""

    def __init__(self, db: Database):
        self.db = db

    def _find(self, record_id: int) -> AttendanceRecord:
        for record in self.db.attendance:
            if record.id == record_id:
                return record
        raise KeyError(f'Attendance record {record_id} not found')

    def find_today_record(self, student_id: int, date: str) -> Optional[AttendanceRecord]:
        with self.db.lock:
            for record in self.db.attendance:
                if record.student_id == student_id and record.date == date:
                    return replace(record)
            return None

    def insert_record(self, record: AttendanceRecord) -> AttendanceRecord:
        with self.db.lock:
            if self.find_today_record(record.student_id, record.date) is not None:
                raise ValueError(
                    f'Record for student {record.student_id} on {record.date} already exists'
                )
            stored = replace(record, id=self.db.next_record_id)
            self.db.next_record_id += 1
            # Newest first
            self.db.attendance.insert(0, stored)
            self.db.save()
            return replace(stored)

    def update_record(self, record_id: int, **patch: Any) -> AttendanceRecord:
        with self.db.lock:
            record = self._find(record_id)
            for key, value in patch.items():
                if key not in ('check_in', 'check_out', 'status'):
                    raise ValueError(f'Cannot update attendance field {key!r}')
                if key == 'status':
                    value = AttendanceStatus(value)
                setattr(record, key, value)
            self.db.save()
            return replace(record)

    def records_for_date(self, date: str) -> List[AttendanceRecord]:
        with self.db.lock:
            return [replace(r) for r in self.db.attendance if r.date == date]

    def records_for_student(self, student_id: int) -> List[AttendanceRecord]:
        with self.db.lock:
            return [replace(r) for r in self.db.attendance if r.student_id == student_id]

    def clear(self) -> int:
        """Bulk clear; returns number of removed records."""
        with self.db.lock:
            removed = len(self.db.attendance)
            self.db.attendance = []
            self.db.save()
            logger.info(f'Cleared {removed} attendance records')
            return removed

    def purge_older_than(self, cutoff_date: str) -> int:
        """Remove records dated before ``cutoff_date`` (ISO date)."""
        with self.db.lock:
            kept = [r for r in self.db.attendance if r.date >= cutoff_date]
            removed = len(self.db.attendance) - len(kept)
            if removed:
                self.db.attendance = kept
                self.db.save()
                logger.info(f'Purged {removed} attendance records older than {cutoff_date}')
            return removed


class SettingsStore:
    """Read access to the time thresholds, validated updates."""

    _TIME_FIELDS = ('check_in_time', 'late_time', 'check_out_time')

    def __init__(self, db: Database):
        self.db = db

    def get(self) -> AttendanceSettings:
        with self.db.lock:
            return replace(self.db.settings)

    def update(self, **patch: Any) -> AttendanceSettings:
        with self.db.lock:
            current = self.db.settings
            changes = {}
            for key, value in patch.items():
                if not hasattr(current, key):
                    raise InvalidSetting(f'Unknown setting: {key}')
                if key in self._TIME_FIELDS and not is_time_of_day(value):
                    raise InvalidSetting(f'{key} must be a 24-hour HH:MM time, got {value!r}')
                if key == 'data_retention_days':
                    try:
                        value = int(value)
                    except (TypeError, ValueError):
                        raise InvalidSetting('data_retention_days must be an integer')
                    if value < 1:
                        raise InvalidSetting('data_retention_days must be at least 1')
                if key == 'school_name' and not isinstance(value, str):
                    raise InvalidSetting('school_name must be text')
                changes[key] = value

            updated = replace(current, **changes)
            if updated.late_time < updated.check_in_time:
                raise InvalidSetting(
                    f'late_time {updated.late_time} is before check_in_time {updated.check_in_time}'
                )

            self.db.settings = updated
            self.db.save()
            logger.info(f'Settings updated: {", ".join(sorted(patch))}')
            return replace(self.db.settings)

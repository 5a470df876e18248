"""
Domain models.

Students, attendance records, settings and detector output.
Persisted models serialize to camelCase dicts for the JSON data file.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple

import numpy as np


TIME_OF_DAY_PATTERN = re.compile(r'^([01]\d|2[0-3]):[0-5]\d$')


class StudentStatus(str, Enum):
    ACTIVE = 'active'
    INACTIVE = 'inactive'
    GRADUATED = 'graduated'


class AttendanceStatus(str, Enum):
    PRESENT = 'Present'
    LATE = 'Late'
    ABSENT = 'Absent'
    EARLY_LEAVE = 'Early Leave'


class Direction(str, Enum):
    CHECK_IN = 'checkin'
    CHECK_OUT = 'checkout'

    @property
    def label(self) -> str:
        return 'check-in' if self is Direction.CHECK_IN else 'check-out'


class StatusType(str, Enum):
    """Kind of the status line shown on a screen."""

    DETECTING = 'detecting'
    READY = 'ready'
    DETECTED = 'detected'
    NO_FACE = 'no-face'
    RECOGNIZED = 'recognized'
    PROCESSING = 'processing'
    SUCCESS = 'success'
    ERROR = 'error'


@dataclass
class Student:
    """
    Student identity record.

    ``face_registered`` is derived from ``face_descriptor`` so the two
    can never disagree.
    """

    id: int
    student_id: str
    first_name: str
    last_name: str
    nickname: str = ''
    class_level: str = ''
    class_room: str = ''
    status: StudentStatus = StudentStatus.ACTIVE
    face_descriptor: Optional[np.ndarray] = None

    @property
    def face_registered(self) -> bool:
        return self.face_descriptor is not None

    @property
    def full_name(self) -> str:
        return f'{self.first_name} {self.last_name}'.strip()

    def copy(self) -> 'Student':
        descriptor = None
        if self.face_descriptor is not None:
            descriptor = self.face_descriptor.copy()
        return Student(
            id=self.id,
            student_id=self.student_id,
            first_name=self.first_name,
            last_name=self.last_name,
            nickname=self.nickname,
            class_level=self.class_level,
            class_room=self.class_room,
            status=self.status,
            face_descriptor=descriptor,
        )

    def to_dict(self, include_descriptor: bool = True) -> Dict[str, Any]:
        data = {
            'id': self.id,
            'studentId': self.student_id,
            'firstName': self.first_name,
            'lastName': self.last_name,
            'nickname': self.nickname,
            'classLevel': self.class_level,
            'classRoom': self.class_room,
            'status': self.status.value,
            'faceRegistered': self.face_registered,
        }
        if include_descriptor and self.face_descriptor is not None:
            data['faceDescriptor'] = [float(v) for v in self.face_descriptor]
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Student':
        descriptor = None
        raw = data.get('faceDescriptor')
        # A descriptor without the flag (or the reverse) loads as unregistered
        if data.get('faceRegistered') and raw:
            descriptor = np.asarray(raw, dtype=np.float32)

        return cls(
            id=int(data['id']),
            student_id=data.get('studentId', ''),
            first_name=data.get('firstName', ''),
            last_name=data.get('lastName', ''),
            nickname=data.get('nickname', ''),
            class_level=data.get('classLevel', ''),
            class_room=data.get('classRoom', ''),
            status=StudentStatus(data.get('status', 'active')),
            face_descriptor=descriptor,
        )


@dataclass
class AttendanceRecord:
    """One row per (student, day); check-out mutates the check-in row."""

    student_id: int
    date: str
    check_in: Optional[str] = None
    check_out: Optional[str] = None
    status: AttendanceStatus = AttendanceStatus.PRESENT
    id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'studentId': self.student_id,
            'date': self.date,
            'checkIn': self.check_in,
            'checkOut': self.check_out,
            'status': self.status.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AttendanceRecord':
        return cls(
            id=data.get('id'),
            student_id=int(data['studentId']),
            date=data['date'],
            check_in=data.get('checkIn'),
            check_out=data.get('checkOut'),
            status=AttendanceStatus(data.get('status', 'Present')),
        )


@dataclass
class AttendanceSettings:
    """
    School-day thresholds.

    Times are zero-padded 24-hour ``HH:MM`` strings, so plain string
    comparison orders them correctly.
    """

    school_name: str = 'Our School'
    check_in_time: str = '08:00'
    late_time: str = '08:30'
    check_out_time: str = '16:00'
    data_retention_days: int = 90

    def to_dict(self) -> Dict[str, Any]:
        return {
            'schoolName': self.school_name,
            'checkInTime': self.check_in_time,
            'lateTime': self.late_time,
            'checkOutTime': self.check_out_time,
            'dataRetentionDays': self.data_retention_days,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AttendanceSettings':
        defaults = cls()
        return cls(
            school_name=data.get('schoolName', defaults.school_name),
            check_in_time=data.get('checkInTime', defaults.check_in_time),
            late_time=data.get('lateTime', defaults.late_time),
            check_out_time=data.get('checkOutTime', defaults.check_out_time),
            data_retention_days=int(data.get('dataRetentionDays', defaults.data_retention_days)),
        )


def is_time_of_day(value: Any) -> bool:
    return isinstance(value, str) and bool(TIME_OF_DAY_PATTERN.match(value))


@dataclass(frozen=True)
class BoundingBox:
    x: float
    y: float
    width: float
    height: float

    @classmethod
    def from_corners(cls, x1: float, y1: float, x2: float, y2: float) -> 'BoundingBox':
        return cls(float(x1), float(y1), float(x2 - x1), float(y2 - y1))

    @property
    def area(self) -> float:
        return max(0.0, self.width) * max(0.0, self.height)

    def as_corners(self) -> Tuple[int, int, int, int]:
        return (
            int(self.x),
            int(self.y),
            int(self.x + self.width),
            int(self.y + self.height),
        )


@dataclass
class Detection:
    """A face found by the detector."""

    box: BoundingBox
    embedding: np.ndarray
    score: float = field(default=1.0)

"""Shared fixtures: in-memory stores, fake clocks, camera and detector."""

from dataclasses import replace
from datetime import datetime
from typing import List, Optional

import numpy as np
import pytest

from attendance_service.config import load_config
from attendance_service.models import BoundingBox, Detection
from attendance_service.store import AttendanceStore, Database, SettingsStore, StudentDirectory

EMBEDDING_SIZE = 8


def embedding(index: int) -> np.ndarray:
    """Unit vector along one axis; different indices are orthogonal."""
    vec = np.zeros(EMBEDDING_SIZE, dtype=np.float32)
    vec[index] = 1.0
    return vec


def face(emb: np.ndarray, box: Optional[BoundingBox] = None) -> Detection:
    return Detection(box=box or BoundingBox(200, 150, 160, 160), embedding=emb)


class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeWallClock:

    def __init__(self, value: datetime):
        self.value = value

    def __call__(self) -> datetime:
        return self.value

    def set(self, hhmm: str) -> None:
        hour, minute = map(int, hhmm.split(':'))
        self.value = self.value.replace(hour=hour, minute=minute)


class FakeCamera:

    def __init__(self, width: int = 640, height: int = 480):
        self.frame_width = width
        self.frame_height = height
        self.released = False
        self.fail_reads = False
        self.reads = 0

    def read(self):
        self.reads += 1
        if self.fail_reads or self.released:
            return False, None
        return True, np.zeros((self.frame_height, self.frame_width, 3), dtype=np.uint8)

    def release(self):
        self.released = True


class FakeDetector:
    """Returns ``detections`` on every call unless a script is queued."""

    def __init__(self, detections: Optional[List[Detection]] = None):
        self.detections = detections or []
        self.script: List = []
        self.calls = 0

    def detect(self, frame):
        self.calls += 1
        if self.script:
            step = self.script.pop(0)
            if callable(step):
                return step()
            return step
        return self.detections


@pytest.fixture
def config():
    return replace(
        load_config(),
        data_file='',
        distance_metric='cosine',
        distance_threshold=0.5,
        detection_interval=0.2,
        registration_interval=0.3,
        cooldown_seconds=8.0,
        commit_delay=0.5,
        settle_delay=2.0,
        activity_feed_size=8,
        min_face_ratio=0.05,
        max_face_ratio=0.4,
        max_frame_failures=3,
    )


@pytest.fixture
def db():
    return Database(None)


@pytest.fixture
def directory(db):
    return StudentDirectory(db)


@pytest.fixture
def attendance(db):
    return AttendanceStore(db)


@pytest.fixture
def settings(db):
    return SettingsStore(db)


@pytest.fixture
def students(directory):
    """Three students; the first two have registered faces."""
    alice = directory.add_student('S001', 'Alice', 'Smith', class_level='M1', class_room='1')
    bob = directory.add_student('S002', 'Bob', 'Jones', class_level='M1', class_room='2')
    carol = directory.add_student('S003', 'Carol', 'White', class_level='M2', class_room='1')
    directory.register_face(alice.id, embedding(0))
    directory.register_face(bob.id, embedding(1))
    return [directory.get_student(s.id) for s in (alice, bob, carol)]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def wall_clock():
    return FakeWallClock(datetime(2026, 10, 19, 8, 5))

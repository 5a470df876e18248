"""
Recognition session state machine.

Consumes per-tick detections and decides when an attendance commit fires:
- Per-student cooldown stops a face that stays in view from re-triggering
- A single processing guard allows one commit in flight at a time
- Commit runs after a short countdown, the result stays on screen for a
  settle delay, then the session returns to READY

Timers are deadlines checked by ``advance()``; the owning loop calls it
every tick.
"""

import threading
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import numpy as np

from ..attendance import AttendanceRecorder, CommitResult
from ..config import Config
from ..errors import AttendanceError
from ..logging_config import get_logger
from ..models import Detection, Direction, StatusType, Student
from .matching import FaceMatcher, Match

logger = get_logger(__name__)


class Phase(str, Enum):
    STARTING = 'starting'
    READY = 'ready'
    PENDING_COMMIT = 'pending_commit'
    COMMITTING = 'committing'
    ERROR = 'error'


@dataclass(frozen=True)
class Status:
    message: str
    type: StatusType


@dataclass(frozen=True)
class FaceObservation:
    """One detected face and who it was matched to (if anyone)."""

    detection: Detection
    match: Optional[Match] = None
    student: Optional[Student] = None

    @property
    def recognized(self) -> bool:
        return self.student is not None


@dataclass(frozen=True)
class Candidate:
    student: Student
    confidence: int
    locked_at: float


WAITING_MESSAGE = 'Waiting for face scan...'


class RecognitionSession:
    """
    Attendance workflow for one visit to a check-in or check-out screen.

    The session is created in STARTING and only reacts to detections
    after ``start()`` hands it the matcher.

    Args:
        direction: Check-in or check-out
        recorder: Attendance recorder
        config: Service configuration
        clock: Monotonic clock for cooldowns and deadlines
        wall_clock: Wall clock for attendance timestamps
    """

    def __init__(
        self,
        direction: Direction,
        recorder: AttendanceRecorder,
        config: Config,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], datetime] = datetime.now
    ):
        self.direction = direction
        self.recorder = recorder
        self.config = config
        self.matcher = FaceMatcher.build([], config.distance_threshold, config.distance_metric)
        self.students: Dict[int, Student] = {}
        self.clock = clock
        self.wall_clock = wall_clock

        self._lock = threading.RLock()
        self.phase = Phase.STARTING
        self.status = Status('Starting...', StatusType.DETECTING)
        self.candidate: Optional[Candidate] = None
        self.last_result: Optional[CommitResult] = None
        self.current_confidence = 0

        self._cooldowns: Dict[int, float] = {}
        self._commit_due: Optional[float] = None
        self._settle_due: Optional[float] = None

        # Display stats
        self.faces_processed = 0
        self.fps = 0
        self._ticks_this_second = 0
        self._fps_window_start = clock()

    @property
    def ready_message(self) -> str:
        return f'System ready for {self.direction.label}...'

    @property
    def is_processing(self) -> bool:
        """True while a commit is pending or its result is settling."""
        return self.phase in (Phase.PENDING_COMMIT, Phase.COMMITTING)

    def set_stage(self, message: str) -> None:
        """Show a startup progress message."""
        with self._lock:
            if self.phase is Phase.STARTING:
                self.status = Status(message, StatusType.DETECTING)

    def start(self, matcher: FaceMatcher, students: Dict[int, Student]) -> None:
        """
        Enter READY with the faces registered at this moment.

        Args:
            matcher: Matcher built from the registered faces
            students: Snapshot of students by id, for display names
        """
        with self._lock:
            if self.phase is Phase.ERROR:
                return
            self.matcher = matcher
            self.students = students
            self.phase = Phase.READY
            self.status = Status(self.ready_message, StatusType.READY)
            logger.info(
                f'🎬 {self.direction.label} session ready '
                f'({len(self.matcher)} registered faces)'
            )

    def fail(self, message: str) -> None:
        """Enter the terminal ERROR state."""
        with self._lock:
            self.phase = Phase.ERROR
            self.status = Status(message, StatusType.ERROR)
            self.candidate = None
            self._commit_due = None
            self._settle_due = None
            logger.error(f'❌ {self.direction.label} session failed: {message}')

    def cancel(self) -> None:
        """Drop a pending commit that has not fired yet (screen closed)."""
        with self._lock:
            if self.phase is Phase.PENDING_COMMIT and self.candidate is not None:
                logger.info(
                    f'Pending {self.direction.label} for student '
                    f'{self.candidate.student.id} cancelled'
                )
                self.phase = Phase.READY
                self.candidate = None
            self._commit_due = None

    def observe(self, detections: List[Detection]) -> List[FaceObservation]:
        """
        Process one tick's detections.

        Returns:
            One observation per detection, for drawing the overlay
        """
        with self._lock:
            if self.phase in (Phase.STARTING, Phase.ERROR):
                return []

            now = self.clock()
            self._count_tick(now)

            if self._embedding_mismatch(detections):
                return []

            observations = [self._identify(d) for d in detections]
            recognized = [o for o in observations if o.recognized]
            self.current_confidence = recognized[0].match.confidence if recognized else 0

            # Pending or settling: keep drawing, never lock a new candidate
            if self.phase is not Phase.READY:
                return observations

            for obs in recognized:
                if self._cooldown_elapsed(obs.student.id, now):
                    self._cooldowns[obs.student.id] = now
                    self._lock_candidate(obs, now)
                    break
            else:
                self.candidate = None
                self.status = Status(WAITING_MESSAGE, StatusType.READY)

            return observations

    def advance(self) -> Optional[CommitResult]:
        """
        Fire due timers.

        Returns:
            The commit result if a commit ran during this call
        """
        with self._lock:
            now = self.clock()

            if self.phase is Phase.PENDING_COMMIT and self._commit_due is not None \
                    and now >= self._commit_due:
                return self._run_commit()

            if self.phase is Phase.COMMITTING and self._settle_due is not None \
                    and now >= self._settle_due:
                self.phase = Phase.READY
                self.candidate = None
                self._settle_due = None
                self.status = Status(self.ready_message, StatusType.READY)

            return None

    def _embedding_mismatch(self, detections: List[Detection]) -> bool:
        """Fail the session if registered faces come from another face model."""
        expected = self.matcher.embedding_size
        if expected is None or not detections:
            return False

        actual = np.asarray(detections[0].embedding).size
        if actual == expected:
            return False

        logger.error(
            f'Detector produces {actual}-d embeddings but registered faces '
            f'are {expected}-d'
        )
        self.fail('Registered faces do not match the face model, re-register faces')
        return True

    def _identify(self, detection: Detection) -> FaceObservation:
        match = self.matcher.match(detection.embedding)
        if match is None:
            return FaceObservation(detection)

        student = self.students.get(match.student_id)
        if student is None:
            return FaceObservation(detection)

        return FaceObservation(detection, match, student)

    def _cooldown_elapsed(self, student_id: int, now: float) -> bool:
        last = self._cooldowns.get(student_id)
        return last is None or now - last > self.config.cooldown_seconds

    def _lock_candidate(self, obs: FaceObservation, now: float) -> None:
        self.candidate = Candidate(obs.student, obs.match.confidence, now)
        self.phase = Phase.PENDING_COMMIT
        self._commit_due = now + self.config.commit_delay
        self.status = Status(f'Face found: {obs.student.first_name}', StatusType.RECOGNIZED)
        logger.info(
            f'Recognized {obs.student.full_name} (id={obs.student.id}, '
            f'confidence {obs.match.confidence}%)'
        )

    def _run_commit(self) -> CommitResult:
        student = self.candidate.student
        self.phase = Phase.COMMITTING
        self._commit_due = None
        self.status = Status('Saving attendance...', StatusType.PROCESSING)

        try:
            result = self.recorder.commit(student.id, self.direction, self.wall_clock())
        except Exception as e:
            logger.exception(f'Unexpected error committing attendance for student {student.id}')
            result = CommitResult.failure(
                student.id, self.direction, AttendanceError(f'Failed to save attendance: {e}')
            )

        self.last_result = result
        if result.ok:
            self.status = Status('Saved! Waiting for next scan...', StatusType.SUCCESS)
        else:
            self.status = Status(result.message, StatusType.ERROR)

        self._settle_due = self.clock() + self.config.settle_delay
        return result

    def _count_tick(self, now: float) -> None:
        self.faces_processed += 1
        self._ticks_this_second += 1
        if now - self._fps_window_start >= 1.0:
            self.fps = self._ticks_this_second
            self._ticks_this_second = 0
            self._fps_window_start = now

    def snapshot(self) -> Dict[str, Any]:
        """JSON-ready view of the session for the status endpoint."""
        with self._lock:
            candidate = None
            if self.candidate is not None:
                candidate = {
                    'id': self.candidate.student.id,
                    'studentId': self.candidate.student.student_id,
                    'name': self.candidate.student.full_name,
                    'confidence': self.candidate.confidence,
                }

            last_result = None
            if self.last_result is not None:
                last_result = {
                    'ok': self.last_result.ok,
                    'studentId': self.last_result.student_id,
                    'time': self.last_result.time,
                    'status': self.last_result.status.value if self.last_result.status else None,
                    'message': self.last_result.message,
                }

            return {
                'screen': self.direction.value,
                'phase': self.phase.value,
                'status': {'message': self.status.message, 'type': self.status.type.value},
                'candidate': candidate,
                'currentConfidence': self.current_confidence,
                'lastResult': last_result,
                'stats': {
                    'registeredFaces': len(self.matcher),
                    'facesProcessed': self.faces_processed,
                    'fps': self.fps,
                    'countToday': self.recorder.committed_count,
                    'flaggedToday': self.recorder.flagged_count,
                },
                'recentActivity': [e.to_dict() for e in self.recorder.recent_activity()],
            }

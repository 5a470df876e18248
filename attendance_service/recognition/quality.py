"""
Face quality gate for registration.

A capture is allowed only while exactly one face is in view and its
bounding box covers a sensible share of the frame:
- ratio <= min_face_ratio: face too small (too far from the camera)
- ratio >= max_face_ratio: face too large (too close)

The operator confirms the capture; the gate never registers on its own.
"""

import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

import numpy as np

from ..config import Config
from ..errors import RegistrationError
from ..logging_config import get_logger
from ..models import BoundingBox, Detection, StatusType, Student
from ..store import StudentDirectory

logger = get_logger(__name__)


class Verdict(str, Enum):
    NO_FACE = 'no_face'
    MULTIPLE_FACES = 'multiple_faces'
    TOO_SMALL = 'too_small'
    TOO_LARGE = 'too_large'
    ACCEPTED = 'accepted'


VERDICT_MESSAGES = {
    Verdict.NO_FACE: 'No face detected',
    Verdict.MULTIPLE_FACES: 'Multiple faces detected',
    Verdict.TOO_SMALL: 'Face too small, move closer',
    Verdict.TOO_LARGE: 'Face too large, move back',
    Verdict.ACCEPTED: 'Good quality face, ready to register!',
}


@dataclass(frozen=True)
class GateResult:
    verdict: Verdict
    face_count: int
    ratio: Optional[float] = None
    box: Optional[BoundingBox] = None

    @property
    def accepted(self) -> bool:
        return self.verdict is Verdict.ACCEPTED

    @property
    def message(self) -> str:
        return VERDICT_MESSAGES[self.verdict]


def compute_face_ratio(box: BoundingBox, frame_width: int, frame_height: int) -> float:
    """
    Share of the frame covered by the face box.

    Args:
        box: Face bounding box
        frame_width: Frame width in pixels
        frame_height: Frame height in pixels

    Returns:
        Box area / frame area
    """
    frame_area = frame_width * frame_height
    if frame_area <= 0:
        return 0.0
    return box.area / frame_area


def assess_detections(
    detections: List[Detection],
    frame_width: int,
    frame_height: int,
    config: Config
) -> GateResult:
    """Apply the face count and size rules to one frame's detections."""
    if not detections:
        return GateResult(Verdict.NO_FACE, 0)

    if len(detections) > 1:
        return GateResult(Verdict.MULTIPLE_FACES, len(detections))

    box = detections[0].box
    ratio = compute_face_ratio(box, frame_width, frame_height)

    if ratio <= config.min_face_ratio:
        return GateResult(Verdict.TOO_SMALL, 1, ratio, box)

    if ratio >= config.max_face_ratio:
        return GateResult(Verdict.TOO_LARGE, 1, ratio, box)

    return GateResult(Verdict.ACCEPTED, 1, ratio, box)


class RegistrationQualityGate:
    """
    Holds the latest qualifying embedding for an operator-confirmed capture.

    Any rejected frame discards the stored embedding, and a capture consumes
    it, so every registration needs a fresh qualifying detection.
    """

    def __init__(self, directory: StudentDirectory, config: Config):
        self.directory = directory
        self.config = config
        self._lock = threading.Lock()
        self._embedding: Optional[np.ndarray] = None
        self.last_result: Optional[GateResult] = None
        self.status_message = 'Starting camera and preparing the system...'
        self.status_type = StatusType.DETECTING
        self.error: Optional[str] = None

    @property
    def capture_enabled(self) -> bool:
        with self._lock:
            return self._embedding is not None

    def set_stage(self, message: str, status_type: StatusType = StatusType.DETECTING) -> None:
        with self._lock:
            if self.error is None:
                self.status_message = message
                self.status_type = status_type

    def fail(self, message: str) -> None:
        with self._lock:
            self.error = message
            self._embedding = None
            self.status_message = message
            self.status_type = StatusType.ERROR
            logger.error(f'❌ Registration screen failed: {message}')

    def evaluate(
        self,
        detections: List[Detection],
        frame_width: int,
        frame_height: int
    ) -> GateResult:
        """
        Evaluate one frame and update the capture state.

        Returns:
            GateResult for this frame
        """
        result = assess_detections(detections, frame_width, frame_height, self.config)

        with self._lock:
            if self.error is not None:
                return result

            self.last_result = result
            if result.accepted:
                self._embedding = np.asarray(detections[0].embedding, dtype=np.float32).copy()
                self.status_type = StatusType.DETECTED
            else:
                self._embedding = None
                self.status_type = StatusType.NO_FACE
            self.status_message = result.message

        return result

    def capture(self, student_id: int, overwrite: bool = False) -> Student:
        """
        Register the current qualifying face for a student.

        Args:
            student_id: Student to register
            overwrite: Replace an existing registration

        Returns:
            Updated student

        Raises:
            RegistrationError: No qualifying face, or already registered
            StudentNotFound: Unknown student id
        """
        with self._lock:
            if self._embedding is None:
                raise RegistrationError()

            student = self.directory.get_student(student_id)
            if student.face_registered and not overwrite:
                raise RegistrationError(
                    f'{student.full_name} already has a registered face'
                )

            updated = self.directory.register_face(student_id, self._embedding)

            # Next capture needs a fresh detection
            self._embedding = None
            self.last_result = None
            self.status_message = f'Face registered for {student.first_name}'
            self.status_type = StatusType.SUCCESS

        return updated

    def reset(self) -> None:
        with self._lock:
            self._embedding = None
            self.last_result = None

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            result = self.last_result
            return {
                'screen': 'register',
                'phase': 'error' if self.error else 'ready',
                'status': {'message': self.status_message, 'type': self.status_type.value},
                'captureEnabled': self._embedding is not None,
                'verdict': result.verdict.value if result else None,
                'faceCount': result.face_count if result else 0,
                'faceRatio': round(result.ratio, 4) if result and result.ratio is not None else None,
                'stats': {
                    'total': len(self.directory.list_students()),
                    'registered': len(self.directory.registered_embeddings()),
                },
            }

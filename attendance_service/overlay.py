"""
Overlay drawing and MJPEG streaming.

The loop thread draws face boxes and the status line onto each frame and
publishes it to a FrameBuffer; Flask threads stream the latest frame.
"""

import threading
import time
from typing import Generator, List, Optional

import cv2
import numpy as np

from .recognition.quality import GateResult
from .recognition.session import FaceObservation

GREEN = (0, 200, 0)
RED = (0, 0, 230)
AMBER = (0, 170, 255)
WHITE = (255, 255, 255)
BLACK = (0, 0, 0)


class FrameBuffer:
    """Latest overlay frame, shared between the loop and HTTP threads."""

    def __init__(self):
        self._frame: Optional[np.ndarray] = None
        self._lock = threading.Lock()

    def set(self, frame: Optional[np.ndarray]) -> None:
        with self._lock:
            self._frame = frame.copy() if frame is not None else None

    def get(self) -> Optional[np.ndarray]:
        with self._lock:
            return self._frame.copy() if self._frame is not None else None

    def clear(self) -> None:
        self.set(None)

    @property
    def has_frame(self) -> bool:
        with self._lock:
            return self._frame is not None


def generate_mjpeg_frames(
    buffer: FrameBuffer,
    interval: float = 0.033
) -> Generator[bytes, None, None]:
    """
    Yield the buffer's frames as multipart JPEG parts (~30 FPS).

    Args:
        buffer: Frame source
        interval: Delay between parts
    """
    while True:
        frame = buffer.get()
        if frame is None:
            time.sleep(0.1)
            continue

        ok, jpg = cv2.imencode('.jpg', frame, [cv2.IMWRITE_JPEG_QUALITY, 85])
        if ok:
            yield (b'--frame\r\n'
                   b'Content-Type: image/jpeg\r\n\r\n' + jpg.tobytes() + b'\r\n')

        time.sleep(interval)


def _draw_status(frame: np.ndarray, text: str) -> None:
    # Shadow first for readability on bright backgrounds
    cv2.putText(frame, text, (10, 30), cv2.FONT_HERSHEY_SIMPLEX, 0.6, BLACK, 3)
    cv2.putText(frame, text, (10, 30), cv2.FONT_HERSHEY_SIMPLEX, 0.6, WHITE, 2)


def _draw_box(frame: np.ndarray, corners, color, label: Optional[str] = None) -> None:
    x1, y1, x2, y2 = corners
    cv2.rectangle(frame, (x1, y1), (x2, y2), color, 3)
    if label:
        cv2.rectangle(frame, (x1, y2 - 28), (x2, y2), color, cv2.FILLED)
        cv2.putText(frame, label, (x1 + 6, y2 - 8), cv2.FONT_HERSHEY_DUPLEX, 0.5, WHITE, 1)


def draw_recognition(
    frame: np.ndarray,
    observations: List[FaceObservation],
    status_text: str
) -> np.ndarray:
    """
    Draw recognized faces (green, with name) and unknown faces (red).

    Returns:
        The frame, drawn in place
    """
    for obs in observations:
        corners = obs.detection.box.as_corners()
        if obs.recognized:
            label = f'{obs.student.full_name} ({obs.match.confidence}%)'
            _draw_box(frame, corners, GREEN, label)
        else:
            _draw_box(frame, corners, RED)

    _draw_status(frame, status_text)
    return frame


def draw_registration(
    frame: np.ndarray,
    result: Optional[GateResult],
    status_text: str
) -> np.ndarray:
    """Draw the single gated face: green when accepted, amber otherwise."""
    if result is not None and result.box is not None:
        color = GREEN if result.accepted else AMBER
        label = f'{result.ratio:.0%} of frame' if result.ratio is not None else None
        _draw_box(frame, result.box.as_corners(), color, label)

    _draw_status(frame, status_text)
    return frame

"""
Camera access module.

Opens the attendance camera from one of:
- Local webcams (index 0, 1, 2), requested at the configured resolution
- RTSP / HTTP streams through OpenCV
- HTTP MJPEG streams (read with requests)

Opening failures raise a DeviceError subclass so the screen can show a
specific message. There is no automatic retry: the operator reopens the
screen.
"""

import os
import sys
from typing import Optional, Tuple

import cv2
import numpy as np
import requests

from .config import Config
from .errors import CameraNotFound, CameraPermissionDenied, DeviceError
from .logging_config import get_logger

logger = get_logger(__name__)

Frame = Optional[np.ndarray]


class CameraStream:
    """
    An opened camera.

    Wraps a cv2.VideoCapture (or MJPEGStreamCapture) and remembers the
    frame size of the first frame.
    """

    def __init__(self, capture, source: str, first_frame: np.ndarray):
        self.capture = capture
        self.source = source
        self.frame_height, self.frame_width = first_frame.shape[:2]
        self._released = False

    def read(self) -> Tuple[bool, Frame]:
        if self._released:
            return False, None
        return self.capture.read()

    def release(self) -> None:
        """Stop the stream; safe to call more than once."""
        if self._released:
            return
        self._released = True
        self.capture.release()
        logger.info('Camera released')

    @property
    def released(self) -> bool:
        return self._released


def open_camera(config: Config) -> CameraStream:
    """
    Open the configured camera and verify it delivers frames.

    Args:
        config: Service configuration

    Returns:
        Opened CameraStream

    Raises:
        CameraNotFound: Local camera device does not exist
        CameraPermissionDenied: Local camera device is not accessible
        DeviceError: Camera cannot be opened or read
    """
    source = config.camera_source

    if source.isdigit():
        index = int(source)
        _check_local_device(index)
        logger.info(f'Opening local camera {index} at {config.camera_width}x{config.camera_height}')
        capture = cv2.VideoCapture(index)
        capture.set(cv2.CAP_PROP_FRAME_WIDTH, config.camera_width)
        capture.set(cv2.CAP_PROP_FRAME_HEIGHT, config.camera_height)
    elif _is_mjpeg_url(source):
        logger.info(f'Opening MJPEG stream {_sanitize_url(source)}')
        capture = MJPEGStreamCapture(source)
    else:
        logger.info(f'Opening stream {_sanitize_url(source)}')
        capture = cv2.VideoCapture(source)
        if source.startswith('rtsp://'):
            capture.set(cv2.CAP_PROP_BUFFERSIZE, 1)

    if not capture.isOpened():
        capture.release()
        raise DeviceError(f'Could not open camera {_sanitize_url(source)}')

    ret, frame = capture.read()
    if not ret or frame is None:
        capture.release()
        raise DeviceError('Camera opened but returned no frames')

    logger.info(f'✅ Camera connected, frame size {frame.shape[1]}x{frame.shape[0]}')
    return CameraStream(capture, source, frame)


def _check_local_device(index: int) -> None:
    """Map a missing or unreadable /dev/videoN node to a specific error."""
    if not sys.platform.startswith('linux'):
        return

    device = f'/dev/video{index}'
    if not os.path.exists(device):
        raise CameraNotFound()
    if not os.access(device, os.R_OK | os.W_OK):
        raise CameraPermissionDenied()


def _is_mjpeg_url(source: str) -> bool:
    if not source.startswith(('http://', 'https://')):
        return False
    return '.mjpg' in source or 'mjpeg' in source.lower()


def _sanitize_url(url: str) -> str:
    """
    Remove password from URL for logging.

    Args:
        url: URL with potential password

    Returns:
        Sanitized URL
    """
    if '://' not in url:
        return url

    protocol, rest = url.split('://', 1)
    if '@' not in rest:
        return url

    creds, host = rest.rsplit('@', 1)
    username = creds.split(':', 1)[0]
    return f'{protocol}://{username}@{host}'


class MJPEGStreamCapture:
    """
    VideoCapture-compatible reader for HTTP MJPEG streams.

    Reads the multipart body with requests and decodes each JPEG.
    """

    MAX_BUFFER = 10 * 1024 * 1024

    def __init__(self, url: str, timeout: int = 10):
        self.url = url
        self._buffer = b''
        self._chunks = None
        self._response = None

        try:
            self._response = requests.get(url, stream=True, timeout=timeout)
            self._response.raise_for_status()
            self._chunks = self._response.iter_content(chunk_size=4096)
        except requests.exceptions.RequestException as e:
            logger.warning(f'Failed to open MJPEG stream: {e}')
            self._chunks = None

    def isOpened(self) -> bool:
        return self._chunks is not None

    def read(self) -> Tuple[bool, Frame]:
        if self._chunks is None:
            return False, None

        try:
            for chunk in self._chunks:
                self._buffer += chunk
                start = self._buffer.find(b'\xff\xd8')
                end = self._buffer.find(b'\xff\xd9', start + 2 if start != -1 else 0)

                if start != -1 and end != -1:
                    jpg = self._buffer[start:end + 2]
                    self._buffer = self._buffer[end + 2:]
                    frame = cv2.imdecode(np.frombuffer(jpg, dtype=np.uint8), cv2.IMREAD_COLOR)
                    if frame is not None:
                        return True, frame

                if len(self._buffer) > self.MAX_BUFFER:
                    logger.warning('MJPEG buffer overflow, resetting')
                    self._buffer = b''
        except requests.exceptions.RequestException as e:
            logger.warning(f'Error reading MJPEG frame: {e}')

        return False, None

    def release(self) -> None:
        if self._response is not None:
            self._response.close()
        self._chunks = None
        self._buffer = b''

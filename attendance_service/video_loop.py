"""
Screen video loops.

Orchestrates one attendance or registration screen:
- Camera connection and model loading (fatal errors end the screen)
- Fixed-interval frame sampling; ticks missed during a slow detection
  are skipped, never queued
- Face detection, then the recognition session or the quality gate
- Overlay publishing for the MJPEG stream

A ScreenThread runs a loop in the background and stops it when the
operator leaves the screen.
"""

import threading
import time
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import numpy as np

from .attendance import AttendanceRecorder
from .camera import CameraStream, open_camera
from .config import Config
from .errors import DeviceError, ModelLoadError
from .logging_config import get_logger
from .models import Detection, Direction, StatusType, Student
from .overlay import FrameBuffer, draw_recognition, draw_registration
from .recognition.matching import FaceMatcher
from .recognition.quality import RegistrationQualityGate
from .recognition.session import Phase, RecognitionSession
from .store import AttendanceStore, SettingsStore, StudentDirectory

logger = get_logger(__name__)


def load_insightface_detector(config: Config) -> Any:
    """Default detector loader."""
    # Imported here so that insightface loads only when a screen starts
    from .face_app import initialize_face_app
    return initialize_face_app(config)


class ScreenLoop:
    """
    Base class for the sampling loop of one screen.

    Subclasses provide the screen state (session or gate) through the
    ``_set_stage``/``_fail``/``_prepare``/``_process`` hooks.
    """

    name = 'screen'

    def __init__(
        self,
        config: Config,
        interval: float,
        camera_opener: Callable[[Config], CameraStream] = open_camera,
        detector_loader: Callable[[Config], Any] = load_insightface_detector,
        frame_buffer: Optional[FrameBuffer] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self.config = config
        self.interval = interval
        self.camera_opener = camera_opener
        self.detector_loader = detector_loader
        self.frame_buffer = frame_buffer or FrameBuffer()
        self.clock = clock

        self.camera: Optional[CameraStream] = None
        self.detector: Any = None
        self.skipped_ticks = 0
        self._consecutive_failures = 0

    # Hooks

    @property
    def failed(self) -> bool:
        raise NotImplementedError

    def _set_stage(self, message: str) -> None:
        raise NotImplementedError

    def _fail(self, message: str) -> None:
        raise NotImplementedError

    def _prepare(self) -> None:
        """Called once camera and detector are ready."""

    def _before_frame(self) -> None:
        """Called at the start of every tick."""

    def _process(self, frame: np.ndarray, detections: List[Detection]) -> np.ndarray:
        raise NotImplementedError

    def _on_stop(self) -> None:
        """Called when the loop ends, before the camera is released."""

    def snapshot(self) -> Dict[str, Any]:
        raise NotImplementedError

    # Lifecycle

    def start(self) -> bool:
        """
        Open the camera, load the models and prepare the screen.

        Returns:
            False if the screen entered its terminal error state
        """
        started = False
        try:
            self._set_stage('Starting camera...')
            self.camera = self.camera_opener(self.config)

            self._set_stage('Loading AI models...')
            self.detector = self.detector_loader(self.config)

            self._prepare()
            started = True
        except (DeviceError, ModelLoadError) as e:
            self._fail(e.message)
        except Exception as e:
            logger.exception(f'{self.name} screen failed to start')
            self._fail(f'Failed to start the screen: {e}')
        finally:
            if not started:
                self.close()

        return started

    def tick(self) -> None:
        """Sample one frame and process it."""
        self._before_frame()
        if self.failed:
            return

        ret, frame = self.camera.read()
        if not ret or frame is None:
            self._consecutive_failures += 1
            logger.warning(
                f'Failed to read frame '
                f'({self._consecutive_failures}/{self.config.max_frame_failures})'
            )
            if self._consecutive_failures >= self.config.max_frame_failures:
                self._fail(DeviceError('Camera stopped delivering frames').message)
            return

        self._consecutive_failures = 0
        detections = self.detector.detect(frame)
        display = self._process(frame.copy(), detections)
        self.frame_buffer.set(display)

    def run(self, stop_flag: threading.Event) -> None:
        """
        Run until ``stop_flag`` is set or the screen fails.

        A tick that raises is logged and the loop carries on with the
        next one. A tick in progress when the flag is set (including an
        attendance commit) is allowed to finish.
        """
        if not self.start():
            return

        logger.info(f'🎬 Starting {self.name} loop (every {self.interval:.2f}s)')
        next_tick = self.clock()

        try:
            while not stop_flag.is_set():
                try:
                    self.tick()
                except Exception:
                    logger.exception(f'{self.name} tick failed')

                if self.failed:
                    break

                next_tick = self._next_tick_time(next_tick)
                stop_flag.wait(max(0.0, next_tick - self.clock()))
        finally:
            self._on_stop()
            self.close()
            logger.info(f'{self.name} loop stopped')

    def _next_tick_time(self, previous: float) -> float:
        next_tick = previous + self.interval
        now = self.clock()
        if next_tick < now:
            missed = int((now - next_tick) // self.interval) + 1
            self.skipped_ticks += missed
            next_tick += missed * self.interval
            logger.debug(f'Tick overran, skipped {missed} tick(s)')
        return next_tick

    def close(self) -> None:
        if self.camera is not None:
            self.camera.release()
        self.frame_buffer.clear()


class RecognitionLoop(ScreenLoop):
    """Check-in / check-out screen."""

    def __init__(
        self,
        direction: Direction,
        directory: StudentDirectory,
        attendance: AttendanceStore,
        settings: SettingsStore,
        config: Config,
        camera_opener: Callable[[Config], CameraStream] = open_camera,
        detector_loader: Callable[[Config], Any] = load_insightface_detector,
        frame_buffer: Optional[FrameBuffer] = None,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], datetime] = datetime.now
    ):
        super().__init__(
            config,
            config.detection_interval,
            camera_opener=camera_opener,
            detector_loader=detector_loader,
            frame_buffer=frame_buffer,
            clock=clock,
        )
        self.name = direction.label
        self.direction = direction
        self.directory = directory
        self.recorder = AttendanceRecorder(
            directory, attendance, settings, config.activity_feed_size
        )
        self.session = RecognitionSession(
            direction, self.recorder, config, clock=clock, wall_clock=wall_clock
        )

    @property
    def failed(self) -> bool:
        return self.session.phase is Phase.ERROR

    def _set_stage(self, message: str) -> None:
        self.session.set_stage(message)

    def _fail(self, message: str) -> None:
        self.session.fail(message)

    def _prepare(self) -> None:
        self.session.set_stage('Loading face data...')

        students: Dict[int, Student] = {s.id: s for s in self.directory.list_students()}
        try:
            matcher = FaceMatcher.build(
                self.directory.registered_embeddings(),
                self.config.distance_threshold,
                self.config.distance_metric,
            )
        except ValueError as e:
            raise ModelLoadError(
                f'Registered face data is inconsistent, re-register faces ({e})'
            ) from e
        if len(matcher) == 0:
            logger.warning('No registered faces, every face will be reported as unknown')

        self.session.start(matcher, students)

    def _before_frame(self) -> None:
        self.session.advance()

    def _process(self, frame: np.ndarray, detections: List[Detection]) -> np.ndarray:
        observations = self.session.observe(detections)
        return draw_recognition(frame, observations, self.session.status.message)

    def _on_stop(self) -> None:
        self.session.cancel()

    def snapshot(self) -> Dict[str, Any]:
        return self.session.snapshot()


class RegistrationLoop(ScreenLoop):
    """Face registration screen."""

    name = 'registration'

    def __init__(
        self,
        directory: StudentDirectory,
        config: Config,
        camera_opener: Callable[[Config], CameraStream] = open_camera,
        detector_loader: Callable[[Config], Any] = load_insightface_detector,
        frame_buffer: Optional[FrameBuffer] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        super().__init__(
            config,
            config.registration_interval,
            camera_opener=camera_opener,
            detector_loader=detector_loader,
            frame_buffer=frame_buffer,
            clock=clock,
        )
        self.gate = RegistrationQualityGate(directory, config)

    @property
    def failed(self) -> bool:
        return self.gate.error is not None

    def _set_stage(self, message: str) -> None:
        self.gate.set_stage(message)

    def _fail(self, message: str) -> None:
        self.gate.fail(message)

    def _prepare(self) -> None:
        self.gate.set_stage('Camera ready', StatusType.READY)

    def _process(self, frame: np.ndarray, detections: List[Detection]) -> np.ndarray:
        height, width = frame.shape[:2]
        result = self.gate.evaluate(detections, width, height)
        return draw_registration(frame, result, self.gate.status_message)

    def _on_stop(self) -> None:
        self.gate.reset()

    def capture(self, student_id: int, overwrite: bool = False) -> Student:
        return self.gate.capture(student_id, overwrite=overwrite)

    def snapshot(self) -> Dict[str, Any]:
        return self.gate.snapshot()


class ScreenThread:
    """Runs a screen loop on a background thread."""

    def __init__(self, loop: ScreenLoop):
        self.loop = loop
        self.thread: Optional[threading.Thread] = None
        self.stop_flag = threading.Event()

    def start(self) -> None:
        if self.thread and self.thread.is_alive():
            logger.debug(f'{self.loop.name} screen already running')
            return

        self.stop_flag.clear()
        self.thread = threading.Thread(
            target=self.loop.run,
            args=(self.stop_flag,),
            daemon=True,
            name=f'Screen-{self.loop.name}',
        )
        self.thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        """Leave the screen: stop sampling and release the camera."""
        logger.info(f'Stopping {self.loop.name} screen')
        self.stop_flag.set()

        if self.thread and self.thread.is_alive():
            self.thread.join(timeout=timeout)

    def is_alive(self) -> bool:
        return self.thread is not None and self.thread.is_alive()

"""
Configuration module for Attendance Service.

Loads configuration from environment variables with sensible defaults.
All settings are immutable after initialization.
"""

import os
from dataclasses import dataclass
from typing import Tuple


@dataclass(frozen=True)
class Config:
    """
    Immutable configuration for Attendance Service.

    Service Identity:
        station_id: Identifier of this attendance station (for logging)
        service_name: Name of this service instance
        video_port: Port for Flask HTTP server

    Camera Settings:
        camera_source: Camera source - can be:
            - Integer (0, 1, 2) for local webcam
            - RTSP URL: rtsp://user:pass@ip:port/path
            - HTTP URL: http://camera-gateway:4000/streams/1.mjpg
        camera_width: Requested capture width for local webcams
        camera_height: Requested capture height for local webcams
        max_frame_failures: Consecutive failed reads before the session fails

    Detection:
        insightface_model: InsightFace model pack name
        insightface_det_size: Detection size for InsightFace (width, height)

    Matching:
        distance_metric: 'cosine' (1 - cosine similarity) or 'euclidean'
        distance_threshold: Maximum distance for a positive identification

    Recognition Workflow:
        detection_interval: Seconds between attendance screen ticks
        cooldown_seconds: Minimum time between two triggers of one student
        commit_delay: Countdown between candidate lock and commit
        settle_delay: Time the commit result stays on screen
        activity_feed_size: Number of recent commits kept for display

    Registration:
        registration_interval: Seconds between registration screen ticks
        min_face_ratio: Face box / frame area must be above this
        max_face_ratio: Face box / frame area must be below this

    System:
        data_file: Path to the JSON data file
        debug_mode: Enable debug logging
    """

    # Service
    station_id: str
    service_name: str
    video_port: int

    # Camera
    camera_source: str
    camera_width: int
    camera_height: int
    max_frame_failures: int

    # InsightFace
    insightface_model: str
    insightface_det_size: Tuple[int, int]

    # Matching
    distance_metric: str
    distance_threshold: float

    # Recognition workflow
    detection_interval: float
    cooldown_seconds: float
    commit_delay: float
    settle_delay: float
    activity_feed_size: int

    # Registration
    registration_interval: float
    min_face_ratio: float
    max_face_ratio: float

    # System
    data_file: str
    debug_mode: bool


def load_config() -> Config:
    """
    Load configuration from environment variables.

    Returns:
        Config: Immutable configuration object
    """
    return Config(
        # Service
        station_id=os.getenv('STATION_ID', 'main'),
        service_name=os.getenv('SERVICE_NAME', 'attendance'),
        video_port=int(os.getenv('VIDEO_PORT', '5001')),

        # Camera
        camera_source=os.getenv('CAMERA_SOURCE', '0'),
        camera_width=int(os.getenv('CAMERA_WIDTH', '640')),
        camera_height=int(os.getenv('CAMERA_HEIGHT', '480')),
        max_frame_failures=int(os.getenv('MAX_FRAME_FAILURES', '10')),

        # InsightFace
        insightface_model=os.getenv('INSIGHTFACE_MODEL', 'buffalo_l'),
        insightface_det_size=(640, 640),

        # Matching
        distance_metric=os.getenv('DISTANCE_METRIC', 'cosine').lower(),
        distance_threshold=float(os.getenv('DISTANCE_THRESHOLD', '0.5')),

        # Recognition workflow
        detection_interval=float(os.getenv('DETECTION_INTERVAL', '0.2')),
        cooldown_seconds=float(os.getenv('COOLDOWN_SECONDS', '8.0')),
        commit_delay=float(os.getenv('COMMIT_DELAY', '0.5')),
        settle_delay=float(os.getenv('SETTLE_DELAY', '2.0')),
        activity_feed_size=int(os.getenv('ACTIVITY_FEED_SIZE', '8')),

        # Registration
        registration_interval=float(os.getenv('REGISTRATION_INTERVAL', '0.3')),
        min_face_ratio=float(os.getenv('MIN_FACE_RATIO', '0.05')),
        max_face_ratio=float(os.getenv('MAX_FACE_RATIO', '0.4')),

        # System
        data_file=os.getenv('DATA_FILE', 'attendance_data.json'),
        debug_mode=os.getenv('DEBUG', 'false').lower() == 'true',
    )

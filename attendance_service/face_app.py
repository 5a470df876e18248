"""
InsightFace initialization module.

Provides face detection and embedding extraction using InsightFace models.
"""

from typing import Any, List

import numpy as np
from insightface.app import FaceAnalysis

from .config import Config
from .errors import ModelLoadError
from .logging_config import get_logger
from .models import BoundingBox, Detection

logger = get_logger(__name__)


class FaceDetector:
    """Turns InsightFace results into detections."""

    def __init__(self, face_app: Any):
        self.face_app = face_app

    def detect(self, frame: np.ndarray) -> List[Detection]:
        """
        Detect faces in a BGR frame.

        Args:
            frame: Video frame

        Returns:
            One detection per face, with its normalized embedding
        """
        faces = self.face_app.get(frame)
        return [
            Detection(
                box=BoundingBox.from_corners(*face.bbox[:4]),
                embedding=np.asarray(face.normed_embedding, dtype=np.float32),
                score=float(face.det_score),
            )
            for face in faces
        ]


def initialize_face_app(config: Config) -> FaceDetector:
    """
    Initialize InsightFace FaceAnalysis.

    Args:
        config: Service configuration

    Returns:
        Ready-to-use FaceDetector

    Raises:
        ModelLoadError: If the models cannot be downloaded or prepared
    """
    logger.info(f'Initializing InsightFace ({config.insightface_model})...')

    try:
        face_app = FaceAnalysis(
            name=config.insightface_model,
            allowed_modules=['detection', 'recognition'],
            providers=['CPUExecutionProvider'],
        )
        face_app.prepare(ctx_id=0, det_size=config.insightface_det_size)
    except Exception as e:
        raise ModelLoadError(f'Failed to load face recognition models: {e}') from e

    logger.info(f'✅ InsightFace initialized (det_size={config.insightface_det_size})')

    return FaceDetector(face_app)

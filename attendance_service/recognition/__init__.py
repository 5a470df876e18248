"""
Recognition algorithms package.

Contains modules for:
- Embedding matching
- Attendance session state machine
- Registration quality gate
"""

from .matching import FaceMatcher, Match
from .quality import GateResult, RegistrationQualityGate, Verdict, compute_face_ratio
from .session import FaceObservation, Phase, RecognitionSession

__all__ = [
    'FaceMatcher',
    'Match',
    'GateResult',
    'RegistrationQualityGate',
    'Verdict',
    'compute_face_ratio',
    'FaceObservation',
    'Phase',
    'RecognitionSession',
]

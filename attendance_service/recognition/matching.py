"""
Embedding matching module.

Nearest-neighbour search of a face embedding over the registered students.
"""

from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

import numpy as np

METRICS = ('cosine', 'euclidean')


@dataclass(frozen=True)
class Match:
    """Closest registered student within the distance threshold."""

    student_id: int
    distance: float

    @property
    def confidence(self) -> int:
        """
        Display confidence in percent.

        ``round((1 - distance) * 100)``, clamped to [0, 100] because
        distances are not guaranteed to stay in [0, 1].
        """
        return int(min(100, max(0, round((1.0 - self.distance) * 100))))


class FaceMatcher:
    """
    Matches face embeddings against registered students.

    Labeled embeddings are ordered by student id, and the first of several
    equally close candidates wins, so ties resolve to the lowest id.
    """

    def __init__(
        self,
        student_ids: List[int],
        embeddings: np.ndarray,
        distance_threshold: float,
        metric: str = 'cosine'
    ):
        if metric not in METRICS:
            raise ValueError(f'Unknown distance metric {metric!r}, expected one of {METRICS}')

        self.student_ids = student_ids
        self.embeddings = embeddings
        self.distance_threshold = distance_threshold
        self.metric = metric

        if metric == 'cosine' and len(student_ids) > 0:
            self.embeddings = _normalize(embeddings)

    @classmethod
    def build(
        cls,
        labeled_embeddings: Iterable[Tuple[int, np.ndarray]],
        distance_threshold: float,
        metric: str = 'cosine'
    ) -> 'FaceMatcher':
        """
        Build a matcher from (student id, embedding) pairs.

        Raises:
            ValueError: If embeddings differ in length
        """
        labeled = sorted(labeled_embeddings, key=lambda pair: pair[0])
        student_ids = [student_id for student_id, _ in labeled]

        if not labeled:
            return cls([], np.empty((0, 0), dtype=np.float32), distance_threshold, metric)

        vectors = [np.asarray(emb, dtype=np.float32).ravel() for _, emb in labeled]
        lengths = {v.shape[0] for v in vectors}
        if len(lengths) != 1:
            raise ValueError(f'Registered embeddings differ in length: {sorted(lengths)}')

        return cls(student_ids, np.stack(vectors), distance_threshold, metric)

    def __len__(self) -> int:
        return len(self.student_ids)

    @property
    def embedding_size(self) -> Optional[int]:
        if not self.student_ids:
            return None
        return int(self.embeddings.shape[1])

    def distances(self, query: np.ndarray) -> np.ndarray:
        """Distance from ``query`` to every registered embedding."""
        query = np.asarray(query, dtype=np.float32).ravel()

        if query.shape[0] != self.embedding_size:
            raise ValueError(
                f'Query embedding has length {query.shape[0]}, '
                f'expected {self.embedding_size}'
            )

        if self.metric == 'cosine':
            # Rows are unit length, dot product is the cosine similarity
            similarities = self.embeddings @ _normalize(query)
            return 1.0 - similarities

        return np.linalg.norm(self.embeddings - query, axis=1)

    def match(self, query: np.ndarray) -> Optional[Match]:
        """
        Find the closest registered student.

        Args:
            query: Face embedding to match

        Returns:
            Match, or None if nobody is within the threshold (unknown face)
        """
        if not self.student_ids:
            return None

        distances = self.distances(query)
        best_idx = int(np.argmin(distances))
        best_distance = float(distances[best_idx])

        if best_distance <= self.distance_threshold:
            return Match(self.student_ids[best_idx], best_distance)

        return None


def _normalize(vectors: np.ndarray) -> np.ndarray:
    norms = np.linalg.norm(vectors, axis=-1, keepdims=True)
    return vectors / np.maximum(norms, 1e-12)

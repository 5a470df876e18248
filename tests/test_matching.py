import numpy as np
import pytest

from attendance_service.recognition.matching import FaceMatcher, Match

from .conftest import embedding


def test_exact_match_returns_student():
    matcher = FaceMatcher.build([(1, embedding(0)), (2, embedding(1))], 0.5)

    match = matcher.match(embedding(1))

    assert match.student_id == 2
    assert match.distance == pytest.approx(0.0, abs=1e-6)
    assert match.confidence == 100


def test_nearest_within_threshold_wins():
    matcher = FaceMatcher.build([(1, embedding(0)), (2, embedding(1))], 0.5)
    query = embedding(0) * 0.9 + embedding(1) * 0.3

    assert matcher.match(query).student_id == 1


def test_unknown_when_nearest_is_beyond_threshold():
    labeled = [(i + 1, embedding(i)) for i in range(6)]
    matcher = FaceMatcher.build(labeled, 0.5)
    # Cosine distance ~0.65 to every registered face
    query = np.ones(8, dtype=np.float32)

    assert matcher.match(query) is None


def test_unregistered_face_at_distance_07_is_unknown():
    matcher = FaceMatcher.build([(1, np.zeros(8, dtype=np.float32))], 0.5, metric='euclidean')
    query = np.zeros(8, dtype=np.float32)
    query[0] = 0.7

    assert matcher.distances(query)[0] == pytest.approx(0.7)
    assert matcher.match(query) is None


def test_euclidean_threshold_is_inclusive():
    matcher = FaceMatcher.build([(1, np.zeros(8, dtype=np.float32))], 0.5, metric='euclidean')
    query = np.zeros(8, dtype=np.float32)
    query[3] = 0.5

    assert matcher.match(query).student_id == 1


def test_ties_resolve_to_lowest_student_id():
    same = embedding(2)
    matcher = FaceMatcher.build([(7, same), (3, same.copy()), (5, same.copy())], 0.5)

    assert matcher.match(same).student_id == 3


def test_empty_matcher_reports_unknown():
    matcher = FaceMatcher.build([], 0.5)

    assert len(matcher) == 0
    assert matcher.match(embedding(0)) is None


def test_mixed_embedding_lengths_are_rejected():
    with pytest.raises(ValueError):
        FaceMatcher.build([(1, np.zeros(8)), (2, np.zeros(4))], 0.5)


def test_query_of_wrong_length_is_rejected():
    matcher = FaceMatcher.build([(1, embedding(0))], 0.5)

    with pytest.raises(ValueError):
        matcher.match(np.zeros(4, dtype=np.float32))


def test_unknown_metric_is_rejected():
    with pytest.raises(ValueError):
        FaceMatcher.build([(1, embedding(0))], 0.5, metric='manhattan')


@pytest.mark.parametrize('distance, confidence', [
    (0.0, 100),
    (0.25, 75),
    (0.426, 57),
    (1.0, 0),
    (1.7, 0),
    (-0.3, 100),
])
def test_confidence_is_clamped_percentage(distance, confidence):
    assert Match(1, distance).confidence == confidence

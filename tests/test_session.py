import numpy as np
import pytest

from attendance_service.attendance import AttendanceRecorder
from attendance_service.errors import AlreadyCheckedIn
from attendance_service.models import AttendanceStatus, Direction
from attendance_service.recognition.matching import FaceMatcher
from attendance_service.recognition.session import Phase, RecognitionSession, StatusType

from .conftest import embedding, face


@pytest.fixture
def recorder(directory, attendance, settings):
    return AttendanceRecorder(directory, attendance, settings)


def make_session(direction, recorder, directory, config, clock, wall_clock):
    session = RecognitionSession(direction, recorder, config, clock=clock, wall_clock=wall_clock)
    matcher = FaceMatcher.build(
        directory.registered_embeddings(), config.distance_threshold, config.distance_metric
    )
    session.start(matcher, {s.id: s for s in directory.list_students()})
    return session


@pytest.fixture
def session(recorder, directory, config, clock, wall_clock, students):
    return make_session(Direction.CHECK_IN, recorder, directory, config, clock, wall_clock)


def run_for(session, clock, seconds, detections=(), step=0.2):
    """Tick the session like the loop does, collecting commit results."""
    results = []
    elapsed = 0.0
    while elapsed < seconds:
        clock.advance(step)
        elapsed += step
        result = session.advance()
        if result is not None:
            results.append(result)
        session.observe(list(detections))
    return results


def test_session_starts_in_starting_phase(recorder, config, clock, wall_clock):
    session = RecognitionSession(Direction.CHECK_IN, recorder, config, clock=clock, wall_clock=wall_clock)

    session.set_stage('Loading AI models...')

    assert session.phase is Phase.STARTING
    assert session.status.message == 'Loading AI models...'
    assert session.observe([face(embedding(0))]) == []


def test_recognized_face_commits_once_after_delay(session, clock, students, attendance):
    alice = students[0]

    observations = session.observe([face(embedding(0))])

    assert observations[0].student.id == alice.id
    assert session.phase is Phase.PENDING_COMMIT
    assert session.candidate.student.id == alice.id
    assert session.status.type is StatusType.RECOGNIZED

    clock.advance(0.4)
    assert session.advance() is None

    clock.advance(0.15)
    result = session.advance()

    assert result.ok
    assert result.time == '08:05'
    assert result.status is AttendanceStatus.PRESENT
    assert session.phase is Phase.COMMITTING
    assert session.status.type is StatusType.SUCCESS
    assert session.advance() is None
    assert len(attendance.records_for_student(alice.id)) == 1


def test_session_returns_to_ready_after_settle(session, clock):
    session.observe([face(embedding(0))])
    clock.advance(0.6)
    session.advance()

    clock.advance(1.9)
    session.advance()
    assert session.phase is Phase.COMMITTING

    clock.advance(0.2)
    session.advance()
    assert session.phase is Phase.READY
    assert session.candidate is None
    assert session.status.message == session.ready_message


def test_cooldown_blocks_retrigger_of_same_student(session, clock, wall_clock):
    detections = [face(embedding(0))]
    session.observe(detections)

    # Face stays in view for 7 seconds: one commit only
    results = run_for(session, clock, 7.0, detections)
    assert len(results) == 1
    assert session.phase is Phase.READY

    # Cooldown over: same student triggers again and is rejected
    wall_clock.set('08:20')
    results = run_for(session, clock, 2.0, detections)
    assert len(results) == 1
    assert not results[0].ok
    assert isinstance(results[0].error, AlreadyCheckedIn)
    assert results[0].error.existing_time == '08:05'
    assert session.status.type is StatusType.ERROR


def test_second_face_during_pending_commit_is_dropped(session, clock, students, attendance):
    alice, bob = students[0], students[1]
    session.observe([face(embedding(0))])

    clock.advance(0.2)
    session.observe([face(embedding(0)), face(embedding(1))])
    assert session.candidate.student.id == alice.id

    results = run_for(session, clock, 2.4, [face(embedding(1))])
    assert [r.student_id for r in results] == [alice.id]

    # Bob was never locked, so his cooldown did not start
    results = run_for(session, clock, 1.0, [face(embedding(1))])
    assert [r.student_id for r in results] == [bob.id]
    assert attendance.find_today_record(bob.id, '2026-10-19') is not None


def test_only_first_eligible_face_locks_per_tick(session, students):
    session.observe([face(embedding(1)), face(embedding(0))])

    assert session.candidate.student.id == students[1].id


def test_unknown_face_keeps_waiting(session):
    observations = session.observe([face(embedding(5))])

    assert not observations[0].recognized
    assert session.phase is Phase.READY
    assert session.candidate is None
    assert session.status.message == 'Waiting for face scan...'
    assert session.current_confidence == 0


def test_no_face_clears_status(session, clock):
    session.observe([face(embedding(0))])
    run_for(session, clock, 3.0, [])

    session.observe([])

    assert session.phase is Phase.READY
    assert session.candidate is None
    assert session.status.type is StatusType.READY


def test_check_out_without_check_in_reports_error(recorder, directory, config, clock, wall_clock, students):
    wall_clock.set('16:10')
    session = make_session(Direction.CHECK_OUT, recorder, directory, config, clock, wall_clock)

    session.observe([face(embedding(0))])
    results = run_for(session, clock, 0.6)

    assert not results[0].ok
    assert session.status.message == 'No check-in record found for today'


def test_unexpected_commit_error_returns_to_ready(session, clock, recorder, monkeypatch):
    def broken_commit(*args, **kwargs):
        raise RuntimeError('disk full')

    monkeypatch.setattr(recorder, 'commit', broken_commit)
    session.observe([face(embedding(0))])

    results = run_for(session, clock, 0.6)
    assert not results[0].ok
    assert 'disk full' in results[0].message

    run_for(session, clock, 2.2)
    assert session.phase is Phase.READY


def test_failed_session_is_terminal(session, clock):
    session.fail('Please allow the app to use the camera')

    assert session.observe([face(embedding(0))]) == []
    clock.advance(1.0)
    assert session.advance() is None
    assert session.phase is Phase.ERROR
    assert session.status.type is StatusType.ERROR


def test_fail_before_start_is_not_overridden(recorder, directory, config, clock, wall_clock):
    session = RecognitionSession(Direction.CHECK_IN, recorder, config, clock=clock, wall_clock=wall_clock)
    session.fail('No camera found on this device')

    session.start(FaceMatcher.build([], 0.5), {})

    assert session.phase is Phase.ERROR


def test_cancel_drops_pending_commit(session, clock, attendance, students):
    session.observe([face(embedding(0))])

    session.cancel()
    clock.advance(1.0)

    assert session.advance() is None
    assert attendance.records_for_date('2026-10-19') == []


def test_snapshot_reports_activity_and_stats(session, clock, students):
    session.observe([face(embedding(0))])
    run_for(session, clock, 0.6)

    snapshot = session.snapshot()

    assert snapshot['screen'] == 'checkin'
    assert snapshot['phase'] == 'committing'
    assert snapshot['candidate']['studentId'] == 'S001'
    assert snapshot['stats']['registeredFaces'] == 2
    assert snapshot['stats']['countToday'] == 1
    assert snapshot['recentActivity'][0]['name'] == 'Alice Smith'
    assert snapshot['lastResult']['ok'] is True


def test_faces_from_another_model_fail_the_session(session):
    legacy = face(np.ones(4, dtype=np.float32))

    assert session.observe([legacy]) == []

    assert session.phase is Phase.ERROR
    assert session.status.message == 'Registered faces do not match the face model, re-register faces'

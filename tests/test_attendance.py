from datetime import datetime

import pytest

from attendance_service.attendance import AttendanceRecorder
from attendance_service.errors import AlreadyCheckedIn, NoCheckInFound, StudentNotFound
from attendance_service.models import AttendanceRecord, AttendanceStatus, Direction

DAY = datetime(2026, 10, 19)


def at(hhmm: str, day: datetime = DAY) -> datetime:
    hour, minute = map(int, hhmm.split(':'))
    return day.replace(hour=hour, minute=minute)


@pytest.fixture
def recorder(directory, attendance, settings):
    return AttendanceRecorder(directory, attendance, settings, activity_size=8)


def test_check_in_before_late_time_is_present(recorder, students, attendance):
    alice = students[0]

    result = recorder.commit(alice.id, Direction.CHECK_IN, at('08:05'))

    assert result.ok
    assert result.time == '08:05'
    assert result.status is AttendanceStatus.PRESENT
    record = attendance.find_today_record(alice.id, '2026-10-19')
    assert record.check_in == '08:05'
    assert record.check_out is None


def test_check_in_exactly_at_late_time_is_present(recorder, students):
    result = recorder.commit(students[0].id, Direction.CHECK_IN, at('08:30'))

    assert result.status is AttendanceStatus.PRESENT


def test_check_in_after_late_time_is_late(recorder, students):
    result = recorder.commit(students[1].id, Direction.CHECK_IN, at('08:45'))

    assert result.status is AttendanceStatus.LATE


def test_second_check_in_is_rejected_and_keeps_one_record(recorder, students, attendance):
    alice = students[0]
    recorder.commit(alice.id, Direction.CHECK_IN, at('08:05'))

    second = recorder.commit(alice.id, Direction.CHECK_IN, at('08:20'))
    third = recorder.commit(alice.id, Direction.CHECK_IN, at('09:00'))

    for result in (second, third):
        assert not result.ok
        assert isinstance(result.error, AlreadyCheckedIn)
        assert result.error.existing_time == '08:05'
        assert '08:05' in result.message
    assert len(attendance.records_for_student(alice.id)) == 1


def test_check_in_next_day_creates_new_record(recorder, students, attendance):
    alice = students[0]
    recorder.commit(alice.id, Direction.CHECK_IN, at('08:05'))

    result = recorder.commit(alice.id, Direction.CHECK_IN, at('08:10', datetime(2026, 10, 20)))

    assert result.ok
    assert len(attendance.records_for_student(alice.id)) == 2


def test_check_out_without_check_in_fails_and_creates_nothing(recorder, students, attendance):
    result = recorder.commit(students[0].id, Direction.CHECK_OUT, at('16:10'))

    assert not result.ok
    assert isinstance(result.error, NoCheckInFound)
    assert attendance.records_for_date('2026-10-19') == []


def test_check_out_updates_same_record(recorder, students, attendance):
    alice = students[0]
    recorder.commit(alice.id, Direction.CHECK_IN, at('08:05'))

    result = recorder.commit(alice.id, Direction.CHECK_OUT, at('16:10'))

    assert result.ok
    assert result.status is AttendanceStatus.PRESENT
    records = attendance.records_for_student(alice.id)
    assert len(records) == 1
    assert records[0].check_in == '08:05'
    assert records[0].check_out == '16:10'


def test_check_out_before_check_out_time_is_early_leave(recorder, students):
    alice = students[0]
    recorder.commit(alice.id, Direction.CHECK_IN, at('08:05'))

    result = recorder.commit(alice.id, Direction.CHECK_OUT, at('15:00'))

    assert result.status is AttendanceStatus.EARLY_LEAVE


def test_late_status_survives_early_check_out(recorder, students, attendance):
    bob = students[1]
    recorder.commit(bob.id, Direction.CHECK_IN, at('08:45'))

    result = recorder.commit(bob.id, Direction.CHECK_OUT, at('15:50'))

    assert result.ok
    assert result.status is AttendanceStatus.LATE
    record = attendance.find_today_record(bob.id, '2026-10-19')
    assert record.status is AttendanceStatus.LATE
    assert record.check_out == '15:50'


def test_record_without_check_in_is_reused(recorder, students, attendance):
    carol = students[2]
    attendance.insert_record(AttendanceRecord(
        student_id=carol.id, date='2026-10-19', status=AttendanceStatus.ABSENT
    ))

    result = recorder.commit(carol.id, Direction.CHECK_IN, at('08:50'))

    assert result.ok
    records = attendance.records_for_student(carol.id)
    assert len(records) == 1
    assert records[0].check_in == '08:50'
    assert records[0].status is AttendanceStatus.LATE


def test_unknown_student_fails(recorder, students):
    result = recorder.commit(999, Direction.CHECK_IN, at('08:05'))

    assert not result.ok
    assert isinstance(result.error, StudentNotFound)


def test_thresholds_follow_settings(recorder, students, settings):
    settings.update(late_time='08:00')

    result = recorder.commit(students[0].id, Direction.CHECK_IN, at('08:05'))

    assert result.status is AttendanceStatus.LATE


def test_activity_feed_is_bounded_newest_first(directory, attendance, settings):
    recorder = AttendanceRecorder(directory, attendance, settings, activity_size=3)
    ids = [directory.add_student(f'S{i:03}', f'Student{i}', 'Test').id for i in range(5)]

    for minute, student_id in enumerate(ids):
        recorder.commit(student_id, Direction.CHECK_IN, at(f'08:{minute:02}'))

    feed = recorder.recent_activity()
    assert [e.student_id for e in feed] == [ids[4], ids[3], ids[2]]
    assert feed[0].name == 'Student4 Test'
    assert recorder.committed_count == 5


def test_failed_commits_are_not_counted(recorder, students):
    alice = students[0]
    recorder.commit(alice.id, Direction.CHECK_IN, at('08:45'))
    recorder.commit(alice.id, Direction.CHECK_IN, at('08:50'))

    assert recorder.committed_count == 1
    assert recorder.flagged_count == 1
    assert len(recorder.recent_activity()) == 1

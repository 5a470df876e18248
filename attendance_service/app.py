"""
Flask application for the operator HTTP API.

Provides:
- GET /video_feed: MJPEG stream of the screen overlay
- GET /health: Service health check
- GET /api/status: Current screen state
- GET/POST /api/students: List (filterable) or add students
- GET /api/students/<id>/attendance: Attendance history of one student
- POST/DELETE /api/students/<id>/face: Capture or delete a registered face
- GET/DELETE /api/attendance: Records of one day, or clear all records
- GET/PUT /api/settings: School-day time thresholds
"""

from datetime import date

from flask import Flask, Response, jsonify, request
from flask_cors import CORS

from . import overlay
from .config import Config
from .errors import InvalidSetting, InvalidStudent, RegistrationError, StudentNotFound
from .logging_config import get_logger
from .store import AttendanceStore, SettingsStore, StudentDirectory
from .video_loop import RegistrationLoop, ScreenLoop

logger = get_logger(__name__)

_SETTINGS_FIELDS = {
    'schoolName': 'school_name',
    'checkInTime': 'check_in_time',
    'lateTime': 'late_time',
    'checkOutTime': 'check_out_time',
    'dataRetentionDays': 'data_retention_days',
}

_STUDENT_FIELDS = {
    'studentId': 'student_id',
    'firstName': 'first_name',
    'lastName': 'last_name',
    'nickname': 'nickname',
    'classLevel': 'class_level',
    'classRoom': 'class_room',
    'status': 'status',
}


def create_app(
    config: Config,
    loop: ScreenLoop,
    directory: StudentDirectory,
    attendance: AttendanceStore,
    settings: SettingsStore
) -> Flask:
    """
    Create and configure Flask application.

    Args:
        config: Service configuration
        loop: The running screen loop
        directory: Student directory
        attendance: Attendance records
        settings: Settings store

    Returns:
        Configured Flask app
    """
    app = Flask(__name__)
    CORS(app)

    @app.errorhandler(StudentNotFound)
    def student_not_found(e):
        return jsonify({'error': e.message}), 404

    @app.errorhandler(RegistrationError)
    def registration_refused(e):
        return jsonify({'error': e.message}), 409

    @app.errorhandler(InvalidSetting)
    def invalid_setting(e):
        return jsonify({'error': e.message}), 400

    @app.errorhandler(InvalidStudent)
    def invalid_student(e):
        return jsonify({'error': e.message}), 400

    @app.route('/video_feed')
    def video_feed():
        """Stream MJPEG video feed."""
        return Response(
            overlay.generate_mjpeg_frames(loop.frame_buffer),
            mimetype='multipart/x-mixed-replace; boundary=frame'
        )

    @app.route('/health')
    def health():
        """Health check endpoint."""
        snapshot = loop.snapshot()
        return jsonify({
            'status': 'ok',
            'service': config.service_name,
            'stationId': config.station_id,
            'screen': snapshot['screen'],
            'phase': snapshot['phase'],
            'streaming': loop.frame_buffer.has_frame,
        })

    @app.route('/api/status')
    def status():
        return jsonify(loop.snapshot())

    @app.route('/api/students')
    def list_students():
        students = directory.filter_students(
            search=request.args.get('search', ''),
            class_level=request.args.get('class_level', ''),
            registration=request.args.get('registration', ''),
        )
        return jsonify({
            'students': [s.to_dict(include_descriptor=False) for s in students],
            'total': len(students),
        })

    @app.route('/api/students', methods=['POST'])
    def add_student():
        payload = request.get_json(silent=True) or {}
        unknown = set(payload) - set(_STUDENT_FIELDS)
        if unknown:
            raise InvalidStudent(f'Unknown student fields: {", ".join(sorted(unknown))}')

        fields = {_STUDENT_FIELDS[k]: v for k, v in payload.items()}
        for required in ('student_id', 'first_name', 'last_name'):
            value = fields.pop(required, None)
            if not isinstance(value, str) or not value.strip():
                raise InvalidStudent(f'{required} is required')
            fields[required] = value.strip()

        student = directory.add_student(
            fields.pop('student_id'),
            fields.pop('first_name'),
            fields.pop('last_name'),
            **fields
        )
        return jsonify({'student': student.to_dict(include_descriptor=False)}), 201

    @app.route('/api/students/<int:student_id>/attendance')
    def student_attendance(student_id: int):
        directory.get_student(student_id)
        records = attendance.records_for_student(student_id)
        return jsonify({'records': [r.to_dict() for r in records]})

    @app.route('/api/attendance', methods=['GET'])
    def attendance_report():
        day = request.args.get('date') or date.today().isoformat()
        try:
            date.fromisoformat(day)
        except ValueError:
            return jsonify({'error': f'Invalid date {day!r}, expected YYYY-MM-DD'}), 400

        names = {s.id: s.full_name for s in directory.list_students()}
        records = []
        for record in attendance.records_for_date(day):
            data = record.to_dict()
            data['name'] = names.get(record.student_id, 'Unknown')
            records.append(data)
        return jsonify({'date': day, 'records': records, 'total': len(records)})

    @app.route('/api/attendance', methods=['DELETE'])
    def clear_attendance():
        removed = attendance.clear()
        return jsonify({'removed': removed})

    @app.route('/api/students/<int:student_id>/face', methods=['POST'])
    def capture_face(student_id: int):
        if not isinstance(loop, RegistrationLoop):
            raise RegistrationError('Face capture is only available on the registration screen')

        payload = request.get_json(silent=True) or {}
        student = loop.capture(student_id, overwrite=bool(payload.get('overwrite', False)))
        return jsonify({
            'message': f'Face registered for {student.first_name}',
            'student': student.to_dict(include_descriptor=False),
        }), 201

    @app.route('/api/students/<int:student_id>/face', methods=['DELETE'])
    def delete_face(student_id: int):
        student = directory.get_student(student_id)
        if not student.face_registered:
            return jsonify({'error': 'Face data not found'}), 404

        student = directory.clear_face(student_id)
        return jsonify({'student': student.to_dict(include_descriptor=False)})

    @app.route('/api/settings', methods=['GET'])
    def get_settings():
        return jsonify(settings.get().to_dict())

    @app.route('/api/settings', methods=['PUT'])
    def update_settings():
        payload = request.get_json(silent=True) or {}
        unknown = set(payload) - set(_SETTINGS_FIELDS)
        if unknown:
            raise InvalidSetting(f'Unknown settings: {", ".join(sorted(unknown))}')

        updated = settings.update(**{_SETTINGS_FIELDS[k]: v for k, v in payload.items()})
        return jsonify(updated.to_dict())

    return app

"""
Error taxonomy.

Every error carries a ``message`` that is safe to show to the operator.
Device and model errors are fatal to a screen session; the rest are
recoverable and end up as status messages or HTTP error responses.
"""

from typing import Optional


class AttendanceError(Exception):
    """Base class for all attendance service errors."""

    default_message = 'Something went wrong'

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class DeviceError(AttendanceError):
    """Camera could not be opened or stopped delivering frames."""

    default_message = 'Could not start the camera'


class CameraPermissionDenied(DeviceError):
    default_message = 'Please allow the app to use the camera'


class CameraNotFound(DeviceError):
    default_message = 'No camera found on this device'


class ModelLoadError(AttendanceError):
    default_message = 'Failed to load the face recognition models'


class StudentNotFound(AttendanceError):

    def __init__(self, student_id: int):
        self.student_id = student_id
        super().__init__(f'Student {student_id} not found')


class DuplicateTransition(AttendanceError):
    """A check-in or check-out that the current record does not allow."""


class AlreadyCheckedIn(DuplicateTransition):

    def __init__(self, existing_time: str):
        self.existing_time = existing_time
        super().__init__(f'Already checked in today at {existing_time}')


class NoCheckInFound(DuplicateTransition):
    default_message = 'No check-in record found for today'


class RegistrationError(AttendanceError):
    """Face capture refused."""

    default_message = 'Select a student and wait for a good quality face'


class InvalidSetting(AttendanceError, ValueError):
    pass


class InvalidStudent(AttendanceError, ValueError):
    """Student data rejected on add or update."""

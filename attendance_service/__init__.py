"""
Attendance Service - Face Recognition Student Attendance

Records student check-in/check-out from a webcam using face recognition,
with operator-confirmed face registration and an HTTP status API.
"""

__version__ = "1.0.0"

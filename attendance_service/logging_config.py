"""
Logging configuration for Attendance Service.

Every record carries the station id so that logs of several
attendance stations can be told apart.
"""

import logging
import sys


class StationContextFilter(logging.Filter):
    """Add station context to log records."""

    def __init__(self, station_id: str):
        super().__init__()
        self.station_id = station_id

    def filter(self, record: logging.LogRecord) -> bool:
        record.station_id = self.station_id
        return True


def setup_logging(station_id: str, debug: bool = False) -> None:
    """
    Configure logging for the service.

    Args:
        station_id: Station identifier for log context
        debug: Enable debug level logging
    """
    level = logging.DEBUG if debug else logging.INFO

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(
        '[%(levelname)s] [station=%(station_id)s] %(message)s'
    ))
    handler.addFilter(StationContextFilter(station_id))

    root_logger.addHandler(handler)

    # Werkzeug logs every MJPEG poll at INFO
    logging.getLogger('werkzeug').setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)

"""
Attendance Service - Main Entry Point

Runs one attendance station screen (check-in, check-out or face
registration) together with the operator HTTP API.
"""

import argparse
import os
import sys
import threading
import time
from dataclasses import replace
from datetime import date, timedelta
from pathlib import Path

from .app import create_app
from .config import Config, load_config
from .logging_config import get_logger, setup_logging
from .models import Direction
from .store import AttendanceStore, Database, SettingsStore, StudentDirectory
from .video_loop import RecognitionLoop, RegistrationLoop, ScreenLoop, ScreenThread

logger = get_logger(__name__)

SCREENS = ('checkin', 'checkout', 'register')


def _load_local_env() -> None:
    """Load environment variables from attendance_service/.env if present."""
    env_path = Path(__file__).resolve().parent / '.env'
    if not env_path.exists():
        return

    for raw_line in env_path.read_text().splitlines():
        line = raw_line.strip()
        if not line or line.startswith('#') or '=' not in line:
            continue
        key, value = line.split('=', 1)
        os.environ.setdefault(key.strip(), value.strip())


def parse_args(argv=None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description='Attendance Service - Face Recognition Check-in/Check-out'
    )

    parser.add_argument(
        'screen',
        choices=SCREENS,
        help='Screen to run'
    )

    parser.add_argument(
        '--camera',
        type=str,
        help='Camera index or stream URL (or set CAMERA_SOURCE)'
    )

    parser.add_argument(
        '--data-file',
        type=str,
        help='JSON data file (or set DATA_FILE)'
    )

    parser.add_argument(
        '--port',
        type=int,
        help='HTTP port (or set VIDEO_PORT)'
    )

    parser.add_argument(
        '--debug',
        action='store_true',
        help='Enable debug logging'
    )

    return parser.parse_args(argv)


def apply_overrides(config: Config, args: argparse.Namespace) -> Config:
    """Command line flags take precedence over the environment."""
    overrides = {}
    if args.camera:
        overrides['camera_source'] = args.camera
    if args.data_file:
        overrides['data_file'] = args.data_file
    if args.port:
        overrides['video_port'] = args.port
    if args.debug:
        overrides['debug_mode'] = True
    return replace(config, **overrides)


def build_loop(
    screen: str,
    config: Config,
    directory: StudentDirectory,
    attendance: AttendanceStore,
    settings: SettingsStore
) -> ScreenLoop:
    if screen == 'register':
        return RegistrationLoop(directory, config)
    return RecognitionLoop(Direction(screen), directory, attendance, settings, config)


def purge_expired_records(attendance: AttendanceStore, settings: SettingsStore) -> int:
    """Apply the data retention setting."""
    retention_days = settings.get().data_retention_days
    cutoff = (date.today() - timedelta(days=retention_days)).isoformat()
    return attendance.purge_older_than(cutoff)


def start_flask_server(app, config: Config) -> None:
    """
    Start Flask server (blocking; run in a background thread).

    Args:
        app: Flask application
        config: Service configuration
    """
    logger.info(f'Starting HTTP server on port {config.video_port}...')
    app.run(
        host='0.0.0.0',
        port=config.video_port,
        threaded=True,
        debug=False,
        use_reloader=False
    )


def main(argv=None) -> None:
    """Main entry point."""
    _load_local_env()
    args = parse_args(argv)
    config = apply_overrides(load_config(), args)

    setup_logging(config.station_id, config.debug_mode)

    logger.info('=' * 60)
    logger.info(f'Attendance Service - {args.screen} screen')
    logger.info('=' * 60)
    logger.info(f'Camera: {config.camera_source}')
    logger.info(f'Data file: {config.data_file}')
    logger.info('=' * 60)

    db = Database(config.data_file)
    directory = StudentDirectory(db)
    attendance = AttendanceStore(db)
    settings = SettingsStore(db)

    purge_expired_records(attendance, settings)

    loop = build_loop(args.screen, config, directory, attendance, settings)
    screen = ScreenThread(loop)

    app = create_app(config, loop, directory, attendance, settings)
    server_thread = threading.Thread(target=start_flask_server, args=(app, config), daemon=True)
    server_thread.start()
    logger.info(f'Video stream: http://localhost:{config.video_port}/video_feed')

    try:
        screen.start()
        # Keep serving status after a fatal screen error
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        logger.info('Received keyboard interrupt, shutting down...')
        screen.stop()
        sys.exit(0)
    except Exception as e:
        logger.error(f'Fatal error: {e}', exc_info=True)
        screen.stop()
        sys.exit(1)


if __name__ == '__main__':
    main()

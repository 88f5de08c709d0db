#!/usr/bin/env python3
"""sleepwatch - Main Entry Point.

Initializes all components and waits for idle signals.

Usage:
    python -m sleepwatch.main [--config CONFIG] [--idle-check SECONDS]
                              [--min-face-area-percent PCT]
                              [--face-detection-threshold PCT]
                              [--debug] [--verbose] [--mock] [--check]

When the machine has been idle for the configured time, a frame is taken
from the webcam. If no sufficiently large face is found in it, the display
is put to sleep.
"""

import argparse
import logging
import signal
import sys
from logging.handlers import RotatingFileHandler
from typing import Optional

import yaml

from sleepwatch import __version__
from sleepwatch.capture.webcam import WebcamCapture
from sleepwatch.config import Config, apply_overrides, load_config
from sleepwatch.detection.face_detector import FaceDetector
from sleepwatch.detection.policy import PresencePolicy
from sleepwatch.display import DisplayPowerActuator
from sleepwatch.errors import StartupError
from sleepwatch.idle_watcher import IdleWatcher, get_probe
from sleepwatch.state_machine import PresenceStateMachine

logger = logging.getLogger(__name__)


LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(config: Config, verbose: bool = False) -> None:
    """Log to the console and, when logging.file is set, to a rotating file.

    --verbose forces DEBUG regardless of logging.level.
    """
    log_config = config.logging
    level = logging.DEBUG if verbose else getattr(logging, log_config.level.upper(), logging.INFO)

    handlers = [logging.StreamHandler()]
    if log_config.file:
        log_file = config.resolve_path(log_config.file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(RotatingFileHandler(
            log_file,
            maxBytes=log_config.max_size_mb * 1024 * 1024,
            backupCount=log_config.backup_count,
        ))

    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in handlers:
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)

    destination = f"console + {handlers[-1].baseFilename}" if log_config.file else "console"
    logger.info(f"Logging at {logging.getLevelName(level)} to {destination}")


class SleepWatchApp:
    """Main application class.

    Builds the components from config and manages the watcher lifecycle.
    """

    def __init__(self, config: Config):
        self.config = config

        # Components (initialized in initialize())
        self.probe = None
        self.camera = None
        self.detector = None
        self.actuator = None
        self.debug_view = None
        self.state_machine: Optional[PresenceStateMachine] = None
        self.watcher: Optional[IdleWatcher] = None

    def initialize(self) -> None:
        """Build and wire all components.

        Raises:
            StartupError: If the model or the idle probe cannot be set up
        """
        config = self.config
        logger.info("Initializing components...")

        logger.info("  - Idle probe")
        self.probe = get_probe(mock=config.mock_mode)

        if config.mock_mode:
            from sleepwatch.mocks import MockCaptureFactory, MockDisplayActuator, MockFaceDetector

            logger.info("  - Camera (mock)")
            self.camera = WebcamCapture.from_config(
                config.camera, capture_factory=MockCaptureFactory(
                    width=config.camera.width, height=config.camera.height
                )
            )
            logger.info("  - Face detector (mock)")
            self.detector = MockFaceDetector()
            logger.info("  - Display actuator (mock)")
            self.actuator = MockDisplayActuator(probe=self.probe)
        else:
            logger.info(f"  - Camera (device {config.camera.device_id})")
            self.camera = WebcamCapture.from_config(config.camera)
            logger.info("  - Face detector")
            self.detector = FaceDetector.from_config(config)
            self.detector.load_model()
            logger.info("  - Display actuator")
            self.actuator = DisplayPowerActuator.from_config(config.display)

        if config.debug_view:
            from sleepwatch.debug_view import DebugView

            logger.info("  - Debug view")
            self.debug_view = DebugView()

        logger.info("  - State machine")
        self.state_machine = PresenceStateMachine(
            camera=self.camera,
            detector=self.detector,
            policy=PresencePolicy.from_config(config.detection),
            actuator=self.actuator,
            debug_view=self.debug_view,
        )

        logger.info("  - Idle watcher")
        self.watcher = IdleWatcher(
            self.probe,
            idle_seconds=config.idle.idle_seconds,
            poll_interval=config.idle.poll_interval_seconds,
        )
        self.watcher.on_system_idle(self.state_machine.on_system_idle)
        self.watcher.on_display_will_sleep(self.state_machine.on_display_will_sleep)
        self.watcher.on_display_did_wake(self.state_machine.on_display_did_wake)

        logger.info("All components initialized")

    def run(self) -> None:
        """Start watching and block until stop() is called."""
        logger.info(
            f"Watching for {self.config.idle.idle_seconds}s of inactivity "
            f"(confidence>{self.config.detection.confidence_threshold}, "
            f"area>={self.config.detection.min_face_area_fraction})"
        )
        self.watcher.start()
        try:
            while not self.watcher.wait(timeout=1.0):
                pass
        finally:
            self.shutdown()

    def check_once(self):
        """Run a single evaluation immediately."""
        return self.state_machine.on_system_idle()

    @property
    def shutdown_timeout(self) -> float:
        """Longest one evaluation can take: every capture attempt plus the sleep command."""
        camera = self.config.camera
        per_attempt = camera.stabilization_seconds + camera.retry_delay_seconds
        return camera.max_attempts * per_attempt + self.config.display.command_timeout_seconds + 5.0

    def stop(self) -> None:
        """Stop watching, letting an evaluation in progress finish first."""
        if self.watcher:
            self.watcher.stop(timeout=self.shutdown_timeout)

    def shutdown(self) -> None:
        """Clean shutdown of all components."""
        logger.info("Shutting down...")
        if self.watcher and self.watcher.is_running:
            self.watcher.stop(timeout=self.shutdown_timeout)
        if self.debug_view:
            self.debug_view.close()
        if self.state_machine:
            logger.info(f"Final status: {self.state_machine.get_status().to_dict()}")
        logger.info("Shutdown complete")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Put the display to sleep when nobody is in front of the computer",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Run with defaults (10s idle, 5% face area, 25% confidence)
    python -m sleepwatch.main

    # Longer idle time, show detections in a window
    python -m sleepwatch.main --idle-check 60 --debug

    # Run without camera or model files
    python -m sleepwatch.main --mock --verbose
        """
    )
    parser.add_argument(
        "--config", "-c",
        default=None,
        help="Path to configuration file (default: config.local.yaml or config.yaml if present)"
    )
    parser.add_argument(
        "--idle-check",
        type=int,
        default=None,
        help="Idle time in seconds before visual check (default: 10)"
    )
    parser.add_argument(
        "--min-face-area-percent",
        type=float,
        default=None,
        help="Minimum frame area (in %%) that needs to be covered by a face (default: 5)"
    )
    parser.add_argument(
        "--face-detection-threshold",
        type=float,
        default=None,
        help="Threshold probability for face detection (in %%, default: 25)"
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        default=None,
        help="Show window with face detection information"
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging"
    )
    parser.add_argument(
        "--mock", "-m",
        action="store_true",
        default=None,
        help="Use mock hardware (for testing)"
    )
    parser.add_argument(
        "--check",
        action="store_true",
        help="Run one evaluation immediately and exit"
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    return parser


def main(argv=None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args.config)
        config = apply_overrides(
            config,
            idle_seconds=args.idle_check,
            min_face_area_percent=args.min_face_area_percent,
            confidence_threshold_percent=args.face_detection_threshold,
            debug_view=args.debug,
            mock_mode=args.mock,
        )
    except (FileNotFoundError, ValueError, TypeError, yaml.YAMLError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    setup_logging(config, args.verbose)

    logger.info("=" * 50)
    logger.info(f"sleepwatch {__version__} starting")
    logger.info("=" * 50)
    logger.info(f"Mock mode: {config.mock_mode}")

    app = SleepWatchApp(config)
    try:
        app.initialize()
    except StartupError as e:
        logger.error(f"Startup failed: {e}")
        return 1

    if args.check:
        result = app.check_once()
        logger.info(f"Check result: {result.outcome.value}")
        app.shutdown()
        return 0

    def handle_signal(sig, frame):
        logger.info(f"Received signal {sig}")
        app.stop()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    try:
        app.run()
    except Exception as e:
        logger.exception(f"Fatal error: {e}")
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())

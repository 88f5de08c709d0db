"""Presence state machine for sleepwatch.

This module implements the core decision logic that:
- Tracks display power state from OS sleep/wake signals
- Reacts to system idle signals by checking for a person in front of the camera
- Puts the display to sleep when nobody is found

State Flow:
    IDLE_WAITING -> EVALUATING (idle signal, display awake)
    EVALUATING -> IDLE_WAITING (always, whatever the outcome)

Display state is driven only by the OS:
    DisplayWillSleep -> ASLEEP
    DisplayDidWake -> AWAKE

An idle signal while the display is asleep is ignored, and an idle signal
that arrives while another evaluation is still running is dropped.

Usage:
    from sleepwatch.state_machine import PresenceStateMachine

    sm = PresenceStateMachine(camera, detector, policy, actuator)
    watcher.on_system_idle(sm.on_system_idle)
    watcher.on_display_will_sleep(sm.on_display_will_sleep)
    watcher.on_display_did_wake(sm.on_display_did_wake)
"""

import logging
import threading
import time
from datetime import datetime, timedelta
from typing import Optional

from sleepwatch.detection.face_detector import log_faces
from sleepwatch.models.detection import (
    DisplayState,
    EvaluationOutcome,
    EvaluationResult,
    MonitorStatus,
    PresenceState,
)

logger = logging.getLogger(__name__)


class PresenceStateMachine:
    """Core state machine deciding whether to sleep the display.

    Coordinates the components for one idle-triggered evaluation:
    - Acquires a frame from the camera (with retry)
    - Runs face detection on it
    - Applies the presence policy thresholds
    - Sleeps the display when nobody counts as present

    Camera failures and unexpected errors are treated as absence, so the
    display still goes to sleep. Nothing raised inside an evaluation
    escapes ``on_system_idle``.

    Attributes:
        display_state: Current DisplayState
        presence_state: Current PresenceState
        last_result: EvaluationResult of the most recent idle signal
    """

    def __init__(self, camera, detector, policy, actuator, debug_view=None):
        """Initialize state machine.

        Args:
            camera: Object with ``acquire() -> CaptureResult``
            detector: Object with ``detect(frame) -> list of DetectedFace``
            policy: PresencePolicy applying the thresholds
            actuator: Object with ``sleep_display() -> bool``
            debug_view: Optional DebugView for drawing accepted faces
        """
        self.camera = camera
        self.detector = detector
        self.policy = policy
        self.actuator = actuator
        self.debug_view = debug_view

        # Display state, written by the OS signal handlers only
        self._display_asleep = threading.Event()

        # Held for the whole evaluation; non-blocking acquire drops overlaps
        self._evaluating = threading.Lock()
        self._presence_state = PresenceState.IDLE_WAITING

        # Counters
        self._stats_lock = threading.Lock()
        self._idle_signals = 0
        self._evaluations = 0
        self._display_sleeps = 0
        self._last_result: Optional[EvaluationResult] = None

        self._start_time = datetime.now()

        logger.info(f"PresenceStateMachine initialized ({policy!r})")

    # ==================== Properties ====================

    @property
    def display_state(self) -> DisplayState:
        """Current display power state."""
        return DisplayState.ASLEEP if self._display_asleep.is_set() else DisplayState.AWAKE

    @property
    def presence_state(self) -> PresenceState:
        """Current evaluation state."""
        return self._presence_state

    @property
    def last_result(self) -> Optional[EvaluationResult]:
        """Result of the most recent idle signal."""
        return self._last_result

    @property
    def uptime(self) -> timedelta:
        """How long the state machine has been running."""
        return datetime.now() - self._start_time

    def get_status(self) -> MonitorStatus:
        """Get a snapshot of the state machine."""
        with self._stats_lock:
            return MonitorStatus(
                timestamp=datetime.now(),
                display_state=self.display_state,
                presence_state=self._presence_state,
                idle_signals=self._idle_signals,
                evaluations=self._evaluations,
                display_sleeps=self._display_sleeps,
                uptime_seconds=self.uptime.total_seconds(),
                last_result=self._last_result,
            )

    # ==================== OS Signal Handlers ====================

    def on_display_will_sleep(self) -> None:
        """Display is about to power off."""
        self._display_asleep.set()
        logger.info("Display going to sleep")

    def on_display_did_wake(self) -> None:
        """Display has powered back on."""
        self._display_asleep.clear()
        logger.info("Display woke up")

    def on_system_idle(self) -> EvaluationResult:
        """Handle a system idle signal.

        Returns:
            EvaluationResult describing what was done
        """
        with self._stats_lock:
            self._idle_signals += 1
        logger.info("System idle")

        if self._display_asleep.is_set():
            logger.info("But display is sleeping...")
            return self._record(EvaluationResult(outcome=EvaluationOutcome.DISPLAY_ASLEEP))

        if not self._evaluating.acquire(blocking=False):
            logger.warning("Previous evaluation still running, ignoring idle signal")
            return self._record(EvaluationResult(outcome=EvaluationOutcome.BUSY))

        try:
            self._presence_state = PresenceState.EVALUATING
            with self._stats_lock:
                self._evaluations += 1
            result = self._evaluate()
        finally:
            self._presence_state = PresenceState.IDLE_WAITING
            self._evaluating.release()

        return self._record(result)

    # ==================== Evaluation ====================

    def _evaluate(self) -> EvaluationResult:
        """Single capture, detect, decide, act cycle."""
        start_time = time.time()

        try:
            capture = self.camera.acquire()
        except Exception as e:
            logger.exception(f"Unexpected camera error: {e}")
            return self._sleep_for(
                EvaluationResult(outcome=EvaluationOutcome.ERROR, error=str(e)),
                start_time,
            )

        if not capture.success:
            logger.warning(
                f"Cannot read from camera after {capture.attempts} attempts "
                f"({capture.error}) - too dark? Sleeping display anyway"
            )
            return self._sleep_for(
                EvaluationResult(
                    outcome=EvaluationOutcome.CAPTURE_FAILED,
                    capture_attempts=capture.attempts,
                    error=capture.error,
                ),
                start_time,
            )

        frame = capture.frame
        height, width = frame.shape[:2]
        result = EvaluationResult(
            outcome=EvaluationOutcome.ABSENT,
            frame_width=width,
            frame_height=height,
            capture_attempts=capture.attempts,
        )

        try:
            faces = self.detector.detect(frame)
            present = self.policy.present_faces(faces, width, height)
            log_faces(faces, width, height)

            result.faces_detected = len(faces)
            result.faces_present = len(present)
        except Exception as e:
            logger.exception(f"Presence evaluation failed: {e}")
            result.outcome = EvaluationOutcome.ERROR
            result.error = str(e)
            return self._sleep_for(result, start_time)

        self._show_debug(frame, present)

        if result.faces_present:
            result.outcome = EvaluationOutcome.PRESENT
            result.elapsed_ms = (time.time() - start_time) * 1000
            logger.info(
                f"{result.faces_present} face(s) in front of computer - leaving display on"
            )
            return result

        logger.info(
            f"No face detected in front of computer ({result.faces_detected} candidates, "
            f"{self.policy!r}) - sleeping display"
        )
        return self._sleep_for(result, start_time)

    def _show_debug(self, frame, faces) -> None:
        """Draw accepted faces in the debug window, if one is attached."""
        if self.debug_view is None:
            return
        try:
            self.debug_view.show(frame, faces)
        except Exception as e:
            logger.warning(f"Debug view failed: {e}")

    def _sleep_for(self, result: EvaluationResult, start_time: float) -> EvaluationResult:
        """Sleep the display and record the attempt on result."""
        result.display_sleep_requested = True
        try:
            result.display_sleep_succeeded = bool(self.actuator.sleep_display())
        except Exception as e:
            logger.exception(f"Display sleep failed: {e}")
            result.display_sleep_succeeded = False

        if result.display_sleep_succeeded:
            with self._stats_lock:
                self._display_sleeps += 1

        result.elapsed_ms = (time.time() - start_time) * 1000
        return result

    def _record(self, result: EvaluationResult) -> EvaluationResult:
        with self._stats_lock:
            self._last_result = result
        logger.debug(f"Evaluation result: {result.to_dict()}")
        return result

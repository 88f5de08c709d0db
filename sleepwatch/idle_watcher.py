"""System idle and display power watcher.

Delivers the three signals the presence state machine reacts to:

- system idle: user input has been idle for the configured time, repeated
  every further ``idle_seconds`` while the machine stays idle
- display will sleep: the display has powered off
- display did wake: the display has powered back on

Signals are derived by polling a platform probe from a background thread.
Handlers run on that thread, one at a time.

Usage:
    watcher = IdleWatcher(get_probe(), idle_seconds=10)
    watcher.on_system_idle(sm.on_system_idle)
    watcher.on_display_will_sleep(sm.on_display_will_sleep)
    watcher.on_display_did_wake(sm.on_display_did_wake)
    watcher.start()
"""

import logging
import re
import shutil
import subprocess
import sys
import threading
from typing import Callable, List, Optional

from sleepwatch.errors import StartupError

logger = logging.getLogger(__name__)

Handler = Callable[[], object]


# ==================== Probes ====================

def _run(command: List[str], timeout: float = 5.0) -> Optional[str]:
    """Run a probe command and return its stdout, or None on failure."""
    try:
        result = subprocess.run(command, capture_output=True, text=True, timeout=timeout)
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.warning(f"Probe command '{' '.join(command)}' failed: {e}")
        return None
    if result.returncode != 0:
        logger.debug(f"Probe command '{' '.join(command)}' exited with {result.returncode}")
        return None
    return result.stdout


class MacOSProbe:
    """Reads HID idle time and display power state from the IORegistry."""

    name = "macos"

    # IODisplayWrangler power states: 4 = on, 3 = dimmed, lower = off
    DISPLAY_ON_POWER_STATE = 4

    _IDLE_RE = re.compile(r'"HIDIdleTime"\s*=\s*(\d+)')
    _POWER_RE = re.compile(r'"CurrentPowerState"\s*=\s*(\d+)')

    def is_available(self) -> bool:
        return shutil.which("ioreg") is not None

    def idle_seconds(self) -> Optional[float]:
        output = _run(["ioreg", "-c", "IOHIDSystem", "-d", "4"])
        if output is None:
            return None
        match = self._IDLE_RE.search(output)
        if not match:
            logger.debug("HIDIdleTime not found in ioreg output")
            return None
        return int(match.group(1)) / 1_000_000_000

    def display_asleep(self) -> Optional[bool]:
        output = _run(["ioreg", "-n", "IODisplayWrangler", "-r", "-d", "1"])
        if output is None:
            return None
        match = self._POWER_RE.search(output)
        if not match:
            return None
        return int(match.group(1)) < self.DISPLAY_ON_POWER_STATE


class X11Probe:
    """Reads idle time via xprintidle and DPMS monitor state via xset."""

    name = "x11"

    _MONITOR_RE = re.compile(r"Monitor is (\w+(?: \w+)?)")

    def is_available(self) -> bool:
        return shutil.which("xprintidle") is not None and shutil.which("xset") is not None

    def idle_seconds(self) -> Optional[float]:
        output = _run(["xprintidle"])
        if output is None:
            return None
        try:
            return int(output.strip()) / 1000
        except ValueError:
            logger.warning(f"Unexpected xprintidle output: {output.strip()!r}")
            return None

    def display_asleep(self) -> Optional[bool]:
        output = _run(["xset", "q"])
        if output is None:
            return None
        match = self._MONITOR_RE.search(output)
        if not match:
            return None
        return match.group(1) != "On"


def get_probe(platform: Optional[str] = None, mock: bool = False):
    """Pick the idle probe for this platform.

    Args:
        platform: sys.platform style name (defaults to the current platform)
        mock: Return a simulated probe instead

    Raises:
        StartupError: If no working probe exists on this platform
    """
    if mock:
        from sleepwatch.mocks import MockIdleProbe

        return MockIdleProbe(simulate=True)

    platform = platform or sys.platform
    if platform == "darwin":
        probe = MacOSProbe()
    elif platform.startswith("linux"):
        probe = X11Probe()
    else:
        raise StartupError(f"Idle detection is not supported on platform '{platform}'")

    if not probe.is_available():
        raise StartupError(f"Idle probe '{probe.name}' is missing its command line tools")
    return probe


# ==================== Watcher ====================

class IdleWatcher:
    """Turns polled idle time and display state into signals.

    Attributes:
        idle_seconds: Inactivity before the first idle signal, and between repeats
        poll_interval: Seconds between probe polls
    """

    def __init__(self, probe, idle_seconds: float, poll_interval: float = 1.0):
        """Initialize watcher.

        Args:
            probe: Object with ``idle_seconds()`` and ``display_asleep()``
            idle_seconds: Idle threshold in seconds
            poll_interval: Seconds between polls
        """
        if idle_seconds <= 0:
            raise ValueError("idle_seconds must be positive")

        self.probe = probe
        self.idle_seconds = idle_seconds
        self.poll_interval = poll_interval

        self._idle_handlers: List[Handler] = []
        self._will_sleep_handlers: List[Handler] = []
        self._did_wake_handlers: List[Handler] = []

        self._next_idle_fire = float(idle_seconds)
        self._last_idle: Optional[float] = None
        self._display_asleep = False

        self._running = False
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

        logger.info(f"IdleWatcher initialized (probe: {getattr(probe, 'name', '?')}, idle: {idle_seconds}s)")

    # ==================== Subscription ====================

    def on_system_idle(self, handler: Handler) -> None:
        self._idle_handlers.append(handler)

    def on_display_will_sleep(self, handler: Handler) -> None:
        self._will_sleep_handlers.append(handler)

    def on_display_did_wake(self, handler: Handler) -> None:
        self._did_wake_handlers.append(handler)

    # ==================== Lifecycle ====================

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Start polling in a background thread."""
        if self._running:
            return

        self._running = True
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._poll_loop, name="idle-watcher", daemon=True)
        self._thread.start()
        logger.info("IdleWatcher: Started polling")

    def stop(self, timeout: Optional[float] = 5.0) -> bool:
        """Stop polling and wait for a running handler to return.

        Args:
            timeout: Seconds to wait for the poll thread, None to wait forever

        Returns:
            True if the poll thread has exited
        """
        self._running = False
        self._stop_event.set()
        thread = self._thread
        if thread and thread is not threading.current_thread():
            thread.join(timeout=timeout)
            if thread.is_alive():
                logger.warning(
                    f"IdleWatcher: poll thread still busy after {timeout}s; "
                    f"not waiting for the running handler to finish"
                )
                return False
        logger.info("IdleWatcher: Stopped")
        return True

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until stop() is called. Returns True if stopped."""
        return self._stop_event.wait(timeout)

    def _poll_loop(self) -> None:
        """Background thread polling loop."""
        while self._running:
            try:
                self.poll_once()
            except Exception as e:
                logger.exception(f"Error polling idle state: {e}")
            self._stop_event.wait(self.poll_interval)

    # ==================== Polling ====================

    def poll_once(self) -> None:
        """Poll the probe once and fire any signals that are due."""
        asleep = self.probe.display_asleep()
        if asleep is not None and asleep != self._display_asleep:
            self._display_asleep = asleep
            if asleep:
                self._fire("display_will_sleep", self._will_sleep_handlers)
            else:
                self._fire("display_did_wake", self._did_wake_handlers)

        idle = self.probe.idle_seconds()
        if idle is None:
            return

        if self._last_idle is not None and idle < self._last_idle:
            # User activity, start counting from zero again
            self._next_idle_fire = float(self.idle_seconds)
        self._last_idle = idle

        if idle >= self._next_idle_fire:
            self._next_idle_fire = idle + self.idle_seconds
            self._fire("system_idle", self._idle_handlers)

    def _fire(self, name: str, handlers: List[Handler]) -> None:
        logger.debug(f"Signal: {name}")
        for handler in handlers:
            try:
                handler()
            except Exception as e:
                logger.exception(f"Handler for {name} failed: {e}")

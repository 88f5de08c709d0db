"""Display power control.

Forces the display to sleep with the platform's command line tool:
``pmset displaysleepnow`` on macOS and ``xset dpms force off`` under X11.
Failures are logged and reported to the caller, never raised; the next
idle cycle simply tries again.
"""

import logging
import subprocess
import sys
from typing import List, Optional, Sequence

logger = logging.getLogger(__name__)


def default_sleep_command(platform: Optional[str] = None) -> List[str]:
    """Return the display sleep command for a platform.

    Args:
        platform: sys.platform style name (defaults to the current platform)

    Returns:
        Command argv list, or an empty list if the platform is unsupported
    """
    platform = platform or sys.platform
    if platform == "darwin":
        return ["pmset", "displaysleepnow"]
    if platform.startswith("linux"):
        return ["xset", "dpms", "force", "off"]
    return []


class DisplayPowerActuator:
    """Puts the display to sleep by running an external command.

    Attributes:
        command: argv of the sleep command
        timeout_seconds: How long to wait for the command
        sleep_count: Number of successful sleep commands
        failure_count: Number of failed sleep commands
    """

    def __init__(self, command: Optional[Sequence[str]] = None, timeout_seconds: float = 10.0):
        self.command = list(command) if command else default_sleep_command()
        self.timeout_seconds = timeout_seconds
        self.sleep_count = 0
        self.failure_count = 0

        if not self.command:
            logger.warning(f"No display sleep command known for platform '{sys.platform}'")

    @classmethod
    def from_config(cls, display_config) -> "DisplayPowerActuator":
        return cls(
            command=display_config.sleep_command or None,
            timeout_seconds=display_config.command_timeout_seconds,
        )

    def sleep_display(self) -> bool:
        """Put the display to sleep now.

        Returns:
            True if the command ran and exited successfully
        """
        if not self.command:
            logger.error("Cannot sleep display: no sleep command configured")
            self.failure_count += 1
            return False

        cmd = " ".join(self.command)
        try:
            result = subprocess.run(
                self.command,
                capture_output=True,
                text=True,
                timeout=self.timeout_seconds,
            )
        except FileNotFoundError:
            logger.error(f"Error executing command '{cmd}': command not found")
            self.failure_count += 1
            return False
        except subprocess.TimeoutExpired:
            logger.error(f"Error executing command '{cmd}': timed out after {self.timeout_seconds}s")
            self.failure_count += 1
            return False
        except OSError as e:
            logger.error(f"Error executing command '{cmd}': {e}")
            self.failure_count += 1
            return False

        if result.returncode != 0:
            logger.error(
                f"Error executing command '{cmd}': exit code {result.returncode} "
                f"{result.stderr.strip()}"
            )
            self.failure_count += 1
            return False

        self.sleep_count += 1
        logger.info("Display sleep command sent")
        return True

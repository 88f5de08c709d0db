import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from sleepwatch.detection.policy import PresencePolicy  # noqa: E402


@pytest.fixture
def policy():
    """Default thresholds: confidence > 0.25, area >= 0.05."""
    return PresencePolicy(confidence_threshold=0.25, min_area_fraction=0.05)


@pytest.fixture
def no_sleep():
    """Sleep replacement that records requested delays."""
    calls = []

    def _sleep(seconds):
        calls.append(seconds)

    _sleep.calls = calls
    return _sleep

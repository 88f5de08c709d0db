"""Tests for idle and display power signal generation."""

import logging
import threading
import time

import pytest

from sleepwatch import idle_watcher
from sleepwatch.errors import StartupError
from sleepwatch.idle_watcher import IdleWatcher, MacOSProbe, X11Probe, get_probe
from sleepwatch.mocks import MockIdleProbe


class Recorder:
    def __init__(self, watcher):
        self.events = []
        watcher.on_system_idle(lambda: self.events.append("idle"))
        watcher.on_display_will_sleep(lambda: self.events.append("will_sleep"))
        watcher.on_display_did_wake(lambda: self.events.append("did_wake"))


def poll(watcher, times):
    for _ in range(times):
        watcher.poll_once()


class TestIdleSignal:
    def test_fires_at_threshold_then_every_interval(self):
        probe = MockIdleProbe(idle_values=[0, 5, 10, 12, 19, 20])
        watcher = IdleWatcher(probe, idle_seconds=10)
        rec = Recorder(watcher)

        poll(watcher, 6)

        assert rec.events == ["idle", "idle"]

    def test_activity_rearms_threshold(self):
        probe = MockIdleProbe(idle_values=[10, 2, 9, 10])
        watcher = IdleWatcher(probe, idle_seconds=10)
        rec = Recorder(watcher)

        poll(watcher, 4)

        assert rec.events == ["idle", "idle"]

    def test_below_threshold_never_fires(self):
        probe = MockIdleProbe(idle_values=[1, 3, 9.5])
        watcher = IdleWatcher(probe, idle_seconds=10)
        rec = Recorder(watcher)

        poll(watcher, 3)

        assert rec.events == []

    def test_unreadable_idle_time_is_skipped(self):
        probe = MockIdleProbe(idle_values=[None, 11])
        watcher = IdleWatcher(probe, idle_seconds=10)
        rec = Recorder(watcher)

        poll(watcher, 2)

        assert rec.events == ["idle"]

    def test_invalid_threshold(self):
        with pytest.raises(ValueError):
            IdleWatcher(MockIdleProbe(), idle_seconds=0)


class TestDisplaySignals:
    def test_edges_fire_once_each(self):
        probe = MockIdleProbe(idle_values=[0], asleep_values=[False, True, True, False])
        watcher = IdleWatcher(probe, idle_seconds=10)
        rec = Recorder(watcher)

        poll(watcher, 4)

        assert rec.events == ["will_sleep", "did_wake"]

    def test_display_signal_delivered_before_idle(self):
        probe = MockIdleProbe(idle_values=[30], asleep_values=[True])
        watcher = IdleWatcher(probe, idle_seconds=10)
        rec = Recorder(watcher)

        watcher.poll_once()

        assert rec.events == ["will_sleep", "idle"]

    def test_unknown_display_state_keeps_previous(self):
        probe = MockIdleProbe(idle_values=[0], asleep_values=[True, None, True])
        watcher = IdleWatcher(probe, idle_seconds=10)
        rec = Recorder(watcher)

        poll(watcher, 3)

        assert rec.events == ["will_sleep"]


class TestHandlers:
    def test_failing_handler_does_not_block_others(self):
        probe = MockIdleProbe(idle_values=[10])
        watcher = IdleWatcher(probe, idle_seconds=10)
        called = []

        def broken():
            raise RuntimeError("boom")

        watcher.on_system_idle(broken)
        watcher.on_system_idle(lambda: called.append(True))

        watcher.poll_once()

        assert called == [True]

    def test_background_thread_delivers_signals(self):
        probe = MockIdleProbe(idle_values=[15])
        watcher = IdleWatcher(probe, idle_seconds=10, poll_interval=0.01)
        fired = threading.Event()
        watcher.on_system_idle(fired.set)

        watcher.start()
        try:
            assert fired.wait(timeout=2.0)
            assert watcher.is_running
        finally:
            watcher.stop()

        assert not watcher.is_running
        assert watcher.wait(timeout=0)


class TestStop:
    def test_stop_waits_for_running_handler(self):
        probe = MockIdleProbe(idle_values=[15])
        watcher = IdleWatcher(probe, idle_seconds=10, poll_interval=0.01)
        started = threading.Event()
        finished = []

        def slow_evaluation():
            started.set()
            time.sleep(0.2)
            finished.append(True)

        watcher.on_system_idle(slow_evaluation)
        watcher.start()
        assert started.wait(timeout=2.0)

        assert watcher.stop(timeout=5.0) is True
        assert finished == [True]

    def test_stop_reports_handler_still_running(self, caplog):
        probe = MockIdleProbe(idle_values=[15])
        watcher = IdleWatcher(probe, idle_seconds=10, poll_interval=0.01)
        started = threading.Event()
        release = threading.Event()

        def stuck_evaluation():
            started.set()
            release.wait(timeout=5.0)

        watcher.on_system_idle(stuck_evaluation)
        watcher.start()
        assert started.wait(timeout=2.0)

        try:
            with caplog.at_level(logging.WARNING, logger="sleepwatch.idle_watcher"):
                assert watcher.stop(timeout=0.05) is False
            assert "still busy" in caplog.text
        finally:
            release.set()


class TestGetProbe:
    def test_mock_probe(self):
        probe = get_probe(mock=True)
        assert isinstance(probe, MockIdleProbe)
        assert probe.simulate

    def test_unsupported_platform(self):
        with pytest.raises(StartupError):
            get_probe(platform="win32")

    def test_missing_tools(self, monkeypatch):
        monkeypatch.setattr(idle_watcher.shutil, "which", lambda name: None)
        with pytest.raises(StartupError):
            get_probe(platform="linux")

    def test_platform_selection(self, monkeypatch):
        monkeypatch.setattr(idle_watcher.shutil, "which", lambda name: f"/usr/bin/{name}")
        assert isinstance(get_probe(platform="darwin"), MacOSProbe)
        assert isinstance(get_probe(platform="linux"), X11Probe)


IOREG_HID = """
  | +-o IOHIDSystem  <class IOHIDSystem, id 0x100000487>
  |     {
  |       "HIDIdleTime" = 12500000000
  |     }
"""

IOREG_WRANGLER = """
+-o IODisplayWrangler  <class IODisplayWrangler>
    {
      "IOPowerManagement" = {"CurrentPowerState"=1,"DevicePowerState"=0}
    }
"""

XSET_Q = """
DPMS (Energy Star):
  Standby: 600    Suspend: 600    Off: 600
  DPMS is Enabled
  Monitor is Off
"""


class TestProbeParsing:
    def test_macos_idle_seconds(self, monkeypatch):
        monkeypatch.setattr(idle_watcher, "_run", lambda command, timeout=5.0: IOREG_HID)
        assert MacOSProbe().idle_seconds() == pytest.approx(12.5)

    def test_macos_display_asleep(self, monkeypatch):
        monkeypatch.setattr(idle_watcher, "_run", lambda command, timeout=5.0: IOREG_WRANGLER)
        assert MacOSProbe().display_asleep() is True

    def test_macos_display_on(self, monkeypatch):
        output = IOREG_WRANGLER.replace('"CurrentPowerState"=1', '"CurrentPowerState"=4')
        monkeypatch.setattr(idle_watcher, "_run", lambda command, timeout=5.0: output)
        assert MacOSProbe().display_asleep() is False

    def test_x11_idle_seconds(self, monkeypatch):
        monkeypatch.setattr(idle_watcher, "_run", lambda command, timeout=5.0: "4200\n")
        assert X11Probe().idle_seconds() == pytest.approx(4.2)

    def test_x11_garbage_idle_output(self, monkeypatch):
        monkeypatch.setattr(idle_watcher, "_run", lambda command, timeout=5.0: "n/a")
        assert X11Probe().idle_seconds() is None

    def test_x11_monitor_state(self, monkeypatch):
        monkeypatch.setattr(idle_watcher, "_run", lambda command, timeout=5.0: XSET_Q)
        assert X11Probe().display_asleep() is True

        on = XSET_Q.replace("Monitor is Off", "Monitor is On")
        monkeypatch.setattr(idle_watcher, "_run", lambda command, timeout=5.0: on)
        assert X11Probe().display_asleep() is False

    def test_command_failure_reads_as_unknown(self, monkeypatch):
        monkeypatch.setattr(idle_watcher, "_run", lambda command, timeout=5.0: None)
        assert X11Probe().idle_seconds() is None
        assert MacOSProbe().display_asleep() is None

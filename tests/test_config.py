"""Tests for configuration loading and overrides."""

from dataclasses import FrozenInstanceError
from pathlib import Path

import pytest

from sleepwatch.config import (
    Config,
    apply_overrides,
    get_default_config,
    load_config,
    validate_config,
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    monkeypatch.delenv("MOCK_HARDWARE", raising=False)


def write_config(directory: Path, text: str, name: str = "config.yaml") -> Path:
    path = directory / name
    path.write_text(text)
    return path


class TestDefaults:
    def test_default_values(self):
        config = get_default_config()

        assert config.idle.idle_seconds == 10
        assert config.camera.max_attempts == 10
        assert config.detection.confidence_threshold == pytest.approx(0.25)
        assert config.detection.min_face_area_fraction == pytest.approx(0.05)
        assert config.detection.mean == (104.0, 177.0, 123.0)
        assert config.mock_mode is False
        validate_config(config)

    def test_no_file_uses_defaults(self, tmp_path):
        config = load_config(base_path=tmp_path)
        assert config.idle.idle_seconds == 10
        assert config.resolve_path("models/x") == tmp_path / "models/x"

    def test_config_is_immutable(self):
        config = get_default_config()
        with pytest.raises(FrozenInstanceError):
            config.detection.min_face_area_percent = 1.0


class TestLoadConfig:
    def test_load_yaml(self, tmp_path):
        path = write_config(tmp_path, """
idle:
  idle_seconds: 60
camera:
  device_id: 1
  max_attempts: 3
detection:
  confidence_threshold_percent: 50
  min_face_area_percent: 2.5
  mean: [100, 150, 120]
display:
  sleep_command: "xset dpms force off"
""")
        config = load_config(str(path))

        assert config.idle.idle_seconds == 60
        assert config.idle.poll_interval_seconds == 1.0
        assert config.camera.device_id == 1
        assert config.camera.max_attempts == 3
        assert config.detection.confidence_threshold == pytest.approx(0.5)
        assert config.detection.min_face_area_fraction == pytest.approx(0.025)
        assert config.detection.mean == (100.0, 150.0, 120.0)
        assert config.display.sleep_command == ["xset", "dpms", "force", "off"]

    def test_local_file_takes_priority(self, tmp_path):
        write_config(tmp_path, "idle:\n  idle_seconds: 20\n")
        write_config(tmp_path, "idle:\n  idle_seconds: 30\n", name="config.local.yaml")

        assert load_config(base_path=tmp_path).idle.idle_seconds == 30

    def test_paths_resolve_relative_to_config_file(self, tmp_path):
        sub = tmp_path / "etc"
        sub.mkdir()
        path = write_config(sub, "detection:\n  model_path: net.caffemodel\n")

        config = load_config(str(path))

        assert config.resolve_path(config.detection.model_path) == sub.resolve() / "net.caffemodel"
        assert config.resolve_path("/abs/file") == Path("/abs/file")

    def test_env_substitution(self, tmp_path, monkeypatch):
        monkeypatch.setenv("SLEEPWATCH_MODEL", "/opt/models/face.caffemodel")
        path = write_config(tmp_path, "detection:\n  model_path: ${SLEEPWATCH_MODEL}\n")

        assert load_config(str(path)).detection.model_path == "/opt/models/face.caffemodel"

    def test_unset_env_var_is_an_error(self, tmp_path, monkeypatch):
        monkeypatch.delenv("SLEEPWATCH_MODELS", raising=False)
        path = write_config(tmp_path, "detection:\n  model_path: ${SLEEPWATCH_MODELS}/net.caffemodel\n")

        with pytest.raises(ValueError, match="SLEEPWATCH_MODELS"):
            load_config(str(path))

    def test_env_var_from_dotenv(self, tmp_path, monkeypatch):
        # Registers the variable so the value load_dotenv sets is removed afterwards
        monkeypatch.setenv("SLEEPWATCH_MODELS", "")
        monkeypatch.delenv("SLEEPWATCH_MODELS")
        (tmp_path / ".env").write_text("SLEEPWATCH_MODELS=/srv/models\n")
        write_config(tmp_path, "detection:\n  model_path: ${SLEEPWATCH_MODELS}/net.caffemodel\n")

        config = load_config(base_path=tmp_path)

        assert config.detection.model_path == "/srv/models/net.caffemodel"

    def test_unknown_keys_are_ignored(self, tmp_path):
        path = write_config(tmp_path, "idle:\n  idle_seconds: 15\n  bogus: 1\nextra: true\n")
        assert load_config(str(path)).idle.idle_seconds == 15

    def test_empty_file(self, tmp_path):
        path = write_config(tmp_path, "")
        assert load_config(str(path)).idle.idle_seconds == 10

    def test_missing_explicit_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(str(tmp_path / "nope.yaml"))

    def test_invalid_values(self, tmp_path):
        path = write_config(tmp_path, """
detection:
  confidence_threshold_percent: 150
idle:
  idle_seconds: 0
""")
        with pytest.raises(ValueError) as exc_info:
            load_config(str(path))

        message = str(exc_info.value)
        assert "confidence_threshold_percent" in message
        assert "idle_seconds" in message

    def test_section_must_be_mapping(self, tmp_path):
        path = write_config(tmp_path, "camera: 3\n")
        with pytest.raises(ValueError):
            load_config(str(path))

    def test_mock_hardware_env(self, tmp_path, monkeypatch):
        monkeypatch.setenv("MOCK_HARDWARE", "true")
        assert load_config(base_path=tmp_path).mock_mode is True


class TestOverrides:
    def test_none_keeps_values(self):
        config = get_default_config()
        assert apply_overrides(config) == config

    def test_overrides_applied(self):
        config = apply_overrides(
            get_default_config(),
            idle_seconds=45,
            min_face_area_percent=8,
            confidence_threshold_percent=60,
            debug_view=True,
            mock_mode=True,
        )

        assert config.idle.idle_seconds == 45
        assert config.detection.min_face_area_fraction == pytest.approx(0.08)
        assert config.detection.confidence_threshold == pytest.approx(0.6)
        assert config.debug_view is True
        assert config.mock_mode is True

    def test_override_is_validated(self):
        with pytest.raises(ValueError):
            apply_overrides(Config(), min_face_area_percent=-1)

"""Configuration loader for sleepwatch.

Loads configuration from an optional YAML file with environment variable
substitution. Every section is a frozen dataclass; command-line overrides
are applied with ``dataclasses.replace`` before the components are built.
"""

import os
import re
import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# Default config file locations (in order of priority)
CONFIG_PATHS = [
    "config.local.yaml",  # Local overrides (not in git)
    "config.yaml",        # Default config
]

DEFAULT_MODEL_PATH = "models/res10_300x300_ssd_iter_140000.caffemodel"
DEFAULT_MODEL_CONFIG_PATH = "models/deploy.prototxt"


@dataclass(frozen=True)
class IdleConfig:
    """Idle detection settings."""
    idle_seconds: int = 10
    poll_interval_seconds: float = 1.0


@dataclass(frozen=True)
class CameraConfig:
    """Camera capture settings."""
    device_id: int = 0
    width: int = 640
    height: int = 480
    max_attempts: int = 10
    stabilization_seconds: float = 1.0
    retry_delay_seconds: float = 0.2


@dataclass(frozen=True)
class DetectionConfig:
    """Face detection model and threshold settings.

    Thresholds are stored as percents (as given on the command line) and
    exposed as fractions through the properties below.
    """
    model_path: str = DEFAULT_MODEL_PATH
    config_path: str = DEFAULT_MODEL_CONFIG_PATH
    confidence_threshold_percent: float = 25.0
    min_face_area_percent: float = 5.0
    input_size: int = 300
    mean: Tuple[float, float, float] = (104.0, 177.0, 123.0)
    swap_rb: bool = False

    @property
    def confidence_threshold(self) -> float:
        """Minimum detection confidence (0-1)."""
        return self.confidence_threshold_percent / 100

    @property
    def min_face_area_fraction(self) -> float:
        """Minimum fraction of the frame a face must cover (0-1)."""
        return self.min_face_area_percent / 100


@dataclass(frozen=True)
class DisplayConfig:
    """Display power command settings."""
    sleep_command: List[str] = field(default_factory=list)  # Empty = platform default
    command_timeout_seconds: float = 10.0


@dataclass(frozen=True)
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    file: str = "logs/sleepwatch.log"
    max_size_mb: int = 10
    backup_count: int = 5


@dataclass(frozen=True)
class Config:
    """Main configuration container.

    This is the root configuration object containing all settings.
    """
    mock_mode: bool = False
    debug_view: bool = False
    idle: IdleConfig = field(default_factory=IdleConfig)
    camera: CameraConfig = field(default_factory=CameraConfig)
    detection: DetectionConfig = field(default_factory=DetectionConfig)
    display: DisplayConfig = field(default_factory=DisplayConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # Internal: base path for resolving relative paths
    _base_path: Path = field(default_factory=Path.cwd)

    def resolve_path(self, path: str) -> Path:
        """Resolve a path relative to the config file location."""
        p = Path(path).expanduser()
        if p.is_absolute():
            return p
        return self._base_path / p


_ENV_REF = re.compile(r"\$\{([^}]+)\}")


def _expand_env(value: Any) -> Any:
    """Expand ${VAR} references in the string values of a parsed YAML tree.

    Raises:
        ValueError: If a referenced variable is not set
    """
    if isinstance(value, dict):
        return {key: _expand_env(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_expand_env(item) for item in value]
    if not isinstance(value, str):
        return value

    missing = [name for name in _ENV_REF.findall(value) if name not in os.environ]
    if missing:
        raise ValueError(f"Config references unset environment variable(s): {', '.join(missing)}")
    return _ENV_REF.sub(lambda match: os.environ[match.group(1)], value)


def _dict_to_dataclass(cls, data: Optional[Dict[str, Any]]):
    """Convert a dictionary to a dataclass, handling nested sections.

    Args:
        cls: The dataclass type to create
        data: Dictionary of values

    Returns:
        Instance of cls populated with data
    """
    if data is None:
        return cls()
    if not isinstance(data, dict):
        raise ValueError(f"Expected a mapping for {cls.__name__}, got {type(data).__name__}")

    kwargs = {}
    for name, f in cls.__dataclass_fields__.items():
        if name.startswith('_') or name not in data:
            continue

        value = data[name]
        default = f.default_factory() if callable(f.default_factory) else f.default

        if hasattr(default, '__dataclass_fields__'):
            kwargs[name] = _dict_to_dataclass(type(default), value)
        elif name == 'mean' and value is not None:
            kwargs[name] = tuple(float(v) for v in value)
        elif name == 'sleep_command' and isinstance(value, str):
            kwargs[name] = value.split()
        else:
            kwargs[name] = value

    unknown = set(data) - set(cls.__dataclass_fields__)
    for key in sorted(unknown):
        logger.warning(f"Ignoring unknown config key '{key}' in {cls.__name__}")

    return cls(**kwargs)


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").lower() in ("true", "1", "yes")


def load_config(config_path: Optional[str] = None, base_path: Optional[Path] = None) -> Config:
    """Load configuration from YAML file.

    Args:
        config_path: Path to config file. If None, searches default locations
            and falls back to built-in defaults when nothing is found.
        base_path: Base path for resolving relative paths. Defaults to cwd.

    Returns:
        Validated Config object

    Raises:
        FileNotFoundError: If an explicitly named config file does not exist
        yaml.YAMLError: If config file is invalid YAML
        ValueError: If settings are invalid or reference unset variables
    """
    base = Path(base_path or Path.cwd())

    # Load .env file if present
    env_path = base / ".env"
    if env_path.exists():
        load_dotenv(env_path)
        logger.debug(f"Loaded environment from {env_path}")

    # Find config file
    config_file: Optional[Path] = None
    if config_path:
        config_file = Path(config_path)
        if not config_file.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
    else:
        for path in CONFIG_PATHS:
            candidate = base / path
            if candidate.exists():
                config_file = candidate
                break

    if config_file is None:
        logger.info("No config file found, using defaults")
        raw_config: Dict[str, Any] = {}
    else:
        logger.info(f"Loading config from {config_file}")
        with open(config_file, 'r') as f:
            raw_config = yaml.safe_load(f) or {}

    # ${VAR} references, then the env override for mock mode
    config_data = _expand_env(raw_config)

    if _env_flag("MOCK_HARDWARE"):
        logger.info("MOCK_HARDWARE environment variable set - enabling mock mode")
        config_data["mock_mode"] = True

    config = _dict_to_dataclass(Config, config_data)
    config = replace(
        config,
        _base_path=config_file.parent.resolve() if config_file else base,
    )

    validate_config(config)

    return config


def apply_overrides(
    config: Config,
    idle_seconds: Optional[int] = None,
    min_face_area_percent: Optional[float] = None,
    confidence_threshold_percent: Optional[float] = None,
    debug_view: Optional[bool] = None,
    mock_mode: Optional[bool] = None,
) -> Config:
    """Return a copy of config with command-line overrides applied.

    None means "keep the configured value". The result is validated.
    """
    idle = config.idle
    if idle_seconds is not None:
        idle = replace(idle, idle_seconds=idle_seconds)

    detection = config.detection
    if min_face_area_percent is not None:
        detection = replace(detection, min_face_area_percent=min_face_area_percent)
    if confidence_threshold_percent is not None:
        detection = replace(detection, confidence_threshold_percent=confidence_threshold_percent)

    config = replace(
        config,
        idle=idle,
        detection=detection,
        debug_view=config.debug_view if debug_view is None else debug_view,
        mock_mode=config.mock_mode if mock_mode is None else mock_mode,
    )
    validate_config(config)
    return config


def validate_config(config: Config) -> None:
    """Validate configuration settings.

    Args:
        config: Config object to validate

    Raises:
        ValueError: If any setting is out of range
    """
    errors = []

    detection = config.detection
    if not 0 <= detection.confidence_threshold_percent <= 100:
        errors.append("detection.confidence_threshold_percent must be 0-100")
    if not 0 <= detection.min_face_area_percent <= 100:
        errors.append("detection.min_face_area_percent must be 0-100")
    if detection.input_size <= 0:
        errors.append("detection.input_size must be positive")
    if len(detection.mean) != 3:
        errors.append("detection.mean must have exactly 3 values")

    if config.idle.idle_seconds <= 0:
        errors.append("idle.idle_seconds must be positive")
    if config.idle.poll_interval_seconds <= 0:
        errors.append("idle.poll_interval_seconds must be positive")

    camera = config.camera
    if camera.max_attempts < 1:
        errors.append("camera.max_attempts must be at least 1")
    if camera.width <= 0 or camera.height <= 0:
        errors.append("camera.width and camera.height must be positive")
    if camera.stabilization_seconds < 0:
        errors.append("camera.stabilization_seconds must not be negative")
    if camera.retry_delay_seconds < 0:
        errors.append("camera.retry_delay_seconds must not be negative")

    if config.display.command_timeout_seconds <= 0:
        errors.append("display.command_timeout_seconds must be positive")

    if errors:
        raise ValueError("Configuration errors:\n  " + "\n  ".join(errors))


def get_default_config() -> Config:
    """Get a Config object with all default values.

    Useful for testing or when no config file exists.
    """
    return Config()

"""Collector configuration from YAML file.

Loads from config/config.yaml with all settings in one place:
- Sink and workspace locations
- Pod polling, jitter and retry timings
- Directory (status service or static endpoint file)
- Health, metrics and logging settings

Environment variables ARE supported using ${VAR_NAME} syntax in YAML files.
When no config file exists, settings are read from COLLECTOR_* environment
variables instead.
"""

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from core.errors.exceptions import ConfigurationError

# Configure module logger
logger = logging.getLogger(__name__)

DIRECTORY_TYPES = ("status", "static")
DEFAULT_STATUS_URL = "https://status-v2.herokuapp.com/json"
DEFAULT_NODE_PORT = 8666

_TRUE_VALUES = {"1", "true", "yes", "on"}


def load_yaml(path: Path) -> Dict[str, Any]:
    """Load YAML file and return dict."""
    if not path.exists():
        return {}
    with open(path, "r") as f:
        return yaml.safe_load(f) or {}


def _expand_env_vars(data: Any) -> Any:
    """Recursively expand ${VAR_NAME} and ${VAR_NAME:-default} environment variables in config data."""
    if isinstance(data, dict):
        return {key: _expand_env_vars(value) for key, value in data.items()}
    elif isinstance(data, list):
        return [_expand_env_vars(item) for item in data]
    elif isinstance(data, str):
        # Support both ${VAR} and ${VAR:-default} syntax
        pattern = r"\$\{([^}:]+)(?::-(([^}]*))?)?\}"

        def replacer(match):
            var_name = match.group(1)
            default_value = match.group(2) if match.group(2) is not None else match.group(0)
            return os.getenv(var_name, default_value)

        return re.sub(pattern, replacer, data)
    else:
        return data


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in _TRUE_VALUES


def _as_optional_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    return int(value)


# Default config file: config/config.yaml in src/ directory
DEFAULT_CONFIG_FILE = Path(__file__).parent.parent / "config" / "config.yaml"


@dataclass
class DirectoryConfig:
    """Where the desired endpoint set comes from."""

    type: str = "status"
    status_url: str = DEFAULT_STATUS_URL
    node_port: int = DEFAULT_NODE_PORT
    endpoints_file: str = ""


@dataclass
class LoggingConfig:
    level: str = "INFO"
    log_dir: str = "logs"
    json_format: bool = True
    log_to_stdout: bool = False


@dataclass
class CollectorConfig:
    """Fleet log collector configuration.

    Configuration structure:
        collector:
          sink_url: ...
          workspace_path: ...
          poll_interval_seconds: 60
          start_jitter_seconds: 30
          retry_backoff_seconds: 5
          reconcile_interval_seconds: 86400
          supports_start_offset: true
          skip_history: false
          chunk_size: 65536
          stats_interval_seconds: 5
          health_port: 8080
          metrics_port: null
          directory: {type, status_url, node_port, endpoints_file}
          logging: {level, log_dir, json_format, log_to_stdout}

    All timing values in seconds.
    """

    # =========================================================================
    # SINK AND STORAGE
    # =========================================================================
    sink_url: str = "http://logstash:5000/"
    workspace_path: str = "workspace"

    # =========================================================================
    # POD TIMINGS
    # =========================================================================
    poll_interval_seconds: float = 60.0
    start_jitter_seconds: float = 30.0
    retry_backoff_seconds: float = 5.0
    reconcile_interval_seconds: float = 86400.0

    # =========================================================================
    # SOURCE PROTOCOL
    # =========================================================================
    supports_start_offset: bool = True
    skip_history: bool = False
    chunk_size: int = 64 * 1024

    # =========================================================================
    # OBSERVABILITY
    # =========================================================================
    stats_interval_seconds: float = 5.0
    health_port: int = 8080
    metrics_port: Optional[int] = None

    directory: DirectoryConfig = field(default_factory=DirectoryConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def validate(self) -> None:
        """Validate settings; raises ConfigurationError on the first problem."""
        if not self.sink_url:
            raise ConfigurationError("sink_url is required")
        if not self.workspace_path:
            raise ConfigurationError("workspace_path is required")

        for name in (
            "poll_interval_seconds",
            "retry_backoff_seconds",
            "reconcile_interval_seconds",
            "stats_interval_seconds",
        ):
            value = getattr(self, name)
            if value <= 0:
                raise ConfigurationError(
                    f"{name} must be positive, got {value}",
                    context={"setting": name, "value": value},
                )

        if self.start_jitter_seconds < 0:
            raise ConfigurationError(
                f"start_jitter_seconds must be >= 0, got {self.start_jitter_seconds}"
            )
        if self.chunk_size <= 0:
            raise ConfigurationError(f"chunk_size must be positive, got {self.chunk_size}")

        if self.directory.type not in DIRECTORY_TYPES:
            raise ConfigurationError(
                f"Unknown directory type '{self.directory.type}', "
                f"expected one of {', '.join(DIRECTORY_TYPES)}"
            )
        if self.directory.type == "status" and not self.directory.status_url:
            raise ConfigurationError("directory.status_url is required for the status directory")
        if self.directory.type == "static" and not self.directory.endpoints_file:
            raise ConfigurationError("directory.endpoints_file is required for the static directory")

        if self.logging.level.upper() not in logging.getLevelNamesMapping():
            raise ConfigurationError(f"Unknown log level '{self.logging.level}'")


def _deep_merge(base: Dict[str, Any], overlay: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge overlay into base dict."""
    result = base.copy()
    for key, value in overlay.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _settings_from_env() -> Dict[str, Any]:
    """Build the collector section from COLLECTOR_* environment variables."""
    env_map = {
        "COLLECTOR_SINK_URL": "sink_url",
        "COLLECTOR_WORKSPACE_PATH": "workspace_path",
        "COLLECTOR_POLL_INTERVAL_SECONDS": "poll_interval_seconds",
        "COLLECTOR_START_JITTER_SECONDS": "start_jitter_seconds",
        "COLLECTOR_RETRY_BACKOFF_SECONDS": "retry_backoff_seconds",
        "COLLECTOR_RECONCILE_INTERVAL_SECONDS": "reconcile_interval_seconds",
        "COLLECTOR_SUPPORTS_START_OFFSET": "supports_start_offset",
        "COLLECTOR_SKIP_HISTORY": "skip_history",
        "COLLECTOR_CHUNK_SIZE": "chunk_size",
        "COLLECTOR_STATS_INTERVAL_SECONDS": "stats_interval_seconds",
        "COLLECTOR_HEALTH_PORT": "health_port",
        "COLLECTOR_METRICS_PORT": "metrics_port",
    }
    settings: Dict[str, Any] = {
        key: os.environ[var] for var, key in env_map.items() if var in os.environ
    }

    directory = {
        key: os.environ[var]
        for var, key in {
            "COLLECTOR_DIRECTORY_TYPE": "type",
            "COLLECTOR_STATUS_URL": "status_url",
            "COLLECTOR_NODE_PORT": "node_port",
            "COLLECTOR_ENDPOINTS_FILE": "endpoints_file",
        }.items()
        if var in os.environ
    }
    if directory:
        settings["directory"] = directory

    log_settings = {
        key: os.environ[var]
        for var, key in {
            "COLLECTOR_LOG_LEVEL": "level",
            "COLLECTOR_LOG_DIR": "log_dir",
            "COLLECTOR_LOG_JSON": "json_format",
            "COLLECTOR_LOG_TO_STDOUT": "log_to_stdout",
        }.items()
        if var in os.environ
    }
    if log_settings:
        settings["logging"] = log_settings

    return settings


def _build_config(settings: Dict[str, Any]) -> CollectorConfig:
    defaults = CollectorConfig()
    directory = settings.get("directory") or {}
    log_settings = settings.get("logging") or {}

    try:
        return CollectorConfig(
            sink_url=str(settings.get("sink_url", defaults.sink_url)),
            workspace_path=str(settings.get("workspace_path", defaults.workspace_path)),
            poll_interval_seconds=float(
                settings.get("poll_interval_seconds", defaults.poll_interval_seconds)
            ),
            start_jitter_seconds=float(
                settings.get("start_jitter_seconds", defaults.start_jitter_seconds)
            ),
            retry_backoff_seconds=float(
                settings.get("retry_backoff_seconds", defaults.retry_backoff_seconds)
            ),
            reconcile_interval_seconds=float(
                settings.get("reconcile_interval_seconds", defaults.reconcile_interval_seconds)
            ),
            supports_start_offset=_as_bool(
                settings.get("supports_start_offset", defaults.supports_start_offset)
            ),
            skip_history=_as_bool(settings.get("skip_history", defaults.skip_history)),
            chunk_size=int(settings.get("chunk_size", defaults.chunk_size)),
            stats_interval_seconds=float(
                settings.get("stats_interval_seconds", defaults.stats_interval_seconds)
            ),
            health_port=int(settings.get("health_port", defaults.health_port)),
            metrics_port=_as_optional_int(settings.get("metrics_port", defaults.metrics_port)),
            directory=DirectoryConfig(
                type=str(directory.get("type", "status")),
                status_url=str(directory.get("status_url", DEFAULT_STATUS_URL)),
                node_port=int(directory.get("node_port", DEFAULT_NODE_PORT)),
                endpoints_file=str(directory.get("endpoints_file") or ""),
            ),
            logging=LoggingConfig(
                level=str(log_settings.get("level", "INFO")),
                log_dir=str(log_settings.get("log_dir", "logs")),
                json_format=_as_bool(log_settings.get("json_format", True)),
                log_to_stdout=_as_bool(log_settings.get("log_to_stdout", False)),
            ),
        )
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid configuration value: {e}", cause=e) from e


def load_config(
    config_path: Optional[Path] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> CollectorConfig:
    """Load collector configuration from config.yaml.

    Environment variables ARE supported using ${VAR_NAME} syntax in YAML files.
    If the file does not exist, COLLECTOR_* environment variables are used.
    ``overrides`` (e.g. from CLI flags) are deep-merged on top.
    """
    if config_path is None:
        config_path = DEFAULT_CONFIG_FILE

    if config_path.exists():
        logger.info(f"Loading configuration from file: {config_path}")
        yaml_data = _expand_env_vars(load_yaml(config_path))
        if "collector" not in yaml_data:
            raise ConfigurationError(
                f"Invalid config file {config_path}: missing 'collector:' section"
            )
        settings = yaml_data["collector"] or {}
    else:
        logger.info(
            f"Configuration file not found: {config_path}, using environment variables"
        )
        settings = _settings_from_env()

    if overrides:
        logger.debug(f"Applying overrides: {list(overrides.keys())}")
        settings = _deep_merge(settings, overrides)

    config = _build_config(settings)

    logger.debug("Validating configuration...")
    config.validate()
    logger.debug(
        "Configuration loaded",
        extra={"sink_url": config.sink_url, "path": config.workspace_path},
    )

    return config

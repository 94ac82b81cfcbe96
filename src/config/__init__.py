"""Configuration loading for the fleet log collector.

Configuration is loaded from config/config.yaml, falling back to COLLECTOR_*
environment variables when the file is absent.

Usage Examples
--------------

    >>> from config import load_config
    >>>
    >>> config = load_config()
    >>> config.poll_interval_seconds
    60.0

Configuration Priority
---------------------

Settings are merged in the following priority (highest to lowest):

1. Overrides passed to load_config() (CLI flags)
2. YAML configuration file (with ${VAR:-default} expansion)
3. Dataclass defaults
"""

from config.config import (
    CollectorConfig,
    DirectoryConfig,
    LoggingConfig,
    load_config,
)

__all__ = [
    "load_config",
    "CollectorConfig",
    "DirectoryConfig",
    "LoggingConfig",
]

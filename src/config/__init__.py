"""Configuration loading for the stream ingestor.

Configuration is loaded from a single YAML file, src/config/config.yaml,
with ${VAR} / ${VAR:-default} environment expansion.

Main Functions
--------------

    - load_config(): Load configuration from YAML
    - get_config(): Get or load the singleton config instance
    - set_config(): Install a config instance (tests, local CLI)
    - reset_config(): Reset the singleton config instance

Usage Examples
--------------

    >>> from config import get_config
    >>> config = get_config()
    >>> config.stream.max_inflight_records
    1000

    >>> from pathlib import Path
    >>> config = load_config(config_path=Path("/custom/path/config.yaml"))

Configuration Priority
---------------------

Settings are merged in the following priority (highest to lowest):

1. Deployment environment variables (ZEROBUS_ENDPOINT, DATABRICKS_HOST,
   DATABRICKS_CLIENT_ID, DATABRICKS_CLIENT_SECRET, TABLE_NAME)
2. Overrides passed to load_config()
3. YAML configuration file
4. Dataclass defaults
"""

from config.config import (
    EncodingLimits,
    IngestConfig,
    StreamOptions,
    get_config,
    load_config,
    reset_config,
    set_config,
)

__all__ = [
    "load_config",
    "get_config",
    "set_config",
    "reset_config",
    "IngestConfig",
    "StreamOptions",
    "EncodingLimits",
]

"""Stream ingestor configuration from YAML file.

Loads from config/config.yaml with all settings in one place:
- Connection to the remote table service (endpoint, workspace, credentials)
- Target table and its fixed wire schema
- Stream options (in-flight ceiling, recovery, flush and ack timeouts)
- Batch, encoding and logging settings

Environment variables ARE supported using ${VAR_NAME} syntax in YAML files.
The deployment variables ZEROBUS_ENDPOINT, DATABRICKS_HOST,
DATABRICKS_CLIENT_ID, DATABRICKS_CLIENT_SECRET and TABLE_NAME win over YAML.
"""

import argparse
import json
import logging
import os
import re
import sys
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from core.resilience.retry import RetryConfig

logger = logging.getLogger(__name__)


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
        pattern = r"\$\{([^}:]+)(?::-(([^}]*))?)?\}"

        def replacer(match):
            var_name = match.group(1)
            default_value = match.group(2) if match.group(2) is not None else match.group(0)
            return os.getenv(var_name, default_value)

        return re.sub(pattern, replacer, data)
    else:
        return data


def get_config_value(env_var: str, yaml_value: Any, default: Any = "") -> Any:
    """Environment variable first, then the YAML value, then the default."""
    value = os.getenv(env_var)
    if value:
        return value
    if yaml_value not in (None, ""):
        return yaml_value
    return default


def _as_bool(value: Any) -> bool:
    # bool('false') would be True
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


# Default config file: config/config.yaml in src/ directory
DEFAULT_CONFIG_FILE = Path(__file__).parent / "config.yaml"

# Transports with a built-in implementation. Others are registered at runtime.
ZEROBUS_TRANSPORT = "zerobus"
# Acknowledges into process memory. Local CLI and tests only.
INMEMORY_TRANSPORT = "inmemory"


@dataclass
class StreamOptions:
    """Options for one stream session.

    All timing values in milliseconds.
    """

    max_inflight_records: int = 1000
    recovery_enabled: bool = True
    recovery_timeout_ms: int = 15000
    recovery_backoff_ms: int = 2000
    recovery_retries: int = 4
    flush_timeout_ms: int = 300000
    ack_timeout_ms: int = 60000

    def __post_init__(self):
        """Ensure proper types from YAML/env vars."""
        self.max_inflight_records = int(self.max_inflight_records)
        self.recovery_enabled = _as_bool(self.recovery_enabled)
        self.recovery_timeout_ms = int(self.recovery_timeout_ms)
        self.recovery_backoff_ms = int(self.recovery_backoff_ms)
        self.recovery_retries = int(self.recovery_retries)
        self.flush_timeout_ms = int(self.flush_timeout_ms)
        self.ack_timeout_ms = int(self.ack_timeout_ms)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StreamOptions":
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        unknown = set(data) - set(known)
        if unknown:
            logger.warning(f"Ignoring unknown stream options: {sorted(unknown)}")
        return cls(**known)

    def recovery_retry_config(self) -> RetryConfig:
        """Fixed-interval schedule for reconnect attempts. Zero allows none."""
        return RetryConfig.fixed(
            max_attempts=self.recovery_retries,
            delay=self.recovery_backoff_ms / 1000,
        )

    def validate(self, context: str = "stream") -> None:
        if self.max_inflight_records < 1:
            raise ValueError(
                f"{context}: max_inflight_records must be >= 1, got {self.max_inflight_records}"
            )
        for key in (
            "recovery_timeout_ms",
            "recovery_backoff_ms",
            "recovery_retries",
            "flush_timeout_ms",
            "ack_timeout_ms",
        ):
            value = getattr(self, key)
            if value < 0:
                raise ValueError(f"{context}: {key} must be >= 0, got {value}")


@dataclass
class EncodingLimits:
    """Size bounds inherited from the target schema, in bytes."""

    max_record_bytes: int = 10 * 1024 * 1024
    max_string_bytes: int = 1024 * 1024
    max_binary_bytes: int = 1024 * 1024

    def __post_init__(self):
        self.max_record_bytes = int(self.max_record_bytes)
        self.max_string_bytes = int(self.max_string_bytes)
        self.max_binary_bytes = int(self.max_binary_bytes)

    def validate(self, context: str = "encoding") -> None:
        for key, value in asdict(self).items():
            if value < 1:
                raise ValueError(f"{context}: {key} must be >= 1, got {value}")


@dataclass
class IngestConfig:
    """Stream ingestor configuration.

    Configuration structure:
        ingest:
          connection: {...}   # endpoint, workspace_host, client_id, client_secret, transport
          table: {...}        # name, schema or descriptor_path/file_name/message_name
          stream: {...}       # StreamOptions
          batch: {...}        # safety_margin_ms, reuse_session
          encoding: {...}     # EncodingLimits
          logging: {...}      # level, json_format
    """

    # =========================================================================
    # CONNECTION
    # =========================================================================
    endpoint: str = ""
    workspace_host: str = ""
    client_id: str = ""
    client_secret: str = field(default="", repr=False)
    transport: str = ZEROBUS_TRANSPORT

    # =========================================================================
    # TABLE AND SCHEMA
    # =========================================================================
    table_name: str = ""
    schema: str = ""  # builtin schema name
    descriptor_path: str = ""  # serialized FileDescriptorSet
    descriptor_file_name: str = ""
    message_name: str = ""

    # =========================================================================
    # STREAM / BATCH / ENCODING
    # =========================================================================
    stream: StreamOptions = field(default_factory=StreamOptions)
    safety_margin_ms: int = 500
    reuse_session: bool = False
    encoding: EncodingLimits = field(default_factory=EncodingLimits)

    # =========================================================================
    # LOGGING
    # =========================================================================
    log_level: str = "INFO"
    log_json: bool = True

    def validate(self) -> None:
        """Validate configuration for correctness and constraints.

        Checks required fields, schema selection and numeric ranges.
        """
        if not self.table_name:
            raise ValueError("table.name is required (or set TABLE_NAME)")

        if self.transport == INMEMORY_TRANSPORT:
            if self.endpoint:
                raise ValueError(
                    "connection.transport 'inmemory' keeps records in process memory "
                    "and cannot be used with an endpoint configured; "
                    "unset ZEROBUS_ENDPOINT for local runs"
                )
        else:
            if not self.endpoint:
                raise ValueError(
                    "connection.endpoint is required (or set ZEROBUS_ENDPOINT)"
                )
            if self.transport == ZEROBUS_TRANSPORT and not self.workspace_host:
                raise ValueError(
                    "connection.workspace_host is required (or set DATABRICKS_HOST)"
                )

        if self.schema and self.descriptor_path:
            raise ValueError(
                "table: set either 'schema' or 'descriptor_path', not both"
            )
        if not self.schema and not self.descriptor_path:
            raise ValueError(
                "table: one of 'schema' or 'descriptor_path' is required"
            )
        if self.descriptor_path and not (
            self.descriptor_file_name and self.message_name
        ):
            raise ValueError(
                "table: descriptor_path requires descriptor_file_name and message_name"
            )

        self.stream.validate()
        self.encoding.validate()

        if self.safety_margin_ms < 0:
            raise ValueError(
                f"batch: safety_margin_ms must be >= 0, got {self.safety_margin_ms}"
            )

        if logging.getLevelName(self.log_level.upper()) == f"Level {self.log_level.upper()}":
            raise ValueError(f"logging: unknown level '{self.log_level}'")

    def to_display_dict(self) -> Dict[str, Any]:
        """Config as a dict with the client secret redacted."""
        data = asdict(self)
        if data.get("client_secret"):
            data["client_secret"] = "***"
        return data


def _deep_merge(base: Dict[str, Any], overlay: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge overlay into base dict."""
    result = base.copy()
    for key, value in overlay.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_config(
    config_path: Optional[Path] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> IngestConfig:
    """Load ingestor configuration from config.yaml file.

    Environment variables ARE supported using ${VAR_NAME} syntax in YAML files.
    Overrides are deep-merged into the 'ingest' section before environment
    variables for the deployment settings are applied.
    """
    if config_path is None:
        config_path = DEFAULT_CONFIG_FILE

    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path}\n" f"Expected file: config/config.yaml"
        )

    logger.info(f"Loading configuration from file: {config_path}")
    yaml_data = load_yaml(config_path)
    yaml_data = _expand_env_vars(yaml_data)

    if "ingest" not in yaml_data:
        raise ValueError(
            "Invalid config file: missing 'ingest:' section\n"
            "See src/config/config.yaml for correct structure"
        )

    ingest_config = yaml_data["ingest"] or {}

    if overrides:
        logger.debug(f"Applying overrides: {list(overrides.keys())}")
        ingest_config = _deep_merge(ingest_config, overrides)

    connection = ingest_config.get("connection", {}) or {}
    table = ingest_config.get("table", {}) or {}
    stream = ingest_config.get("stream", {}) or {}
    batch = ingest_config.get("batch", {}) or {}
    encoding = ingest_config.get("encoding", {}) or {}
    log_settings = ingest_config.get("logging", {}) or {}

    config = IngestConfig(
        endpoint=get_config_value("ZEROBUS_ENDPOINT", connection.get("endpoint")),
        workspace_host=get_config_value("DATABRICKS_HOST", connection.get("workspace_host")),
        client_id=get_config_value("DATABRICKS_CLIENT_ID", connection.get("client_id")),
        client_secret=get_config_value(
            "DATABRICKS_CLIENT_SECRET", connection.get("client_secret")
        ),
        transport=connection.get("transport") or ZEROBUS_TRANSPORT,
        table_name=get_config_value("TABLE_NAME", table.get("name")),
        schema=table.get("schema") or "",
        descriptor_path=table.get("descriptor_path") or "",
        descriptor_file_name=table.get("descriptor_file_name") or "",
        message_name=table.get("message_name") or "",
        stream=StreamOptions.from_dict(stream),
        safety_margin_ms=int(batch.get("safety_margin_ms", 500)),
        reuse_session=_as_bool(batch.get("reuse_session", False)),
        encoding=EncodingLimits(**encoding),
        log_level=str(log_settings.get("level", "INFO")),
        log_json=_as_bool(log_settings.get("json_format", True)),
    )

    logger.debug("Configuration loaded successfully:")
    logger.debug(f"  - Table: {config.table_name}")
    logger.debug(f"  - Transport: {config.transport}")
    logger.debug(f"  - Max in-flight records: {config.stream.max_inflight_records}")

    logger.debug("Validating configuration...")
    config.validate()
    logger.debug("Configuration validation passed")

    return config


_ingest_config: Optional[IngestConfig] = None


def get_config() -> IngestConfig:
    """Get or load the singleton ingestor config instance."""
    global _ingest_config
    if _ingest_config is None:
        _ingest_config = load_config()
    return _ingest_config


def set_config(config: IngestConfig) -> None:
    """Set the singleton config instance (useful for testing)."""
    global _ingest_config
    _ingest_config = config


def reset_config() -> None:
    """Reset the singleton config instance (forces reload on next get_config() call)."""
    global _ingest_config
    _ingest_config = None


def _build_cli_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Stream Ingestor Configuration Tool",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Validate configuration
  python -m config.config --validate

  # Show merged configuration (secret redacted)
  python -m config.config --show-merged

  # Use custom config file
  python -m config.config --config /path/to/config.yaml --validate

  # JSON output for automation
  python -m config.config --validate --json
        """,
    )

    parser.add_argument(
        "--validate",
        action="store_true",
        help="Validate configuration structure and completeness",
    )
    parser.add_argument(
        "--show-merged",
        action="store_true",
        help="Display the effective configuration",
    )
    parser.add_argument(
        "--config",
        type=Path,
        help="Path to config.yaml file (default: src/config/config.yaml)",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Output in JSON format instead of human-readable",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logging",
    )
    return parser


def _configure_cli_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(levelname)s: %(message)s",
    )


def _build_validation_output(config: IngestConfig, as_json: bool) -> Dict[str, Any]:
    # Validation happens during load_config(), if we got here it passed
    if as_json:
        return {"validation": {"passed": True, "errors": []}}

    print("✓ Configuration validation passed")
    print(f"  - Table: {config.table_name}")
    print(f"  - Schema: {config.schema or config.message_name}")
    print(f"  - Transport: {config.transport}")
    print(f"  - Max in-flight records: {config.stream.max_inflight_records}")
    print(f"  - Recovery enabled: {config.stream.recovery_enabled}")
    return {}


def _build_merged_config_output(config: IngestConfig, as_json: bool) -> Dict[str, Any]:
    display = config.to_display_dict()
    if as_json:
        return {"merged_config": display}

    print("\nConfiguration:")
    print("=" * 80)
    print(yaml.dump(display, default_flow_style=False, sort_keys=False))
    print("=" * 80)
    return {}


def _handle_cli_error(message: str, as_json: bool) -> int:
    if as_json:
        print(json.dumps({"error": message}))
    else:
        print(f"✗ {message}", file=sys.stderr)
    return 1


def _cli_main(argv: Optional[list] = None) -> int:
    """CLI entry point for config validation and debugging."""
    parser = _build_cli_parser()
    args = parser.parse_args(argv)

    _configure_cli_logging(args.verbose)

    if not args.validate and not args.show_merged:
        parser.print_help()
        return 0

    try:
        config = load_config(config_path=args.config)
    except FileNotFoundError as e:
        return _handle_cli_error(f"Error: {e}", args.json)
    except ValueError as e:
        return _handle_cli_error(f"Validation error: {e}", args.json)

    output: Dict[str, Any] = {}
    if args.validate:
        output.update(_build_validation_output(config, args.json))
    if args.show_merged:
        output.update(_build_merged_config_output(config, args.json))

    if args.json:
        print(json.dumps(output, indent=2))

    return 0


if __name__ == "__main__":
    sys.exit(_cli_main())

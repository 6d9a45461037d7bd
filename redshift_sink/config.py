"""YAML configuration loader for the Redshift sink.

Example YAML (sink.yaml):
    aws_key_id: ${AWS_ACCESS_KEY_ID}
    aws_sec_key: ${AWS_SECRET_ACCESS_KEY}
    s3_bucket: my-log-bucket
    path: logs/access
    utc: true

    redshift_host: my-cluster.abc123.us-east-1.redshift.amazonaws.com
    redshift_dbname: analytics
    redshift_user: loader
    redshift_password: ${REDSHIFT_PASSWORD}
    redshift_tablename: access_log
    redshift_schemaname: logs

    file_type: json
    make_auto_table: true
    tag_table: true

Usage:
    from redshift_sink.config import load_config
    config = load_config("./sink.yaml")
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, fields
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from redshift_sink.env import expand_options, load_env_file
from redshift_sink.errors import ConfigurationError

logger = logging.getLogger(__name__)

__all__ = [
    "RecordFormat",
    "SinkConfig",
    "determine_delimiter",
    "load_config",
    "normalize_path_prefix",
]

DEFAULT_TIMESTAMP_KEY_FORMAT = "year=%Y/month=%m/day=%d/hour=%H/%Y%m%d-%H%M"
DEFAULT_COPY_BASE_OPTIONS = "FILLRECORD ACCEPTANYDATE TRUNCATECOLUMNS"
DEFAULT_SCHEMA = "public"

REQUIRED_KEYS = (
    "aws_key_id",
    "aws_sec_key",
    "s3_bucket",
    "redshift_host",
    "redshift_dbname",
    "redshift_user",
    "redshift_password",
    "redshift_tablename",
)

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


class RecordFormat(Enum):
    """How the records of a chunk are encoded.

    - JSON: each entry is the JSON text of a mapping, mapped onto the
      destination table's columns.
    - MSGPACK: each entry is an already decoded mapping, mapped onto the
      destination table's columns.
    - DELIMITED: each entry is a pre-formatted line taken verbatim from the
      ``record_log_tag`` field (tsv, csv or any custom delimiter).
    """

    JSON = "json"
    MSGPACK = "msgpack"
    DELIMITED = "delimited"

    @property
    def is_structured(self) -> bool:
        return self is not RecordFormat.DELIMITED


def determine_delimiter(file_type: Optional[str]) -> str:
    """Return the default delimiter for a file type."""
    if file_type in ("json", "msgpack", "tsv"):
        return "\t"
    if file_type == "csv":
        return ","
    raise ConfigurationError(
        f"Invalid file_type:{file_type}.",
        field="file_type",
        value=file_type,
        suggestion="Use json, msgpack, tsv or csv, or set an explicit delimiter.",
    )


def normalize_path_prefix(path: Optional[str]) -> str:
    """Normalize the S3 key prefix.

    >>> normalize_path_prefix("log")
    'log/'
    >>> normalize_path_prefix("/log")
    'log/'
    >>> normalize_path_prefix("/")
    ''
    """
    if not path:
        return ""
    path = path.lstrip("/")
    if path and not path.endswith("/"):
        path = f"{path}/"
    return path


def _as_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_VALUES:
            return True
        if lowered in _FALSE_VALUES:
            return False
    raise ConfigurationError(f"{key} must be a boolean", field=key, value=value)


def _as_int(key: str, value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{key} must be an integer", field=key, value=value)


@dataclass(frozen=True)
class SinkConfig:
    """Immutable sink configuration, shared by concurrent deliveries."""

    aws_key_id: str
    aws_sec_key: str
    s3_bucket: str
    redshift_host: str
    redshift_dbname: str
    redshift_user: str
    redshift_password: str
    redshift_tablename: str
    record_log_tag: str = "log"
    s3_endpoint: Optional[str] = None
    path: str = ""
    timestamp_key_format: str = DEFAULT_TIMESTAMP_KEY_FORMAT
    utc: bool = False
    redshift_port: int = 5439
    redshift_schemaname: str = DEFAULT_SCHEMA
    redshift_copy_base_options: str = DEFAULT_COPY_BASE_OPTIONS
    make_auto_table: bool = True
    tag_table: bool = True
    file_type: Optional[str] = None
    delimiter: str = "\t"
    varchar_length: int = 255
    log_suffix: str = ""
    upload_retry_attempts: int = 3

    @property
    def record_format(self) -> RecordFormat:
        if self.file_type == "json":
            return RecordFormat.JSON
        if self.file_type == "msgpack":
            return RecordFormat.MSGPACK
        return RecordFormat.DELIMITED

    @property
    def uses_default_schema(self) -> bool:
        return self.redshift_schemaname == DEFAULT_SCHEMA

    @property
    def db_conf(self) -> Dict[str, Any]:
        """Keyword arguments for ``psycopg2.connect``."""
        return {
            "host": self.redshift_host,
            "port": self.redshift_port,
            "dbname": self.redshift_dbname,
            "user": self.redshift_user,
            "password": self.redshift_password,
        }

    @classmethod
    def from_dict(cls, options: Dict[str, Any]) -> "SinkConfig":
        """Validate a raw options mapping and build a SinkConfig.

        Raises:
            ConfigurationError: If a required key is missing or a value is invalid
        """
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(options) - known)
        if unknown:
            raise ConfigurationError(
                f"Unknown configuration keys: {', '.join(unknown)}",
                field=unknown[0],
            )

        missing = [key for key in REQUIRED_KEYS if not options.get(key)]
        if missing:
            raise ConfigurationError(
                f"Missing required configuration: {', '.join(missing)}",
                field=missing[0],
            )

        values: Dict[str, Any] = {
            key: str(options[key]) for key in REQUIRED_KEYS
        }

        for key in ("record_log_tag", "timestamp_key_format", "redshift_copy_base_options"):
            if options.get(key):
                values[key] = str(options[key])

        values["s3_endpoint"] = options.get("s3_endpoint") or None
        values["path"] = normalize_path_prefix(options.get("path"))
        values["log_suffix"] = str(options.get("log_suffix") or "")
        values["redshift_schemaname"] = str(
            options.get("redshift_schemaname") or DEFAULT_SCHEMA
        )

        for key in ("utc", "make_auto_table", "tag_table"):
            if key in options and options[key] is not None:
                values[key] = _as_bool(key, options[key])

        for key in ("redshift_port", "varchar_length", "upload_retry_attempts"):
            if key in options and options[key] is not None:
                values[key] = _as_int(key, options[key])

        if values.get("varchar_length", 255) < 1:
            raise ConfigurationError(
                "varchar_length must be positive",
                field="varchar_length",
                value=values["varchar_length"],
            )
        if values.get("upload_retry_attempts", 3) < 1:
            raise ConfigurationError(
                "upload_retry_attempts must be at least 1",
                field="upload_retry_attempts",
                value=values["upload_retry_attempts"],
            )

        file_type = options.get("file_type")
        file_type = str(file_type).lower() if file_type else None
        values["file_type"] = file_type

        delimiter = options.get("delimiter")
        if delimiter is None or delimiter == "":
            delimiter = determine_delimiter(file_type)
        delimiter = str(delimiter)
        if len(delimiter) != 1:
            raise ConfigurationError(
                "delimiter must be a single character",
                field="delimiter",
                value=delimiter,
            )
        values["delimiter"] = delimiter

        config = cls(**values)
        logger.debug(
            "redshift file_type:%s delimiter:%r", config.file_type, config.delimiter
        )
        return config


def _read_yaml(path: Union[str, Path]) -> Dict[str, Any]:
    logger.info("Loading config from %s", path)

    config_path = Path(path)
    if not config_path.exists():
        raise ConfigurationError(f"Config file not found: {path}")

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            cfg = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in config file: {e}")

    if not isinstance(cfg, dict):
        raise ConfigurationError("Config must be a YAML dictionary/object")

    return cfg


def load_config(
    path: Union[str, Path],
    *,
    env_file: Optional[Union[str, Path]] = None,
) -> SinkConfig:
    """Load a sink configuration from YAML.

    ``${VAR}`` references are expanded from the environment after the
    optional .env file has been loaded. A top-level ``redshift_sink``
    section is accepted so the sink can share a file with other tools.

    Args:
        path: Path to the YAML file
        env_file: Optional .env file to load first

    Returns:
        Validated SinkConfig

    Raises:
        ConfigurationError: If the file is missing or invalid
    """
    if env_file is not None:
        load_env_file(env_file)

    cfg = _read_yaml(path)
    if "redshift_sink" in cfg:
        section = cfg["redshift_sink"]
        if not isinstance(section, dict):
            raise ConfigurationError("'redshift_sink' must be a dictionary")
        cfg = section

    return SinkConfig.from_dict(expand_options(cfg))

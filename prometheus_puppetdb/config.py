"""Configuration management for prometheus-puppetdb."""

import logging
import math
import re
from pathlib import Path
from typing import Any, Literal, Optional, Union
from urllib.parse import urlsplit

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)


# Config file paths
CONFIG_DIR = Path("/etc/prometheus-puppetdb")
CONFIG_FILE = CONFIG_DIR / "config.yaml"

DEFAULT_QUERY = (
    "facts[certname, value] { name='prometheus_exporters' and "
    "nodes { deactivated is null } }"
)

OutputName = Literal["stdout", "file", "configmap", "external-services"]

DURATION_PATTERN = re.compile(r"(?P<value>\d+(?:\.\d+)?)(?P<unit>ms|h|m|s)")
DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


class ConfigError(Exception):
    """Raised when the configuration is invalid or incomplete."""


def parse_duration(value: Union[str, int, float]) -> float:
    """Parse a duration into seconds.

    Plain numbers are seconds. Strings may also use Go-style units,
    e.g. ``500ms``, ``5s``, ``1m30s`` or ``2h``. NaN and infinity are
    rejected.
    """
    if isinstance(value, bool) or not isinstance(value, (str, int, float)):
        raise ValueError(f"Invalid duration: {value!r}")

    try:
        if isinstance(value, (int, float)):
            seconds = float(value)
        else:
            seconds = _parse_duration_text(value.strip())
    except OverflowError as e:
        raise ValueError(f"Invalid duration: {value}") from e

    if not math.isfinite(seconds):
        raise ValueError(f"Invalid duration: {value}")
    return seconds


def _parse_duration_text(text: str) -> float:
    try:
        return float(text)
    except ValueError:
        pass

    total = 0.0
    pos = 0
    for match in DURATION_PATTERN.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group("value")) * DURATION_UNITS[match.group("unit")]
        pos = match.end()

    if pos == 0 or pos != len(text):
        raise ValueError(f"Invalid duration: {text}")
    return total


def parse_labels(items: Union[str, list[str]]) -> dict[str, str]:
    """Parse ``key=value`` pairs, comma separated or given as a list."""
    if isinstance(items, str):
        items = [items]

    labels = {}
    for item in items:
        for pair in item.split(","):
            pair = pair.strip()
            if not pair:
                continue
            key, sep, value = pair.partition("=")
            if not sep or not key.strip():
                raise ValueError(f"Invalid label (expected key=value): {pair}")
            labels[key.strip()] = value.strip()
    return labels


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    file: Optional[str] = None

    @field_validator("level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper_v = v.upper()
        if upper_v not in valid_levels:
            raise ValueError(
                f"Invalid log level: {v}. Must be one of: {', '.join(sorted(valid_levels))}"
            )
        return upper_v


class Config(BaseModel):
    """Main configuration model."""

    puppetdb_url: str = "http://puppetdb:8080"
    cert_file: str = "certs/client.pem"
    key_file: str = "certs/client.key"
    cacert_file: str = "certs/cacert.pem"
    ssl_skip_verify: bool = False
    query: str = DEFAULT_QUERY
    output: OutputName = "stdout"
    file: str = "/etc/prometheus/targets/prometheus-puppetdb/targets.yml"
    configmap: str = "prometheus-puppetdb"
    namespace: str = "default"
    object_labels: dict[str, str] = Field(
        default_factory=lambda: {"app.kubernetes.io/managed-by": "prometheus-puppetdb"}
    )
    sleep: float = 5.0
    timeout: float = Field(default=10.0, gt=0, le=300)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("puppetdb_url")
    @classmethod
    def validate_puppetdb_url(cls, v: str) -> str:
        """Only http and https PuppetDB URLs are supported."""
        parts = urlsplit(v)
        if parts.scheme not in ("http", "https"):
            raise ValueError(f"{parts.scheme or v!r} is not a valid http scheme")
        if not parts.netloc:
            raise ValueError(f"PuppetDB URL has no host: {v}")
        return v.rstrip("/")

    @field_validator("sleep", mode="before")
    @classmethod
    def validate_sleep(cls, v: Any) -> float:
        """Accept seconds or a duration string and require a positive value."""
        seconds = parse_duration(v)
        if seconds <= 0:
            raise ValueError(f"Sleep must be positive: {v}")
        return seconds

    @field_validator("object_labels", mode="before")
    @classmethod
    def validate_object_labels(cls, v: Any) -> Any:
        """Allow ``key=value,key=value`` strings."""
        if isinstance(v, (str, list)):
            return parse_labels(v)
        return v

    @property
    def is_https(self) -> bool:
        return urlsplit(self.puppetdb_url).scheme == "https"


def get_default_config() -> Config:
    """Get default configuration."""
    return Config()


def load_config(config_path: Optional[Path] = None) -> Config:
    """Load configuration from YAML file.

    Args:
        config_path: Path to config file. Defaults to /etc/prometheus-puppetdb/config.yaml

    Returns:
        Config object

    Raises:
        ConfigError: If the file cannot be read, parsed or validated
    """
    if config_path is None:
        config_path = CONFIG_FILE

    if not config_path.exists():
        logger.debug(f"Config file not found at {config_path}, using defaults")
        return get_default_config()

    try:
        with open(config_path, "r") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in config file {config_path}: {e}") from e
    except OSError as e:
        raise ConfigError(f"Cannot read config file {config_path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Config file {config_path} must contain a mapping")

    try:
        return Config(**data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration in {config_path}: {e}") from e


def apply_overrides(config: Config, overrides: dict[str, Any]) -> Config:
    """Return a new validated Config with non-None overrides applied.

    ``log_level`` and ``log_file`` map onto the nested logging section.

    Raises:
        ConfigError: If the resulting configuration is invalid
    """
    data = config.model_dump()
    for key, value in overrides.items():
        if value is None:
            continue
        if key == "log_level":
            data["logging"]["level"] = value
        elif key == "log_file":
            data["logging"]["file"] = value
        elif key in Config.model_fields:
            data[key] = value
        else:
            raise ConfigError(f"Unknown configuration key: {key}")

    try:
        return Config(**data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e

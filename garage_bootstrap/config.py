"""
Bootstrap Configuration

Parses the environment into an immutable, fully validated Configuration.
Nothing in here touches the network; a ConfigError is raised on the first
invalid value.
"""

import json
import logging
import math
import os
import re
import secrets
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml

from .errors import ConfigError, ConfigErrorKind

logger = logging.getLogger(__name__)

ACCESS_KEY_ID_RE = re.compile(r"^GK[0-9a-f]{24}$")
SECRET_ACCESS_KEY_RE = re.compile(r"^[0-9a-f]{64}$")
BUCKET_NAME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9-]*$")

TOKEN_BYTES = 32

SETTINGS_FILE_ENV = "GARAGE_BOOTSTRAP_SETTINGS"


class BucketPolicy(str, Enum):
    PRIVATE = "private"
    PUBLIC = "public"


@dataclass(frozen=True)
class BucketSpec:
    """A bucket declared in GARAGE_BUCKETS."""

    name: str
    policy: BucketPolicy = BucketPolicy.PRIVATE


@dataclass(frozen=True)
class Settings:
    """Runtime tuning for the admin client and the bootstrap run."""

    admin_endpoint: str = "http://127.0.0.1:3903"
    request_timeout: float = 5.0
    retry_attempts: int = 3
    retry_delay: float = 0.5
    ready_timeout: float = 20.0
    ready_interval: float = 0.1
    deadline: float = 120.0
    log_level: str = "INFO"


# field name -> environment variable
SETTINGS_ENV = {
    "admin_endpoint": "GARAGE_ADMIN_ENDPOINT",
    "request_timeout": "GARAGE_REQUEST_TIMEOUT",
    "retry_attempts": "GARAGE_RETRY_ATTEMPTS",
    "retry_delay": "GARAGE_RETRY_DELAY",
    "ready_timeout": "GARAGE_READY_TIMEOUT",
    "ready_interval": "GARAGE_READY_INTERVAL",
    "deadline": "GARAGE_BOOTSTRAP_TIMEOUT",
    "log_level": "GARAGE_BOOTSTRAP_LOG_LEVEL",
}


@dataclass(frozen=True)
class Configuration:
    """Complete, validated bootstrap configuration."""

    access_key_id: str
    secret_access_key: str
    buckets: Tuple[BucketSpec, ...]
    admin_token: str
    metrics_token: str
    admin_token_generated: bool = False
    metrics_token_generated: bool = False
    settings: Settings = field(default_factory=Settings)


def generate_token() -> str:
    """Return a random hex token carrying TOKEN_BYTES bytes of entropy."""
    return secrets.token_hex(TOKEN_BYTES)


def _read_env(environ: Mapping[str, str], name: str) -> Optional[str]:
    value = environ.get(name)
    if value is None:
        return None
    value = value.strip()
    return value or None


def _require_env(environ: Mapping[str, str], name: str) -> str:
    value = _read_env(environ, name)
    if value is None:
        raise ConfigError(
            ConfigErrorKind.MISSING_REQUIRED,
            f"missing environment variable {name}",
            field=name,
        )
    return value


def _require_pattern(value: str, pattern: "re.Pattern[str]", name: str) -> str:
    if not pattern.match(value):
        # The value itself may be a secret, so only the field is reported.
        raise ConfigError(
            ConfigErrorKind.INVALID_FORMAT,
            f"environment variable {name} does not match {pattern.pattern}",
            field=name,
        )
    return value


def parse_buckets(raw: str) -> Tuple[BucketSpec, ...]:
    """
    Parse a GARAGE_BUCKETS value.

    Entries are separated by commas; each entry is ``name`` or
    ``name:policy`` where policy is ``public`` or ``private``.

    Args:
        raw: The raw environment value

    Returns:
        Bucket specs in declared order
    """
    buckets = []
    seen = set()
    for entry in raw.split(","):
        name, sep, policy_token = entry.strip().partition(":")
        name = name.strip()
        if not BUCKET_NAME_RE.match(name):
            raise ConfigError(
                ConfigErrorKind.INVALID_BUCKET_NAME,
                f"invalid bucket name {name!r}",
                bucket=name,
            )

        policy = BucketPolicy.PRIVATE
        if sep:
            try:
                policy = BucketPolicy(policy_token.strip().lower())
            except ValueError:
                raise ConfigError(
                    ConfigErrorKind.INVALID_POLICY,
                    f"invalid bucket policy {policy_token!r} for bucket {name}",
                    bucket=name,
                ) from None

        if name in seen:
            raise ConfigError(
                ConfigErrorKind.DUPLICATE_BUCKET,
                f"bucket {name} is declared more than once",
                bucket=name,
            )
        seen.add(name)
        buckets.append(BucketSpec(name=name, policy=policy))

    return tuple(buckets)


def _coerce_setting(name: str, value: Any, default: Any) -> Any:
    if name == "log_level":
        level = str(value).strip().upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ConfigError(
                ConfigErrorKind.INVALID_SETTING,
                f"unknown log level {value!r}",
                field=name,
            )
        return level
    if isinstance(default, str):
        return str(value)

    number = None
    if not isinstance(value, bool):
        try:
            number = float(value)
        except (TypeError, ValueError):
            number = None
    if number is None or not math.isfinite(number) or number <= 0:
        raise ConfigError(
            ConfigErrorKind.INVALID_SETTING,
            f"setting {name} must be a positive number, got {value!r}",
            field=name,
        )
    if isinstance(default, int):
        if not number.is_integer():
            raise ConfigError(
                ConfigErrorKind.INVALID_SETTING,
                f"setting {name} must be a whole number, got {value!r}",
                field=name,
            )
        return int(number)
    return number


def load_settings_file(path: str) -> Dict[str, Any]:
    """
    Load settings overrides from a YAML or JSON file.

    Args:
        path: Path to the settings file

    Returns:
        Mapping of setting name to raw value
    """
    try:
        with open(path, "r") as f:
            if path.endswith((".yml", ".yaml")):
                data = yaml.safe_load(f)
            else:
                data = json.load(f)
    except (OSError, yaml.YAMLError, ValueError) as e:
        raise ConfigError(
            ConfigErrorKind.INVALID_SETTING,
            f"could not read settings file {path}: {e}",
            field=SETTINGS_FILE_ENV,
        ) from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(
            ConfigErrorKind.INVALID_SETTING,
            f"settings file {path} must contain a mapping",
            field=SETTINGS_FILE_ENV,
        )
    return data


def load_settings(environ: Mapping[str, str]) -> Settings:
    """Build Settings from defaults, the optional settings file and the environment."""
    defaults = Settings()
    known = {f.name for f in fields(Settings)}
    raw: Dict[str, Any] = {}

    settings_path = _read_env(environ, SETTINGS_FILE_ENV)
    if settings_path:
        file_values = load_settings_file(settings_path)
        unknown = sorted(set(file_values) - known)
        if unknown:
            raise ConfigError(
                ConfigErrorKind.INVALID_SETTING,
                f"unknown settings in {settings_path}: {', '.join(unknown)}",
                field=unknown[0],
            )
        raw.update(file_values)

    for name, env_name in SETTINGS_ENV.items():
        value = _read_env(environ, env_name)
        if value is not None:
            raw[name] = value

    overrides = {
        name: _coerce_setting(name, value, getattr(defaults, name))
        for name, value in raw.items()
    }
    return replace(defaults, **overrides)


def load_config(environ: Optional[Mapping[str, str]] = None) -> Configuration:
    """
    Load the bootstrap configuration from environment variables.

    Environment variables:
        GARAGE_ACCESS_KEY_ID: Access key id to import (required)
        GARAGE_SECRET_ACCESS_KEY: Secret for that key (required)
        GARAGE_BUCKETS: Comma-separated ``name[:public|private]`` list (required)
        GARAGE_ADMIN_TOKEN: Admin API token (random if absent)
        GARAGE_METRICS_TOKEN: Metrics token (random if absent)

    Args:
        environ: Mapping to read from, defaults to os.environ

    Returns:
        Validated Configuration

    Raises:
        ConfigError: If any value is missing or malformed
    """
    if environ is None:
        environ = os.environ

    access_key_id = _require_pattern(
        _require_env(environ, "GARAGE_ACCESS_KEY_ID"),
        ACCESS_KEY_ID_RE,
        "GARAGE_ACCESS_KEY_ID",
    )
    secret_access_key = _require_pattern(
        _require_env(environ, "GARAGE_SECRET_ACCESS_KEY"),
        SECRET_ACCESS_KEY_RE,
        "GARAGE_SECRET_ACCESS_KEY",
    )
    buckets = parse_buckets(_require_env(environ, "GARAGE_BUCKETS"))

    admin_token = _read_env(environ, "GARAGE_ADMIN_TOKEN")
    metrics_token = _read_env(environ, "GARAGE_METRICS_TOKEN")

    return Configuration(
        access_key_id=access_key_id,
        secret_access_key=secret_access_key,
        buckets=buckets,
        admin_token=admin_token or generate_token(),
        metrics_token=metrics_token or generate_token(),
        admin_token_generated=admin_token is None,
        metrics_token_generated=metrics_token is None,
        settings=load_settings(environ),
    )

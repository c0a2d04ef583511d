"""Frozen configuration dataclass loaded from YAML, env vars and CLI args."""

import argparse
import logging
import os
import sys
from dataclasses import dataclass, fields

import yaml

logger = logging.getLogger(__name__)

SNAPSHOT_POLICIES = ("clear", "retain")


def _parse_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("true", "1", "yes")


@dataclass(frozen=True)
class Config:
    api_url: str = "http://localhost:8000"
    ws_url: str = "ws://localhost:8001/connection/websocket"
    user_id: str = "dashboard"
    channel: str = "logs"
    feed_capacity: int = 500
    logs_poll_interval: float = 10.0
    stats_poll_interval: float = 15.0
    request_timeout: float = 10.0
    stale_snapshot_policy: str = "clear"
    reconnect: bool = True
    reconnect_min_delay: float = 1.0
    reconnect_max_delay: float = 60.0
    max_reconnect_attempts: int = 0  # 0 = unlimited
    summary_interval: float = 0  # 0 = disabled
    log_level: str = "INFO"

    def __post_init__(self):
        if self.feed_capacity < 1:
            raise ValueError("feed_capacity must be at least 1")
        for name in ("logs_poll_interval", "stats_poll_interval", "request_timeout"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if self.stale_snapshot_policy not in SNAPSHOT_POLICIES:
            raise ValueError(
                f"stale_snapshot_policy must be one of {SNAPSHOT_POLICIES}, "
                f"got {self.stale_snapshot_policy!r}"
            )
        if self.reconnect_min_delay <= 0 or self.reconnect_min_delay > self.reconnect_max_delay:
            raise ValueError("reconnect delays must satisfy 0 < min <= max")
        if self.max_reconnect_attempts < 0:
            raise ValueError("max_reconnect_attempts must be >= 0")
        if self.summary_interval < 0:
            raise ValueError("summary_interval must be >= 0")


# field name -> environment variable
ENV_VARS = {
    "api_url": "LIVEFEED_API_URL",
    "ws_url": "LIVEFEED_WS_URL",
    "user_id": "LIVEFEED_USER_ID",
    "channel": "LIVEFEED_CHANNEL",
    "feed_capacity": "FEED_CAPACITY",
    "logs_poll_interval": "LOGS_POLL_INTERVAL",
    "stats_poll_interval": "STATS_POLL_INTERVAL",
    "request_timeout": "REQUEST_TIMEOUT",
    "stale_snapshot_policy": "STALE_SNAPSHOT_POLICY",
    "reconnect": "RECONNECT",
    "reconnect_min_delay": "RECONNECT_MIN_DELAY",
    "reconnect_max_delay": "RECONNECT_MAX_DELAY",
    "max_reconnect_attempts": "MAX_RECONNECT_ATTEMPTS",
    "summary_interval": "SUMMARY_INTERVAL",
    "log_level": "LOG_LEVEL",
}

_CONVERTERS = {int: int, float: float, bool: _parse_bool, str: str}
_FIELD_TYPES = {f.name: f.type for f in fields(Config)}


def load_yaml_config(path: str | None) -> dict:
    """Load overrides from a YAML file. Returns empty dict if no path or file."""
    if not path:
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.warning("Config file %s not found, using defaults", path)
        return {}
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a mapping at the top level")
    logger.info("Loaded YAML config from %s", path)
    return data


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Live log feed ingestion client")
    parser.add_argument("--config", help="YAML config file")
    for f in fields(Config):
        flag = "--" + f.name.replace("_", "-")
        if f.type is bool:
            parser.add_argument(flag, dest=f.name, action=argparse.BooleanOptionalAction, default=None)
        else:
            parser.add_argument(flag, dest=f.name, default=None)
    return parser


def _coerce(name: str, value):
    try:
        return _CONVERTERS[_FIELD_TYPES[name]](value)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Invalid value for {name}: {value!r}") from e


def load_config(argv: list[str] | None = None) -> Config:
    """Build Config from defaults <- YAML file <- env vars <- CLI args (highest priority)."""
    if argv is None:
        argv = sys.argv[1:]

    args = _build_parser().parse_args(argv)
    config_path = args.config or os.environ.get("LIVEFEED_CONFIG")

    known = set(_FIELD_TYPES)
    kwargs: dict = {}

    for key, value in load_yaml_config(config_path).items():
        key = str(key).replace("-", "_")
        if key not in known:
            logger.warning("Ignoring unknown config key %r", key)
            continue
        kwargs[key] = _coerce(key, value)

    for name, env_var in ENV_VARS.items():
        if env_var in os.environ:
            kwargs[name] = _coerce(name, os.environ[env_var])

    for name in known:
        value = getattr(args, name)
        if value is not None:
            kwargs[name] = _coerce(name, value)

    return Config(**kwargs)

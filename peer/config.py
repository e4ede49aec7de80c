from __future__ import annotations

import logging
import os
from typing import Any, Dict

from dotenv import load_dotenv

from shared.protocol.constants import (
    DEFAULT_CHUNK_SIZE,
    DEFAULT_HISTORY_LIMIT,
    DEFAULT_HEARTBEAT_INTERVAL,
    DEFAULT_HEARTBEAT_TIMEOUT,
    DEFAULT_TRANSFER_CHECK_INTERVAL,
    DEFAULT_TRANSFER_TIMEOUT,
    MAX_PAYLOAD_SIZE,
    SEND_YIELD_DELAY,
    SEND_YIELD_EVERY,
)

DEFAULT_CONFIG: Dict[str, Any] = {
    "chunk_size": DEFAULT_CHUNK_SIZE,
    "heartbeat_interval": DEFAULT_HEARTBEAT_INTERVAL,
    "heartbeat_timeout": DEFAULT_HEARTBEAT_TIMEOUT,
    "transfer_timeout": DEFAULT_TRANSFER_TIMEOUT,
    "transfer_check_interval": DEFAULT_TRANSFER_CHECK_INTERVAL,
    "send_yield_every": SEND_YIELD_EVERY,
    "send_yield_delay": SEND_YIELD_DELAY,
    "liveness_on_any_message": True,
    "history_limit": DEFAULT_HISTORY_LIMIT,
    "log_level": "INFO",
}

PEER_CONFIG: Dict[str, Any] = DEFAULT_CONFIG.copy()


class ConfigError(Exception):
    """Raised when configuration values are invalid."""

    pass


def load_config(env_path: str = ".env") -> Dict[str, Any]:
    """Load peer configuration from env file/environment variables."""
    if os.path.exists(env_path):
        load_dotenv(env_path)

    for key, default_value in DEFAULT_CONFIG.items():
        env_key = f"PEER_{key.upper()}"
        value = os.getenv(env_key, default_value)
        PEER_CONFIG[key] = _coerce_type(value, type(default_value))

    validate_config(PEER_CONFIG)
    logging.getLogger().setLevel(PEER_CONFIG["log_level"])
    return PEER_CONFIG


def _coerce_type(value: Any, target_type: type) -> Any:
    if isinstance(value, target_type):
        return value
    try:
        if target_type is bool:
            return str(value).lower() in ("1", "true", "yes", "on")
        return target_type(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Cannot convert {value} to {target_type}") from exc


def validate_config(config: Dict[str, Any]) -> None:
    # Each chunk travels base64 encoded inside one frame.
    if not (1 <= int(config["chunk_size"]) <= MAX_PAYLOAD_SIZE // 2):
        raise ConfigError(f"chunk_size must be between 1 and {MAX_PAYLOAD_SIZE // 2}")
    for key in ("heartbeat_interval", "heartbeat_timeout", "transfer_timeout", "transfer_check_interval"):
        if config[key] <= 0:
            raise ConfigError(f"{key} must be positive")
    if config["heartbeat_timeout"] < config["heartbeat_interval"]:
        raise ConfigError("heartbeat_timeout must not be shorter than heartbeat_interval")
    if config["send_yield_every"] < 1:
        raise ConfigError("send_yield_every must be at least 1")
    if config["history_limit"] < 1:
        raise ConfigError("history_limit must be at least 1")
    if config["send_yield_delay"] < 0:
        raise ConfigError("send_yield_delay must not be negative")


__all__ = ["PEER_CONFIG", "DEFAULT_CONFIG", "ConfigError", "load_config", "validate_config"]

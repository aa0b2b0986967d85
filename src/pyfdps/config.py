"""Client configuration for pyfdps."""

from __future__ import annotations

import dataclasses
import os
from collections.abc import Mapping
from typing import Any

from pyfdps.exceptions import FdpsConfigError

_TRANSPORTS = frozenset({"tcp", "websockets"})


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _env_number(env: Mapping[str, str], key: str, cast: type) -> Any:
    raw = env.get(key)
    if raw is None:
        return None
    try:
        return cast(raw.strip())
    except ValueError as exc:
        raise FdpsConfigError(f"{key} must be a {cast.__name__}, got {raw!r}") from exc


@dataclasses.dataclass(frozen=True)
class FdpsConfig:
    """Client configuration.

    Parameters
    ----------
    broker_host : str
        MQTT broker host name.
    broker_port : int
        MQTT broker port.
    username : str or None
        Broker username. ``None`` connects anonymously.
    password : str or None
        Broker password.
    client_id : str
        MQTT client id. Empty lets paho generate a random id.
    use_tls : bool
        Wrap the broker connection in TLS with the system trust store.
    transport : str
        paho transport, ``"tcp"`` or ``"websockets"``.
    keepalive : int
        MQTT keepalive in seconds.
    subscribe_timeout : float
        Seconds to wait for a SUBACK/UNSUBACK before the call fails.
    debounce_seconds : float
        Quiescence window applied to region edits before subscriptions
        are re-synchronized.
    subscribe_attempts : int
        Attempts per filter during a sync round. ``1`` disables retry.
    retry_backoff_seconds : float
        Delay between subscribe attempts.
    topic_root : str
        First topic level of the feed (``"FDPS"``).
    topic_feed : str
        Second topic level of the feed (``"position"``).
    """

    broker_host: str = "localhost"
    broker_port: int = 1883
    username: str | None = None
    password: str | None = None
    client_id: str = ""
    use_tls: bool = False
    transport: str = "tcp"
    keepalive: int = 60
    subscribe_timeout: float = 10.0
    debounce_seconds: float = 0.5
    subscribe_attempts: int = 1
    retry_backoff_seconds: float = 0.5
    topic_root: str = "FDPS"
    topic_feed: str = "position"

    def __post_init__(self) -> None:
        if self.debounce_seconds < 0:
            raise FdpsConfigError("debounce_seconds must be >= 0")
        if self.transport not in _TRANSPORTS:
            raise FdpsConfigError(f"transport must be one of {sorted(_TRANSPORTS)}, got {self.transport!r}")
        if self.subscribe_attempts < 1:
            raise FdpsConfigError("subscribe_attempts must be >= 1")
        if not self.topic_root or "/" in self.topic_root:
            raise FdpsConfigError("topic_root must be a single non-empty topic level")
        if not self.topic_feed or "/" in self.topic_feed:
            raise FdpsConfigError("topic_feed must be a single non-empty topic level")

    @classmethod
    def from_env(cls, **overrides: Any) -> FdpsConfig:
        """Create configuration from ``FDPS_*`` environment variables.

        Explicit keyword arguments override environment values.
        """
        env = os.environ

        _ENV_STR_MAP = {
            "FDPS_BROKER_HOST": "broker_host",
            "FDPS_USERNAME": "username",
            "FDPS_PASSWORD": "password",
            "FDPS_CLIENT_ID": "client_id",
            "FDPS_TRANSPORT": "transport",
            "FDPS_TOPIC_ROOT": "topic_root",
            "FDPS_TOPIC_FEED": "topic_feed",
        }
        _ENV_NUMBER_MAP: dict[str, tuple[str, type]] = {
            "FDPS_BROKER_PORT": ("broker_port", int),
            "FDPS_KEEPALIVE": ("keepalive", int),
            "FDPS_SUBSCRIBE_TIMEOUT": ("subscribe_timeout", float),
            "FDPS_DEBOUNCE_SECONDS": ("debounce_seconds", float),
            "FDPS_SUBSCRIBE_ATTEMPTS": ("subscribe_attempts", int),
            "FDPS_RETRY_BACKOFF_SECONDS": ("retry_backoff_seconds", float),
        }

        config_kwargs: dict[str, Any] = {}
        for env_key, field_name in _ENV_STR_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val

        for env_key, (field_name, cast) in _ENV_NUMBER_MAP.items():
            if field_name in overrides:
                continue
            val = _env_number(env, env_key, cast)
            if val is not None:
                config_kwargs[field_name] = val

        if "use_tls" not in overrides:
            config_kwargs["use_tls"] = _env_bool(env.get("FDPS_USE_TLS"), False)

        config_kwargs.update(overrides)

        return cls(**config_kwargs)

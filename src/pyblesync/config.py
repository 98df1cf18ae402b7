"""Client configuration for pyblesync."""

from __future__ import annotations

import dataclasses
import os
import secrets
from pathlib import Path
from typing import Any

from pyblesync import _constants as const
from pyblesync.exceptions import BleSyncConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _default_client_id() -> str:
    return f"BLE_Scanner_{secrets.token_hex(8).upper()}"


@dataclasses.dataclass(frozen=True)
class SyncConfig:
    """Client configuration.

    Parameters
    ----------
    broker_host : str
        MQTT broker host name or address.
    username : str
        Broker user name.
    password : str
        Broker password.
    broker_port : int
        Broker TCP port.
    client_id : str
        MQTT client identifier. Also sent as the payload of request topics
        so the broker can address responses.
    keepalive : int
        MQTT keepalive in seconds.
    tls : bool
        Enable TLS on the broker connection.
    topic_root : str
        Optional prefix prepended to every wire topic (without trailing ``/``).
    storage_dir : Path
        Directory holding the local JSON state and the outbox file.
    connect_timeout : float
        Seconds to wait for CONNACK / SUBACK before treating the attempt as failed.
    reconnect_delay : float
        Fixed delay between reconnect attempts.
    max_reconnect_attempts : int
        Attempts per reconnect cycle before the supervisor reports ``FAILED``.
    probe_interval : float
        Interval of the liveness probe while connected.
    flush_delay : float
        Delay between messages replayed from the offline outbox.
    debounce_window : float
        Repeat advertisements from one source inside this window are dropped.
    stale_threshold : float
        Age after which a device is flagged as having lost signal.
    sweep_interval : float
        Interval of the staleness sweep during discovery.
    discovery_timeout : float
        Seconds after which a discovery session without any match reports
        "no matching device found".
    idle_rotation : float
        Idle time after which the test group token is rotated.
    capture_capacity : int
        Samples collected by a capture session before it completes.
    suggestion_types : tuple[str, ...]
        Suggestion lists requested from peers after every connect.
    """

    broker_host: str
    username: str
    password: str
    broker_port: int = 1883
    client_id: str = dataclasses.field(default_factory=_default_client_id)
    keepalive: int = 60
    tls: bool = False
    topic_root: str = ""
    storage_dir: Path = dataclasses.field(default_factory=lambda: Path("~/.pyblesync").expanduser())
    connect_timeout: float = const.CONNECT_TIMEOUT
    reconnect_delay: float = const.RECONNECT_DELAY
    max_reconnect_attempts: int = const.MAX_RECONNECT_ATTEMPTS
    probe_interval: float = const.PROBE_INTERVAL
    flush_delay: float = const.FLUSH_DELAY
    debounce_window: float = const.DEBOUNCE_WINDOW
    stale_threshold: float = const.STALE_THRESHOLD
    sweep_interval: float = const.SWEEP_INTERVAL
    discovery_timeout: float = const.DISCOVERY_TIMEOUT
    idle_rotation: float = const.IDLE_ROTATION
    capture_capacity: int = const.CAPTURE_CAPACITY
    suggestion_types: tuple[str, ...] = const.SUGGESTION_TYPES

    def __post_init__(self) -> None:
        missing = [
            name for name in ("broker_host", "username", "password") if not str(getattr(self, name) or "").strip()
        ]
        if missing:
            raise BleSyncConfigError(f"Missing required configuration: {', '.join(missing)}")
        if self.max_reconnect_attempts < 1:
            raise BleSyncConfigError("max_reconnect_attempts must be at least 1")
        if self.capture_capacity < 1:
            raise BleSyncConfigError("capture_capacity must be at least 1")
        object.__setattr__(self, "storage_dir", Path(self.storage_dir).expanduser())
        object.__setattr__(self, "topic_root", self.topic_root.strip().strip("/"))
        object.__setattr__(self, "suggestion_types", tuple(t.strip() for t in self.suggestion_types if t.strip()))

    @classmethod
    def from_env(cls, **overrides: Any) -> SyncConfig:
        """Create configuration from environment variables.

        Reads ``BLESYNC_HOST``, ``BLESYNC_USERNAME`` and ``BLESYNC_PASSWORD``
        (all required) plus optional ``BLESYNC_*`` tunables. Explicit keyword
        arguments override environment values.

        Raises
        ------
        BleSyncConfigError
            When a required value is missing or a numeric value is malformed.
        """
        env = os.environ

        _ENV_STR_MAP = {
            "BLESYNC_HOST": "broker_host",
            "BLESYNC_USERNAME": "username",
            "BLESYNC_PASSWORD": "password",
            "BLESYNC_CLIENT_ID": "client_id",
            "BLESYNC_TOPIC_ROOT": "topic_root",
            "BLESYNC_STORAGE_DIR": "storage_dir",
        }
        _ENV_NUM_MAP: dict[str, tuple[str, type]] = {
            "BLESYNC_PORT": ("broker_port", int),
            "BLESYNC_KEEPALIVE": ("keepalive", int),
            "BLESYNC_CONNECT_TIMEOUT": ("connect_timeout", float),
            "BLESYNC_RECONNECT_DELAY": ("reconnect_delay", float),
            "BLESYNC_MAX_RECONNECT_ATTEMPTS": ("max_reconnect_attempts", int),
            "BLESYNC_PROBE_INTERVAL": ("probe_interval", float),
            "BLESYNC_FLUSH_DELAY": ("flush_delay", float),
            "BLESYNC_DEBOUNCE_WINDOW": ("debounce_window", float),
            "BLESYNC_STALE_THRESHOLD": ("stale_threshold", float),
            "BLESYNC_SWEEP_INTERVAL": ("sweep_interval", float),
            "BLESYNC_DISCOVERY_TIMEOUT": ("discovery_timeout", float),
            "BLESYNC_IDLE_ROTATION": ("idle_rotation", float),
            "BLESYNC_CAPTURE_CAPACITY": ("capture_capacity", int),
        }

        config_kwargs: dict[str, Any] = {}
        for env_key, field_name in _ENV_STR_MAP.items():
            val = env.get(env_key)
            if val is not None and field_name not in overrides:
                config_kwargs[field_name] = val

        for env_key, (field_name, kind) in _ENV_NUM_MAP.items():
            val = env.get(env_key)
            if val is None or field_name in overrides:
                continue
            try:
                config_kwargs[field_name] = kind(val)
            except ValueError as exc:
                raise BleSyncConfigError(f"{env_key} is not a valid {kind.__name__}: {val!r}") from exc

        if "tls" not in overrides:
            config_kwargs["tls"] = _env_bool(env.get("BLESYNC_TLS"), False)

        suggestion_types = env.get("BLESYNC_SUGGESTION_TYPES")
        if suggestion_types is not None and "suggestion_types" not in overrides:
            config_kwargs["suggestion_types"] = tuple(suggestion_types.split(","))

        config_kwargs.update(overrides)

        missing = [name for name in ("broker_host", "username", "password") if not config_kwargs.get(name)]
        if missing:
            raise BleSyncConfigError(f"Missing required configuration: {', '.join(missing)}")

        return cls(**config_kwargs)

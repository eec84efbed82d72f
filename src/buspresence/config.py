"""Library configuration for buspresence."""

from __future__ import annotations

import dataclasses
import os
import re
from enum import StrEnum
from typing import Any

from buspresence._constants import (
    CLEANUP_MAX_AGE_SECONDS,
    DEFAULT_MQTT_PORT,
    DEFAULT_TOPIC_PREFIX,
    RECENCY_THRESHOLD_MS,
)
from buspresence.exceptions import PresenceConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


class FormFactor(StrEnum):
    MOBILE = "mobile"
    DESKTOP = "desktop"


_MOBILE_UA = re.compile(r"Android|iPhone|iPad|iPod|Mobile|Opera Mini|IEMobile", re.IGNORECASE)


@dataclasses.dataclass(frozen=True)
class DeviceProfile:
    """Where the position is being acquired.

    The form factor selects the acquisition strategy ordering; the origin
    decides whether location is allowed at all.

    Parameters
    ----------
    form_factor : FormFactor
        ``MOBILE`` biases towards fast, cached, low-accuracy fixes first.
    origin : str or None
        Page origin (e.g. ``"https://tracker.example.edu"``). ``None`` means
        a native context with no origin restriction.
    """

    form_factor: FormFactor = FormFactor.DESKTOP
    origin: str | None = None

    @property
    def is_mobile(self) -> bool:
        return self.form_factor == FormFactor.MOBILE

    @classmethod
    def from_user_agent(cls, user_agent: str, *, origin: str | None = None) -> DeviceProfile:
        """Build a profile from a browser user agent string."""
        form_factor = FormFactor.MOBILE if _MOBILE_UA.search(user_agent or "") else FormFactor.DESKTOP
        return cls(form_factor=form_factor, origin=origin)


@dataclasses.dataclass(frozen=True)
class PresenceConfig:
    """Library configuration.

    Parameters
    ----------
    recency_threshold_ms : int
        Age below which a presence record is displayed as live.
    cleanup_max_age_s : float
        Age above which the cleanup sweep deletes a record. Deliberately
        independent from ``recency_threshold_ms``.
    tracking_high_accuracy : bool
        Request high accuracy on the continuous tracking channel.
    tracking_timeout_ms : int
        Per-fix timeout on the continuous tracking channel.
    tracking_max_cache_age_ms : int
        Oldest cached fix the continuous channel may report.
    mqtt_host : str
        Broker host for :class:`~buspresence.store.mqtt.MqttPresenceStore`.
    mqtt_port : int
        Broker port.
    mqtt_username : str or None
        Broker username.
    mqtt_password : str or None
        Broker password.
    mqtt_tls : bool
        Wrap the broker connection in TLS.
    mqtt_keepalive : int
        MQTT keepalive in seconds.
    mqtt_client_id : str
        MQTT client id; empty lets the broker assign one.
    topic_prefix : str
        Records live on ``<topic_prefix>/<driver_id>``.
    publish_timeout : float
        Seconds to wait for a QoS 1 publish to be acknowledged.
    vehicles_url : str or None
        JSON endpoint listing scheduled vehicles.
    vehicles_poll_interval : float
        Seconds between polls of ``vehicles_url``.
    device : DeviceProfile
        Device form factor and origin.
    """

    recency_threshold_ms: int = RECENCY_THRESHOLD_MS
    cleanup_max_age_s: float = CLEANUP_MAX_AGE_SECONDS
    tracking_high_accuracy: bool = True
    tracking_timeout_ms: int = 15_000
    tracking_max_cache_age_ms: int = 30_000
    mqtt_host: str = "localhost"
    mqtt_port: int = DEFAULT_MQTT_PORT
    mqtt_username: str | None = None
    mqtt_password: str | None = None
    mqtt_tls: bool = False
    mqtt_keepalive: int = 60
    mqtt_client_id: str = ""
    topic_prefix: str = DEFAULT_TOPIC_PREFIX
    publish_timeout: float = 10.0
    vehicles_url: str | None = None
    vehicles_poll_interval: float = 15.0
    device: DeviceProfile = dataclasses.field(default_factory=DeviceProfile)

    def __post_init__(self) -> None:
        if self.recency_threshold_ms <= 0:
            raise PresenceConfigError("recency_threshold_ms must be positive")
        if self.cleanup_max_age_s <= 0:
            raise PresenceConfigError("cleanup_max_age_s must be positive")
        if not self.topic_prefix.strip("/"):
            raise PresenceConfigError("topic_prefix must be non-empty")
        if any(ch in self.topic_prefix for ch in "+#"):
            raise PresenceConfigError("topic_prefix must not contain MQTT wildcards")

    @classmethod
    def from_env(cls, **overrides: Any) -> PresenceConfig:
        """Create configuration from ``PRESENCE_*`` environment variables.

        Explicit keyword arguments override environment values.

        Returns
        -------
        PresenceConfig
            Populated configuration.
        """
        env = os.environ

        device_kwargs: dict[str, Any] = {}
        form_factor = env.get("PRESENCE_FORM_FACTOR")
        if form_factor is not None:
            try:
                device_kwargs["form_factor"] = FormFactor(form_factor.strip().lower())
            except ValueError as exc:
                raise PresenceConfigError(f"Unknown PRESENCE_FORM_FACTOR: {form_factor!r}") from exc
        origin = env.get("PRESENCE_ORIGIN")
        if origin is not None:
            device_kwargs["origin"] = origin

        device_overrides = overrides.pop("device", None)
        if isinstance(device_overrides, dict):
            device_kwargs.update(device_overrides)
        elif isinstance(device_overrides, DeviceProfile):
            device_kwargs = dataclasses.asdict(device_overrides)

        config_kwargs: dict[str, Any] = {"device": DeviceProfile(**device_kwargs)}

        _ENV_STR_MAP = {
            "PRESENCE_MQTT_HOST": "mqtt_host",
            "PRESENCE_MQTT_USERNAME": "mqtt_username",
            "PRESENCE_MQTT_PASSWORD": "mqtt_password",
            "PRESENCE_MQTT_CLIENT_ID": "mqtt_client_id",
            "PRESENCE_TOPIC_PREFIX": "topic_prefix",
            "PRESENCE_VEHICLES_URL": "vehicles_url",
        }
        for env_key, field_name in _ENV_STR_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val

        _ENV_NUMERIC_MAP: dict[str, tuple[str, type]] = {
            "PRESENCE_RECENCY_THRESHOLD_MS": ("recency_threshold_ms", int),
            "PRESENCE_CLEANUP_MAX_AGE_S": ("cleanup_max_age_s", float),
            "PRESENCE_TRACKING_TIMEOUT_MS": ("tracking_timeout_ms", int),
            "PRESENCE_TRACKING_MAX_CACHE_AGE_MS": ("tracking_max_cache_age_ms", int),
            "PRESENCE_MQTT_PORT": ("mqtt_port", int),
            "PRESENCE_MQTT_KEEPALIVE": ("mqtt_keepalive", int),
            "PRESENCE_PUBLISH_TIMEOUT": ("publish_timeout", float),
            "PRESENCE_VEHICLES_POLL_INTERVAL": ("vehicles_poll_interval", float),
        }
        for env_key, (field_name, cast) in _ENV_NUMERIC_MAP.items():
            val = env.get(env_key)
            if val is None or field_name in overrides:
                continue
            try:
                config_kwargs[field_name] = cast(val)
            except ValueError as exc:
                raise PresenceConfigError(f"{env_key} is not a valid number: {val!r}") from exc

        if "tracking_high_accuracy" not in overrides:
            config_kwargs["tracking_high_accuracy"] = _env_bool(env.get("PRESENCE_TRACKING_HIGH_ACCURACY"), True)
        if "mqtt_tls" not in overrides:
            config_kwargs["mqtt_tls"] = _env_bool(env.get("PRESENCE_MQTT_TLS"), False)

        config_kwargs.update(overrides)

        return cls(**config_kwargs)

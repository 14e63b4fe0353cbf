"""Pydantic settings loaded from YAML configuration with environment overrides."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, SecretStr, model_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict
from sqlalchemy.engine import URL

_settings: Settings | None = None

_DEFAULT_CONFIG_PATH = Path("config/settings.yaml")


class DatabaseConfig(BaseModel):
    """Reading store connection.

    ``url`` wins over the discrete fields when set.
    """

    url: str = ""
    driver: str = "mysql+aiomysql"
    host: str = "10.10.11.27"
    port: int = 3306
    user: str = "root"
    password: SecretStr = SecretStr("")
    name: str = "suhu"
    connect_timeout_secs: float = 5.0

    def sqlalchemy_url(self) -> str | URL:
        if self.url:
            return self.url
        return URL.create(
            self.driver,
            username=self.user,
            password=self.password.get_secret_value() or None,
            host=self.host,
            port=self.port,
            database=self.name,
        )


class ServerConfig(BaseModel):
    """HTTP listener configuration."""

    host: str = "0.0.0.0"
    port: int = 3000
    allowed_origin: str = "http://10.10.1.25"
    export_max_rows: int | None = 100_000


class PushConfig(BaseModel):
    """Push channel tuning."""

    ping_timeout_secs: float = 60.0
    ping_interval_secs: float = 25.0
    poll_timeout_secs: float = 20.0
    queue_size: int = 64
    max_message_bytes: int = 100_000_000
    reap_interval_secs: float = 10.0


class SamplerConfig(BaseModel):
    """Periodic sampling configuration."""

    interval_secs: float = 5.0
    access_log_limit: int = 5


class ObserverConfig(BaseModel):
    """Observer-side connection policy."""

    server_url: str = "http://127.0.0.1:3000"
    handshake_timeout_secs: float = 20.0
    max_handshake_failures: int = 3
    reconnect_base_secs: float = 1.0
    reconnect_cap_secs: float = 5.0


class RangeThreshold(BaseModel):
    """Four-tier bounds for one numeric metric. Any bound may be absent."""

    label: str = ""
    unit: str = ""
    warning_low: float | None = None
    warning_high: float | None = None
    critical_low: float | None = None
    critical_high: float | None = None

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _check_ordering(self) -> RangeThreshold:
        ordered = [
            ("critical_low", self.critical_low),
            ("warning_low", self.warning_low),
            ("warning_high", self.warning_high),
            ("critical_high", self.critical_high),
        ]
        present = [(name, value) for name, value in ordered if value is not None]
        for (lo_name, lo), (hi_name, hi) in zip(present, present[1:]):
            if lo > hi:
                raise ValueError(f"{lo_name} ({lo}) must not exceed {hi_name} ({hi})")
        return self


class BinaryThreshold(BaseModel):
    """Two-value metric: ``normal`` sentinel versus anything else."""

    label: str = ""
    normal: float

    model_config = {"frozen": True}


def _temperature(label: str) -> RangeThreshold:
    return RangeThreshold(
        label=label,
        unit="°C",
        warning_low=18.0,
        warning_high=23.0,
        critical_low=18.0,
        critical_high=25.0,
    )


def _humidity(label: str) -> RangeThreshold:
    return RangeThreshold(label=label, unit="%", warning_low=30.0, warning_high=60.0)


def _voltage(label: str) -> RangeThreshold:
    return RangeThreshold(
        label=label,
        unit="V",
        warning_low=210.0,
        warning_high=240.0,
        critical_low=200.0,
        critical_high=250.0,
    )


class ThresholdConfig(BaseModel):
    """Threshold bounds per metric name. Immutable once loaded."""

    ranges: dict[str, RangeThreshold] = {
        "noc_temperature": _temperature("NOC temperature"),
        "ups_temperature": _temperature("UPS temperature"),
        "noc_humidity": _humidity("NOC humidity"),
        "ups_humidity": _humidity("UPS humidity"),
        "phase_r": _voltage("Phase R"),
        "phase_s": _voltage("Phase S"),
        "phase_t": _voltage("Phase T"),
    }
    binary: dict[str, BinaryThreshold] = {
        "fire": BinaryThreshold(label="Fire", normal=1024),
        "smoke": BinaryThreshold(label="Smoke", normal=1),
    }
    auto_clear_on_recovery: bool = False

    model_config = {"frozen": True}


class WebhookConfig(BaseModel):
    """JSON webhook alert sink (Discord-compatible embeds)."""

    enabled: bool = False
    webhook_url: SecretStr = SecretStr("")


class AlertsConfig(BaseModel):
    """Alert sinks and the in-process alert monitor."""

    monitor_enabled: bool = True
    log_enabled: bool = True
    webhook: WebhookConfig = WebhookConfig()


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "json"


class Settings(BaseSettings):
    """Root settings container.

    Environment variables (``NOCWATCH_SERVER__PORT=4000``) override YAML values.
    """

    model_config = SettingsConfigDict(
        env_prefix="NOCWATCH_",
        env_nested_delimiter="__",
        env_file=".env",
        extra="ignore",
    )

    database: DatabaseConfig = DatabaseConfig()
    server: ServerConfig = ServerConfig()
    push: PushConfig = PushConfig()
    sampler: SamplerConfig = SamplerConfig()
    observer: ObserverConfig = ObserverConfig()
    thresholds: ThresholdConfig = ThresholdConfig()
    alerts: AlertsConfig = AlertsConfig()
    logging: LoggingConfig = LoggingConfig()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # YAML arrives as init kwargs; the environment takes precedence.
        return env_settings, dotenv_settings, init_settings, file_secret_settings


def load_settings(path: str | Path | None = None) -> Settings:
    """Load settings from a YAML file and cache globally.

    Args:
        path: Path to YAML config. Defaults to config/settings.yaml.

    Returns:
        Parsed Settings instance.

    Raises:
        pydantic.ValidationError: on malformed values, including threshold
            bounds out of order.
    """
    global _settings  # noqa: PLW0603

    config_path = Path(path) if path else _DEFAULT_CONFIG_PATH

    data: dict[str, Any] = {}
    if config_path.exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f)
            if isinstance(raw, dict):
                data = raw

    _settings = Settings(**data)
    return _settings


def get_settings() -> Settings:
    """Return the cached settings, loading defaults if not yet loaded."""
    global _settings  # noqa: PLW0603
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings() -> None:
    """Reset the cached settings (useful for testing)."""
    global _settings  # noqa: PLW0603
    _settings = None

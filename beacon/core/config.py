"""beacon.core.config

Three config surfaces only:
1) keyword arguments / a mapping passed by the host application
2) a YAML file (+ optional ``presets/<preset>.yaml`` underneath it)
3) environment variables (``BEACON_*``, nested with ``__``)

The result is frozen. Changing configuration means building a new one.
"""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from beacon.core.exceptions import ConfigError

DEFAULT_REPORT_INTERVAL_MS = 5000
DEFAULT_MAX_CACHE = 100
DEFAULT_DEDUPLICATE_WINDOW_MS = 30 * 60 * 1000
DEFAULT_SIMILARITY_THRESHOLD = 0.85


def _deep_merge(base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
    result: dict[str, Any] = dict(base)
    for k, v in overlay.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


def _unit_interval(v: float) -> float:
    if not 0.0 <= v <= 1.0:
        raise ValueError(f"must be within [0, 1], got {v}")
    return v


class SamplingConfig(BaseModel):
    """Per event type keep rates. 1.0 keeps everything."""

    model_config = {"frozen": True}

    error: float = 1.0
    performance: float = 1.0
    behavior: float = 1.0
    custom: float = 1.0

    @field_validator("error", "performance", "behavior", "custom")
    @classmethod
    def rate_in_unit_interval(cls, v: float) -> float:
        return _unit_interval(v)

    def rate_for(self, event_type: str) -> float:
        return float(getattr(self, str(event_type), 1.0))


class ProcessorConfig(BaseModel):
    model_config = {"frozen": True, "arbitrary_types_allowed": True}

    enable_deduplicate: bool = True
    deduplicate_window: int = DEFAULT_DEDUPLICATE_WINDOW_MS
    collect_user_ip: bool = True
    collect_geo_info: bool = False
    merge_similar_errors: bool = True
    similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD
    custom_processors: list[Callable[..., Any]] = Field(default_factory=list)

    # Built-in transforms, applied before custom_processors. Sampling is drawn at report time.
    filter_sensitive: bool = False
    ignore_errors: list[str] = Field(default_factory=list)
    max_content_length: int | None = None
    sampling: SamplingConfig = Field(default_factory=SamplingConfig)

    @field_validator("deduplicate_window")
    @classmethod
    def window_must_be_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("deduplicate_window must be > 0")
        return v

    @field_validator("similarity_threshold")
    @classmethod
    def threshold_in_unit_interval(cls, v: float) -> float:
        return _unit_interval(v)


class EnrichmentConfig(BaseModel):
    model_config = {"frozen": True}

    request_timeout_s: float = 3.0
    ip_cache_ttl_ms: int = 12 * 60 * 60 * 1000
    geo_cache_ttl_ms: int = 24 * 60 * 60 * 1000
    geo_cache_stale_ms: int = 7 * 24 * 60 * 60 * 1000
    failure_backoff_ms: int = 60 * 1000
    ip_resolvers: list[str] = Field(default_factory=lambda: ["ipify", "ipinfo", "icanhazip"])
    geo_providers: list[str] = Field(default_factory=lambda: ["ipapi", "ipinfo", "ipapi_co"])


class StorageConfig(BaseModel):
    model_config = {"frozen": True}

    backend: Literal["memory", "sqlite"] = "sqlite"
    path: Path = Path("data/beacon.db")


class TransportConfig(BaseModel):
    model_config = {"frozen": True}

    timeout_s: float = 10.0


class DeviceConfig(BaseModel):
    """What the host knows about the client it runs in. Empty means "detect"."""

    model_config = {"frozen": True}

    user_agent: str = ""
    language: str = ""
    screen_size: str = ""


class LoggingConfig(BaseModel):
    model_config = {"frozen": True}

    level: str = "INFO"


class MonitorConfig(BaseSettings):
    """Root configuration. Single source of truth."""

    app_id: str
    server_url: str
    app_token: str = ""
    debug: bool = False
    report_interval: int = DEFAULT_REPORT_INTERVAL_MS
    max_cache: int = DEFAULT_MAX_CACHE
    context: dict[str, Any] = Field(default_factory=dict)

    preset: str = ""

    processor: ProcessorConfig = Field(default_factory=ProcessorConfig)
    enrichment: EnrichmentConfig = Field(default_factory=EnrichmentConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    transport: TransportConfig = Field(default_factory=TransportConfig)
    device: DeviceConfig = Field(default_factory=DeviceConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = SettingsConfigDict(
        env_prefix="BEACON_",
        env_nested_delimiter="__",
        frozen=True,
        arbitrary_types_allowed=True,
    )

    @field_validator("app_id")
    @classmethod
    def app_id_required(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("appId is required")
        return v.strip()

    @field_validator("server_url")
    @classmethod
    def server_url_trailing_slash(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("serverUrl is required")
        return v if v.endswith("/") else v + "/"

    @field_validator("report_interval", "max_cache")
    @classmethod
    def must_be_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be > 0")
        return v

    @property
    def collect_url(self) -> str:
        return self.server_url + "collect"

    def updated(self, **changes: Any) -> MonitorConfig:
        """Return a validated copy with ``changes`` deep-merged in.

        Empty values (``None``) are ignored so required fields cannot be blanked out.
        """

        changes = {k: v for k, v in changes.items() if v is not None}
        if not changes:
            return self
        base = self.model_dump()
        # Callables survive model_dump by reference; keep them unless replaced.
        return load_config(**_deep_merge(base, changes))

    @classmethod
    def from_yaml(cls, path: Path, **overrides: Any) -> MonitorConfig:
        path = Path(path)
        if not path.exists():
            raise ConfigError(f"Config file not found: {path}")

        try:
            raw = yaml.safe_load(path.read_text()) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Config file is not valid YAML: {path}: {e}") from e
        if not isinstance(raw, dict):
            raise ConfigError(f"Config file must contain a mapping: {path}")

        preset_name = raw.get("preset")
        if preset_name:
            preset_path = path.parent / "presets" / f"{preset_name}.yaml"
            if preset_path.exists():
                preset_data = yaml.safe_load(preset_path.read_text()) or {}
                raw = _deep_merge(preset_data, raw)

        return load_config(**_deep_merge(raw, overrides))


def load_config(**values: Any) -> MonitorConfig:
    """Build a ``MonitorConfig``; validation failures become ``ConfigError``."""

    try:
        return MonitorConfig(**values)
    except ValidationError as e:
        raise ConfigError(str(e)) from e

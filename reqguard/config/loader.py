"""YAML + env var config loading with pydantic-settings."""

from __future__ import annotations

import signal
from pathlib import Path
from typing import Any

import structlog
import yaml
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

logger = structlog.get_logger()

_DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"


def _load_yaml_defaults(path: Path) -> dict[str, Any]:
    """Load YAML config file, returning empty dict on failure."""
    if not path.exists():
        return {}
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        logger.warning("config_yaml_ignored", path=str(path), reason="not a mapping")
        return {}
    return data


class YamlDefaultsSource(PydanticBaseSettingsSource):
    """Settings source that reads ``defaults.yaml`` below env vars and .env."""

    def __init__(self, settings_cls: type[BaseSettings], path: Path = _DEFAULTS_PATH) -> None:
        super().__init__(settings_cls)
        self._data = _load_yaml_defaults(path)

    def get_field_value(self, field, field_name: str) -> tuple[Any, str, bool]:
        return self._data.get(field_name), field_name, False

    def __call__(self) -> dict[str, Any]:
        return {k: v for k, v in self._data.items() if k in self.settings_cls.model_fields}


class GuardSettings(BaseSettings):
    """Request guard configuration loaded from YAML defaults, overridden by env vars."""

    model_config = SettingsConfigDict(
        env_prefix="GUARD_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    log_level: str = "info"
    log_json: bool = True
    listen_port: int = 8080

    # Path exclusion (glob patterns, ``*`` one segment, ``**`` any depth)
    exclude_paths: list[str] = []
    xss_exclude_paths: list[str] = []
    logging_exclude_paths: list[str] = []

    # Hard cap on buffered request bodies (10MB default)
    max_body_bytes: int = 10 * 1024 * 1024

    # Bodies above this size are reported by size instead of logged
    log_body_max_bytes: int = 10 * 1024

    # Requests slower than this are logged as slow_request warnings
    slow_request_ms: int = 3000

    # Additional proxy headers consulted after the built-in list
    extra_ip_headers: list[str] = []

    xss_enabled: bool = True
    request_logging_enabled: bool = True

    # URL encode/decode cache size before it is cleared
    url_cache_max_entries: int = 10_000

    # Bounded worker pool
    worker_max_workers: int = 4
    worker_queue_capacity: int = 100
    worker_thread_prefix: str = "reqguard-"

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            file_secret_settings,
            YamlDefaultsSource(settings_cls),
        )


_settings: GuardSettings | None = None


def get_settings() -> GuardSettings:
    """Get or create the singleton settings instance."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def load_settings() -> GuardSettings:
    """Load settings from YAML defaults and env vars (env vars win)."""
    global _settings
    _settings = GuardSettings()
    logger.info(
        "config_loaded",
        port=_settings.listen_port,
        exclude_paths=len(_settings.exclude_paths),
        max_body_bytes=_settings.max_body_bytes,
    )
    return _settings


def register_reload_handler() -> None:
    """Register SIGHUP handler for hot-reload of configuration."""
    import threading

    if threading.current_thread() is not threading.main_thread():
        logger.debug("skipping_sighup_handler", reason="not main thread")
        return

    def _reload(signum, frame):
        logger.info("config_reload_triggered")
        load_settings()

    try:
        signal.signal(signal.SIGHUP, _reload)
    except (ValueError, AttributeError):
        logger.debug("skipping_sighup_handler", reason="signal not supported")

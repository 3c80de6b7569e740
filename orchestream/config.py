"""
Configuration management for Orchestream.

Handles loading, validation, and access to application configuration.
"""

import os
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field

# Global configuration instance
_config: Optional["OrchestreamConfig"] = None

# Deployment profiles
PROFILE_DEFAULT = "default"
PROFILE_CONSTRAINED = "constrained"

# Caps applied under the constrained profile
CONSTRAINED_MAX_CACHE_TTL = 300
CONSTRAINED_MAX_ATTEMPT_TIMEOUT = 12.0


class StreamingConfig(BaseModel):
    """Stream admission and byte-stream settings."""
    max_concurrent_streams: int = Field(default=5, ge=1)
    constrained_max_concurrent_streams: int = Field(default=3, ge=1)
    admission_timeout: float = 30.0  # Seconds a request may wait for a stream slot
    shutdown_grace_period: float = 10.0
    chunk_size: int = 65536  # 64KB
    first_byte_timeout: float = 10.0


class CacheSettings(BaseModel):
    """Resolve/search cache settings."""
    enabled: bool = True
    ttl_seconds: int = 300  # 5 minutes
    max_entries: int = Field(default=500, ge=1)


class EngineConfig(BaseModel):
    """Per-engine priority and retry/timeout policy."""
    enabled: bool = True
    priority: Optional[int] = None  # None = engine default
    max_attempts: int = Field(default=2, ge=1, le=5)
    per_attempt_timeout: float = 15.0
    backoff_base: float = 1.0
    backoff_max: float = 5.0
    jitter_ratio: float = Field(default=0.1, ge=0.0, le=1.0)


def _default_engines() -> dict[str, EngineConfig]:
    return {
        "youtube": EngineConfig(priority=0, max_attempts=2, per_attempt_timeout=15.0),
        "archive_org": EngineConfig(priority=1, max_attempts=2, per_attempt_timeout=15.0),
        "direct_http": EngineConfig(priority=3, max_attempts=3, per_attempt_timeout=20.0),
    }


class YouTubeConfig(BaseModel):
    """YouTube source configuration."""
    enabled: bool = True
    cookies_file: str = ""
    preferred_quality: str = "bestaudio"


class ArchiveOrgConfig(BaseModel):
    """Archive.org source configuration."""
    enabled: bool = True
    base_url: str = "https://archive.org"


class DirectHTTPConfig(BaseModel):
    """Direct HTTP/CDN source configuration."""
    enabled: bool = True
    user_agents: list[str] = Field(default_factory=lambda: [
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36",
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36",
        "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36",
    ])


class SourcesConfig(BaseModel):
    """Backend source configuration."""
    youtube: YouTubeConfig = Field(default_factory=YouTubeConfig)
    archive_org: ArchiveOrgConfig = Field(default_factory=ArchiveOrgConfig)
    direct_http: DirectHTTPConfig = Field(default_factory=DirectHTTPConfig)


class HealthConfig(BaseModel):
    """Health monitor configuration."""
    enabled: bool = True
    interval_seconds: float = 60.0
    max_failure_rate: float = 0.5  # 50% failure rate triggers a warning
    max_latency_ms: float = 15000.0
    min_available_engines: int = 2
    max_memory_mb: float = 512.0
    auto_recovery: bool = True


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: str = "INFO"
    file: str = "logs/orchestream.log"
    max_size: str = "10MB"
    backup_count: int = 5
    to_console: bool = True
    to_file: bool = False
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class OrchestreamConfig(BaseModel):
    """Main Orchestream configuration."""
    profile: str = PROFILE_DEFAULT
    streaming: StreamingConfig = Field(default_factory=StreamingConfig)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    engines: dict[str, EngineConfig] = Field(default_factory=_default_engines)
    sources: SourcesConfig = Field(default_factory=SourcesConfig)
    health: HealthConfig = Field(default_factory=HealthConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @property
    def is_constrained(self) -> bool:
        """True when running under the constrained (small VPS) profile."""
        return self.profile.lower() == PROFILE_CONSTRAINED

    @property
    def effective_max_concurrent_streams(self) -> int:
        """Stream limit after applying the deployment profile."""
        if self.is_constrained:
            return min(
                self.streaming.max_concurrent_streams,
                self.streaming.constrained_max_concurrent_streams,
            )
        return self.streaming.max_concurrent_streams

    @property
    def effective_cache_ttl(self) -> int:
        """Cache TTL after applying the deployment profile."""
        if self.is_constrained:
            return min(self.cache.ttl_seconds, CONSTRAINED_MAX_CACHE_TTL)
        return self.cache.ttl_seconds

    def engine_config(self, name: str) -> EngineConfig:
        """
        Get the policy for an engine, with profile caps applied.

        Engines without an explicit entry get the defaults.
        """
        engine_config = self.engines.get(name) or EngineConfig()
        if self.is_constrained:
            engine_config = engine_config.model_copy(update={
                "per_attempt_timeout": min(
                    engine_config.per_attempt_timeout, CONSTRAINED_MAX_ATTEMPT_TIMEOUT
                ),
            })
        return engine_config


def load_config(config_path: Optional[str] = None) -> OrchestreamConfig:
    """
    Load configuration from file.

    Args:
        config_path: Path to config file. Defaults to config.yaml in project root.

    Returns:
        Loaded and validated configuration.
    """
    global _config

    if config_path is None:
        # Look for config.yaml in current directory or project root
        possible_paths = [
            Path("config.yaml"),
            Path(__file__).parent.parent / "config.yaml",
        ]
        for path in possible_paths:
            if path.exists():
                config_path = str(path)
                break

    config_data: dict[str, Any] = {}

    if config_path and Path(config_path).exists():
        with open(config_path) as f:
            config_data = yaml.safe_load(f) or {}

    # Apply environment variable overrides
    env_overrides = _get_env_overrides()
    _deep_merge(config_data, env_overrides)

    _config = OrchestreamConfig(**config_data)
    return _config


def get_config() -> OrchestreamConfig:
    """
    Get the current configuration.

    Returns:
        Current configuration (loads default if not yet loaded).
    """
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> OrchestreamConfig:
    """
    Reload configuration from disk.

    Returns:
        Freshly loaded configuration.
    """
    global _config
    _config = None
    return load_config()


def _get_env_overrides() -> dict[str, Any]:
    """Get configuration overrides from environment variables."""
    overrides: dict[str, Any] = {}

    # Map of environment variables to config paths
    env_map = {
        "ORCHESTREAM_PROFILE": ("profile",),
        "ORCHESTREAM_MAX_CONCURRENT_STREAMS": ("streaming", "max_concurrent_streams"),
        "ORCHESTREAM_ADMISSION_TIMEOUT": ("streaming", "admission_timeout"),
        "ORCHESTREAM_CACHE_TTL": ("cache", "ttl_seconds"),
        "ORCHESTREAM_YOUTUBE_COOKIES": ("sources", "youtube", "cookies_file"),
        "ORCHESTREAM_LOG_LEVEL": ("logging", "level"),
        "ORCHESTREAM_HEALTH_ENABLED": ("health", "enabled"),
    }

    for env_var, path in env_map.items():
        value = os.environ.get(env_var)
        if value is not None:
            _set_nested(overrides, path, _parse_env_value(value))

    return overrides


def _parse_env_value(value: str) -> Any:
    """Parse environment variable value to appropriate type."""
    # Boolean
    if value.lower() in ("true", "yes"):
        return True
    if value.lower() in ("false", "no"):
        return False

    # Integer
    try:
        return int(value)
    except ValueError:
        pass

    # Float
    try:
        return float(value)
    except ValueError:
        pass

    return value


def _set_nested(d: dict[str, Any], path: tuple[str, ...], value: Any) -> None:
    """Set a nested dictionary value from a path tuple."""
    for key in path[:-1]:
        d = d.setdefault(key, {})
    d[path[-1]] = value


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> None:
    """Deep merge override into base dictionary."""
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value


class _ConfigProxy:
    """
    Proxy object that provides lazy access to configuration.

    Allows modules to import `config` directly and access it like:
        from orchestream.config import config
        config.streaming.max_concurrent_streams
    """

    def __getattr__(self, name: str) -> Any:
        return getattr(get_config(), name)

    def __repr__(self) -> str:
        return f"<ConfigProxy for {get_config()}>"


config = _ConfigProxy()

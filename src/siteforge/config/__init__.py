"""Configuration models for SiteForge."""

from .config import (
    CacheConfig,
    CheckpointConfig,
    CircuitBreakerConfig,
    Config,
    MonitoringConfig,
    PipelineSettings,
    QualityConfig,
    RetryConfig,
    find_config_file,
)

__all__ = [
    "CacheConfig",
    "CheckpointConfig",
    "CircuitBreakerConfig",
    "Config",
    "MonitoringConfig",
    "PipelineSettings",
    "QualityConfig",
    "RetryConfig",
    "find_config_file",
]

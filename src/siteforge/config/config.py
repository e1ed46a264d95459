"""
Configuration management for SiteForge using Pydantic.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# --- Setup Logging ---
log = logging.getLogger(__name__)

# --- Nested Configuration Models ---


class RetryConfig(BaseModel):
    """Backoff settings for one external dependency."""

    max_attempts: int = Field(default=3, ge=1, description="Total attempts including the first call.")
    base_delay: float = Field(default=1.0, ge=0, description="Delay in seconds before the first retry.")
    max_delay: float = Field(default=30.0, ge=0, description="Upper bound for any single backoff delay.")
    multiplier: float = Field(default=2.0, ge=1.0, description="Exponential growth factor per attempt.")
    max_jitter: float = Field(default=0.5, ge=0, description="Maximum random jitter added to each delay.")

    @model_validator(mode="after")
    def validate_bounds(self) -> "RetryConfig":
        if self.max_delay < self.base_delay:
            raise ValueError("max_delay must be greater than or equal to base_delay")
        return self


class CircuitBreakerConfig(BaseModel):
    failure_threshold: int = Field(default=3, ge=1)
    reset_timeout: float = Field(default=60.0, gt=0, description="Cooldown in seconds before a trial call.")


def _default_retry_policies() -> Dict[str, RetryConfig]:
    return {
        "extraction": RetryConfig(max_attempts=3, base_delay=2.0, max_delay=15.0),
        "ai": RetryConfig(max_attempts=2, base_delay=3.0, max_delay=10.0),
        "image": RetryConfig(max_attempts=2, base_delay=1.0, max_delay=5.0),
    }


def _default_circuit_breakers() -> Dict[str, CircuitBreakerConfig]:
    return {
        "extraction": CircuitBreakerConfig(failure_threshold=3, reset_timeout=60.0),
        "ai": CircuitBreakerConfig(failure_threshold=5, reset_timeout=30.0),
        "image": CircuitBreakerConfig(failure_threshold=3, reset_timeout=60.0),
    }


class CacheConfig(BaseModel):
    """Configuration for the two-tier scrape cache."""

    db_path: Path = Field(default=Path(".cache/scrapes.db"), description="SQLite file for the persistent tier.")
    ttl_seconds: float = Field(default=24 * 60 * 60, gt=0, description="Lifetime shared by both tiers.")
    max_entries: int = Field(default=500, ge=1, description="Capacity of the in-memory tier.")
    wal_mode: bool = Field(default=True, description="Enable Write-Ahead Logging for higher concurrency.")


class CheckpointConfig(BaseModel):
    """Configuration for per-stage job checkpoints."""

    enabled: bool = True
    directory: Path = Field(default=Path(".cache/checkpoints"), description="Root directory for checkpoint files.")
    ttl_seconds: float = Field(default=60 * 60, gt=0, description="Checkpoints older than this are ignored.")


class QualityConfig(BaseModel):
    """Configuration for the content quality gate."""

    default_threshold: float = Field(default=78.0, ge=0, le=100, description="Minimum passing score.")
    industry_thresholds: Dict[str, float] = Field(
        default_factory=dict, description="Industry-specific overrides of the passing score."
    )
    max_regenerations: int = Field(default=2, ge=0, description="Regeneration attempts below threshold.")

    @field_validator("industry_thresholds")
    @classmethod
    def validate_thresholds(cls, v: Dict[str, float]) -> Dict[str, float]:
        for industry, threshold in v.items():
            if not 0 <= threshold <= 100:
                raise ValueError(f"threshold for {industry!r} must be between 0 and 100")
        return v


class PipelineSettings(BaseModel):
    """Configurable pipeline settings."""

    extraction_timeout: float = Field(default=30.0, gt=0, description="Hard deadline for one extraction call.")
    preview_ttl_days: int = Field(default=7, ge=1, description="Lifetime of a stored preview.")
    ai_enabled: bool = Field(default=True, description="Run AI content generation when a generator is present.")
    generator_retry_budget: int = Field(
        default=2, ge=0, description="Retry budget handed to the content generator on its first call."
    )


class MonitoringConfig(BaseModel):
    """Configuration for logging and metrics."""

    log_level: str = Field(default="INFO", description="Logging level (e.g., DEBUG, INFO, WARNING).")
    log_file: Optional[str] = Field(default=None, description="Path to log file. If None, logs to console.")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level: {v}")
        return level


# --- Main Configuration Class ---


class Config(BaseSettings):
    """
    Main configuration for the SiteForge pipeline.
    Loads settings from environment variables and/or a YAML file.
    """

    model_config = SettingsConfigDict(
        env_prefix="SITEFORGE_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    retry: Dict[str, RetryConfig] = Field(default_factory=_default_retry_policies)
    circuit_breakers: Dict[str, CircuitBreakerConfig] = Field(default_factory=_default_circuit_breakers)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    checkpoints: CheckpointConfig = Field(default_factory=CheckpointConfig)
    quality: QualityConfig = Field(default_factory=QualityConfig)
    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)

    @field_validator("retry", mode="after")
    @classmethod
    def fill_retry_defaults(cls, v: Dict[str, RetryConfig]) -> Dict[str, RetryConfig]:
        # A partial mapping from YAML keeps the built-in policies for the others.
        return {**_default_retry_policies(), **v}

    @field_validator("circuit_breakers", mode="after")
    @classmethod
    def fill_breaker_defaults(cls, v: Dict[str, CircuitBreakerConfig]) -> Dict[str, CircuitBreakerConfig]:
        return {**_default_circuit_breakers(), **v}

    def retry_for(self, dependency: str) -> RetryConfig:
        return self.retry.get(dependency, RetryConfig())

    def breaker_for(self, dependency: str) -> CircuitBreakerConfig:
        return self.circuit_breakers.get(dependency, CircuitBreakerConfig())

    @classmethod
    def from_yaml(cls, path: Path | str) -> "Config":
        """Load configuration from a YAML file."""
        path = Path(path)
        if not path.exists():
            log.error("Configuration file not found at: %s", path)
            raise FileNotFoundError(f"Configuration file not found: {path}")

        with open(path, "r", encoding="utf-8") as f:
            config_data: Any = yaml.safe_load(f)

        if config_data is None:
            return cls()
        if not isinstance(config_data, dict):
            raise ValueError(f"Configuration file {path} must contain a mapping")

        try:
            return cls(**config_data)
        except ValidationError as e:
            log.error("Configuration validation failed: %s", e)
            raise


def find_config_file(search_dir: Path | None = None) -> Optional[Path]:
    """Return the first config.yaml / config.yml found in the search directory."""
    base = search_dir or Path.cwd()
    for name in ("config.yaml", "config.yml"):
        candidate = base / name
        if candidate.is_file():
            return candidate
    return None

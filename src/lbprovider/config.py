"""Configuration management with validation.

Invalid settings are rejected at load time so the provider never starts
workers with a half-usable configuration.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from .workqueue import RetryPolicy


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Configuration constants with documented bounds
DEFAULT_WORKERS = 1
MIN_WORKERS = 1
MAX_WORKERS = 32

DEFAULT_MAX_RETRIES = 10
MAX_MAX_RETRIES = 100

DEFAULT_BACKOFF_BASE_SECONDS = 0.005
DEFAULT_BACKOFF_MAX_SECONDS = 300.0

DEFAULT_LOG_LEVEL = "INFO"
VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class Config:
    """Provider configuration loaded from environment variables.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing at runtime.
    """

    # Required fields
    azure_image: str

    # Worker pool
    workers: int = DEFAULT_WORKERS

    # Retry policy for failed syncs
    max_retries: int = DEFAULT_MAX_RETRIES
    backoff_base_seconds: float = DEFAULT_BACKOFF_BASE_SECONDS
    backoff_max_seconds: float = DEFAULT_BACKOFF_MAX_SECONDS

    log_level: str = DEFAULT_LOG_LEVEL

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        errors: list[str] = []

        if not self.azure_image:
            errors.append("AZURE_PROVIDER_IMAGE is required")
        elif any(ch.isspace() for ch in self.azure_image):
            errors.append(f"AZURE_PROVIDER_IMAGE must not contain whitespace: {self.azure_image!r}")

        if not (MIN_WORKERS <= self.workers <= MAX_WORKERS):
            errors.append(f"PROVIDER_WORKERS must be between {MIN_WORKERS} and {MAX_WORKERS}")

        if not (0 <= self.max_retries <= MAX_MAX_RETRIES):
            errors.append(f"SYNC_MAX_RETRIES must be between 0 and {MAX_MAX_RETRIES}")

        if self.backoff_base_seconds <= 0:
            errors.append("SYNC_BACKOFF_BASE_SECONDS must be positive")
        elif self.backoff_max_seconds < self.backoff_base_seconds:
            errors.append(
                "SYNC_BACKOFF_MAX_SECONDS must not be lower than SYNC_BACKOFF_BASE_SECONDS"
            )

        if self.log_level.upper() not in VALID_LOG_LEVELS:
            errors.append(f"LOG_LEVEL must be one of {list(VALID_LOG_LEVELS)}: {self.log_level}")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @property
    def log_level_number(self) -> int:
        """Numeric logging level for ``logging.Logger.setLevel``."""
        return logging.getLevelName(self.log_level.upper())

    def retry_policy(self) -> RetryPolicy:
        """Build the work queue retry policy from this configuration."""
        return RetryPolicy(
            base_delay_seconds=self.backoff_base_seconds,
            max_delay_seconds=self.backoff_max_seconds,
            max_retries=self.max_retries,
        )

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables.

        Environment Variables:
            AZURE_PROVIDER_IMAGE: Container image of the azure provider agent
            PROVIDER_WORKERS: Number of sync worker threads (default: 1)
            SYNC_MAX_RETRIES: Failed syncs retried before dropping (default: 10)
            SYNC_BACKOFF_BASE_SECONDS: First retry delay (default: 0.005)
            SYNC_BACKOFF_MAX_SECONDS: Retry delay cap (default: 300)
            LOG_LEVEL: Root log level (default: INFO)
        """

        def get_int(key: str, default: int) -> int:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        def get_float(key: str, default: float) -> float:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return float(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be a number: {value}") from e

        return cls(
            azure_image=os.environ.get("AZURE_PROVIDER_IMAGE", ""),
            workers=get_int("PROVIDER_WORKERS", DEFAULT_WORKERS),
            max_retries=get_int("SYNC_MAX_RETRIES", DEFAULT_MAX_RETRIES),
            backoff_base_seconds=get_float(
                "SYNC_BACKOFF_BASE_SECONDS", DEFAULT_BACKOFF_BASE_SECONDS
            ),
            backoff_max_seconds=get_float("SYNC_BACKOFF_MAX_SECONDS", DEFAULT_BACKOFF_MAX_SECONDS),
            log_level=os.environ.get("LOG_LEVEL", DEFAULT_LOG_LEVEL),
        )

"""Configuration management with validation.

Invalid configuration is rejected when it is loaded, never halfway
through a deploy.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .retry import RetryPolicy


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Configuration constants with documented bounds
DEFAULT_SPEC_PATH = "deploy.yaml"
DEFAULT_REGION = "us-east-1"

DEFAULT_CONVERGENCE_RETRIES = 60
DEFAULT_MUTATION_RETRIES = 3
MAX_MUTATION_RETRIES = 10
RETRY_BACKOFF_BASE_SECONDS = 1.0
MAX_RETRY_BACKOFF_BASE_SECONDS = 60.0

DEFAULT_CALL_TIMEOUT_SECONDS = 60
MIN_CALL_TIMEOUT_SECONDS = 1
MAX_CALL_TIMEOUT_SECONDS = 900

MAX_SPEC_FILE_SIZE_BYTES = 256 * 1024

# Input validation patterns
VALID_APP_NAME_PATTERN = r"^[a-z][a-z0-9-]{0,46}[a-z0-9]$"
VALID_REGION_PATTERN = r"^[a-z]{2}(-[a-z]+)+-\d$"


@dataclass(frozen=True)
class Config:
    """Deployer configuration loaded from environment variables.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing at runtime.
    """

    # Required fields
    app_name: str
    region: str = DEFAULT_REGION

    # Paths
    spec_path: Path = field(default_factory=lambda: Path(DEFAULT_SPEC_PATH))

    # Retry budgets
    retries: RetryPolicy = field(default_factory=lambda: RetryPolicy.bounded(DEFAULT_CONVERGENCE_RETRIES))
    mutation_retries: int = DEFAULT_MUTATION_RETRIES
    backoff_base_seconds: float = RETRY_BACKOFF_BASE_SECONDS

    # Timing
    call_timeout_seconds: int = DEFAULT_CALL_TIMEOUT_SECONDS

    # Behavior
    check_permissions: bool = False
    destroy: bool = False
    continue_on_error: bool = False

    # Produced by the external image builder
    image_uri: str | None = None

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        errors: list[str] = []

        if not self.app_name:
            errors.append("APP_NAME is required")
        elif not re.match(VALID_APP_NAME_PATTERN, self.app_name):
            errors.append(f"APP_NAME must match pattern {VALID_APP_NAME_PATTERN}: {self.app_name}")

        if not self.region:
            errors.append("AWS_REGION is required")
        elif not re.match(VALID_REGION_PATTERN, self.region):
            errors.append(f"AWS_REGION must be a valid AWS region: {self.region}")

        if not (0 <= self.mutation_retries <= MAX_MUTATION_RETRIES):
            errors.append(f"MUTATION_RETRIES must be between 0 and {MAX_MUTATION_RETRIES}")

        if not (0 <= self.backoff_base_seconds <= MAX_RETRY_BACKOFF_BASE_SECONDS):
            errors.append(f"RETRY_BACKOFF_SECONDS must be between 0 and {MAX_RETRY_BACKOFF_BASE_SECONDS}")

        if not (MIN_CALL_TIMEOUT_SECONDS <= self.call_timeout_seconds <= MAX_CALL_TIMEOUT_SECONDS):
            errors.append(
                f"CALL_TIMEOUT must be between {MIN_CALL_TIMEOUT_SECONDS} "
                f"and {MAX_CALL_TIMEOUT_SECONDS} seconds"
            )

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @property
    def mutation_retry_policy(self) -> RetryPolicy:
        return RetryPolicy.bounded(self.mutation_retries, self.backoff_base_seconds)

    @property
    def convergence_retry_policy(self) -> RetryPolicy:
        max_retries = self.retries.max_retries
        if max_retries is None:
            return RetryPolicy.unbounded(self.backoff_base_seconds)
        return RetryPolicy.bounded(max_retries, self.backoff_base_seconds)

    @classmethod
    def from_env(cls, **overrides: Any) -> Config:
        """Load configuration from environment variables.

        Environment Variables:
            APP_NAME: Application name, used to name every resource
            AWS_REGION: Target region (default: us-east-1)
            DEPLOY_SPEC: Path to the YAML deploy spec (default: deploy.yaml)
            DEPLOY_RETRIES: Convergence retries, an integer or "forever" (default: 60)
            MUTATION_RETRIES: Retries for transient create/update errors (default: 3)
            RETRY_BACKOFF_SECONDS: Base backoff delay (default: 1)
            CALL_TIMEOUT: Timeout for a single provider call in seconds (default: 60)
            CHECK_PERMISSIONS: If "true", only print the required permissions
            DESTROY: Reserved, accepted and ignored
            CONTINUE_ON_ERROR: If "true", keep deploying after a resource fails
            IMAGE_URI: Container image produced by the image builder

        Args:
            **overrides: Field values taking precedence over the environment
                (None values are ignored).
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

        def get_bool(key: str, default: bool) -> bool:
            value = os.environ.get(key, "").lower()
            if not value:
                return default
            return value in ("true", "1", "yes")

        def get_retries(key: str) -> RetryPolicy:
            value = os.environ.get(key)
            if not value:
                return RetryPolicy.bounded(DEFAULT_CONVERGENCE_RETRIES)
            try:
                return RetryPolicy.parse(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer or 'forever': {value}") from e

        values: dict[str, Any] = dict(
            app_name=os.environ.get("APP_NAME", ""),
            region=os.environ.get("AWS_REGION", os.environ.get("AWS_DEFAULT_REGION", DEFAULT_REGION)),
            spec_path=Path(os.environ.get("DEPLOY_SPEC", DEFAULT_SPEC_PATH)),
            retries=get_retries("DEPLOY_RETRIES"),
            mutation_retries=get_int("MUTATION_RETRIES", DEFAULT_MUTATION_RETRIES),
            backoff_base_seconds=get_float("RETRY_BACKOFF_SECONDS", RETRY_BACKOFF_BASE_SECONDS),
            call_timeout_seconds=get_int("CALL_TIMEOUT", DEFAULT_CALL_TIMEOUT_SECONDS),
            check_permissions=get_bool("CHECK_PERMISSIONS", False),
            destroy=get_bool("DESTROY", False),
            continue_on_error=get_bool("CONTINUE_ON_ERROR", False),
            image_uri=os.environ.get("IMAGE_URI") or None,
        )
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

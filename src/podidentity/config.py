"""Configuration management with validation.

Constraints are enforced at configuration load time so a misconfigured
reconciler fails before it makes a single AWS call.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Configuration constants with documented bounds
DEFAULT_ASSOCIATIONS_FILE = "/config/pod-identity-associations.yaml"

DEFAULT_MAX_CONCURRENT_RECONCILES = 0  # 0 = one task per requirement
MAX_CONCURRENT_RECONCILES = 64

DEFAULT_API_TIMEOUT_SECONDS = 60
MIN_API_TIMEOUT_SECONDS = 5
MAX_API_TIMEOUT_SECONDS = 600

DEFAULT_STACK_TIMEOUT_SECONDS = 1800
MIN_STACK_TIMEOUT_SECONDS = 60
MAX_STACK_TIMEOUT_SECONDS = 7200

DEFAULT_RECONCILE_TIMEOUT_SECONDS = 3600
MIN_RECONCILE_TIMEOUT_SECONDS = 60
MAX_RECONCILE_TIMEOUT_SECONDS = 14400

DEFAULT_MAX_API_ATTEMPTS = 5
MAX_API_ATTEMPTS = 20

MAX_SPEC_FILE_SIZE_BYTES = 1024 * 1024  # 1MB max associations file
MAX_CLUSTER_NAME_LENGTH = 100

# Input validation patterns
VALID_CLUSTER_NAME_PATTERN = r"^[a-zA-Z][-a-zA-Z0-9]*$"
VALID_REGION_PATTERN = r"^[a-z]{2}(-gov|-iso[a-z]?)?-[a-z]+-\d$"


@dataclass(frozen=True)
class SecurityConfig:
    """Security-related configuration with safe defaults."""

    # Refuse long-lived static access keys; require role/session credentials
    require_role_credentials: bool = False

    # Structured JSON logs to stdout
    enable_audit_logging: bool = True


@dataclass(frozen=True)
class Config:
    """Reconciler configuration loaded from environment variables.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing at runtime.
    """

    # Required fields
    cluster_name: str
    region: str

    # Opaque tag forwarded to role creation
    addon_name: str = ""

    # Paths
    associations_file: Path = field(default_factory=lambda: Path(DEFAULT_ASSOCIATIONS_FILE))
    output_file: Path | None = None

    # Concurrency and timing
    max_concurrent_reconciles: int = DEFAULT_MAX_CONCURRENT_RECONCILES
    api_timeout_seconds: int = DEFAULT_API_TIMEOUT_SECONDS
    stack_timeout_seconds: int = DEFAULT_STACK_TIMEOUT_SECONDS
    reconcile_timeout_seconds: int = DEFAULT_RECONCILE_TIMEOUT_SECONDS
    max_api_attempts: int = DEFAULT_MAX_API_ATTEMPTS

    security: SecurityConfig = field(default_factory=SecurityConfig)

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        errors: list[str] = []

        if not self.cluster_name:
            errors.append("CLUSTER_NAME is required")
        elif len(self.cluster_name) > MAX_CLUSTER_NAME_LENGTH:
            errors.append(f"CLUSTER_NAME exceeds maximum length of {MAX_CLUSTER_NAME_LENGTH}")
        elif not re.match(VALID_CLUSTER_NAME_PATTERN, self.cluster_name):
            errors.append(
                f"CLUSTER_NAME must match pattern {VALID_CLUSTER_NAME_PATTERN}: {self.cluster_name}"
            )

        if not self.region:
            errors.append("AWS_REGION is required")
        elif not re.match(VALID_REGION_PATTERN, self.region):
            errors.append(f"AWS_REGION must be a valid AWS region: {self.region}")

        if not (0 <= self.max_concurrent_reconciles <= MAX_CONCURRENT_RECONCILES):
            errors.append(
                f"MAX_CONCURRENT_RECONCILES must be between 0 and {MAX_CONCURRENT_RECONCILES}"
            )

        if not (MIN_API_TIMEOUT_SECONDS <= self.api_timeout_seconds <= MAX_API_TIMEOUT_SECONDS):
            errors.append(
                f"API_TIMEOUT must be between {MIN_API_TIMEOUT_SECONDS} "
                f"and {MAX_API_TIMEOUT_SECONDS} seconds"
            )

        if not (
            MIN_STACK_TIMEOUT_SECONDS <= self.stack_timeout_seconds <= MAX_STACK_TIMEOUT_SECONDS
        ):
            errors.append(
                f"STACK_TIMEOUT must be between {MIN_STACK_TIMEOUT_SECONDS} "
                f"and {MAX_STACK_TIMEOUT_SECONDS} seconds"
            )

        if not (
            MIN_RECONCILE_TIMEOUT_SECONDS
            <= self.reconcile_timeout_seconds
            <= MAX_RECONCILE_TIMEOUT_SECONDS
        ):
            errors.append(
                f"RECONCILE_TIMEOUT must be between {MIN_RECONCILE_TIMEOUT_SECONDS} "
                f"and {MAX_RECONCILE_TIMEOUT_SECONDS} seconds"
            )

        if not (1 <= self.max_api_attempts <= MAX_API_ATTEMPTS):
            errors.append(f"AWS_MAX_ATTEMPTS must be between 1 and {MAX_API_ATTEMPTS}")

        if not self.associations_file.exists():
            errors.append(f"Associations file does not exist: {self.associations_file}")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables.

        Environment Variables:
            CLUSTER_NAME: EKS cluster owning the associations
            AWS_REGION: Region of the cluster (falls back to AWS_DEFAULT_REGION)
            ADDON_NAME: Addon the associations belong to (default: empty)
            ASSOCIATIONS_FILE: YAML file with podIdentityAssociations
            OUTPUT_FILE: Where to write the reconciled JSON (default: stdout)
            MAX_CONCURRENT_RECONCILES: In-flight cap, 0 for unbounded (default: 0)
            API_TIMEOUT: Timeout for single AWS API calls in seconds (default: 60)
            STACK_TIMEOUT: Timeout for stack create/update in seconds (default: 1800)
            RECONCILE_TIMEOUT: Deadline for the whole pass in seconds (default: 3600)
            AWS_MAX_ATTEMPTS: botocore retry attempts (default: 5)

        Security Variables:
            REQUIRE_ROLE_CREDENTIALS: Reject static access keys (default: false)
            ENABLE_AUDIT_LOGGING: Enable JSON audit logs (default: true)
        """

        def get_int(key: str, default: int) -> int:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        def get_bool(key: str, default: bool) -> bool:
            value = os.environ.get(key, "").lower()
            if not value:
                return default
            return value in ("true", "1", "yes")

        output_file = os.environ.get("OUTPUT_FILE")

        return cls(
            cluster_name=os.environ.get("CLUSTER_NAME", ""),
            region=os.environ.get("AWS_REGION") or os.environ.get("AWS_DEFAULT_REGION", ""),
            addon_name=os.environ.get("ADDON_NAME", ""),
            associations_file=Path(
                os.environ.get("ASSOCIATIONS_FILE", DEFAULT_ASSOCIATIONS_FILE)
            ),
            output_file=Path(output_file) if output_file else None,
            max_concurrent_reconciles=get_int(
                "MAX_CONCURRENT_RECONCILES", DEFAULT_MAX_CONCURRENT_RECONCILES
            ),
            api_timeout_seconds=get_int("API_TIMEOUT", DEFAULT_API_TIMEOUT_SECONDS),
            stack_timeout_seconds=get_int("STACK_TIMEOUT", DEFAULT_STACK_TIMEOUT_SECONDS),
            reconcile_timeout_seconds=get_int(
                "RECONCILE_TIMEOUT", DEFAULT_RECONCILE_TIMEOUT_SECONDS
            ),
            max_api_attempts=get_int("AWS_MAX_ATTEMPTS", DEFAULT_MAX_API_ATTEMPTS),
            security=SecurityConfig(
                require_role_credentials=get_bool("REQUIRE_ROLE_CREDENTIALS", False),
                enable_audit_logging=get_bool("ENABLE_AUDIT_LOGGING", True),
            ),
        )

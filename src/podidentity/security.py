"""AWS session creation and credential policy.

When role credentials are required, the reconciler refuses to run with
long-lived static access keys in the environment. Credentials must then
come from an assumed role: EKS Pod Identity, IRSA, an instance profile or
an SSO/STS session (which always carries a session token).

SECURITY INVARIANTS (when require_role_credentials is set):
1. AWS_ACCESS_KEY_ID + AWS_SECRET_ACCESS_KEY without AWS_SESSION_TOKEN is rejected
2. The check runs before any boto3 client is created
"""

from __future__ import annotations

import logging
import os
from typing import Any

import boto3
from botocore.config import Config as BotoConfig

from .config import Config

logger = logging.getLogger(__name__)

STATIC_KEY_ENV_VARS: tuple[str, ...] = ("AWS_ACCESS_KEY_ID", "AWS_SECRET_ACCESS_KEY")
SESSION_TOKEN_ENV_VAR = "AWS_SESSION_TOKEN"

STATIC_CREDENTIALS_MESSAGE = (
    "Static AWS access keys detected in {env_vars} without {token_var}. "
    "This reconciler requires role credentials: run it with EKS Pod Identity, "
    "IRSA, an instance profile or an STS session, or unset "
    "REQUIRE_ROLE_CREDENTIALS."
)


class StaticCredentialsError(Exception):
    """Raised when long-lived access keys are present but role credentials are required.

    This is a fatal error that prevents any AWS call.
    """

    pass


def enforce_role_credentials() -> None:
    """Refuse long-lived static access keys in the environment.

    Raises:
        StaticCredentialsError: If static keys are set without a session token.
    """
    present = [name for name in STATIC_KEY_ENV_VARS if os.environ.get(name)]
    if present and not os.environ.get(SESSION_TOKEN_ENV_VAR):
        logger.critical(
            "Static credential policy violation",
            extra={
                "security_event": "static_credentials_detected",
                "env_vars": present,
                "action": "startup_blocked",
            },
        )
        raise StaticCredentialsError(
            STATIC_CREDENTIALS_MESSAGE.format(
                env_vars=", ".join(present), token_var=SESSION_TOKEN_ENV_VAR
            )
        )

    logger.info(
        "Role credential policy verified",
        extra={"security_event": "role_credentials_verified"},
    )


def create_session(region: str, *, require_role_credentials: bool = False) -> boto3.Session:
    """Create a boto3 session after applying the credential policy.

    Args:
        region: AWS region for the session.
        require_role_credentials: Enforce the role credential policy first.

    Returns:
        boto3.Session bound to the region.

    Raises:
        StaticCredentialsError: If the policy is enforced and violated.
    """
    if require_role_credentials:
        enforce_role_credentials()
    return boto3.Session(region_name=region)


def client_config(config: Config) -> BotoConfig:
    """botocore client configuration: retries and socket timeouts."""
    return BotoConfig(
        region_name=config.region,
        retries={"mode": "standard", "max_attempts": config.max_api_attempts},
        connect_timeout=min(10, config.api_timeout_seconds),
        read_timeout=config.api_timeout_seconds,
        user_agent_extra="pod-identity-reconciler",
    )


def create_clients(session: Any, config: Config) -> tuple[Any, Any]:
    """Create the EKS and CloudFormation clients used by the adapters.

    Returns:
        (eks client, cloudformation client)
    """
    boto_config = client_config(config)
    return (
        session.client("eks", config=boto_config),
        session.client("cloudformation", config=boto_config),
    )

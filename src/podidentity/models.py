"""Pydantic models for addon pod identity association requirements.

These models provide:
1. Type-safe YAML parsing
2. Validation at the boundary (fail fast, fail loudly)
3. A stable identity key per requirement
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from typing import Annotated, Any

from pydantic import BaseModel, Field, field_validator, model_validator

# Kubernetes naming rules
NAMESPACE_PATTERN = r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$"
SERVICE_ACCOUNT_PATTERN = r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?(\.[a-z0-9]([-a-z0-9]*[a-z0-9])?)*$"
MAX_NAMESPACE_LENGTH = 63
MAX_SERVICE_ACCOUNT_LENGTH = 253

# IAM limits
MAX_ROLE_NAME_LENGTH = 64
MAX_TAGS_PER_ROLE = 50


class WellKnownPolicies(BaseModel):
    """Shortcuts for AWS managed policies commonly attached to addon roles."""

    model_config = {"extra": "ignore", "populate_by_name": True, "frozen": True}

    ebs_csi_controller: bool = Field(False, alias="ebsCSIController")
    efs_csi_controller: bool = Field(False, alias="efsCSIController")
    image_builder: bool = Field(False, alias="imageBuilder")
    cloud_watch: bool = Field(False, alias="cloudWatch")
    vpc_cni: bool = Field(False, alias="vpcCNI")

    @property
    def any_enabled(self) -> bool:
        return any(self.model_dump().values())


class PodIdentityAssociation(BaseModel):
    """A requested (namespace, service account) to IAM role binding.

    roleARN is optional: when omitted the reconciler provisions (or updates)
    an IAM role stack and the role-shaping fields below describe that role.
    When present those fields are ignored.
    """

    model_config = {"extra": "ignore", "populate_by_name": True, "frozen": True}

    namespace: Annotated[str, Field(min_length=1, max_length=MAX_NAMESPACE_LENGTH)]
    service_account_name: Annotated[
        str,
        Field(min_length=1, max_length=MAX_SERVICE_ACCOUNT_LENGTH, alias="serviceAccountName"),
    ]
    role_arn: str | None = Field(None, alias="roleARN")

    # Role shaping, used only when the role is provisioned here
    role_name: str | None = Field(None, alias="roleName")
    permissions_boundary_arn: str | None = Field(None, alias="permissionsBoundaryARN")
    permission_policy_arns: list[str] = Field(default_factory=list, alias="permissionPolicyARNs")
    permission_policy: dict[str, Any] | None = Field(None, alias="permissionPolicy")
    well_known_policies: WellKnownPolicies = Field(
        default_factory=WellKnownPolicies, alias="wellKnownPolicies"
    )
    tags: dict[str, str] = Field(default_factory=dict)

    @field_validator("namespace")
    @classmethod
    def validate_namespace(cls, v: str) -> str:
        if not re.match(NAMESPACE_PATTERN, v):
            raise ValueError(f"namespace must be a valid DNS-1123 label: {v}")
        return v

    @field_validator("service_account_name")
    @classmethod
    def validate_service_account_name(cls, v: str) -> str:
        if not re.match(SERVICE_ACCOUNT_PATTERN, v):
            raise ValueError(f"serviceAccountName must be a valid DNS-1123 subdomain: {v}")
        return v

    @field_validator("role_arn", mode="before")
    @classmethod
    def normalize_role_arn(cls, v: Any) -> Any:
        # An empty roleARN means "not supplied"
        if isinstance(v, str):
            v = v.strip()
            return v or None
        return v

    @field_validator("role_name")
    @classmethod
    def validate_role_name(cls, v: str | None) -> str | None:
        if v is not None and not (1 <= len(v) <= MAX_ROLE_NAME_LENGTH):
            raise ValueError(f"roleName must be 1-{MAX_ROLE_NAME_LENGTH} characters")
        return v

    @field_validator("tags")
    @classmethod
    def validate_tags(cls, v: dict[str, str]) -> dict[str, str]:
        if len(v) > MAX_TAGS_PER_ROLE:
            raise ValueError(f"at most {MAX_TAGS_PER_ROLE} tags are allowed")
        return v

    @property
    def identity_key(self) -> tuple[str, str]:
        """Unique key of this requirement within one reconciliation pass."""
        return (self.namespace, self.service_account_name)

    @property
    def has_role_arn(self) -> bool:
        return bool(self.role_arn)


class AddonSpec(BaseModel):
    """Pod identity association requirements declared for one addon."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    name: str | None = None
    version: str | None = None
    pod_identity_associations: list[PodIdentityAssociation] = Field(
        default_factory=list, alias="podIdentityAssociations"
    )

    @model_validator(mode="after")
    def validate_unique_associations(self) -> AddonSpec:
        ensure_unique_identities(self.pod_identity_associations)
        return self


def ensure_unique_identities(associations: Iterable[PodIdentityAssociation]) -> None:
    """Reject two requirements for the same (namespace, service account).

    Raises:
        ValueError: Naming the first repeated key.
    """
    seen: set[tuple[str, str]] = set()
    for association in associations:
        key = association.identity_key
        if key in seen:
            raise ValueError(
                f"duplicate pod identity association for namespace '{key[0]}' "
                f"and service account '{key[1]}'"
            )
        seen.add(key)

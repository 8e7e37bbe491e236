"""Reconciliation error taxonomy.

Every failure that aborts a requirement derives from ReconciliationError so
callers can catch the whole family at once, while the subclasses let them
match on the specific kind. The two user-actionable messages below are
matched by substring downstream and must keep their wording.
"""

from __future__ import annotations

# Phrases consumed by callers via substring matching
IMMUTABLE_OWNED_CREDENTIAL_MESSAGE = (
    "cannot change podIdentityAssociation.roleARN since the role was created by eksctl"
)
MISSING_EXTERNAL_CREDENTIAL_MESSAGE = (
    "podIdentityAssociation.roleARN is required since the role was not created by eksctl"
)


class ReconciliationError(Exception):
    """Base class for failures while reconciling a pod identity association."""

    def __init__(
        self,
        message: str,
        *,
        namespace: str | None = None,
        service_account: str | None = None,
    ) -> None:
        self.namespace = namespace
        self.service_account = service_account
        if namespace and service_account:
            message = f"{message} (pod identity association {namespace}/{service_account})"
        super().__init__(message)


class AssociationLookupError(ReconciliationError):
    """Raised when live association state cannot be resolved from EKS."""

    pass


class OwnershipIndeterminateError(ReconciliationError):
    """Raised when stack ownership could not be established either way."""

    pass


class ImmutableOwnedCredentialError(ReconciliationError):
    """Raised when a roleARN override targets a role this tool manages."""

    pass


class MissingExternalCredentialError(ReconciliationError):
    """Raised when an externally managed binding has no roleARN."""

    pass


class ProvisioningError(ReconciliationError):
    """Raised when creating or updating the IAM role stack fails."""

    pass


class ReconciliationCancelledError(ReconciliationError):
    """Raised when a pass is cancelled or exceeds its deadline."""

    pass

"""Per-association reconciliation decision procedure.

For one requested (namespace, service account) binding this module decides
between creating a role, updating a role, reusing a caller-supplied role or
rejecting the request:

1. Look up the live association in EKS
2. Absent: reuse the supplied roleARN, or create a role stack
3. Present: probe ownership of the derived role stack
   - UNOWNED: reuse the supplied roleARN, or reject (roleARN required)
   - OWNED: reject any roleARN override, or update the role stack
   - INDETERMINATE: reject with the probe's cause (fail closed)

The collaborators are expressed as Protocols so the boto3 adapters and test
fakes are interchangeable.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from .errors import (
    IMMUTABLE_OWNED_CREDENTIAL_MESSAGE,
    MISSING_EXTERNAL_CREDENTIAL_MESSAGE,
    ImmutableOwnedCredentialError,
    MissingExternalCredentialError,
    OwnershipIndeterminateError,
    ProvisioningError,
)
from .lookup import LiveAssociation
from .models import PodIdentityAssociation
from .stacks import OwnershipResult, OwnershipStatus, StackReference

logger = logging.getLogger(__name__)


class AssociationLookup(Protocol):
    async def find(
        self, cluster_name: str, namespace: str, service_account_name: str
    ) -> LiveAssociation | None: ...


class OwnershipProbe(Protocol):
    async def probe(self, ref: StackReference) -> OwnershipResult: ...


class RoleCreator(Protocol):
    async def create(self, association: PodIdentityAssociation, addon_name: str = "") -> str: ...


class RoleUpdater(Protocol):
    async def update(
        self,
        association: PodIdentityAssociation,
        stack_name: str,
        association_id: str,
        addon_name: str = "",
    ) -> tuple[str, bool]: ...


class ReconcileAction(str, Enum):
    """How a binding's role ARN was obtained."""

    CREATE = "create"
    UPDATE = "update"
    REUSE = "reuse"


@dataclass(frozen=True)
class AddonPodIdentityAssociation:
    """Reconciled binding handed to the addon configuration."""

    service_account: str
    role_arn: str
    action: ReconcileAction = ReconcileAction.REUSE
    changed: bool = False

    def to_api(self) -> dict[str, str]:
        """Convert to the EKS addon podIdentityAssociations shape."""
        return {"serviceAccount": self.service_account, "roleArn": self.role_arn}


class AssociationReconciler:
    """Reconciles a single pod identity association requirement."""

    def __init__(
        self,
        cluster_name: str,
        lookup: AssociationLookup,
        probe: OwnershipProbe,
        creator: RoleCreator,
        updater: RoleUpdater,
        addon_name: str = "",
    ) -> None:
        """Initialize the reconciler.

        Args:
            cluster_name: EKS cluster owning the associations.
            lookup: Live association lookup.
            probe: Role stack ownership probe.
            creator: Provisions new role stacks.
            updater: Updates existing role stacks.
            addon_name: Opaque tag forwarded to role creation and updates.
        """
        if not cluster_name:
            raise ValueError("cluster_name cannot be empty")

        self._cluster_name = cluster_name
        self._lookup = lookup
        self._probe = probe
        self._creator = creator
        self._updater = updater
        self._addon_name = addon_name

    @property
    def cluster_name(self) -> str:
        return self._cluster_name

    async def reconcile(self, association: PodIdentityAssociation) -> AddonPodIdentityAssociation:
        """Decide and apply the outcome for one requirement.

        Raises:
            AssociationLookupError: Live state could not be read.
            OwnershipIndeterminateError: Role ownership could not be established.
            ImmutableOwnedCredentialError: roleARN given for a role we manage.
            MissingExternalCredentialError: roleARN missing for a role we do not manage.
            ProvisioningError: Role creation or update failed.
        """
        live = await self._lookup.find(
            self._cluster_name,
            association.namespace,
            association.service_account_name,
        )

        if live is None:
            return await self._reconcile_absent(association)
        return await self._reconcile_existing(association, live)

    async def _reconcile_absent(
        self, association: PodIdentityAssociation
    ) -> AddonPodIdentityAssociation:
        if association.role_arn:
            # Externally managed from the start
            self._log_decision(association, ReconcileAction.REUSE, "association does not exist")
            return AddonPodIdentityAssociation(
                service_account=association.service_account_name,
                role_arn=association.role_arn,
                action=ReconcileAction.REUSE,
            )

        self._log_decision(association, ReconcileAction.CREATE, "association does not exist")
        role_arn = await self._creator.create(association, self._addon_name)
        self._ensure_role_arn(association, role_arn)
        return AddonPodIdentityAssociation(
            service_account=association.service_account_name,
            role_arn=role_arn,
            action=ReconcileAction.CREATE,
            changed=True,
        )

    async def _reconcile_existing(
        self,
        association: PodIdentityAssociation,
        live: LiveAssociation,
    ) -> AddonPodIdentityAssociation:
        ref = StackReference.for_service_account(
            self._cluster_name, association.service_account_name
        )
        ownership = await self._probe.probe(ref)

        if ownership.status == OwnershipStatus.INDETERMINATE:
            cause = ownership.cause
            detail = (str(cause) or type(cause).__name__) if cause else "unknown error"
            raise OwnershipIndeterminateError(
                f"could not determine whether stack {ref.name} was created by eksctl: {detail}",
                namespace=association.namespace,
                service_account=association.service_account_name,
            ) from cause

        if ownership.status == OwnershipStatus.UNOWNED:
            if not association.role_arn:
                raise MissingExternalCredentialError(
                    MISSING_EXTERNAL_CREDENTIAL_MESSAGE,
                    namespace=association.namespace,
                    service_account=association.service_account_name,
                )
            self._log_decision(
                association,
                ReconcileAction.REUSE,
                "role is externally managed",
                stack_name=ref.name,
                live=live,
            )
            return AddonPodIdentityAssociation(
                service_account=association.service_account_name,
                role_arn=association.role_arn,
                action=ReconcileAction.REUSE,
                changed=association.role_arn != live.bound_role_arn,
            )

        # OWNED: the role identity is derived from the stack, never assigned
        if association.role_arn:
            raise ImmutableOwnedCredentialError(
                IMMUTABLE_OWNED_CREDENTIAL_MESSAGE,
                namespace=association.namespace,
                service_account=association.service_account_name,
            )

        self._log_decision(
            association,
            ReconcileAction.UPDATE,
            "role stack is managed here",
            stack_name=ref.name,
            live=live,
            stack_status=ownership.stack_status,
        )
        role_arn, changed = await self._updater.update(
            association, ref.name, live.association_id, self._addon_name
        )
        self._ensure_role_arn(association, role_arn)
        return AddonPodIdentityAssociation(
            service_account=association.service_account_name,
            role_arn=role_arn,
            action=ReconcileAction.UPDATE,
            changed=changed,
        )

    def _ensure_role_arn(self, association: PodIdentityAssociation, role_arn: str) -> None:
        if not role_arn:
            raise ProvisioningError(
                "role provisioning returned an empty role ARN",
                namespace=association.namespace,
                service_account=association.service_account_name,
            )

    def _log_decision(
        self,
        association: PodIdentityAssociation,
        action: ReconcileAction,
        reason: str,
        *,
        stack_name: str | None = None,
        stack_status: str | None = None,
        live: LiveAssociation | None = None,
    ) -> None:
        logger.info(
            "Reconciling pod identity association",
            extra={
                "cluster": self._cluster_name,
                "namespace": association.namespace,
                "service_account": association.service_account_name,
                "action": action.value,
                "reason": reason,
                "stack_name": stack_name,
                "stack_status": stack_status,
                "association_id": live.association_id if live else None,
            },
        )

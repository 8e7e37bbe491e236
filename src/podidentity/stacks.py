"""CloudFormation stack naming and ownership probing.

Each pod identity association whose role is provisioned by this tool gets a
dedicated CloudFormation stack. The stack name is derived from the cluster
and service account only, so it is stable across runs and can be recomputed
at any time to ask "did we create the role behind this binding?".

KEY DESIGN DECISIONS:
1. Stack per service account: independent lifecycle per binding
2. Namespace is not part of the name (compatibility with existing stacks)
3. Ownership = the stack exists under our naming convention
4. Absence is recognised from exactly one signal; everything else fails closed

FLOW:
1. StackReference.for_service_account(cluster, sa)
2. CloudFormationOwnershipProbe.probe(ref) -> DescribeStacks
3. classify_describe_error() maps a failure to UNOWNED or INDETERMINATE
"""

from __future__ import annotations

import logging
from concurrent.futures import Executor
from dataclasses import dataclass
from enum import Enum
from typing import Any

from botocore.exceptions import ClientError

from .aws_calls import call_with_timeout, error_code, error_message

logger = logging.getLogger(__name__)

# Must stay byte-for-byte compatible with stacks created by earlier releases
STACK_NAME_TEMPLATE = "eksctl-{cluster_name}-addon--podidentityrole-{service_account_name}"

# CloudFormation limit
MAX_STACK_NAME_LENGTH = 128

# Stack tags stamped on every role stack
CLUSTER_NAME_TAG = "alpha.eksctl.io/cluster-name"
LEGACY_CLUSTER_NAME_TAG = "eksctl.cluster.k8s.io/v1alpha1/cluster-name"
ADDON_NAME_TAG = "alpha.eksctl.io/addon-name"
NAMESPACE_TAG = "alpha.eksctl.io/podidentityassociation-namespace"
SERVICE_ACCOUNT_TAG = "alpha.eksctl.io/podidentityassociation-serviceaccount"
ASSOCIATION_ID_TAG = "alpha.eksctl.io/podidentityassociation-id"

# The one error shape CloudFormation uses for "no such stack"
STACK_NOT_FOUND_ERROR_CODE = "ValidationError"
STACK_NOT_FOUND_MESSAGE_FRAGMENT = "does not exist"


def make_stack_name(cluster_name: str, service_account_name: str) -> str:
    """Derive the role stack name for a service account.

    Format: eksctl-{cluster}-addon--podidentityrole-{serviceAccount}

    Args:
        cluster_name: EKS cluster name.
        service_account_name: Kubernetes service account name.

    Returns:
        Stack name string.

    Raises:
        ValueError: If either input is empty.
    """
    if not cluster_name:
        raise ValueError("cluster_name cannot be empty")
    if not service_account_name:
        raise ValueError("service_account_name cannot be empty")

    name = STACK_NAME_TEMPLATE.format(
        cluster_name=cluster_name,
        service_account_name=service_account_name,
    )
    if len(name) > MAX_STACK_NAME_LENGTH:
        # Not truncated: a truncated name would no longer find existing stacks
        logger.warning(
            "Stack name exceeds CloudFormation limit",
            extra={"stack_name": name, "max_length": MAX_STACK_NAME_LENGTH},
        )
    return name


@dataclass(frozen=True)
class StackReference:
    """Deterministic pointer to the role stack of one service account."""

    name: str

    @classmethod
    def for_service_account(cls, cluster_name: str, service_account_name: str) -> StackReference:
        return cls(name=make_stack_name(cluster_name, service_account_name))


@dataclass
class StackMetadata:
    """Metadata stamped on role stacks for auditability."""

    cluster_name: str
    namespace: str
    service_account_name: str
    addon_name: str = ""
    association_id: str | None = None

    def to_tags(self) -> list[dict[str, str]]:
        """Convert to CloudFormation stack tags.

        Returns:
            List of Key/Value dicts for create_stack/update_stack.
        """
        tags = {
            CLUSTER_NAME_TAG: self.cluster_name,
            LEGACY_CLUSTER_NAME_TAG: self.cluster_name,
            NAMESPACE_TAG: self.namespace,
            SERVICE_ACCOUNT_TAG: self.service_account_name,
        }

        if self.addon_name:
            tags[ADDON_NAME_TAG] = self.addon_name
        if self.association_id:
            tags[ASSOCIATION_ID_TAG] = self.association_id

        return [{"Key": key, "Value": value} for key, value in tags.items()]


class OwnershipStatus(str, Enum):
    """Whether the role behind a binding was provisioned by this tool."""

    OWNED = "owned"
    UNOWNED = "unowned"
    INDETERMINATE = "indeterminate"


@dataclass(frozen=True)
class OwnershipResult:
    """Tagged outcome of an ownership probe.

    cause is set only for INDETERMINATE and holds the underlying failure.
    """

    status: OwnershipStatus
    stack_name: str
    cause: BaseException | None = None
    stack_status: str | None = None

    @classmethod
    def owned(cls, stack_name: str, stack_status: str | None = None) -> OwnershipResult:
        return cls(OwnershipStatus.OWNED, stack_name, stack_status=stack_status)

    @classmethod
    def unowned(cls, stack_name: str) -> OwnershipResult:
        return cls(OwnershipStatus.UNOWNED, stack_name)

    @classmethod
    def indeterminate(cls, stack_name: str, cause: BaseException) -> OwnershipResult:
        return cls(OwnershipStatus.INDETERMINATE, stack_name, cause=cause)

    @property
    def is_unowned(self) -> bool:
        return self.status == OwnershipStatus.UNOWNED


def is_stack_not_found(error: BaseException) -> bool:
    """Check whether an error is CloudFormation's "stack does not exist" signal.

    DescribeStacks reports a missing stack as a ValidationError whose message
    reads "Stack with id <name> does not exist". ValidationError is also used
    for malformed stack names, so the code alone is not enough.
    """
    if not isinstance(error, ClientError):
        return False
    return (
        error_code(error) == STACK_NOT_FOUND_ERROR_CODE
        and STACK_NOT_FOUND_MESSAGE_FRAGMENT in error_message(error)
    )


def classify_describe_error(stack_name: str, error: BaseException) -> OwnershipResult:
    """Map a DescribeStacks failure to an ownership outcome.

    Only confirmed absence is UNOWNED. Throttling, access denied, malformed
    names, network errors and timeouts are all INDETERMINATE.

    Args:
        stack_name: Stack that was described.
        error: Exception raised by the describe call.

    Returns:
        OwnershipResult with status UNOWNED or INDETERMINATE.
    """
    if is_stack_not_found(error):
        return OwnershipResult.unowned(stack_name)
    return OwnershipResult.indeterminate(stack_name, error)


class CloudFormationOwnershipProbe:
    """Determines role ownership by describing the derived stack."""

    def __init__(
        self, client: Any, api_timeout_seconds: float, executor: Executor | None = None
    ) -> None:
        """Initialize the probe.

        Args:
            client: boto3 CloudFormation client.
            api_timeout_seconds: Timeout for the DescribeStacks call.
            executor: Executor for the blocking call; None uses the loop default.
        """
        self._client = client
        self._api_timeout_seconds = api_timeout_seconds
        self._executor = executor

    async def probe(self, ref: StackReference) -> OwnershipResult:
        """Probe ownership of the stack behind a reference.

        Never raises for a failed describe call; any exception is folded into
        the result, and only confirmed absence counts as UNOWNED.
        """
        try:
            output = await call_with_timeout(
                self._client.describe_stacks,
                StackName=ref.name,
                timeout_seconds=self._api_timeout_seconds,
                operation_name="DescribeStacks",
                executor=self._executor,
            )
        except Exception as e:
            result = classify_describe_error(ref.name, e)
            if result.is_unowned:
                logger.debug("Role stack not found", extra={"stack_name": ref.name})
            else:
                logger.warning(
                    "Could not determine role stack ownership",
                    extra={"stack_name": ref.name, "error_type": type(e).__name__},
                )
            return result

        stacks = output.get("Stacks", [])
        stack_status = stacks[0].get("StackStatus") if stacks else None
        logger.debug(
            "Role stack found",
            extra={"stack_name": ref.name, "stack_status": stack_status},
        )
        return OwnershipResult.owned(ref.name, stack_status=stack_status)

"""IAM role provisioning for pod identity associations via CloudFormation.

Each role lives in its own stack named by stacks.make_stack_name(). The
creator builds the template inline from the association's role-shaping
fields, creates the stack and reads the role ARN from its outputs. The
updater regenerates the same template and applies it to an existing stack.

IMPLEMENTATION NOTE:
Stack creation and updates are long-running; the boto3 waiters are run in
the executor with an overall deadline of stack_timeout_seconds.
"""

from __future__ import annotations

import json
import logging
import time
from concurrent.futures import Executor
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError, WaiterError

from .aws_calls import call_with_timeout, error_code, error_message
from .errors import ProvisioningError
from .models import PodIdentityAssociation
from .stacks import StackMetadata, make_stack_name

logger = logging.getLogger(__name__)

# Constants
ROLE_LOGICAL_ID = "Role1"
ROLE_ARN_OUTPUT_KEY = "RoleARN"
INLINE_POLICY_NAME = "Policy1"
POD_IDENTITY_SERVICE_PRINCIPAL = "pods.eks.amazonaws.com"
DEFAULT_WAITER_DELAY_SECONDS = 15
NO_UPDATES_MESSAGE_FRAGMENT = "No updates are to be performed"

# AWS managed policies behind the wellKnownPolicies shortcuts
WELL_KNOWN_POLICY_NAMES: dict[str, str] = {
    "ebs_csi_controller": "service-role/AmazonEBSCSIDriverPolicy",
    "efs_csi_controller": "service-role/AmazonEFSCSIDriverPolicy",
    "image_builder": "AmazonEC2ContainerRegistryPowerUser",
    "cloud_watch": "CloudWatchAgentServerPolicy",
    "vpc_cni": "AmazonEKS_CNI_Policy",
}


def partition_for_region(region: str) -> str:
    """Return the AWS partition a region belongs to."""
    if region.startswith("cn-"):
        return "aws-cn"
    if region.startswith("us-gov-"):
        return "aws-us-gov"
    if region.startswith("us-isob-"):
        return "aws-iso-b"
    if region.startswith("us-iso-"):
        return "aws-iso"
    return "aws"


def build_role_template(association: PodIdentityAssociation, partition: str) -> dict[str, Any]:
    """Build the CloudFormation template for an association's IAM role.

    Args:
        association: Requirement describing the role.
        partition: AWS partition used for managed policy ARNs.

    Returns:
        CloudFormation template as dict.
    """
    managed_policy_arns = list(association.permission_policy_arns)
    if association.well_known_policies.any_enabled:
        enabled = association.well_known_policies.model_dump()
        for field_name, policy_name in WELL_KNOWN_POLICY_NAMES.items():
            if enabled.get(field_name):
                arn = f"arn:{partition}:iam::aws:policy/{policy_name}"
                if arn not in managed_policy_arns:
                    managed_policy_arns.append(arn)

    role_properties: dict[str, Any] = {
        "AssumeRolePolicyDocument": {
            "Version": "2012-10-17",
            "Statement": [
                {
                    "Effect": "Allow",
                    "Principal": {"Service": POD_IDENTITY_SERVICE_PRINCIPAL},
                    "Action": ["sts:AssumeRole", "sts:TagSession"],
                }
            ],
        },
    }

    if managed_policy_arns:
        role_properties["ManagedPolicyArns"] = managed_policy_arns
    if association.permission_policy:
        role_properties["Policies"] = [
            {
                "PolicyName": INLINE_POLICY_NAME,
                "PolicyDocument": association.permission_policy,
            }
        ]
    if association.permissions_boundary_arn:
        role_properties["PermissionsBoundary"] = association.permissions_boundary_arn
    if association.role_name:
        role_properties["RoleName"] = association.role_name
    if association.tags:
        role_properties["Tags"] = [
            {"Key": key, "Value": value} for key, value in sorted(association.tags.items())
        ]

    if not managed_policy_arns and not association.permission_policy:
        logger.warning(
            "Role has no permission policies attached",
            extra={
                "namespace": association.namespace,
                "service_account": association.service_account_name,
            },
        )

    return {
        "AWSTemplateFormatVersion": "2010-09-09",
        "Description": (
            "IAM role for pod identity association "
            f"{association.namespace}/{association.service_account_name}"
        ),
        "Resources": {
            ROLE_LOGICAL_ID: {
                "Type": "AWS::IAM::Role",
                "Properties": role_properties,
            }
        },
        "Outputs": {
            ROLE_ARN_OUTPUT_KEY: {
                "Value": {"Fn::GetAtt": [ROLE_LOGICAL_ID, "Arn"]},
            }
        },
    }


def required_capabilities(association: PodIdentityAssociation) -> list[str]:
    """CloudFormation capabilities needed for the role template."""
    if association.role_name:
        return ["CAPABILITY_NAMED_IAM"]
    return ["CAPABILITY_IAM"]


class _RoleStackProvisioner:
    """Shared stack plumbing for the role creator and updater."""

    def __init__(
        self,
        client: Any,
        cluster_name: str,
        region: str,
        api_timeout_seconds: float,
        stack_timeout_seconds: float,
        waiter_delay_seconds: int = DEFAULT_WAITER_DELAY_SECONDS,
        executor: Executor | None = None,
    ) -> None:
        """Initialize the provisioner.

        Args:
            client: boto3 CloudFormation client.
            cluster_name: EKS cluster owning the associations.
            region: Region of the cluster (selects the partition).
            api_timeout_seconds: Timeout for single API calls.
            stack_timeout_seconds: Deadline for a stack to settle.
            waiter_delay_seconds: Poll interval of the boto3 waiters.
            executor: Executor for blocking calls; None uses the loop default.
        """
        if not cluster_name:
            raise ValueError("cluster_name cannot be empty")
        if waiter_delay_seconds < 1:
            raise ValueError("waiter_delay_seconds must be at least 1")

        self._client = client
        self._cluster_name = cluster_name
        self._partition = partition_for_region(region)
        self._api_timeout_seconds = api_timeout_seconds
        self._stack_timeout_seconds = stack_timeout_seconds
        self._waiter_delay_seconds = waiter_delay_seconds
        self._executor = executor

    async def _wait_for(self, waiter_name: str, stack_name: str) -> None:
        waiter = self._client.get_waiter(waiter_name)
        max_attempts = max(1, int(self._stack_timeout_seconds // self._waiter_delay_seconds))
        await call_with_timeout(
            waiter.wait,
            StackName=stack_name,
            WaiterConfig={"Delay": self._waiter_delay_seconds, "MaxAttempts": max_attempts},
            timeout_seconds=self._stack_timeout_seconds + self._waiter_delay_seconds,
            operation_name=f"Waiting for {waiter_name}",
            executor=self._executor,
        )

    async def _read_role_arn(self, stack_name: str) -> str:
        output = await call_with_timeout(
            self._client.describe_stacks,
            StackName=stack_name,
            timeout_seconds=self._api_timeout_seconds,
            operation_name="DescribeStacks",
            executor=self._executor,
        )
        for stack in output.get("Stacks", []):
            for stack_output in stack.get("Outputs", []):
                if stack_output.get("OutputKey") == ROLE_ARN_OUTPUT_KEY and stack_output.get(
                    "OutputValue"
                ):
                    return stack_output["OutputValue"]
        raise ProvisioningError(f"stack {stack_name} has no {ROLE_ARN_OUTPUT_KEY} output")

    async def _apply_update(
        self,
        association: PodIdentityAssociation,
        stack_name: str,
        metadata: StackMetadata,
    ) -> bool:
        """Push the regenerated template to an existing stack.

        Returns:
            True if CloudFormation applied a change, False if already current.
        """
        template = build_role_template(association, self._partition)
        try:
            await call_with_timeout(
                self._client.update_stack,
                StackName=stack_name,
                TemplateBody=json.dumps(template),
                Capabilities=required_capabilities(association),
                Tags=metadata.to_tags(),
                timeout_seconds=self._api_timeout_seconds,
                operation_name="UpdateStack",
                executor=self._executor,
            )
        except ClientError as e:
            if error_code(e) == "ValidationError" and NO_UPDATES_MESSAGE_FRAGMENT in error_message(
                e
            ):
                logger.info("Role stack already up to date", extra={"stack_name": stack_name})
                return False
            raise

        await self._wait_for("stack_update_complete", stack_name)
        return True


class CloudFormationRoleCreator(_RoleStackProvisioner):
    """Creates a new IAM role stack for an association."""

    async def create(self, association: PodIdentityAssociation, addon_name: str = "") -> str:
        """Provision the role and return its ARN.

        A stack left behind by an earlier, interrupted pass is adopted and
        brought up to date instead of failing on AlreadyExistsException.

        Raises:
            ProvisioningError: If the stack cannot be created.
        """
        start_time = time.monotonic()
        stack_name = make_stack_name(self._cluster_name, association.service_account_name)
        metadata = StackMetadata(
            cluster_name=self._cluster_name,
            namespace=association.namespace,
            service_account_name=association.service_account_name,
            addon_name=addon_name,
        )
        template = build_role_template(association, self._partition)

        try:
            try:
                await call_with_timeout(
                    self._client.create_stack,
                    StackName=stack_name,
                    TemplateBody=json.dumps(template),
                    Capabilities=required_capabilities(association),
                    Tags=metadata.to_tags(),
                    timeout_seconds=self._api_timeout_seconds,
                    operation_name="CreateStack",
                    executor=self._executor,
                )
            except ClientError as e:
                if error_code(e) != "AlreadyExistsException":
                    raise
                logger.info(
                    "Role stack already exists, updating it instead",
                    extra={"stack_name": stack_name},
                )
                await self._apply_update(association, stack_name, metadata)
            else:
                await self._wait_for("stack_create_complete", stack_name)

            role_arn = await self._read_role_arn(stack_name)

        except ProvisioningError as e:
            raise ProvisioningError(
                str(e),
                namespace=association.namespace,
                service_account=association.service_account_name,
            ) from e
        except (ClientError, BotoCoreError, WaiterError, TimeoutError) as e:
            raise ProvisioningError(
                f"failed to create IAM role stack {stack_name}: {str(e) or type(e).__name__}",
                namespace=association.namespace,
                service_account=association.service_account_name,
            ) from e

        logger.info(
            "Created IAM role for pod identity association",
            extra={
                "stack_name": stack_name,
                "role_arn": role_arn,
                "duration_seconds": round(time.monotonic() - start_time, 3),
            },
        )
        return role_arn


class CloudFormationRoleUpdater(_RoleStackProvisioner):
    """Updates the IAM role stack behind an existing association."""

    async def update(
        self,
        association: PodIdentityAssociation,
        stack_name: str,
        association_id: str,
        addon_name: str = "",
    ) -> tuple[str, bool]:
        """Apply the current role definition to the stack.

        The tag set is rebuilt in full, so the addon name stamped at creation
        must be passed again or UpdateStack drops it.

        Returns:
            (role ARN, changed) where changed is False if the stack was current.

        Raises:
            ProvisioningError: If the update fails.
        """
        metadata = StackMetadata(
            cluster_name=self._cluster_name,
            namespace=association.namespace,
            service_account_name=association.service_account_name,
            addon_name=addon_name,
            association_id=association_id,
        )

        try:
            changed = await self._apply_update(association, stack_name, metadata)
            role_arn = await self._read_role_arn(stack_name)
        except ProvisioningError as e:
            raise ProvisioningError(
                str(e),
                namespace=association.namespace,
                service_account=association.service_account_name,
            ) from e
        except (ClientError, BotoCoreError, WaiterError, TimeoutError) as e:
            raise ProvisioningError(
                f"failed to update IAM role stack {stack_name}: {str(e) or type(e).__name__}",
                namespace=association.namespace,
                service_account=association.service_account_name,
            ) from e

        logger.info(
            "Reconciled IAM role stack",
            extra={
                "stack_name": stack_name,
                "association_id": association_id,
                "role_arn": role_arn,
                "changed": changed,
            },
        )
        return role_arn, changed

"""Live pod identity association lookup against the EKS API."""

from __future__ import annotations

import logging
from concurrent.futures import Executor
from dataclasses import dataclass
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError

from .aws_calls import call_with_timeout
from .errors import AssociationLookupError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LiveAssociation:
    """A pod identity association that already exists in the cluster."""

    association_id: str
    namespace: str
    service_account_name: str
    bound_role_arn: str


class EKSAssociationLookup:
    """Resolves the live association for a (namespace, service account).

    Two calls under the hood: ListPodIdentityAssociations filtered by
    namespace and service account, then DescribePodIdentityAssociation on
    the matched id to obtain the bound role ARN.
    """

    def __init__(
        self, client: Any, api_timeout_seconds: float, executor: Executor | None = None
    ) -> None:
        self._client = client
        self._api_timeout_seconds = api_timeout_seconds
        self._executor = executor

    async def find(
        self,
        cluster_name: str,
        namespace: str,
        service_account_name: str,
    ) -> LiveAssociation | None:
        """Return the live association, or None if the binding does not exist.

        Raises:
            AssociationLookupError: On any API or transport failure.
        """
        try:
            listed = await call_with_timeout(
                self._client.list_pod_identity_associations,
                clusterName=cluster_name,
                namespace=namespace,
                serviceAccount=service_account_name,
                timeout_seconds=self._api_timeout_seconds,
                operation_name="ListPodIdentityAssociations",
                executor=self._executor,
            )
            summaries = listed.get("associations", [])
            if not summaries:
                return None

            if len(summaries) > 1:
                logger.warning(
                    "Multiple pod identity associations matched, using the first",
                    extra={
                        "namespace": namespace,
                        "service_account": service_account_name,
                        "count": len(summaries),
                    },
                )

            association_id = summaries[0]["associationId"]
            described = await call_with_timeout(
                self._client.describe_pod_identity_association,
                clusterName=cluster_name,
                associationId=association_id,
                timeout_seconds=self._api_timeout_seconds,
                operation_name="DescribePodIdentityAssociation",
                executor=self._executor,
            )
        except (ClientError, BotoCoreError, TimeoutError) as e:
            raise AssociationLookupError(
                f"failed to look up pod identity association: {str(e) or type(e).__name__}",
                namespace=namespace,
                service_account=service_account_name,
            ) from e

        association = described.get("association", {})
        return LiveAssociation(
            association_id=association.get("associationId", association_id),
            namespace=association.get("namespace", namespace),
            service_account_name=association.get("serviceAccount", service_account_name),
            bound_role_arn=association.get("roleArn", ""),
        )

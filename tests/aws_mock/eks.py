"""Mock EKS client covering the pod identity association read APIs."""

from __future__ import annotations

import time
from typing import Any

from .state import MockAWSState, client_error


class MockEKSClient:
    """Subset of the boto3 EKS client used by the association lookup."""

    def __init__(self, state: MockAWSState, *, fail_with: Exception | None = None) -> None:
        self._state = state
        self._fail_with = fail_with

    def list_pod_identity_associations(
        self,
        clusterName: str,
        namespace: str | None = None,
        serviceAccount: str | None = None,
        **kwargs: Any,
    ) -> dict[str, Any]:
        self._state.record(
            "ListPodIdentityAssociations",
            {"clusterName": clusterName, "namespace": namespace, "serviceAccount": serviceAccount},
        )
        if serviceAccount in self._state.lookup_delays:
            time.sleep(self._state.lookup_delays[serviceAccount])
        if self._fail_with is not None:
            raise self._fail_with

        matches = [
            association.summary()
            for (cluster, ns, sa), association in list(self._state.associations.items())
            if cluster == clusterName
            and (namespace is None or ns == namespace)
            and (serviceAccount is None or sa == serviceAccount)
        ]
        return {"associations": matches}

    def describe_pod_identity_association(
        self, clusterName: str, associationId: str, **kwargs: Any
    ) -> dict[str, Any]:
        self._state.record(
            "DescribePodIdentityAssociation",
            {"clusterName": clusterName, "associationId": associationId},
        )
        for association in list(self._state.associations.values()):
            if association.cluster_name == clusterName and association.association_id == associationId:
                return {"association": association.describe()}
        raise client_error(
            "ResourceNotFoundException",
            f"No pod identity association found with id {associationId}",
            "DescribePodIdentityAssociation",
        )

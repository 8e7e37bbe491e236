"""In-memory AWS state shared by the mock EKS and CloudFormation clients.

boto3 calls run on executor threads, so every mutation goes through a lock.
"""

from __future__ import annotations

import json
import threading
from dataclasses import dataclass, field
from typing import Any

from botocore.exceptions import ClientError

MOCK_ACCOUNT_ID = "111122223333"


def client_error(code: str, message: str, operation_name: str) -> ClientError:
    """Build a real botocore ClientError with the given code and message."""
    return ClientError({"Error": {"Code": code, "Message": message}}, operation_name)


@dataclass
class MockAssociation:
    """A pod identity association living in the mock cluster."""

    association_id: str
    cluster_name: str
    namespace: str
    service_account: str
    role_arn: str

    def summary(self) -> dict[str, str]:
        return {
            "clusterName": self.cluster_name,
            "namespace": self.namespace,
            "serviceAccount": self.service_account,
            "associationId": self.association_id,
            "associationArn": (
                f"arn:aws:eks:us-west-2:{MOCK_ACCOUNT_ID}:podidentityassociation/"
                f"{self.cluster_name}/{self.association_id}"
            ),
        }

    def describe(self) -> dict[str, str]:
        return {**self.summary(), "roleArn": self.role_arn}


@dataclass
class MockStack:
    """A CloudFormation stack holding one IAM role."""

    name: str
    role_arn: str
    template_body: str = ""
    tags: list[dict[str, str]] = field(default_factory=list)
    capabilities: list[str] = field(default_factory=list)
    status: str = "CREATE_COMPLETE"

    @property
    def template(self) -> dict[str, Any]:
        return json.loads(self.template_body) if self.template_body else {}

    @property
    def tag_map(self) -> dict[str, str]:
        return {tag["Key"]: tag["Value"] for tag in self.tags}

    def describe(self) -> dict[str, Any]:
        return {
            "StackName": self.name,
            "StackStatus": self.status,
            "Tags": list(self.tags),
            "Outputs": [{"OutputKey": "RoleARN", "OutputValue": self.role_arn}],
        }


class MockAWSState:
    """Associations, stacks and a call log for assertions."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._next_association = 0
        self.associations: dict[tuple[str, str, str], MockAssociation] = {}
        self.stacks: dict[str, MockStack] = {}
        self.calls: list[tuple[str, dict[str, Any]]] = []

        # Error injection: StackName -> error raised by DescribeStacks
        self.describe_errors: dict[str, Exception] = {}

        # Latency injection: serviceAccount -> seconds ListPodIdentityAssociations blocks
        self.lookup_delays: dict[str, float] = {}

        # Latency injection: seconds every stack waiter blocks
        self.waiter_delay = 0.0

        # Names of the threads the calls ran on
        self.threads: set[str] = set()

    def record(self, operation: str, params: dict[str, Any]) -> None:
        with self._lock:
            self.calls.append((operation, params))
            self.threads.add(threading.current_thread().name)

    def calls_to(self, operation: str) -> list[dict[str, Any]]:
        with self._lock:
            return [params for name, params in self.calls if name == operation]

    def add_association(
        self, cluster_name: str, namespace: str, service_account: str, role_arn: str
    ) -> MockAssociation:
        """Register a live association; ids are a-1, a-2, ... in call order."""
        with self._lock:
            self._next_association += 1
            association = MockAssociation(
                association_id=f"a-{self._next_association}",
                cluster_name=cluster_name,
                namespace=namespace,
                service_account=service_account,
                role_arn=role_arn,
            )
            self.associations[(cluster_name, namespace, service_account)] = association
            return association

    def add_stack(self, name: str, role_arn: str, **kwargs: Any) -> MockStack:
        with self._lock:
            stack = MockStack(name=name, role_arn=role_arn, **kwargs)
            self.stacks[name] = stack
            return stack

    def get_stack(self, name: str) -> MockStack | None:
        with self._lock:
            return self.stacks.get(name)

    @property
    def stack_count(self) -> int:
        with self._lock:
            return len(self.stacks)

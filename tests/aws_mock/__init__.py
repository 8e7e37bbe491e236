"""AWS API Mock for Integration Testing.

In-memory stand-ins for the EKS and CloudFormation APIs the reconciler
talks to, so integration tests run without AWS connectivity.

Key Features:
- Shared state for pod identity associations and role stacks
- Real botocore ClientError/WaiterError shapes
- Error injection for lookups, DescribeStacks and waiters

Usage:
    from aws_mock import MockAWSContext

    with MockAWSContext() as ctx:
        results = await run_reconciliation(config, spec=spec)
        assert ctx.state.stack_count == 2
"""

from .cloudformation import MockCloudFormationClient, MockWaiter
from .context import MockAWSContext, MockSession, mock_aws_context
from .eks import MockEKSClient
from .state import MockAssociation, MockAWSState, MockStack, client_error

__all__ = [
    "MockAWSContext",
    "MockAWSState",
    "MockAssociation",
    "MockCloudFormationClient",
    "MockEKSClient",
    "MockSession",
    "MockStack",
    "MockWaiter",
    "client_error",
    "mock_aws_context",
]

"""AWS API Mock for Integration Testing.

In-memory fakes for the boto3 clients the deployer uses, so the pipeline
and adapters can be exercised without AWS connectivity.

Key Features:
- In-memory state per service
- Call log, so tests can assert that nothing was mutated
- Error injection per operation
- Eventual consistency simulation (resources that settle after N reads)

Usage:
    from aws_mock import MockAwsContext, client_error

    with MockAwsContext(settle_reads=2) as ctx:
        ctx.state.fail("lambda", "create_function", client_error("TooManyRequestsException", 429, "CreateFunction"))
        result = await pipeline.run()
        assert ctx.state.calls_to("lambda", "create_function")
"""

from .clients import FakeClient, FakeSession
from .context import MockAwsContext, mock_aws_context
from .state import ACCOUNT_ID, MockAwsState, RecordedCall, client_error

__all__ = [
    "ACCOUNT_ID",
    "FakeClient",
    "FakeSession",
    "MockAwsContext",
    "MockAwsState",
    "RecordedCall",
    "client_error",
    "mock_aws_context",
]

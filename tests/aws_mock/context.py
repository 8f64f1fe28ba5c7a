"""AWS Mock Context for integration testing.

Provides a context manager that patches the boto3 session used by the
deployer with an in-memory fake.
"""

from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager
from typing import Any
from unittest import mock

from .clients import FakeSession
from .state import MockAwsState, RecordedCall


class MockAwsContext:
    """Context manager for AWS API mocking in integration tests.

    Patches:
    - deployer.aws.clients.Session → FakeSession

    Usage:
        with MockAwsContext() as ctx:
            pipeline = DeployPipeline(config, spec)
            result = await pipeline.run()

            assert "orders-api" in ctx.state.functions
            assert not ctx.state.mutating_calls
    """

    def __init__(self, *, region: str = "us-east-1", settle_reads: int = 0) -> None:
        """Initialize mock context.

        Args:
            region: Region the fake ARNs are minted in.
            settle_reads: Reads that report an in-progress state after each
                create or update (simulates eventual consistency).
        """
        self._region = region
        self._settle_reads = settle_reads

        # These are set when context is entered
        self._state: MockAwsState | None = None
        self._patches: list[Any] = []

    @property
    def state(self) -> MockAwsState:
        """Get the mock AWS state.

        Raises:
            RuntimeError: If accessed outside of context.
        """
        if self._state is None:
            raise RuntimeError("MockAwsContext must be used as a context manager")
        return self._state

    @property
    def calls(self) -> list[RecordedCall]:
        return self.state.calls

    def __enter__(self) -> MockAwsContext:
        """Enter the mock context, applying patches."""
        self._state = MockAwsState(region=self._region, settle_reads=self._settle_reads)
        state = self._state

        def create_session(region_name: str | None = None, **_: Any) -> FakeSession:
            return FakeSession(state, region_name=region_name)

        session_patch = mock.patch("deployer.aws.clients.Session", side_effect=create_session)
        self._patches.append(session_patch)

        for patch in self._patches:
            patch.start()

        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Exit the mock context, removing patches."""
        for patch in reversed(self._patches):
            patch.stop()
        self._patches.clear()


@contextmanager
def mock_aws_context(*, region: str = "us-east-1", settle_reads: int = 0) -> Generator[MockAwsContext, None, None]:
    """Convenience function for creating a mock AWS context.

    Yields:
        MockAwsContext for test assertions.
    """
    with MockAwsContext(region=region, settle_reads=settle_reads) as ctx:
        yield ctx

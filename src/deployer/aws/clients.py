"""boto3 client access for adapters.

boto3 is synchronous. Every call is pushed onto the default executor and
bounded by a timeout so a slow provider only suspends the task that issued
it.

SECURITY: Credentials come from boto3's default chain; nothing here reads
or stores them.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from typing import Any

from boto3.session import Session

logger = logging.getLogger(__name__)

DEFAULT_CALL_TIMEOUT_SECONDS = 60

# Region prefix -> partition
_PARTITION_PREFIXES = (("cn-", "aws-cn"), ("us-gov-", "aws-us-gov"))


def partition_for_region(region: str) -> str:
    for prefix, partition in _PARTITION_PREFIXES:
        if region.startswith(prefix):
            return partition
    return "aws"


class AwsClients:
    """Lazily created boto3 clients sharing one session."""

    def __init__(
        self,
        region: str,
        *,
        timeout_seconds: int = DEFAULT_CALL_TIMEOUT_SECONDS,
    ) -> None:
        self._region = region
        self._timeout_seconds = timeout_seconds
        self._session = Session(region_name=region)
        self._clients: dict[str, Any] = {}

    @property
    def region(self) -> str:
        return self._region

    @property
    def partition(self) -> str:
        return partition_for_region(self._region)

    def client(self, service: str) -> Any:
        if service not in self._clients:
            self._clients[service] = self._session.client(service, region_name=self._region)
        return self._clients[service]

    async def call(self, service: str, operation: str, **params: Any) -> dict[str, Any]:
        """Invoke a boto3 client method without blocking the event loop.

        Args:
            service: boto3 service name ("lambda", "iam", ...).
            operation: Client method name ("get_function", ...).
            **params: Keyword arguments for the method.

        Returns:
            The response dictionary.

        Raises:
            TimeoutError: If the call exceeds the configured timeout.
            botocore.exceptions.ClientError: If the provider rejects the call.
        """
        method = getattr(self.client(service), operation)
        loop = asyncio.get_event_loop()

        try:
            response = await asyncio.wait_for(
                loop.run_in_executor(None, functools.partial(method, **params)),
                timeout=self._timeout_seconds,
            )
        except TimeoutError:
            logger.error(
                f"{service}.{operation} timed out",
                extra={"service": service, "operation": operation, "timeout_seconds": self._timeout_seconds},
            )
            raise

        logger.debug("Provider call completed", extra={"service": service, "operation": operation})
        return response or {}


def tag_list(tags: dict[str, str], key: str = "Key", value: str = "Value") -> list[dict[str, str]]:
    """Convert a tag mapping to the list-of-pairs form most AWS APIs take."""
    return [{key: k, value: v} for k, v in sorted(tags.items())]

"""Declared resources: adapter lookup, lazy provisioning and runtime grants.

Each address in the deploy spec becomes a ManagedAddress. Addresses of a
service with an adapter here are provisioned on first resolution; other
services must already carry a full ARN.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from functools import partial
from typing import Any

from ..address import ManagedAddress, ManagedResource, ResourceAddress
from ..descriptor import ResourceDescriptor
from ..engine import ReconcileOptions, ResourceEngine
from ..models import FILE_SYSTEM_SERVICE
from ..policy import ActionSet, PolicyDocument
from ..status import DeployStatus
from . import dynamodb, efs, lambda_function, s3
from .clients import AwsClients

logger = logging.getLogger(__name__)

DescriptorBuilder = Callable[..., ResourceDescriptor[Any]]
SubscriptionBuilder = Callable[..., ResourceDescriptor[Any] | None]

# Placeholder target for subscriptions previewed before anything exists
WILDCARD_ARN = "*"


@dataclass(frozen=True)
class ResourceAdapter:
    """How one service's declared resources are provisioned and granted."""

    build: DescriptorBuilder
    runtime_actions: ActionSet
    subscribe: SubscriptionBuilder | None = None


def _stream_subscription(
    clients: AwsClients,
    resource: ManagedResource,
    *,
    function_name: str,
    function_arn: str,
) -> ResourceDescriptor[Any] | None:
    if not resource.subscription_arn:
        return None
    return lambda_function.subscription_descriptor(clients, function_name, resource.subscription_arn)


ADAPTERS: dict[str, ResourceAdapter] = {
    "dynamodb": ResourceAdapter(
        build=dynamodb.table_descriptor,
        runtime_actions=dynamodb.RUNTIME_ACTIONS,
        subscribe=_stream_subscription,
    ),
    "s3": ResourceAdapter(
        build=s3.bucket_descriptor,
        runtime_actions=s3.RUNTIME_ACTIONS,
        subscribe=s3.notification_descriptor,
    ),
    FILE_SYSTEM_SERVICE: ResourceAdapter(
        build=efs.file_system_descriptor,
        runtime_actions=efs.RUNTIME_ACTIONS,
    ),
}


def runtime_actions(address: ResourceAddress) -> list[str]:
    """Actions the deployed application gets on a resource, by fragment bits."""
    adapter = ADAPTERS.get(address.service)
    action_set = adapter.runtime_actions if adapter else ActionSet.generic(address.service)
    return action_set.for_intent(address)


def managed_addresses(
    addresses: list[ResourceAddress],
    clients: AwsClients,
    status: DeployStatus,
    *,
    engine: ResourceEngine,
    options: ReconcileOptions,
    tags: dict[str, str] | None = None,
) -> list[ManagedAddress]:
    """Wrap declared addresses so they provision themselves when resolved."""
    managed = []
    for address in addresses:
        adapter = ADAPTERS.get(address.service)
        factory = partial(adapter.build, clients, status, tags=tags) if adapter else None
        managed.append(ManagedAddress(address, descriptor_factory=factory, engine=engine, options=options))
    return managed


def grant_runtime_access(document: PolicyDocument, managed: list[ManagedAddress]) -> None:
    """Add one statement per declared resource to the function's policy.

    Resolved resources are granted by ARN (and everything beneath it);
    unresolved ones by their wildcard pattern.
    """
    for entry in managed:
        actions = runtime_actions(entry.declared)
        if not actions:
            logger.info("Resource declares no permissions", extra={"address": str(entry.declared)})
            continue
        resolved = entry.resolved
        if resolved is not None:
            resources = [resolved.arn, f"{resolved.arn}/*"]
        else:
            resources = [entry.declared.policy_resource()]
        document.add(actions, resources)


def subscription_descriptors(
    managed: list[ManagedAddress],
    clients: AwsClients,
    *,
    function_name: str,
    function_arn: str,
    preview: bool = False,
) -> list[ResourceDescriptor[Any]]:
    """Descriptors wiring each `s`-bit resource's events to the function.

    Args:
        managed: Declared resources, resolved unless `preview` is set.
        clients: AWS client access.
        function_name: Name of the function receiving the events.
        function_arn: ARN of that function.
        preview: Build descriptors for unresolved resources too, for
            permission mode (nothing is read or written).
    """
    descriptors = []
    for entry in managed:
        adapter = ADAPTERS.get(entry.declared.service)
        if not entry.declared.has_subscribe or adapter is None or adapter.subscribe is None:
            continue
        resolved = entry.resolved
        if preview:
            resolved = ManagedResource(
                address=entry.declared,
                arn=entry.declared.policy_resource(),
                name=entry.declared.name,
                subscription_arn=WILDCARD_ARN,
            )
        if resolved is None:
            continue
        descriptor = adapter.subscribe(clients, resolved, function_name=function_name, function_arn=function_arn)
        if descriptor is not None:
            descriptors.append(descriptor)
    return descriptors

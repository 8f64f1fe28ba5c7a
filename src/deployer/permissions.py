"""Least-privilege permission preview.

The aggregator runs every registered descriptor through the engine in
permission mode and folds the declared actions into a single policy
document. Nothing is read, created, updated or deleted along the way.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from .address import ResourceAddress
from .descriptor import ResourceDescriptor
from .engine import ReconcileOptions, ResourceEngine
from .policy import PermissionCollector, PolicyDocument

logger = logging.getLogger(__name__)

WILDCARD_SCOPE = "*"


@dataclass(frozen=True)
class ScopedDescriptor:
    """A descriptor plus the address its permissions are scoped to."""

    descriptor: ResourceDescriptor[Any]
    scope: ResourceAddress | str | None = None

    @property
    def resource_pattern(self) -> str:
        if self.scope is None:
            return WILDCARD_SCOPE
        if isinstance(self.scope, ResourceAddress):
            return self.scope.policy_resource()
        return self.scope


class PermissionAggregator:
    """Collects the provider actions a deploy would need."""

    def __init__(self, engine: ResourceEngine | None = None) -> None:
        self._engine = engine or ResourceEngine()
        self._entries: list[ScopedDescriptor] = []

    def add(self, descriptor: ResourceDescriptor[Any], scope: ResourceAddress | str | None = None) -> None:
        self._entries.append(ScopedDescriptor(descriptor=descriptor, scope=scope))

    def __len__(self) -> int:
        return len(self._entries)

    async def aggregate(self, collector: PermissionCollector | None = None) -> PolicyDocument:
        """Build one policy covering every registered descriptor.

        Args:
            collector: Optional collector that also receives every action.

        Returns:
            PolicyDocument with one statement per distinct resource scope,
            actions deduplicated and sorted.
        """
        by_scope: dict[str, PermissionCollector] = {}
        options = ReconcileOptions(check_permissions=True, collector=collector)

        for entry in self._entries:
            result = await self._engine.reconcile(entry.descriptor, options)
            by_scope.setdefault(entry.resource_pattern, PermissionCollector()).with_permissions(result.permissions)

        document = PolicyDocument()
        for pattern in sorted(by_scope):
            actions = by_scope[pattern].actions
            if actions:
                document.add(actions, [pattern])

        logger.info(
            "Aggregated deploy permissions",
            extra={
                "descriptors": len(self._entries),
                "statements": len(document.statements),
                "actions": len(document.actions),
            },
        )
        return document

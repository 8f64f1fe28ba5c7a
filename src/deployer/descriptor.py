"""Resource descriptor: the uniform lifecycle contract adapters supply.

A descriptor is a bundle of callables rather than a class hierarchy. Each
resource-kind module builds one with closures over its provider clients and
the shared DeployStatus, and hands it to the engine. Only `describe`, `read`
and `extract` are required; a missing callback simply means the resource
kind does not support that transition (e.g. an immutable registry has no
`update`, a role is never disposed).
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Generic, TypeVar

if TYPE_CHECKING:
    from .policy import PermissionCollector

ReadT = TypeVar("ReadT")

ResourceFields = dict[str, Any]


@dataclass(frozen=True)
class Description:
    """Human-facing identity of a resource for progress output."""

    type: str
    label: str | None = None

    def __str__(self) -> str:
        return f"{self.type} ({self.label})" if self.label else self.type


def _always_wanted() -> bool:
    return True


@dataclass(frozen=True)
class ResourceDescriptor(Generic[ReadT]):
    """Lifecycle callbacks for one resource.

    Attributes:
        describe: Returns type and label given the public fields known so far
            (empty before the first successful read).
        read: Fetches current provider state. Raises NotFoundError or a
            not-found ClientError when the resource does not exist.
        extract: Reduces the raw read payload to public fields. Returning
            None or omitting `identity_field` means "not created yet".
        identity_field: Public field whose presence proves existence.
        create: Creates the resource. Its return value is ignored; the
            engine re-reads for canonical state.
        update: Updates the resource given its current public fields.
        dispose: Removes the resource given its current public fields.
        emit_permissions: Declares provider actions this descriptor would
            call. Must not perform I/O.
        still_wanted: Disposal predicate; the resource is removed only when
            this returns False.
        desired: Partial expected read payload for convergence waits after
            create/update. Overrides ReconcileOptions.desired when set.
    """

    describe: Callable[[Mapping[str, Any]], Description]
    read: Callable[[], Awaitable[ReadT]]
    extract: Callable[[ReadT], Mapping[str, Any] | None]
    identity_field: str = "arn"
    create: Callable[[], Awaitable[Any]] | None = None
    update: Callable[[Mapping[str, Any]], Awaitable[Any]] | None = None
    dispose: Callable[[Mapping[str, Any]], Awaitable[Any]] | None = None
    emit_permissions: Callable[[PermissionCollector], None] | None = None
    still_wanted: Callable[[], bool] = _always_wanted
    desired: Mapping[str, Any] | None = None

    def public_fields(self, read_output: ReadT | None) -> ResourceFields:
        """Apply the extractor, tolerating a missing payload."""
        if read_output is None:
            return {}
        fields = self.extract(read_output)
        return dict(fields) if fields else {}

    def has_identity(self, fields: Mapping[str, Any]) -> bool:
        return bool(fields.get(self.identity_field))

"""Generic resource reconciliation engine.

Every resource kind runs through the same state machine:

    UNKNOWN -> READING -> NOT_FOUND -> CREATING -> READY
                       -> FOUND     -> UPDATING -> READY
                       -> (not wanted) DISPOSING -> DISPOSED

DESIGN:
- Descriptors supply callbacks; the engine owns sequencing, retries,
  convergence waits and error classification.
- "Deploy" is safe to re-run: an existing resource is updated (or left
  alone when its kind has no update), never created twice.
- Provider state is eventually consistent. After a mutation the engine
  re-reads until the observed payload matches the desired subset.
- Permission mode (check_permissions) is decided once, here. In that mode
  no read, create, update or dispose callback is ever invoked.

SAFETY: Disposal runs only when the descriptor says the resource is no
longer wanted, is attempted once, and its failures are warnings.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Literal

from .convergence import Difference, find_differences
from .descriptor import ResourceDescriptor, ResourceFields
from .errors import (
    ConvergenceError,
    ErrorKind,
    FatalError,
    NotFoundError,
    SkippedAction,
    classify_error,
    describe_error,
    is_not_found,
)
from .policy import PermissionCollector
from .progress import LoggingReporter, ProgressAction, ProgressEvent, ProgressReporter
from .retry import RetryExhaustedError, RetryPolicy, retry_with_backoff

logger = logging.getLogger(__name__)

MAX_MUTATION_RETRIES = 3
MUTATION_BACKOFF_BASE_SECONDS = 2.0

NotifyLevel = Literal["notice", "error"]
Notify = Callable[[str, NotifyLevel], None]


class ReconcileState(str, Enum):
    UNKNOWN = "unknown"
    READING = "reading"
    NOT_FOUND = "not_found"
    FOUND = "found"
    CREATING = "creating"
    UPDATING = "updating"
    READY = "ready"
    DISPOSING = "disposing"
    DISPOSED = "disposed"


class ReconcileAction(str, Enum):
    """What the engine ended up doing to a resource."""

    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    SKIPPED = "skipped"
    DISPOSED = "disposed"
    DISPOSE_FAILED = "dispose_failed"
    ABSENT = "absent"
    PERMISSIONS = "permissions"


@dataclass(frozen=True)
class ReconcileOptions:
    """Per-call knobs for the engine.

    Attributes:
        retries: Budget for convergence waits (bounded or unbounded).
        mutation_retries: Budget for transient create/update failures.
        check_permissions: Only collect permissions; touch nothing.
        desired: Partial expected read payload, used when the descriptor
            does not carry its own.
        notify: Optional (message, level) callback for user-facing notices.
        collector: Shared collector that permission mode merges into.
        destroy: Reserved. Accepted but has no effect.
    """

    retries: RetryPolicy = field(default_factory=RetryPolicy)
    mutation_retries: RetryPolicy = field(
        default_factory=lambda: RetryPolicy.bounded(MAX_MUTATION_RETRIES, MUTATION_BACKOFF_BASE_SECONDS)
    )
    check_permissions: bool = False
    desired: Mapping[str, Any] | None = None
    notify: Notify | None = None
    collector: PermissionCollector | None = None
    destroy: bool = False


@dataclass
class ReconcileResult:
    """Outcome of reconciling one resource."""

    kind: str
    label: str | None = None
    action: ReconcileAction | None = None
    state: ReconcileState = ReconcileState.UNKNOWN
    resource: ResourceFields = field(default_factory=dict)
    permissions: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None

    @property
    def duration_seconds(self) -> float:
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    @property
    def name(self) -> str:
        return f"{self.kind} ({self.label})" if self.label else self.kind


class ResourceEngine:
    """Drives descriptors through the reconciliation state machine."""

    def __init__(
        self,
        reporter: ProgressReporter | None = None,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the engine.

        Args:
            reporter: Receives one progress event per transition.
            sleep: Awaitable sleep used between retries and convergence reads.
        """
        self._reporter = reporter or LoggingReporter()
        self._sleep = sleep

    async def reconcile(
        self,
        descriptor: ResourceDescriptor[Any],
        options: ReconcileOptions | None = None,
    ) -> ReconcileResult:
        """Bring one resource to its desired state.

        Args:
            descriptor: Lifecycle callbacks for the resource.
            options: Retry budgets, permission mode and notification hook.

        Returns:
            ReconcileResult carrying the public fields of the resource.

        Raises:
            FatalError: If the resource cannot be read, created or updated,
                or never yields its identifying field.
        """
        options = options or ReconcileOptions()
        description = descriptor.describe({})
        result = ReconcileResult(kind=description.type, label=description.label)

        try:
            if options.check_permissions:
                self._collect_permissions(descriptor, options, result)
            else:
                await self._reconcile(descriptor, options, result)
        except FatalError as e:
            self._report(result, ProgressAction.FAILED)
            self._notify(options, f"{result.name}: {e}", "error")
            raise
        finally:
            result.end_time = datetime.now(UTC)

        return result

    def _collect_permissions(
        self,
        descriptor: ResourceDescriptor[Any],
        options: ReconcileOptions,
        result: ReconcileResult,
    ) -> None:
        self._report(result, ProgressAction.CHECKING_PERMISSIONS)
        collector = PermissionCollector()
        if descriptor.emit_permissions is not None:
            descriptor.emit_permissions(collector)
        if options.collector is not None:
            options.collector.with_permissions(collector.actions)
        result.permissions = collector.actions
        result.action = ReconcileAction.PERMISSIONS

    async def _reconcile(
        self,
        descriptor: ResourceDescriptor[Any],
        options: ReconcileOptions,
        result: ReconcileResult,
    ) -> None:
        result.state = ReconcileState.READING
        self._report(result, ProgressAction.READING)

        try:
            existing = await self._read_once(descriptor, result)
        except SkippedAction as e:
            self._finish_skipped(result, {}, e)
            return

        if not descriptor.still_wanted():
            await self._dispose(descriptor, options, existing, result)
            return

        if descriptor.has_identity(existing):
            result.state = ReconcileState.FOUND
            if descriptor.update is None:
                result.resource = existing
                result.action = ReconcileAction.UNCHANGED
                result.state = ReconcileState.READY
                self._report(result, ProgressAction.UNCHANGED)
                return
            try:
                await self._update(descriptor, options, existing, result)
                return
            except NotFoundError:
                logger.info(
                    "Resource disappeared during update, recreating",
                    extra={"resource_kind": result.kind, "label": result.label},
                )
                result.state = ReconcileState.NOT_FOUND

        await self._create(descriptor, options, existing, result)

    async def _read_once(self, descriptor: ResourceDescriptor[Any], result: ReconcileResult) -> ResourceFields:
        try:
            raw = await descriptor.read()
        except (FatalError, SkippedAction):
            raise
        except Exception as e:
            if is_not_found(e):
                result.state = ReconcileState.NOT_FOUND
                return {}
            raise FatalError(f"read failed: {describe_error(e)}", resource=result.name) from e

        existing = descriptor.public_fields(raw)
        self._relabel(descriptor, result, existing)
        if not descriptor.has_identity(existing):
            result.state = ReconcileState.NOT_FOUND
        return existing

    async def _update(
        self,
        descriptor: ResourceDescriptor[Any],
        options: ReconcileOptions,
        existing: ResourceFields,
        result: ReconcileResult,
    ) -> None:
        update = descriptor.update
        if update is None:
            raise FatalError("resource exists and cannot be updated", resource=result.name)
        result.state = ReconcileState.UPDATING
        self._report(result, ProgressAction.UPDATING)

        try:
            await self._mutate(lambda: update(existing), options, result, "update")
        except SkippedAction as e:
            self._finish_skipped(result, existing, e)
            return

        result.resource = await self._converge(descriptor, options, result, tolerate_missing=False)
        result.action = ReconcileAction.UPDATED
        result.state = ReconcileState.READY
        self._report(result, ProgressAction.UPDATED)

    async def _create(
        self,
        descriptor: ResourceDescriptor[Any],
        options: ReconcileOptions,
        existing: ResourceFields,
        result: ReconcileResult,
    ) -> None:
        if descriptor.create is None:
            raise FatalError("resource does not exist and cannot be created", resource=result.name)
        create = descriptor.create

        result.state = ReconcileState.CREATING
        self._report(result, ProgressAction.CREATING)

        try:
            await self._mutate(create, options, result, "create")
        except SkippedAction as e:
            self._finish_skipped(result, existing, e)
            return
        except NotFoundError as e:
            raise FatalError(f"create failed: {e}", resource=result.name) from e

        result.resource = await self._converge(descriptor, options, result, tolerate_missing=True)
        result.action = ReconcileAction.CREATED
        result.state = ReconcileState.READY
        self._report(result, ProgressAction.CREATED)
        self._notify(options, f"Created {result.name}", "notice")

    async def _dispose(
        self,
        descriptor: ResourceDescriptor[Any],
        options: ReconcileOptions,
        existing: ResourceFields,
        result: ReconcileResult,
    ) -> None:
        if not descriptor.has_identity(existing):
            result.action = ReconcileAction.ABSENT
            return

        result.resource = existing
        if descriptor.dispose is None:
            logger.info(
                "Resource is no longer wanted but its kind is never disposed",
                extra={"resource_kind": result.kind, "label": result.label},
            )
            result.action = ReconcileAction.UNCHANGED
            result.state = ReconcileState.READY
            return

        result.state = ReconcileState.DISPOSING
        self._report(result, ProgressAction.DISPOSING)

        # Best-effort: a single attempt, failures become warnings
        try:
            await descriptor.dispose(existing)
        except Exception as e:
            message = f"Failed to dispose {result.name}: {describe_error(e)}"
            logger.warning(
                message,
                extra={"resource_kind": result.kind, "label": result.label, "error": str(e)},
            )
            result.warnings.append(message)
            result.action = ReconcileAction.DISPOSE_FAILED
            self._report(result, ProgressAction.FAILED)
            self._notify(options, message, "error")
            return

        result.action = ReconcileAction.DISPOSED
        result.state = ReconcileState.DISPOSED
        self._report(result, ProgressAction.DISPOSED)
        self._notify(options, f"Disposed {result.name}", "notice")

    async def _mutate(
        self,
        operation: Callable[[], Awaitable[Any]],
        options: ReconcileOptions,
        result: ReconcileResult,
        verb: str,
    ) -> None:
        """Run a create/update callback under the transient-error budget.

        Raises:
            SkippedAction: Passed through untouched.
            NotFoundError: The resource (or something it needs) is gone.
            FatalError: Non-retryable error, or the budget ran out.
        """
        try:
            await retry_with_backoff(
                operation,
                options.mutation_retries,
                operation_name=f"{verb} {result.name}",
                should_retry=lambda e: classify_error(e) == ErrorKind.TRANSIENT,
                sleep=self._sleep,
            )
        except RetryExhaustedError as e:
            raise FatalError(
                f"{verb} failed after {e.attempts} attempt(s): {describe_error(e.last_error)}",
                resource=result.name,
            ) from e.last_error
        except (SkippedAction, FatalError, NotFoundError):
            raise
        except Exception as e:
            if is_not_found(e, during_read=False):
                raise NotFoundError(describe_error(e)) from e
            raise FatalError(f"{verb} failed: {describe_error(e)}", resource=result.name) from e

    async def _converge(
        self,
        descriptor: ResourceDescriptor[Any],
        options: ReconcileOptions,
        result: ReconcileResult,
        *,
        tolerate_missing: bool,
    ) -> ResourceFields:
        """Re-read until the payload matches the desired subset.

        Args:
            tolerate_missing: Treat not-found as "not converged yet" instead
                of raising NotFoundError (right after a create).

        Returns:
            Public fields of the converged resource.

        Raises:
            NotFoundError: Resource missing and tolerate_missing is False.
            ConvergenceError: Retry budget ran out first.
        """
        desired = descriptor.desired if descriptor.desired is not None else options.desired
        policy = options.retries
        retry_number = 0

        while True:
            try:
                raw = await descriptor.read()
            except FatalError:
                raise
            except Exception as e:
                if not is_not_found(e):
                    raise FatalError(f"read failed: {describe_error(e)}", resource=result.name) from e
                if not tolerate_missing:
                    raise NotFoundError(describe_error(e)) from e
                raw = None

            fields = descriptor.public_fields(raw)
            if not descriptor.has_identity(fields):
                differences = {descriptor.identity_field: Difference(expected="<present>", actual=None)}
            else:
                differences = find_differences(desired, raw)

            if not differences:
                self._relabel(descriptor, result, fields)
                return fields

            retry_number += 1
            if not policy.allows_retry(retry_number):
                raise ConvergenceError(
                    f"did not converge after {retry_number} read(s)",
                    resource=result.name,
                    differences=dict(differences),
                )

            if retry_number == 1:
                self._report(result, ProgressAction.WAITING)
            wait_time = policy.delay(retry_number)
            logger.debug(
                "Waiting for resource to converge",
                extra={
                    "resource_kind": result.kind,
                    "label": result.label,
                    "retry": retry_number,
                    "wait_seconds": wait_time,
                    "mismatched": sorted(differences),
                },
            )
            await self._sleep(wait_time)

    def _finish_skipped(self, result: ReconcileResult, existing: ResourceFields, reason: SkippedAction) -> None:
        logger.info(
            "Resource action skipped",
            extra={"resource_kind": result.kind, "label": result.label, "reason": str(reason)},
        )
        result.resource = existing
        result.action = ReconcileAction.SKIPPED
        result.state = ReconcileState.READY if existing else result.state
        self._report(result, ProgressAction.SKIPPED)

    def _relabel(self, descriptor: ResourceDescriptor[Any], result: ReconcileResult, fields: ResourceFields) -> None:
        label = descriptor.describe(fields).label
        if label:
            result.label = label

    def _report(self, result: ReconcileResult, action: ProgressAction) -> None:
        self._reporter.report(ProgressEvent(kind=result.kind, action=action, label=result.label))

    def _notify(self, options: ReconcileOptions, message: str, level: NotifyLevel) -> None:
        if options.notify is not None:
            options.notify(message, level)

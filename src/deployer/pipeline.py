"""Deploy pipeline: orders resource reconciliation and wires outputs.

Steps run in dependency order; each writes its outputs to the shared
DeployStatus for the steps after it:

    registry -> secret -> declared resources -> role -> role policy
             -> function -> function code -> subscriptions
             -> schedule group -> schedules

Independent resources within a step (declared resources, subscriptions,
schedules) are reconciled concurrently.

ERROR HANDLING: A FatalError aborts the deploy unless continue_on_error is
set, in which case the error is recorded and later steps still run with
whatever outputs exist.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from .address import ManagedAddress
from .aws import ecr, iam, lambda_function, schedule, secret
from .aws.clients import AwsClients
from .aws.resources import grant_runtime_access, managed_addresses, subscription_descriptors
from .config import Config
from .descriptor import ResourceDescriptor
from .engine import Notify, ReconcileOptions, ReconcileResult, ResourceEngine
from .errors import FatalError
from .models import FILE_SYSTEM_SERVICE, DeploySpec, ScheduleName
from .permissions import PermissionAggregator
from .policy import PolicyDocument
from .status import DeployStatus, MissingStatusError

logger = logging.getLogger(__name__)

DEFAULT_SECRET_VALUE = b"{}"
SECRET_ENV_KEY = "SECRET_ARN"
MANAGED_BY_TAG = "managed-by"
MANAGED_BY_VALUE = "deployer"


class _AbortSignal(Exception):
    """Internal signal: a concurrent step failed and the deploy must stop.

    The failures themselves are already recorded on the DeployResult.
    """

    pass


@dataclass
class DeployResult:
    """Result of a single deploy run."""

    app_name: str
    status: DeployStatus
    results: list[ReconcileResult] = field(default_factory=list)
    errors: list[Exception] = field(default_factory=list)
    environment: dict[str, str] = field(default_factory=dict)
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None

    @property
    def duration_seconds(self) -> float:
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    @property
    def success(self) -> bool:
        return not self.errors

    @property
    def warnings(self) -> list[str]:
        return [w for r in self.results for w in r.warnings]


class DeployPipeline:
    """Deploys one application onto Lambda."""

    def __init__(
        self,
        config: Config,
        spec: DeploySpec,
        *,
        clients: AwsClients | None = None,
        engine: ResourceEngine | None = None,
        secret_value: bytes = DEFAULT_SECRET_VALUE,
        notify: Notify | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            config: Deployer configuration.
            spec: Validated deploy spec.
            clients: AWS client access (created from config if omitted).
            engine: Reconciliation engine (default logs progress).
            secret_value: Payload stored in the deploy secret.
            notify: Optional (message, level) hook for user-facing notices.
        """
        self._config = config
        self._spec = spec
        self._name = spec.name or config.app_name
        self._clients = clients or AwsClients(config.region, timeout_seconds=config.call_timeout_seconds)
        self._engine = engine or ResourceEngine()
        self._secret_value = secret_value
        self._tags = {MANAGED_BY_TAG: MANAGED_BY_VALUE, "app": self._name, **spec.tags}
        self._options = ReconcileOptions(
            retries=config.convergence_retry_policy,
            mutation_retries=config.mutation_retry_policy,
            notify=notify,
            destroy=config.destroy,
        )
        self._managed: list[ManagedAddress] = []

    @property
    def name(self) -> str:
        return self._name

    async def run(self, status: DeployStatus | None = None) -> DeployResult:
        """Reconcile every resource of the application.

        Args:
            status: Status from an earlier stage (e.g. the image builder's
                `image_uri`). A fresh one is created if omitted.

        Returns:
            DeployResult; check `success` and `errors`.
        """
        if status is None:
            status = DeployStatus({"image_uri": self._config.image_uri} if self._config.image_uri else None)
        result = DeployResult(app_name=self._name, status=status)

        if self._config.destroy:
            logger.warning("DESTROY is reserved and has no effect", extra={"app": self._name})

        logger.info(
            "Starting deploy",
            extra={"app": self._name, "region": self._clients.region, "resources": len(self._spec.resources)},
        )

        steps: list[Callable[[DeployStatus, DeployResult], Awaitable[None]]] = [
            self._deploy_registry,
            self._deploy_secret,
            self._deploy_resources,
            self._deploy_role,
            self._deploy_function,
            self._deploy_subscriptions,
            self._deploy_schedules,
        ]

        for step in steps:
            try:
                await step(status, result)
            except (FatalError, MissingStatusError) as e:
                logger.error(
                    "Deploy step failed",
                    extra={"app": self._name, "step": step.__name__, "error": str(e)},
                )
                result.errors.append(e)
                if not self._config.continue_on_error:
                    break
            except _AbortSignal:
                break

        result.end_time = datetime.now(UTC)
        self._log_result(result)
        return result

    async def permissions(self) -> PolicyDocument:
        """Least-privilege policy the deployer itself needs.

        Issues no provider calls.
        """
        status = DeployStatus()
        region = self._clients.region
        aggregator = PermissionAggregator(self._engine)

        aggregator.add(ecr.registry_descriptor(self._clients, self._name), ecr.repository_scope(self._name, region))
        aggregator.add(
            secret.secret_descriptor(self._clients, self._name, lambda: self._secret_value),
            secret.secret_scope(self._name, region),
        )
        for managed in self._managed_addresses(status):
            descriptor = managed.descriptor()
            if descriptor is not None:
                aggregator.add(descriptor, managed.declared)
        aggregator.add(iam.role_descriptor(self._clients, self._role_name), iam.role_scope(self._role_name))
        aggregator.add(
            iam.role_policy_descriptor(self._clients, self._role_name, lambda: self._runtime_policy(status)),
            iam.role_scope(self._role_name),
        )

        function_scope = lambda_function.function_scope(self._name, region)
        aggregator.add(
            lambda_function.function_descriptor(
                self._clients,
                status,
                self._name,
                self._spec,
                lambda: self._environment(status),
                tags=self._tags,
            ),
            function_scope,
        )
        aggregator.add(lambda_function.function_code_descriptor(self._clients, status, self._name), function_scope)
        # Subscriptions are not resource-scoped
        for descriptor in subscription_descriptors(
            self._managed_addresses(status),
            self._clients,
            function_name=self._name,
            function_arn=function_scope,
            preview=True,
        ):
            aggregator.add(descriptor)

        aggregator.add(
            schedule.schedule_group_descriptor(self._clients, self._name),
            schedule.schedule_group_scope(self._name, region),
        )
        for name in ScheduleName:
            aggregator.add(
                self._schedule_descriptor(status, name),
                schedule.schedule_scope(self._name, region),
            )

        return await aggregator.aggregate()

    @property
    def _role_name(self) -> str:
        return f"{self._name}-{self._clients.region}"

    def _managed_addresses(self, status: DeployStatus) -> list[ManagedAddress]:
        return managed_addresses(
            self._spec.addresses,
            self._clients,
            status,
            engine=self._engine,
            options=self._options,
            tags=self._tags,
        )

    def _schedule_descriptor(self, status: DeployStatus, name: ScheduleName) -> ResourceDescriptor[Any]:
        return schedule.schedule_descriptor(
            self._clients,
            status,
            group_name=self._name,
            function_name=self._name,
            schedule=name,
            commands=self._spec.commands_for(name),
        )

    async def _reconcile(self, descriptor: ResourceDescriptor[Any], result: DeployResult) -> ReconcileResult:
        outcome = await self._engine.reconcile(descriptor, self._options)
        result.results.append(outcome)
        return outcome

    async def _gather(self, awaitables: list[Awaitable[Any]], result: DeployResult) -> list[Any]:
        """Run independent reconciliations concurrently.

        Raises:
            _AbortSignal: If any failed and continue_on_error is off.
        """
        outcomes = await asyncio.gather(*awaitables, return_exceptions=True)
        values = []
        failed = False
        for outcome in outcomes:
            if isinstance(outcome, (FatalError, MissingStatusError)):
                logger.error("Resource failed", extra={"app": self._name, "error": str(outcome)})
                result.errors.append(outcome)
                failed = True
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                values.append(outcome)
        if failed and not self._config.continue_on_error:
            raise _AbortSignal()
        return values

    async def _deploy_registry(self, status: DeployStatus, result: DeployResult) -> None:
        outcome = await self._reconcile(ecr.registry_descriptor(self._clients, self._name, tags=self._tags), result)
        status.write("registry", registry_arn=outcome.resource.get("arn"), registry_uri=outcome.resource.get("uri"))

    async def _deploy_secret(self, status: DeployStatus, result: DeployResult) -> None:
        descriptor = secret.secret_descriptor(self._clients, self._name, lambda: self._secret_value, tags=self._tags)
        outcome = await self._reconcile(descriptor, result)
        status.write(
            "secret",
            secret_arn=outcome.resource.get("arn"),
            secret_name=outcome.resource.get("name"),
            unique_id=outcome.resource.get("unique_id"),
        )

    async def _deploy_resources(self, status: DeployStatus, result: DeployResult) -> None:
        status.require("unique_id", needed_by="declared resources")
        self._managed = self._managed_addresses(status)

        await self._gather([m.resolve() for m in self._managed], result)
        for managed in self._managed:
            if managed.result is not None:
                result.results.append(managed.result)

        environment: dict[str, str] = {}
        for managed in self._managed:
            if managed.resolved is not None:
                environment.update(await managed.env())
        status.write("resources", resource_env=environment, **self._file_system_fields())

    def _file_system_fields(self) -> dict[str, Any]:
        """Mount and network settings of the declared file system, if any."""
        for managed in self._managed:
            if managed.declared.service != FILE_SYSTEM_SERVICE or managed.result is None:
                continue
            fields = managed.result.resource
            if not fields.get("access_point_arn"):
                continue
            if not fields.get("subnet_ids"):
                logger.warning(
                    "File system has no mount targets, not mounting it",
                    extra={"app": self._name, "file_system_id": fields.get("file_system_id")},
                )
                continue
            return {
                "file_system_mount": {
                    "Arn": fields["access_point_arn"],
                    "LocalMountPath": fields["mount_path"],
                },
                "vpc_config": {
                    "SubnetIds": fields["subnet_ids"],
                    "SecurityGroupIds": fields.get("security_group_ids") or [],
                },
            }
        return {}

    async def _deploy_role(self, status: DeployStatus, result: DeployResult) -> None:
        outcome = await self._reconcile(iam.role_descriptor(self._clients, self._role_name, tags=self._tags), result)
        status.write("role", role_arn=outcome.resource.get("arn"), role_name=outcome.resource.get("name"))

        def policy() -> PolicyDocument:
            return self._runtime_policy(status)

        await self._reconcile(iam.role_policy_descriptor(self._clients, self._role_name, policy), result)

    def _runtime_policy(self, status: DeployStatus) -> PolicyDocument:
        """Permissions granted to the deployed function."""
        region = self._clients.region
        document = PolicyDocument()
        document.add(iam.BASE_FUNCTION_ACTIONS, ["*"])
        secret_arn = status.get("secret_arn")
        document.add(
            ["secretsmanager:GetSecretValue"],
            [secret_arn] if secret_arn else [secret.secret_scope(self._name, region)],
        )
        grant_runtime_access(document, self._managed)
        if status.get("vpc_config"):
            document.add(iam.VPC_ACCESS_ACTIONS, ["*"])
        # The scheduler assumes this role to invoke the function
        document.add(["lambda:InvokeFunction"], [lambda_function.function_scope(self._name, region)])
        return document

    def _environment(self, status: DeployStatus) -> dict[str, str]:
        environment = dict(status.get("resource_env") or {})
        secret_arn = status.get("secret_arn")
        if secret_arn:
            environment[SECRET_ENV_KEY] = secret_arn
        return environment

    async def _deploy_function(self, status: DeployStatus, result: DeployResult) -> None:
        status.require("role_arn", needed_by="function")
        descriptor = lambda_function.function_descriptor(
            self._clients,
            status,
            self._name,
            self._spec,
            lambda: self._environment(status),
            tags=self._tags,
        )
        outcome = await self._reconcile(descriptor, result)
        result.environment = self._environment(status)
        status.write(
            "function",
            function_arn=outcome.resource.get("arn"),
            function_name=outcome.resource.get("name"),
            architecture=outcome.resource.get("architecture"),
        )

        if status.get("function_arn"):
            await self._reconcile(lambda_function.function_code_descriptor(self._clients, status, self._name), result)

    async def _deploy_subscriptions(self, status: DeployStatus, result: DeployResult) -> None:
        function_arn = status.get("function_arn")
        if not function_arn:
            return
        descriptors = subscription_descriptors(
            self._managed,
            self._clients,
            function_name=self._name,
            function_arn=function_arn,
        )
        await self._gather([self._reconcile(d, result) for d in descriptors], result)

    async def _deploy_schedules(self, status: DeployStatus, result: DeployResult) -> None:
        outcome = await self._reconcile(
            schedule.schedule_group_descriptor(self._clients, self._name, tags=self._tags), result
        )
        status.write("schedule", schedule_group_arn=outcome.resource.get("arn"))

        descriptors = [self._schedule_descriptor(status, name) for name in ScheduleName]
        await self._gather([self._reconcile(d, result) for d in descriptors], result)

    def _log_result(self, result: DeployResult) -> None:
        extra = {
            "app": self._name,
            "duration_seconds": result.duration_seconds,
            "resources": len(result.results),
            "actions": {r.name: r.action.value if r.action else None for r in result.results},
        }
        if result.success:
            logger.info("Deploy completed", extra=extra)
        else:
            logger.error("Deploy failed", extra={**extra, "errors": [str(e) for e in result.errors]})
        for warning in result.warnings:
            logger.warning(warning, extra={"app": self._name})

"""Compute function (Lambda), its code, and stream subscriptions.

Lambda applies configuration asynchronously: after CreateFunction or
UpdateFunctionConfiguration the function stays Pending/InProgress for a
while, and any further update is rejected until it settles. The function
descriptor therefore carries a desired state the engine waits for.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any

from ..descriptor import Description, ResourceDescriptor
from ..errors import NotFoundError, SkippedAction
from ..models import DeploySpec
from ..policy import PermissionCollector
from ..status import DeployStatus
from .clients import AwsClients

FUNCTION_KIND = "Lambda Function"
FUNCTION_CODE_KIND = "Lambda Function Code"
SUBSCRIPTION_KIND = "Event Subscription"

ACTIVE_STATE = "Active"
SUCCESSFUL_UPDATE = "Successful"


def function_scope(name: str, region: str) -> str:
    return f"arn:*:lambda:{region}:*:function:{name}*"


def _configuration(response: dict[str, Any]) -> dict[str, Any]:
    return response.get("Configuration") or {}


def function_descriptor(
    clients: AwsClients,
    status: DeployStatus,
    name: str,
    spec: DeploySpec,
    environment: Callable[[], dict[str, str]],
    *,
    tags: dict[str, str] | None = None,
) -> ResourceDescriptor[dict[str, Any]]:
    """Build the descriptor for the application's function.

    Reads `role_arn` and `image_uri` from the deploy status when it runs.
    Creation is skipped while no image has been built.
    """
    role_arn = status.get("role_arn")
    desired_configuration: dict[str, Any] = {
        "State": ACTIVE_STATE,
        "LastUpdateStatus": SUCCESSFUL_UPDATE,
        "Timeout": spec.timeout,
        "MemorySize": spec.memory_size,
    }
    if role_arn:
        desired_configuration["Role"] = role_arn

    def network_settings() -> dict[str, Any]:
        settings: dict[str, Any] = {}
        mount = status.get("file_system_mount")
        if mount:
            settings["FileSystemConfigs"] = [dict(mount)]
        vpc_config = status.get("vpc_config")
        if vpc_config:
            settings["VpcConfig"] = dict(vpc_config)
        return settings

    async def read() -> dict[str, Any]:
        return await clients.call("lambda", "get_function", FunctionName=name)

    def extract(response: dict[str, Any]) -> dict[str, Any]:
        configuration = _configuration(response)
        architectures = configuration.get("Architectures") or [spec.architecture]
        return {
            "arn": configuration.get("FunctionArn"),
            "name": configuration.get("FunctionName"),
            "architecture": architectures[0],
            "image_uri": (response.get("Code") or {}).get("ImageUri"),
        }

    async def create() -> None:
        image_uri = status.get("image_uri")
        if not image_uri:
            raise SkippedAction(f"No image has been built for {name}")
        await clients.call(
            "lambda",
            "create_function",
            FunctionName=name,
            Role=status.require("role_arn", needed_by=FUNCTION_KIND),
            PackageType="Image",
            Code={"ImageUri": image_uri},
            Timeout=spec.timeout,
            MemorySize=spec.memory_size,
            Architectures=[spec.architecture],
            Environment={"Variables": environment()},
            Tags=dict(tags or {}),
            **network_settings(),
        )

    async def update(existing: Mapping[str, Any]) -> None:
        await clients.call(
            "lambda",
            "update_function_configuration",
            FunctionName=name,
            Role=status.require("role_arn", needed_by=FUNCTION_KIND),
            Timeout=spec.timeout,
            MemorySize=spec.memory_size,
            Environment={"Variables": environment()},
            **network_settings(),
        )

    def emit_permissions(collector: PermissionCollector) -> None:
        collector.with_permissions(
            [
                "lambda:GetFunction",
                "lambda:CreateFunction",
                "lambda:UpdateFunctionConfiguration",
                "lambda:TagResource",
            ]
        )

    return ResourceDescriptor(
        describe=lambda fields: Description(FUNCTION_KIND, fields.get("name") or name),
        read=read,
        extract=extract,
        create=create,
        update=update,
        emit_permissions=emit_permissions,
        desired={"Configuration": desired_configuration},
    )


def function_code_descriptor(
    clients: AwsClients,
    status: DeployStatus,
    name: str,
) -> ResourceDescriptor[dict[str, Any]]:
    """Point an existing function at the latest built image.

    Update-only: the function itself is created by `function_descriptor`.
    """

    async def read() -> dict[str, Any]:
        return await clients.call("lambda", "get_function", FunctionName=name)

    def extract(response: dict[str, Any]) -> dict[str, Any]:
        return {
            "arn": _configuration(response).get("FunctionArn"),
            "image_uri": (response.get("Code") or {}).get("ImageUri"),
        }

    async def update(existing: Mapping[str, Any]) -> None:
        image_uri = status.get("image_uri")
        if not image_uri:
            raise SkippedAction(f"No image has been built for {name}")
        if image_uri == existing.get("image_uri"):
            raise SkippedAction(f"{name} already runs {image_uri}")
        await clients.call("lambda", "update_function_code", FunctionName=name, ImageUri=image_uri)

    def emit_permissions(collector: PermissionCollector) -> None:
        collector.with_permissions(["lambda:GetFunction", "lambda:UpdateFunctionCode"])

    return ResourceDescriptor(
        describe=lambda fields: Description(FUNCTION_CODE_KIND, name),
        read=read,
        extract=extract,
        update=update,
        emit_permissions=emit_permissions,
        desired={"Configuration": {"LastUpdateStatus": SUCCESSFUL_UPDATE}},
    )


def subscription_descriptor(
    clients: AwsClients,
    function_name: str,
    source_arn: str,
) -> ResourceDescriptor[dict[str, Any]]:
    """Wire a stream (e.g. a table's change stream) to the function."""

    async def read() -> dict[str, Any]:
        response = await clients.call(
            "lambda",
            "list_event_source_mappings",
            EventSourceArn=source_arn,
            FunctionName=function_name,
        )
        mappings = response.get("EventSourceMappings") or []
        if not mappings:
            raise NotFoundError(f"No subscription from {source_arn} to {function_name}")
        return mappings[0]

    def extract(mapping: dict[str, Any]) -> dict[str, Any]:
        return {
            "uuid": mapping.get("UUID"),
            "arn": mapping.get("EventSourceMappingArn"),
            "source_arn": mapping.get("EventSourceArn"),
            "state": mapping.get("State"),
        }

    async def create() -> None:
        await clients.call(
            "lambda",
            "create_event_source_mapping",
            EventSourceArn=source_arn,
            FunctionName=function_name,
            StartingPosition="LATEST",
            Enabled=True,
        )

    async def update(existing: Mapping[str, Any]) -> None:
        if existing.get("state") == "Enabled":
            raise SkippedAction("Subscription already enabled")
        await clients.call(
            "lambda",
            "update_event_source_mapping",
            UUID=existing["uuid"],
            FunctionName=function_name,
            Enabled=True,
        )

    def emit_permissions(collector: PermissionCollector) -> None:
        collector.with_permissions(
            [
                "lambda:ListEventSourceMappings",
                "lambda:CreateEventSourceMapping",
                "lambda:UpdateEventSourceMapping",
            ]
        )

    return ResourceDescriptor(
        describe=lambda fields: Description(SUBSCRIPTION_KIND, f"{source_arn} -> {function_name}"),
        read=read,
        extract=extract,
        identity_field="uuid",
        create=create,
        update=update,
        emit_permissions=emit_permissions,
        desired={"State": "Enabled"},
    )

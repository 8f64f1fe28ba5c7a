"""Scheduled invocations (EventBridge Scheduler).

One schedule group per application and one schedule per recurring
interval. A schedule whose interval no longer has any commands is disposed.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

from ..descriptor import Description, ResourceDescriptor
from ..errors import SkippedAction
from ..models import ScheduleName
from ..policy import PermissionCollector
from ..status import DeployStatus
from .clients import AwsClients, tag_list

SCHEDULE_GROUP_KIND = "Schedule Group"
SCHEDULE_KIND = "Schedule"

# ScheduleName -> (expression, flexible time window)
SCHEDULE_EXPRESSIONS: dict[ScheduleName, tuple[str, dict[str, Any]]] = {
    ScheduleName.FREQUENTLY: ("rate(5 minutes)", {"Mode": "FLEXIBLE", "MaximumWindowInMinutes": 5}),
    ScheduleName.HOURLY: ("rate(1 hour)", {"Mode": "OFF"}),
    ScheduleName.DAILY: ("rate(1 day)", {"Mode": "OFF"}),
}


def schedule_group_scope(group_name: str, region: str) -> str:
    return f"arn:*:scheduler:{region}:*:schedule-group/{group_name}"


def schedule_scope(group_name: str, region: str) -> str:
    return f"arn:*:scheduler:{region}:*:schedule/{group_name}/*"


def schedule_name_for(function_name: str, schedule: ScheduleName) -> str:
    return f"{function_name}--{schedule.value.lstrip('@')}"


def schedule_group_descriptor(
    clients: AwsClients,
    name: str,
    *,
    tags: dict[str, str] | None = None,
) -> ResourceDescriptor[dict[str, Any]]:
    """Create-only schedule group."""

    async def read() -> dict[str, Any]:
        return await clients.call("scheduler", "get_schedule_group", Name=name)

    def extract(response: dict[str, Any]) -> dict[str, Any]:
        return {"arn": response.get("Arn"), "name": response.get("Name"), "state": response.get("State")}

    async def create() -> None:
        await clients.call("scheduler", "create_schedule_group", Name=name, Tags=tag_list(tags or {}))

    def emit_permissions(collector: PermissionCollector) -> None:
        collector.with_permissions(["scheduler:GetScheduleGroup", "scheduler:CreateScheduleGroup"])

    return ResourceDescriptor(
        describe=lambda fields: Description(SCHEDULE_GROUP_KIND, name),
        read=read,
        extract=extract,
        create=create,
        emit_permissions=emit_permissions,
        desired={"State": "ACTIVE"},
    )


def schedule_descriptor(
    clients: AwsClients,
    status: DeployStatus,
    *,
    group_name: str,
    function_name: str,
    schedule: ScheduleName,
    commands: list[str],
) -> ResourceDescriptor[dict[str, Any]]:
    """One recurring schedule invoking the function with its commands.

    Wanted only while at least one command runs on this interval.
    """
    name = schedule_name_for(function_name, schedule)
    expression, window = SCHEDULE_EXPRESSIONS[schedule]

    def target() -> dict[str, Any]:
        function_arn = status.get("function_arn")
        role_arn = status.get("role_arn")
        if not function_arn or not role_arn:
            raise SkippedAction(f"Nothing to schedule for {name}: function is not deployed")
        return {
            "Arn": function_arn,
            "RoleArn": role_arn,
            "Input": json.dumps({"schedule": schedule.value, "commands": commands}),
        }

    def request() -> dict[str, Any]:
        return {
            "Name": name,
            "GroupName": group_name,
            "ScheduleExpression": expression,
            "FlexibleTimeWindow": window,
            "Target": target(),
            "State": "ENABLED",
        }

    async def read() -> dict[str, Any]:
        return await clients.call("scheduler", "get_schedule", GroupName=group_name, Name=name)

    def extract(response: dict[str, Any]) -> dict[str, Any]:
        return {"arn": response.get("Arn"), "name": response.get("Name"), "expression": response.get("ScheduleExpression")}

    async def create() -> None:
        await clients.call("scheduler", "create_schedule", **request())

    async def update(existing: Mapping[str, Any]) -> None:
        await clients.call("scheduler", "update_schedule", **request())

    async def dispose(existing: Mapping[str, Any]) -> None:
        await clients.call("scheduler", "delete_schedule", GroupName=group_name, Name=name)

    def emit_permissions(collector: PermissionCollector) -> None:
        collector.with_permissions(
            [
                "scheduler:GetSchedule",
                "scheduler:CreateSchedule",
                "scheduler:UpdateSchedule",
                "scheduler:DeleteSchedule",
            ]
        )

    return ResourceDescriptor(
        describe=lambda fields: Description(SCHEDULE_KIND, f"{name} {expression}"),
        read=read,
        extract=extract,
        create=create,
        update=update,
        dispose=dispose,
        emit_permissions=emit_permissions,
        still_wanted=lambda: bool(commands),
        desired={"ScheduleExpression": expression, "State": "ENABLED"},
    )

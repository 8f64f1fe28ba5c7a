"""Declared tables (DynamoDB).

Tables use a generic `pk`/`sk` key schema, on-demand billing and a change
stream, and are never modified after creation.
"""

from __future__ import annotations

from typing import Any

from ..address import ResourceAddress
from ..descriptor import Description, ResourceDescriptor
from ..policy import ActionSet, PermissionCollector
from ..status import DeployStatus
from .clients import AwsClients, tag_list
from .secret import suffixed_name

TABLE_KIND = "DynamoDB Table"

RUNTIME_ACTIONS = ActionSet(
    create=("dynamodb:*Put*", "dynamodb:*Create*", "dynamodb:*Start*", "dynamodb:*Import*", "dynamodb:*Write*"),
    read=(
        "dynamodb:*Scan*",
        "dynamodb:*Query*",
        "dynamodb:*Get*",
        "dynamodb:*Describe*",
        "dynamodb:*List*",
        "dynamodb:*Select*",
        "dynamodb:*Check*",
        "dynamodb:*Export*",
    ),
    update=("dynamodb:*Update*", "dynamodb:*Modify*", "dynamodb:*Enable*", "dynamodb:*Restore*"),
    delete=("dynamodb:*Delete*", "dynamodb:*Disable*"),
    subscribe=("dynamodb:*Stream*", "dynamodb:*Shard*", "dynamodb:*Records*"),
)


def table_descriptor(
    clients: AwsClients,
    status: DeployStatus,
    address: ResourceAddress,
    *,
    tags: dict[str, str] | None = None,
) -> ResourceDescriptor[dict[str, Any]]:
    """Build the descriptor for a declared table."""

    def table_name() -> str:
        return suffixed_name(address, status)

    async def read() -> dict[str, Any]:
        return await clients.call("dynamodb", "describe_table", TableName=table_name())

    def extract(response: dict[str, Any]) -> dict[str, Any]:
        table = response.get("Table") or {}
        return {
            "arn": table.get("TableArn"),
            "name": table.get("TableName"),
            "subscription_arn": table.get("LatestStreamArn"),
        }

    async def create() -> None:
        await clients.call(
            "dynamodb",
            "create_table",
            TableName=table_name(),
            AttributeDefinitions=[
                {"AttributeName": "pk", "AttributeType": "S"},
                {"AttributeName": "sk", "AttributeType": "S"},
            ],
            KeySchema=[
                {"AttributeName": "pk", "KeyType": "HASH"},
                {"AttributeName": "sk", "KeyType": "RANGE"},
            ],
            BillingMode="PAY_PER_REQUEST",
            StreamSpecification={"StreamEnabled": True, "StreamViewType": "NEW_AND_OLD_IMAGES"},
            Tags=tag_list(tags or {}),
        )

    def emit_permissions(collector: PermissionCollector) -> None:
        collector.with_permissions(["dynamodb:DescribeTable", "dynamodb:CreateTable", "dynamodb:TagResource"])
        if address.has_subscribe:
            collector.with_permissions(["dynamodb:DescribeStream", "dynamodb:ListStreams"])

    return ResourceDescriptor(
        describe=lambda fields: Description(TABLE_KIND, fields.get("name") or table_name()),
        read=read,
        extract=extract,
        create=create,
        emit_permissions=emit_permissions,
        desired={"Table": {"TableStatus": "ACTIVE"}},
    )

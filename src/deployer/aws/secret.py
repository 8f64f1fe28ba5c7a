"""Deploy secret (Secrets Manager).

The secret's ARN also seeds the unique id that suffixes every lazily
provisioned resource name, so names stay stable across deploys of the same
application and differ between applications sharing an account.
"""

from __future__ import annotations

import hashlib
from collections.abc import Callable, Mapping
from typing import Any

from ..address import ResourceAddress
from ..descriptor import Description, ResourceDescriptor
from ..policy import PermissionCollector
from ..status import DeployStatus
from .clients import AwsClients, tag_list

SECRET_KIND = "Secret"
UNIQUE_ID_LENGTH = 8


def unique_id_for(arn: str) -> str:
    """First 8 hex digits of the SHA-256 of an ARN."""
    return hashlib.sha256(arn.encode("utf-8")).hexdigest()[:UNIQUE_ID_LENGTH]


def secret_scope(name: str, region: str) -> str:
    return f"arn:*:secretsmanager:{region}:*:secret:{name}*"


def secret_descriptor(
    clients: AwsClients,
    name: str,
    value: Callable[[], bytes],
    *,
    tags: dict[str, str] | None = None,
) -> ResourceDescriptor[dict[str, Any]]:
    """Build the descriptor for the deploy secret.

    Args:
        clients: AWS client access.
        name: Secret name.
        value: Produces the secret payload; called on create and update only.
        tags: Tags applied on creation.
    """

    async def read() -> dict[str, Any]:
        return await clients.call("secretsmanager", "describe_secret", SecretId=name)

    def extract(response: dict[str, Any]) -> dict[str, Any]:
        arn = response.get("ARN")
        return {
            "arn": arn,
            "name": response.get("Name"),
            "unique_id": unique_id_for(arn) if arn else None,
        }

    async def create() -> None:
        await clients.call(
            "secretsmanager",
            "create_secret",
            Name=name,
            SecretBinary=value(),
            Tags=tag_list(tags or {}),
        )

    async def update(existing: Mapping[str, Any]) -> None:
        await clients.call("secretsmanager", "put_secret_value", SecretId=existing["arn"], SecretBinary=value())

    def emit_permissions(collector: PermissionCollector) -> None:
        collector.with_permissions(
            [
                "secretsmanager:DescribeSecret",
                "secretsmanager:CreateSecret",
                "secretsmanager:PutSecretValue",
                "secretsmanager:TagResource",
            ]
        )

    return ResourceDescriptor(
        describe=lambda fields: Description(SECRET_KIND, fields.get("name") or name),
        read=read,
        extract=extract,
        create=create,
        update=update,
        emit_permissions=emit_permissions,
    )


def suffixed_name(address: ResourceAddress, status: DeployStatus) -> str:
    """Declared name suffixed with the deploy's unique id, once known."""
    unique_id = status.get("unique_id")
    return f"{address.name}-{unique_id}" if unique_id else address.name

"""Container registry (ECR repository).

Immutable once created: there is no update callback.
"""

from __future__ import annotations

from typing import Any

from ..descriptor import Description, ResourceDescriptor
from ..errors import NotFoundError
from ..policy import PermissionCollector
from .clients import AwsClients, tag_list

REGISTRY_KIND = "Container Registry"


def repository_scope(name: str, region: str) -> str:
    return f"arn:*:ecr:{region}:*:repository/{name}"


def registry_descriptor(
    clients: AwsClients,
    name: str,
    *,
    tags: dict[str, str] | None = None,
) -> ResourceDescriptor[dict[str, Any]]:
    """Build the descriptor for the application's image repository."""

    async def read() -> dict[str, Any]:
        response = await clients.call("ecr", "describe_repositories", repositoryNames=[name])
        repositories = response.get("repositories") or []
        if not repositories:
            raise NotFoundError(f"Repository {name} not found")
        return repositories[0]

    def extract(repository: dict[str, Any]) -> dict[str, Any]:
        return {
            "arn": repository.get("repositoryArn"),
            "name": repository.get("repositoryName"),
            "uri": repository.get("repositoryUri"),
        }

    async def create() -> None:
        await clients.call(
            "ecr",
            "create_repository",
            repositoryName=name,
            imageTagMutability="MUTABLE",
            imageScanningConfiguration={"scanOnPush": False},
            tags=tag_list(tags or {}),
        )

    def emit_permissions(collector: PermissionCollector) -> None:
        collector.with_permissions(["ecr:DescribeRepositories", "ecr:CreateRepository", "ecr:TagResource"])

    return ResourceDescriptor(
        describe=lambda fields: Description(REGISTRY_KIND, fields.get("uri") or name),
        read=read,
        extract=extract,
        create=create,
        emit_permissions=emit_permissions,
    )

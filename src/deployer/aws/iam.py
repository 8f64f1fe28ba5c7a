"""Execution role (IAM) and its inline policy.

The role and its inline policy are two descriptors. Right after CreateRole
the role may not be visible yet; the engine's post-create convergence read
tolerates that, so the policy is only attached once the role is readable.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any

from ..descriptor import Description, ResourceDescriptor
from ..policy import PermissionCollector, PolicyDocument, PolicyStatement
from .clients import AwsClients, tag_list

ROLE_KIND = "IAM Role"
ROLE_POLICY_KIND = "IAM Role Policy"
INLINE_POLICY_NAME = "deployer-policy"

TRUSTED_SERVICES = ("lambda.amazonaws.com", "scheduler.amazonaws.com")

# Granted to every function regardless of declared resources
BASE_FUNCTION_ACTIONS = (
    "logs:CreateLogGroup",
    "logs:CreateLogStream",
    "logs:PutLogEvents",
    "xray:PutTraceSegments",
    "xray:PutTelemetryRecords",
)

# Network interfaces for a function attached to a VPC
VPC_ACCESS_ACTIONS = (
    "ec2:CreateNetworkInterface",
    "ec2:DescribeNetworkInterfaces",
    "ec2:DeleteNetworkInterface",
    "ec2:AssignPrivateIpAddresses",
    "ec2:UnassignPrivateIpAddresses",
)


def role_scope(name: str) -> str:
    return f"arn:*:iam::*:role/{name}"


def trust_policy(services: tuple[str, ...] = TRUSTED_SERVICES) -> PolicyDocument:
    """Trust relationship letting the given services assume the role."""
    return PolicyDocument(
        Statement=[
            PolicyStatement(
                Effect="Allow",
                Principal={"Service": list(services)},
                Action=["sts:AssumeRole"],
            )
        ]
    )


def role_descriptor(
    clients: AwsClients,
    name: str,
    *,
    tags: dict[str, str] | None = None,
) -> ResourceDescriptor[dict[str, Any]]:
    """Build the descriptor for the function's execution role."""
    trust_document = trust_policy().to_json()

    async def read() -> dict[str, Any]:
        return await clients.call("iam", "get_role", RoleName=name)

    def extract(response: dict[str, Any]) -> dict[str, Any]:
        role = response.get("Role") or {}
        return {"arn": role.get("Arn"), "name": role.get("RoleName")}

    async def create() -> None:
        await clients.call(
            "iam",
            "create_role",
            RoleName=name,
            AssumeRolePolicyDocument=trust_document,
            Description=f"Execution role for {name}",
            Tags=tag_list(tags or {}),
        )

    async def update(existing: Mapping[str, Any]) -> None:
        await clients.call("iam", "update_assume_role_policy", RoleName=name, PolicyDocument=trust_document)

    def emit_permissions(collector: PermissionCollector) -> None:
        collector.with_permissions(
            [
                "iam:GetRole",
                "iam:CreateRole",
                "iam:UpdateAssumeRolePolicy",
                "iam:TagRole",
                "iam:PassRole",
            ]
        )

    return ResourceDescriptor(
        describe=lambda fields: Description(ROLE_KIND, fields.get("name") or name),
        read=read,
        extract=extract,
        create=create,
        update=update,
        emit_permissions=emit_permissions,
    )


def role_policy_descriptor(
    clients: AwsClients,
    role_name: str,
    policy: Callable[[], PolicyDocument],
    *,
    policy_name: str = INLINE_POLICY_NAME,
) -> ResourceDescriptor[dict[str, Any]]:
    """Build the descriptor for the role's inline policy.

    Args:
        clients: AWS client access.
        role_name: Role the policy is attached to.
        policy: Builds the document; called only when writing it.
        policy_name: Inline policy name.
    """

    async def read() -> dict[str, Any]:
        return await clients.call("iam", "get_role_policy", RoleName=role_name, PolicyName=policy_name)

    def extract(response: dict[str, Any]) -> dict[str, Any]:
        return {"name": response.get("PolicyName"), "role_name": response.get("RoleName")}

    async def put() -> None:
        await clients.call(
            "iam",
            "put_role_policy",
            RoleName=role_name,
            PolicyName=policy_name,
            PolicyDocument=policy().to_json(),
        )

    async def update(existing: Mapping[str, Any]) -> None:
        await put()

    def emit_permissions(collector: PermissionCollector) -> None:
        collector.with_permissions(["iam:GetRolePolicy", "iam:PutRolePolicy"])

    return ResourceDescriptor(
        describe=lambda fields: Description(ROLE_POLICY_KIND, f"{role_name}/{policy_name}"),
        read=read,
        extract=extract,
        identity_field="name",
        create=put,
        update=update,
        emit_permissions=emit_permissions,
    )

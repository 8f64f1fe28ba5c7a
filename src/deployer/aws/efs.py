"""Declared file systems (EFS), mounted into the function through an access point.

The file system itself is never provisioned here: it must already exist,
found by id or by name. What the deployer owns is one access point per
deploy, rooted in its own directory, plus the network details (subnets and
security groups of the mount targets) the function needs to reach it.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

from ..address import ResourceAddress
from ..descriptor import Description, ResourceDescriptor
from ..errors import NotFoundError, SkippedAction
from ..policy import ActionSet, PermissionCollector
from ..status import DeployStatus
from .clients import AwsClients, tag_list
from .secret import suffixed_name

FILE_SYSTEM_KIND = "EFS Access Point"

MOUNT_ROOT = "/mnt"
POSIX_ID = 1000
ROOT_PERMISSIONS = "0755"
AVAILABLE = "available"

_MOUNT_NAME_INVALID = re.compile(r"[^A-Za-z0-9._-]+")

RUNTIME_ACTIONS = ActionSet(
    create=("elasticfilesystem:ClientWrite",),
    read=("elasticfilesystem:ClientMount",),
    update=("elasticfilesystem:ClientWrite",),
    delete=("elasticfilesystem:ClientWrite",),
)

# Lambda calls these on the deployer's behalf when a VPC is attached
VPC_LOOKUP_ACTIONS = (
    "ec2:DescribeSecurityGroups",
    "ec2:DescribeSubnets",
    "ec2:DescribeVpcs",
)


def mount_path(file_system_name: str) -> str:
    """Lambda mount path for a file system ("/mnt/<name>")."""
    name = _MOUNT_NAME_INVALID.sub("-", file_system_name).strip("-") or "efs"
    return f"{MOUNT_ROOT}/{name}"


def file_system_descriptor(
    clients: AwsClients,
    status: DeployStatus,
    address: ResourceAddress,
    *,
    tags: dict[str, str] | None = None,
) -> ResourceDescriptor[dict[str, Any]]:
    """Build the descriptor for a declared file system.

    The identity is the file system, so a missing file system is reported
    as not found and never created. A missing access point is created by
    the update branch.
    """
    reference = address.name

    def access_point_name() -> str:
        return suffixed_name(address, status)

    async def find_file_system() -> dict[str, Any]:
        params: dict[str, Any] = {}
        while True:
            response = await clients.call("efs", "describe_file_systems", **params)
            for file_system in response.get("FileSystems") or []:
                if reference in (file_system.get("FileSystemId"), (file_system.get("Name") or "").lower()):
                    return file_system
            marker = response.get("NextMarker")
            if not marker:
                raise NotFoundError(f"EFS file system not found: {reference}")
            params = {"Marker": marker}

    async def find_access_point(file_system_id: str) -> dict[str, Any] | None:
        name = access_point_name()
        params: dict[str, Any] = {"FileSystemId": file_system_id}
        while True:
            response = await clients.call("efs", "describe_access_points", **params)
            for access_point in response.get("AccessPoints") or []:
                if access_point.get("Name") == name:
                    return access_point
            token = response.get("NextToken")
            if not token:
                return None
            params = {"FileSystemId": file_system_id, "NextToken": token}

    async def mount_targets(file_system_id: str) -> list[dict[str, Any]]:
        response = await clients.call("efs", "describe_mount_targets", FileSystemId=file_system_id)
        targets = []
        for target in response.get("MountTargets") or []:
            groups = await clients.call(
                "efs",
                "describe_mount_target_security_groups",
                MountTargetId=target["MountTargetId"],
            )
            targets.append({**target, "SecurityGroups": groups.get("SecurityGroups") or []})
        return targets

    async def read() -> dict[str, Any]:
        file_system = await find_file_system()
        file_system_id = file_system["FileSystemId"]
        return {
            "FileSystem": file_system,
            "AccessPoint": await find_access_point(file_system_id),
            "MountTargets": await mount_targets(file_system_id),
        }

    def extract(response: dict[str, Any]) -> dict[str, Any]:
        file_system = response.get("FileSystem") or {}
        access_point = response.get("AccessPoint") or {}
        targets = response.get("MountTargets") or []
        file_system_id = file_system.get("FileSystemId")
        return {
            "arn": file_system.get("FileSystemArn"),
            "name": file_system_id,
            "file_system_id": file_system_id,
            "access_point_arn": access_point.get("AccessPointArn"),
            "mount_path": mount_path(file_system.get("Name") or file_system_id or ""),
            "vpc_id": next((t.get("VpcId") for t in targets if t.get("VpcId")), None),
            "subnet_ids": sorted({t["SubnetId"] for t in targets if t.get("SubnetId")}),
            "security_group_ids": sorted({g for t in targets for g in t.get("SecurityGroups") or []}),
        }

    async def update(existing: Mapping[str, Any]) -> None:
        if existing.get("access_point_arn"):
            raise SkippedAction(f"Access point {access_point_name()} already exists")
        name = access_point_name()
        await clients.call(
            "efs",
            "create_access_point",
            ClientToken=name,
            FileSystemId=existing["file_system_id"],
            Tags=tag_list({**(tags or {}), "Name": name}),
            PosixUser={"Uid": POSIX_ID, "Gid": POSIX_ID},
            RootDirectory={
                "Path": f"/{name}",
                "CreationInfo": {
                    "OwnerUid": POSIX_ID,
                    "OwnerGid": POSIX_ID,
                    "Permissions": ROOT_PERMISSIONS,
                },
            },
        )

    def emit_permissions(collector: PermissionCollector) -> None:
        collector.with_permissions(
            [
                "elasticfilesystem:DescribeFileSystems",
                "elasticfilesystem:DescribeAccessPoints",
                "elasticfilesystem:CreateAccessPoint",
                "elasticfilesystem:TagResource",
                "elasticfilesystem:DescribeMountTargets",
                "elasticfilesystem:DescribeMountTargetSecurityGroups",
                *VPC_LOOKUP_ACTIONS,
            ]
        )

    return ResourceDescriptor(
        describe=lambda fields: Description(FILE_SYSTEM_KIND, fields.get("access_point_arn") or access_point_name()),
        read=read,
        extract=extract,
        update=update,
        emit_permissions=emit_permissions,
        desired={"AccessPoint": {"LifeCycleState": AVAILABLE}},
    )

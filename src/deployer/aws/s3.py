"""Declared buckets (S3)."""

from __future__ import annotations

from typing import Any

from botocore.exceptions import ClientError

from ..address import ManagedResource, ResourceAddress
from ..descriptor import Description, ResourceDescriptor
from ..policy import ActionSet, PermissionCollector
from ..status import DeployStatus
from .clients import AwsClients, tag_list
from .secret import suffixed_name

BUCKET_KIND = "S3 Bucket"
NOTIFICATION_KIND = "S3 Subscription"

# Regions where CreateBucket must not carry a location constraint
DEFAULT_LOCATION_REGIONS = frozenset({"us-east-1"})

RUNTIME_ACTIONS = ActionSet(
    create=("s3:Put*", "s3:Create*"),
    read=("s3:Get*", "s3:List*", "s3:Describe*"),
    update=("s3:Abort*", "s3:Update*", "s3:Restore*", "s3:Replicate*"),
    delete=("s3:Delete*",),
)

NOTIFICATION_EVENTS = ("s3:ObjectCreated:*", "s3:ObjectRemoved:*", "s3:ObjectRestore:*")

# Every target type PutBucketNotificationConfiguration replaces at once
NOTIFICATION_SECTIONS = (
    "EventBridgeConfiguration",
    "LambdaFunctionConfigurations",
    "QueueConfigurations",
    "TopicConfigurations",
)

CORS_RULES = [
    {
        "AllowedHeaders": ["*"],
        "AllowedMethods": ["GET", "PUT", "POST", "HEAD"],
        "AllowedOrigins": ["*"],
        "MaxAgeSeconds": 3000,
    }
]


def bucket_descriptor(
    clients: AwsClients,
    status: DeployStatus,
    address: ResourceAddress,
    *,
    tags: dict[str, str] | None = None,
) -> ResourceDescriptor[dict[str, Any]]:
    """Build the descriptor for a declared bucket."""

    def bucket_name() -> str:
        return suffixed_name(address, status)

    async def read() -> dict[str, Any]:
        name = bucket_name()
        response = await clients.call("s3", "head_bucket", Bucket=name)
        return {"Bucket": name, "BucketRegion": response.get("BucketRegion")}

    def extract(response: dict[str, Any]) -> dict[str, Any]:
        name = response.get("Bucket")
        return {
            "arn": f"arn:{clients.partition}:s3:::{name}" if name else None,
            "name": name,
            "region": response.get("BucketRegion"),
        }

    async def create() -> None:
        name = bucket_name()
        params: dict[str, Any] = {"Bucket": name}
        if clients.region not in DEFAULT_LOCATION_REGIONS:
            params["CreateBucketConfiguration"] = {"LocationConstraint": clients.region}
        try:
            await clients.call("s3", "create_bucket", **params)
        except ClientError as e:
            # A retried create after a partial failure finds its own bucket
            if e.response.get("Error", {}).get("Code") != "BucketAlreadyOwnedByYou":
                raise
        await clients.call("s3", "put_bucket_cors", Bucket=name, CORSConfiguration={"CORSRules": CORS_RULES})
        if tags:
            await clients.call("s3", "put_bucket_tagging", Bucket=name, Tagging={"TagSet": tag_list(tags)})

    def emit_permissions(collector: PermissionCollector) -> None:
        collector.with_permissions(["s3:ListBucket", "s3:CreateBucket", "s3:PutBucketCORS", "s3:PutBucketTagging"])

    return ResourceDescriptor(
        describe=lambda fields: Description(BUCKET_KIND, fields.get("name") or bucket_name()),
        read=read,
        extract=extract,
        create=create,
        emit_permissions=emit_permissions,
    )


def notification_descriptor(
    clients: AwsClients,
    bucket: ManagedResource,
    *,
    function_name: str,
    function_arn: str,
) -> ResourceDescriptor[dict[str, Any]]:
    """Send a bucket's object events to the function.

    Notification targets other than this function are carried over
    unchanged. The identity is the bucket ARN, present only once the
    function is among the bucket's Lambda targets.
    """

    async def read() -> dict[str, Any]:
        response = await clients.call("s3", "get_bucket_notification_configuration", Bucket=bucket.name)
        return {section: response[section] for section in NOTIFICATION_SECTIONS if section in response}

    def extract(configuration: dict[str, Any]) -> dict[str, Any]:
        wired = any(
            target.get("LambdaFunctionArn") == function_arn
            for target in configuration.get("LambdaFunctionConfigurations") or []
        )
        return {
            "arn": bucket.arn if wired else None,
            "bucket": bucket.name,
            "function_arn": function_arn,
        }

    async def create() -> None:
        try:
            await clients.call(
                "lambda",
                "add_permission",
                FunctionName=function_name,
                StatementId=f"S3-InvokeFunction-{bucket.name}",
                Action="lambda:InvokeFunction",
                Principal="s3.amazonaws.com",
                SourceArn=bucket.arn,
            )
        except ClientError as e:
            # Statement left by an earlier deploy
            if e.response.get("Error", {}).get("Code") != "ResourceConflictException":
                raise

        configuration = await read()
        targets = [
            target
            for target in configuration.get("LambdaFunctionConfigurations") or []
            if target.get("LambdaFunctionArn") != function_arn
        ]
        targets.append({"Id": function_arn, "LambdaFunctionArn": function_arn, "Events": list(NOTIFICATION_EVENTS)})
        configuration["LambdaFunctionConfigurations"] = targets
        await clients.call(
            "s3",
            "put_bucket_notification_configuration",
            Bucket=bucket.name,
            NotificationConfiguration=configuration,
            SkipDestinationValidation=True,
        )

    def emit_permissions(collector: PermissionCollector) -> None:
        collector.with_permissions(["s3:GetBucketNotification", "s3:PutBucketNotification", "lambda:AddPermission"])

    return ResourceDescriptor(
        describe=lambda fields: Description(NOTIFICATION_KIND, f"{bucket.name} -> {function_name}"),
        read=read,
        extract=extract,
        create=create,
        emit_permissions=emit_permissions,
    )

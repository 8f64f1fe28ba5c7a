"""Resource addresses with embedded permission intent.

An address is an ARN, optionally followed by a `#fragment` listing the
operations the deployed application may perform on the resource:

    c = create, r = read, u = update, d = delete, s = subscribe

    arn::dynamodb:::table/orders#crs     declared, not provisioned yet
    arn:aws:s3:::my-bucket               provisioned, all permissions

An empty partition marks an *intent-only* address: the resource is
provisioned lazily on first resolution and the address is then promoted
to the real ARN, keeping the declared fragment.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, replace
from typing import Any

from .descriptor import ResourceDescriptor
from .engine import ReconcileOptions, ReconcileResult, ResourceEngine
from .errors import FatalError

logger = logging.getLogger(__name__)

PERMISSION_BITS = "cruds"
DEFAULT_PERMISSION_FRAGMENT = PERMISSION_BITS
DEFAULT_PARTITION = "aws"

# Services whose ARNs carry no resource-type segment
IMPLICIT_RESOURCE_TYPES: dict[str, str] = {"s3": "bucket"}

# Services whose ARNs leave region and account empty
GLOBAL_SERVICES = frozenset({"s3", "iam"})
ACCOUNTLESS_SERVICES = frozenset({"s3"})

_TOKEN_SPLIT = re.compile(r"[^a-z0-9]+")
_TYPE_SEPARATOR = re.compile(r"[:/]")


class InvalidAddressError(ValueError):
    """Raised when an address string cannot be parsed."""

    pass


@dataclass(frozen=True)
class ResourceAddress:
    """A parsed resource address.

    Attributes:
        raw: The (lower-cased) input string.
        partition: Provider partition, or None for an intent-only address.
        service: Provider service namespace (dynamodb, s3, lambda, ...).
        region: Region, or None when empty.
        account: Account id, or None when empty.
        resource_path: Everything after the account segment, fragment excluded.
        permission_fragment: Subset of "cruds".
    """

    raw: str
    partition: str | None
    service: str
    region: str | None
    account: str | None
    resource_path: str
    permission_fragment: str = DEFAULT_PERMISSION_FRAGMENT

    @classmethod
    def parse(cls, raw: str) -> ResourceAddress:
        """Parse an address string.

        Raises:
            InvalidAddressError: On malformed input or unknown permission bits.
        """
        if not raw or not isinstance(raw, str):
            raise InvalidAddressError(f"Address must be a non-empty string: {raw!r}")

        text = raw.strip().lower()
        body, _, fragment = text.partition("#")
        fragment = fragment or DEFAULT_PERMISSION_FRAGMENT

        unknown = sorted(set(fragment) - set(PERMISSION_BITS))
        if unknown:
            raise InvalidAddressError(
                f"Unknown permission bits {''.join(unknown)!r} in {raw!r} (allowed: {PERMISSION_BITS})"
            )

        parts = body.split(":", 5)
        if len(parts) != 6 or parts[0] != "arn":
            raise InvalidAddressError(
                f"Address must look like arn:<partition>:<service>:<region>:<account>:<resource>: {raw!r}"
            )

        _, partition, service, region, account, resource_path = parts
        if not service:
            raise InvalidAddressError(f"Address has no service: {raw!r}")
        if not resource_path:
            raise InvalidAddressError(f"Address has no resource path: {raw!r}")

        return cls(
            raw=text,
            partition=partition or None,
            service=service,
            region=region or None,
            account=account or None,
            resource_path=resource_path,
            permission_fragment=fragment,
        )

    @property
    def is_provisioned(self) -> bool:
        return self.partition is not None

    @property
    def has_create(self) -> bool:
        return "c" in self.permission_fragment

    @property
    def has_read(self) -> bool:
        return "r" in self.permission_fragment

    @property
    def has_update(self) -> bool:
        return "u" in self.permission_fragment

    @property
    def has_delete(self) -> bool:
        return "d" in self.permission_fragment

    @property
    def has_subscribe(self) -> bool:
        return "s" in self.permission_fragment

    @property
    def resource_type(self) -> str | None:
        implicit = IMPLICIT_RESOURCE_TYPES.get(self.service)
        if implicit:
            return implicit
        match = _TYPE_SEPARATOR.search(self.resource_path)
        return self.resource_path[: match.start()] if match else None

    @property
    def name(self) -> str:
        """Resource name without its type prefix ("table/orders" -> "orders")."""
        if self.service in IMPLICIT_RESOURCE_TYPES:
            return self.resource_path
        match = _TYPE_SEPARATOR.search(self.resource_path)
        return self.resource_path[match.end() :] if match else self.resource_path

    def to_arn(self) -> str:
        return ":".join(
            [
                "arn",
                self.partition or "",
                self.service,
                self.region or "",
                self.account or "",
                self.resource_path,
            ]
        )

    def policy_resource(self) -> str:
        """IAM resource pattern covering this address.

        Unknown partition, region and account become wildcards, and a trailing
        wildcard matches the suffixed name the resource gets on creation.
        """
        region = "" if self.service in GLOBAL_SERVICES else (self.region or "*")
        account = "" if self.service in ACCOUNTLESS_SERVICES else (self.account or "*")
        path = self.resource_path if self.resource_path.endswith("*") else f"{self.resource_path}*"
        return f"arn:{self.partition or '*'}:{self.service}:{region}:{account}:{path}"

    def promote(self, arn: str) -> ResourceAddress:
        """Return the real address for this declared one, keeping the fragment."""
        promoted = ResourceAddress.parse(arn.split("#", 1)[0])
        return replace(promoted, permission_fragment=self.permission_fragment)

    def __str__(self) -> str:
        if self.permission_fragment == DEFAULT_PERMISSION_FRAGMENT:
            return self.to_arn()
        return f"{self.to_arn()}#{self.permission_fragment}"


def derive_env_key(address: ResourceAddress | str) -> str:
    """Derive the environment variable name for an address.

    Examples:
        arn:aws:dynamodb:us-east-1:123:table/my-table -> AWS_DYNAMODB_TABLE_MY_TABLE
        arn:aws-cn:s3:::my-bucket                     -> AWS_CN_S3_BUCKET_MY_BUCKET
    """
    if isinstance(address, str):
        address = ResourceAddress.parse(address)

    segments = [address.partition or DEFAULT_PARTITION, address.service]
    implicit = IMPLICIT_RESOURCE_TYPES.get(address.service)
    if implicit:
        segments.append(implicit)
    segments.append(address.resource_path)

    tokens = [token for segment in segments for token in _TOKEN_SPLIT.split(segment) if token]
    return "_".join(tokens).upper()


@dataclass(frozen=True)
class ManagedResource:
    """A resolved address and the public fields the deployed app needs."""

    address: ResourceAddress
    arn: str
    name: str
    subscription_arn: str | None = None


DescriptorFactory = Callable[[ResourceAddress], ResourceDescriptor[Any]]


class ManagedAddress:
    """A declared address that provisions its resource on first resolve.

    Concurrent callers of `resolve()` share a single reconciliation; the
    outcome is cached for the lifetime of the object.
    """

    def __init__(
        self,
        address: ResourceAddress | str,
        *,
        descriptor_factory: DescriptorFactory | None = None,
        engine: ResourceEngine | None = None,
        options: ReconcileOptions | None = None,
    ) -> None:
        self._declared = ResourceAddress.parse(address) if isinstance(address, str) else address
        self._descriptor_factory = descriptor_factory
        self._engine = engine or ResourceEngine()
        self._options = options or ReconcileOptions()
        self._resolved: ManagedResource | None = None
        self._result: ReconcileResult | None = None
        self._lock = asyncio.Lock()

    @property
    def declared(self) -> ResourceAddress:
        return self._declared

    @property
    def address(self) -> ResourceAddress:
        """The promoted address once resolved, the declared one before."""
        return self._resolved.address if self._resolved else self._declared

    @property
    def resolved(self) -> ManagedResource | None:
        return self._resolved

    @property
    def result(self) -> ReconcileResult | None:
        """Engine result of the lazy provisioning, if it happened."""
        return self._result

    @property
    def env_key(self) -> str:
        return derive_env_key(self._declared)

    def descriptor(self) -> ResourceDescriptor[Any] | None:
        if self._descriptor_factory is None:
            return None
        return self._descriptor_factory(self._declared)

    async def resolve(self) -> ManagedResource:
        """Return the real resource behind this address.

        Already-provisioned addresses resolve without any provider call.

        Raises:
            FatalError: If provisioning fails or yields no identifier.
        """
        if self._resolved is not None:
            return self._resolved

        if self._declared.is_provisioned:
            self._resolved = ManagedResource(
                address=self._declared,
                arn=self._declared.to_arn(),
                name=self._declared.name,
            )
            return self._resolved

        async with self._lock:
            if self._resolved is not None:
                return self._resolved

            descriptor = self.descriptor()
            if descriptor is None:
                raise FatalError(
                    f"no adapter can provision {self._declared.service} resources",
                    resource=str(self._declared),
                )

            self._result = await self._engine.reconcile(descriptor, self._options)
            fields = self._result.resource
            arn = fields.get("arn")
            if not arn:
                raise FatalError("provisioning returned no ARN", resource=str(self._declared))

            self._resolved = ManagedResource(
                address=self._declared.promote(arn),
                arn=arn,
                name=fields.get("name") or self._declared.name,
                subscription_arn=fields.get("subscription_arn"),
            )
            logger.info(
                "Resolved resource address",
                extra={"declared": str(self._declared), "arn": arn},
            )
            return self._resolved

    async def env(self) -> dict[str, str]:
        """Environment pair for the deployed application: `{KEY: arn, KEY__NAME: name}`."""
        resource = await self.resolve()
        key = self.env_key
        return {key: resource.arn, f"{key}__NAME": resource.name}

    def __repr__(self) -> str:
        return f"ManagedAddress({str(self.address)!r})"

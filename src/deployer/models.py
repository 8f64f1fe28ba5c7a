"""Pydantic models for the deploy spec with validation.

These models provide:
1. Type-safe YAML parsing
2. Validation at the boundary (fail fast, fail loudly)
3. Typed accessors the pipeline builds descriptors from
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Literal

from pydantic import BaseModel, Field, field_validator

from .address import ResourceAddress

FILE_SYSTEM_SERVICE = "elasticfilesystem"


class ScheduleName(str, Enum):
    """Recurring schedules a command can run on."""

    FREQUENTLY = "@frequently"
    HOURLY = "@hourly"
    DAILY = "@daily"


class ScheduledCommand(BaseModel):
    """A command the deployed function runs on a schedule."""

    model_config = {"extra": "ignore"}

    command: Annotated[str, Field(min_length=1, max_length=1024)]
    schedule: ScheduleName


class DeploySpec(BaseModel):
    """Deploy specification for one application.

    Example:
        name: orders-api
        timeout: 30
        memorySize: 512
        resources:
          - arn::dynamodb:::table/orders#crs
          - arn::s3:::uploads#r
        schedules:
          - command: python manage.py cleanup
            schedule: "@daily"
    """

    model_config = {"extra": "ignore", "populate_by_name": True}

    name: Annotated[str, Field(min_length=1, max_length=48, pattern=r"^[a-z][a-z0-9-]*[a-z0-9]$")] | None = None
    resources: list[str] = Field(default_factory=list)
    timeout: Annotated[int, Field(ge=1, le=900)] = 30
    memory_size: Annotated[int, Field(ge=128, le=10240, alias="memorySize")] = 1024
    architecture: Literal["x86_64", "arm64"] = "x86_64"
    schedules: list[ScheduledCommand] = Field(default_factory=list)
    tags: dict[str, str] = Field(default_factory=dict)

    @field_validator("resources")
    @classmethod
    def validate_resources(cls, v: list[str]) -> list[str]:
        seen: set[str] = set()
        for raw in v:
            address = ResourceAddress.parse(raw)
            key = address.to_arn()
            if key in seen:
                raise ValueError(f"Resource declared more than once: {raw}")
            seen.add(key)
        file_systems = [raw for raw in v if ResourceAddress.parse(raw).service == FILE_SYSTEM_SERVICE]
        if len(file_systems) > 1:
            raise ValueError(f"A function can mount at most one file system: {', '.join(file_systems)}")
        return v

    @property
    def addresses(self) -> list[ResourceAddress]:
        return [ResourceAddress.parse(raw) for raw in self.resources]

    def commands_for(self, schedule: ScheduleName) -> list[str]:
        return [s.command for s in self.schedules if s.schedule == schedule]

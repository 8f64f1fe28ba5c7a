"""Permission collection and IAM policy document models."""

from __future__ import annotations

import json
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any, Literal, Protocol

from pydantic import BaseModel, Field, field_validator

POLICY_VERSION = "2012-10-17"


class PermissionCollector:
    """Accumulates provider actions declared by descriptors.

    Adding an action twice is a no-op; insertion order is kept so output is
    stable across runs.
    """

    def __init__(self, actions: Iterable[str] | None = None) -> None:
        self._actions: dict[str, None] = {}
        if actions:
            self.with_permissions(actions)

    def with_permissions(self, actions: Iterable[str]) -> PermissionCollector:
        for action in actions:
            if not action:
                continue
            self._actions.setdefault(action, None)
        return self

    @property
    def actions(self) -> list[str]:
        return list(self._actions)

    def __contains__(self, action: object) -> bool:
        return action in self._actions

    def __len__(self) -> int:
        return len(self._actions)

    def __repr__(self) -> str:
        return f"PermissionCollector({self.actions!r})"


class PermissionIntent(Protocol):
    has_create: bool
    has_read: bool
    has_update: bool
    has_delete: bool
    has_subscribe: bool


@dataclass(frozen=True)
class ActionSet:
    """Provider actions grouped by the permission bit that grants them."""

    create: tuple[str, ...] = ()
    read: tuple[str, ...] = ()
    update: tuple[str, ...] = ()
    delete: tuple[str, ...] = ()
    subscribe: tuple[str, ...] = ()

    def for_intent(self, intent: PermissionIntent) -> list[str]:
        actions: list[str] = []
        if intent.has_create:
            actions.extend(self.create)
        if intent.has_read:
            actions.extend(self.read)
        if intent.has_update:
            actions.extend(self.update)
        if intent.has_delete:
            actions.extend(self.delete)
        if intent.has_subscribe:
            actions.extend(self.subscribe)
        return list(dict.fromkeys(actions))

    @classmethod
    def generic(cls, service: str) -> ActionSet:
        """Wildcard actions for services without a dedicated adapter."""
        return cls(
            create=(f"{service}:Create*", f"{service}:Put*"),
            read=(f"{service}:Get*", f"{service}:List*", f"{service}:Describe*"),
            update=(f"{service}:Update*",),
            delete=(f"{service}:Delete*",),
        )


class PolicyStatement(BaseModel):
    """One IAM policy statement."""

    sid: str | None = Field(default=None, alias="Sid")
    effect: Literal["Allow", "Deny"] = Field(default="Allow", alias="Effect")
    principal: dict[str, Any] | None = Field(default=None, alias="Principal")
    actions: list[str] = Field(alias="Action")
    # Trust policies name a principal instead of resources
    resources: list[str] | None = Field(default=None, alias="Resource")

    model_config = {"populate_by_name": True, "extra": "ignore"}

    @field_validator("actions")
    @classmethod
    def dedupe_actions(cls, v: list[str]) -> list[str]:
        if not v:
            raise ValueError("A statement needs at least one action")
        return sorted(set(v))

    @field_validator("resources")
    @classmethod
    def dedupe_resources(cls, v: list[str] | None) -> list[str] | None:
        if v is None:
            return None
        if not v:
            raise ValueError("A statement needs at least one resource")
        return sorted(set(v))


class PolicyDocument(BaseModel):
    """An IAM policy document."""

    version: str = Field(default=POLICY_VERSION, alias="Version")
    statements: list[PolicyStatement] = Field(default_factory=list, alias="Statement")

    model_config = {"populate_by_name": True, "extra": "ignore"}

    def add(self, actions: Iterable[str], resources: Iterable[str], sid: str | None = None) -> None:
        """Append a statement, merging into an existing one with the same resources."""
        actions = list(actions)
        resources = sorted(set(resources))
        if not actions:
            return
        for statement in self.statements:
            if statement.resources == resources and statement.effect == "Allow":
                statement.actions = sorted(set(statement.actions) | set(actions))
                return
        self.statements.append(PolicyStatement(Sid=sid, Action=actions, Resource=resources))

    @property
    def actions(self) -> list[str]:
        return sorted({a for s in self.statements for a in s.actions})

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)

    def to_json(self, indent: int | None = None) -> str:
        return json.dumps(self.to_dict(), indent=indent)

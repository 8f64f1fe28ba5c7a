"""Deploy status: the running record of resource outputs.

Each pipeline step reads the fields it depends on and writes its own
outputs. A key belongs to exactly one owner (resource kind) and once
written is only ever replaced, never removed.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from typing import Any


class StatusConflictError(Exception):
    """Raised when a step writes a key another step owns."""

    pass


class MissingStatusError(KeyError):
    """Raised when a step needs a field no earlier step produced."""

    def __init__(self, key: str, needed_by: str | None = None) -> None:
        self.key = key
        self.needed_by = needed_by
        suffix = f" (needed by {needed_by})" if needed_by else ""
        super().__init__(f"Deploy status has no {key!r}{suffix}")

    def __str__(self) -> str:
        return str(self.args[0])


class DeployStatus(Mapping[str, Any]):
    """Append-only, ownership-checked map of deploy outputs."""

    def __init__(self, initial: Mapping[str, Any] | None = None, owner: str = "input") -> None:
        self._values: dict[str, Any] = {}
        self._owners: dict[str, str] = {}
        if initial:
            self.write(owner, **initial)

    def write(self, owner: str, **fields: Any) -> None:
        """Record outputs for `owner`. None values are ignored.

        Raises:
            StatusConflictError: If a key already belongs to another owner.
        """
        for key, value in fields.items():
            current_owner = self._owners.get(key)
            if current_owner is not None and current_owner != owner:
                raise StatusConflictError(f"Status key {key!r} is owned by {current_owner!r}, not {owner!r}")

        for key, value in fields.items():
            if value is None:
                continue
            self._owners[key] = owner
            self._values[key] = value

    def require(self, key: str, needed_by: str | None = None) -> Any:
        """Get a field another step must already have written.

        Raises:
            MissingStatusError: If the field is absent.
        """
        if key not in self._values:
            raise MissingStatusError(key, needed_by)
        return self._values[key]

    def owner_of(self, key: str) -> str | None:
        return self._owners.get(key)

    def owned_by(self, owner: str) -> dict[str, Any]:
        return {k: v for k, v in self._values.items() if self._owners[k] == owner}

    def as_dict(self) -> dict[str, Any]:
        return dict(self._values)

    def __getitem__(self, key: str) -> Any:
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"DeployStatus({self._values!r})"

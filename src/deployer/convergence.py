"""Deep subset comparison of desired against observed state.

Only keys named in the desired mapping are compared; anything else the
provider returns is ignored. Nested mappings are compared recursively, every
other value by plain equality (lists included, order-sensitive).
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

_MISSING = object()


@dataclass(frozen=True)
class Difference:
    """A single mismatched leaf."""

    expected: Any
    actual: Any


def find_differences(desired: Mapping[str, Any] | None, actual: Any, prefix: str = "") -> dict[str, Difference]:
    """Compare `desired` against `actual`, keyed by dotted field path.

    Args:
        desired: Partial expected state. None or empty matches anything.
        actual: Observed state (typically a raw provider read payload).
        prefix: Path prefix for nested keys.

    Returns:
        Mapping of dotted path to Difference; empty when converged.

    Example:
        >>> find_differences({"Configuration": {"State": "Active"}},
        ...                  {"Configuration": {"State": "Pending", "Timeout": 3}})
        {'Configuration.State': Difference(expected='Active', actual='Pending')}
    """
    differences: dict[str, Difference] = {}
    if not desired:
        return differences

    for key, expected in desired.items():
        path = f"{prefix}{key}"
        observed = actual.get(key, _MISSING) if isinstance(actual, Mapping) else _MISSING

        if isinstance(expected, Mapping) and isinstance(observed, Mapping):
            differences.update(find_differences(expected, observed, prefix=f"{path}."))
        elif observed is _MISSING:
            differences[path] = Difference(expected=expected, actual=None)
        elif observed != expected:
            differences[path] = Difference(expected=expected, actual=observed)

    return differences


def is_converged(desired: Mapping[str, Any] | None, actual: Any) -> bool:
    return not find_differences(desired, actual)

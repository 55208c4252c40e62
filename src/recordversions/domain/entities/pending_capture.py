"""Transient capture state carried between a before-hook and its after-hook.

Neither class here is persisted. A PendingCapture lives for exactly one
save or destroy cycle of one instance.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping


@dataclass(frozen=True)
class PendingCapture:
    """Attribute values as they existed before an in-flight mutation.

    An empty capture means there is nothing to record when the save
    completes (new records, or saves without changes).

    Attributes:
        values: Attribute name to pre-mutation value.
    """

    values: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "values", MappingProxyType(dict(self.values)))

    @classmethod
    def empty(cls) -> "PendingCapture":
        return cls()

    def __bool__(self) -> bool:
        return bool(self.values)

    def merged_over(self, current: Mapping[str, Any]) -> dict[str, Any]:
        """Overlay the captured values on ``current``; captured values win."""
        merged = dict(current)
        merged.update(self.values)
        return merged


@dataclass(frozen=True)
class TimestampRefresh:
    """Outcome of a best-effort timestamp refresh.

    Attributes:
        refreshed: Names of the attributes that received a new value.
        error: Description of the failure, if the refresh did not complete.
    """

    refreshed: tuple[str, ...] = ()
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

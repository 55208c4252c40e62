"""Per-entity versioning configuration."""

from dataclasses import dataclass
from typing import Sequence

# Attributes added to every version type
SEQUENCE_ATTRIBUTE = "sequence_id"
DESTROYED_ATTRIBUTE = "destroyed"

RESERVED_VERSION_ATTRIBUTES = frozenset({SEQUENCE_ATTRIBUTE, DESTROYED_ATTRIBUTE})


@dataclass(frozen=True)
class VersioningOptions:
    """Options supplied once per tracked entity type at registration.

    Attributes:
        on: Name of the versioning attribute (e.g. ``updated_at``). It only
            decides which copied attribute carries an index on the version
            type; it does not order versions.
        timestamp_attributes: Attributes to refresh on destroy. ``None``
            means every column with a Python-side ``onupdate``.
    """

    on: str
    timestamp_attributes: tuple[str, ...] | None = None

    def __post_init__(self) -> None:
        """Validate options after initialization."""
        if not isinstance(self.on, str) or not self.on:
            raise ValueError("Versioning attribute name is required")
        if self.timestamp_attributes is not None:
            object.__setattr__(self, "timestamp_attributes", tuple(self.timestamp_attributes))

    @classmethod
    def build(
        cls, on: str | Sequence[str], timestamp_attributes: Sequence[str] | None = None
    ) -> "VersioningOptions":
        """Build options, accepting ``on`` as a name or a one-element list.

        Raises:
            ValueError: If ``on`` names more or fewer than one attribute.
        """
        if not isinstance(on, str):
            names = list(on)
            if len(names) != 1:
                raise ValueError(
                    f"Exactly one versioning attribute is supported, got {names!r}"
                )
            on = names[0]
        return cls(
            on=on,
            timestamp_attributes=tuple(timestamp_attributes)
            if timestamp_attributes is not None
            else None,
        )

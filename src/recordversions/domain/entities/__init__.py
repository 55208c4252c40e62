"""Domain entities for recordversions.

Entities are pure Python dataclasses with no dependencies on
infrastructure or external frameworks.
"""

from recordversions.domain.entities.pending_capture import PendingCapture, TimestampRefresh
from recordversions.domain.entities.versioning_options import (
    DESTROYED_ATTRIBUTE,
    RESERVED_VERSION_ATTRIBUTES,
    SEQUENCE_ATTRIBUTE,
    VersioningOptions,
)

__all__ = [
    "DESTROYED_ATTRIBUTE",
    "PendingCapture",
    "RESERVED_VERSION_ATTRIBUTES",
    "SEQUENCE_ATTRIBUTE",
    "TimestampRefresh",
    "VersioningOptions",
]

"""recordversions - change capture for SQLAlchemy entities.

Records a snapshot of a row's previous attribute values whenever it is
updated or deleted, in a version table derived from the entity's own schema.
"""

__version__ = "0.1.0"

from recordversions.domain.entities import PendingCapture, TimestampRefresh, VersioningOptions
from recordversions.domain.exceptions import CaptureInsertError, SchemaError, VersioningError
from recordversions.infrastructure.persistence import (
    VersionedMixin,
    VersionHistory,
    VersionRecordBase,
    VersionTypeRegistry,
    get_version_registry,
    history,
    history_statement,
)
from recordversions.versioning import Versioning

__all__ = [
    "CaptureInsertError",
    "PendingCapture",
    "SchemaError",
    "TimestampRefresh",
    "VersionHistory",
    "VersionRecordBase",
    "VersionTypeRegistry",
    "VersionedMixin",
    "Versioning",
    "VersioningError",
    "VersioningOptions",
    "__version__",
    "get_version_registry",
    "history",
    "history_statement",
]

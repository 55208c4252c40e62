"""SQLAlchemy persistence adapters: shadow schema, capture ports, queries."""

from recordversions.infrastructure.persistence.event_listeners import VersioningListeners
from recordversions.infrastructure.persistence.history import (
    VersionedMixin,
    VersionHistory,
    history,
    history_statement,
)
from recordversions.infrastructure.persistence.record_state import SQLAlchemyRecordState
from recordversions.infrastructure.persistence.schema_propagation import SchemaPropagator
from recordversions.infrastructure.persistence.shadow_schema import (
    VersionRecordBase,
    VersionTypeRegistry,
    derive_version_type,
    get_version_registry,
)
from recordversions.infrastructure.persistence.version_writer import SQLAlchemyVersionWriter

__all__ = [
    "SQLAlchemyRecordState",
    "SQLAlchemyVersionWriter",
    "SchemaPropagator",
    "VersionHistory",
    "VersionRecordBase",
    "VersionTypeRegistry",
    "VersionedMixin",
    "VersioningListeners",
    "derive_version_type",
    "get_version_registry",
    "history",
    "history_statement",
]

"""Abstract boundaries between the capture engine and its host.

The host record layer supplies RecordState and VersionWriter. The engine
implements CaptureHooks (instance-level) and VersionTypeProvider
(type-level), and the two are composed when an entity type is registered.
"""

from abc import ABC, abstractmethod
from typing import Any, Mapping, MutableMapping


class RecordState(ABC):
    """Facts about a live instance that the host record layer tracks."""

    @abstractmethod
    def original_attributes(self, instance: Any) -> dict[str, Any]:
        """Attribute values as last read from the store, ignoring local edits.

        Relationship attributes are excluded.
        """
        ...

    @abstractmethod
    def current_attributes(self, instance: Any) -> dict[str, Any]:
        """Attribute values as currently held in memory."""
        ...

    @abstractmethod
    def is_dirty(self, instance: Any) -> bool:
        ...

    @abstractmethod
    def is_new(self, instance: Any) -> bool:
        ...

    @abstractmethod
    def is_clean(self, instance: Any) -> bool:
        ...

    @abstractmethod
    def pending_slot(self, instance: Any) -> MutableMapping[str, Any]:
        """Per-instance scratch mapping owned by the capture engine."""
        ...

    @abstractmethod
    def refresh_timestamps(self, instance: Any) -> tuple[str, ...]:
        """Assign fresh values to the instance's auto-timestamp attributes.

        Returns:
            Names of the attributes that were refreshed.
        """
        ...


class VersionWriter(ABC):
    """Appends version rows to the shadow store."""

    @abstractmethod
    def insert(self, instance: Any, fields: Mapping[str, Any], destroyed: bool) -> None:
        """Insert one version row for ``instance``.

        Raises:
            CaptureInsertError: If the store rejects the row.
        """
        ...


class CaptureHooks(ABC):
    """Instance-level lifecycle hooks, invoked by the host around save/destroy."""

    @abstractmethod
    def before_save(self, instance: Any) -> None:
        ...

    @abstractmethod
    def after_save(self, instance: Any, succeeded: bool) -> None:
        ...

    @abstractmethod
    def before_destroy(self, instance: Any) -> None:
        ...


class VersionTypeProvider(ABC):
    """Type-level operations: tracked entity types and their version types."""

    @abstractmethod
    def is_tracked(self, entity_cls: type) -> bool:
        ...

    @abstractmethod
    def get_or_derive(self, entity_cls: type) -> type:
        """Return the version type of ``entity_cls``, deriving it on first use."""
        ...

"""Versioning facade.

Composes the type-level side (version type registry, schema propagation)
with the instance-level side (capture protocol bound to session events)
for the entity types registered on it.

Example:
    versioning = Versioning()

    @versioning.versioned(on="updated_at")
    class Story(Base):
        __tablename__ = "stories"
        id: Mapped[int] = mapped_column(primary_key=True)
        title: Mapped[str]
        updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow)

    versioning.listen(SessionLocal)
    versioning.auto_migrate(Story, engine)  # creates stories_versions too

    story = session.get(Story, 1)
    story.title = "New Title"
    session.commit()                       # one version with the old title
    len(versioning.history(session, story))  # 1
"""

from typing import Any, Callable, Sequence, TypeVar

from sqlalchemy import Connection, Engine, Select
from sqlalchemy.orm import Session

from recordversions.core.config import Settings
from recordversions.domain.entities.versioning_options import VersioningOptions
from recordversions.domain.services.capture_protocol import CaptureProtocol
from recordversions.infrastructure.persistence.event_listeners import VersioningListeners
from recordversions.infrastructure.persistence.history import (
    VersionHistory,
    history,
    history_statement,
)
from recordversions.infrastructure.persistence.record_state import (
    SQLAlchemyRecordState,
    enable_active_history,
)
from recordversions.infrastructure.persistence.schema_propagation import SchemaPropagator
from recordversions.infrastructure.persistence.shadow_schema import (
    VersionTypeRegistry,
    entity_mapper,
    get_version_registry,
)
from recordversions.infrastructure.persistence.version_writer import SQLAlchemyVersionWriter

T = TypeVar("T", bound=type)


class Versioning:
    """Entry point for versioning SQLAlchemy entity types."""

    def __init__(
        self,
        registry: VersionTypeRegistry | None = None,
        settings: Settings | None = None,
    ) -> None:
        """Initialize the facade.

        Args:
            registry: Version type registry. Defaults to the process-wide
                registry, or a new one when ``settings`` is given.
            settings: Naming settings for a new registry.
        """
        if registry is None:
            registry = VersionTypeRegistry(settings) if settings else get_version_registry()
        self.registry = registry
        self.record_state = SQLAlchemyRecordState(registry)
        self.writer = SQLAlchemyVersionWriter(registry)
        self.protocol = CaptureProtocol(self.record_state, self.writer)
        self.listeners = VersioningListeners(registry, self.protocol)
        self.propagator = SchemaPropagator(registry)

    def register(
        self,
        entity_cls: T,
        on: str | Sequence[str],
        timestamp_attributes: Sequence[str] | None = None,
    ) -> T:
        """Track changes to ``entity_cls``.

        Args:
            entity_cls: Mapped entity class.
            on: The versioning attribute; it receives a non-unique index on
                the version type.
            timestamp_attributes: Attributes refreshed before the final
                snapshot of a destroyed record. Defaults to the columns
                with a Python-side ``onupdate``.

        Returns:
            ``entity_cls``, unchanged.

        Raises:
            SchemaError: If a version type cannot be derived for the entity.
        """
        options = VersioningOptions.build(on, timestamp_attributes)
        self.registry.register(entity_cls, options)
        enable_active_history(entity_mapper(entity_cls))
        return entity_cls

    def versioned(
        self, on: str | Sequence[str], timestamp_attributes: Sequence[str] | None = None
    ) -> Callable[[T], T]:
        """Class decorator form of register()."""

        def decorator(entity_cls: T) -> T:
            return self.register(entity_cls, on=on, timestamp_attributes=timestamp_attributes)

        return decorator

    def version_type(self, entity_cls: type) -> type:
        """Return the version type of ``entity_cls``, deriving it on first use."""
        return self.registry.get_or_derive(entity_cls)

    def listen(self, target: Any) -> None:
        """Capture versions for flushes of ``target``.

        Args:
            target: A Session subclass, sessionmaker, Session or AsyncSession.
        """
        self.listeners.listen(target)

    def remove(self, target: Any) -> None:
        self.listeners.remove(target)

    def history(self, session: Session, instance: Any) -> VersionHistory:
        """Return ``instance``'s versions, most recent first."""
        return history(session, instance, self.registry)

    def history_statement(self, instance: Any) -> Select:
        return history_statement(instance, self.registry)

    def auto_migrate(self, entity_cls: type, bind: Engine | Connection) -> None:
        """Rebuild the entity table, then its version table. Destroys data."""
        self.propagator.auto_migrate(entity_cls, bind)

    def auto_upgrade(self, entity_cls: type, bind: Engine | Connection) -> None:
        """Create or extend the entity table, then its version table."""
        self.propagator.auto_upgrade(entity_cls, bind)

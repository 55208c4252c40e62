"""Read access to the versions recorded for an entity instance."""

from typing import Any, Iterator

from sqlalchemy import Select, false, func, inspect, select
from sqlalchemy.orm import Session, object_session

from recordversions.domain.entities.versioning_options import SEQUENCE_ATTRIBUTE
from recordversions.domain.exceptions import VersioningError
from recordversions.infrastructure.persistence.shadow_schema import (
    VersionTypeRegistry,
    entity_mapper,
    get_version_registry,
)


def _identity(instance: Any) -> tuple[Any, ...] | None:
    state = inspect(instance)
    if state.has_identity:
        return state.identity
    identity = state.mapper.primary_key_from_instance(instance)
    if any(value is None for value in identity):
        return None
    return tuple(identity)


def history_statement(instance: Any, registry: VersionTypeRegistry | None = None) -> Select:
    """Build the query for ``instance``'s versions, most recent first.

    Matches every primary key attribute of the entity type against the
    instance's value. Use this directly with an AsyncSession.

    Raises:
        VersioningError: If the instance's type is not versioned.
    """
    registry = registry or get_version_registry()
    version_cls = registry.get_or_derive(type(instance))
    mapper = entity_mapper(version_cls.__versioned_entity__)

    statement = select(version_cls).order_by(getattr(version_cls, SEQUENCE_ATTRIBUTE).desc())
    identity = _identity(instance)
    if identity is None:
        # Never persisted, so nothing was ever captured
        return statement.where(false())

    keys = [mapper.get_property_by_column(column).key for column in mapper.primary_key]
    return statement.where(
        *(getattr(version_cls, key) == value for key, value in zip(keys, identity))
    )


class VersionHistory:
    """Lazy, restartable view over an instance's versions.

    Nothing is queried until the history is iterated, counted or indexed;
    every iteration runs the query again and sees rows written since.
    """

    def __init__(self, session: Session, statement: Select) -> None:
        self.session = session
        self.statement = statement

    def __iter__(self) -> Iterator[Any]:
        return iter(self.session.scalars(self.statement))

    def __len__(self) -> int:
        count = select(func.count()).select_from(self.statement.order_by(None).subquery())
        return self.session.scalar(count) or 0

    def __getitem__(self, index: int | slice) -> Any:
        return self.all()[index]

    def all(self) -> list[Any]:
        return list(self.session.scalars(self.statement))

    def latest(self) -> Any | None:
        """Return the most recent version, or None."""
        return self.session.scalars(self.statement.limit(1)).first()

    def __repr__(self) -> str:
        return f"<VersionHistory({self.statement.column_descriptions[0]['name']})>"


def history(
    session: Session, instance: Any, registry: VersionTypeRegistry | None = None
) -> VersionHistory:
    """Return ``instance``'s versions, ordered by sequence_id descending."""
    return VersionHistory(session, history_statement(instance, registry))


class VersionedMixin:
    """Adds a ``versions`` accessor to a versioned declarative class.

    Example:
        class Story(VersionedMixin, Base):
            ...

        story.title = "New Title"
        session.commit()
        len(story.versions)  # 1
    """

    @property
    def versions(self) -> VersionHistory:
        session = object_session(self)
        if session is None:
            raise VersioningError(
                f"{type(self).__name__} instance is not attached to a session"
            )
        return history(session, self)

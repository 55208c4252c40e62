"""Shadow schema derivation for versioned entity types.

Builds the version type of an entity: a mapped class on the entity's own
registry and MetaData whose table copies every column of the entity with
key and uniqueness semantics removed, plus a surrogate ``sequence_id``
primary key and a ``destroyed`` flag.

Version types are derived lazily, once per entity type, and cached for the
lifetime of the process by VersionTypeRegistry.
"""

import threading
from typing import Any

from sqlalchemy import Boolean, Column, Integer, String, Table, false, inspect
from sqlalchemy.exc import NoInspectionAvailable
from sqlalchemy.orm import Mapper
from sqlalchemy.schema import ColumnDefault, DefaultClause
from sqlalchemy.types import SchemaType

from recordversions.core.config import Settings, get_settings
from recordversions.core.logging import get_logger
from recordversions.domain.entities.versioning_options import (
    DESTROYED_ATTRIBUTE,
    RESERVED_VERSION_ATTRIBUTES,
    SEQUENCE_ATTRIBUTE,
    VersioningOptions,
)
from recordversions.domain.exceptions import SchemaError, VersioningError
from recordversions.domain.services.ports import VersionTypeProvider

logger = get_logger(__name__)


class VersionRecordBase:
    """Base class of every derived version type.

    Version rows are immutable once written; instances of these classes are
    only ever produced by queries.
    """

    __versioned_entity__: type
    __versioning_options__: VersioningOptions
    __discriminator_key__: str | None = None

    def __init__(self, **kwargs: Any) -> None:
        for key, value in kwargs.items():
            setattr(self, key, value)

    def __repr__(self) -> str:
        return (
            f"<{type(self).__name__}({SEQUENCE_ATTRIBUTE}={getattr(self, SEQUENCE_ATTRIBUTE, None)}, "
            f"{DESTROYED_ATTRIBUTE}={getattr(self, DESTROYED_ATTRIBUTE, None)})>"
        )


def entity_mapper(entity_cls: type) -> Mapper:
    """Return the mapper of ``entity_cls``.

    Raises:
        SchemaError: If the class is not mapped.
    """
    try:
        mapper = inspect(entity_cls)
    except NoInspectionAvailable as e:
        raise SchemaError("not a mapped class", entity=entity_cls.__name__) from e
    if not isinstance(mapper, Mapper):
        raise SchemaError("not a mapped class", entity=entity_cls.__name__)
    return mapper


def copyable_columns(mapper: Mapper) -> list[tuple[str, Column]]:
    """List (attribute key, column) pairs for the mapper's table-bound columns.

    Relationships and SQL-expression column properties are not part of a
    snapshot and are skipped.
    """
    # Keyed by attribute name; reading it does not configure the registry
    return [
        (key, column)
        for key, column in mapper.columns.items()
        if isinstance(column, Column) and column.table is not None
    ]


def validate_entity(entity_cls: type, options: VersioningOptions) -> Mapper:
    """Check that a version type can be derived for ``entity_cls``.

    Raises:
        SchemaError: If the versioning attribute is unknown or the entity
            already uses a reserved version attribute name.
    """
    mapper = entity_mapper(entity_cls)
    keys = {key for key, _ in copyable_columns(mapper)}
    names = {column.name for _, column in copyable_columns(mapper)}

    if options.on not in keys:
        raise SchemaError(
            f"versioning attribute '{options.on}' is not a column attribute",
            entity=entity_cls.__name__,
        )

    clashes = sorted(RESERVED_VERSION_ATTRIBUTES & (keys | names))
    if clashes:
        raise SchemaError(
            f"attribute names {clashes} are reserved for the version type",
            entity=entity_cls.__name__,
        )

    for name in options.timestamp_attributes or ():
        if name not in keys:
            raise SchemaError(
                f"timestamp attribute '{name}' is not a column attribute",
                entity=entity_cls.__name__,
            )
    return mapper


def _is_identity(column: Column) -> bool:
    if not column.primary_key:
        return False
    if column.identity is not None:
        return True
    return column.table.autoincrement_column is column


def build_version_column(
    column: Column,
    versioned: bool,
    discriminator: bool,
    settings: Settings,
) -> Column:
    """Copy one entity column for the version table.

    Key, uniqueness, identity and foreign-key semantics are stripped so that
    many snapshots may share the same values. The versioning attribute is
    the only copied column that keeps an index.
    """
    if discriminator:
        type_ = String(settings.discriminator_length)
    elif _is_identity(column):
        type_ = Integer()
    else:
        type_ = column.type
        if isinstance(type_, SchemaType):
            type_ = type_.copy()

    kwargs: dict[str, Any] = {
        "nullable": column.nullable,
        "index": versioned,
        "comment": column.comment,
        "info": dict(column.info),
    }
    if column.doc:
        kwargs["doc"] = column.doc
    if isinstance(column.default, ColumnDefault):
        kwargs["default"] = column.default.arg
    if isinstance(column.server_default, DefaultClause):
        kwargs["server_default"] = column.server_default.arg

    return Column(column.name, type_, **kwargs)


def version_table_name(mapper: Mapper, settings: Settings) -> str:
    return f"{mapper.local_table.name}{settings.version_table_suffix}"


def derive_version_type(
    entity_cls: type,
    options: VersioningOptions,
    settings: Settings | None = None,
) -> type:
    """Derive and map the version type of ``entity_cls``.

    Callers should go through VersionTypeRegistry.get_or_derive(); calling
    this twice for the same entity fails because the table already exists
    in the entity's MetaData.

    Args:
        entity_cls: Mapped entity class.
        options: The entity's versioning options.
        settings: Naming settings. Defaults to get_settings().

    Returns:
        The mapped version class.

    Raises:
        SchemaError: If the entity cannot be versioned.
    """
    settings = settings or get_settings()
    mapper = validate_entity(entity_cls, options)
    polymorphic_on = mapper.polymorphic_on

    columns = []
    properties = {}
    discriminator_key = None
    for key, column in copyable_columns(mapper):
        is_discriminator = polymorphic_on is not None and column is polymorphic_on
        if is_discriminator:
            discriminator_key = key
        columns.append(
            build_version_column(column, key == options.on, is_discriminator, settings)
        )
        properties[key] = columns[-1]

    columns.append(Column(SEQUENCE_ATTRIBUTE, Integer, primary_key=True, autoincrement=True))
    columns.append(
        Column(
            DESTROYED_ATTRIBUTE,
            Boolean,
            nullable=False,
            default=False,
            server_default=false(),
        )
    )

    table = Table(
        version_table_name(mapper, settings),
        mapper.local_table.metadata,
        *columns,
        schema=mapper.local_table.schema,
        sqlite_autoincrement=True,
    )

    version_cls = type(
        f"{entity_cls.__name__}{settings.version_class_suffix}",
        (VersionRecordBase,),
        {
            "__module__": entity_cls.__module__,
            "__versioned_entity__": entity_cls,
            "__versioning_options__": options,
            "__discriminator_key__": discriminator_key,
        },
    )
    mapper.registry.map_imperatively(version_cls, table, properties=properties)
    mapper.registry.configure()

    logger.info(
        "Version type derived",
        entity=entity_cls.__name__,
        version_type=version_cls.__name__,
        table=table.name,
        versioning_attribute=options.on,
    )
    return version_cls


class VersionTypeRegistry(VersionTypeProvider):
    """Process-wide map from tracked entity types to their version types.

    Registration is thread-safe. Each entity type has its own derivation
    lock, so its version type is derived at most once; lookups of an
    already-derived type take no lock.
    """

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()
        self._options: dict[type, VersioningOptions] = {}
        self._version_types: dict[type, type] = {}
        self._derive_locks: dict[type, threading.Lock] = {}
        self._lock = threading.RLock()

    def register(self, entity_cls: type, options: VersioningOptions) -> None:
        """Start tracking ``entity_cls``.

        Registering the same entity again with equal options is a no-op.

        Raises:
            SchemaError: If a version type cannot be derived for the entity.
            VersioningError: If the entity is already registered with
                different options.
        """
        validate_entity(entity_cls, options)
        with self._lock:
            existing = self._options.get(entity_cls)
            if existing is not None:
                if existing != options:
                    raise VersioningError(
                        f"{entity_cls.__name__} is already versioned on '{existing.on}'"
                    )
                return
            self._options[entity_cls] = options
            self._derive_locks[entity_cls] = threading.Lock()

        logger.debug(
            "Entity registered for versioning",
            entity=entity_cls.__name__,
            versioning_attribute=options.on,
        )

    def tracked_entity(self, cls: type) -> type | None:
        """Return the registered entity type ``cls`` is, or inherits from."""
        for klass in cls.__mro__:
            if klass in self._options:
                return klass
        return None

    def is_tracked(self, entity_cls: type) -> bool:
        return self.tracked_entity(entity_cls) is not None

    def options_for(self, entity_cls: type) -> VersioningOptions:
        entity = self._require(entity_cls)
        return self._options[entity]

    def get_or_derive(self, entity_cls: type) -> type:
        entity = self._require(entity_cls)
        version_cls = self._version_types.get(entity)
        if version_cls is not None:
            return version_cls

        with self._derive_locks[entity]:
            version_cls = self._version_types.get(entity)
            if version_cls is None:
                version_cls = derive_version_type(entity, self._options[entity], self.settings)
                self._version_types[entity] = version_cls
        return version_cls

    def _require(self, entity_cls: type) -> type:
        entity = self.tracked_entity(entity_cls)
        if entity is None:
            raise VersioningError(f"{entity_cls.__name__} is not registered for versioning")
        return entity


# Global registry instance
_version_registry: VersionTypeRegistry | None = None
_registry_lock = threading.Lock()


def get_version_registry() -> VersionTypeRegistry:
    """Get the process-wide version type registry.

    Returns:
        VersionTypeRegistry: Global registry instance.
    """
    global _version_registry
    if _version_registry is None:
        with _registry_lock:
            if _version_registry is None:
                _version_registry = VersionTypeRegistry()
    return _version_registry

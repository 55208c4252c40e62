"""SQLAlchemy implementation of the VersionWriter port."""

from typing import Any, Mapping

from sqlalchemy import insert, inspect
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import object_session

from recordversions.core.logging import get_logger
from recordversions.domain.entities.versioning_options import DESTROYED_ATTRIBUTE
from recordversions.domain.exceptions import CaptureInsertError
from recordversions.domain.services.ports import VersionWriter
from recordversions.infrastructure.persistence.shadow_schema import VersionTypeRegistry

logger = get_logger(__name__)


class SQLAlchemyVersionWriter(VersionWriter):
    """Inserts version rows on the connection of the instance's session.

    The insert runs inside the session's current transaction, so a version
    row commits or rolls back together with the change it records.
    """

    def __init__(self, registry: VersionTypeRegistry) -> None:
        self.registry = registry

    def build_row(
        self, version_cls: type, fields: Mapping[str, Any], destroyed: bool
    ) -> dict[str, Any]:
        """Map attribute values to version table column values.

        Attributes the version type does not carry (for example columns
        added by a single-table subclass) are dropped.
        """
        mapper = inspect(version_cls)
        discriminator_key = version_cls.__discriminator_key__
        row = {}
        for prop in mapper.column_attrs:
            if prop.key not in fields:
                continue
            value = fields[prop.key]
            if prop.key == discriminator_key and value is not None:
                value = str(value)
            row[prop.columns[0].name] = value
        row[DESTROYED_ATTRIBUTE] = destroyed
        return row

    def insert(self, instance: Any, fields: Mapping[str, Any], destroyed: bool) -> None:
        entity_name = type(instance).__name__
        session = object_session(instance)
        if session is None:
            raise CaptureInsertError(entity_name, destroyed, "instance is not attached to a session")

        version_cls = self.registry.get_or_derive(type(instance))
        table = inspect(version_cls).local_table
        row = self.build_row(version_cls, fields, destroyed)

        try:
            connection = session.connection(
                bind_arguments={"mapper": inspect(type(instance))}
            )
            connection.execute(insert(table).values(row))
        except SQLAlchemyError as e:
            logger.error(
                "Version insert failed",
                entity=entity_name,
                table=table.name,
                destroyed=destroyed,
                error=str(e),
            )
            raise CaptureInsertError(entity_name, destroyed, str(e)) from e

        logger.debug("Version row inserted", entity=entity_name, table=table.name, destroyed=destroyed)

"""Schema creation and migration for versioned entity types.

Every operation runs against the entity's own table first and, once that
has completed, repeats against the version table. With an Engine each step
runs in its own transaction; with a Connection both run in the caller's.
"""

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import Column, Connection, Engine, Table, inspect, literal, text
from sqlalchemy.engine import Dialect
from sqlalchemy.schema import DefaultClause
from sqlalchemy.sql.elements import ClauseElement

from recordversions.core.logging import LoggingContext, get_logger
from recordversions.infrastructure.persistence.shadow_schema import (
    VersionTypeRegistry,
    entity_mapper,
)

logger = get_logger(__name__)


@contextmanager
def _transaction(bind: Engine | Connection) -> Iterator[Connection]:
    if isinstance(bind, Connection):
        yield bind
    else:
        with bind.begin() as conn:
            yield conn


def render_server_default(column: Column, dialect: Dialect) -> str | None:
    """Render a column's server default as a DDL ``DEFAULT`` clause."""
    if not isinstance(column.server_default, DefaultClause):
        return None
    arg = column.server_default.arg
    if isinstance(arg, str):
        arg = literal(arg)
    if isinstance(arg, ClauseElement):
        compiled = arg.compile(dialect=dialect, compile_kwargs={"literal_binds": True})
        return f"DEFAULT {compiled}"
    return None


def build_add_column_ddl(table: Table, columns: list[Column], dialect: Dialect) -> list[str]:
    """Build ALTER TABLE ADD COLUMN statements for new columns.

    Args:
        table: The table being altered.
        columns: Columns to add.
        dialect: Dialect to render types and identifiers for.

    Returns:
        List of DDL statements.
    """
    preparer = dialect.identifier_preparer
    table_name = preparer.format_table(table)
    ddl_statements = []

    for column in columns:
        parts = [preparer.quote(column.name), column.type.compile(dialect=dialect)]

        # Existing rows need a value, so NOT NULL only goes with a default
        default = render_server_default(column, dialect)
        if default is not None:
            parts.append(default)
            if not column.nullable:
                parts.append("NOT NULL")

        ddl_statements.append(f"ALTER TABLE {table_name} ADD COLUMN {' '.join(parts)};")

    return ddl_statements


class SchemaPropagator:
    """Forwards schema operations on an entity type to its version type."""

    def __init__(self, registry: VersionTypeRegistry) -> None:
        self.registry = registry

    def tables(self, entity_cls: type) -> tuple[Table, Table]:
        """Return the (entity table, version table) pair."""
        entity_table = entity_mapper(entity_cls).local_table
        version_cls = self.registry.get_or_derive(entity_cls)
        return entity_table, entity_mapper(version_cls).local_table

    def auto_migrate(self, entity_cls: type, bind: Engine | Connection) -> None:
        """Drop and recreate the entity table, then the version table.

        WARNING: This deletes all rows of both tables.
        """
        entity_table, version_table = self.tables(entity_cls)
        with LoggingContext(entity=entity_cls.__name__):
            for table in (entity_table, version_table):
                with _transaction(bind) as conn:
                    self.rebuild_table(conn, table)

    def auto_upgrade(self, entity_cls: type, bind: Engine | Connection) -> None:
        """Create or extend the entity table, then the version table.

        Missing tables are created; missing columns and indexes are added.
        Nothing is dropped or altered.
        """
        entity_table, version_table = self.tables(entity_cls)
        with LoggingContext(entity=entity_cls.__name__):
            for table in (entity_table, version_table):
                with _transaction(bind) as conn:
                    self.upgrade_table(conn, table)

    def rebuild_table(self, conn: Connection, table: Table) -> None:
        logger.info("Rebuilding table", table_name=table.name)
        table.drop(conn, checkfirst=True)
        table.create(conn)
        logger.debug("Table rebuilt", table_name=table.name)

    def upgrade_table(self, conn: Connection, table: Table) -> None:
        inspector = inspect(conn)
        if not inspector.has_table(table.name, schema=table.schema):
            table.create(conn)
            logger.info("Table created", table_name=table.name)
            return

        existing = {col["name"] for col in inspector.get_columns(table.name, schema=table.schema)}
        missing = [col for col in table.columns if col.name not in existing]

        addable = []
        for column in missing:
            if column.primary_key:
                logger.warning(
                    "Cannot add primary key column to existing table",
                    table_name=table.name,
                    column=column.name,
                )
                continue
            addable.append(column)

        for ddl in build_add_column_ddl(table, addable, conn.dialect):
            conn.execute(text(ddl))
            logger.debug("Column added", ddl=ddl)

        existing_indexes = {
            index["name"] for index in inspector.get_indexes(table.name, schema=table.schema)
        }
        for index in table.indexes:
            if index.name not in existing_indexes:
                index.create(conn)
                logger.debug("Index created", index=index.name)

        logger.info(
            "Table upgraded",
            table_name=table.name,
            column_count=len(addable),
        )

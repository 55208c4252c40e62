"""SQLAlchemy implementation of the RecordState port.

Answers the capture protocol's questions about an instance from its ORM
attribute history. Tracked column and many-to-one attributes have active
history switched on, so assigning to an expired attribute loads the old
value first and ``history.deleted`` always holds the pre-edit value.
"""

from typing import Any, MutableMapping

from sqlalchemy import event, inspect
from sqlalchemy.orm import MANYTOONE, Mapper
from sqlalchemy.orm.state import InstanceState
from sqlalchemy.schema import ColumnDefault

from recordversions.core.logging import get_logger
from recordversions.domain.services.ports import RecordState
from recordversions.infrastructure.persistence.shadow_schema import (
    VersionTypeRegistry,
    copyable_columns,
)

logger = get_logger(__name__)


def _many_to_one(mapper: Mapper) -> list[Any]:
    return [
        rel
        for rel in mapper.relationships
        if rel.direction is MANYTOONE and not rel.viewonly
    ]


def _activate_history(mapper: Mapper) -> None:
    keys = [key for key, _ in copyable_columns(mapper)]
    keys.extend(rel.key for rel in _many_to_one(mapper))
    for key in keys:
        getattr(mapper.class_, key).impl.active_history = True


def _on_mapper_configured(mapper: Mapper, class_: type) -> None:
    _activate_history(mapper)


def enable_active_history(mapper: Mapper) -> None:
    """Make column and many-to-one attributes load old values before a set.

    Attribute implementations exist only once a mapper is configured, so
    mappers configured later (including subclasses) are handled when their
    ``mapper_configured`` event fires.
    """
    for sub_mapper in mapper.self_and_descendants:
        if sub_mapper.configured:
            _activate_history(sub_mapper)
    if not event.contains(mapper, "mapper_configured", _on_mapper_configured):
        event.listen(mapper, "mapper_configured", _on_mapper_configured, propagate=True)


class SQLAlchemyRecordState(RecordState):
    """RecordState backed by sqlalchemy.inspect(instance)."""

    def __init__(self, registry: VersionTypeRegistry) -> None:
        self.registry = registry

    def original_attributes(self, instance: Any) -> dict[str, Any]:
        state = self._state(instance)
        values = {}
        for key, _ in copyable_columns(state.mapper):
            history = state.attrs[key].load_history()
            if history.deleted:
                values[key] = history.deleted[0]
            elif history.unchanged:
                values[key] = history.unchanged[0]
        return values

    def current_attributes(self, instance: Any) -> dict[str, Any]:
        mapper = self._state(instance).mapper
        return {key: getattr(instance, key) for key, _ in copyable_columns(mapper)}

    def is_dirty(self, instance: Any) -> bool:
        """Check for changed column attributes or re-assigned many-to-one references.

        A many-to-one assignment only reaches its foreign key columns inside
        the flush, so it is checked on the relationship itself.
        """
        state = self._state(instance)
        if any(
            state.attrs[key].history.has_changes()
            for key, _ in copyable_columns(state.mapper)
        ):
            return True
        return any(
            state.attrs[rel.key].history.has_changes() for rel in _many_to_one(state.mapper)
        )

    def is_new(self, instance: Any) -> bool:
        state = self._state(instance)
        return state.transient or state.pending

    def is_clean(self, instance: Any) -> bool:
        return self._state(instance).persistent and not self.is_dirty(instance)

    def pending_slot(self, instance: Any) -> MutableMapping[str, Any]:
        return self._state(instance).info

    def refresh_timestamps(self, instance: Any) -> tuple[str, ...]:
        """Assign each timestamp attribute its column's ``onupdate`` value.

        Raises:
            ValueError: If an attribute has no Python-side ``onupdate``.
        """
        mapper = self._state(instance).mapper
        options = self.registry.options_for(type(instance))
        columns = dict(copyable_columns(mapper))

        if options.timestamp_attributes is None:
            names = [
                key
                for key, column in columns.items()
                if isinstance(column.onupdate, ColumnDefault)
                and not column.onupdate.is_clause_element
            ]
        else:
            names = list(options.timestamp_attributes)

        refreshed = []
        for name in names:
            onupdate = columns[name].onupdate
            if not isinstance(onupdate, ColumnDefault):
                raise ValueError(f"'{name}' has no onupdate default")
            if onupdate.is_callable:
                value = onupdate.arg(None)
            elif onupdate.is_scalar:
                value = onupdate.arg
            else:
                raise ValueError(f"'{name}' is updated by a SQL expression")
            setattr(instance, name, value)
            refreshed.append(name)
        return tuple(refreshed)

    @staticmethod
    def _state(instance: Any) -> InstanceState:
        return inspect(instance)

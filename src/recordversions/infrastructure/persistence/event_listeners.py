"""SQLAlchemy session listeners that drive the capture protocol.

The session flush is the host's persistence call. Around it:

- before_flush: before_save for new and dirty tracked instances, then
  before_destroy for deleted ones (their version rows are written before
  the DELETE is emitted).
- before_delete (mapper level): before_destroy for tracked instances the
  unit of work deletes on its own during the flush, such as orphans removed
  by a ``delete-orphan`` cascade.
- after_flush_postexec: after_save(succeeded=True) for the instances
  handled in before_flush; their attribute history is reset by now.
- after_soft_rollback: after_save(succeeded=False) for those instances if
  the flush or its transaction failed.

Errors raised here propagate out of Session.flush()/commit().
"""

from typing import Any

from sqlalchemy import event
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapper, Session, object_session

from recordversions.core.logging import get_logger
from recordversions.domain.services.ports import CaptureHooks, VersionTypeProvider

logger = get_logger(__name__)

SAVED_KEY = "recordversions.saved"
DESTROYED_KEY = "recordversions.destroyed"

_EVENTS = ("before_flush", "after_flush_postexec", "after_soft_rollback")


def resolve_event_target(target: Any) -> Any:
    """Map an AsyncSession (instance or class) to the Session it drives."""
    if isinstance(target, AsyncSession):
        return target.sync_session
    if isinstance(target, type) and issubclass(target, AsyncSession):
        return target.sync_session_class
    return target


class VersioningListeners:
    """Binds CaptureHooks to a session target's flush events.

    The mapper-level ``before_delete`` listener is global once installed; it
    only acts during flushes of sessions whose ``before_flush`` ran here.
    """

    def __init__(self, registry: VersionTypeProvider, hooks: CaptureHooks) -> None:
        self.registry = registry
        self.hooks = hooks

    def listen(self, target: Any) -> None:
        """Register listeners on a Session class, sessionmaker or session."""
        target = resolve_event_target(target)
        for name in _EVENTS:
            if not event.contains(target, name, getattr(self, name)):
                event.listen(target, name, getattr(self, name))
        if not event.contains(Mapper, "before_delete", self.before_delete):
            event.listen(Mapper, "before_delete", self.before_delete)
        logger.info("Registered versioning listeners", target=repr(target))

    def remove(self, target: Any) -> None:
        target = resolve_event_target(target)
        for name in _EVENTS:
            if event.contains(target, name, getattr(self, name)):
                event.remove(target, name, getattr(self, name))

    def before_flush(self, session: Session, flush_context: Any, instances: Any) -> None:
        saved: list[Any] = []
        destroyed: set[int] = set()
        session.info[SAVED_KEY] = saved
        session.info[DESTROYED_KEY] = destroyed

        for instance in list(session.new) + list(session.dirty):
            if self.registry.is_tracked(type(instance)):
                saved.append(instance)
                self.hooks.before_save(instance)

        for instance in list(session.deleted):
            if self.registry.is_tracked(type(instance)):
                destroyed.add(id(instance))
                self.hooks.before_destroy(instance)

    def before_delete(self, mapper: Mapper, connection: Connection, target: Any) -> None:
        session = object_session(target)
        if session is None:
            return
        destroyed = session.info.get(DESTROYED_KEY)
        # Not a flush of a listening session, or already captured
        if destroyed is None or id(target) in destroyed:
            return
        if not self.registry.is_tracked(type(target)):
            return

        destroyed.add(id(target))
        logger.debug("Capturing record deleted by cascade", entity=type(target).__name__)
        self.hooks.before_destroy(target)

    def after_flush_postexec(self, session: Session, flush_context: Any) -> None:
        # Instances left in the list on failure are cleared by after_soft_rollback
        saved = session.info.get(SAVED_KEY, [])
        while saved:
            self.hooks.after_save(saved.pop(0), succeeded=True)
        session.info.pop(SAVED_KEY, None)
        session.info.pop(DESTROYED_KEY, None)

    def after_soft_rollback(self, session: Session, previous_transaction: Any) -> None:
        session.info.pop(DESTROYED_KEY, None)
        saved = session.info.pop(SAVED_KEY, ())
        for instance in saved:
            self.hooks.after_save(instance, succeeded=False)
        if saved:
            logger.debug("Discarded pending versions after rollback", count=len(saved))

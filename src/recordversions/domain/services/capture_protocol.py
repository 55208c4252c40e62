"""Snapshot capture protocol.

Decides when a version row must be written and what it contains, given the
before-save / after-save / before-destroy calls the host makes around its
own persistence operations:

- before_save captures the pre-edit attribute values of a dirty, persisted
  instance; anything else clears the pending capture.
- after_save writes one version (current values overlaid with the captured
  ones) if the save committed, then always clears the pending capture.
- before_destroy writes the last persisted image, and, when the instance
  carries unsaved edits, a second image of those edits flagged destroyed.

Version rows are only ever inserted. A failed insert propagates and aborts
the enclosing save or destroy.
"""

from typing import Any

from recordversions.core.logging import get_logger
from recordversions.domain.entities.pending_capture import PendingCapture, TimestampRefresh
from recordversions.domain.services.ports import CaptureHooks, RecordState, VersionWriter

logger = get_logger(__name__)

PENDING_KEY = "recordversions.pending"


class CaptureProtocol(CaptureHooks):
    """Per-instance capture state machine.

    Holds no state of its own; each instance's PendingCapture lives in the
    scratch slot the host provides for it, so instances are independent.
    """

    def __init__(self, record_state: RecordState, writer: VersionWriter) -> None:
        """Initialize the protocol.

        Args:
            record_state: Host adapter answering dirty/new/clean questions.
            writer: Sink for version rows.
        """
        self.record_state = record_state
        self.writer = writer

    def pending(self, instance: Any) -> PendingCapture:
        """Return the capture currently held for ``instance``."""
        return self.record_state.pending_slot(instance).get(PENDING_KEY, PendingCapture.empty())

    def before_save(self, instance: Any) -> None:
        state = self.record_state
        if state.is_dirty(instance) and not state.is_new(instance):
            self._set_pending(instance, self._capture(instance))
        else:
            self._clear_pending(instance)

    def after_save(self, instance: Any, succeeded: bool) -> None:
        try:
            pending = self.pending(instance)
            if succeeded and pending and self.record_state.is_clean(instance):
                fields = pending.merged_over(self.record_state.current_attributes(instance))
                self.writer.insert(instance, fields, destroyed=False)
                logger.debug(
                    "Version captured on save",
                    entity=type(instance).__name__,
                    attributes=len(fields),
                )
        finally:
            self._clear_pending(instance)

    def before_destroy(self, instance: Any) -> None:
        state = self.record_state
        # Ignore local edits: this is the last persisted image
        pending = self._capture(instance)
        self._set_pending(instance, pending)
        try:
            dirty = state.is_dirty(instance)
            self.writer.insert(
                instance,
                pending.merged_over(state.current_attributes(instance)),
                destroyed=False,
            )

            if dirty:
                self.refresh_timestamps(instance)
                self.writer.insert(instance, state.current_attributes(instance), destroyed=True)

            logger.debug(
                "Versions captured on destroy",
                entity=type(instance).__name__,
                count=2 if dirty else 1,
            )
        finally:
            self._clear_pending(instance)

    def refresh_timestamps(self, instance: Any) -> TimestampRefresh:
        """Best-effort refresh of auto-timestamp attributes.

        Failures are logged and reported in the result, never raised.
        """
        try:
            refreshed = self.record_state.refresh_timestamps(instance)
        except Exception as e:
            logger.warning(
                "Timestamp refresh skipped",
                entity=type(instance).__name__,
                error=str(e),
            )
            return TimestampRefresh(error=str(e))
        return TimestampRefresh(refreshed=tuple(refreshed))

    def _capture(self, instance: Any) -> PendingCapture:
        return PendingCapture(self.record_state.original_attributes(instance))

    def _set_pending(self, instance: Any, pending: PendingCapture) -> None:
        self.record_state.pending_slot(instance)[PENDING_KEY] = pending

    def _clear_pending(self, instance: Any) -> None:
        self.record_state.pending_slot(instance).pop(PENDING_KEY, None)

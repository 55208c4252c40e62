"""Exceptions raised by the versioning engine."""


class VersioningError(Exception):
    """Base class for all versioning errors."""
    pass


class SchemaError(VersioningError):
    """Raised when a version schema cannot be derived for an entity type.

    Registration must not proceed when this is raised.
    """

    def __init__(self, message: str, entity: str | None = None):
        self.entity = entity
        super().__init__(f"{entity}: {message}" if entity else message)


class CaptureInsertError(VersioningError):
    """Raised when the store rejects a version row insert.

    Aborts the enclosing save or destroy; the original store error is
    chained as ``__cause__``.
    """

    def __init__(self, entity: str, destroyed: bool, reason: str):
        self.entity = entity
        self.destroyed = destroyed
        self.reason = reason
        super().__init__(
            f"Failed to record {'destroyed ' if destroyed else ''}version of {entity}: {reason}"
        )

"""Domain services for recordversions.

Services contain the capture logic. They depend only on the abstract ports
in this package, never on SQLAlchemy.
"""

from recordversions.domain.services.capture_protocol import CaptureProtocol
from recordversions.domain.services.ports import (
    CaptureHooks,
    RecordState,
    VersionTypeProvider,
    VersionWriter,
)

__all__ = [
    "CaptureHooks",
    "CaptureProtocol",
    "RecordState",
    "VersionTypeProvider",
    "VersionWriter",
]

"""
Error taxonomy for the trigger engine.

None of these errors is fatal to the process: every component absorbs its own
failure class and the work is retried on the next scheduled cycle.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class AAFloodError(Exception):
    """Base class for all aaflood errors."""


class FetchErrorKind(str, Enum):
    UNREACHABLE = "Unreachable"
    TIMEOUT = "Timeout"
    UNEXPECTED_FORMAT = "UnexpectedFormat"


class FetchError(AAFloodError):
    """An upstream source could not deliver usable data this cycle."""

    def __init__(self, kind: FetchErrorKind, source: str, message: str = ""):
        self.kind = kind
        self.source = source
        super().__init__(f"{source}: {kind.value}: {message}" if message else f"{source}: {kind.value}")


class EvaluationError(AAFloodError):
    """A trigger statement could not be evaluated."""

    def __init__(self, message: str, trigger_uuid: Optional[str] = None):
        self.trigger_uuid = trigger_uuid
        super().__init__(message)


class MalformedStatement(EvaluationError):
    """The stored statement is not a valid expression tree."""


class FieldMismatch(EvaluationError):
    """The statement references a field the reading lacks, or compares incompatible types."""


class DispatchError(AAFloodError):
    """An external communication or payout send failed."""


class ReconcileError(AAFloodError):
    """A batch post to the on-chain action endpoint failed."""


class PhaseError(AAFloodError):
    """A phase operation was refused (unknown phase, or not in a state that allows it)."""

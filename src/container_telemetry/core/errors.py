"""Exception taxonomy for metric derivation.

Counter resets and zero denominators are not errors: they are handled where the
value is computed (suppressed signal, or a defined 0.0 result).
"""

from __future__ import annotations


class MetricsError(Exception):
    """Base class for failures local to one entity's tick."""


class MissingFieldError(MetricsError):
    """A required field of one metric family is absent from a snapshot."""

    def __init__(self, family: str, field: str) -> None:
        self.family = family
        self.field = field
        super().__init__(f"{family}: missing required field '{field}'")


class SnapshotValidationError(MetricsError):
    """A raw snapshot could not be validated at the boundary."""


class SourceUnavailableError(MetricsError):
    """An external counter source (file, syscall) could not be read."""

    def __init__(self, source: str, reason: str = "") -> None:
        self.source = source
        message = f"source unavailable: {source}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)

"""
Error taxonomy for the scheduling engine.

Every engine error carries a short CODE and renders as "<CODE>: <detail>",
which is also the exact text recorded in per-command results.

- NOT_FOUND    referenced task/block id absent
- UNSUPPORTED  unknown command type
- READ_FAIL    inbox (or other blob) unreadable, e.g. absent
- VALIDATION   malformed date/time or payload input

Conflict-policy outcomes (block, push without a gap) are NOT errors; they are
reported as notices by blockcal.schedule.conflicts.
"""


class BlockcalError(Exception):
    """Base class for engine errors."""

    code = "ERROR"

    def __init__(self, detail: str = ""):
        self.detail = detail
        super().__init__(f"{self.code}: {detail}" if detail else self.code)


class NotFoundError(BlockcalError):
    """Raised when a task or block id does not exist."""

    code = "NOT_FOUND"


class UnsupportedCommandError(BlockcalError):
    """Raised when a command type has no handler."""

    code = "UNSUPPORTED"


class ReadFailError(BlockcalError):
    """Raised when a text blob cannot be read."""

    code = "READ_FAIL"


class ValidationError(BlockcalError):
    """Raised for malformed dates, times or payloads."""

    code = "VALIDATION"

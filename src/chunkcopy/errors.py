"""
Exceptions raised by the copy engine.

Filesystem errors are not wrapped: ``OSError`` and its subclasses propagate
unchanged. Cancellation is not an error and has no exception here.
"""


class CopyError(Exception):
    """Base class for errors raised deliberately by chunkcopy."""


class ValidationError(CopyError, ValueError):
    """Invalid job configuration, e.g. a chunk size below the minimum."""


class ResumeStateError(CopyError):
    """
    The checkpoint cannot be trusted.

    Raised when the offset file content is not a decimal integer, or when it
    records more bytes than the source file contains.
    """


class InvariantViolation(CopyError):
    """Internal pipeline state went out of sync. Never retried."""

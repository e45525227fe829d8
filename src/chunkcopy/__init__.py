"""
chunkcopy: resumable chunked file copy.

Copies a single file in fixed-size chunks through a bounded read/write
pipeline and keeps the committed byte offset in a side file, so an
interrupted copy continues from the last completed chunk.
"""

from .checkpoint import CheckpointStore
from .copier import (
    DEFAULT_CHUNK_SIZE,
    DEFAULT_MAX_CHUNKS_BUFFER,
    MIN_CHUNK_SIZE,
    Copier,
    CopyJob,
    CopyResult,
    JobState,
    default_checkpoint_path,
)
from .errors import CopyError, InvariantViolation, ResumeStateError, ValidationError
from .main import main
from .pipeline import ChunkPayload, plan_chunks
from .progress import ProgressReporter

__version__ = "1.0.0"
__description__ = "Resumable chunked file copy"

__all__ = [
    "CheckpointStore",
    "ChunkPayload",
    "Copier",
    "CopyError",
    "CopyJob",
    "CopyResult",
    "DEFAULT_CHUNK_SIZE",
    "DEFAULT_MAX_CHUNKS_BUFFER",
    "InvariantViolation",
    "JobState",
    "MIN_CHUNK_SIZE",
    "ProgressReporter",
    "ResumeStateError",
    "ValidationError",
    "default_checkpoint_path",
    "main",
    "plan_chunks",
]

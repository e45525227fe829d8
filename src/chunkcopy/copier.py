"""
Job configuration and the pipeline orchestrator.

``Copier`` owns the file handles for one job, decides where to resume, wires
the feed, reader and writer stages together and waits for them.
"""

import argparse
import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

import aiofiles

from .checkpoint import CheckpointStore
from .errors import CopyError, ValidationError
from .pipeline import IndexFeed, ReaderStage, WriterStage, plan_chunks
from .progress import ProgressReporter

DEFAULT_CHUNK_SIZE = 10 * 1024 * 1024  # 10MB
MIN_CHUNK_SIZE = 1024
DEFAULT_MAX_CHUNKS_BUFFER = 10
CHECKPOINT_SUFFIX = ".offset"


class JobState(Enum):
    """Lifecycle of a copy job."""

    NOT_STARTED = "not_started"
    RESUME_DETERMINATION = "resume_determination"
    ALREADY_COMPLETE = "already_complete"
    STREAMING_COPY = "streaming_copy"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass(frozen=True)
class CopyJob:
    """
    Configuration for one resumable copy.

    Attributes
    ----------
    source : Path
        File to copy
    destination : Path
        File to write
    checkpoint : Path | None, default=None
        Offset file; ``<destination>.offset`` when omitted
    chunk_size : int, default=10MB
        Bytes per chunk, at least 1024
    max_chunks_buffer : int, default=10
        Depth of each queue between stages

    Raises
    ------
    ValidationError
        If a size limit is not met
    """

    source: Path
    destination: Path
    checkpoint: Path | None = None
    chunk_size: int = DEFAULT_CHUNK_SIZE
    max_chunks_buffer: int = DEFAULT_MAX_CHUNKS_BUFFER

    def __post_init__(self):
        """Normalise paths and validate sizes."""
        if self.chunk_size < MIN_CHUNK_SIZE:
            raise ValidationError("The chunk size should be at least a 1KB")
        if self.max_chunks_buffer < 1:
            raise ValidationError(
                f"At least one chunk must fit in the buffer, got {self.max_chunks_buffer}"
            )

        object.__setattr__(self, "source", Path(self.source))
        object.__setattr__(self, "destination", Path(self.destination))
        checkpoint = self.checkpoint
        if checkpoint is None or not str(checkpoint).strip():
            checkpoint = default_checkpoint_path(self.destination)
        object.__setattr__(self, "checkpoint", Path(checkpoint))

    @classmethod
    def from_args(cls, args: argparse.Namespace) -> "CopyJob":
        """Create a job from command-line arguments."""
        return cls(
            source=Path(args.source),
            destination=Path(args.destination),
            checkpoint=Path(args.offset) if args.offset else None,
            chunk_size=args.chunk_size,
            max_chunks_buffer=args.max_chunks,
        )


def default_checkpoint_path(destination: Path) -> Path:
    """Return ``<destination>.offset``."""
    destination = Path(destination)
    return destination.with_name(destination.name + CHECKPOINT_SUFFIX)


@dataclass
class CopyResult:
    """
    Outcome of :meth:`Copier.start`.

    Attributes
    ----------
    job : CopyJob
        The job that ran
    state : JobState
        Terminal state reached
    source_size : int
        Source size in bytes
    start_offset : int
        Offset the run resumed from
    final_offset : int
        Offset recorded when the run ended
    chunks_written : int
        Chunks committed by this run
    duration : float
        Wall time in seconds
    """

    job: CopyJob
    state: JobState = JobState.NOT_STARTED
    source_size: int = 0
    start_offset: int = 0
    final_offset: int = 0
    chunks_written: int = 0
    duration: float = field(default=0.0, compare=False)

    @property
    def bytes_copied(self) -> int:
        return self.final_offset - self.start_offset

    @property
    def success(self) -> bool:
        """True when the destination is complete."""
        return self.state in (JobState.COMPLETED, JobState.ALREADY_COMPLETE)


class Copier:
    """
    Resumable chunked copy of ``job.source`` to ``job.destination``.

    A copier runs once. Handles are released by :meth:`close`, which
    :meth:`start` calls on every exit path.

    Parameters
    ----------
    job : CopyJob
        Validated job configuration
    progress : ProgressReporter | None, default=None
        Progress sink; a silent reporter is used when omitted
    """

    def __init__(self, job: CopyJob, progress: ProgressReporter | None = None):
        self.job = job
        self.progress = progress if progress is not None else ProgressReporter()
        self.state = JobState.NOT_STARTED
        self._checkpoint: CheckpointStore | None = None
        self._source_file = None
        self._destination_file = None

    async def start(self, cancel: asyncio.Event | None = None) -> CopyResult:
        """
        Copy until done, cancelled or failed.

        Parameters
        ----------
        cancel : asyncio.Event | None, default=None
            Cooperative cancellation signal. When set, no further chunk is
            started; chunks already being written are committed first.

        Returns
        -------
        CopyResult
            Result in state ``COMPLETED``, ``ALREADY_COMPLETE`` or ``CANCELLED``

        Raises
        ------
        ResumeStateError
            If the offset file is corrupt or ahead of the source
        InvariantViolation
            If the pipeline loses track of file positions
        OSError
            On filesystem errors
        """
        if self.state is not JobState.NOT_STARTED:
            raise CopyError(f"Copier already ran (state: {self.state.value})")

        if cancel is None:
            cancel = asyncio.Event()

        started = time.monotonic()
        result = CopyResult(job=self.job)
        self.state = JobState.RESUME_DETERMINATION

        try:
            size = self.job.source.stat().st_size
            self._prepare_destination()

            self._checkpoint = CheckpointStore(self.job.checkpoint)
            offset = await self._checkpoint.load()
            result.source_size = size
            result.start_offset = result.final_offset = offset

            indices = plan_chunks(size, offset, self.job.chunk_size)
            if not indices:
                if size == 0 and not self.job.destination.exists():
                    self.job.destination.touch()
                logging.info(f"{self.job.destination} is already complete")
                self.state = JobState.ALREADY_COMPLETE
                return result

            self.state = JobState.STREAMING_COPY
            await self._open_streams(offset)
            writer = await self._run_pipeline(indices, offset, size, cancel)

            result.chunks_written = writer.chunks_written
            result.final_offset = self._checkpoint.offset
            if result.final_offset == size:
                self.state = JobState.COMPLETED
            else:
                logging.info(f"copy cancelled at offset {result.final_offset:,}")
                self.state = JobState.CANCELLED
            return result

        except asyncio.CancelledError:
            self.state = JobState.CANCELLED
            raise
        except BaseException:
            self.state = JobState.FAILED
            raise
        finally:
            if self._checkpoint is not None and self._checkpoint.offset is not None:
                result.final_offset = self._checkpoint.offset
            result.state = self.state
            result.duration = time.monotonic() - started
            await self.close()

    async def close(self) -> None:
        """Release every open handle. Errors are raised after all are closed."""
        first_error: BaseException | None = None
        handles = [self._source_file, self._destination_file]
        self._source_file = self._destination_file = None
        checkpoint, self._checkpoint = self._checkpoint, None

        for handle in handles:
            if handle is None:
                continue
            try:
                await handle.close()
            except OSError as e:
                logging.error(f"Failed to close file handle: {e}")
                first_error = first_error or e

        if checkpoint is not None:
            try:
                await checkpoint.close()
            except OSError as e:
                logging.error(f"Failed to close {checkpoint.path}: {e}")
                first_error = first_error or e

        if first_error is not None:
            raise first_error

    async def __aenter__(self) -> "Copier":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # ------------------------------------------------------------------------
    # Internal methods
    # ------------------------------------------------------------------------

    def _prepare_destination(self) -> None:
        """Create parent directories for the destination and offset file."""
        self.job.destination.parent.mkdir(parents=True, exist_ok=True)
        self.job.checkpoint.parent.mkdir(parents=True, exist_ok=True)

    async def _open_streams(self, offset: int) -> None:
        """
        Open source and destination and position both at ``offset``.

        Anything in the destination past the committed offset was never
        recorded and is cut off.
        """
        destination = self.job.destination
        self._source_file = await aiofiles.open(self.job.source, "rb")

        exists = destination.exists()
        existing = destination.stat().st_size if exists else 0
        if existing < offset:
            logging.warning(
                f"{destination} holds {existing:,} bytes but the offset file "
                f"records {offset:,}; the gap will read back as zeros"
            )
        self._destination_file = await aiofiles.open(
            destination, "r+b" if exists else "wb"
        )

        await self._destination_file.truncate(offset)
        await self._source_file.seek(offset)
        await self._destination_file.seek(offset)

    async def _run_pipeline(
        self, indices: range, offset: int, size: int, cancel: asyncio.Event
    ) -> WriterStage:
        """Run feed, reader and writer until the writer drains or all stop."""
        logging.info(
            f"copying {size - offset:,} bytes in {len(indices)} chunk(s) "
            f"of {self.job.chunk_size:,} bytes"
        )
        stop = asyncio.Event()
        read_queue: asyncio.Queue = asyncio.Queue(maxsize=self.job.max_chunks_buffer)
        write_queue: asyncio.Queue = asyncio.Queue(maxsize=self.job.max_chunks_buffer)

        stages = [
            IndexFeed(indices, read_queue, stop),
            ReaderStage(
                self._source_file,
                offset,
                self.job.chunk_size,
                read_queue,
                write_queue,
                stop,
                self.progress,
            ),
            WriterStage(
                self._destination_file,
                self._checkpoint,
                offset,
                self.job.chunk_size,
                size,
                write_queue,
                stop,
                self.progress,
            ),
        ]
        writer = stages[-1]

        async def relay_cancel() -> None:
            await cancel.wait()
            stop.set()

        if cancel.is_set():
            stop.set()
        relay = asyncio.create_task(relay_cancel(), name="cancel-relay")
        tasks = [stage.start() for stage in stages]
        try:
            _, pending = await asyncio.wait(
                tasks, return_when=asyncio.FIRST_EXCEPTION
            )
            if pending:
                # A stage failed; let the others reach a queue wait and stop.
                stop.set()
                await asyncio.wait(pending)
        finally:
            relay.cancel()
            # Stages finish the item in hand and exit at their next queue
            # wait, so a chunk being persisted is never cut off mid-write.
            stop.set()
            await asyncio.shield(
                asyncio.gather(relay, *tasks, return_exceptions=True)
            )

        for task in tasks:
            if not task.cancelled() and task.exception() is not None:
                raise task.exception()

        return writer

"""
Chunk planning and the read/write stages of the copy pipeline.

Each stage is a single asyncio task that handles one item at a time. Stages
are joined by bounded ``asyncio.Queue`` instances, so a slow writer holds the
reader back and the reader holds the feed back. The end of input travels down
the pipeline as the :data:`END_OF_INPUT` marker.

Every stage watches a shared stop event while it waits on a queue. Once the
event is set no new item is taken, but an item already being processed is
finished first.
"""

import asyncio
import logging
from collections.abc import Iterable
from typing import NamedTuple

from .checkpoint import CheckpointStore, force_durable
from .errors import InvariantViolation, ResumeStateError
from .progress import ProgressReporter

END_OF_INPUT = object()


class ChunkPayload(NamedTuple):
    """A chunk index and the bytes read for it."""

    index: int
    data: bytes


class StageStopped(Exception):
    """Raised inside a stage when the stop event fires during a queue wait."""


def plan_chunks(size: int, offset: int, chunk_size: int) -> range:
    """
    Work out which chunk indices are left to copy.

    Indices count from the resume offset, not from byte 0.

    Parameters
    ----------
    size : int
        Source file size in bytes
    offset : int
        Bytes already committed
    chunk_size : int
        Bytes per chunk

    Returns
    -------
    range
        ``range(chunks_left)``, empty when the copy is already complete

    Raises
    ------
    ResumeStateError
        If the offset is beyond the end of the source
    InvariantViolation
        If there is data left but no chunk to carry it
    """
    if size == offset:
        return range(0)
    if size < offset:
        raise ResumeStateError(
            "The bytes copied in the offset file are more than the size "
            "of the file we are supposed to copy."
        )

    chunks_left = -(-(size - offset) // chunk_size)
    if chunks_left < 1:
        raise InvariantViolation("There should be at least one chunk left.")
    return range(chunks_left)


class Stage:
    """
    Base for a pipeline worker.

    Parameters
    ----------
    name : str
        Task name, used in logs
    stop : asyncio.Event
        Set when the pipeline has to unwind
    """

    def __init__(self, name: str, stop: asyncio.Event):
        self.name = name
        self._stop = stop
        self._task: asyncio.Task | None = None

    @property
    def completion(self) -> asyncio.Task:
        """Task that finishes when the stage has drained or stopped."""
        if self._task is None:
            raise InvariantViolation(f"Stage {self.name} has not been started")
        return self._task

    def start(self) -> asyncio.Task:
        self._task = asyncio.create_task(self._run(), name=self.name)
        return self._task

    async def _run(self) -> bool:
        """Run the stage. Returns False if it stopped early."""
        try:
            await self.run()
        except StageStopped:
            logging.debug(f"{self.name} stopped")
            return False
        return True

    async def run(self) -> None:
        raise NotImplementedError

    async def _get(self, queue: asyncio.Queue):
        return await self._unless_stopped(queue.get())

    async def _put(self, queue: asyncio.Queue, item) -> None:
        await self._unless_stopped(queue.put(item))

    async def _unless_stopped(self, awaitable):
        if self._stop.is_set():
            awaitable.close()
            raise StageStopped

        operation = asyncio.ensure_future(awaitable)
        stopped = asyncio.ensure_future(self._stop.wait())
        try:
            await asyncio.wait(
                {operation, stopped}, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            operation.cancel()
            raise
        finally:
            stopped.cancel()

        if self._stop.is_set():
            # An item dequeued in the same tick is dropped; nothing was committed.
            operation.cancel()
            raise StageStopped
        return operation.result()


class IndexFeed(Stage):
    """Push chunk indices into the reader's inbox, then the end marker."""

    def __init__(
        self,
        indices: Iterable[int],
        outbox: asyncio.Queue,
        stop: asyncio.Event,
    ):
        super().__init__("chunk-feed", stop)
        self.indices = indices
        self.outbox = outbox

    async def run(self) -> None:
        for index in self.indices:
            await self._put(self.outbox, index)
        await self._put(self.outbox, END_OF_INPUT)


class ReaderStage(Stage):
    """
    Read one chunk per index from the source.

    Parameters
    ----------
    source : aiofiles binary file
        Source handle, positioned at ``offset``
    offset : int
        Resume offset
    chunk_size : int
        Bytes per chunk
    inbox : asyncio.Queue
        Chunk indices
    outbox : asyncio.Queue
        :class:`ChunkPayload` items for the writer
    stop : asyncio.Event
        Pipeline stop event
    progress : ProgressReporter
        Receives a spinner pulse after every read
    """

    def __init__(
        self,
        source,
        offset: int,
        chunk_size: int,
        inbox: asyncio.Queue,
        outbox: asyncio.Queue,
        stop: asyncio.Event,
        progress: ProgressReporter,
    ):
        super().__init__("chunk-reader", stop)
        self.source = source
        self.offset = offset
        self.chunk_size = chunk_size
        self.inbox = inbox
        self.outbox = outbox
        self.progress = progress

    async def run(self) -> None:
        while True:
            index = await self._get(self.inbox)
            if index is END_OF_INPUT:
                await self._put(self.outbox, END_OF_INPUT)
                return
            payload = await self.read_chunk(index)
            await self._put(self.outbox, payload)

    async def read_chunk(self, index: int) -> ChunkPayload:
        """
        Read chunk ``index``, looping over short reads until full or EOF.

        Raises
        ------
        InvariantViolation
            If the source cursor is not where the chunk starts
        """
        expected = self.offset + index * self.chunk_size
        position = await self.source.tell()
        if position != expected:
            raise InvariantViolation(
                f"Source position is {position}, expected {expected} "
                f"for chunk {index}"
            )

        buffer = bytearray()
        while len(buffer) < self.chunk_size:
            data = await self.source.read(self.chunk_size - len(buffer))
            if not data:
                break
            buffer += data
            self.progress.spin()

        return ChunkPayload(index, bytes(buffer))


class WriterStage(Stage):
    """
    Write chunks to the destination and advance the checkpoint.

    The checkpoint is persisted only after the chunk is on disk, and the next
    chunk is not taken until both have finished.

    Parameters
    ----------
    destination : aiofiles binary file
        Destination handle, positioned at ``offset``
    checkpoint : CheckpointStore
        Open store for the job's offset file
    offset : int
        Resume offset
    chunk_size : int
        Bytes per chunk
    total_size : int
        Source file size
    inbox : asyncio.Queue
        :class:`ChunkPayload` items from the reader
    stop : asyncio.Event
        Pipeline stop event
    progress : ProgressReporter
        Receives the committed offset after every chunk
    """

    def __init__(
        self,
        destination,
        checkpoint: CheckpointStore,
        offset: int,
        chunk_size: int,
        total_size: int,
        inbox: asyncio.Queue,
        stop: asyncio.Event,
        progress: ProgressReporter,
    ):
        super().__init__("chunk-writer", stop)
        self.destination = destination
        self.checkpoint = checkpoint
        self.offset = offset
        self.chunk_size = chunk_size
        self.total_size = total_size
        self.inbox = inbox
        self.progress = progress
        self.chunks_written = 0

    async def run(self) -> None:
        while True:
            payload = await self._get(self.inbox)
            if payload is END_OF_INPUT:
                return
            await self.write_chunk(payload)

    async def write_chunk(self, payload: ChunkPayload) -> int:
        """
        Write one chunk, make it durable, then persist the new offset.

        Returns
        -------
        int
            The committed offset

        Raises
        ------
        InvariantViolation
            If the destination cursor is off, or the chunk runs past the
            end of the source
        """
        start = self.offset + payload.index * self.chunk_size
        position = await self.destination.tell()
        if position != start:
            raise InvariantViolation(
                f"Destination position is {position}, expected {start} "
                f"for chunk {payload.index}"
            )

        committed = start + len(payload.data)
        if committed > self.total_size:
            raise InvariantViolation(
                f"Chunk {payload.index} ends at {committed}, past the source "
                f"size {self.total_size}"
            )

        await self.destination.write(payload.data)
        await force_durable(self.destination)
        await self.checkpoint.persist(committed)
        self.chunks_written += 1

        self.progress.update(committed, self.total_size)
        return committed

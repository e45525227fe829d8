"""
Offset file handling.

The checkpoint is a plain text file holding one base-10 integer: the number of
bytes already written to the destination and flushed to disk. It is truncated
and rewritten on every update. A crash between the truncate and the write
leaves an empty file, which fails to parse on the next run.
"""

import asyncio
import logging
import os
from pathlib import Path

import aiofiles

from .errors import InvariantViolation, ResumeStateError


async def force_durable(handle) -> None:
    """
    Flush an open aiofiles handle and fsync it.

    Parameters
    ----------
    handle : aiofiles binary file
        Handle opened for writing
    """
    await handle.flush()
    loop = asyncio.get_running_loop()
    await loop.run_in_executor(None, os.fsync, handle.fileno())


def parse_offset(raw: bytes) -> int:
    """
    Parse offset file content.

    Parameters
    ----------
    raw : bytes
        Entire file content

    Returns
    -------
    int
        Recorded offset

    Raises
    ------
    ResumeStateError
        If the content is not a non-negative decimal integer
    """
    text = raw.strip()
    if not text.isdigit():
        raise ResumeStateError("Unrecognizable content in offset file")
    return int(text)


class CheckpointStore:
    """
    Reads, initialises and persists the committed byte offset.

    The store keeps its file handle open from :meth:`load` until
    :meth:`close`.

    Parameters
    ----------
    path : Path
        Location of the offset file
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._handle = None
        self._offset: int | None = None

    @property
    def offset(self) -> int | None:
        """Last offset loaded or persisted, ``None`` before :meth:`load`."""
        return self._offset

    @property
    def is_open(self) -> bool:
        return self._handle is not None

    async def load(self) -> int:
        """
        Open the offset file and return the recorded offset.

        A missing file is created with ``0`` in it.

        Returns
        -------
        int
            Offset to resume from

        Raises
        ------
        ResumeStateError
            If an existing file does not hold a valid offset
        """
        if self._handle is not None:
            raise InvariantViolation(f"Offset file already open: {self.path}")

        if self.path.exists():
            self._handle = await aiofiles.open(self.path, "r+b")
            await self._handle.seek(0)
            self._offset = parse_offset(await self._handle.read())
            logging.info(f"resuming from offset {self._offset:,} ({self.path})")
        else:
            self._handle = await aiofiles.open(self.path, "x+b")
            self._offset = 0
            await self._write(0)
            logging.info(f"created offset file {self.path}")

        return self._offset

    async def persist(self, new_offset: int) -> None:
        """
        Replace the recorded offset and wait until it is on disk.

        Parameters
        ----------
        new_offset : int
            Bytes committed so far

        Raises
        ------
        InvariantViolation
            If the store is not open, or the offset would move backwards
        """
        if self._handle is None:
            raise InvariantViolation("Offset file is not open")
        if new_offset < self._offset:
            raise InvariantViolation(
                f"Offset must not decrease: {new_offset} < {self._offset}"
            )
        await self._write(new_offset)
        self._offset = new_offset

    async def close(self) -> None:
        """Release the file handle. Safe to call more than once."""
        handle, self._handle = self._handle, None
        if handle is not None:
            await handle.close()

    async def _write(self, value: int) -> None:
        await self._handle.seek(0)
        await self._handle.truncate(0)
        await self._handle.write(str(value).encode("ascii"))
        await force_durable(self._handle)

    async def __aenter__(self) -> "CheckpointStore":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

#!/usr/bin/env python3
"""
Demonstration of an interrupted and resumed chunkcopy run.

This script creates a sample file, stops the first copy after a few chunks,
and then runs the same job again to show it continuing from the offset file.
"""

import asyncio
import os
import sys
import tempfile
from pathlib import Path

# Add src directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from chunkcopy import Copier, CopyJob, ProgressReporter


class StopAfter(ProgressReporter):
    """Progress reporter that requests cancellation after ``chunks`` commits."""

    def __init__(self, cancel: asyncio.Event, chunks: int) -> None:
        super().__init__(sys.stdout)
        self.cancel = cancel
        self.chunks = chunks
        self.seen = 0

    def update(self, committed: int, total: int) -> None:
        super().update(committed, total)
        self.seen += 1
        if self.seen >= self.chunks:
            self.cancel.set()


async def demo_interrupt_and_resume() -> None:
    """Copy 8 MB in 1 MB chunks, stop after three, then resume."""
    print("\n" + "=" * 50)
    print("DEMO: Interrupt and resume")
    print("=" * 50)

    with tempfile.TemporaryDirectory() as temp_dir:
        temp_path = Path(temp_dir)
        source = temp_path / "disk.img"
        source.write_bytes(os.urandom(8 * 1024 * 1024))
        destination = temp_path / "backup" / "disk.img"

        job = CopyJob(source, destination, chunk_size=1024 * 1024, max_chunks_buffer=2)

        cancel = asyncio.Event()
        first = await Copier(job, StopAfter(cancel, chunks=3)).start(cancel)
        print(f"\nFirst run: {first.state.value} at {first.final_offset:,} bytes")
        print(f"Offset file says: {job.checkpoint.read_text()}")

        second = await Copier(job, ProgressReporter(sys.stdout)).start()
        print(f"\nSecond run: {second.state.value}, resumed at {second.start_offset:,}")
        print(f"Chunks written on resume: {second.chunks_written}")

        identical = destination.read_bytes() == source.read_bytes()
        print(f"Destination matches source: {identical}")

        third = await Copier(job).start()
        print(f"Third run: {third.state.value}")


if __name__ == "__main__":
    asyncio.run(demo_interrupt_and_resume())

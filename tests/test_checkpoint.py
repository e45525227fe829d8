#!/usr/bin/env python3
"""
Tests for the offset file store.

Tests cover:
- Creating a missing offset file
- Parsing existing content, including corrupt content
- Truncate-and-rewrite on persist
- Monotonic offsets
"""

import shutil
import sys
import tempfile
from pathlib import Path
from unittest.mock import patch

import pytest

# Add src directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from chunkcopy.checkpoint import CheckpointStore, parse_offset
from chunkcopy.errors import InvariantViolation, ResumeStateError


@pytest.fixture
def offset_dir():
    """Create and cleanup a directory for offset files."""
    test_dir = tempfile.mkdtemp()
    yield Path(test_dir)
    shutil.rmtree(test_dir)


# ============================================================================
# Parsing
# ============================================================================


def test_parse_offset_plain_integer() -> None:
    assert parse_offset(b"10485760") == 10485760


def test_parse_offset_tolerates_trailing_newline() -> None:
    assert parse_offset(b"42\n") == 42


@pytest.mark.parametrize("raw", [b"", b"abc", b"-5", b"12ab", b"1.5", b"+7", b"1_000"])
def test_parse_offset_rejects_garbage(raw) -> None:
    with pytest.raises(ResumeStateError):
        parse_offset(raw)


# ============================================================================
# Store
# ============================================================================


@pytest.mark.asyncio
async def test_load_creates_missing_file(offset_dir) -> None:
    """A missing offset file is created holding 0."""
    path = offset_dir / "dest.bin.offset"

    async with CheckpointStore(path) as store:
        assert await store.load() == 0
        assert store.offset == 0

    assert path.read_bytes() == b"0"


@pytest.mark.asyncio
async def test_load_existing_offset(offset_dir) -> None:
    path = offset_dir / "dest.bin.offset"
    path.write_text("12345")

    async with CheckpointStore(path) as store:
        assert await store.load() == 12345

    # Loading never rewrites the file
    assert path.read_text() == "12345"


@pytest.mark.asyncio
async def test_load_corrupt_offset_raises(offset_dir) -> None:
    path = offset_dir / "dest.bin.offset"
    path.write_text("not a number")

    store = CheckpointStore(path)
    try:
        with pytest.raises(ResumeStateError):
            await store.load()
    finally:
        await store.close()

    assert not store.is_open
    assert path.read_text() == "not a number"


@pytest.mark.asyncio
async def test_persist_truncates_previous_content(offset_dir) -> None:
    """Shorter text fully replaces longer text."""
    path = offset_dir / "dest.bin.offset"
    path.write_text("0000099")

    async with CheckpointStore(path) as store:
        assert await store.load() == 99
        await store.persist(100)
        assert store.offset == 100

    assert path.read_bytes() == b"100"


@pytest.mark.asyncio
async def test_persist_sequence_keeps_last_value(offset_dir) -> None:
    path = offset_dir / "dest.bin.offset"

    async with CheckpointStore(path) as store:
        await store.load()
        for value in (1024, 2048, 3000):
            await store.persist(value)
            assert path.read_bytes() == str(value).encode("ascii")


@pytest.mark.asyncio
async def test_persist_rejects_decreasing_offset(offset_dir) -> None:
    path = offset_dir / "dest.bin.offset"
    path.write_text("2048")

    async with CheckpointStore(path) as store:
        await store.load()
        with pytest.raises(InvariantViolation):
            await store.persist(1024)

    assert path.read_text() == "2048"


@pytest.mark.asyncio
async def test_persist_before_load_raises(offset_dir) -> None:
    store = CheckpointStore(offset_dir / "dest.bin.offset")

    with pytest.raises(InvariantViolation):
        await store.persist(10)


@pytest.mark.asyncio
async def test_persist_forces_fsync(offset_dir) -> None:
    path = offset_dir / "dest.bin.offset"

    with patch("chunkcopy.checkpoint.os.fsync") as mock_fsync:
        async with CheckpointStore(path) as store:
            await store.load()
            await store.persist(4096)

    # Once for the initial 0, once for 4096
    assert mock_fsync.call_count == 2


@pytest.mark.asyncio
async def test_close_is_idempotent(offset_dir) -> None:
    store = CheckpointStore(offset_dir / "dest.bin.offset")
    await store.load()
    assert store.is_open

    await store.close()
    await store.close()

    assert not store.is_open


@pytest.mark.asyncio
async def test_load_twice_raises(offset_dir) -> None:
    async with CheckpointStore(offset_dir / "dest.bin.offset") as store:
        await store.load()
        with pytest.raises(InvariantViolation):
            await store.load()

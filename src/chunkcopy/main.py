#!/usr/bin/env python3
"""
chunkcopy - resumable chunked file copy.

Copies one file in fixed-size chunks and records the number of bytes copied
in an offset file after every chunk, so an interrupted copy picks up where it
stopped. Press Ctrl+C to stop; run the same command again to resume.
"""

import argparse
import asyncio
import logging
import signal
import sys
import time

from .copier import (
    DEFAULT_CHUNK_SIZE,
    DEFAULT_MAX_CHUNKS_BUFFER,
    Copier,
    CopyJob,
    CopyResult,
    JobState,
)
from .errors import InvariantViolation, ResumeStateError, ValidationError
from .progress import ProgressReporter

EXIT_OK = 0
EXIT_COPY_ERROR = 1
EXIT_USAGE = 2


def setup_logging(verbose: bool = False) -> None:
    """
    Configure logging for the application.

    Parameters
    ----------
    verbose : bool
        Enable verbose logging
    """
    log_level = logging.DEBUG if verbose else logging.INFO

    logging.basicConfig(
        level=log_level,
        format="%(levelname)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chunkcopy",
        description="Resumable chunked file copy",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s disk.img /backup/disk.img                 # offset kept in /backup/disk.img.offset
  %(prog)s -offset /tmp/disk.offset disk.img /backup/disk.img
        """,
    )

    parser.add_argument("source", nargs="?", default="", help="source file")
    parser.add_argument("destination", nargs="?", default="", help="destination file")

    parser.add_argument(
        "-offset",
        "--offset",
        type=str,
        default=None,
        help="optional offset file name, if not specified [dest].offset is used",
    )

    parser.add_argument(
        "-b",
        "--chunk-size",
        type=int,
        default=DEFAULT_CHUNK_SIZE,
        help="Chunk size in bytes (default: 10MB, minimum: 1024)",
    )

    parser.add_argument(
        "--max-chunks",
        type=int,
        default=DEFAULT_MAX_CHUNKS_BUFFER,
        help="Chunks buffered between read and write (default: 10)",
    )

    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable verbose output"
    )

    return parser


def format_elapsed(seconds: float) -> str:
    """Render a duration as ``H hours, M minutes, S seconds``."""
    minutes, secs = divmod(int(seconds), 60)
    hours, minutes = divmod(minutes, 60)
    return f"{hours} hours, {minutes} minutes, {secs} seconds"


async def run_copy(job: CopyJob, progress: ProgressReporter) -> CopyResult:
    """
    Run a copy with SIGINT mapped to cooperative cancellation.

    Parameters
    ----------
    job : CopyJob
        Job to run
    progress : ProgressReporter
        Reporter passed to the copier

    Returns
    -------
    CopyResult
        Result of the run
    """
    loop = asyncio.get_running_loop()
    cancel = asyncio.Event()

    def _handle_interrupt(signum, frame):
        print("\nstopping", file=sys.stderr)
        loop.call_soon_threadsafe(cancel.set)

    previous = signal.signal(signal.SIGINT, _handle_interrupt)
    try:
        async with Copier(job, progress) as copier:
            return await copier.start(cancel)
    finally:
        signal.signal(signal.SIGINT, previous)


def main(argv: list[str] | None = None) -> int:
    """
    CLI entry point.

    Returns
    -------
    int
        Exit code: 0 for success or user cancellation, 1 for copy errors,
        2 for usage errors
    """
    parser = build_parser()
    try:
        args = parser.parse_args(argv)
    except SystemExit as e:
        return EXIT_USAGE if e.code else EXIT_OK

    if not args.source.strip() or not args.destination.strip():
        parser.print_help()
        return EXIT_USAGE

    setup_logging(args.verbose)

    started = time.monotonic()
    progress = ProgressReporter(sys.stdout)

    def stopped_after() -> str:
        return f"stopped after {format_elapsed(time.monotonic() - started)}"

    try:
        job = CopyJob.from_args(args)
        print(f'copying from "{job.source}" to "{job.destination}"')
        result = asyncio.run(run_copy(job, progress))

    except (ValidationError, ResumeStateError) as e:
        progress.finish()
        logging.error(str(e))
        logging.info(stopped_after())
        return EXIT_COPY_ERROR
    except InvariantViolation as e:
        progress.finish()
        logging.error(f"Internal error: {e}")
        logging.info(stopped_after())
        return EXIT_COPY_ERROR
    except OSError as e:
        progress.finish()
        logging.error(f"I/O error: {e}")
        logging.info(stopped_after())
        return EXIT_COPY_ERROR
    except KeyboardInterrupt:
        progress.finish()
        logging.info(stopped_after())
        return EXIT_OK
    except Exception as e:
        progress.finish()
        logging.error(f"Unexpected error: {e}")
        if args.verbose:
            import traceback

            traceback.print_exc()
        logging.info(stopped_after())
        return EXIT_COPY_ERROR

    progress.finish()
    if result.state is JobState.CANCELLED:
        logging.info(f"copied {result.final_offset:,} of {result.source_size:,} bytes")
        logging.info(stopped_after())
        return EXIT_OK

    logging.info(
        f"copy finished successfully in {format_elapsed(time.monotonic() - started)}"
    )
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())

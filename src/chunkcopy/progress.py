"""
Console progress for a running copy: a spinner and a percentage.

Purely cosmetic. Nothing in the engine depends on what is rendered here.
"""

import logging
import threading
from typing import TextIO

SPINNER_FRAMES = "/-\\|"


class PulseCounter:
    """
    Counter shared by the reader and writer stages.

    Increments are serialised with a lock so the count itself never races,
    even when the stages run on different threads.
    """

    def __init__(self) -> None:
        self._value = 0
        self._lock = threading.Lock()

    def increment(self) -> int:
        """
        Add one and return the new value.

        Returns
        -------
        int
            Counter value after the increment
        """
        with self._lock:
            self._value += 1
            return self._value

    @property
    def value(self) -> int:
        with self._lock:
            return self._value


class ProgressReporter:
    """
    Render copy progress as ``\\r<spinner>   <percent>%``.

    Parameters
    ----------
    stream : TextIO | None, default=None
        Where to draw the spinner. ``None`` keeps state only, which is what
        the engine uses when no console is attached.
    """

    def __init__(self, stream: TextIO | None = None) -> None:
        self.stream = stream
        self._pulses = PulseCounter()
        self.committed = 0
        self.percent: int | None = None

    @property
    def pulses(self) -> int:
        return self._pulses.value

    def spin(self) -> None:
        """Advance the spinner once."""
        self._write(f"\r{self._next_frame()}")

    def update(self, committed: int, total: int) -> None:
        """
        Record a committed offset and redraw the percentage.

        Parameters
        ----------
        committed : int
            Bytes durably copied so far
        total : int
            Source file size in bytes
        """
        percent = (100 * committed) // total if total > 0 else 100
        self.committed = committed
        self.percent = percent
        logging.debug(f"committed {committed:,} of {total:,} bytes ({percent}%)")
        self._write(f"\r{self._next_frame()}   {percent}%")

    def finish(self) -> None:
        """End the progress line."""
        self._write("\n")

    def _next_frame(self) -> str:
        return SPINNER_FRAMES[self._pulses.increment() % len(SPINNER_FRAMES)]

    def _write(self, text: str) -> None:
        if self.stream is None:
            return
        self.stream.write(text)
        self.stream.flush()

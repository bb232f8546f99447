"""Per-run counters, progress reporting and step timing."""

import logging
import threading
import time
import typing as t
from contextlib import contextmanager

from tqdm import tqdm


class AtomicCounter:
    """Integer shared between workers, only ever changed by atomic increment."""

    def __init__(self, initial: int = 0) -> None:
        self._value = initial
        self._lock = threading.Lock()

    def increment(self, step: int = 1) -> int:
        """Add ``step`` and return the new value."""
        with self._lock:
            self._value += step
            return self._value

    @property
    def value(self) -> int:
        # Unsynchronised read, good enough for reporting.
        return self._value


class BatchCursor(AtomicCounter):
    """Index of the last claimed batch, -1 before the first claim."""

    def __init__(self) -> None:
        super().__init__(-1)

    def claim(self) -> int:
        return self.increment()

    @property
    def claims(self) -> int:
        return self.value + 1


class ProgressTracker:
    """Counts rows read and periodically logs throughput."""

    def __init__(
        self,
        logger: logging.Logger,
        batch_size: int,
        description: str = "Migrating",
        quiet: bool = False,
    ) -> None:
        self._logger = logger
        self._batch_size = batch_size
        self._rows = AtomicCounter()
        self._started = time.monotonic()
        self._bar = tqdm(desc=description, unit="rows", disable=quiet)

    @property
    def rows(self) -> int:
        return self._rows.value

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self._started

    def row_read(self) -> int:
        count: int = self._rows.increment()
        if count % self._batch_size == 0:
            self.log_progress(count)
        return count

    def rows_written(self, count: int) -> None:
        self._bar.update(count)

    def speed(self, count: t.Optional[int] = None) -> int:
        """Rows per second since the run started, 0 during the first second."""
        seconds: int = int(self.elapsed)
        if seconds <= 0:
            return 0
        return (self.rows if count is None else count) // seconds

    def log_progress(self, count: t.Optional[int] = None) -> None:
        count = self.rows if count is None else count
        self._logger.info("Total: %d, Speed: %d Row/Sec.", count, self.speed(count))

    def close(self) -> None:
        self._bar.close()


class Tracer:
    """Times steps of the copy loop when tracing is enabled."""

    def __init__(self, logger: logging.Logger, enabled: bool = False) -> None:
        self._logger = logger
        self._enabled = enabled

    @contextmanager
    def trace(self, step: str) -> t.Iterator[None]:
        if not self._enabled:
            yield
            return
        start: float = time.perf_counter()
        yield
        self._logger.debug("%s cost: %d ms.", step, (time.perf_counter() - start) * 1000)

"""
Bounded background writer for simulation output.

Writes are run on a single worker thread so that the simulation loop does
not wait on disk. At most ``max_pending`` writes may be outstanding;
further submissions block until one completes.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class OutputWarning(UserWarning):
    """Warning for background writes that failed."""

    pass


class BackgroundWriter:
    """
    Fire-and-forget executor with backpressure.

    Example:
        with BackgroundWriter(max_pending=4) as writer:
            writer.submit(write_csv, path, tree)
        # all writes are complete here

    Failures are logged and collected in ``errors``.
    """

    def __init__(self, max_pending: int = 8) -> None:
        if max_pending < 1:
            raise ValueError(f"max_pending must be >= 1, got {max_pending}")
        self._max_pending = int(max_pending)
        self._slots = threading.BoundedSemaphore(self._max_pending)
        self._executor: Optional[ThreadPoolExecutor] = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="octree-nbody-writer"
        )
        self._pending: set[Future[Any]] = set()
        self._lock = threading.Lock()
        self.errors: list[BaseException] = []

    @property
    def max_pending(self) -> int:
        return self._max_pending

    @property
    def pending(self) -> int:
        """Number of submitted writes that have not finished."""
        with self._lock:
            return len(self._pending)

    @property
    def closed(self) -> bool:
        return self._executor is None

    def submit(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Future[Any]:
        """
        Schedule ``fn(*args, **kwargs)`` on the writer thread.

        Blocks while ``max_pending`` writes are outstanding.

        Raises:
            RuntimeError: If the writer has been closed
        """
        if self._executor is None:
            raise RuntimeError("BackgroundWriter is closed")

        self._slots.acquire()
        try:
            future = self._executor.submit(fn, *args, **kwargs)
        except BaseException:
            self._slots.release()
            raise

        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._on_done)
        return future

    def _on_done(self, future: Future[Any]) -> None:
        error = None if future.cancelled() else future.exception()
        if error is not None:
            logger.error("background write failed: %s", error)

        with self._lock:
            if error is not None:
                self.errors.append(error)
            self._pending.discard(future)
        self._slots.release()

    def flush(self) -> None:
        """Wait until every submitted write has finished."""
        while True:
            with self._lock:
                pending = list(self._pending)
            if not pending:
                return
            # Exceptions are recorded by _on_done
            wait(pending)

    def close(self) -> None:
        """Flush outstanding writes and stop the worker thread."""
        if self._executor is None:
            return
        self.flush()
        self._executor.shutdown(wait=True)
        self._executor = None

    def __enter__(self) -> BackgroundWriter:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


__all__ = ["BackgroundWriter", "OutputWarning"]

"""Bounded hand-off from the discovery loop to a writer thread."""

from __future__ import annotations

import logging
import queue
import threading

from ..discovery.models import TargetGroup
from .writer import FileSDWriter

logger = logging.getLogger(__name__)

_POLL_SECONDS = 1.0


class Adapter:
    """Runs a FileSDWriter on its own thread, fed through a bounded queue.

    Batches are never dropped: when the queue is full, submit() blocks until
    the writer catches up or the stop event is set.
    """

    def __init__(self, writer: FileSDWriter, stop: threading.Event, queue_size: int = 1):
        self._writer = writer
        self._stop = stop
        self._queue: queue.Queue[list[TargetGroup]] = queue.Queue(maxsize=queue_size)
        self._thread = threading.Thread(target=self._run, name="file-sd-writer", daemon=True)

    def start(self) -> None:
        self._thread.start()

    def join(self, timeout: float | None = None) -> None:
        self._thread.join(timeout)

    def submit(self, batch: list[TargetGroup]) -> bool:
        """Queue one batch for writing. Returns False if stopped before it was queued."""
        warned = False
        while True:
            try:
                self._queue.put(batch, timeout=_POLL_SECONDS)
                return True
            except queue.Full:
                if self._stop.is_set():
                    logger.info("Stopped before target groups could be queued")
                    return False
                if not warned:
                    logger.warning("Writer is behind, waiting to queue target groups")
                    warned = True

    def _run(self) -> None:
        # Drain whatever is already queued before honoring stop
        while True:
            try:
                batch = self._queue.get(timeout=_POLL_SECONDS)
            except queue.Empty:
                if self._stop.is_set():
                    break
                continue
            try:
                self._writer.apply(batch)
            except OSError:
                logger.exception("Failed to write %s", self._writer.path)
            finally:
                self._queue.task_done()
        logger.info("Writer stopped")

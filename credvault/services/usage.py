"""Bounded background recorder for API key ``last_used_at`` updates."""

from __future__ import annotations

import logging
import queue
import threading
from datetime import datetime, timezone
from typing import Callable, Optional, Tuple

logger = logging.getLogger(__name__)

TouchCallback = Callable[[str, datetime], None]

_STOP = object()


class UsageRecorder:
    """Apply usage updates on a single worker thread fed by a bounded queue.

    ``submit`` never blocks the caller: when the queue is full the update is
    dropped and logged. Failures inside the worker are logged and swallowed.
    """

    def __init__(self, touch: TouchCallback, *, maxsize: int = 1000) -> None:
        self._touch = touch
        self._queue: "queue.Queue[object]" = queue.Queue(maxsize=maxsize)
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        self.dropped = 0

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        with self._lock:
            if self.running:
                return
            self._thread = threading.Thread(
                target=self._run, name="api-key-usage", daemon=True
            )
            self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        with self._lock:
            thread = self._thread
            if thread is None:
                return
            self._thread = None
        # Blocking put: the worker is draining, so room frees up.
        self._queue.put(_STOP)
        thread.join(timeout)

    def submit(self, key_id: str, used_at: datetime | None = None) -> bool:
        item: Tuple[str, datetime] = (key_id, used_at or datetime.now(timezone.utc))
        try:
            self._queue.put_nowait(item)
        except queue.Full:
            self.dropped += 1
            logger.warning("Usage queue full; dropped last-used update for key %s", key_id)
            return False
        return True

    def flush(self) -> None:
        """Block until every submitted update has been processed."""
        if not self.running:
            raise RuntimeError("Usage recorder is not running.")
        self._queue.join()

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                key_id, used_at = item  # type: ignore[misc]
                self._touch(key_id, used_at)
            except Exception:
                logger.exception("Failed to record API key usage")
            finally:
                self._queue.task_done()


__all__ = ["UsageRecorder"]

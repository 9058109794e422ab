"""Thread-safe per-task progress counting from IndividualProcessed events."""

from __future__ import annotations

import logging
import threading

from nucleusprofile.engine.events import Event, IndividualProcessed, StageStart

logger = logging.getLogger(__name__)


class ProgressObserver:
    """Counts processed individuals per task name.

    Leaf tasks emit from pool workers, so counts are guarded by a lock.
    Counters reset at every StageStart; :attr:`totals` keeps the last
    announced total per task.

    Args:
        log_every: Log an INFO line every this many individuals per task
            (0 disables the log lines).

    Example::

        progress = ProgressObserver()
        pipeline.add_observer(progress, IndividualProcessed)
        pipeline.run()
        progress.fraction("segment-recombination")
    """

    def __init__(self, log_every: int = 0) -> None:
        self._log_every = log_every
        self._lock = threading.Lock()
        self.counts: dict[str, int] = {}
        self.totals: dict[str, int] = {}

    def on_event(self, event: Event) -> None:
        if isinstance(event, StageStart):
            with self._lock:
                self.counts.clear()
                self.totals.clear()
        elif isinstance(event, IndividualProcessed):
            with self._lock:
                count = self.counts.get(event.stage_name, 0) + 1
                self.counts[event.stage_name] = count
                self.totals[event.stage_name] = event.total
            if self._log_every and count % self._log_every == 0:
                logger.info("%s: %d/%d individuals", event.stage_name, count, event.total)

    def fraction(self, task_name: str) -> float:
        """Completed fraction of *task_name* (0.0 if it has not reported)."""
        with self._lock:
            total = self.totals.get(task_name, 0)
            return self.counts.get(task_name, 0) / total if total else 0.0

"""Stage timing and per-nucleus throughput for a profiling run."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import Path

from nucleusprofile.engine.events import (
    Event,
    IndividualProcessed,
    PipelineComplete,
    PipelineFailed,
    PipelineStart,
    StageComplete,
    StageStart,
)

logger = logging.getLogger(__name__)

_RULE_WIDTH = 64


@dataclass
class StageTiming:
    """Wall-clock time of one stage and the individuals its tasks handled."""

    elapsed_seconds: float = 0.0
    individuals: int = 0

    @property
    def rate(self) -> float | None:
        """Individuals per second, or None when nothing was counted."""
        if self.individuals == 0 or self.elapsed_seconds <= 0:
            return None
        return self.individuals / self.elapsed_seconds


class TimingObserver:
    """Collects stage durations and nucleus throughput from pipeline events.

    IndividualProcessed events are attributed to whichever stage is running
    when they arrive; they may come from worker threads.

    Args:
        output_path: Where to write the report once the run ends, whether it
            succeeded or failed. Nothing is written when None.
    """

    def __init__(self, output_path: str | Path | None = None) -> None:
        self._output_path = Path(output_path) if output_path is not None else None
        self._lock = threading.Lock()
        self._current: str | None = None
        self.stages: dict[str, StageTiming] = {}
        self.total_time: float | None = None
        self.run_id: str = ""
        self.failed = False

    @property
    def stage_times(self) -> dict[str, float]:
        return {name: t.elapsed_seconds for name, t in self.stages.items()}

    def on_event(self, event: Event) -> None:
        if isinstance(event, IndividualProcessed):
            with self._lock:
                if self._current is not None:
                    self.stages[self._current].individuals += 1
        elif isinstance(event, PipelineStart):
            self.run_id = event.run_id
        elif isinstance(event, StageStart):
            with self._lock:
                self._current = event.stage_name
                self.stages.setdefault(event.stage_name, StageTiming())
        elif isinstance(event, StageComplete):
            with self._lock:
                self.stages.setdefault(event.stage_name, StageTiming()).elapsed_seconds = (
                    event.elapsed_seconds
                )
                self._current = None
        elif isinstance(event, (PipelineComplete, PipelineFailed)):
            self.total_time = event.elapsed_seconds
            self.failed = isinstance(event, PipelineFailed)
            self._write_report()

    def report(self) -> str:
        """Format the collected timings as a table.

        Columns are stage, seconds, share of the total run, individuals
        handled and individuals per second.
        """
        total = self.total_time if self.total_time else None
        rows = [
            f"Profiling run {self.run_id}",
            "=" * _RULE_WIDTH,
            f"  {'stage':<22s} {'seconds':>9s} {'share':>7s} {'items':>7s} {'items/s':>10s}",
        ]
        for name, timing in self.stages.items():
            share = f"{100.0 * timing.elapsed_seconds / total:6.1f}%" if total else "      -"
            rate = f"{timing.rate:10.1f}" if timing.rate is not None else f"{'-':>10s}"
            rows.append(
                f"  {name:<22s} {timing.elapsed_seconds:9.2f} {share} "
                f"{timing.individuals:7d} {rate}"
            )
        rows.append("-" * _RULE_WIDTH)
        rows.append(f"  {'total':<22s} {total:9.2f}" if total else f"  {'total':<22s} {'N/A':>9s}")
        if self.failed:
            rows.append("  run FAILED; stages after the failure are missing")
        return "\n".join(rows)

    def _write_report(self) -> None:
        text = self.report()
        logger.info("\n%s", text)
        if self._output_path is None:
            return
        self._output_path.parent.mkdir(parents=True, exist_ok=True)
        self._output_path.write_text(text + "\n", encoding="utf-8")


__all__ = ["StageTiming", "TimingObserver"]

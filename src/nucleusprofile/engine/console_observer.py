"""ConsoleObserver -- human-readable run progress on stderr."""

from __future__ import annotations

import sys

from nucleusprofile.engine.events import (
    Event,
    IndividualProcessed,
    PipelineComplete,
    PipelineFailed,
    StageComplete,
)


def _format_summary(summary: dict[str, object]) -> str:
    parts = []
    for key, value in summary.items():
        if isinstance(value, dict):
            value = ", ".join(f"{k}={v}" for k, v in value.items()) or "none"
        parts.append(f"{key}: {value}")
    return "; ".join(parts)


class ConsoleObserver:
    """Prints one line per finished stage and a closing line for the run.

    Stage lines look like ``[2/4] ProfilingStage (1.3s) landmarks: RP=0``.
    The closing line reports the results file and whether the reference
    point converged. stdout is left alone so it can be piped.

    Args:
        verbose: Also print a line for every individual processed.
        total_stages: Number of stages, for the ``[i/n]`` prefix.
    """

    def __init__(self, verbose: bool = False, total_stages: int = 4) -> None:
        self._verbose = verbose
        self._total_stages = total_stages

    @staticmethod
    def _write(text: str) -> None:
        sys.stderr.write(text + "\n")
        sys.stderr.flush()

    def on_event(self, event: Event) -> None:
        if isinstance(event, IndividualProcessed):
            if self._verbose:
                self._write(f"  {event.stage_name}: {event.individual_id}")
            return

        if isinstance(event, StageComplete):
            line = (
                f"[{event.stage_index + 1}/{self._total_stages}] "
                f"{event.stage_name} ({event.elapsed_seconds:.1f}s)"
            )
            if event.summary:
                line += " " + _format_summary(event.summary)
            self._write(line)

        elif isinstance(event, PipelineComplete):
            context = event.context
            results = getattr(context, "results_path", None) or "no results file"
            self._write(f"Run {event.run_id} finished in {event.elapsed_seconds:.1f}s: {results}")
            if getattr(context, "converged", None) is False:
                self._write(
                    "  warning: reference point did not converge after "
                    f"{context.coercion_iterations} iterations"  # type: ignore[union-attr]
                )

        elif isinstance(event, PipelineFailed):
            self._write(f"Run {event.run_id} FAILED after {event.elapsed_seconds:.1f}s: {event.error}")

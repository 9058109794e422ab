"""ProfilingPipeline orchestrator, the single entrypoint for a profiling run.

ProfilingPipeline wires together Stage instances, manages execution order,
emits lifecycle events via EventBus, and writes the serialized config as the
first artifact before any stage runs.

Per-individual progress is bridged from the core task layer: the pipeline
installs ``context.on_progress``, which turns each task callback into an
:class:`~nucleusprofile.engine.events.IndividualProcessed` event.

The :func:`build_stages` factory constructs the four stages from a
:class:`~nucleusprofile.engine.config.PipelineConfig`.
"""

from __future__ import annotations

import logging
import time
from pathlib import Path

from nucleusprofile.core.context import PipelineContext, Stage
from nucleusprofile.engine.config import PipelineConfig, serialize_config
from nucleusprofile.engine.events import (
    Event,
    IndividualProcessed,
    PipelineComplete,
    PipelineFailed,
    PipelineStart,
    StageComplete,
    StageStart,
)
from nucleusprofile.engine.observers import EventBus, Observer

logger = logging.getLogger(__name__)


class ProfilingPipeline:
    """Runs the profiling stages in order.

    The run:

    1. Creates the output directory and writes ``config.yaml`` before any
       stage runs.
    2. Emits lifecycle events (PipelineStart, StageStart, StageComplete,
       PipelineComplete, PipelineFailed) and IndividualProcessed progress.
    3. Executes stages in order, passing a shared :class:`PipelineContext`.
    4. Records per-stage wall-clock timing in ``context.stage_timing``.

    Observers are purely additive; removing all observers produces identical
    results.

    Example::

        config = load_config(cli_overrides={"input_path": "nuclei.yaml"})
        pipeline = ProfilingPipeline(
            stages=build_stages(config),
            config=config,
            observers=[TimingObserver()],
        )
        context = pipeline.run()

    Args:
        stages: Ordered list of Stage instances to execute.
        config: Frozen PipelineConfig for this run.
        observers: Optional observers, each subscribed to every event.
    """

    def __init__(
        self,
        stages: list[Stage],
        config: PipelineConfig,
        observers: list[Observer] | None = None,
    ) -> None:
        self._stages = list(stages)
        self._config = config
        self._bus = EventBus()

        if observers:
            for observer in observers:
                self._bus.subscribe(Event, observer)

    def add_observer(
        self,
        observer: Observer,
        event_type: type[Event] = Event,
    ) -> None:
        """Subscribe *observer* to receive *event_type* events."""
        self._bus.subscribe(event_type, observer)

    def remove_observer(
        self,
        observer: Observer,
        event_type: type[Event] = Event,
    ) -> None:
        """Unsubscribe *observer* from *event_type* events. No-op if absent."""
        self._bus.unsubscribe(event_type, observer)

    def _emit_progress(self, task_name: str, item_id: str, total: int) -> None:
        self._bus.emit(
            IndividualProcessed(stage_name=task_name, individual_id=item_id, total=total)
        )

    def run(self) -> PipelineContext:
        """Execute all stages in order and return the accumulated context.

        Returns:
            The final :class:`PipelineContext` after all stages have run.

        Raises:
            Exception: Re-raises any exception thrown by a stage after emitting
                ``PipelineFailed``.
        """
        pipeline_start = time.monotonic()

        # --- 1. Resolve and create output directory -----------------------
        output_dir = Path(self._config.output_dir).expanduser()
        output_dir.mkdir(parents=True, exist_ok=True)

        # --- 2. Write config artifact -------------------------------------
        config_path = output_dir / "config.yaml"
        config_path.write_text(serialize_config(self._config), encoding="utf-8")

        # --- 3. Emit PipelineStart ----------------------------------------
        self._bus.emit(PipelineStart(run_id=self._config.run_id, config=self._config))

        # --- 4. Initialize context ----------------------------------------
        context = PipelineContext(on_progress=self._emit_progress)

        # --- 5. Execute stages in order -----------------------------------
        try:
            for i, stage in enumerate(self._stages):
                stage_name = type(stage).__name__
                self._bus.emit(StageStart(stage_name=stage_name, stage_index=i))
                context.summary = {}
                stage_start = time.monotonic()
                context = stage.run(context)
                elapsed = time.monotonic() - stage_start
                context.stage_timing[stage_name] = elapsed
                logger.debug("%s finished in %.2fs", stage_name, elapsed)
                self._bus.emit(
                    StageComplete(
                        stage_name=stage_name,
                        stage_index=i,
                        elapsed_seconds=elapsed,
                        summary=dict(context.summary),
                    ),
                )

        except Exception as exc:
            total_elapsed = time.monotonic() - pipeline_start
            self._bus.emit(
                PipelineFailed(
                    run_id=self._config.run_id,
                    error=str(exc),
                    elapsed_seconds=total_elapsed,
                ),
            )
            raise

        # --- 6. Emit PipelineComplete -------------------------------------
        total_elapsed = time.monotonic() - pipeline_start
        self._bus.emit(
            PipelineComplete(
                run_id=self._config.run_id,
                elapsed_seconds=total_elapsed,
                context=context,
            ),
        )

        return context


# ---------------------------------------------------------------------------
# Stage factory
# ---------------------------------------------------------------------------


def build_stages(config: PipelineConfig) -> list[Stage]:
    """Construct the four profiling stages from a :class:`PipelineConfig`.

    Order: ImportStage -> ProfilingStage -> SegmentationStage -> ExportStage.

    Args:
        config: Frozen pipeline config.

    Returns:
        Ordered list of stage instances.

    Raises:
        FileNotFoundError: If an input, recipe or copy source path does not exist.
        ValueError: If the shape class is unknown.
    """
    from nucleusprofile.core import (
        ExportStage,
        ImportStage,
        ProfilingStage,
        SegmentationStage,
    )

    concurrency = config.concurrency
    return [
        ImportStage(
            input_path=config.input_path,
            shape_class=config.shape_class,
            rule_set_path=config.rule_set_path,
            window_proportion=config.profiling.window_proportion,
            max_workers=concurrency.max_workers,
            threshold=concurrency.import_task_threshold,
        ),
        ProfilingStage(max_coercion_attempts=config.profiling.max_coercion_attempts),
        SegmentationStage(
            mode=config.segmentation.mode,
            source_path=config.segmentation.source_path,
            min_segment_size=config.segmentation.min_segment_size,
            coarse_step=config.segmentation.coarse_step,
            fine_range=config.segmentation.fine_range,
            max_workers=concurrency.max_workers,
            threshold=concurrency.profile_task_threshold,
        ),
        ExportStage(output_dir=config.output_dir),
    ]


__all__ = ["ProfilingPipeline", "build_stages"]

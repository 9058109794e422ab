"""Pipeline stages: import, profiling, segmentation, export.

Each stage satisfies the :class:`~nucleusprofile.core.context.Stage` protocol
structurally. Stages only talk to the pipeline through
:class:`~nucleusprofile.core.context.PipelineContext`; per-individual
progress goes through ``context.on_progress``, which the pipeline runner
installs.

Import boundary: this module does NOT import from ``nucleusprofile.engine``.
"""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import TYPE_CHECKING

from nucleusprofile.core.dataset_segmenter import DatasetSegmenter, SegmentationMode
from nucleusprofile.core.exceptions import UnsegmentableProfileError
from nucleusprofile.core.fitter import COARSE_STEP, FINE_RANGE
from nucleusprofile.core.population import Population
from nucleusprofile.core.profiler import MAX_COERCION_ATTEMPTS, DatasetProfiler
from nucleusprofile.core.rules import rule_sets_for_shape
from nucleusprofile.core.segments import MIN_SEGMENT_SIZE
from nucleusprofile.core.tasks import IMPORT_TASK_THRESHOLD, PROFILE_TASK_THRESHOLD

if TYPE_CHECKING:
    from nucleusprofile.core.context import PipelineContext

__all__ = ["ExportStage", "ImportStage", "ProfilingStage", "SegmentationStage"]

logger = logging.getLogger(__name__)

RESULTS_FILENAME = "results.yaml"


class ImportStage:
    """Stage 1: read nucleus records and build the population.

    Paths are validated eagerly so a bad config fails before any stage runs.

    Args:
        input_path: YAML or JSON nucleus document.
        shape_class: Built-in landmark recipe name.
        rule_set_path: Optional custom recipe; takes precedence over
            *shape_class*.
        window_proportion: Angle window proportion for every nucleus.
        max_workers: Thread pool size for the import task.
        threshold: Largest record range built without splitting.

    Raises:
        FileNotFoundError: If *input_path* or *rule_set_path* does not exist.
        ValueError: If *shape_class* is unknown and no recipe file is given.
    """

    def __init__(
        self,
        input_path: str | Path,
        shape_class: str = "round",
        rule_set_path: str | Path | None = None,
        window_proportion: float | None = None,
        max_workers: int | None = None,
        threshold: int = IMPORT_TASK_THRESHOLD,
    ) -> None:
        self._input_path = Path(input_path)
        if not self._input_path.exists():
            raise FileNotFoundError(f"input_path does not exist: {self._input_path}")
        if rule_set_path is not None:
            from nucleusprofile.io.population_io import load_rule_sets

            if not Path(rule_set_path).exists():
                raise FileNotFoundError(f"rule_set_path does not exist: {rule_set_path}")
            self._rule_sets = load_rule_sets(rule_set_path)
        else:
            self._rule_sets = rule_sets_for_shape(shape_class)
        self._window_proportion = window_proportion
        self._max_workers = max_workers
        self._threshold = threshold

    def run(self, context: PipelineContext) -> PipelineContext:
        """Build the population and store it in ``context.population``."""
        from nucleusprofile.io.population_io import load_population

        population = load_population(
            self._input_path,
            self._rule_sets,
            window_proportion=self._window_proportion,
            max_workers=self._max_workers,
            threshold=self._threshold,
            on_progress=context.on_progress,
        )
        context.population = population
        context.summary["nuclei"] = len(population)
        context.summary["shape_class"] = population.rule_sets.name
        return context


class ProfilingStage:
    """Stage 2: coerce the reference point and locate the other landmarks."""

    def __init__(self, max_coercion_attempts: int = MAX_COERCION_ATTEMPTS) -> None:
        self._max_coercion_attempts = max_coercion_attempts

    def run(self, context: PipelineContext) -> PipelineContext:
        population: Population = context.get("population")  # type: ignore[assignment]
        t0 = time.perf_counter()
        profiler = DatasetProfiler(population, max_coercion_attempts=self._max_coercion_attempts)
        profiler.run()
        logger.info(
            "ProfilingStage.run: %d nuclei, %d coercion iterations, %.2fs",
            len(population), profiler.coercion_iterations, time.perf_counter() - t0,
        )
        context.coercion_iterations = profiler.coercion_iterations
        context.converged = profiler.converged
        context.summary["landmarks"] = {lm.value: i for lm, i in population.landmarks.items()}
        return context


class SegmentationStage:
    """Stage 3: segment the median and fit every nucleus to it.

    An unsegmentable median is not fatal: the population keeps a single
    whole-profile segment and ``context.segmented`` is False.

    Args:
        mode: ``new``, ``copy`` or ``refresh``.
        source_path: Results file to copy from in ``copy`` mode.
        min_segment_size: Minimum median segment length.
        coarse_step: Segment fitter coarse step.
        fine_range: Segment fitter fine range.
        max_workers: Thread pool size for per-nucleus tasks.
        threshold: Largest range a task processes without splitting.

    Raises:
        FileNotFoundError: If *source_path* is set but does not exist.
    """

    def __init__(
        self,
        mode: SegmentationMode | str = SegmentationMode.NEW,
        source_path: str | Path | None = None,
        min_segment_size: int = MIN_SEGMENT_SIZE,
        coarse_step: int = COARSE_STEP,
        fine_range: int = FINE_RANGE,
        max_workers: int | None = None,
        threshold: int = PROFILE_TASK_THRESHOLD,
    ) -> None:
        self._mode = SegmentationMode(mode)
        self._source_path = Path(source_path) if source_path is not None else None
        if self._source_path is not None and not self._source_path.exists():
            raise FileNotFoundError(f"source_path does not exist: {self._source_path}")
        self._min_segment_size = min_segment_size
        self._coarse_step = coarse_step
        self._fine_range = fine_range
        self._max_workers = max_workers
        self._threshold = threshold

    def _load_source(self) -> Population | None:
        if self._source_path is None:
            return None
        from nucleusprofile.io.population_io import load_population

        return load_population(self._source_path)

    def run(self, context: PipelineContext) -> PipelineContext:
        population: Population = context.get("population")  # type: ignore[assignment]
        segmenter = DatasetSegmenter(
            population,
            self._mode,
            source=self._load_source() if self._mode is SegmentationMode.COPY else None,
            min_segment_size=self._min_segment_size,
            coarse_step=self._coarse_step,
            fine_range=self._fine_range,
            max_workers=self._max_workers,
            threshold=self._threshold,
            on_progress=context.on_progress,
        )
        try:
            context.segmented = segmenter.run()
        except UnsegmentableProfileError as exc:
            logger.warning("Median of %s could not be segmented: %s", population.name, exc)
            context.segmented = False
        segments = population.segments
        context.summary["segments"] = len(segments) if segments is not None else 0
        context.summary["not_matching_median"] = population.count_not_matching_median()
        return context


class ExportStage:
    """Stage 4: write ``results.yaml`` into the run's output directory."""

    def __init__(self, output_dir: str | Path) -> None:
        self._output_dir = Path(output_dir)

    def run(self, context: PipelineContext) -> PipelineContext:
        from nucleusprofile.io.population_io import write_results

        population: Population = context.get("population")  # type: ignore[assignment]
        path = write_results(
            population,
            self._output_dir / RESULTS_FILENAME,
            converged=context.converged,
            coercion_iterations=context.coercion_iterations,
            segmented=context.segmented,
        )
        context.results_path = str(path)
        return context

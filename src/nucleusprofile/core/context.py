"""Stage Protocol and PipelineContext, the data contracts of the pipeline.

Defines the structural typing contract that all pipeline stages must satisfy,
and the typed accumulator that flows data between stages.

These types live in core/ because they are pure data containers with no engine
logic, so core stage modules never import from engine/.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable


@runtime_checkable
class Stage(Protocol):
    """Structural protocol for all pipeline stages.

    Any class that implements a ``run(context: PipelineContext) -> PipelineContext``
    method is automatically a Stage. No inheritance required.

    Example::

        class CountStage:
            def run(self, context: PipelineContext) -> PipelineContext:
                context.summary["nuclei"] = len(context.get("population"))
                return context
    """

    def run(self, context: PipelineContext) -> PipelineContext:
        """Execute this stage, read from context, populate output fields, return context.

        Args:
            context: Accumulated pipeline state from prior stages.

        Returns:
            The same context object with this stage's output fields populated.
        """
        ...


@dataclass
class PipelineContext:
    """Typed accumulator for inter-stage data flow.

    Stages populate their output field(s) and return the context. Fields are
    None until the producing stage has run. Use :meth:`get` to retrieve a
    field with a clear error if the upstream stage has not yet executed.

    The data flow is:

    1. Import       -> ``population``
    2. Profiling    -> ``coercion_iterations``, ``converged``
    3. Segmentation -> ``segmented``
    4. Export       -> ``results_path``

    Attributes:
        population: The population being profiled.
            Type: ``Population``
        coercion_iterations: Reference point coercion iterations used.
        converged: Whether the reference point reached median index 0.
        segmented: Whether segmentation produced median segments.
        results_path: Where the export stage wrote its results.
        on_progress: Per-individual progress callback installed by the
            pipeline runner, called as ``on_progress(task, item_id, total)``.
        summary: Stage metrics, keyed by metric name.
        stage_timing: Wall-clock seconds per stage, keyed by stage name.
    """

    population: object | None = None
    coercion_iterations: int | None = None
    converged: bool | None = None
    segmented: bool | None = None
    results_path: str | None = None
    on_progress: Callable[[str, str, int], None] | None = None
    summary: dict[str, object] = field(default_factory=dict)
    stage_timing: dict[str, float] = field(default_factory=dict)

    def get(self, field_name: str) -> object:
        """Return the value of a field, raising ValueError if it is None.

        Args:
            field_name: Name of the PipelineContext field to retrieve.

        Returns:
            The field value (guaranteed non-None).

        Raises:
            ValueError: If the field is None, indicating the producing stage
                has not yet run.
            AttributeError: If ``field_name`` is not a valid field on this dataclass.
        """
        value = getattr(self, field_name)
        if value is None:
            raise ValueError(
                f"PipelineContext.{field_name} is None; the stage that produces "
                f"'{field_name}' has not run yet. Check stage ordering.",
            )
        return value


__all__ = ["PipelineContext", "Stage"]

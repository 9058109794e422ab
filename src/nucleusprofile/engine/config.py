"""Frozen dataclass config hierarchy for the profiling pipeline.

Loading precedence: defaults -> YAML file -> CLI overrides -> freeze.

The frozen guarantee prevents accidental mutation during execution. The full
serialized config is written as the first artifact of every run so a run can
be reproduced from its output directory alone.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

import yaml

from nucleusprofile.core.dataset_segmenter import SegmentationMode
from nucleusprofile.core.fitter import COARSE_STEP, FINE_RANGE
from nucleusprofile.core.nucleus import DEFAULT_WINDOW_PROPORTION
from nucleusprofile.core.profiler import MAX_COERCION_ATTEMPTS
from nucleusprofile.core.rules import SHAPE_CLASSES
from nucleusprofile.core.segments import MIN_SEGMENT_SIZE
from nucleusprofile.core.tasks import IMPORT_TASK_THRESHOLD, PROFILE_TASK_THRESHOLD

# ---------------------------------------------------------------------------
# Stage-specific config dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ProfilingConfig:
    """Config for the profiling stage.

    Attributes:
        window_proportion: Angle window as a fraction of each border's length.
        max_coercion_attempts: Upper bound on reference point coercion rounds.
    """

    window_proportion: float = DEFAULT_WINDOW_PROPORTION
    max_coercion_attempts: int = MAX_COERCION_ATTEMPTS

    def __post_init__(self) -> None:
        if not 0.0 < self.window_proportion < 0.5:
            raise ValueError(
                f"profiling.window_proportion must be in (0, 0.5), got {self.window_proportion}"
            )
        if self.max_coercion_attempts < 0:
            raise ValueError("profiling.max_coercion_attempts must be non-negative")


@dataclass(frozen=True)
class SegmentationConfig:
    """Config for the segmentation stage.

    Attributes:
        mode: ``new``, ``copy`` or ``refresh``.
        source_path: Results file of a profiled population to copy segments
            from in ``copy`` mode.
        min_segment_size: Minimum segment length in the median.
        coarse_step: Coarse search step of the segment fitter.
        fine_range: Fine search half-width of the segment fitter.
    """

    mode: str = SegmentationMode.NEW.value
    source_path: str | None = None
    min_segment_size: int = MIN_SEGMENT_SIZE
    coarse_step: int = COARSE_STEP
    fine_range: int = FINE_RANGE

    def __post_init__(self) -> None:
        valid = [m.value for m in SegmentationMode]
        if self.mode not in valid:
            raise ValueError(f"segmentation.mode must be one of {valid}, got {self.mode!r}")
        if self.min_segment_size < 1:
            raise ValueError("segmentation.min_segment_size must be at least 1")
        if self.coarse_step < 1 or self.fine_range < 0:
            raise ValueError("segmentation.coarse_step must be >= 1 and fine_range >= 0")


@dataclass(frozen=True)
class ConcurrencyConfig:
    """Config for the per-individual task layer.

    Attributes:
        max_workers: Thread pool size (None lets the executor decide).
        profile_task_threshold: Largest range a profiling task runs unsplit.
        import_task_threshold: Largest range an import task runs unsplit.
    """

    max_workers: int | None = None
    profile_task_threshold: int = PROFILE_TASK_THRESHOLD
    import_task_threshold: int = IMPORT_TASK_THRESHOLD


# ---------------------------------------------------------------------------
# Top-level config
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PipelineConfig:
    """Top-level frozen config for a full pipeline run.

    Attributes:
        run_id: Unique run identifier (timestamp-based by default).
        output_dir: Root directory for run artifacts.
        input_path: YAML or JSON file of nucleus border records.
        shape_class: Built-in landmark recipe (``round``, ``pig_sperm``,
            ``mouse_sperm``).
        rule_set_path: Optional YAML file of custom rule sets; overrides
            *shape_class* when set.
        profiling: Profiling stage config.
        segmentation: Segmentation stage config.
        concurrency: Task layer config.
    """

    run_id: str = dataclasses.field(default="")
    output_dir: str = dataclasses.field(default="")
    input_path: str = ""
    shape_class: str = "round"
    rule_set_path: str | None = None
    profiling: ProfilingConfig = dataclasses.field(default_factory=ProfilingConfig)
    segmentation: SegmentationConfig = dataclasses.field(
        default_factory=SegmentationConfig
    )
    concurrency: ConcurrencyConfig = dataclasses.field(
        default_factory=ConcurrencyConfig
    )

    def __post_init__(self) -> None:
        if self.rule_set_path is None and self.shape_class not in SHAPE_CLASSES:
            raise ValueError(
                f"Unknown shape_class {self.shape_class!r}. Valid values: {sorted(SHAPE_CLASSES)}"
            )


_SECTIONS: dict[str, type] = {
    "profiling": ProfilingConfig,
    "segmentation": SegmentationConfig,
    "concurrency": ConcurrencyConfig,
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _generate_run_id() -> str:
    """Generate a timestamp-based run identifier.

    Returns:
        Run ID string of the form "run_YYYYMMDD_HHMMSS".
    """
    return f"run_{datetime.now():%Y%m%d_%H%M%S}"


def _default_output_dir(run_id: str) -> str:
    """Return the default artifact output directory for a run.

    Args:
        run_id: The run identifier.

    Returns:
        Expanded absolute path string.
    """
    return str(Path(f"~/nucleusprofile/runs/{run_id}").expanduser())


def _merge_stage_config(
    defaults: dict[str, Any], overrides: dict[str, Any]
) -> dict[str, Any]:
    """Shallow-merge *overrides* onto *defaults*, returning a new dict."""
    merged = dict(defaults)
    merged.update(overrides)
    return merged


def _apply_nested_overrides(
    flat: dict[str, Any], nested: dict[str, Any]
) -> dict[str, Any]:
    """Apply nested dict overrides onto a flat key->value mapping.

    Overrides may arrive as dot-notation keys ("segmentation.mode") or as
    nested dicts ({"segmentation": {"mode": "copy"}}). Nested dicts are
    flattened to dot-notation before merging.

    Args:
        flat: Existing flat override dict (dot-notation keys).
        nested: Override source; may be nested or already flat.

    Returns:
        New flat dict combining both sources, nested taking precedence.
    """
    result = dict(flat)
    for key, value in nested.items():
        if isinstance(value, dict):
            for subkey, subvalue in value.items():
                result[f"{key}.{subkey}"] = subvalue
        else:
            result[key] = value
    return result


def _build_stage_dict_from_dotted(
    flat: dict[str, Any],
) -> dict[str, dict[str, Any]]:
    """Convert dot-notation keys to a nested section->field mapping.

    For example, {"segmentation.mode": "copy"} becomes
    {"segmentation": {"mode": "copy"}}. Top-level keys (no dot) go into a
    special "__top__" bucket.

    Raises:
        ValueError: If a key names an unknown section or field.
    """
    nested: dict[str, Any] = {"__top__": {}}
    top_fields = {f.name for f in dataclasses.fields(PipelineConfig)} - set(_SECTIONS)
    for key, value in flat.items():
        if "." in key:
            section, _, field_name = key.partition(".")
            if section not in _SECTIONS:
                raise ValueError(f"Unknown config section {section!r} in {key!r}")
            known = {f.name for f in dataclasses.fields(_SECTIONS[section])}
            if field_name not in known:
                raise ValueError(f"Unknown config field {key!r}. Valid: {sorted(known)}")
            nested.setdefault(section, {})[field_name] = value
        else:
            if key not in top_fields:
                raise ValueError(f"Unknown config field {key!r}. Valid: {sorted(top_fields)}")
            nested["__top__"][key] = value
    return nested


def _parse_cli_values(overrides: dict[str, Any]) -> dict[str, Any]:
    """Parse string override values as YAML scalars ("12" -> 12, "null" -> None)."""
    return {
        key: yaml.safe_load(value) if isinstance(value, str) else value
        for key, value in overrides.items()
    }


# ---------------------------------------------------------------------------
# Public factory
# ---------------------------------------------------------------------------


def load_config(
    yaml_path: str | Path | None = None,
    *,
    cli_overrides: dict[str, Any] | None = None,
    run_id: str | None = None,
) -> PipelineConfig:
    """Construct a frozen :class:`PipelineConfig` using layered overrides.

    Loading precedence (lowest to highest priority):

    1. Dataclass field defaults
    2. YAML file (*yaml_path*)
    3. CLI overrides (*cli_overrides*)
    4. Freeze

    CLI overrides may use dot-notation keys ("segmentation.mode") or nested
    dicts; string values are parsed as YAML scalars.

    Args:
        yaml_path: Optional path to a YAML config file.
        cli_overrides: Optional dict of CLI overrides (highest precedence).
        run_id: Explicit run identifier. Auto-generated if not provided.

    Returns:
        Frozen :class:`PipelineConfig` with all overrides applied.

    Raises:
        ValueError: If a key is unknown or a value fails validation.
    """
    # --- layer 1: defaults ------------------------------------------------
    section_kwargs: dict[str, dict[str, Any]] = {name: {} for name in _SECTIONS}
    top_kwargs: dict[str, Any] = {}

    # --- layer 2: YAML overrides ------------------------------------------
    if yaml_path is not None:
        yaml_path = Path(yaml_path)
        with yaml_path.open() as fh:
            raw: dict[str, Any] = yaml.safe_load(fh) or {}

        yaml_nested = _build_stage_dict_from_dotted(_apply_nested_overrides({}, raw))
        for name in _SECTIONS:
            section_kwargs[name] = _merge_stage_config(
                section_kwargs[name], yaml_nested.get(name, {})
            )
        top_kwargs = _merge_stage_config(top_kwargs, yaml_nested["__top__"])

    # --- layer 3: CLI overrides -------------------------------------------
    if cli_overrides is not None:
        flat_cli = _apply_nested_overrides({}, _parse_cli_values(cli_overrides))
        cli_nested = _build_stage_dict_from_dotted(flat_cli)
        for name in _SECTIONS:
            section_kwargs[name] = _merge_stage_config(
                section_kwargs[name], cli_nested.get(name, {})
            )
        top_kwargs = _merge_stage_config(top_kwargs, cli_nested["__top__"])

    # --- layer 4: resolve run_id and output_dir ---------------------------
    resolved_run_id = run_id or top_kwargs.pop("run_id", None) or _generate_run_id()
    resolved_output_dir = top_kwargs.pop("output_dir", None) or _default_output_dir(
        resolved_run_id
    )

    # --- construct & freeze -----------------------------------------------
    return PipelineConfig(
        run_id=resolved_run_id,
        output_dir=str(resolved_output_dir),
        **{name: cls(**section_kwargs[name]) for name, cls in _SECTIONS.items()},
        **top_kwargs,
    )


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------


def serialize_config(config: PipelineConfig) -> str:
    """Serialize *config* to a YAML string.

    Uses :func:`dataclasses.asdict` to convert the frozen hierarchy to a
    plain dict, then :func:`yaml.dump` to produce a human-readable YAML
    string. The orchestrator writes it as the first run artifact.

    Args:
        config: Frozen pipeline config to serialize.

    Returns:
        YAML string representation of the config.
    """
    return yaml.dump(
        dataclasses.asdict(config), default_flow_style=False, sort_keys=True
    )


__all__ = [
    "ConcurrencyConfig",
    "PipelineConfig",
    "ProfilingConfig",
    "SegmentationConfig",
    "load_config",
    "serialize_config",
]

"""File I/O: nucleus documents, rule set recipes and profiling results."""

from .population_io import (
    load_population,
    load_rule_sets,
    population_to_dict,
    read_document,
    write_results,
)

__all__ = [
    "load_population",
    "load_rule_sets",
    "population_to_dict",
    "read_document",
    "write_results",
]

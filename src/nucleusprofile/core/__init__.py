"""Core domain logic for nuclear morphology profiling.

Exports the pipeline stage classes, the pipeline data contracts
(PipelineContext, Stage Protocol), and the main domain types. Each stage
satisfies the Stage Protocol via structural typing (no inheritance required).

Stage ordering:
1. ImportStage        -- nucleus records to a population
2. ProfilingStage     -- reference point coercion and landmark discovery
3. SegmentationStage  -- median segmentation, assignment and recombination
4. ExportStage        -- results document
"""

from nucleusprofile.core.context import PipelineContext, Stage
from nucleusprofile.core.dataset_segmenter import DatasetSegmenter, SegmentationMode
from nucleusprofile.core.exceptions import (
    MissingLandmarkError,
    MissingSegmentError,
    NoDetectedIndexError,
    ProfileError,
    SegmentUpdateError,
    UnsegmentableProfileError,
)
from nucleusprofile.core.landmarks import Landmark
from nucleusprofile.core.manager import ProfileManager
from nucleusprofile.core.nucleus import Nucleus
from nucleusprofile.core.population import Population
from nucleusprofile.core.profile import Profile, ProfileType
from nucleusprofile.core.profiler import DatasetProfiler
from nucleusprofile.core.segments import Segment, SegmentedProfile, SegmentRing
from nucleusprofile.core.stages import ExportStage, ImportStage, ProfilingStage, SegmentationStage

__all__ = [
    "DatasetProfiler",
    "DatasetSegmenter",
    "ExportStage",
    "ImportStage",
    "Landmark",
    "MissingLandmarkError",
    "MissingSegmentError",
    "NoDetectedIndexError",
    "Nucleus",
    "PipelineContext",
    "Population",
    "Profile",
    "ProfileError",
    "ProfileManager",
    "ProfileType",
    "ProfilingStage",
    "Segment",
    "SegmentRing",
    "SegmentationMode",
    "SegmentationStage",
    "SegmentedProfile",
    "Stage",
    "UnsegmentableProfileError",
]

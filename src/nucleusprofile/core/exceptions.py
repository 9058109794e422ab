"""Exception hierarchy for profile, landmark and segment operations.

All errors derive from :class:`ProfileError`, itself a ``ValueError``, so that
population-wide operations can isolate a failing individual with a single
``except ProfileError`` clause.
"""

from __future__ import annotations


class ProfileError(ValueError):
    """Base class for all profile-related failures."""


class NoDetectedIndexError(ProfileError):
    """A rule set or masked search found no matching index."""


class UnsegmentableProfileError(ProfileError):
    """Segmentation could not produce a closed ring of valid segments."""


class SegmentUpdateError(ProfileError):
    """A segment ring is malformed or an edit would leave it invalid."""


class MissingSegmentError(ProfileError, KeyError):
    """No segment with the requested identifier exists in the ring."""

    def __str__(self) -> str:
        return ValueError.__str__(self)


class MissingLandmarkError(ProfileError, KeyError):
    """An individual or collection has no index for the requested landmark."""

    def __str__(self) -> str:
        return ValueError.__str__(self)


__all__ = [
    "MissingLandmarkError",
    "MissingSegmentError",
    "NoDetectedIndexError",
    "ProfileError",
    "SegmentUpdateError",
    "UnsegmentableProfileError",
]

"""
Timing package.

Normalizes raw timing records, reconstructs per-segment start times, and
locates the active segment for a playback position.
"""

from .normalizer import (
    normalize_timings,
    timings_are_milliseconds,
    resolve_segment_key,
    anchors_from_mapping,
)

from .reconstructor import (
    reconstruct_timeline,
    enforce_monotonic,
    estimated_step,
)

from .locator import (
    locate_precise,
    locate_weighted,
    current_segment_index,
    segment_start_position,
)

__all__ = [
    # Normalization
    "normalize_timings",
    "timings_are_milliseconds",
    "resolve_segment_key",
    "anchors_from_mapping",

    # Reconstruction
    "reconstruct_timeline",
    "enforce_monotonic",
    "estimated_step",

    # Location
    "locate_precise",
    "locate_weighted",
    "current_segment_index",
    "segment_start_position",
]

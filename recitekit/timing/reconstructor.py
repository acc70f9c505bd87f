"""
Verse timing reconstruction.

Builds a complete, monotonically non-decreasing start-time sequence for an
ordered list of segments from a sparse set of anchors.
"""

import logging
from typing import Dict, List, Optional, Sequence

from ..models import Segment
from ..utils import segment_weights

logger = logging.getLogger(__name__)

MIN_ANCHOR_STEP = 0.1
MIN_DURATION_STEP = 0.5
DEFAULT_STEP = 2.5


def estimated_step(duration: float, segment_count: int) -> float:
    """
    Per-segment step derived from the recording duration.

    Example:
        >>> estimated_step(120.0, 10)
        12.0
        >>> estimated_step(0.0, 10)
        2.5
    """
    if duration <= 0 or segment_count <= 0:
        return DEFAULT_STEP
    return max(MIN_DURATION_STEP, duration / segment_count)


def _interpolate_gaps(
    starts: List[Optional[float]],
    known: List[int],
    weights: List[float],
) -> None:
    # Fill unknown segments between consecutive anchors, in place.
    for left, right in zip(known, known[1:]):
        if right - left <= 1:
            continue
        left_time = starts[left]
        right_time = starts[right]
        span = max(0.0, right_time - left_time)
        interval = weights[left:right]
        total = sum(interval)
        if total <= 0:
            continue

        running = left_time
        for offset in range(len(interval) - 1):
            running += span * (interval[offset] / total)
            starts[left + offset + 1] = running


def _extrapolate_edges(starts: List[Optional[float]], known: List[int], fallback_step: float) -> None:
    first = known[0]
    if first > 0:
        if len(known) > 1 and known[1] > first:
            step = max(MIN_ANCHOR_STEP, (starts[known[1]] - starts[first]) / (known[1] - first))
        else:
            step = fallback_step
        running = starts[first]
        for index in range(first - 1, -1, -1):
            running = max(0.0, running - step)
            starts[index] = running

    last = known[-1]
    if last < len(starts) - 1:
        previous = known[-2] if len(known) > 1 else None
        if previous is not None and last > previous:
            step = max(MIN_ANCHOR_STEP, (starts[last] - starts[previous]) / (last - previous))
        else:
            step = fallback_step
        running = starts[last]
        for index in range(last + 1, len(starts)):
            running += step
            starts[index] = running


def enforce_monotonic(values: List[float]) -> List[float]:
    """
    Clamp the first value to >= 0 and every later value to >= its predecessor.

    Example:
        >>> enforce_monotonic([-1.0, 3.0, 2.0, 5.0])
        [0.0, 3.0, 3.0, 5.0]
    """
    resolved = list(values)
    if resolved:
        resolved[0] = max(0.0, resolved[0])
    for index in range(1, len(resolved)):
        resolved[index] = max(resolved[index], resolved[index - 1])
    return resolved


def reconstruct_timeline(
    segments: Sequence[Segment],
    anchors: Dict[str, float],
    duration: float = 0.0,
) -> List[float]:
    """
    Reconstruct a start time for every segment.

    Unknown segments between two anchors share the gap in proportion to their
    text length (max(1, characters)). Segments before the first or after the
    last anchor are extrapolated with the average step of the nearest anchor
    pair. A final pass makes the sequence non-decreasing and non-negative.

    Args:
        segments: Ordered segments of one recording
        anchors: Segment key -> start seconds, as produced by normalize_timings
        duration: Recording duration in seconds (0 if unknown); only used
            for the step fallback

    Returns:
        One start time per segment, or an empty list when fewer than two
        segments have an anchor (callers then fall back to weighted locating)

    Example:
        >>> segs = [Segment(1, "1:1", "aa"), Segment(2, "1:2", "aa"), Segment(3, "1:3", "aa")]
        >>> reconstruct_timeline(segs, {"1:1": 0.0, "1:3": 10.0})
        [0.0, 5.0, 10.0]
    """
    if not segments:
        return []

    starts: List[Optional[float]] = [anchors.get(segment.key) for segment in segments]
    known = [index for index, value in enumerate(starts) if value is not None]
    if len(known) < 2:
        logger.debug(f"Only {len(known)} anchored segments out of {len(segments)}, no timeline")
        return []

    weights = segment_weights(segments)
    _interpolate_gaps(starts, known, weights)
    _extrapolate_edges(starts, known, estimated_step(duration, len(segments)))

    return enforce_monotonic([value if value is not None else 0.0 for value in starts])

"""
Current-segment location.

Pure functions mapping a playback position to the active segment index and
back. A reconstructed timeline gives exact answers; without one the recording
is treated as divided among segments in proportion to their text length.
"""

import bisect
from typing import Optional, Sequence

from ..models import Segment
from ..utils import segment_weights


def locate_precise(position: float, timeline: Sequence[float]) -> int:
    """
    Index of the last segment whose start does not exceed ``position``.

    Equal start times resolve to the later segment.

    Args:
        position: Playback position in seconds
        timeline: Non-decreasing start times

    Returns:
        Segment index clamped to [0, len(timeline) - 1]

    Example:
        >>> locate_precise(4.999, [0, 2, 5, 9])
        1
        >>> locate_precise(5.0, [0, 2, 5, 9])
        2
    """
    if not timeline:
        return 0
    index = bisect.bisect_right(timeline, max(0.0, position)) - 1
    return min(max(0, index), len(timeline) - 1)


def locate_weighted(position: float, duration: float, segments: Sequence[Segment]) -> Optional[int]:
    """
    Estimate the active segment from text-length proportions.

    Args:
        position: Playback position in seconds
        duration: Recording duration in seconds
        segments: Ordered segments

    Returns:
        Segment index, or None when duration is unknown or there are no
        segments

    Example:
        >>> segs = [Segment(1, "1:1", "abcde"), Segment(2, "1:2", "abcde")]
        >>> locate_weighted(49.9, 100.0, segs), locate_weighted(50.0, 100.0, segs)
        (0, 1)
    """
    if duration <= 0 or not segments:
        return None

    fraction = min(max(0.0, position / duration), 1.0)
    weights = segment_weights(segments)
    target = fraction * sum(weights)

    cumulative = 0.0
    for index, weight in enumerate(weights):
        cumulative += weight
        if target < cumulative:
            return index
    return len(segments) - 1


def has_precise_timeline(segments: Sequence[Segment], timeline: Sequence[float]) -> bool:
    return bool(timeline) and len(timeline) == len(segments)


def current_segment_index(
    position: float,
    duration: float,
    segments: Sequence[Segment],
    timeline: Sequence[float],
) -> Optional[int]:
    """
    Active segment for a position, using the timeline when it covers every segment.

    Returns:
        Segment index, or None when no segment can be reported
    """
    if not segments:
        return None
    if has_precise_timeline(segments, timeline):
        return locate_precise(position, timeline)
    return locate_weighted(position, duration, segments)


def segment_start_position(
    index: int,
    duration: float,
    segments: Sequence[Segment],
    timeline: Sequence[float],
) -> Optional[float]:
    """
    Playback position at which segment ``index`` begins.

    In weighted mode this is the share of text preceding the segment, scaled
    to the duration and clamped to [0, duration].

    Returns:
        Position in seconds, or None if the index is out of range or the
        duration is unknown without a timeline
    """
    if not 0 <= index < len(segments):
        return None
    if has_precise_timeline(segments, timeline):
        return float(timeline[index])
    if duration <= 0:
        return None

    weights = segment_weights(segments)
    total = sum(weights)
    if total <= 0:
        return (index / max(1, len(segments) - 1)) * duration
    preceding = sum(weights[:index])
    return min(duration, max(0.0, (preceding / total) * duration))

"""
Timing anchor normalization.

Turns raw timing records of unknown unit into a clean mapping of segment key
to earliest start time in seconds.
"""

import logging
import math
from typing import Dict, Iterable, List, Optional

from ..models import RawTiming, TimingAnchor

logger = logging.getLogger(__name__)

# Any raw start at or above this value can only be milliseconds.
MILLISECONDS_THRESHOLD = 10_000
# Raw starts exceeding the duration hint by this factor are milliseconds.
DURATION_HINT_FACTOR = 1.5


def timings_are_milliseconds(raw_timings: List[RawTiming], duration_hint: Optional[float] = None) -> bool:
    """
    Decide whether a batch of raw starts is expressed in milliseconds.

    The decision is made once for the whole batch from its largest value.

    Args:
        raw_timings: Raw timing records
        duration_hint: Recording duration in seconds, if known

    Returns:
        True if every value should be divided by 1000

    Example:
        >>> timings_are_milliseconds([RawTiming("1:1", None, 500)], duration_hint=300)
        True
        >>> timings_are_milliseconds([RawTiming("1:1", None, 120)], duration_hint=300)
        False
    """
    if not raw_timings:
        return False

    max_raw = max(timing.start_raw for timing in raw_timings)
    if max_raw >= MILLISECONDS_THRESHOLD:
        return True
    if duration_hint is not None and duration_hint > 0 and max_raw > duration_hint * DURATION_HINT_FACTOR:
        return True
    return False


def resolve_segment_key(timing: RawTiming, recording_id: int) -> Optional[str]:
    """
    Segment key for a raw record.

    An explicit non-empty key wins; otherwise a positive ordinal is turned
    into ``"<recording_id>:<ordinal>"``. Records with neither yield None.
    """
    if timing.segment_key is not None:
        key = str(timing.segment_key).strip()
        if key:
            return key
    if timing.ordinal is not None and timing.ordinal > 0:
        return f"{recording_id}:{timing.ordinal}"
    return None


def normalize_timings(
    raw_timings: Iterable[RawTiming],
    recording_id: int,
    duration_hint: Optional[float] = None,
) -> Dict[str, float]:
    """
    Normalize raw timing records into segment key -> start seconds.

    Algorithm:
    1. Detect the unit (seconds or milliseconds) from the largest raw value
    2. Convert every value to seconds, dropping non-finite or negative ones
    3. Resolve each record's segment key, dropping records without one
    4. Keep the earliest start per key

    Args:
        raw_timings: Raw timing records as decoded from the API
        recording_id: Recording the records belong to (for ordinal keys)
        duration_hint: Recording duration in seconds, if known

    Returns:
        Mapping of segment key to start time in seconds (empty for empty input)

    Example:
        >>> normalize_timings([
        ...     RawTiming("1:1", None, 0.0),
        ...     RawTiming(None, 2, 4.5),
        ...     RawTiming("1:2", None, 4.2),
        ... ], recording_id=1)
        {'1:1': 0.0, '1:2': 4.2}
    """
    raw_timings = list(raw_timings)
    if not raw_timings:
        return {}

    as_milliseconds = timings_are_milliseconds(raw_timings, duration_hint)
    if as_milliseconds:
        logger.debug(f"Treating {len(raw_timings)} raw timings as milliseconds")

    earliest: Dict[str, float] = {}
    dropped = 0
    for timing in raw_timings:
        start = timing.start_raw / 1000 if as_milliseconds else timing.start_raw
        if not math.isfinite(start) or start < 0:
            dropped += 1
            continue

        key = resolve_segment_key(timing, recording_id)
        if key is None:
            dropped += 1
            continue

        if key in earliest:
            earliest[key] = min(earliest[key], start)
        else:
            earliest[key] = start

    if dropped:
        logger.debug(f"Dropped {dropped} unusable timing records for recording {recording_id}")

    return earliest


def anchors_from_mapping(mapping: Dict[str, float]) -> List[TimingAnchor]:
    """Anchors ordered by start time."""
    return sorted(
        (TimingAnchor(segment_key=key, start_seconds=start) for key, start in mapping.items()),
        key=lambda anchor: anchor.start_seconds,
    )

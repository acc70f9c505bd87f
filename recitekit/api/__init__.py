"""
API package for recitekit.

Provides the recitation service interface, its HTTP implementation and the
tolerant payload decoders behind it.
"""

from .base import RecitationService
from .client import RecitationAPIClient
from .decoding import (
    decode_audio_source,
    decode_raw_timing,
    decode_raw_timings,
    decode_segments,
    normalize_audio_url,
    canonical_segment_key,
)

__all__ = [
    'RecitationService',
    'RecitationAPIClient',
    'decode_audio_source',
    'decode_raw_timing',
    'decode_raw_timings',
    'decode_segments',
    'normalize_audio_url',
    'canonical_segment_key',
]

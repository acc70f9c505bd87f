"""
RecitEKit - Playback sync and offline cache for recited chapters

A library for playing recited chapters with verse-level highlighting, an
offline audio cache and resumable playback.

Features:
- Fetch chapters, reciters, translations, verses and audio from a v4 REST API
- Normalize verse timings of unknown unit (seconds or milliseconds)
- Reconstruct a complete verse timeline from sparse anchors
- Locate the active verse for any playback position
- Cache audio for offline playback with a self-healing index
- Persist and restore the last playback position

Example usage:
    >>> import asyncio
    >>> from recitekit import (
    ...     PlayerConfig, RecitationAPIClient, ContentCache,
    ...     PlaybackStateStore, SessionController,
    ... )
    >>>
    >>> config = PlayerConfig.from_env()
    >>> controller = SessionController(
    ...     service=RecitationAPIClient(config),
    ...     player=my_player,
    ...     cache=ContentCache(config.cache_dir),
    ...     store=PlaybackStateStore(config.snapshot_path),
    ...     config=config,
    ... )
    >>> controller.start_session(chapter, chapters, reciter)
"""

import logging

__version__ = "0.1.0"
__author__ = "RecitEKit Contributors"
__license__ = "MIT"

# Add NullHandler to prevent "No handler found" warnings
# Users should configure logging in their application if they want to see logs
logging.getLogger(__name__).addHandler(logging.NullHandler())

# Core utility functions
from .utils import (
    text_weight,
    segment_weights,
    format_countdown,
    url_extension,
    atomic_json_write,
    retry_with_backoff,
)

# Timing
from .timing import (
    normalize_timings,
    timings_are_milliseconds,
    reconstruct_timeline,
    locate_precise,
    locate_weighted,
    current_segment_index,
    segment_start_position,
)

# Main classes
from .api import RecitationService, RecitationAPIClient
from .downloader import MediaDownloader
from .cache import ContentCache, cache_key
from .store import PlaybackStateStore
from .player import MediaPlayer
from .session import SessionController

# Data models
from .models import (
    Segment,
    RawTiming,
    TimingAnchor,
    AudioSource,
    Recording,
    Performer,
    Translation,
    CacheEntry,
    PlaybackSnapshot,
    PlaybackSession,
    SessionState,
    SleepTimerPreset,
    PlayerConfig,
    FALLBACK_TRANSLATION,
)

# Errors
from .exceptions import (
    RecitekitError,
    TransportError,
    DecodingError,
    MissingMediaError,
    CacheIOError,
)

__all__ = [
    # Version info
    "__version__",
    "__author__",
    "__license__",

    # Utility functions
    "text_weight",
    "segment_weights",
    "format_countdown",
    "url_extension",
    "atomic_json_write",
    "retry_with_backoff",

    # Timing
    "normalize_timings",
    "timings_are_milliseconds",
    "reconstruct_timeline",
    "locate_precise",
    "locate_weighted",
    "current_segment_index",
    "segment_start_position",

    # Main classes
    "RecitationService",
    "RecitationAPIClient",
    "MediaDownloader",
    "ContentCache",
    "cache_key",
    "PlaybackStateStore",
    "MediaPlayer",
    "SessionController",

    # Models
    "Segment",
    "RawTiming",
    "TimingAnchor",
    "AudioSource",
    "Recording",
    "Performer",
    "Translation",
    "CacheEntry",
    "PlaybackSnapshot",
    "PlaybackSession",
    "SessionState",
    "SleepTimerPreset",
    "PlayerConfig",
    "FALLBACK_TRANSLATION",

    # Errors
    "RecitekitError",
    "TransportError",
    "DecodingError",
    "MissingMediaError",
    "CacheIOError",
]

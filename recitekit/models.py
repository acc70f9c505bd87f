"""
Data models for recitekit.

Defines the core data structures used throughout the package.
"""

import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional


@dataclass
class Segment:
    """One unit of recited text (a verse) within a recording."""
    id: int
    key: str  # "chapter:verse"
    text: str
    translation: Optional[str] = None


@dataclass
class RawTiming:
    """A decoded timing record whose unit (seconds or milliseconds) is unknown."""
    segment_key: Optional[str]
    ordinal: Optional[int]
    start_raw: float


@dataclass
class TimingAnchor:
    """A trusted start time for a specific segment."""
    segment_key: str
    start_seconds: float


@dataclass
class AudioSource:
    """Playable audio location plus the raw timing data that came with it."""
    url: str
    raw_timings: List[RawTiming] = field(default_factory=list)
    duration_hint: Optional[float] = None


@dataclass
class Recording:
    """A chapter that can be played."""
    id: int
    name: str
    name_native: str = ""
    segment_count: int = 0


@dataclass
class Performer:
    """A reciter."""
    id: int
    name: str
    style: Optional[str] = None

    @property
    def display_name(self) -> str:
        if not self.style:
            return self.name
        return f"{self.name} ({self.style})"


@dataclass
class Translation:
    """A translation resource that segment text can be paired with."""
    id: int
    name: str
    language_name: str
    author_name: Optional[str] = None

    @property
    def display_name(self) -> str:
        language = self.language_name.strip()
        name = self.name.strip()
        if not language:
            return name
        if not name:
            return language
        return f"{language} - {name}"


FALLBACK_TRANSLATION = Translation(
    id=20,
    name="Sahih International",
    language_name="English",
)


@dataclass
class CacheEntry:
    """Index record for one cached (recording, performer) audio file."""
    recording_id: int
    performer_id: int
    remote_url: str
    local_filename: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "recording_id": self.recording_id,
            "performer_id": self.performer_id,
            "remote_url": self.remote_url,
            "local_filename": self.local_filename,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CacheEntry":
        return cls(
            recording_id=int(data["recording_id"]),
            performer_id=int(data["performer_id"]),
            remote_url=str(data["remote_url"]),
            local_filename=str(data["local_filename"]),
            created_at=datetime.fromisoformat(data["created_at"]),
        )


@dataclass
class PlaybackSnapshot:
    """The most recent resumable playback point."""
    recording_id: int
    performer_id: int
    position_seconds: float


class SessionState(Enum):
    """Lifecycle of a playback session."""
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    PLAYING = "playing"
    PAUSED = "paused"


class SleepTimerPreset(Enum):
    """Auto-pause countdown lengths, in minutes."""
    FIFTEEN = 15
    THIRTY = 30
    SIXTY = 60

    @property
    def title(self) -> str:
        return f"{self.value} min"

    @property
    def seconds(self) -> float:
        return float(self.value * 60)


@dataclass
class PlaybackSession:
    """In-memory state of the active playback session."""
    recording: Optional[Recording] = None
    performer: Optional[Performer] = None
    recordings: List[Recording] = field(default_factory=list)
    segments: List[Segment] = field(default_factory=list)
    timeline: List[float] = field(default_factory=list)
    source_url: Optional[str] = None
    position: float = 0.0
    duration: float = 0.0
    is_playing: bool = False
    is_ready: bool = False
    is_cached: bool = False
    is_downloading: bool = False
    is_loading_audio: bool = False
    is_loading_segments: bool = False
    error_message: Optional[str] = None
    sleep_timer_remaining: Optional[float] = None


def _default_cache_dir() -> Path:
    return Path.home() / ".cache" / "recitekit"


@dataclass
class PlayerConfig:
    """Configuration for the API client, cache and session controller."""
    api_base_url: str = "https://api.quran.com/api/v4/"
    audio_base_url: str = "https://audio.qurancdn.com"
    cache_dir: Path = field(default_factory=_default_cache_dir)
    state_file: Optional[Path] = None
    request_timeout: int = 30
    verify_ssl: bool = True
    skip_interval_seconds: float = 15.0
    persist_interval_seconds: float = 1.0
    translation_id: int = FALLBACK_TRANSLATION.id

    @property
    def snapshot_path(self) -> Path:
        return self.state_file or (self.cache_dir / "last_playback.json")

    @classmethod
    def from_env(cls) -> "PlayerConfig":
        """
        Build a config from ``RECITEKIT_*`` environment variables.

        Unset variables keep their defaults.

        Example:
            >>> os.environ["RECITEKIT_CACHE_DIR"] = "/tmp/recitekit"
            >>> PlayerConfig.from_env().cache_dir
            PosixPath('/tmp/recitekit')
        """
        config = cls()
        if os.getenv("RECITEKIT_API_BASE_URL"):
            config.api_base_url = os.environ["RECITEKIT_API_BASE_URL"]
        if os.getenv("RECITEKIT_CACHE_DIR"):
            config.cache_dir = Path(os.environ["RECITEKIT_CACHE_DIR"])
        if os.getenv("RECITEKIT_STATE_FILE"):
            config.state_file = Path(os.environ["RECITEKIT_STATE_FILE"])
        config.request_timeout = int(os.getenv("RECITEKIT_REQUEST_TIMEOUT", str(config.request_timeout)))
        config.translation_id = int(os.getenv("RECITEKIT_TRANSLATION_ID", str(config.translation_id)))
        verify = os.getenv("RECITEKIT_VERIFY_SSL")
        if verify is not None:
            config.verify_ssl = verify.strip().lower() not in ("0", "false", "no")
        return config

"""
Playback session controller for recitekit.

Owns the single active playback session: resolves a playable source (cache
first, network last), fetches segments and timing anchors, keeps the
reconstructed timeline current, tracks live player state, and persists a
resumable snapshot with bounded write frequency.

All state mutation happens on the asyncio event loop that calls the
controller. Background work runs in tasks whose results are applied only if
the session they were started for is still current: every load bumps a
generation counter, and every apply step compares the task's generation and
target recording/performer against the live session before touching it.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from .api.base import RecitationService
from .cache import ContentCache, cache_key
from .models import (
    FALLBACK_TRANSLATION,
    AudioSource,
    PlaybackSession,
    PlaybackSnapshot,
    Performer,
    PlayerConfig,
    Recording,
    SessionState,
    SleepTimerPreset,
    Translation,
)
from .player import MediaPlayer
from .store import PlaybackStateStore
from .timing import current_segment_index, normalize_timings, reconstruct_timeline, segment_start_position
from .utils import format_countdown

logger = logging.getLogger(__name__)

Observer = Callable[[PlaybackSession], None]


class SessionController:
    """
    Playback session controller.

    Example:
        >>> controller = SessionController(
        ...     service=RecitationAPIClient(config),
        ...     player=my_player,
        ...     cache=ContentCache(config.cache_dir),
        ...     store=PlaybackStateStore(config.snapshot_path),
        ...     config=config,
        ... )
        >>> controller.start_session(recordings[0], recordings, performers[0])
        >>> await controller.settle()
        >>> controller.current_segment_index
        0
    """

    def __init__(
        self,
        service: RecitationService,
        player: MediaPlayer,
        cache: ContentCache,
        store: PlaybackStateStore,
        config: Optional[PlayerConfig] = None,
        clock: Optional[Callable[[], float]] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        """
        Initialize session controller.

        Args:
            service: Recitation API used for segments and audio sources
            player: Platform audio primitive
            cache: Content cache for offline audio
            store: Persistence for the resumable snapshot
            config: Player configuration (default: PlayerConfig())
            clock: Monotonic clock in seconds, used for save debouncing
            sleep: Coroutine used by the sleep timer countdown
        """
        self.service = service
        self.player = player
        self.cache = cache
        self.store = store
        self.config = config or PlayerConfig()
        self._clock = clock or time.monotonic
        self._sleep = sleep or asyncio.sleep

        self.session = PlaybackSession()
        self.translations: List[Translation] = [FALLBACK_TRANSLATION]
        self.translation_id = self.config.translation_id

        self._anchors: Dict[str, float] = {}
        self._generation = 0
        self._has_played = False
        self._last_save: Optional[float] = None
        self._observers: List[Observer] = []
        self._download_locks: Dict[str, asyncio.Lock] = {}
        self._download_users: Dict[str, int] = {}

        self._load_task: Optional[asyncio.Task] = None
        self._segments_task: Optional[asyncio.Task] = None
        self._timings_task: Optional[asyncio.Task] = None
        self._sleep_task: Optional[asyncio.Task] = None
        self._download_task: Optional[asyncio.Task] = None
        self._translations_task: Optional[asyncio.Task] = None

    # Observable state

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        """
        Register ``observer`` to be called with the session after every change.

        Returns:
            A function that removes the observer again
        """
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    @property
    def state(self) -> SessionState:
        s = self.session
        if s.recording is None:
            return SessionState.IDLE
        if s.is_loading_audio:
            return SessionState.LOADING
        if s.source_url is None:
            return SessionState.IDLE
        if s.is_playing:
            return SessionState.PLAYING
        return SessionState.PAUSED if self._has_played else SessionState.READY

    @property
    def current_segment_index(self) -> Optional[int]:
        s = self.session
        return current_segment_index(s.position, s.duration, s.segments, s.timeline)

    @property
    def is_session_active(self) -> bool:
        s = self.session
        return s.recording is not None and s.performer is not None and (s.is_loading_audio or s.source_url is not None)

    @property
    def sleep_timer_display(self) -> Optional[str]:
        return format_countdown(self.session.sleep_timer_remaining)

    @property
    def can_go_previous(self) -> bool:
        index = self._recording_index()
        return index is not None and index > 0

    @property
    def can_go_next(self) -> bool:
        index = self._recording_index()
        return index is not None and index < len(self.session.recordings) - 1

    # Session lifecycle

    def start_session(
        self,
        recording: Recording,
        recordings: Sequence[Recording],
        performer: Performer,
        autoplay: bool = True,
        start_position: float = 0.0,
    ) -> None:
        """
        Start playing ``recording`` by ``performer``.

        Any load still in flight is cancelled. The new recording and performer
        are visible immediately; audio, segments and timings arrive later.

        Args:
            recording: Recording to play
            recordings: Ordered recordings available for next/previous
            performer: Performer to play
            autoplay: Start playing once the source is loaded
            start_position: Position in seconds to start from
        """
        self.session.recordings = list(recordings)
        self.session.performer = performer
        self._load(recording, autoplay, start_position)

    def update_performer(self, performer: Performer) -> None:
        """Switch performer, reloading the current recording at the same position."""
        s = self.session
        if s.performer is not None and s.performer.id == performer.id:
            return

        s.performer = performer
        self._persist(force=True)

        if s.recording is None or not self.is_session_active:
            self._notify()
            return
        autoplay = s.is_playing or s.is_loading_audio
        self._load(s.recording, autoplay, s.position)

    def restore_if_possible(self, recordings: Sequence[Recording], performers: Sequence[Performer]) -> bool:
        """
        Resume the last saved session, paused at its saved position.

        Returns:
            True if a session was restored
        """
        if self.session.recording is not None:
            return False
        snapshot = self.store.load()
        if snapshot is None:
            return False

        recording = next((r for r in recordings if r.id == snapshot.recording_id), None)
        performer = next((p for p in performers if p.id == snapshot.performer_id), None)
        if recording is None or performer is None:
            logger.info(f"Saved session {snapshot} no longer matches the catalogue")
            return False

        logger.info(f"Restoring recording {recording.id} at {snapshot.position_seconds:.1f}s")
        self.start_session(recording, recordings, performer, autoplay=False, start_position=snapshot.position_seconds)
        return True

    def play(self) -> None:
        if self.session.recording is None:
            return
        self.player.play()
        self.session.is_playing = True
        self._has_played = True
        self._persist(force=True)
        self._notify()

    def pause(self) -> None:
        if self.session.recording is None:
            return
        self.player.pause()
        self.session.is_playing = False
        self._persist(force=True)
        self._notify()

    def toggle_play_pause(self) -> None:
        if self.session.is_playing:
            self.pause()
        else:
            self.play()

    def stop(self) -> None:
        """End the session, cancelling all in-flight work except offline downloads."""
        self._persist(force=True)
        self._generation += 1
        for task in (self._load_task, self._segments_task, self._timings_task):
            _cancel(task)
        self._load_task = self._segments_task = self._timings_task = None
        self.cancel_sleep_timer()

        self.player.stop()
        self.session = PlaybackSession()
        self._anchors = {}
        self._has_played = False
        self._notify()

    def seek(self, position: float) -> None:
        """Seek to ``position`` seconds, clamped to the known duration."""
        s = self.session
        target = max(0.0, position)
        if s.duration > 0:
            target = min(target, s.duration)
        s.position = target
        self.player.seek(target)
        self._persist()
        self._notify()

    def seek_to_segment(self, index: int) -> None:
        s = self.session
        target = segment_start_position(index, s.duration, s.segments, s.timeline)
        if target is None:
            logger.debug(f"Cannot seek to segment {index}: no timeline and no duration")
            return
        self.seek(target)

    def skip_forward(self) -> None:
        self.seek(self.session.position + self.config.skip_interval_seconds)

    def skip_backward(self) -> None:
        self.seek(self.session.position - self.config.skip_interval_seconds)

    def next_recording(self) -> None:
        index = self._recording_index()
        if index is None or not self.can_go_next:
            return
        self._load(self.session.recordings[index + 1], autoplay=True, start_position=0.0)

    def previous_recording(self) -> None:
        index = self._recording_index()
        if index is None or not self.can_go_previous:
            return
        self._load(self.session.recordings[index - 1], autoplay=True, start_position=0.0)

    # Translations

    def select_translation(self, translation_id: int) -> None:
        if not any(t.id == translation_id for t in self.translations):
            return
        if translation_id == self.translation_id:
            return
        self.translation_id = translation_id
        if self.session.recording is not None:
            self.refresh_segments()

    def refresh_segments(self) -> None:
        """Refetch the current recording's segments with the selected translation."""
        s = self.session
        if s.recording is None:
            return
        _cancel(self._segments_task)
        s.is_loading_segments = True
        self._notify()
        self._segments_task = asyncio.get_running_loop().create_task(
            self._run_segments(self._generation, s.recording.id, self.translation_id)
        )

    def load_translations(self) -> asyncio.Task:
        """Fetch the available translations in the background."""
        _cancel(self._translations_task)
        self._translations_task = asyncio.get_running_loop().create_task(self._run_translations())
        return self._translations_task

    # Sleep timer

    def set_sleep_timer(self, preset: SleepTimerPreset) -> None:
        """Pause playback once ``preset`` has elapsed."""
        self.cancel_sleep_timer()
        self.session.sleep_timer_remaining = preset.seconds
        self._sleep_task = asyncio.get_running_loop().create_task(self._run_sleep_timer(preset.seconds))
        self._notify()

    def cancel_sleep_timer(self) -> None:
        _cancel(self._sleep_task)
        self._sleep_task = None
        if self.session.sleep_timer_remaining is not None:
            self.session.sleep_timer_remaining = None
            self._notify()

    # Offline download

    def download_current_for_offline(self) -> Optional[asyncio.Task]:
        """
        Download the current recording into the content cache.

        Runs independently of playback; a failure only sets the error message.

        Returns:
            The download task, or None if nothing was started
        """
        s = self.session
        if s.recording is None or s.performer is None or s.is_downloading:
            return None

        s.is_downloading = True
        s.error_message = None
        self._notify()
        self._download_task = asyncio.get_running_loop().create_task(
            self._run_download(s.recording.id, s.performer.id)
        )
        return self._download_task

    # Player signals

    def handle_position(self, position: float) -> None:
        self.session.position = position
        self._persist()
        self._notify()

    def handle_duration(self, duration: float) -> None:
        self.session.duration = duration
        self._notify()

    def handle_ready(self, ready: bool) -> None:
        self.session.is_ready = ready
        self._notify()

    def handle_playing(self, playing: bool) -> None:
        self.session.is_playing = playing
        if playing:
            self._has_played = True
        self._notify()

    def handle_playback_completed(self) -> None:
        if self.can_go_next:
            self.next_recording()
        else:
            self._persist(force=True)

    async def settle(self) -> None:
        """Wait until no load, segment, timing or download task is pending."""
        while True:
            pending = [
                task for task in (
                    self._load_task, self._segments_task, self._timings_task,
                    self._download_task, self._translations_task,
                )
                if task is not None and not task.done()
            ]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    # Internals

    def _recording_index(self) -> Optional[int]:
        s = self.session
        if s.recording is None:
            return None
        return next((i for i, r in enumerate(s.recordings) if r.id == s.recording.id), None)

    def _is_current(self, generation: int, recording_id: int, performer_id: Optional[int] = None) -> bool:
        s = self.session
        if generation != self._generation or s.recording is None or s.recording.id != recording_id:
            return False
        if performer_id is not None and (s.performer is None or s.performer.id != performer_id):
            return False
        return True

    def _load(self, recording: Recording, autoplay: bool, start_position: float) -> None:
        s = self.session
        if s.performer is None:
            s.error_message = "No performer selected."
            self._notify()
            return

        self._generation += 1
        generation = self._generation
        for task in (self._load_task, self._segments_task, self._timings_task):
            _cancel(task)
        self._timings_task = None

        s.recording = recording
        s.segments = []
        s.timeline = []
        s.source_url = None
        s.position = max(0.0, start_position)
        s.duration = 0.0
        s.is_ready = False
        s.is_cached = False
        s.is_loading_audio = True
        s.is_loading_segments = True
        s.error_message = None
        self._anchors = {}
        self._has_played = False
        self._persist(force=True)
        self._notify()

        logger.info(f"Loading recording {recording.id} by performer {s.performer.id} (generation {generation})")
        loop = asyncio.get_running_loop()
        self._segments_task = loop.create_task(self._run_segments(generation, recording.id, self.translation_id))
        self._load_task = loop.create_task(
            self._run_load(generation, recording.id, s.performer.id, autoplay, s.position)
        )

    async def _run_load(
        self,
        generation: int,
        recording_id: int,
        performer_id: int,
        autoplay: bool,
        start_position: float,
    ) -> None:
        try:
            url, is_cached, source = await self._resolve_playback_source(recording_id, performer_id)
        except Exception as e:
            if not self._is_current(generation, recording_id, performer_id):
                return
            logger.error(f"Failed to resolve audio for recording {recording_id}: {e}")
            self.session.is_loading_audio = False
            self.session.error_message = str(e) or e.__class__.__name__
            self._notify()
            return

        if not self._is_current(generation, recording_id, performer_id):
            logger.debug(f"Discarding stale load of recording {recording_id} (generation {generation})")
            return

        s = self.session
        self.player.load(url, autoplay, start_position)
        s.source_url = url
        s.is_loading_audio = False
        s.is_cached = is_cached
        if autoplay:
            s.is_playing = True
            self._has_played = True

        if source is not None:
            self._apply_timings(source, recording_id)
        else:
            self._timings_task = asyncio.get_running_loop().create_task(
                self._run_timings(generation, recording_id, performer_id)
            )

        self._persist(force=True)
        self._notify()

    async def _resolve_playback_source(
        self, recording_id: int, performer_id: int
    ) -> Tuple[str, bool, Optional[AudioSource]]:
        # Read the URL first: a missing local file purges the whole entry.
        cached_url = await self.cache.resolve_cached_remote_url(recording_id, performer_id)
        local = await self.cache.resolve_local_file(recording_id, performer_id)
        if local is not None:
            logger.info(f"Playing recording {recording_id} from cache: {local}")
            return str(local), True, None

        if cached_url:
            logger.info(f"Streaming recording {recording_id} from known URL")
            return cached_url, False, None

        source = await self.service.fetch_audio_source(recording_id, performer_id)
        await self.cache.record_remote_url(recording_id, performer_id, source.url)
        return source.url, False, source

    async def _resolve_remote_url(self, recording_id: int, performer_id: int) -> str:
        cached_url = await self.cache.resolve_cached_remote_url(recording_id, performer_id)
        if cached_url:
            return cached_url
        source = await self.service.fetch_audio_source(recording_id, performer_id)
        await self.cache.record_remote_url(recording_id, performer_id, source.url)
        return source.url

    async def _run_segments(self, generation: int, recording_id: int, translation_id: int) -> None:
        try:
            segments = await self.service.fetch_segments(recording_id, translation_id)
        except Exception as e:
            logger.warning(f"Segments unavailable for recording {recording_id}: {e}")
            if self._is_current(generation, recording_id) and translation_id == self.translation_id:
                s = self.session
                s.segments = []
                s.timeline = []
                s.is_loading_segments = False
                self._notify()
            return

        if not self._is_current(generation, recording_id) or translation_id != self.translation_id:
            return
        self.session.segments = segments
        self.session.is_loading_segments = False
        self._rebuild_timeline()
        self._notify()

    async def _run_timings(self, generation: int, recording_id: int, performer_id: int) -> None:
        try:
            source = await self.service.fetch_audio_source(recording_id, performer_id)
            await self.cache.record_remote_url(recording_id, performer_id, source.url)
        except Exception as e:
            logger.debug(f"Background timings for recording {recording_id} failed: {e}")
            return

        if not self._is_current(generation, recording_id, performer_id):
            return
        self._apply_timings(source, recording_id)
        self._notify()

    def _apply_timings(self, source: AudioSource, recording_id: int) -> None:
        anchors = normalize_timings(source.raw_timings, recording_id, source.duration_hint)
        if not anchors:
            return
        self._anchors = anchors
        self._rebuild_timeline()

    def _rebuild_timeline(self) -> None:
        s = self.session
        s.timeline = reconstruct_timeline(s.segments, self._anchors, s.duration) if s.segments else []
        mode = "precise" if s.timeline else "weighted"
        logger.debug(f"Timeline rebuilt for {len(s.segments)} segments ({mode} locating)")

    async def _run_translations(self) -> None:
        try:
            loaded = await self.service.fetch_translations()
        except Exception as e:
            logger.warning(f"Could not load translations: {e}")
            return

        if loaded:
            self.translations = loaded
        previous = self.translation_id
        if not any(t.id == previous for t in self.translations):
            self.translation_id = self.translations[0].id if self.translations else FALLBACK_TRANSLATION.id
        if self.session.recording is not None and previous != self.translation_id:
            self.refresh_segments()
        self._notify()

    async def _run_sleep_timer(self, seconds: float) -> None:
        remaining = seconds
        while remaining > 0:
            step = min(1.0, remaining)
            await self._sleep(step)
            remaining -= step
            self.session.sleep_timer_remaining = max(0.0, remaining)
            self._notify()

        self._sleep_task = None
        self.session.sleep_timer_remaining = None
        logger.info("Sleep timer elapsed, pausing playback")
        self.pause()

    async def _run_download(self, recording_id: int, performer_id: int) -> None:
        key = cache_key(recording_id, performer_id)
        lock = self._download_locks.setdefault(key, asyncio.Lock())
        self._download_users[key] = self._download_users.get(key, 0) + 1
        try:
            async with lock:
                url = await self._resolve_remote_url(recording_id, performer_id)
                await self.cache.download_if_absent(recording_id, performer_id, url)
        except Exception as e:
            logger.error(f"Offline download of recording {recording_id} failed: {e}")
            self.session.is_downloading = False
            self.session.error_message = str(e) or e.__class__.__name__
            self._notify()
            return
        finally:
            self._release_download_lock(key)

        self.session.is_downloading = False
        cached = await self.cache.is_cached(recording_id, performer_id)
        s = self.session
        if s.recording is not None and s.performer is not None \
                and s.recording.id == recording_id and s.performer.id == performer_id:
            s.is_cached = cached
        self._notify()

    def _release_download_lock(self, key: str) -> None:
        self._download_users[key] -= 1
        if self._download_users[key] == 0:
            del self._download_users[key]
            del self._download_locks[key]

    def _persist(self, force: bool = False) -> None:
        s = self.session
        if s.recording is None or s.performer is None:
            return
        now = self._clock()
        if not force and self._last_save is not None and now - self._last_save < self.config.persist_interval_seconds:
            return
        self._last_save = now
        self.store.save(PlaybackSnapshot(
            recording_id=s.recording.id,
            performer_id=s.performer.id,
            position_seconds=s.position,
        ))

    def _notify(self) -> None:
        for observer in list(self._observers):
            observer(self.session)


def _cancel(task: Optional[asyncio.Task]) -> None:
    if task is not None and not task.done() and task is not asyncio.current_task():
        task.cancel()

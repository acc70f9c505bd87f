import asyncio

from recitekit.api.base import RecitationService
from recitekit.cache import ContentCache
from recitekit.exceptions import MissingMediaError, TransportError
from recitekit.models import (
    AudioSource,
    PlaybackSnapshot,
    Performer,
    PlayerConfig,
    RawTiming,
    Recording,
    Segment,
    SessionState,
    SleepTimerPreset,
    Translation,
)
from recitekit.player import MediaPlayer
from recitekit.session import SessionController

RECORDINGS = [Recording(id=i, name=f"Chapter {i}", segment_count=3) for i in (1, 2, 3)]
PERFORMERS = [Performer(id=7, name="Mishari", style="Murattal"), Performer(id=9, name="Husary")]


def audio_url(recording_id, performer_id):
    return f"https://cdn.example.com/{performer_id}/{recording_id:03d}.mp3"


class FakePlayer(MediaPlayer):
    name = "fake"

    def __init__(self):
        self.loads = []
        self.calls = []

    def load(self, url, autoplay, start_position=0.0):
        self.loads.append((url, autoplay, start_position))

    def play(self):
        self.calls.append("play")

    def pause(self):
        self.calls.append("pause")

    def seek(self, position):
        self.calls.append(("seek", position))

    def stop(self):
        self.calls.append("stop")


class FakeService(RecitationService):
    """Three segments per recording with millisecond timings at 0 / 4 / 9 s."""

    def __init__(self, with_timings=True, audio_error=None, segments_error=None, translations=None):
        self.with_timings = with_timings
        self.audio_error = audio_error
        self.segments_error = segments_error
        self.translations = translations or []
        self.gates = {}
        self.audio_calls = []
        self.segment_calls = []

    async def fetch_translations(self):
        return list(self.translations)

    async def fetch_segments(self, recording_id, translation_id):
        self.segment_calls.append((recording_id, translation_id))
        await self._wait(recording_id)
        if self.segments_error is not None:
            raise self.segments_error
        texts = ["abc", "de", "fghij"]
        return [Segment(id=i + 1, key=f"{recording_id}:{i + 1}", text=t) for i, t in enumerate(texts)]

    async def fetch_audio_source(self, recording_id, performer_id):
        self.audio_calls.append((recording_id, performer_id))
        await self._wait(recording_id)
        if self.audio_error is not None:
            raise self.audio_error
        timings = []
        if self.with_timings:
            timings = [
                RawTiming(f"{recording_id}:1", None, 0.0),
                RawTiming(f"{recording_id}:2", None, 4000.0),
                RawTiming(f"{recording_id}:3", None, 9000.0),
            ]
        return AudioSource(url=audio_url(recording_id, performer_id), raw_timings=timings, duration_hint=12.0)

    async def _wait(self, recording_id):
        gate = self.gates.get(recording_id)
        if gate is not None:
            await gate.wait()


class FakeDownloader:
    def __init__(self, directory, error=None):
        self.directory = directory
        self.error = error
        self.urls = []
        self.directory.mkdir(parents=True, exist_ok=True)

    def download(self, url):
        self.urls.append(url)
        if self.error is not None:
            raise self.error
        path = self.directory / f"download-{len(self.urls)}.part"
        path.write_bytes(b"audio")
        return str(path)


class MemoryStore:
    def __init__(self, snapshot=None):
        self.snapshot = snapshot
        self.saves = []

    def load(self):
        return self.snapshot

    def save(self, snapshot):
        self.saves.append(snapshot)
        self.snapshot = snapshot


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


async def fast_sleep(seconds):
    await asyncio.sleep(0)


def build(tmp_path, service=None, snapshot=None, download_error=None, config=None):
    config = config or PlayerConfig(cache_dir=tmp_path / "cache")
    player = FakePlayer()
    store = MemoryStore(snapshot)
    clock = FakeClock()
    cache = ContentCache(config.cache_dir, downloader=FakeDownloader(tmp_path / "dl", error=download_error))
    controller = SessionController(
        service=service or FakeService(),
        player=player,
        cache=cache,
        store=store,
        config=config,
        clock=clock,
        sleep=fast_sleep,
    )
    return controller, player, store, clock


def test_load_plays_remote_source_with_precise_timeline(tmp_path):
    async def scenario():
        controller, player, store, _ = build(tmp_path)
        assert controller.state is SessionState.IDLE

        controller.start_session(RECORDINGS[0], RECORDINGS, PERFORMERS[0])
        assert controller.state is SessionState.LOADING
        assert controller.is_session_active
        await controller.settle()

        assert player.loads == [(audio_url(1, 7), True, 0.0)]
        assert controller.state is SessionState.PLAYING
        assert controller.session.timeline == [0.0, 4.0, 9.0]
        assert not controller.session.is_cached
        assert await controller.cache.resolve_cached_remote_url(1, 7) == audio_url(1, 7)

        controller.handle_duration(12.0)
        controller.handle_position(5.0)
        assert controller.current_segment_index == 1
        controller.handle_position(9.0)
        assert controller.current_segment_index == 2
        assert store.saves[-1] == PlaybackSnapshot(recording_id=1, performer_id=7, position_seconds=0.0)

    asyncio.run(scenario())


def test_weighted_locating_without_timings(tmp_path):
    async def scenario():
        controller, _, _, _ = build(tmp_path, service=FakeService(with_timings=False))
        controller.start_session(RECORDINGS[0], RECORDINGS, PERFORMERS[0])
        await controller.settle()

        assert controller.session.timeline == []
        assert controller.current_segment_index is None

        # Weights 3 / 2 / 5 over 100 s.
        controller.handle_duration(100.0)
        controller.handle_position(29.0)
        assert controller.current_segment_index == 0
        controller.handle_position(30.0)
        assert controller.current_segment_index == 1
        controller.handle_position(50.0)
        assert controller.current_segment_index == 2

    asyncio.run(scenario())


def test_two_seeks_within_debounce_window_write_once(tmp_path):
    async def scenario():
        controller, _, store, clock = build(tmp_path)
        controller.start_session(RECORDINGS[0], RECORDINGS, PERFORMERS[0])
        await controller.settle()
        controller.handle_duration(60.0)
        before = len(store.saves)

        clock.now = 10.0
        controller.seek(1.0)
        clock.now = 10.9
        controller.seek(2.0)
        assert len(store.saves) == before + 1
        assert store.saves[-1].position_seconds == 1.0

        controller.pause()
        assert len(store.saves) == before + 2
        assert store.saves[-1].position_seconds == 2.0

    asyncio.run(scenario())


def test_position_updates_saved_about_once_per_second(tmp_path):
    async def scenario():
        controller, _, store, clock = build(tmp_path)
        controller.start_session(RECORDINGS[0], RECORDINGS, PERFORMERS[0])
        await controller.settle()
        before = len(store.saves)

        for tick, position in ((20.0, 5.0), (20.5, 5.5), (21.0, 6.0), (21.4, 6.4)):
            clock.now = tick
            controller.handle_position(position)

        assert [s.position_seconds for s in store.saves[before:]] == [5.0, 6.0]

    asyncio.run(scenario())


def test_new_load_supersedes_in_flight_load(tmp_path):
    async def scenario():
        service = FakeService()
        service.gates[1] = asyncio.Event()
        controller, player, _, _ = build(tmp_path, service=service)

        controller.start_session(RECORDINGS[0], RECORDINGS, PERFORMERS[0])
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        controller.start_session(RECORDINGS[1], RECORDINGS, PERFORMERS[0])
        service.gates[1].set()
        await controller.settle()

        assert controller.session.recording.id == 2
        assert player.loads == [(audio_url(2, 7), True, 0.0)]
        assert [s.key for s in controller.session.segments] == ["2:1", "2:2", "2:3"]
        assert controller.session.timeline == [0.0, 4.0, 9.0]

    asyncio.run(scenario())


def test_stop_during_load_discards_late_results(tmp_path):
    async def scenario():
        service = FakeService()
        service.gates[1] = asyncio.Event()
        controller, player, _, _ = build(tmp_path, service=service)

        controller.start_session(RECORDINGS[0], RECORDINGS, PERFORMERS[0])
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        controller.stop()
        service.gates[1].set()
        await controller.settle()
        for _ in range(5):
            await asyncio.sleep(0)

        assert player.loads == []
        assert player.calls == ["stop"]
        assert controller.session.recording is None
        assert controller.session.segments == []
        assert controller.session.timeline == []
        assert controller.state is SessionState.IDLE

    asyncio.run(scenario())


def test_stale_results_are_discarded(tmp_path):
    async def scenario():
        service = FakeService()
        controller, player, _, _ = build(tmp_path, service=service)
        controller.start_session(RECORDINGS[0], RECORDINGS, PERFORMERS[0])
        await controller.settle()
        stale_generation = controller._generation

        service.gates[2] = asyncio.Event()
        controller.start_session(RECORDINGS[1], RECORDINGS, PERFORMERS[0])

        # Results for the superseded recording arrive after the switch.
        await controller._run_load(stale_generation, 1, 7, True, 0.0)
        await controller._run_segments(stale_generation, 1, controller.translation_id)

        assert controller.session.recording.id == 2
        assert controller.session.source_url is None
        assert controller.session.segments == []
        assert player.loads == [(audio_url(1, 7), True, 0.0)]

        service.gates[2].set()
        await controller.settle()
        assert player.loads[-1] == (audio_url(2, 7), True, 0.0)

    asyncio.run(scenario())


def test_source_resolution_failure_sets_error_message(tmp_path):
    async def scenario():
        service = FakeService(audio_error=MissingMediaError("No audio file was returned for recording 1"))
        controller, player, _, _ = build(tmp_path, service=service)
        controller.start_session(RECORDINGS[0], RECORDINGS, PERFORMERS[0])
        await controller.settle()

        assert controller.session.error_message == "No audio file was returned for recording 1"
        assert not controller.session.is_loading_audio
        assert controller.session.source_url is None
        assert not controller.is_session_active
        assert controller.state is SessionState.IDLE
        assert player.loads == []

    asyncio.run(scenario())


def test_segment_failure_degrades_silently(tmp_path):
    async def scenario():
        service = FakeService(segments_error=TransportError("timeout"))
        controller, player, _, _ = build(tmp_path, service=service)
        controller.start_session(RECORDINGS[0], RECORDINGS, PERFORMERS[0])
        await controller.settle()

        assert player.loads == [(audio_url(1, 7), True, 0.0)]
        assert controller.session.segments == []
        assert not controller.session.is_loading_segments
        assert controller.session.error_message is None
        assert controller.current_segment_index is None

    asyncio.run(scenario())


def test_offline_download_then_play_from_cache(tmp_path):
    async def scenario():
        service = FakeService()
        controller, player, _, _ = build(tmp_path, service=service)
        controller.start_session(RECORDINGS[0], RECORDINGS, PERFORMERS[0])
        await controller.settle()

        task = controller.download_current_for_offline()
        assert controller.session.is_downloading
        assert controller.download_current_for_offline() is None
        await task

        cached_path = tmp_path / "cache" / "7_1.mp3"
        assert cached_path.exists()
        assert controller.session.is_cached
        assert not controller.session.is_downloading
        assert controller.session.is_playing

        controller.stop()
        controller.start_session(RECORDINGS[0], RECORDINGS, PERFORMERS[0])
        await controller.settle()

        assert player.loads[-1] == (str(cached_path), True, 0.0)
        assert controller.session.is_cached
        # Anchors still arrive through the background timing fetch.
        assert controller.session.timeline == [0.0, 4.0, 9.0]

    asyncio.run(scenario())


def test_failed_download_only_sets_error(tmp_path):
    async def scenario():
        controller, _, _, _ = build(tmp_path, download_error=TransportError("connection reset"))
        controller.start_session(RECORDINGS[0], RECORDINGS, PERFORMERS[0])
        await controller.settle()

        await controller.download_current_for_offline()

        assert controller.session.error_message == "connection reset"
        assert not controller.session.is_downloading
        assert not controller.session.is_cached
        assert controller.session.is_playing
        assert controller.session.source_url == audio_url(1, 7)

    asyncio.run(scenario())


def test_known_remote_url_streams_without_fetching_source(tmp_path):
    async def scenario():
        service = FakeService()
        controller, player, _, _ = build(tmp_path, service=service)
        await controller.cache.record_remote_url(1, 7, "https://mirror.example.com/7/001.mp3")

        controller.start_session(RECORDINGS[0], RECORDINGS, PERFORMERS[0])
        await controller.settle()

        assert player.loads == [("https://mirror.example.com/7/001.mp3", True, 0.0)]
        assert not controller.session.is_cached
        assert controller.session.timeline == [0.0, 4.0, 9.0]

    asyncio.run(scenario())


def test_sleep_timer_pauses_playback(tmp_path):
    async def scenario():
        controller, player, _, _ = build(tmp_path)
        controller.start_session(RECORDINGS[0], RECORDINGS, PERFORMERS[0])
        await controller.settle()

        controller.set_sleep_timer(SleepTimerPreset.FIFTEEN)
        assert controller.sleep_timer_display == "15:00"

        while controller.session.sleep_timer_remaining is not None:
            await asyncio.sleep(0)

        assert controller.sleep_timer_display is None
        assert not controller.session.is_playing
        assert player.calls[-1] == "pause"
        assert controller.state is SessionState.PAUSED

    asyncio.run(scenario())


def test_cancelled_sleep_timer_never_pauses(tmp_path):
    async def scenario():
        controller, player, _, _ = build(tmp_path)
        controller.start_session(RECORDINGS[0], RECORDINGS, PERFORMERS[0])
        await controller.settle()

        controller.set_sleep_timer(SleepTimerPreset.THIRTY)
        await asyncio.sleep(0)
        controller.cancel_sleep_timer()
        for _ in range(10):
            await asyncio.sleep(0)

        assert controller.session.sleep_timer_remaining is None
        assert "pause" not in player.calls
        assert controller.session.is_playing

    asyncio.run(scenario())


def test_restore_resumes_paused_at_saved_position(tmp_path):
    async def scenario():
        snapshot = PlaybackSnapshot(recording_id=2, performer_id=9, position_seconds=33.0)
        controller, player, _, _ = build(tmp_path, snapshot=snapshot)

        assert controller.restore_if_possible(RECORDINGS, PERFORMERS)
        await controller.settle()

        assert player.loads == [(audio_url(2, 9), False, 33.0)]
        assert controller.session.position == 33.0
        assert controller.state is SessionState.READY
        assert not controller.restore_if_possible(RECORDINGS, PERFORMERS)

    asyncio.run(scenario())


def test_restore_ignores_unknown_or_missing_snapshot(tmp_path):
    async def scenario():
        controller, _, _, _ = build(tmp_path)
        assert not controller.restore_if_possible(RECORDINGS, PERFORMERS)

        snapshot = PlaybackSnapshot(recording_id=114, performer_id=7, position_seconds=3.0)
        controller, player, _, _ = build(tmp_path, snapshot=snapshot)
        assert not controller.restore_if_possible(RECORDINGS, PERFORMERS)
        assert player.loads == []

    asyncio.run(scenario())


def test_update_performer_reloads_at_same_position(tmp_path):
    async def scenario():
        controller, player, store, _ = build(tmp_path)
        controller.start_session(RECORDINGS[0], RECORDINGS, PERFORMERS[0])
        await controller.settle()
        controller.handle_position(20.0)

        controller.update_performer(PERFORMERS[1])
        assert store.saves[-1].performer_id == 9
        await controller.settle()

        assert player.loads[-1] == (audio_url(1, 9), True, 20.0)
        assert controller.session.performer.id == 9

        loads = len(player.loads)
        controller.update_performer(PERFORMERS[1])
        await controller.settle()
        assert len(player.loads) == loads

    asyncio.run(scenario())


def test_next_and_previous_recording(tmp_path):
    async def scenario():
        controller, player, store, _ = build(tmp_path)
        controller.start_session(RECORDINGS[1], RECORDINGS, PERFORMERS[0], autoplay=False)
        await controller.settle()
        assert controller.can_go_previous and controller.can_go_next

        controller.next_recording()
        await controller.settle()
        assert controller.session.recording.id == 3
        assert player.loads[-1] == (audio_url(3, 7), True, 0.0)
        assert not controller.can_go_next

        controller.next_recording()
        assert controller.session.recording.id == 3

        controller.previous_recording()
        controller.previous_recording()
        await controller.settle()
        assert controller.session.recording.id == 1
        assert not controller.can_go_previous

        saves = len(store.saves)
        controller.handle_playback_completed()
        await controller.settle()
        assert controller.session.recording.id == 2
        assert len(store.saves) > saves

    asyncio.run(scenario())


def test_completion_of_last_recording_forces_save(tmp_path):
    async def scenario():
        controller, player, store, clock = build(tmp_path)
        controller.start_session(RECORDINGS[2], RECORDINGS, PERFORMERS[0])
        await controller.settle()
        controller.handle_position(55.0)
        saves = len(store.saves)

        controller.handle_playback_completed()

        assert len(store.saves) == saves + 1
        assert store.saves[-1].position_seconds == 55.0
        assert len(player.loads) == 1

    asyncio.run(scenario())


def test_seek_clamps_and_segment_navigation(tmp_path):
    async def scenario():
        controller, player, _, _ = build(tmp_path)
        controller.start_session(RECORDINGS[0], RECORDINGS, PERFORMERS[0])
        await controller.settle()
        controller.handle_duration(60.0)

        controller.seek(100.0)
        assert controller.session.position == 60.0
        controller.seek(-5.0)
        assert controller.session.position == 0.0

        controller.seek(50.0)
        controller.skip_forward()
        assert controller.session.position == 60.0
        controller.skip_backward()
        assert controller.session.position == 45.0

        controller.seek_to_segment(2)
        assert controller.session.position == 9.0
        assert player.calls[-1] == ("seek", 9.0)

        controller.seek_to_segment(7)
        assert controller.session.position == 9.0

    asyncio.run(scenario())


def test_stop_ends_session(tmp_path):
    async def scenario():
        controller, player, store, _ = build(tmp_path)
        controller.start_session(RECORDINGS[0], RECORDINGS, PERFORMERS[0])
        await controller.settle()
        controller.handle_position(12.5)
        controller.set_sleep_timer(SleepTimerPreset.SIXTY)

        controller.stop()

        assert player.calls[-1] == "stop"
        assert store.saves[-1].position_seconds == 12.5
        assert controller.session.recording is None
        assert controller.session.sleep_timer_remaining is None
        assert controller.state is SessionState.IDLE
        assert not controller.is_session_active

    asyncio.run(scenario())


def test_translations_loaded_and_selected(tmp_path):
    async def scenario():
        translations = [
            Translation(id=131, name="The Clear Quran", language_name="english"),
            Translation(id=20, name="Saheeh International", language_name="english"),
        ]
        service = FakeService(translations=translations)
        controller, _, _, _ = build(tmp_path, service=service)
        controller.start_session(RECORDINGS[0], RECORDINGS, PERFORMERS[0])
        await controller.settle()

        await controller.load_translations()
        assert [t.id for t in controller.translations] == [131, 20]
        assert controller.translation_id == 20

        controller.select_translation(131)
        await controller.settle()
        assert service.segment_calls[-1] == (1, 131)
        assert len(controller.session.segments) == 3

        calls = len(service.segment_calls)
        controller.select_translation(999)
        controller.select_translation(131)
        await controller.settle()
        assert len(service.segment_calls) == calls

    asyncio.run(scenario())


def test_unavailable_default_translation_falls_back_to_first(tmp_path):
    async def scenario():
        translations = [Translation(id=131, name="The Clear Quran", language_name="english")]
        config = PlayerConfig(cache_dir=tmp_path / "cache", translation_id=999)
        controller, _, _, _ = build(tmp_path, service=FakeService(translations=translations), config=config)

        await controller.load_translations()

        assert controller.translation_id == 131

    asyncio.run(scenario())


def test_observers_notified_until_unsubscribed(tmp_path):
    async def scenario():
        controller, _, _, _ = build(tmp_path)
        seen = []
        unsubscribe = controller.subscribe(lambda session: seen.append(session.position))

        controller.start_session(RECORDINGS[0], RECORDINGS, PERFORMERS[0])
        await controller.settle()
        controller.handle_position(3.0)
        assert seen and seen[-1] == 3.0

        count = len(seen)
        unsubscribe()
        controller.handle_position(4.0)
        assert len(seen) == count

    asyncio.run(scenario())


def test_skip_backward_before_duration_known_stays_at_zero(tmp_path):
    async def scenario():
        controller, player, store, _ = build(tmp_path)
        controller.start_session(RECORDINGS[0], RECORDINGS, PERFORMERS[0])
        await controller.settle()
        assert controller.session.duration == 0.0

        controller.handle_position(3.0)
        controller.skip_backward()
        assert controller.session.position == 0.0
        assert player.calls[-1] == ("seek", 0.0)

        controller.pause()
        assert store.saves[-1].position_seconds == 0.0

        # Without a duration there is no upper bound.
        controller.skip_forward()
        assert controller.session.position == 15.0

    asyncio.run(scenario())


def test_download_locks_released_after_download(tmp_path):
    async def scenario():
        controller, _, _, _ = build(tmp_path)
        controller.start_session(RECORDINGS[0], RECORDINGS, PERFORMERS[0])
        await controller.settle()

        await controller.download_current_for_offline()
        assert controller.session.is_cached
        assert controller._download_locks == {}
        assert controller._download_users == {}

    asyncio.run(scenario())


def test_download_locks_released_after_failure(tmp_path):
    async def scenario():
        controller, _, _, _ = build(tmp_path, download_error=TransportError("connection reset"))
        controller.start_session(RECORDINGS[0], RECORDINGS, PERFORMERS[0])
        await controller.settle()

        await controller.download_current_for_offline()
        assert controller.session.error_message == "connection reset"
        assert controller._download_locks == {}

    asyncio.run(scenario())

"""
Offline download example.

Fetches the audio source for a chapter, caches it locally and plays it back
through a printing media player.
"""

import asyncio
import logging

from recitekit import (
    ContentCache,
    MediaDownloader,
    MediaPlayer,
    PlaybackStateStore,
    PlayerConfig,
    RecitationAPIClient,
    SessionController,
)


class PrintingPlayer(MediaPlayer):
    name = "print"

    def load(self, url, autoplay, start_position=0.0):
        print(f"Loading {url} (autoplay={autoplay}, start={start_position:.1f}s)")

    def play(self):
        print("Playing")

    def pause(self):
        print("Paused")

    def seek(self, position):
        print(f"Seek to {position:.1f}s")

    def stop(self):
        print("Stopped")


async def run():
    config = PlayerConfig.from_env()
    client = RecitationAPIClient(config)
    cache = ContentCache(
        config.cache_dir,
        downloader=MediaDownloader(timeout=config.request_timeout, verify_ssl=config.verify_ssl),
    )
    controller = SessionController(
        service=client,
        player=PrintingPlayer(),
        cache=cache,
        store=PlaybackStateStore(config.snapshot_path),
        config=config,
    )

    chapters = await client.fetch_recordings()
    reciters = await client.fetch_performers()

    if not controller.restore_if_possible(chapters, reciters):
        controller.start_session(chapters[0], chapters, reciters[0], autoplay=False)
    await controller.settle()

    print(f"Session: chapter {controller.session.recording.id}, cached={controller.session.is_cached}")
    if not controller.session.is_cached:
        await controller.download_current_for_offline()
        print(f"Cached={controller.session.is_cached} error={controller.session.error_message}")

    for entry in await cache.entries():
        print(f"{entry.performer_id}-{entry.recording_id}: {entry.local_filename}")

    controller.stop()

def main():
    logging.basicConfig(level=logging.INFO)
    asyncio.run(run())

if __name__ == "__main__":
    main()

"""
Content cache for downloaded recitations.

Keeps a persisted index of (recording, performer) pairs mapped to locally
stored audio files and their last-known remote URLs. The index is the
authoritative set of entries and is rewritten atomically on every mutation.
Entries whose file has disappeared from disk are purged lazily on lookup.
"""

import asyncio
import json
import logging
import os
import shutil
from pathlib import Path
from typing import Dict, List, Optional

from .downloader import MediaDownloader
from .exceptions import CacheIOError
from .models import CacheEntry
from .utils import atomic_json_write, url_extension

logger = logging.getLogger(__name__)

INDEX_FILENAME = "index.json"


def cache_key(recording_id: int, performer_id: int) -> str:
    """
    Index key for a (recording, performer) pair.

    Example:
        >>> cache_key(recording_id=2, performer_id=7)
        '7-2'
    """
    return f"{performer_id}-{recording_id}"


def default_filename(remote_url: str, recording_id: int, performer_id: int) -> str:
    """
    Local filename used when an entry has none yet.

    Example:
        >>> default_filename("https://cdn.example.com/a/002.mp3", 2, 7)
        '7_2.mp3'
    """
    return f"{performer_id}_{recording_id}.{url_extension(remote_url)}"


class ContentCache:
    """
    Single source of truth for locally available recitations.

    All index access goes through one asyncio lock, so mutations from an
    active load and an independent offline download never interleave. The
    lock is released while bytes are being downloaded and held while the
    finished file is moved into place in the executor; two concurrent
    downloads of the same key both complete and the last one to move its file
    into place wins.
    """

    def __init__(self, cache_dir: Path, downloader: Optional[MediaDownloader] = None):
        """
        Initialize content cache.

        Args:
            cache_dir: Directory holding cached audio files and the index
            downloader: Download primitive with a ``download(url) -> temp path``
                method (default: MediaDownloader)
        """
        self.cache_dir = Path(cache_dir)
        self.index_path = self.cache_dir / INDEX_FILENAME
        self.downloader = downloader or MediaDownloader()
        self._lock: Optional[asyncio.Lock] = None
        self._lock_loop: Optional[asyncio.AbstractEventLoop] = None

        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.warning(f"Could not create cache directory {self.cache_dir}: {e}")

        self._entries: Dict[str, CacheEntry] = self._load_index()

    async def resolve_local_file(self, recording_id: int, performer_id: int) -> Optional[Path]:
        """
        Path of the cached file, if it still exists on disk.

        An index entry pointing at a missing file is removed and the index is
        rewritten.
        """
        async with self._index_lock():
            return self._local_file(cache_key(recording_id, performer_id))

    async def is_cached(self, recording_id: int, performer_id: int) -> bool:
        return await self.resolve_local_file(recording_id, performer_id) is not None

    async def resolve_cached_remote_url(self, recording_id: int, performer_id: int) -> Optional[str]:
        """Last-known remote URL, even when no local file exists yet."""
        async with self._index_lock():
            entry = self._entries.get(cache_key(recording_id, performer_id))
            return entry.remote_url if entry else None

    async def record_remote_url(self, recording_id: int, performer_id: int, remote_url: str) -> None:
        """
        Upsert the remote URL for a key.

        An existing local filename is preserved; otherwise the default
        ``<performer>_<recording>.<ext>`` name is assigned.
        """
        async with self._index_lock():
            key = cache_key(recording_id, performer_id)
            existing = self._entries.get(key)
            filename = existing.local_filename if existing else default_filename(remote_url, recording_id, performer_id)
            self._entries[key] = CacheEntry(
                recording_id=recording_id,
                performer_id=performer_id,
                remote_url=remote_url,
                local_filename=filename,
            )
            self._persist_index()

    async def download_if_absent(self, recording_id: int, performer_id: int, remote_url: str) -> Path:
        """
        Return the cached file, downloading it first if necessary.

        Args:
            recording_id: Recording to cache
            performer_id: Performer of the recording
            remote_url: URL to download from when no valid local file exists

        Returns:
            Path of the local audio file

        Raises:
            TransportError: If the download fails
            CacheIOError: If the downloaded file cannot be moved into the cache
        """
        key = cache_key(recording_id, performer_id)
        async with self._index_lock():
            existing = self._entries.get(key)
            local = self._local_file(key)
            if local is not None:
                logger.debug(f"Cache hit for {key}: {local}")
                return local
            filename = existing.local_filename if existing else default_filename(remote_url, recording_id, performer_id)

        loop = asyncio.get_running_loop()
        temp_path = await loop.run_in_executor(None, self.downloader.download, remote_url)

        async with self._index_lock():
            destination = self.cache_dir / filename
            await loop.run_in_executor(None, self._move_into_place, Path(temp_path), destination)
            self._entries[key] = CacheEntry(
                recording_id=recording_id,
                performer_id=performer_id,
                remote_url=remote_url,
                local_filename=filename,
            )
            self._persist_index()

        logger.info(f"Cached recording {recording_id} by performer {performer_id} at {destination}")
        return destination

    async def entries(self) -> List[CacheEntry]:
        """Snapshot of all index entries."""
        async with self._index_lock():
            return list(self._entries.values())

    def _index_lock(self) -> asyncio.Lock:
        # One lock per running loop; a lock from another loop cannot be awaited.
        loop = asyncio.get_running_loop()
        if self._lock is None or self._lock_loop is not loop:
            self._lock = asyncio.Lock()
            self._lock_loop = loop
        return self._lock

    def _local_file(self, key: str) -> Optional[Path]:
        entry = self._entries.get(key)
        if entry is None:
            return None

        path = self.cache_dir / entry.local_filename
        if not path.exists():
            logger.info(f"Cached file for {key} is missing, dropping index entry")
            del self._entries[key]
            self._persist_index()
            return None
        return path

    def _move_into_place(self, temp_path: Path, destination: Path) -> None:
        staging = destination.with_name(destination.name + ".part")
        try:
            # Stage next to the destination so the final rename stays on one filesystem.
            shutil.move(str(temp_path), str(staging))
            os.replace(staging, destination)
        except OSError as e:
            for leftover in (temp_path, staging):
                try:
                    leftover.unlink()
                except OSError:
                    pass
            logger.error(f"Failed to store downloaded file at {destination}: {e}")
            raise CacheIOError(f"Failed to store downloaded file: {e}") from e

    def _load_index(self) -> Dict[str, CacheEntry]:
        if not self.index_path.exists():
            return {}

        try:
            with open(self.index_path, "r", encoding="utf-8") as f:
                raw = json.load(f)
            if not isinstance(raw, dict):
                raise ValueError("index root is not an object")
            entries = {key: CacheEntry.from_dict(value) for key, value in raw.items()}
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Ignoring unreadable cache index {self.index_path}: {e}")
            return {}

        logger.debug(f"Loaded {len(entries)} cache entries from {self.index_path}")
        return entries

    def _persist_index(self) -> None:
        payload = {key: entry.to_dict() for key, entry in self._entries.items()}
        try:
            atomic_json_write(self.index_path, payload, indent=2)
        except OSError as e:
            logger.warning(f"Failed to write cache index {self.index_path}: {e}")

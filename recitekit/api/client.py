"""
HTTP client for the recitation API.

Blocking ``requests`` calls run in the event loop's default executor so the
session controller's loop never blocks on the network.
"""

import asyncio
import functools
import logging
from typing import Any, Dict, List, Optional
from urllib.parse import urljoin

import requests

from ..exceptions import DecodingError, MissingMediaError, TransportError
from ..models import AudioSource, Performer, PlayerConfig, Recording, Segment, Translation
from ..utils import retry_with_backoff
from .base import RecitationService
from .decoding import (
    decode_audio_source,
    decode_performers,
    decode_recordings,
    decode_segments,
    decode_translation_lookup,
    decode_translations,
)

logger = logging.getLogger(__name__)

SEGMENTS_PER_PAGE = 300


class RecitationAPIClient(RecitationService):
    """
    Client for a quran.com-style v4 REST API.

    Example:
        >>> client = RecitationAPIClient(PlayerConfig())
        >>> source = asyncio.run(client.fetch_audio_source(recording_id=1, performer_id=7))
        >>> print(source.url, len(source.raw_timings))
    """

    def __init__(self, config: Optional[PlayerConfig] = None, session: Optional[requests.Session] = None):
        """
        Initialize API client.

        Args:
            config: Player configuration (default: PlayerConfig())
            session: Optional requests session to reuse connections
        """
        self.config = config or PlayerConfig()
        self.session = session or requests.Session()
        self.session.headers.setdefault("Accept", "application/json")

    async def fetch_recordings(self) -> List[Recording]:
        return decode_recordings(await self._get("chapters?language=en"))

    async def fetch_performers(self) -> List[Performer]:
        return decode_performers(await self._get("resources/recitations?language=en"))

    async def fetch_translations(self) -> List[Translation]:
        return decode_translations(await self._get("resources/translations?language=en"))

    async def fetch_audio_source(self, recording_id: int, performer_id: int) -> AudioSource:
        response = await self._get(f"chapter_recitations/{performer_id}/{recording_id}?segments=true")
        source = decode_audio_source(response, self.config.audio_base_url)
        if source is None:
            raise MissingMediaError(f"No audio file was returned for recording {recording_id}")
        logger.debug(
            f"Audio source for recording {recording_id} by performer {performer_id}: "
            f"{len(source.raw_timings)} raw timings"
        )
        return source

    async def fetch_segments(self, recording_id: int, translation_id: int) -> List[Segment]:
        response = await self._get(
            f"verses/by_chapter/{recording_id}?words=false&per_page={SEGMENTS_PER_PAGE}"
            f"&fields=text_uthmani,verse_key"
        )
        translations = await self._fetch_translation_lookup(recording_id, translation_id)
        segments = decode_segments(response, recording_id, translations)
        logger.info(f"Fetched {len(segments)} segments for recording {recording_id}")
        return segments

    async def _fetch_translation_lookup(self, recording_id: int, translation_id: int) -> Dict[str, str]:
        # Dedicated translation endpoints first, then verses-with-translations.
        paths = [
            f"quran/translations/{translation_id}?chapter_number={recording_id}",
            f"quran/translations/{translation_id}?chapter_number={recording_id}&fields=verse_key,text",
            f"verses/by_chapter/{recording_id}?language=en&words=false&per_page={SEGMENTS_PER_PAGE}"
            f"&translations={translation_id}&fields=verse_key",
            f"verses/by_chapter/{recording_id}?language=en&words=false&per_page={SEGMENTS_PER_PAGE}"
            f"&translations={translation_id}",
        ]
        for path in paths:
            try:
                lookup = decode_translation_lookup(await self._get(path))
            except (TransportError, DecodingError) as e:
                logger.debug(f"Translation lookup via {path} failed: {e}")
                continue
            if lookup:
                return lookup
        logger.info(f"No translation {translation_id} available for recording {recording_id}")
        return {}

    async def _get(self, path: str) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(self._get_sync, path))

    @retry_with_backoff(exceptions=(TransportError,))
    def _get_sync(self, path: str) -> Any:
        url = urljoin(self.config.api_base_url, path)
        try:
            response = self.session.get(url, timeout=self.config.request_timeout, verify=self.config.verify_ssl)
            response.raise_for_status()
        except requests.RequestException as e:
            logger.error(f"Request to {url[:100]} failed: {str(e)}")
            raise TransportError(f"Request failed: {str(e)}") from e

        try:
            return response.json()
        except ValueError as e:
            raise DecodingError(f"Response from {url[:100]} is not JSON") from e

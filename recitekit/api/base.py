"""
Recitation service interface.

The session controller depends only on this interface; the HTTP client and
test doubles both implement it.
"""

from typing import List

from ..models import AudioSource, Performer, Recording, Segment, Translation


class RecitationService:
    """Base interface for catalogue, segment and audio lookups."""

    async def fetch_recordings(self) -> List[Recording]:
        raise NotImplementedError

    async def fetch_performers(self) -> List[Performer]:
        raise NotImplementedError

    async def fetch_translations(self) -> List[Translation]:
        raise NotImplementedError

    async def fetch_segments(self, recording_id: int, translation_id: int) -> List[Segment]:
        """
        Ordered segments of a recording, paired with translation text.

        Raises:
            TransportError: If the API is unreachable or returns non-2xx
            DecodingError: If the response shape is not recognized
        """
        raise NotImplementedError

    async def fetch_audio_source(self, recording_id: int, performer_id: int) -> AudioSource:
        """
        Audio URL plus raw timing records for a recording by a performer.

        Raises:
            TransportError: If the API is unreachable or returns non-2xx
            DecodingError: If the response shape is not recognized
            MissingMediaError: If the response carries no audio URL
        """
        raise NotImplementedError

"""
Tolerant decoding of recitation API payloads.

Upstream responses vary in field names (``verse_key`` / ``ayah_key``,
``timestamp_from`` / ``start`` / ``time`` ...), container shapes (lists of
objects, ``[key, start]`` pairs, ``{key: start}`` maps) and value types
(numbers sent as strings). Everything here accepts camelCase or snake_case
keys and returns the normalized models; callers never see which shape matched.
"""

import logging
import math
import re
from typing import Any, Dict, Iterable, List, Optional

from ..exceptions import DecodingError
from ..models import AudioSource, Performer, RawTiming, Recording, Segment, Translation

logger = logging.getLogger(__name__)

TIMING_CONTAINER_KEYS = ("verse_timings", "timings", "timestamps")
TIMING_KEY_FIELDS = ("verse_key", "ayah_key")
TIMING_ORDINAL_FIELDS = ("verse_number", "ayah", "verse", "number")
TIMING_START_FIELDS = ("timestamp_from", "start", "from", "start_time", "timestamp", "time")
AUDIO_URL_FIELDS = ("audio_url", "url", "file")
SEGMENT_TEXT_FIELDS = ("text_uthmani", "text_uthmani_simple", "text_indopak", "text_imlaei", "text")

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")
_HTML_TAG = re.compile(r"<[^>]+>")
_FOOTNOTE = re.compile(r"<sup[^>]*>.*?</sup>", re.IGNORECASE | re.DOTALL)


def snake_case(name: str) -> str:
    """
    Convert a camelCase field name to snake_case.

    Example:
        >>> snake_case("timestampFrom")
        'timestamp_from'
        >>> snake_case("audioURL")
        'audio_url'
    """
    return _CAMEL_BOUNDARY.sub("_", name).lower()


def normalize_keys(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Shallow copy of ``payload`` with snake_case keys."""
    return {snake_case(str(key)): value for key, value in payload.items()}


def lossy_float(value: Any) -> Optional[float]:
    """Number or numeric string as float; anything else as None."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def lossy_int(value: Any) -> Optional[int]:
    number = lossy_float(value)
    if number is None or not math.isfinite(number):
        return None
    return int(number)


def lossy_str(value: Any) -> Optional[str]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)):
        return str(value)
    return None


def first_value(payload: Dict[str, Any], fields: Iterable[str], convert=lossy_str) -> Any:
    """First field in ``fields`` that is present and converts to a non-empty value."""
    for name in fields:
        if name not in payload:
            continue
        value = convert(payload[name])
        if value is None or (isinstance(value, str) and not value.strip()):
            continue
        return value
    return None


def decode_raw_timing(item: Any) -> Optional[RawTiming]:
    """
    Decode one timing record.

    Accepts an object with any of the known key/ordinal/start fields, or a
    two-element ``[key_or_ordinal, start]`` pair.

    Example:
        >>> decode_raw_timing({"verseKey": "1:2", "timestampFrom": "1500"})
        RawTiming(segment_key='1:2', ordinal=None, start_raw=1500.0)
        >>> decode_raw_timing([3, 12.5])
        RawTiming(segment_key=None, ordinal=3, start_raw=12.5)
    """
    if isinstance(item, dict):
        payload = normalize_keys(item)
        key = first_value(payload, TIMING_KEY_FIELDS)
        ordinal = first_value(payload, TIMING_ORDINAL_FIELDS, lossy_int)
        start = first_value(payload, TIMING_START_FIELDS, lossy_float)
        if start is None or not math.isfinite(start) or start < 0:
            return None
        return RawTiming(segment_key=key.strip() if key else None, ordinal=ordinal, start_raw=start)

    if isinstance(item, (list, tuple)) and len(item) >= 2:
        first, second = item[0], item[1]
        key = None
        ordinal = None
        if isinstance(first, str) and ":" in first:
            key = first.strip()
        else:
            ordinal = lossy_int(first)
        start = lossy_float(second)
        if start is None or not math.isfinite(start) or start < 0:
            return None
        return RawTiming(segment_key=key, ordinal=ordinal, start_raw=start)

    return None


def decode_raw_timings(payload: Dict[str, Any]) -> List[RawTiming]:
    """
    Collect timing records from every known container key of ``payload``.

    A container may be a list of records or a ``{segment_key: start}`` map.
    """
    timings: List[RawTiming] = []
    for container_key in TIMING_CONTAINER_KEYS:
        container = payload.get(container_key)
        if isinstance(container, list):
            timings.extend(t for t in (decode_raw_timing(item) for item in container) if t is not None)
        elif isinstance(container, dict):
            for key, value in container.items():
                start = lossy_float(value)
                if start is not None:
                    timings.append(RawTiming(segment_key=str(key), ordinal=None, start_raw=start))
    return timings


def _decode_audio_file(item: Any) -> Dict[str, Any]:
    if not isinstance(item, dict):
        return {"url": None, "timings": [], "duration": None}
    payload = normalize_keys(item)
    return {
        "url": first_value(payload, AUDIO_URL_FIELDS),
        "timings": decode_raw_timings(payload),
        "duration": first_value(payload, ("duration", "duration_seconds"), lossy_float),
    }


def normalize_audio_url(raw_url: str, audio_base_url: str) -> str:
    """
    Turn scheme-less or path-only audio references into absolute URLs.

    Example:
        >>> normalize_audio_url("//cdn.example.com/1.mp3", "https://audio.example.com")
        'https://cdn.example.com/1.mp3'
        >>> normalize_audio_url("/mirror/1.mp3", "https://audio.example.com")
        'https://audio.example.com/mirror/1.mp3'
    """
    raw_url = raw_url.strip()
    if re.match(r"^[a-zA-Z][a-zA-Z0-9+.-]*://", raw_url):
        return raw_url
    if raw_url.startswith("//"):
        return f"https:{raw_url}"
    if raw_url.startswith("/"):
        return f"{audio_base_url.rstrip('/')}{raw_url}"
    return f"https://{raw_url}"


def decode_audio_source(response: Any, audio_base_url: str) -> Optional[AudioSource]:
    """
    Decode a chapter recitation response.

    The URL, timings and duration may sit at the top level, in an
    ``audio_file`` object, or in the first suitable ``audio_files`` entry.

    Returns:
        The decoded source, or None if no audio URL is present

    Raises:
        DecodingError: If the response is not a JSON object
    """
    if not isinstance(response, dict):
        raise DecodingError("Chapter recitation response is not an object")

    payload = normalize_keys(response)
    audio_file = _decode_audio_file(payload.get("audio_file"))
    audio_files = [_decode_audio_file(item) for item in payload.get("audio_files") or [] if isinstance(item, dict)]

    url = first_value(payload, ("audio_url", "url")) or audio_file["url"]
    if not url:
        url = next((f["url"] for f in audio_files if f["url"]), None)
    if not url:
        return None

    timings = decode_raw_timings(payload)
    if not timings:
        timings = audio_file["timings"]
    if not timings:
        timings = next((f["timings"] for f in audio_files if f["timings"]), [])

    duration = first_value(payload, ("duration",), lossy_float)
    if duration is None:
        duration = audio_file["duration"]
    if duration is None:
        duration = next((f["duration"] for f in audio_files if f["duration"] is not None), None)

    return AudioSource(
        url=normalize_audio_url(url, audio_base_url),
        raw_timings=timings,
        duration_hint=duration,
    )


def canonical_segment_key(raw_key: str) -> str:
    """
    Strip whitespace and leading zeros from a ``chapter:verse`` key.

    Example:
        >>> canonical_segment_key(" 002:007 ")
        '2:7'
    """
    trimmed = raw_key.strip()
    parts = trimmed.split(":")
    if len(parts) != 2:
        return trimmed
    try:
        return f"{int(parts[0])}:{int(parts[1])}"
    except ValueError:
        return trimmed


def clean_translation_text(raw_text: Optional[str]) -> Optional[str]:
    """
    Remove markup from translation text.

    Example:
        >>> clean_translation_text("In the name<sup foot_note=1>1</sup>&nbsp;")
        'In the name'
    """
    if raw_text is None:
        return None
    without_notes = _FOOTNOTE.sub("", raw_text.strip())
    cleaned = _HTML_TAG.sub("", without_notes).replace("&nbsp;", " ").strip()
    return cleaned or None


def _verse_translation_text(payload: Dict[str, Any]) -> Optional[str]:
    candidates: List[Any] = []
    for name in ("translations", "translation"):
        value = payload.get(name)
        if isinstance(value, list):
            candidates.extend(value)
        elif isinstance(value, dict):
            candidates.append(value)
    for candidate in candidates:
        if isinstance(candidate, dict):
            text = clean_translation_text(lossy_str(normalize_keys(candidate).get("text")))
            if text:
                return text
    return clean_translation_text(first_value(payload, ("translated_text", "translation_text")))


def decode_segments(
    response: Any,
    recording_id: int,
    translations: Optional[Dict[str, str]] = None,
) -> List[Segment]:
    """
    Decode a verses-by-chapter response into ordered segments.

    Verses without any text are skipped. Missing keys default to
    ``"<recording_id>:<position>"``. Translations are taken from the
    ``translations`` lookup first, then from the verse payload itself.

    Raises:
        DecodingError: If the response has no ``verses`` list
    """
    if not isinstance(response, dict) or not isinstance(response.get("verses"), list):
        raise DecodingError("Verses response has no verses list")

    translations = translations or {}
    segments: List[Segment] = []
    for offset, item in enumerate(response["verses"]):
        if not isinstance(item, dict):
            continue
        payload = normalize_keys(item)
        text = first_value(payload, SEGMENT_TEXT_FIELDS)
        if not text:
            continue

        key = first_value(payload, ("verse_key",)) or f"{recording_id}:{offset + 1}"
        key = key.strip()
        ordinal = lossy_int(key.split(":")[-1]) or offset + 1
        translation = (
            translations.get(canonical_segment_key(key))
            or translations.get(key)
            or _verse_translation_text(payload)
        )
        segments.append(Segment(
            id=lossy_int(payload.get("id")) or ordinal,
            key=key,
            text=text.strip(),
            translation=translation,
        ))
    return segments


def decode_translation_lookup(response: Any) -> Dict[str, str]:
    """Segment key -> translation text from a chapter translation response."""
    if not isinstance(response, dict):
        return {}
    payload = normalize_keys(response)
    items = next(
        (payload[name] for name in ("translations", "translation", "verses") if isinstance(payload.get(name), list)),
        [],
    )

    lookup: Dict[str, str] = {}
    for item in items:
        if not isinstance(item, dict):
            continue
        entry = normalize_keys(item)
        key = first_value(entry, ("verse_key",))
        text = clean_translation_text(first_value(entry, ("text", "translation", "translated_text")))
        if not text:
            text = _verse_translation_text(entry)
        if not key or not text:
            continue
        lookup[key.strip()] = text
        lookup[canonical_segment_key(key)] = text
    return lookup


def decode_recordings(response: Any) -> List[Recording]:
    if not isinstance(response, dict) or not isinstance(response.get("chapters"), list):
        raise DecodingError("Chapters response has no chapters list")
    recordings = []
    for item in response["chapters"]:
        if not isinstance(item, dict):
            continue
        payload = normalize_keys(item)
        recording_id = lossy_int(payload.get("id"))
        if recording_id is None:
            continue
        recordings.append(Recording(
            id=recording_id,
            name=lossy_str(payload.get("name_simple")) or lossy_str(payload.get("name")) or str(recording_id),
            name_native=lossy_str(payload.get("name_arabic")) or "",
            segment_count=lossy_int(payload.get("verses_count")) or 0,
        ))
    return sorted(recordings, key=lambda recording: recording.id)


def decode_performers(response: Any) -> List[Performer]:
    if not isinstance(response, dict) or not isinstance(response.get("recitations"), list):
        raise DecodingError("Recitations response has no recitations list")
    performers = []
    for item in response["recitations"]:
        if not isinstance(item, dict):
            continue
        payload = normalize_keys(item)
        performer_id = lossy_int(payload.get("id"))
        if performer_id is None:
            continue
        performers.append(Performer(
            id=performer_id,
            name=lossy_str(payload.get("reciter_name")) or lossy_str(payload.get("name")) or str(performer_id),
            style=lossy_str(payload.get("style")),
        ))
    return sorted(performers, key=lambda performer: performer.id)


def decode_translations(response: Any) -> List[Translation]:
    """Translation resources sorted by language, then name, then id."""
    if not isinstance(response, dict) or not isinstance(response.get("translations"), list):
        raise DecodingError("Translations response has no translations list")
    resources = []
    for item in response["translations"]:
        if not isinstance(item, dict):
            continue
        payload = normalize_keys(item)
        translation_id = lossy_int(payload.get("id"))
        if translation_id is None:
            continue
        translated = payload.get("translated_name")
        translated = normalize_keys(translated) if isinstance(translated, dict) else {}
        name = (lossy_str(payload.get("name")) or lossy_str(translated.get("name")) or "").strip()
        language = (lossy_str(payload.get("language_name")) or lossy_str(translated.get("language_name")) or "").strip()
        if not name and not language:
            continue
        resources.append(Translation(
            id=translation_id,
            name=name,
            language_name=language,
            author_name=lossy_str(payload.get("author_name")),
        ))
    resources.sort(key=lambda t: (t.language_name.casefold(), t.name.casefold(), t.id))
    return resources

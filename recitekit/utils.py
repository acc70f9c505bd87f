"""
Shared utility functions for recitekit.

Provides common helpers used across multiple modules: text-length weights,
countdown formatting, atomic JSON writes, URL extension parsing and a retry
decorator for flaky network calls.
"""

import json
import logging
import os
import time
from functools import wraps
from pathlib import Path
from typing import Any, Callable, List, Optional, Sequence, Tuple, Type, TypeVar
from urllib.parse import urlparse

from .models import Segment

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_EXTENSION = "mp3"


def text_weight(text: str) -> float:
    """
    Weight of a segment's text, used as a proxy for its spoken duration.

    Args:
        text: Segment text

    Returns:
        Character count, never below 1

    Example:
        >>> text_weight("")
        1.0
        >>> text_weight("abc")
        3.0
    """
    return float(max(1, len(text)))


def segment_weights(segments: Sequence[Segment]) -> List[float]:
    """Text weights for an ordered segment list."""
    return [text_weight(segment.text) for segment in segments]


def format_countdown(seconds: Optional[float]) -> Optional[str]:
    """
    Format remaining seconds as MM:SS.

    Args:
        seconds: Remaining time in seconds, or None when no countdown runs

    Returns:
        "MM:SS" string, or None

    Example:
        >>> format_countdown(905.4)
        '15:05'
    """
    if seconds is None:
        return None
    remaining = max(0, int(seconds))
    minutes = remaining // 60
    return f"{minutes:02d}:{remaining % 60:02d}"


def url_extension(url: str, default: str = DEFAULT_EXTENSION) -> str:
    """
    File extension of a URL's path, without the dot.

    Example:
        >>> url_extension("https://cdn.example.com/audio/001.ogg?x=1")
        'ogg'
        >>> url_extension("https://cdn.example.com/stream")
        'mp3'
    """
    suffix = Path(urlparse(url).path).suffix.lstrip(".")
    return suffix or default


def atomic_json_write(path: Path, payload: Any, indent: Optional[int] = None) -> None:
    """
    Write JSON to ``path`` so readers never observe a partial file.

    The payload goes to a sibling ``.tmp`` file first, which then replaces
    the target in a single ``os.replace``.

    Raises:
        OSError: If the temporary file cannot be written or moved
    """
    target = Path(path)
    tmp_path = target.with_suffix(target.suffix + ".tmp")
    with open(tmp_path, "w", encoding="utf-8") as f:
        json.dump(payload, f, indent=indent, ensure_ascii=False)
    os.replace(tmp_path, target)


def retry_with_backoff(
    max_retries: int = 2,
    base_delay: float = 0.5,
    max_delay: float = 8.0,
    backoff_factor: float = 2.0,
    exceptions: Tuple[Type[Exception], ...] = (Exception,),
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """
    Decorator that retries a blocking function with exponential backoff.

    Args:
        max_retries: Maximum number of retry attempts
        base_delay: Initial delay between retries in seconds
        max_delay: Maximum delay between retries in seconds
        backoff_factor: Multiplier for delay after each retry
        exceptions: Exception types that trigger a retry

    Returns:
        Decorated function; the last exception is re-raised once retries
        are exhausted
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            delay = base_delay
            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    if attempt >= max_retries:
                        logger.warning(f"All {max_retries} retries exhausted for {func.__name__}: {e}")
                        raise
                    logger.debug(f"Retry {attempt + 1}/{max_retries} for {func.__name__}: {e}")
                    time.sleep(delay)
                    delay = min(delay * backoff_factor, max_delay)
            raise RuntimeError("Unexpected state in retry logic")
        return wrapper
    return decorator

"""
Persistence for the last playback snapshot.

A single JSON file holds exactly one PlaybackSnapshot; each save overwrites
the previous one.
"""

import json
import logging
from dataclasses import asdict
from pathlib import Path
from typing import Optional

from .models import PlaybackSnapshot
from .utils import atomic_json_write

logger = logging.getLogger(__name__)


class PlaybackStateStore:
    """Key-value store for the most recent resumable playback point."""

    def __init__(self, path: Path):
        """
        Initialize state store.

        Args:
            path: JSON file the snapshot is written to
        """
        self.path = Path(path)

    def load(self) -> Optional[PlaybackSnapshot]:
        """
        Load the stored snapshot.

        Returns:
            The snapshot, or None if nothing was saved or the file is unreadable
        """
        if not self.path.exists():
            return None
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
            return PlaybackSnapshot(
                recording_id=int(data["recording_id"]),
                performer_id=int(data["performer_id"]),
                position_seconds=float(data["position_seconds"]),
            )
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Ignoring unreadable playback snapshot {self.path}: {e}")
            return None

    def save(self, snapshot: PlaybackSnapshot) -> None:
        """Overwrite the stored snapshot. Write failures are logged, not raised."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            atomic_json_write(self.path, asdict(snapshot))
        except OSError as e:
            logger.warning(f"Failed to save playback snapshot to {self.path}: {e}")

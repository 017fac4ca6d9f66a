"""
Playback clock resolver

Every listener derives its position in the current track from one shared
value: the reference start instant written by the host. Instants are epoch
milliseconds. There is no clock-offset negotiation between devices, so the
result is only as good as the agreement between the host and guest clocks.
"""
import math
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Union

SYNC_MARGIN_MS = 100
RESYNC_THRESHOLD_SECONDS = 1.5

Instant = Union[int, float, datetime]


def now_ms() -> float:
    """Current wall-clock time in epoch milliseconds"""
    return time.time() * 1000.0


def to_millis(value) -> Optional[float]:
    """
    Coerce a stored reference start into epoch milliseconds.

    Returns None for anything that cannot be read as an instant, so callers
    fall back to "not playing" instead of failing.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.timestamp() * 1000.0
    if isinstance(value, str):
        try:
            value = float(value)
        except ValueError:
            return None
    if not isinstance(value, (int, float)):
        return None
    try:
        value = float(value)
    except OverflowError:
        return None
    if not math.isfinite(value):
        return None
    return value


def current_offset(reference_start: Optional[Instant], now: Instant) -> float:
    """Seconds elapsed into the track at `now`, never negative"""
    start = to_millis(reference_start)
    if start is None:
        return 0.0
    current = to_millis(now)
    if current is None:
        return 0.0
    return max(0.0, (current - start) / 1000.0)


def reference_start_for_seek(seek_seconds: float, now: Instant) -> float:
    """Reference start that makes `current_offset` equal `seek_seconds` at `now`"""
    current = to_millis(now)
    if current is None:
        current = now_ms()
    return current - seek_seconds * 1000.0


def target_position(reference_start: Optional[Instant], now: Instant,
                    duration: Optional[float] = None) -> float:
    """Offset clamped to the track duration when the duration is known"""
    offset = current_offset(reference_start, now)
    if duration and duration > 0:
        return min(offset, float(duration))
    return offset


def needs_resync(position: float, target: float,
                 threshold: float = RESYNC_THRESHOLD_SECONDS) -> bool:
    """True when a local player has drifted further than `threshold` seconds"""
    return abs(position - target) > threshold


@dataclass(frozen=True)
class PlaybackState:
    track_id: Optional[str] = None
    is_playing: bool = False
    reference_start: Optional[float] = None

    @classmethod
    def stopped(cls, track_id: Optional[str] = None) -> "PlaybackState":
        return cls(track_id=track_id, is_playing=False, reference_start=None)

    @classmethod
    def started(cls, track_id: str, now: Instant) -> "PlaybackState":
        return cls(track_id=track_id, is_playing=True, reference_start=to_millis(now))

    def paused(self) -> "PlaybackState":
        return PlaybackState.stopped(self.track_id)

    def seeked(self, seek_seconds: float, now: Instant) -> "PlaybackState":
        # Seeking keeps playing; only the reference start moves.
        return PlaybackState(
            track_id=self.track_id,
            is_playing=True,
            reference_start=reference_start_for_seek(seek_seconds, now),
        )

    def offset(self, now: Instant) -> float:
        if not self.is_playing:
            return 0.0
        return current_offset(self.reference_start, now)

    def to_dict(self) -> dict:
        return {
            "track_id": self.track_id,
            "is_playing": self.is_playing,
            "reference_start": self.reference_start,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PlaybackState":
        """Build a state from a stored record; bad start values read as offset 0"""
        is_playing = bool(data.get("is_playing", False))
        start = to_millis(data.get("reference_start")) if is_playing else None
        return cls(
            track_id=data.get("track_id"),
            is_playing=is_playing,
            reference_start=start,
        )

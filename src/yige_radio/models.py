from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any

PLAY = "play"
SKIP = "skip"
LOCK = "lock"
FAVORITE = "favorite"
UNFAVORITE = "unfavorite"
COMPLETE = "complete"
BLACKLIST = "blacklist"

VALID_ACTIONS = (PLAY, SKIP, LOCK, FAVORITE, UNFAVORITE, COMPLETE, BLACKLIST)

# Actions that feed the preference score, with their weight.
PREFERENCE_WEIGHTS = {FAVORITE: 3, LOCK: 2, COMPLETE: 1}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True, frozen=True)
class Artist:
    id: str
    name: str
    name_en: str | None = None


@dataclass(slots=True, frozen=True)
class Track:
    id: str
    title: str
    artist_id: str
    duration: int = 0
    popularity: float = 0
    album: str | None = None
    stream_url: str | None = None
    cover_url: str | None = None
    lyrics: str | None = None
    tags: tuple[str, ...] = ()
    title_en: str | None = None
    artist: Artist | None = None

    @property
    def artist_name(self) -> str:
        return self.artist.name if self.artist else ""

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["tags"] = list(self.tags)
        return data

    @classmethod
    def from_dict(cls, raw: dict, artist: Artist | None = None) -> Track:
        return cls(
            id=str(raw["id"]),
            title=raw.get("title", ""),
            artist_id=str(raw["artist_id"]),
            duration=int(raw.get("duration") or 0),
            popularity=raw.get("popularity") or 0,
            album=raw.get("album"),
            stream_url=raw.get("audio_url") or raw.get("stream_url"),
            cover_url=raw.get("cover_url"),
            lyrics=raw.get("lyrics"),
            tags=tuple(raw.get("tags") or ()),
            title_en=raw.get("title_en"),
            artist=artist,
        )


@dataclass(slots=True, frozen=True)
class BehaviorEvent:
    user_id: str
    track_id: str
    artist_id: str
    action: str
    timestamp: datetime = field(default_factory=utc_now)
    play_duration: int | None = None
    session_id: str | None = None
    metadata: dict[str, Any] | None = None
    id: int | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data

    @classmethod
    def from_dict(cls, raw: dict) -> BehaviorEvent:
        timestamp = datetime.fromisoformat(raw["timestamp"])
        if timestamp.tzinfo is None:
            # naive timestamps are taken as UTC so they sort with live events
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        return cls(
            id=raw.get("id"),
            user_id=raw["user_id"],
            track_id=raw["track_id"],
            artist_id=raw["artist_id"],
            action=raw["action"],
            timestamp=timestamp,
            play_duration=raw.get("play_duration"),
            session_id=raw.get("session_id"),
            metadata=raw.get("metadata"),
        )


def format_duration(seconds: float) -> str:
    """Render a duration in seconds as M:SS."""
    seconds = max(0, int(seconds))
    return f"{seconds // 60}:{seconds % 60:02d}"

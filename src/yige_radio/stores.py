"""Catalog and behavior stores.

The engine only talks to the two protocols below. The in-memory
implementations are what the server runs with by default; a production
deployment can plug in anything that answers the same key lookups.
"""
from __future__ import annotations

import dataclasses
import itertools
import json
import logging
import threading
from pathlib import Path
from typing import Iterable, Protocol

from yige_radio.models import BLACKLIST, FAVORITE, UNFAVORITE, Artist, BehaviorEvent, Track

logger = logging.getLogger(__name__)


class CatalogStore(Protocol):
    def get_track(self, track_id: str) -> Track | None: ...

    def get_artist(self, artist_id: str) -> Artist | None: ...

    def tracks_by_artists(
        self, artist_ids: Iterable[str], exclude_artist_ids: Iterable[str], limit: int
    ) -> list[Track]: ...

    def top_tracks(self, exclude_artist_ids: Iterable[str], limit: int) -> list[Track]: ...

    def tracks_for_artist(self, artist_id: str, limit: int) -> list[Track]: ...

    def search_tracks(self, query: str, limit: int) -> list[Track]: ...

    def search_artists(self, query: str, limit: int) -> list[Artist]: ...


class BehaviorStore(Protocol):
    def append(self, event: BehaviorEvent) -> BehaviorEvent: ...

    def recent_events(
        self, user_id: str, actions: Iterable[str] | None = None, limit: int = 50
    ) -> list[BehaviorEvent]: ...

    def add_favorite(self, user_id: str, track_id: str) -> None: ...

    def remove_favorite(self, user_id: str, track_id: str) -> None: ...

    def favorite_track_ids(self, user_id: str) -> list[str]: ...

    def add_blacklist(self, user_id: str, artist_id: str) -> None: ...

    def blacklisted_artist_ids(self, user_id: str) -> list[str]: ...


def _popularity_order(track: Track) -> tuple[float, str]:
    # Track id breaks popularity ties so pagination is deterministic.
    return (-track.popularity, track.id)


def _matches(query: str, *values: str | None) -> bool:
    return any(query in value.lower() for value in values if value)


class InMemoryCatalogStore:
    def __init__(self, artists: Iterable[Artist] = (), tracks: Iterable[Track] = ()) -> None:
        self._lock = threading.RLock()
        self._artists: dict[str, Artist] = {}
        self._tracks: dict[str, Track] = {}
        for artist in artists:
            self.add_artist(artist)
        for track in tracks:
            self.add_track(track)

    @classmethod
    def from_file(cls, path: str | Path) -> InMemoryCatalogStore:
        """Load a catalog from ``{"artists": [...], "tracks": [...]}`` JSON."""
        payload = json.loads(Path(path).read_text(encoding="utf-8"))
        store = cls()
        for raw in payload.get("artists", []):
            store.add_artist(Artist(id=str(raw["id"]), name=raw.get("name", ""), name_en=raw.get("name_en")))
        for raw in payload.get("tracks", []):
            store.add_track(Track.from_dict(raw))
        logger.info("Loaded catalog from %s: %d artists, %d tracks", path, len(store._artists), len(store._tracks))
        return store

    def add_artist(self, artist: Artist) -> None:
        with self._lock:
            self._artists[artist.id] = artist

    def add_track(self, track: Track) -> None:
        with self._lock:
            if track.artist is None and track.artist_id in self._artists:
                track = dataclasses.replace(track, artist=self._artists[track.artist_id])
            self._tracks[track.id] = track

    def get_track(self, track_id: str) -> Track | None:
        with self._lock:
            return self._tracks.get(track_id)

    def get_artist(self, artist_id: str) -> Artist | None:
        with self._lock:
            return self._artists.get(artist_id)

    def _ranked(self, keep) -> list[Track]:
        with self._lock:
            tracks = [t for t in self._tracks.values() if keep(t)]
        tracks.sort(key=_popularity_order)
        return tracks

    def tracks_by_artists(
        self, artist_ids: Iterable[str], exclude_artist_ids: Iterable[str], limit: int
    ) -> list[Track]:
        wanted = set(artist_ids) - set(exclude_artist_ids)
        if limit <= 0 or not wanted:
            return []
        return self._ranked(lambda t: t.artist_id in wanted)[:limit]

    def top_tracks(self, exclude_artist_ids: Iterable[str], limit: int) -> list[Track]:
        excluded = set(exclude_artist_ids)
        if limit <= 0:
            return []
        return self._ranked(lambda t: t.artist_id not in excluded)[:limit]

    def tracks_for_artist(self, artist_id: str, limit: int) -> list[Track]:
        return self._ranked(lambda t: t.artist_id == artist_id)[:max(limit, 0)]

    def search_tracks(self, query: str, limit: int) -> list[Track]:
        needle = query.strip().lower()
        if not needle:
            return []
        return self._ranked(lambda t: _matches(needle, t.title, t.title_en, t.album))[:max(limit, 0)]

    def search_artists(self, query: str, limit: int) -> list[Artist]:
        needle = query.strip().lower()
        if not needle:
            return []
        with self._lock:
            found = [a for a in self._artists.values() if _matches(needle, a.name, a.name_en)]
        return found[:max(limit, 0)]


class InMemoryBehaviorStore:
    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._events: list[BehaviorEvent] = []
        self._ids = itertools.count(1)
        # dicts keep insertion order, so favorites list in the order they were added
        self._favorites: dict[str, dict[str, None]] = {}
        self._blacklist: dict[str, dict[str, None]] = {}

    def append(self, event: BehaviorEvent) -> BehaviorEvent:
        with self._lock:
            stored = dataclasses.replace(event, id=next(self._ids))
            self._events.append(stored)
            return stored

    def recent_events(
        self, user_id: str, actions: Iterable[str] | None = None, limit: int = 50
    ) -> list[BehaviorEvent]:
        wanted = set(actions) if actions is not None else None
        with self._lock:
            events = [
                e for e in self._events
                if e.user_id == user_id and (wanted is None or e.action in wanted)
            ]
        events.sort(key=lambda e: (e.timestamp, e.id or 0), reverse=True)
        return events[:max(limit, 0)]

    def add_favorite(self, user_id: str, track_id: str) -> None:
        with self._lock:
            self._favorites.setdefault(user_id, {})[track_id] = None

    def remove_favorite(self, user_id: str, track_id: str) -> None:
        with self._lock:
            self._favorites.get(user_id, {}).pop(track_id, None)

    def favorite_track_ids(self, user_id: str) -> list[str]:
        with self._lock:
            return list(self._favorites.get(user_id, {}))

    def add_blacklist(self, user_id: str, artist_id: str) -> None:
        with self._lock:
            self._blacklist.setdefault(user_id, {})[artist_id] = None

    def blacklisted_artist_ids(self, user_id: str) -> list[str]:
        with self._lock:
            return list(self._blacklist.get(user_id, {}))


class JsonlBehaviorStore(InMemoryBehaviorStore):
    """Behavior store backed by an append-only JSON-lines file.

    On open the log is replayed and the favorites/blacklist tables are
    rebuilt from it, so the side tables always follow the latest event for
    each (user, track) or (user, artist) pair.
    """

    def __init__(self, path: str | Path) -> None:
        super().__init__()
        self.path = Path(path)
        self._replay()

    def _replay(self) -> None:
        if not self.path.exists():
            return
        with self.path.open("r", encoding="utf-8") as handle:
            for line_no, line in enumerate(handle, start=1):
                if not line.strip():
                    continue
                try:
                    event = BehaviorEvent.from_dict(json.loads(line))
                except (json.JSONDecodeError, KeyError, ValueError):
                    logger.warning("Skipping unreadable behavior log line %s:%d", self.path, line_no)
                    continue
                stored = super().append(event)
                if stored.action == FAVORITE:
                    self.add_favorite(stored.user_id, stored.track_id)
                elif stored.action == UNFAVORITE:
                    self.remove_favorite(stored.user_id, stored.track_id)
                elif stored.action == BLACKLIST:
                    self.add_blacklist(stored.user_id, stored.artist_id)

    def append(self, event: BehaviorEvent) -> BehaviorEvent:
        with self._lock:
            stored = dataclasses.replace(event, id=next(self._ids))
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(stored.to_dict(), ensure_ascii=False) + "\n")
            # only events that reached the log are visible to readers
            self._events.append(stored)
            return stored

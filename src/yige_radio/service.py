"""Wiring between the stores, the recommendation engine and live sessions."""
from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass

from yige_radio.assembler import CandidateAssembler
from yige_radio.config import Settings
from yige_radio.errors import BehaviorStoreUnavailable, CatalogUnavailable, NotFound
from yige_radio.models import BLACKLIST, Artist, BehaviorEvent, Track
from yige_radio.recorder import EventRecorder
from yige_radio.resolver import CatalogStreamResolver, SpotifyStreamResolver, StreamResolver
from yige_radio.scorer import PreferenceScorer
from yige_radio.session import QueueSession, TransitionResult
from yige_radio.stores import (
    BehaviorStore,
    CatalogStore,
    InMemoryBehaviorStore,
    InMemoryCatalogStore,
    JsonlBehaviorStore,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Recommendations:
    tracks: list[Track]
    has_preferences: bool
    preferred_artist_count: int
    blacklisted_artist_count: int


class RadioService:
    def __init__(
        self,
        catalog: CatalogStore,
        behavior_store: BehaviorStore,
        settings: Settings | None = None,
        resolver: StreamResolver | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.settings = settings or Settings()
        self.catalog = catalog
        self.behavior_store = behavior_store
        self.scorer = PreferenceScorer(
            behavior_store,
            window_size=self.settings.preference_window,
            top_k=self.settings.preferred_artist_limit,
        )
        self.assembler = CandidateAssembler(catalog, behavior_store, self.scorer, rng=rng)
        self.recorder = EventRecorder(behavior_store)
        self.resolver = resolver
        self._sessions: dict[str, QueueSession] = {}

    @classmethod
    def from_settings(cls, settings: Settings) -> RadioService:
        if settings.catalog_path:
            catalog = InMemoryCatalogStore.from_file(settings.catalog_path)
        else:
            logger.warning("CATALOG_PATH is not set; starting with an empty catalog")
            catalog = InMemoryCatalogStore()

        if settings.behavior_log_path:
            behavior_store = JsonlBehaviorStore(settings.behavior_log_path)
        else:
            behavior_store = InMemoryBehaviorStore()

        if settings.stream_resolver == "spotify":
            resolver = SpotifyStreamResolver(market=settings.spotify_market)
        elif settings.stream_resolver == "catalog":
            resolver = CatalogStreamResolver(catalog)
        else:
            raise ValueError(f"Unknown STREAM_RESOLVER {settings.stream_resolver!r}; use 'catalog' or 'spotify'")
        return cls(catalog, behavior_store, settings=settings, resolver=resolver)

    # -- recommendations and events ----------------------------------------

    def get_recommendations(self, user_id: str, count: int | None = None) -> Recommendations:
        count = self.settings.recommendation_count if count is None else count
        batch = self.assembler.assemble_batch(user_id, count)
        return Recommendations(
            tracks=batch.tracks,
            has_preferences=batch.has_preferences,
            preferred_artist_count=len(batch.preferred_artist_ids),
            blacklisted_artist_count=len(batch.blacklisted_artist_ids),
        )

    async def record_event(
        self,
        user_id: str,
        track_id: str,
        artist_id: str,
        action: str,
        play_duration: int | None = None,
        session_id: str | None = None,
        metadata: dict | None = None,
    ) -> BehaviorEvent:
        """Record an action reported from outside a session.

        A blacklist is also pushed into the listener's live sessions so their
        queues drop the artist right away.
        """
        self.recorder.validate(user_id, track_id, artist_id, action)
        event = await asyncio.to_thread(
            self.recorder.record, user_id, track_id, artist_id, action, play_duration, session_id, metadata
        )
        if action == BLACKLIST:
            await self._exclude_everywhere(user_id, artist_id)
        return event

    async def blacklist_current(self, session_id: str) -> TransitionResult:
        """Blacklist the artist playing in one session across all of the listener's sessions."""
        session = self.get_session(session_id)
        result = await session.blacklist()
        await self._exclude_everywhere(session.user_id, result.excluded_artist_id, origin=session)
        return result

    async def _exclude_everywhere(self, user_id: str, artist_id: str, origin: QueueSession | None = None) -> None:
        for session in self.sessions_for(user_id):
            if session is not origin:
                await session.exclude_artist(artist_id)

    def history(self, user_id: str, action: str | None = None, limit: int = 50) -> list[BehaviorEvent]:
        actions = [action] if action else None
        try:
            return self.behavior_store.recent_events(user_id, actions=actions, limit=limit)
        except Exception as exc:
            raise BehaviorStoreUnavailable(f"Could not read behavior history for {user_id!r}: {exc}") from exc

    def favorites(self, user_id: str) -> list[Track]:
        try:
            track_ids = self.behavior_store.favorite_track_ids(user_id)
        except Exception as exc:
            raise BehaviorStoreUnavailable(f"Could not read favorites for {user_id!r}: {exc}") from exc
        tracks = (self.catalog.get_track(track_id) for track_id in track_ids)
        return [t for t in tracks if t is not None]

    # -- catalog browsing --------------------------------------------------

    def search(self, query: str, kind: str = "all", limit: int = 20) -> tuple[list[Track], list[Artist]]:
        try:
            tracks = self.catalog.search_tracks(query, limit) if kind in ("all", "track") else []
            artists = self.catalog.search_artists(query, limit) if kind in ("all", "artist") else []
        except Exception as exc:
            raise CatalogUnavailable(f"Search failed: {exc}") from exc
        return tracks, artists

    def artist_tracks(self, artist_id: str, limit: int = 50) -> tuple[Artist, list[Track]]:
        try:
            artist = self.catalog.get_artist(artist_id)
            tracks = self.catalog.tracks_for_artist(artist_id, limit) if artist else []
        except Exception as exc:
            raise CatalogUnavailable(f"Artist lookup failed: {exc}") from exc
        if artist is None:
            raise NotFound(f"Artist {artist_id!r} not found")
        return artist, tracks

    # -- sessions ----------------------------------------------------------

    async def open_session(self, user_id: str) -> QueueSession:
        try:
            favorite_ids = await asyncio.to_thread(self.behavior_store.favorite_track_ids, user_id)
            blacklisted = await asyncio.to_thread(self.behavior_store.blacklisted_artist_ids, user_id)
        except Exception as exc:
            raise BehaviorStoreUnavailable(f"Could not load listener state for {user_id!r}: {exc}") from exc

        session = QueueSession(
            user_id,
            self.assembler,
            self.recorder,
            resolver=self.resolver,
            seed_batch_size=self.settings.seed_batch_size,
            replenish_batch_size=self.settings.replenish_batch_size,
            low_water_mark=self.settings.low_water_mark,
            retry_delay=self.settings.retry_delay_seconds,
            favorite_track_ids=favorite_ids,
            blacklisted_artist_ids=blacklisted,
        )
        self._sessions[session.session_id] = session
        await session.start()
        logger.info("Opened %s for %s in state %s", session.session_id, user_id, session.state)
        return session

    def get_session(self, session_id: str) -> QueueSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise NotFound(f"Session {session_id!r} not found")
        return session

    def sessions_for(self, user_id: str) -> list[QueueSession]:
        return [s for s in self._sessions.values() if s.user_id == user_id]

    async def close_session(self, session_id: str) -> None:
        session = self._sessions.pop(session_id, None)
        if session is None:
            raise NotFound(f"Session {session_id!r} not found")
        await session.close()

    async def close_all(self) -> None:
        sessions = list(self._sessions.values())
        self._sessions.clear()
        for session in sessions:
            await session.close()

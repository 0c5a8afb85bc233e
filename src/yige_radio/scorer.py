from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from yige_radio.errors import BehaviorStoreUnavailable
from yige_radio.models import PREFERENCE_WEIGHTS
from yige_radio.stores import BehaviorStore

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_SIZE = 50
DEFAULT_TOP_K = 5


@dataclass(slots=True)
class ArtistPreference:
    artist_id: str
    weight: int
    last_seen: datetime


class PreferenceScorer:
    def __init__(
        self,
        behavior_store: BehaviorStore,
        window_size: int = DEFAULT_WINDOW_SIZE,
        top_k: int = DEFAULT_TOP_K,
    ) -> None:
        self.behavior_store = behavior_store
        self.window_size = window_size
        self.top_k = top_k

    def preferences(self, user_id: str, window_size: int | None = None) -> list[ArtistPreference]:
        """Accumulate preference weight per artist over the recent event window.

        Only favorite, lock and complete events count. The result is sorted by
        weight, then by the most recent qualifying event, then by artist id.
        """
        window = self.window_size if window_size is None else window_size
        try:
            events = self.behavior_store.recent_events(user_id, actions=tuple(PREFERENCE_WEIGHTS), limit=window)
        except BehaviorStoreUnavailable:
            raise
        except Exception as exc:
            raise BehaviorStoreUnavailable(f"Could not read behavior history for {user_id!r}: {exc}") from exc

        scores: dict[str, ArtistPreference] = {}
        for event in events:
            weight = PREFERENCE_WEIGHTS.get(event.action)
            if weight is None:
                continue
            pref = scores.get(event.artist_id)
            if pref is None:
                scores[event.artist_id] = ArtistPreference(event.artist_id, weight, event.timestamp)
                continue
            pref.weight += weight
            if event.timestamp > pref.last_seen:
                pref.last_seen = event.timestamp

        ranked = sorted(scores.values(), key=lambda p: p.artist_id)
        ranked.sort(key=lambda p: (p.weight, p.last_seen), reverse=True)
        return ranked

    def score(self, user_id: str, window_size: int | None = None) -> list[str]:
        ranked = self.preferences(user_id, window_size)[:self.top_k]
        logger.debug("Preferred artists for %s: %s", user_id, [(p.artist_id, p.weight) for p in ranked])
        return [p.artist_id for p in ranked]

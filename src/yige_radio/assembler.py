from __future__ import annotations

import logging
import math
import random
from dataclasses import dataclass, field
from typing import Callable, TypeVar

from yige_radio.errors import BehaviorStoreUnavailable, CatalogUnavailable
from yige_radio.models import Track
from yige_radio.scorer import PreferenceScorer
from yige_radio.stores import BehaviorStore, CatalogStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Share of a batch reserved for tracks by preferred artists.
PREFERRED_SHARE = 0.7
# Popular tracks are over-fetched so the dedup filter still leaves enough.
POPULAR_OVERFETCH = 2


def shuffle(items: list[T], rng: random.Random | None = None) -> list[T]:
    """Return a uniformly shuffled copy of ``items`` (Fisher-Yates)."""
    rng = rng or random
    shuffled = list(items)
    for i in range(len(shuffled) - 1, 0, -1):
        j = rng.randint(0, i)
        shuffled[i], shuffled[j] = shuffled[j], shuffled[i]
    return shuffled


@dataclass(slots=True)
class CandidateBatch:
    tracks: list[Track] = field(default_factory=list)
    preferred_artist_ids: list[str] = field(default_factory=list)
    blacklisted_artist_ids: list[str] = field(default_factory=list)

    @property
    def has_preferences(self) -> bool:
        return bool(self.preferred_artist_ids)


class CandidateAssembler:
    def __init__(
        self,
        catalog: CatalogStore,
        behavior_store: BehaviorStore,
        scorer: PreferenceScorer,
        preferred_share: float = PREFERRED_SHARE,
        rng: random.Random | None = None,
    ) -> None:
        self.catalog = catalog
        self.behavior_store = behavior_store
        self.scorer = scorer
        self.preferred_share = preferred_share
        self.rng = rng or random.Random()

    def _catalog_query(self, query: Callable[..., list[Track]], *args) -> list[Track]:
        try:
            return list(query(*args))
        except CatalogUnavailable:
            raise
        except Exception as exc:
            raise CatalogUnavailable(f"Catalog query failed: {exc}") from exc

    def _blacklisted(self, user_id: str) -> list[str]:
        try:
            return list(self.behavior_store.blacklisted_artist_ids(user_id))
        except BehaviorStoreUnavailable:
            raise
        except Exception as exc:
            raise BehaviorStoreUnavailable(f"Could not read blacklist for {user_id!r}: {exc}") from exc

    def assemble_batch(self, user_id: str, count: int) -> CandidateBatch:
        """Build one candidate batch together with the inputs that shaped it."""
        excluded = self._blacklisted(user_id)
        batch = CandidateBatch(blacklisted_artist_ids=excluded)
        if count <= 0:
            return batch

        preferred_artists = self.scorer.score(user_id)
        batch.preferred_artist_ids = preferred_artists

        blocked = set(excluded)
        preferred: list[Track] = []
        if preferred_artists:
            fetched = self._catalog_query(
                self.catalog.tracks_by_artists,
                preferred_artists,
                excluded,
                math.floor(count * self.preferred_share),
            )
            preferred = [t for t in fetched if t.artist_id not in blocked]

        popular: list[Track] = []
        remaining = count - len(preferred)
        if remaining > 0:
            fetched = self._catalog_query(self.catalog.top_tracks, excluded, remaining * POPULAR_OVERFETCH)
            chosen = {t.id for t in preferred}
            popular = [t for t in fetched if t.id not in chosen and t.artist_id not in blocked][:remaining]

        batch.tracks = shuffle(preferred + popular, self.rng)
        logger.info(
            "Assembled %d tracks for %s (%d preferred, %d popular, %d artists blacklisted)",
            len(batch.tracks), user_id, len(preferred), len(popular), len(excluded),
        )
        return batch

    def assemble(self, user_id: str, count: int) -> list[Track]:
        return self.assemble_batch(user_id, count).tracks

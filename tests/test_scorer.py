import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

from yige_radio.errors import BehaviorStoreUnavailable
from yige_radio.models import BehaviorEvent
from yige_radio.scorer import PreferenceScorer
from yige_radio.stores import InMemoryBehaviorStore

_T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _store_with(*events: tuple[str, str, int]) -> InMemoryBehaviorStore:
    """Build a store from (action, artist_id, minute offset) triples."""
    store = InMemoryBehaviorStore()
    for action, artist_id, minutes in events:
        store.append(BehaviorEvent("u1", f"track-{artist_id}", artist_id, action,
                                   timestamp=_T0 + timedelta(minutes=minutes)))
    return store


class PreferenceScorerTests(unittest.TestCase):
    def test_weights_favorite_lock_and_complete(self) -> None:
        store = _store_with(("favorite", "A", 0), ("lock", "B", 1), ("complete", "A", 2))
        scorer = PreferenceScorer(store)

        prefs = scorer.preferences("u1")

        self.assertEqual([(p.artist_id, p.weight) for p in prefs], [("A", 4), ("B", 2)])
        self.assertEqual(scorer.score("u1"), ["A", "B"])

    def test_ignores_non_preference_actions(self) -> None:
        store = _store_with(("play", "A", 0), ("skip", "B", 1), ("blacklist", "C", 2), ("unfavorite", "D", 3))
        self.assertEqual(PreferenceScorer(store).score("u1"), [])

    def test_returns_at_most_five_artists_in_non_increasing_weight(self) -> None:
        events = []
        for i, artist in enumerate("ABCDEFG"):
            # artist A gets 7 completes, B 6, ... G 1
            for j in range(7 - i):
                events.append(("complete", artist, i * 10 + j))
        scorer = PreferenceScorer(_store_with(*events), window_size=100)

        prefs = scorer.preferences("u1")[:5]
        top = scorer.score("u1")

        self.assertEqual(len(top), 5)
        self.assertEqual(top, ["A", "B", "C", "D", "E"])
        weights = [p.weight for p in prefs]
        self.assertEqual(weights, sorted(weights, reverse=True))

    def test_equal_weights_prefer_most_recent_artist(self) -> None:
        store = _store_with(("complete", "A", 0), ("complete", "B", 5))
        self.assertEqual(PreferenceScorer(store).score("u1"), ["B", "A"])

    def test_only_recent_window_counts(self) -> None:
        events = [("favorite", "OLD", i) for i in range(10)]
        events += [("complete", "NEW", 100 + i) for i in range(50)]
        scorer = PreferenceScorer(_store_with(*events))

        self.assertEqual(scorer.score("u1"), ["NEW"])
        # 10 favorites weigh 30, 50 completes weigh 50
        self.assertEqual(scorer.score("u1", window_size=60), ["NEW", "OLD"])

    def test_store_failure_raises_behavior_store_unavailable(self) -> None:
        store = MagicMock()
        store.recent_events.side_effect = ConnectionError("db down")

        with self.assertRaises(BehaviorStoreUnavailable):
            PreferenceScorer(store).score("u1")


if __name__ == "__main__":
    unittest.main()

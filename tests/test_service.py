import tempfile
import unittest
from pathlib import Path
from unittest.mock import MagicMock

from yige_radio.config import Settings
from yige_radio.errors import BehaviorStoreUnavailable, NotFound
from yige_radio.resolver import CatalogStreamResolver
from yige_radio.service import RadioService
from yige_radio.stores import InMemoryBehaviorStore, InMemoryCatalogStore, JsonlBehaviorStore

SAMPLE_CATALOG = Path(__file__).resolve().parents[1] / "data" / "sample_catalog.json"


class RadioServiceTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.tmpdir = tempfile.TemporaryDirectory()
        self.log_path = Path(self.tmpdir.name) / "behavior.jsonl"
        self.settings = Settings(
            catalog_path=str(SAMPLE_CATALOG),
            behavior_log_path=str(self.log_path),
            retry_delay_seconds=30.0,
        )
        self.service = RadioService.from_settings(self.settings)

    async def asyncTearDown(self) -> None:
        await self.service.close_all()
        self.tmpdir.cleanup()

    def test_from_settings_wires_file_backed_stores(self) -> None:
        self.assertIsInstance(self.service.catalog, InMemoryCatalogStore)
        self.assertIsInstance(self.service.behavior_store, JsonlBehaviorStore)
        self.assertIsInstance(self.service.resolver, CatalogStreamResolver)
        self.assertEqual(self.service.catalog.get_track("t-001").artist_name, "王菲")

    def test_unknown_resolver_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            RadioService.from_settings(Settings(stream_resolver="youtube"))

    async def test_events_survive_a_restart(self) -> None:
        await self.service.record_event("u1", "t-003", "a-jay", "favorite")
        await self.service.record_event("u1", "t-006", "a-eason", "blacklist")

        reopened = RadioService.from_settings(self.settings)

        self.assertEqual([t.id for t in reopened.favorites("u1")], ["t-003"])
        self.assertEqual([e.action for e in reopened.history("u1")], ["blacklist", "favorite"])
        recs = reopened.get_recommendations("u1", 12)
        self.assertTrue(recs.has_preferences)
        self.assertEqual(recs.blacklisted_artist_count, 1)
        self.assertFalse(any(t.artist_id == "a-eason" for t in recs.tracks))

    async def test_open_session_carries_listener_state(self) -> None:
        await self.service.record_event("u1", "t-001", "a-faye", "blacklist")

        session = await self.service.open_session("u1")

        self.assertIs(self.service.get_session(session.session_id), session)
        played = [session.current] + session.pending
        self.assertEqual(len(played), 9)
        self.assertFalse(any(t.artist_id == "a-faye" for t in played))

        await self.service.close_session(session.session_id)
        with self.assertRaises(NotFound):
            self.service.get_session(session.session_id)

    def test_artist_tracks_orders_by_popularity(self) -> None:
        artist, tracks = self.service.artist_tracks("a-jay")
        self.assertEqual(artist.name_en, "Jay Chou")
        self.assertEqual([t.id for t in tracks], ["t-003", "t-004", "t-005"])

        with self.assertRaises(NotFound):
            self.service.artist_tracks("a-nobody")

    def test_search_limits_by_kind(self) -> None:
        tracks, artists = self.service.search("faye", kind="artist")
        self.assertEqual(tracks, [])
        self.assertEqual([a.id for a in artists], ["a-faye"])

    def test_history_store_failure(self) -> None:
        store = MagicMock()
        store.recent_events.side_effect = OSError("unreadable")
        service = RadioService(InMemoryCatalogStore(), store)

        with self.assertRaises(BehaviorStoreUnavailable):
            service.history("u1")

    def test_missing_catalog_path_starts_empty(self) -> None:
        with self.assertLogs("yige_radio.service", level="WARNING"):
            service = RadioService.from_settings(Settings())
        self.assertIsInstance(service.behavior_store, InMemoryBehaviorStore)
        self.assertEqual(service.get_recommendations("u1", 5).tracks, [])


if __name__ == "__main__":
    unittest.main()

import unittest
from unittest.mock import MagicMock, patch

from fastapi import HTTPException

from yige_radio.api import (
    AdvanceRequest,
    EventRequest,
    SelectRequest,
    SessionCreateRequest,
    advance_session,
    apply_session_action,
    blacklist_session_artist,
    get_artist_tracks,
    get_event_history,
    get_favorites,
    get_recommendations,
    get_session,
    open_session,
    record_event,
    search_catalog,
    select_session_track,
)
from yige_radio.config import Settings
from yige_radio.models import Artist, Track
from yige_radio.service import RadioService
from yige_radio.stores import InMemoryBehaviorStore, InMemoryCatalogStore


def _make_catalog() -> InMemoryCatalogStore:
    artists = [Artist("a1", "Faye Wong"), Artist("a2", "Jay Chou"), Artist("a3", "Eason Chan")]
    tracks = [
        Track(f"t{n}", f"Song {n}", f"a{n % 3 + 1}", duration=200 + n, popularity=100 - n,
              stream_url=f"https://cdn/t{n}.mp3")
        for n in range(1, 13)
    ]
    return InMemoryCatalogStore(artists, tracks)


def _make_service(catalog=None) -> RadioService:
    settings = Settings(retry_delay_seconds=30.0)
    return RadioService(catalog or _make_catalog(), InMemoryBehaviorStore(), settings=settings)


class ApiTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.service = _make_service()
        self.patcher = patch("yige_radio.api.get_service", return_value=self.service)
        self.patcher.start()

    async def asyncTearDown(self) -> None:
        await self.service.close_all()
        self.patcher.stop()

    def test_recommendations_without_history_are_popular(self) -> None:
        response = get_recommendations(user_id="u1", count=5)

        self.assertEqual(response.count, 5)
        self.assertEqual(len({t.id for t in response.tracks}), 5)
        metadata = response.metadata.model_dump(by_alias=True)
        self.assertEqual(metadata["userId"], "u1")
        self.assertFalse(metadata["hasPreferences"])
        self.assertEqual(metadata["preferredArtists"], 0)
        self.assertTrue(all(t.audio_url for t in response.tracks))

    def test_recommendations_report_catalog_outage_as_503(self) -> None:
        catalog = MagicMock()
        catalog.top_tracks.side_effect = ConnectionError("catalog down")
        self.patcher.stop()
        self.patcher = patch("yige_radio.api.get_service", return_value=_make_service(catalog))
        self.patcher.start()

        with self.assertRaises(HTTPException) as exc:
            get_recommendations(user_id="u1", count=5)

        self.assertEqual(exc.exception.status_code, 503)

    async def test_record_event_requires_fields(self) -> None:
        request = EventRequest(userId="u1", trackId="t1", action="play")

        with self.assertRaises(HTTPException) as exc:
            await record_event(request)

        self.assertEqual(exc.exception.status_code, 400)
        self.assertIn("artistId", exc.exception.detail)

    async def test_record_event_rejects_unknown_action(self) -> None:
        request = EventRequest(userId="u1", trackId="t1", artistId="a1", action="dislike")

        with self.assertRaises(HTTPException) as exc:
            await record_event(request)

        self.assertEqual(exc.exception.status_code, 400)
        self.assertEqual(self.service.behavior_store.recent_events("u1"), [])

    async def test_favorite_event_is_recorded_and_listed(self) -> None:
        request = EventRequest(userId="u1", trackId="t1", artistId="a2", action="favorite", playDuration=30)

        response = await record_event(request)

        self.assertTrue(response.success)
        self.assertEqual(response.data.action, "favorite")
        self.assertEqual(response.data.play_duration, 30)
        self.assertEqual(response.message, "Action 'favorite' recorded successfully")
        favorites = get_favorites(user_id="u1")
        self.assertEqual([t.id for t in favorites.tracks], ["t1"])

    async def test_recommendations_after_preferences(self) -> None:
        for _ in range(2):
            await record_event(EventRequest(userId="u1", trackId="t3", artistId="a1", action="lock"))

        response = get_recommendations(user_id="u1", count=10)

        self.assertTrue(response.metadata.has_preferences)
        self.assertEqual(response.metadata.preferred_artists, 1)
        self.assertEqual(sum(1 for t in response.tracks if t.artist_id == "a1"), 4)

    async def test_blacklist_event_reaches_open_session(self) -> None:
        session_response = await open_session(SessionCreateRequest(userId="u1"))
        self.assertTrue(any(t.artist_id == "a3" for t in session_response.queue))

        await record_event(EventRequest(userId="u1", trackId="t2", artistId="a3", action="blacklist"))

        session = self.service.get_session(session_response.session_id)
        self.assertFalse(any(t.artist_id == "a3" for t in session.pending))

    async def test_blacklist_event_drops_current_track_of_that_artist(self) -> None:
        session_response = await open_session(SessionCreateRequest(userId="u1"))
        session = self.service.get_session(session_response.session_id)
        playing = session.current

        await record_event(EventRequest(userId="u1", trackId=playing.id, artistId=playing.artist_id,
                                        action="blacklist"))

        self.assertNotEqual(session.current.artist_id, playing.artist_id)
        self.assertFalse(any(t.artist_id == playing.artist_id for t in session.pending))
        actions = [e.action for e in self.service.history("u1")]
        self.assertEqual(actions[:2], ["play", "blacklist"])
        self.assertNotIn("skip", actions)
        latest_play = self.service.history("u1", action="play", limit=1)[0]
        self.assertEqual(latest_play.track_id, session.current.id)

    async def test_session_blacklist_reaches_other_sessions(self) -> None:
        first = await open_session(SessionCreateRequest(userId="u1"))
        second = await open_session(SessionCreateRequest(userId="u1"))
        banned = first.current.artist_id

        response = await blacklist_session_artist(first.session_id)

        self.assertEqual([e.action for e in response.events], ["blacklist", "play"])
        for session_id in (first.session_id, second.session_id):
            session = self.service.get_session(session_id)
            tracks = [session.current] + session.pending
            self.assertFalse(any(t.artist_id == banned for t in tracks))
        self.assertEqual(self.service.behavior_store.blacklisted_artist_ids("u1"), [banned])

    async def test_event_history_requires_user_and_filters(self) -> None:
        with self.assertRaises(HTTPException) as exc:
            get_event_history(user_id=None, action=None, limit=50)
        self.assertEqual(exc.exception.status_code, 400)

        await record_event(EventRequest(userId="u1", trackId="t1", artistId="a2", action="skip"))
        await record_event(EventRequest(userId="u1", trackId="t2", artistId="a3", action="complete"))

        history = get_event_history(user_id="u1", action="skip", limit=50)
        self.assertEqual(history.count, 1)
        self.assertEqual(history.behaviors[0].track_id, "t1")

    def test_search_requires_query(self) -> None:
        with self.assertRaises(HTTPException) as exc:
            search_catalog(q="  ", kind="all", limit=20)
        self.assertEqual(exc.exception.status_code, 400)

    def test_search_by_kind(self) -> None:
        response = search_catalog(q="jay", kind="artist", limit=20)
        self.assertEqual([a.id for a in response.artists], ["a2"])
        self.assertEqual(response.tracks, [])

        response = search_catalog(q="song 1", kind="track", limit=20)
        self.assertIn("t1", [t.id for t in response.tracks])
        self.assertEqual(response.artists, [])

    def test_artist_tracks_and_missing_artist(self) -> None:
        response = get_artist_tracks("a1", limit=50)
        self.assertEqual(response.artist.name, "Faye Wong")
        self.assertEqual(response.count, 4)

        with self.assertRaises(HTTPException) as exc:
            get_artist_tracks("missing", limit=50)
        self.assertEqual(exc.exception.status_code, 404)

    async def test_session_flow(self) -> None:
        created = await open_session(SessionCreateRequest(userId="u1"))
        self.assertEqual(created.state, "playing")
        self.assertIsNotNone(created.current)
        self.assertEqual(len(created.queue), 11)

        favorited = await apply_session_action(created.session_id, "favorite")
        self.assertTrue(favorited.is_favorite)
        self.assertEqual([e.action for e in favorited.events], ["favorite"])

        advanced = await advance_session(created.session_id, AdvanceRequest(completed=True, playDuration=201))
        self.assertEqual([e.action for e in advanced.events], ["complete", "play"])
        self.assertEqual(advanced.current.id, created.queue[0].id)

        target = advanced.queue[-1].id
        selected = await select_session_track(created.session_id, SelectRequest(trackId=target))
        self.assertEqual(selected.current.id, target)

        fetched = get_session(created.session_id)
        self.assertEqual(fetched.current.id, target)

    async def test_session_errors(self) -> None:
        created = await open_session(SessionCreateRequest(userId="u1"))

        with self.assertRaises(HTTPException) as exc:
            await apply_session_action(created.session_id, "rewind")
        self.assertEqual(exc.exception.status_code, 404)

        with self.assertRaises(HTTPException) as exc:
            await apply_session_action("session_missing", "skip")
        self.assertEqual(exc.exception.status_code, 404)

        with self.assertRaises(HTTPException) as exc:
            await select_session_track(created.session_id, SelectRequest(trackId="not-queued"))
        self.assertEqual(exc.exception.status_code, 400)


if __name__ == "__main__":
    unittest.main()

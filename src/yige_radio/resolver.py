from __future__ import annotations

import os
import warnings
from typing import Protocol

import spotipy
from requests.exceptions import HTTPError
from spotipy.exceptions import SpotifyException
from spotipy.oauth2 import SpotifyClientCredentials

from yige_radio.errors import StreamResolutionFailure
from yige_radio.stores import CatalogStore


class StreamResolver(Protocol):
    def resolve_stream_url(self, title: str, artist_name: str) -> str | None:
        """Return a playable URL, or None when nothing matches."""


class CatalogStreamResolver:
    """Resolve against the stream locators stored in the catalog itself."""

    _SEARCH_LIMIT = 20

    def __init__(self, catalog: CatalogStore) -> None:
        self.catalog = catalog

    def resolve_stream_url(self, title: str, artist_name: str) -> str | None:
        wanted_artist = artist_name.strip().lower()
        for track in self.catalog.search_tracks(title, self._SEARCH_LIMIT):
            if track.title.lower() != title.strip().lower():
                continue
            if wanted_artist and track.artist_name.lower() != wanted_artist:
                continue
            if track.stream_url:
                return track.stream_url
        return None


class SpotifyStreamResolver:
    """Look tracks up on Spotify and hand back their preview stream."""

    def __init__(self, market: str = "US") -> None:
        self._validate_credentials()
        self.market = market
        self.client = spotipy.Spotify(auth_manager=SpotifyClientCredentials())

    @staticmethod
    def _validate_credentials() -> None:
        missing = [name for name in ("SPOTIPY_CLIENT_ID", "SPOTIPY_CLIENT_SECRET") if not os.getenv(name)]
        if missing:
            missing_list = ", ".join(missing)
            raise ValueError(
                f"Missing Spotify credentials: {missing_list}. "
                "Set them in environment variables or local .env file."
            )

    def resolve_stream_url(self, title: str, artist_name: str) -> str | None:
        query = f"track:{title} artist:{artist_name}" if artist_name else f"track:{title}"
        try:
            page = self.client.search(q=query, type="track", limit=1, offset=0, market=self.market)
        except (HTTPError, SpotifyException) as exc:
            status = exc.response.status_code if isinstance(exc, HTTPError) else exc.http_status
            if status in (400, 403, 404):
                warnings.warn(
                    f"Spotify search returned {status} for {query!r}. Treating the track as not found.",
                    RuntimeWarning,
                    stacklevel=2,
                )
                return None
            raise StreamResolutionFailure(f"Spotify search failed with status {status}") from exc

        items = page.get("tracks", {}).get("items", [])
        if not items:
            return None
        return items[0].get("preview_url") or None

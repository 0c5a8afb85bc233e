"""FastAPI web server for Yige Radio."""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from yige_radio.config import Settings, configure_logging, load_local_env_file
from yige_radio.errors import EventRecordFailure, NotFound, RadioError, UpstreamUnavailable, ValidationError
from yige_radio.models import Artist, BehaviorEvent, Track
from yige_radio.service import RadioService
from yige_radio.session import QueueSession, TransitionResult

_service: RadioService | None = None


def get_service() -> RadioService:
    """Build the process-wide service from the environment on first use."""
    global _service
    if _service is None:
        load_local_env_file()
        settings = Settings.from_env()
        configure_logging(settings.log_level)
        _service = RadioService.from_settings(settings)
    return _service


@asynccontextmanager
async def lifespan(_app: FastAPI):
    yield
    if _service is not None:
        await _service.close_all()


app = FastAPI(title="Yige Radio", lifespan=lifespan)

# Enable CORS for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Request/Response models
class ArtistInfo(BaseModel):
    id: str
    name: str
    name_en: str | None = None

    @classmethod
    def from_artist(cls, artist: Artist) -> ArtistInfo:
        return cls(id=artist.id, name=artist.name, name_en=artist.name_en)


class TrackInfo(BaseModel):
    """Track as the player consumes it."""
    id: str
    title: str
    title_en: str | None = None
    artist_id: str
    artist: ArtistInfo | None = None
    album: str | None = None
    duration: int = 0
    audio_url: str | None = None
    cover_url: str | None = None
    lyrics: str | None = None
    tags: list[str] = []
    popularity: float = 0

    @classmethod
    def from_track(cls, track: Track) -> TrackInfo:
        return cls(
            id=track.id,
            title=track.title,
            title_en=track.title_en,
            artist_id=track.artist_id,
            artist=ArtistInfo.from_artist(track.artist) if track.artist else None,
            album=track.album,
            duration=track.duration,
            audio_url=track.stream_url,
            cover_url=track.cover_url,
            lyrics=track.lyrics,
            tags=list(track.tags),
            popularity=track.popularity,
        )


class EventInfo(BaseModel):
    id: int | None = None
    user_id: str
    track_id: str
    artist_id: str
    action: str
    play_duration: int | None = None
    session_id: str | None = None
    metadata: dict[str, Any] | None = None
    timestamp: str

    @classmethod
    def from_event(cls, event: BehaviorEvent) -> EventInfo:
        return cls.model_validate(event.to_dict())


class RecommendationMetadata(CamelModel):
    user_id: str
    has_preferences: bool
    preferred_artists: int
    blacklisted_artists: int


class RecommendationResponse(BaseModel):
    success: bool = True
    count: int
    tracks: list[TrackInfo]
    metadata: RecommendationMetadata


class EventRequest(CamelModel):
    """Fields are optional here so missing ones are reported by the recorder."""
    user_id: str | None = None
    track_id: str | None = None
    artist_id: str | None = None
    action: str | None = None
    play_duration: int | None = Field(default=None, ge=0)
    session_id: str | None = None
    metadata: dict[str, Any] | None = None


class EventResponse(BaseModel):
    success: bool = True
    data: EventInfo
    message: str


class HistoryResponse(BaseModel):
    success: bool = True
    count: int
    behaviors: list[EventInfo]


class SearchResponse(BaseModel):
    success: bool = True
    query: str
    tracks: list[TrackInfo]
    artists: list[ArtistInfo]


class ArtistTracksResponse(BaseModel):
    success: bool = True
    artist: ArtistInfo
    tracks: list[TrackInfo]
    count: int


class FavoritesResponse(BaseModel):
    success: bool = True
    count: int
    tracks: list[TrackInfo]


class SessionCreateRequest(CamelModel):
    user_id: str = "anonymous"


class AdvanceRequest(CamelModel):
    completed: bool = False
    play_duration: int | None = Field(default=None, ge=0)


class SelectRequest(CamelModel):
    track_id: str


class SessionResponse(CamelModel):
    success: bool = True
    session_id: str
    user_id: str
    state: str
    current: TrackInfo | None = None
    queue: list[TrackInfo] = []
    is_favorite: bool = False
    replenishing: bool = False
    stream_url: str | None = None
    events: list[EventInfo] = []
    warnings: list[str] = []


def _http_error(exc: RadioError) -> HTTPException:
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, NotFound):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, UpstreamUnavailable):
        return HTTPException(status_code=503, detail=str(exc))
    if isinstance(exc, EventRecordFailure):
        return HTTPException(status_code=500, detail="Failed to record event")
    return HTTPException(status_code=500, detail=f"Error: {exc}")


def _session_response(session: QueueSession, result: TransitionResult | None = None) -> SessionResponse:
    snapshot = session.snapshot()
    return SessionResponse(
        session_id=snapshot.session_id,
        user_id=snapshot.user_id,
        state=snapshot.state,
        current=TrackInfo.from_track(snapshot.current) if snapshot.current else None,
        queue=[TrackInfo.from_track(t) for t in snapshot.pending],
        is_favorite=snapshot.is_favorite,
        replenishing=snapshot.replenishing,
        stream_url=result.stream_url if result else None,
        events=[EventInfo.from_event(e) for e in result.events] if result else [],
        warnings=list(result.errors) if result else [],
    )


@app.get("/")
def serve_index():
    return {"message": "Yige Radio API is running. Use /api/reco for recommendations."}


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "ok"}


@app.get("/api/reco", response_model=RecommendationResponse)
def get_recommendations(
    user_id: str = Query(default="anonymous", alias="userId"),
    count: int = Query(default=20, ge=1, le=100),
):
    """Recommend a shuffled batch from the listener's behavior history."""
    try:
        recs = get_service().get_recommendations(user_id, count)
    except RadioError as exc:
        raise _http_error(exc)

    return RecommendationResponse(
        count=len(recs.tracks),
        tracks=[TrackInfo.from_track(t) for t in recs.tracks],
        metadata=RecommendationMetadata(
            user_id=user_id,
            has_preferences=recs.has_preferences,
            preferred_artists=recs.preferred_artist_count,
            blacklisted_artists=recs.blacklisted_artist_count,
        ),
    )


@app.post("/api/event", response_model=EventResponse)
async def record_event(request: EventRequest):
    try:
        event = await get_service().record_event(
            request.user_id,
            request.track_id,
            request.artist_id,
            request.action,
            play_duration=request.play_duration,
            session_id=request.session_id,
            metadata=request.metadata,
        )
    except RadioError as exc:
        raise _http_error(exc)

    return EventResponse(
        data=EventInfo.from_event(event),
        message=f"Action '{event.action}' recorded successfully",
    )


@app.get("/api/event", response_model=HistoryResponse)
def get_event_history(
    user_id: str | None = Query(default=None, alias="userId"),
    action: str | None = None,
    limit: int = Query(default=50, ge=1, le=500),
):
    if not user_id:
        raise HTTPException(status_code=400, detail="userId is required")
    try:
        events = get_service().history(user_id, action=action, limit=limit)
    except RadioError as exc:
        raise _http_error(exc)
    return HistoryResponse(count=len(events), behaviors=[EventInfo.from_event(e) for e in events])


@app.get("/api/search", response_model=SearchResponse)
def search_catalog(
    q: str = "",
    kind: str = Query(default="all", alias="type", pattern="^(all|track|artist)$"),
    limit: int = Query(default=20, ge=1, le=100),
):
    if not q.strip():
        raise HTTPException(status_code=400, detail="Search query is required")
    try:
        tracks, artists = get_service().search(q, kind=kind, limit=limit)
    except RadioError as exc:
        raise _http_error(exc)
    return SearchResponse(
        query=q,
        tracks=[TrackInfo.from_track(t) for t in tracks],
        artists=[ArtistInfo.from_artist(a) for a in artists],
    )


@app.get("/api/artist/{artist_id}", response_model=ArtistTracksResponse)
def get_artist_tracks(artist_id: str, limit: int = Query(default=50, ge=1, le=500)):
    try:
        artist, tracks = get_service().artist_tracks(artist_id, limit=limit)
    except RadioError as exc:
        raise _http_error(exc)
    return ArtistTracksResponse(
        artist=ArtistInfo.from_artist(artist),
        tracks=[TrackInfo.from_track(t) for t in tracks],
        count=len(tracks),
    )


@app.get("/api/favorites", response_model=FavoritesResponse)
def get_favorites(user_id: str = Query(alias="userId")):
    try:
        tracks = get_service().favorites(user_id)
    except RadioError as exc:
        raise _http_error(exc)
    return FavoritesResponse(count=len(tracks), tracks=[TrackInfo.from_track(t) for t in tracks])


@app.post("/api/session", response_model=SessionResponse)
async def open_session(request: SessionCreateRequest):
    try:
        session = await get_service().open_session(request.user_id)
    except RadioError as exc:
        raise _http_error(exc)
    return _session_response(session)


@app.get("/api/session/{session_id}", response_model=SessionResponse)
def get_session(session_id: str):
    try:
        session = get_service().get_session(session_id)
    except RadioError as exc:
        raise _http_error(exc)
    return _session_response(session)


@app.delete("/api/session/{session_id}")
async def close_session(session_id: str):
    try:
        await get_service().close_session(session_id)
    except RadioError as exc:
        raise _http_error(exc)
    return {"success": True}


@app.post("/api/session/{session_id}/advance", response_model=SessionResponse)
async def advance_session(session_id: str, request: AdvanceRequest | None = None):
    request = request or AdvanceRequest()
    try:
        session = get_service().get_session(session_id)
        result = await session.advance(completed=request.completed, play_duration=request.play_duration)
    except RadioError as exc:
        raise _http_error(exc)
    return _session_response(session, result)


@app.post("/api/session/{session_id}/select", response_model=SessionResponse)
async def select_session_track(session_id: str, request: SelectRequest):
    try:
        session = get_service().get_session(session_id)
        result = await session.select_track(request.track_id)
    except RadioError as exc:
        raise _http_error(exc)
    return _session_response(session, result)


@app.post("/api/session/{session_id}/blacklist", response_model=SessionResponse)
async def blacklist_session_artist(session_id: str):
    """Ban the current artist here and in the listener's other open sessions."""
    try:
        service = get_service()
        session = service.get_session(session_id)
        result = await service.blacklist_current(session_id)
    except RadioError as exc:
        raise _http_error(exc)
    return _session_response(session, result)


_SESSION_ACTIONS = {
    "skip": QueueSession.skip,
    "lock": QueueSession.lock,
    "favorite": QueueSession.favorite,
    "unfavorite": QueueSession.unfavorite,
    "pause": QueueSession.pause,
    "resume": QueueSession.resume,
    "stream": QueueSession.resolve_stream,
}


@app.post("/api/session/{session_id}/{action}", response_model=SessionResponse)
async def apply_session_action(session_id: str, action: str):
    transition = _SESSION_ACTIONS.get(action)
    if transition is None:
        raise HTTPException(status_code=404, detail=f"Unknown session action '{action}'")
    try:
        session = get_service().get_session(session_id)
        result = await transition(session)
    except RadioError as exc:
        raise _http_error(exc)
    return _session_response(session, result)

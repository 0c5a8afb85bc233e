"""Per-listener playback session.

A QueueSession owns the pending queue and the current track. Every
transition runs under the session lock, so transitions on one session are
queued rather than interleaved. Replenishment fetches run as background
tasks and only touch the queue again under the same lock, where the
blacklist and dedup checks are re-applied.

Behavior records are written after the lock is released. Each batch of
records is chained behind the previous one, so the log keeps the order in
which transitions were applied.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from collections import deque
from dataclasses import dataclass, field
from typing import Iterable

from yige_radio.assembler import CandidateAssembler
from yige_radio.errors import (
    EventRecordFailure,
    MissingField,
    NothingPlaying,
    StreamResolutionFailure,
    TrackNotQueued,
    UpstreamUnavailable,
)
from yige_radio.models import BLACKLIST, COMPLETE, FAVORITE, LOCK, PLAY, SKIP, UNFAVORITE, BehaviorEvent, Track
from yige_radio.recorder import EventRecorder
from yige_radio.resolver import StreamResolver

logger = logging.getLogger(__name__)

EMPTY = "empty"
LOADING = "loading"
PLAYING = "playing"
IDLE = "idle"

SEED_BATCH_SIZE = 30
REPLENISH_BATCH_SIZE = 30
LOW_WATER_MARK = 2
RETRY_DELAY_SECONDS = 5.0


@dataclass(slots=True)
class TransitionResult:
    state: str = LOADING
    current: Track | None = None
    pending_count: int = 0
    replenishing: bool = False
    stream_url: str | None = None
    excluded_artist_id: str | None = None
    events: list[BehaviorEvent] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


@dataclass(slots=True)
class SessionSnapshot:
    session_id: str
    user_id: str
    state: str
    current: Track | None
    pending: list[Track]
    is_favorite: bool
    replenishing: bool


# (action, track, play_duration, metadata) waiting to be written
_PendingRecord = tuple[str, Track, int | None, dict | None]


class QueueSession:
    def __init__(
        self,
        user_id: str,
        assembler: CandidateAssembler,
        recorder: EventRecorder,
        *,
        session_id: str | None = None,
        resolver: StreamResolver | None = None,
        seed_batch_size: int = SEED_BATCH_SIZE,
        replenish_batch_size: int = REPLENISH_BATCH_SIZE,
        low_water_mark: int = LOW_WATER_MARK,
        retry_delay: float = RETRY_DELAY_SECONDS,
        favorite_track_ids: Iterable[str] = (),
        blacklisted_artist_ids: Iterable[str] = (),
    ) -> None:
        if not user_id:
            raise MissingField(["userId"])
        self.user_id = user_id
        self.session_id = session_id or f"session_{uuid.uuid4().hex}"
        self.assembler = assembler
        self.recorder = recorder
        self.resolver = resolver
        self.seed_batch_size = seed_batch_size
        self.replenish_batch_size = replenish_batch_size
        self.low_water_mark = low_water_mark
        self.retry_delay = retry_delay

        self._state = LOADING
        self._current: Track | None = None
        self._pending: deque[Track] = deque()
        self._favorites = set(favorite_track_ids)
        self._blacklist = set(blacklisted_artist_ids)
        self._lock = asyncio.Lock()
        self._replenish_task: asyncio.Task | None = None
        self._write_task: asyncio.Task | None = None
        self._closed = False

    # -- read side ---------------------------------------------------------

    @property
    def state(self) -> str:
        return self._state

    @property
    def current(self) -> Track | None:
        return self._current

    @property
    def pending(self) -> list[Track]:
        return list(self._pending)

    @property
    def replenishing(self) -> bool:
        return self._replenish_task is not None and not self._replenish_task.done()

    @property
    def closed(self) -> bool:
        return self._closed

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            session_id=self.session_id,
            user_id=self.user_id,
            state=self._state,
            current=self._current,
            pending=list(self._pending),
            is_favorite=self._current is not None and self._current.id in self._favorites,
            replenishing=self.replenishing,
        )

    # -- transitions -------------------------------------------------------

    async def start(self) -> TransitionResult:
        """Load the seed batch and start playing its first track."""
        async with self._lock:
            result = TransitionResult()
            self._state = LOADING
            try:
                batch = await asyncio.to_thread(self.assembler.assemble, self.user_id, self.seed_batch_size)
            except UpstreamUnavailable as exc:
                logger.warning("Seed fetch for %s failed: %s", self.session_id, exc)
                result.errors.append(str(exc))
                batch = []
            self._merge(batch)
            records: list[_PendingRecord] = []
            started = self._promote_next()
            if started is not None:
                records.append((PLAY, started, None, None))
            else:
                self._ensure_replenishing(delay=self.retry_delay)
            writes = self._finish(result, records)
        return await self._settle(result, writes)

    async def advance(self, completed: bool = False, play_duration: int | None = None) -> TransitionResult:
        """Move to the next pending track.

        ``completed`` records the outgoing track as ``complete`` (natural end),
        otherwise as ``skip``.
        """
        async with self._lock:
            finished = self._current
            started = self._promote_next()
            records: list[_PendingRecord] = []
            if finished is not None:
                records.append((COMPLETE if completed else SKIP, finished, play_duration, None))
            if started is not None:
                records.append((PLAY, started, None, None))
            result = TransitionResult()
            writes = self._finish(result, records)
        return await self._settle(result, writes)

    async def skip(self, play_duration: int | None = None) -> TransitionResult:
        return await self.advance(completed=False, play_duration=play_duration)

    async def complete(self, play_duration: int | None = None) -> TransitionResult:
        return await self.advance(completed=True, play_duration=play_duration)

    async def select_track(self, track_id: str) -> TransitionResult:
        """Jump to a pending track; everything queued before it is dropped."""
        async with self._lock:
            position = next((i for i, t in enumerate(self._pending) if t.id == track_id), None)
            if position is None:
                raise TrackNotQueued(track_id)
            for _ in range(position):
                self._pending.popleft()
            started = self._promote_next()
            result = TransitionResult()
            writes = self._finish(result, [(PLAY, started, None, None)])
        return await self._settle(result, writes)

    async def lock(self) -> TransitionResult:
        async with self._lock:
            track = self._require_current()
            result = TransitionResult()
            writes = self._finish(result, [(LOCK, track, None, None)])
        return await self._settle(result, writes)

    async def favorite(self) -> TransitionResult:
        """Toggle the current track's favorite membership."""
        async with self._lock:
            track = self._require_current()
            if track.id in self._favorites:
                self._favorites.discard(track.id)
                action = UNFAVORITE
            else:
                self._favorites.add(track.id)
                action = FAVORITE
            result = TransitionResult()
            writes = self._finish(result, [(action, track, None, None)])
        return await self._settle(result, writes)

    async def unfavorite(self) -> TransitionResult:
        async with self._lock:
            track = self._require_current()
            self._favorites.discard(track.id)
            result = TransitionResult()
            writes = self._finish(result, [(UNFAVORITE, track, None, None)])
        return await self._settle(result, writes)

    async def blacklist(self) -> TransitionResult:
        """Ban the current track's artist and move on.

        The outgoing track gets no complete/skip record; the blacklist event
        is its last signal. Queued tracks by the same artist are dropped
        before the next track is picked.
        """
        async with self._lock:
            track = self._require_current()
            self._blacklist.add(track.artist_id)
            self._purge_artist(track.artist_id)
            started = self._promote_next()
            records: list[_PendingRecord] = [(BLACKLIST, track, None, None)]
            if started is not None:
                records.append((PLAY, started, None, None))
            result = TransitionResult(excluded_artist_id=track.artist_id)
            writes = self._finish(result, records)
        return await self._settle(result, writes)

    async def exclude_artist(self, artist_id: str) -> TransitionResult:
        """Apply a blacklist that was recorded outside this session.

        A current track by the artist is dropped without a skip record and
        the next pending track takes its place.
        """
        async with self._lock:
            self._blacklist.add(artist_id)
            self._purge_artist(artist_id)
            records: list[_PendingRecord] = []
            if self._current is not None and self._current.artist_id == artist_id:
                started = self._promote_next()
                if started is not None:
                    records.append((PLAY, started, None, None))
            result = TransitionResult(excluded_artist_id=artist_id)
            writes = self._finish(result, records)
        return await self._settle(result, writes)

    async def pause(self) -> TransitionResult:
        async with self._lock:
            if self._state == PLAYING:
                self._state = IDLE
            result = TransitionResult()
            writes = self._finish(result, [])
        return await self._settle(result, writes)

    async def resume(self) -> TransitionResult:
        async with self._lock:
            if self._state == IDLE:
                self._state = PLAYING
            result = TransitionResult()
            writes = self._finish(result, [])
        return await self._settle(result, writes)

    async def resolve_stream(self) -> TransitionResult:
        """Find a stream for the current track, skipping it when none exists."""
        track = self._current
        url = None
        if track is not None:
            if self.resolver is None:
                url = track.stream_url
            else:
                try:
                    url = await asyncio.to_thread(self.resolver.resolve_stream_url, track.title, track.artist_name)
                except StreamResolutionFailure as exc:
                    logger.warning("Stream resolution for %s failed: %s", track.id, exc)

        async with self._lock:
            result = TransitionResult()
            records: list[_PendingRecord] = []
            # the listener may have moved on while we were resolving
            still_current = track is not None and self._current is not None and self._current.id == track.id
            if still_current and url:
                result.stream_url = url
            elif still_current:
                logger.info("No stream for %s (%s); skipping", track.id, track.title)
                started = self._promote_next()
                records.append((SKIP, track, None, {"reason": "stream_not_found"}))
                if started is not None:
                    records.append((PLAY, started, None, None))
            writes = self._finish(result, records)
        return await self._settle(result, writes)

    async def close(self) -> None:
        """Tear the session down; late replenishment results are dropped.

        Records already handed to the writer are still flushed.
        """
        self._closed = True
        task = self._replenish_task
        self._replenish_task = None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        if self._write_task is not None:
            await asyncio.wait({self._write_task})

    async def wait_for_replenishment(self) -> None:
        task = self._replenish_task
        if task is not None:
            await asyncio.shield(task)

    # -- internals ---------------------------------------------------------

    def _require_current(self) -> Track:
        if self._current is None:
            raise NothingPlaying()
        return self._current

    def _promote_next(self) -> Track | None:
        if self._pending:
            self._current = self._pending.popleft()
            self._state = PLAYING
        else:
            self._current = None
            self._state = EMPTY
        return self._current

    def _purge_artist(self, artist_id: str) -> None:
        self._pending = deque(t for t in self._pending if t.artist_id != artist_id)

    def _merge(self, tracks: Iterable[Track]) -> int:
        seen = {t.id for t in self._pending}
        if self._current is not None:
            seen.add(self._current.id)
        added = 0
        for track in tracks:
            if track.artist_id in self._blacklist or track.id in seen:
                continue
            self._pending.append(track)
            seen.add(track.id)
            added += 1
        return added

    def _ensure_replenishing(self, delay: float = 0) -> None:
        if self._closed or self.replenishing:
            return
        self._replenish_task = asyncio.create_task(self._replenish(delay))

    async def _replenish(self, delay: float) -> None:
        if delay:
            await asyncio.sleep(delay)
        try:
            batch = await asyncio.to_thread(self.assembler.assemble, self.user_id, self.replenish_batch_size)
        except UpstreamUnavailable as exc:
            logger.warning("Replenishment for %s failed: %s", self.session_id, exc)
            batch = None

        async with self._lock:
            if self._closed:
                return
            self._replenish_task = None
            records: list[_PendingRecord] = []
            if batch:
                added = self._merge(batch)
                logger.debug("Merged %d of %d fetched tracks into %s", added, len(batch), self.session_id)
                if self._current is None:
                    started = self._promote_next()
                    if started is not None:
                        records.append((PLAY, started, None, None))
            if self._state == EMPTY:
                self._ensure_replenishing(delay=self.retry_delay)
            writes = self._schedule_writes(records)
        if writes is not None:
            await asyncio.shield(writes)

    def _after_transition(self) -> None:
        if len(self._pending) <= self.low_water_mark:
            self._ensure_replenishing()

    def _finish(self, result: TransitionResult, records: list[_PendingRecord]) -> asyncio.Task | None:
        """Fill in the post-transition state and queue the records. Call under the lock."""
        self._after_transition()
        result.state = self._state
        result.current = self._current
        result.pending_count = len(self._pending)
        result.replenishing = self.replenishing
        return self._schedule_writes(records)

    async def _settle(self, result: TransitionResult, writes: asyncio.Task | None) -> TransitionResult:
        if writes is not None:
            events, errors = await asyncio.shield(writes)
            result.events.extend(events)
            result.errors.extend(errors)
        return result

    def _schedule_writes(self, records: list[_PendingRecord]) -> asyncio.Task | None:
        if not records:
            return None
        task = asyncio.create_task(self._write_records(self._write_task, records))
        self._write_task = task
        return task

    async def _write_records(
        self, previous: asyncio.Task | None, records: list[_PendingRecord]
    ) -> tuple[list[BehaviorEvent], list[str]]:
        if previous is not None:
            await asyncio.wait({previous})
        events: list[BehaviorEvent] = []
        errors: list[str] = []
        for action, track, play_duration, metadata in records:
            try:
                event = await asyncio.to_thread(
                    self.recorder.record,
                    self.user_id,
                    track.id,
                    track.artist_id,
                    action,
                    play_duration,
                    self.session_id,
                    metadata,
                )
            except EventRecordFailure as exc:
                logger.warning("Session %s kept its %s transition despite: %s", self.session_id, action, exc)
                errors.append(str(exc))
                continue
            events.append(event)
        return events, errors

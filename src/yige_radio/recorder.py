from __future__ import annotations

import logging
from typing import Any

from yige_radio.errors import EventRecordFailure, InvalidAction, MissingField
from yige_radio.models import BLACKLIST, FAVORITE, UNFAVORITE, VALID_ACTIONS, BehaviorEvent
from yige_radio.stores import BehaviorStore

logger = logging.getLogger(__name__)


class EventRecorder:
    def __init__(self, behavior_store: BehaviorStore) -> None:
        self.behavior_store = behavior_store

    @staticmethod
    def validate(user_id: Any, track_id: Any, artist_id: Any, action: Any) -> None:
        missing = [
            name
            for name, value in (
                ("userId", user_id),
                ("trackId", track_id),
                ("artistId", artist_id),
                ("action", action),
            )
            if not value
        ]
        if missing:
            raise MissingField(missing)
        if action not in VALID_ACTIONS:
            raise InvalidAction(action)

    def record(
        self,
        user_id: str,
        track_id: str,
        artist_id: str,
        action: str,
        play_duration: int | None = None,
        session_id: str | None = None,
        metadata: dict | None = None,
    ) -> BehaviorEvent:
        """Validate and persist one action, then update the side tables.

        Favorite/unfavorite toggle the (user, track) favorite pair and
        blacklist inserts the (user, artist) pair.
        """
        self.validate(user_id, track_id, artist_id, action)
        event = BehaviorEvent(
            user_id=user_id,
            track_id=track_id,
            artist_id=artist_id,
            action=action,
            play_duration=play_duration,
            session_id=session_id,
            metadata=metadata,
        )
        try:
            stored = self.behavior_store.append(event)
            if action == FAVORITE:
                self.behavior_store.add_favorite(user_id, track_id)
            elif action == UNFAVORITE:
                self.behavior_store.remove_favorite(user_id, track_id)
            elif action == BLACKLIST:
                self.behavior_store.add_blacklist(user_id, artist_id)
        except Exception as exc:
            logger.error("Failed to record %s for user=%s track=%s: %s", action, user_id, track_id, exc)
            raise EventRecordFailure(f"Failed to record event '{action}': {exc}") from exc

        logger.debug("Recorded %s for user=%s track=%s", action, user_id, track_id)
        return stored

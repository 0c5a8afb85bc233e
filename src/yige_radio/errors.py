"""Error taxonomy shared by the stores, the engine and the HTTP layer."""
from __future__ import annotations


class RadioError(Exception):
    """Base class for every error raised by yige_radio."""


class ValidationError(RadioError, ValueError):
    """A request was rejected before any state was touched."""


class MissingField(ValidationError):
    def __init__(self, fields: list[str]) -> None:
        self.fields = list(fields)
        super().__init__(f"Missing required fields: {', '.join(self.fields)}")


class InvalidAction(ValidationError):
    def __init__(self, action: str) -> None:
        self.action = action
        super().__init__(f"Invalid action type: {action!r}")


class TrackNotQueued(ValidationError):
    def __init__(self, track_id: str) -> None:
        self.track_id = track_id
        super().__init__(f"Track {track_id!r} is not in the pending queue")


class NothingPlaying(ValidationError):
    def __init__(self) -> None:
        super().__init__("No track is currently playing")


class NotFound(RadioError, LookupError):
    pass


class UpstreamUnavailable(RadioError):
    """A read against an external store failed; the caller may retry."""


class CatalogUnavailable(UpstreamUnavailable):
    pass


class BehaviorStoreUnavailable(UpstreamUnavailable):
    pass


class EventRecordFailure(RadioError):
    """Writing a behavior event failed. In-memory transitions are kept."""


class StreamResolutionFailure(RadioError):
    """The stream resolver could not be reached or answered with an error."""

"""Exception taxonomy for the monitoring engine."""
from typing import Optional


class MonitorError(Exception):
    """Base class for all engine errors."""


class FetchError(MonitorError):
    """Manifest retrieval failed (network, timeout or HTTP status)."""

    def __init__(self, message: str, status: Optional[int] = None, media_type: str = "MASTER"):
        super().__init__(message)
        self.message = message
        self.status = status
        self.media_type = media_type


class ParseError(MonitorError):
    """Manifest was malformed or carried no segments."""


class ContinuityError(MonitorError):
    """Media sequence jumped or reset. Recorded in the ledger, never fatal."""


class StalenessError(MonitorError):
    """Media sequence stopped advancing. Recorded in the ledger, never fatal."""


class ProbeError(MonitorError):
    """ffprobe could not inspect a segment."""


class ThumbnailError(MonitorError):
    """ffmpeg could not extract a still from a segment."""


class StreamNotFoundError(MonitorError):
    """The stream record no longer exists in the store."""

    def __init__(self, stream_id: str):
        super().__init__(f"Stream not found: {stream_id}")
        self.stream_id = stream_id


class DuplicateStreamError(MonitorError):
    """A stream with the same URL is already registered."""

    def __init__(self, url: str):
        super().__init__(f"Stream already exists for URL: {url}")
        self.url = url

import logging
import uuid
from typing import List, Optional

from streamwatch.config import settings
from streamwatch.errors import ContinuityError, FetchError, MonitorError, ParseError, StalenessError
from streamwatch.models import ErrorType, MediaType, Stream, StreamError, utcnow

logger = logging.getLogger(__name__)

# Ledger type for each recordable failure class
ERROR_TYPES = {
    FetchError: ErrorType.MANIFEST_RETRIEVAL,
    ParseError: ErrorType.PLAYLIST_CONTENT,
    ContinuityError: ErrorType.MEDIA_SEQUENCE,
    StalenessError: ErrorType.STALE_MANIFEST,
}


class ErrorLedger:
    """
    Bounded, append-only error log kept on each stream record.

    Entries are never reordered or edited. Once the cap is reached the oldest
    entries are dropped so the newest `cap` remain.
    """

    def __init__(self, cap: int = settings.ERROR_LOG_CAP):
        if cap < 1:
            raise ValueError("Error log cap must be positive")
        self.cap = cap

    @staticmethod
    def generate_error_id() -> str:
        return f"eid-{uuid.uuid4().hex}"

    def append(self, stream: Stream, error_type: ErrorType, details: str,
               media_type: str = MediaType.VIDEO.value, code: Optional[int] = None) -> StreamError:
        """
        Append an error to the stream's ledger.

        Args:
            stream: Stream record to mutate
            error_type: One of the closed ErrorType values
            details: Human-readable description
            media_type: MASTER, VIDEO or AUDIO
            code: HTTP status when one is available

        Returns:
            The recorded StreamError
        """
        bandwidth = stream.stats.bandwidth
        error = StreamError(
            id=self.generate_error_id(),
            timestamp=utcnow(),
            error_type=ErrorType(error_type),
            media_type=media_type,
            variant=str(bandwidth) if bandwidth else "unknown",
            details=details,
            code=code
        )

        stream.error_log.append(error)
        if len(stream.error_log) > self.cap:
            del stream.error_log[:len(stream.error_log) - self.cap]

        stream.health.total_errors += 1
        stream.health.time_since_last_error = 0

        logger.warning(f"[ERROR] {stream.name}: {error.error_type.value} - {details}")
        return error

    def record(self, stream: Stream, error: MonitorError, details: Optional[str] = None) -> StreamError:
        """Append a ledger entry for a recordable failure."""
        for error_class, error_type in ERROR_TYPES.items():
            if isinstance(error, error_class):
                break
        else:
            raise TypeError(f"{type(error).__name__} has no ledger error type")

        if isinstance(error, FetchError):
            return self.append(stream, error_type, details or error.message,
                               media_type=error.media_type, code=error.status)
        return self.append(stream, error_type, details or str(error))

    @staticmethod
    def recent(stream: Stream, count: int) -> List[StreamError]:
        """Return the last `count` entries, oldest first."""
        if count <= 0:
            return []
        return stream.error_log[-count:]


# Global instance
error_ledger = ErrorLedger()

import uuid
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Any, Dict, List, Optional
from datetime import datetime, timezone
from enum import Enum
from streamwatch.config import settings


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StreamStatus(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"
    ERROR = "error"
    STALE = "stale"


class ErrorType(str, Enum):
    """Ledger error types. The values are a fixed contract for downstream filtering."""
    MANIFEST_RETRIEVAL = "Manifest Retrieval"
    MEDIA_SEQUENCE = "Media Sequence"
    PLAYLIST_SIZE = "Playlist Size"
    PLAYLIST_CONTENT = "Playlist Content"
    SEGMENT_CONTINUITY = "Segment Continuity"
    DISCONTINUITY_SEQUENCE = "Discontinuity Sequence"
    STALE_MANIFEST = "Stale Manifest"


class MediaType(str, Enum):
    MASTER = "MASTER"
    VIDEO = "VIDEO"
    AUDIO = "AUDIO"


class EventKind(str, Enum):
    UPDATE = "update"
    SIGNAL = "signal"
    SPRITE = "sprite"
    ADDED = "added"
    DELETED = "deleted"


class HealthColor(str, Enum):
    GREEN = "green"
    YELLOW = "yellow"
    RED = "red"


class CamelModel(BaseModel):
    """Snake_case attributes, camelCase on the wire."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class StreamHealth(CamelModel):
    is_stale: bool = False
    last_manifest_update: Optional[datetime] = None
    time_since_last_update: int = 0  # milliseconds
    stale_threshold: int = settings.STALE_THRESHOLD_MS  # milliseconds

    media_sequence: int = -1
    previous_media_sequence: int = -1
    sequence_jumps: int = 0
    sequence_resets: int = 0

    discontinuity_sequence: int = 0
    discontinuity_count: int = 0

    segment_count: int = 0
    target_duration: float = 0
    playlist_type: str = "LIVE"

    total_errors: int = 0
    time_since_last_error: int = 0


class VideoStats(CamelModel):
    codec: Optional[str] = None
    profile: Optional[str] = None
    level: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    pix_fmt: Optional[str] = None
    color_space: Optional[str] = None
    bit_rate: Optional[int] = None


class AudioStats(CamelModel):
    codec: Optional[str] = None
    channels: Optional[int] = None
    sample_rate: Optional[int] = None
    bit_rate: Optional[int] = None


class ContainerStats(CamelModel):
    format_name: Optional[str] = None
    duration: float = 0
    size: int = 0
    bit_rate: int = 0


class StreamStats(CamelModel):
    bandwidth: Optional[int] = None
    resolution: Optional[str] = None
    fps: Optional[float] = None
    video: Optional[VideoStats] = None
    audio: Optional[AudioStats] = None
    container: Optional[ContainerStats] = None


class StreamError(CamelModel):
    id: str
    timestamp: datetime = Field(default_factory=utcnow)
    error_type: ErrorType
    media_type: str = MediaType.VIDEO.value
    variant: str = "unknown"
    details: str
    code: Optional[int] = None


class Stream(CamelModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    name: str
    url: str
    status: StreamStatus = StreamStatus.OFFLINE
    health: StreamHealth = Field(default_factory=StreamHealth)
    stats: StreamStats = Field(default_factory=StreamStats)
    error_log: List[StreamError] = Field(default_factory=list)
    thumbnail: Optional[str] = None
    last_checked: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)

    def to_document(self) -> Dict[str, Any]:
        """JSON-ready representation with camelCase keys."""
        return self.model_dump(mode="json", by_alias=True)


class StreamCreate(BaseModel):
    name: str
    url: str


class MetricsSnapshot(CamelModel):
    stream_id: str
    timestamp: datetime = Field(default_factory=utcnow)
    health_score: int
    video_score: int
    audio_score: int
    video_bitrate: float = 0
    audio_bitrate: float = 0
    video_level: float = 0
    audio_level: float = 0
    fps: float = 0
    status: StreamStatus
    media_sequence: int
    segment_count: int
    error_count: int


class HealthScores(CamelModel):
    """Composite scores for a stream, each within 0-100."""
    health_score: int = Field(default=100, ge=0, le=100)
    video_score: int = Field(default=50, ge=0, le=100)
    audio_score: int = Field(default=50, ge=0, le=100)

    @property
    def color(self) -> HealthColor:
        if self.health_score >= 80:
            return HealthColor.GREEN
        elif self.health_score >= 50:
            return HealthColor.YELLOW
        return HealthColor.RED


# Parsed playlist structures
class VariantPlaylist(BaseModel):
    uri: str
    bandwidth: Optional[int] = None
    resolution: Optional[str] = None


class Segment(BaseModel):
    uri: str
    discontinuity: bool = False
    duration: Optional[float] = None


class Manifest(BaseModel):
    playlists: List[VariantPlaylist] = Field(default_factory=list)
    segments: List[Segment] = Field(default_factory=list)
    media_sequence: int = 0
    target_duration: float = 0
    playlist_type: Optional[str] = None
    discontinuity_sequence: Optional[int] = None

    @property
    def is_master(self) -> bool:
        return len(self.playlists) > 0


class MediaPlaylist(BaseModel):
    """Media-level manifest reached after master->variant resolution."""
    manifest: Manifest
    url: str
    variant: Optional[VariantPlaylist] = None


class ProbeResult(BaseModel):
    container: Optional[ContainerStats] = None
    video: Optional[VideoStats] = None
    audio: Optional[AudioStats] = None
    resolution: Optional[str] = None
    fps: Optional[float] = None


class SignalLevels(BaseModel):
    video_bitrate: float
    audio_bitrate: float
    video_level: float
    audio_level: float

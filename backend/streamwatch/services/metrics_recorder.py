import logging
from typing import Optional

from streamwatch.models import HealthScores, MetricsSnapshot, SignalLevels, Stream
from streamwatch.services.health_scorer import HealthScorer
from streamwatch.services.media_probe import DEFAULT_AUDIO_BITRATE, VIDEO_BITRATE_SHARE
from streamwatch.services.stream_store import StreamStore

logger = logging.getLogger(__name__)

# Bitrates treated as a full-scale (100) signal level
VIDEO_FULL_SCALE_BPS = 5_000_000
AUDIO_FULL_SCALE_BPS = 320_000


def level(bitrate: float, full_scale: float) -> float:
    """Normalize a bitrate to a 0-100 level."""
    return min(100.0, max(0.0, bitrate / full_scale * 100))


def signal_levels(stream: Stream) -> SignalLevels:
    """
    Latest known bitrates and their levels.

    Video falls back to a share of the container bitrate, audio to a fixed
    default, when the probe has not reported a direct value.
    """
    stats = stream.stats
    video_bitrate = 0.0
    if stats.video and stats.video.bit_rate:
        video_bitrate = float(stats.video.bit_rate)
    elif stats.container and stats.container.bit_rate:
        video_bitrate = stats.container.bit_rate * VIDEO_BITRATE_SHARE

    audio_bitrate = float(DEFAULT_AUDIO_BITRATE)
    if stats.audio and stats.audio.bit_rate:
        audio_bitrate = float(stats.audio.bit_rate)

    return SignalLevels(
        video_bitrate=video_bitrate,
        audio_bitrate=audio_bitrate,
        video_level=level(video_bitrate, VIDEO_FULL_SCALE_BPS),
        audio_level=level(audio_bitrate, AUDIO_FULL_SCALE_BPS)
    )


class MetricsRecorder:
    """Appends one MetricsSnapshot per stream per completed cycle."""

    def __init__(self, store: StreamStore):
        self.store = store

    @staticmethod
    def build_snapshot(stream: Stream, scores: HealthScores) -> MetricsSnapshot:
        levels = signal_levels(stream)
        return MetricsSnapshot(
            stream_id=stream.id,
            health_score=scores.health_score,
            video_score=scores.video_score,
            audio_score=scores.audio_score,
            video_bitrate=levels.video_bitrate,
            audio_bitrate=levels.audio_bitrate,
            video_level=levels.video_level,
            audio_level=levels.audio_level,
            fps=stream.stats.fps or 0,
            status=stream.status,
            media_sequence=stream.health.media_sequence,
            segment_count=stream.health.segment_count,
            error_count=stream.health.total_errors
        )

    async def record(self, stream: Stream, scores: Optional[HealthScores] = None) -> Optional[MetricsSnapshot]:
        """
        Store a snapshot for the stream.

        Failures are logged and swallowed so they never fail the cycle.
        """
        try:
            snapshot = self.build_snapshot(stream, scores or HealthScorer.score(stream))
            return await self.store.insert_metrics(snapshot)
        except Exception as e:
            logger.error(f"[METRICS] {stream.name}: {e}")
            return None

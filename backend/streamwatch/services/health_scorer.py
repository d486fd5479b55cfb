from streamwatch.models import HealthScores, Stream, StreamStatus


def _clamp(value: float, low: float = 0, high: float = 100) -> int:
    return int(max(low, min(high, value)))


class HealthScorer:
    """
    Composite health, video and audio scores.

    Scores are recomputed from the stream's cumulative counters on every call.
    Nothing decays: a stream that once jumped keeps that penalty until its
    counters are reset by deleting and re-adding it.
    """

    @staticmethod
    def health_score(stream: Stream) -> int:
        health = stream.health
        score = 100

        if health.is_stale:
            score -= 30
        if health.sequence_jumps > 0:
            score -= min(health.sequence_jumps * 5, 20)
        if health.sequence_resets > 0:
            score -= min(health.sequence_resets * 10, 30)
        if health.total_errors > 0:
            score -= min(health.total_errors * 2, 20)
        if stream.status == StreamStatus.ERROR:
            score -= 40
        if stream.status == StreamStatus.OFFLINE:
            score -= 50

        return _clamp(score)

    @staticmethod
    def video_score(stream: Stream) -> int:
        video = stream.stats.video
        if not video:
            return 50

        score = 100
        if not video.codec:
            score -= 20
        if video.width and video.width < 720:
            score -= 10
        return _clamp(score)

    @staticmethod
    def audio_score(stream: Stream) -> int:
        audio = stream.stats.audio
        if not audio:
            return 50

        score = 100
        if not audio.codec:
            score -= 20
        if audio.sample_rate and audio.sample_rate < 44100:
            score -= 10
        return _clamp(score)

    @classmethod
    def score(cls, stream: Stream) -> HealthScores:
        return HealthScores(
            health_score=cls.health_score(stream),
            video_score=cls.video_score(stream),
            audio_score=cls.audio_score(stream)
        )

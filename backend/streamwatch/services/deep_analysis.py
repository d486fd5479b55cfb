import asyncio
import logging
import random
import time
from typing import Awaitable, Callable, Dict, Optional, Set, Tuple, TypeVar

from streamwatch.config import settings
from streamwatch.errors import ProbeError, StreamNotFoundError, ThumbnailError
from streamwatch.models import EventKind, ProbeResult, Stream
from streamwatch.services.event_emitter import EventEmitter
from streamwatch.services.media_probe import MediaProbe, media_probe
from streamwatch.services.metrics_recorder import signal_levels
from streamwatch.services.stream_store import StreamStore
from streamwatch.services.thumbnail_generator import ThumbnailGenerator, thumbnail_generator

logger = logging.getLogger(__name__)

T = TypeVar("T")

JobKey = Tuple[str, str]  # (job kind, stream id)


def _default_jitter() -> float:
    return (random.random() - 0.5) * 10


def _clamp_level(value: float) -> float:
    return max(0.0, min(100.0, value))


class DeepAnalysisPipeline:
    """
    Probe and thumbnail work for each stream's newest segment.

    Runs beside the poll loop: submit() returns at once and every external
    invocation waits on a shared semaphore, so at most `max_concurrent`
    ffprobe/ffmpeg processes exist across all streams. Each stream has at
    most one waiting job per kind: submitting again while one is waiting
    only moves it to the newer segment. Results are written back under the
    stream's entity lock; if the stream has been deleted by then the
    write-back is skipped.
    """

    def __init__(self, store: StreamStore, emitter: EventEmitter,
                 prober: MediaProbe = media_probe,
                 thumbnailer: ThumbnailGenerator = thumbnail_generator,
                 max_concurrent: int = settings.MAX_CONCURRENT_PROBES,
                 jitter: Optional[Callable[[], float]] = None):
        self.store = store
        self.emitter = emitter
        self.prober = prober
        self.thumbnailer = thumbnailer
        self.max_concurrent = max_concurrent
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._jitter = jitter or _default_jitter
        self._tasks: Set[asyncio.Task] = set()
        # Segment URL of each job still waiting for a slot
        self._waiting: Dict[JobKey, str] = {}

        # Observability for the concurrency bound
        self.in_flight = 0
        self.peak_in_flight = 0

    def submit(self, stream_id: str, segment_url: str):
        """Queue one probe and one thumbnail extraction for a segment."""
        for kind, job in (('probe', self._probe_segment), ('thumbnail', self._capture_thumbnail)):
            key = (kind, stream_id)
            waiting = key in self._waiting
            self._waiting[key] = segment_url
            if waiting:
                continue
            task = asyncio.create_task(job(stream_id, key))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def _gated(self, key: JobKey, func: Callable[[str], Awaitable[T]]) -> T:
        async with self._semaphore:
            segment_url = self._waiting.pop(key)
            self.in_flight += 1
            self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
            try:
                return await func(segment_url)
            finally:
                self.in_flight -= 1

    async def _probe_segment(self, stream_id: str, key: JobKey):
        try:
            result = await self._gated(key, self.prober.probe)
        except ProbeError as e:
            logger.error(f"[PROBE] {stream_id}: {e}")
            return
        except Exception as e:
            logger.exception(f"[PROBE] {stream_id}: unexpected failure: {e}")
            return

        async with self.store.entity_lock(stream_id):
            stream = await self.store.find_by_id(stream_id)
            if stream is None:
                logger.debug(f"[PROBE] {stream_id}: stream deleted, discarding result")
                return
            self.apply_probe(stream, result)
            try:
                await self.store.save(stream)
            except StreamNotFoundError:
                logger.debug(f"[PROBE] {stream_id}: stream deleted, discarding result")
                return

        self.emitter.publish(EventKind.UPDATE, stream.to_document())
        self._publish_signal(stream)

    @staticmethod
    def apply_probe(stream: Stream, result: ProbeResult):
        """Copy probe results onto the stream's stats."""
        stats = stream.stats
        if result.container:
            stats.container = result.container
        if result.video:
            stats.video = result.video
            stats.resolution = result.resolution
            stats.fps = result.fps
        if result.audio:
            stats.audio = result.audio

    def _publish_signal(self, stream: Stream):
        # Jitter only decorates the live signal; stored stats stay exact
        levels = signal_levels(stream)
        variation = self._jitter()
        self.emitter.publish(EventKind.SIGNAL, {
            "id": stream.id,
            "timestamp": int(time.time() * 1000),
            "video": _clamp_level(levels.video_level + variation),
            "audio": _clamp_level(levels.audio_level + variation),
            "videoBitrate": levels.video_bitrate,
            "audioBitrate": levels.audio_bitrate,
            "fps": stream.stats.fps or 0
        })

    async def _capture_thumbnail(self, stream_id: str, key: JobKey):
        try:
            url = await self._gated(
                key, lambda segment_url: self.thumbnailer.generate_thumbnail(stream_id, segment_url))
        except ThumbnailError as e:
            logger.error(f"[SPRITE] {stream_id}: {e}")
            return
        except Exception as e:
            logger.exception(f"[SPRITE] {stream_id}: unexpected failure: {e}")
            return

        async with self.store.entity_lock(stream_id):
            stream = await self.store.find_by_id(stream_id)
            if stream is None:
                logger.debug(f"[SPRITE] {stream_id}: stream deleted, discarding thumbnail")
                return
            stream.thumbnail = url
            try:
                await self.store.save(stream)
            except StreamNotFoundError:
                return

        self.emitter.publish(EventKind.SPRITE, {"id": stream_id, "url": url})
        logger.info(f"[SPRITE] {stream.name}: Updated")

    async def drain(self):
        """Wait for all submitted work to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self):
        """Cancel outstanding work."""
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*list(self._tasks), return_exceptions=True)
        self._waiting.clear()

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

import aiohttp

from streamwatch.config import settings
from streamwatch.errors import FetchError, ParseError, StreamNotFoundError
from streamwatch.models import ErrorType, EventKind, MediaPlaylist, MediaType, Stream, StreamStatus
from streamwatch.services.continuity_analyzer import ContinuityAnalyzer, continuity_analyzer
from streamwatch.services.deep_analysis import DeepAnalysisPipeline
from streamwatch.services.error_ledger import ErrorLedger, error_ledger
from streamwatch.services.event_emitter import EventEmitter, event_emitter
from streamwatch.services.health_scorer import HealthScorer
from streamwatch.services.logger_service import LoggerService, log_service
from streamwatch.services.manifest_fetcher import ManifestFetcher, resolve_url
from streamwatch.services.metrics_recorder import MetricsRecorder
from streamwatch.services.state_tracker import PollStateStore
from streamwatch.services.stream_store import StreamStore, stream_store

logger = logging.getLogger(__name__)


def _epoch_ms() -> float:
    return time.time() * 1000


@dataclass
class _FetchOutcome:
    media: Optional[MediaPlaylist] = None
    error: Optional[Exception] = None


class StreamMonitor:
    """
    Core HLS stream monitoring engine.

    A single poll loop checks every stream in turn, one at a time, and starts
    a new cycle every `poll_interval` seconds counted from the start of the
    previous one. Deep analysis of each stream's newest segment is handed to
    the pipeline and never holds up the loop.
    """

    def __init__(self, store: StreamStore, emitter: EventEmitter,
                 fetcher: Optional[ManifestFetcher] = None,
                 pipeline: Optional[DeepAnalysisPipeline] = None,
                 analyzer: ContinuityAnalyzer = continuity_analyzer,
                 ledger: ErrorLedger = error_ledger,
                 log_service: Optional[LoggerService] = None,
                 poll_interval: float = settings.POLL_INTERVAL,
                 startup_delay: float = settings.STARTUP_DELAY,
                 clock: Callable[[], float] = _epoch_ms):
        self.store = store
        self.emitter = emitter
        self.fetcher = fetcher or ManifestFetcher()
        self.pipeline = pipeline or DeepAnalysisPipeline(store, emitter)
        self.analyzer = analyzer
        self.ledger = ledger
        self.recorder = MetricsRecorder(store)
        self.log_service = log_service
        self.poll_interval = poll_interval
        self.startup_delay = startup_delay
        self.clock = clock

        self.poll_states = PollStateStore()
        self.session: Optional[aiohttp.ClientSession] = None
        self._loop_task: Optional[asyncio.Task] = None
        self.cycle_count = 0
        self.last_cycle_seconds: Optional[float] = None

    async def start(self):
        """Open the HTTP session and start the poll loop."""
        if self.fetcher.session is None:
            self.session = aiohttp.ClientSession()
            self.fetcher.session = self.session
        self._loop_task = asyncio.create_task(self._poll_loop())
        logger.info(f"[MONITOR] Starting with {int(self.poll_interval * 1000)}ms interval")

    async def stop(self):
        """Stop polling, cancel deep analysis and close the session."""
        if self._loop_task:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None

        await self.pipeline.close()

        if self.session:
            await self.session.close()
            self.fetcher.session = None
            self.session = None

        logger.info("StreamMonitor stopped")

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    async def _poll_loop(self):
        await asyncio.sleep(self.startup_delay)
        while True:
            started = time.monotonic()
            try:
                await self.run_cycle()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception(f"[MONITOR] Cycle failed: {e}")

            self.last_cycle_seconds = time.monotonic() - started
            await asyncio.sleep(max(0.0, self.poll_interval - self.last_cycle_seconds))

    async def run_cycle(self):
        """Check every stream once, strictly in sequence."""
        streams = await self.store.list_streams()
        self.poll_states.retain_only({s.id for s in streams})

        for stream in streams:
            try:
                await self.check_stream(stream.id)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception(f"[FATAL] {stream.name}: {e}")
                await self._mark_failed(stream.id, e)

        self.cycle_count += 1
        await self.store.persist()

    async def check_stream(self, stream_id: str) -> Optional[Stream]:
        """
        Run one cycle for one stream.

        Any failure is contained here: it is recorded on the stream, the
        stream is marked as errored and the caller moves on.

        Returns:
            The saved stream, or None if it no longer exists
        """
        stream = await self.store.find_by_id(stream_id)
        if stream is None:
            return None

        outcome = await self._fetch(stream)

        async with self.store.entity_lock(stream_id):
            # Reload so deep-analysis results saved during the fetch are kept
            stream = await self.store.find_by_id(stream_id)
            if stream is None:
                return None

            errors_before = stream.health.total_errors
            completed = False
            try:
                completed = self._apply(stream, outcome)
            except Exception as e:
                logger.error(f"[FATAL] {stream.name}: {e}")
                stream.status = StreamStatus.ERROR
                self.ledger.append(stream, ErrorType.MANIFEST_RETRIEVAL, str(e))

            try:
                await self.store.save(stream)
            except StreamNotFoundError:
                return None

        await self._log_new_errors(stream, errors_before)

        if completed:
            latest = outcome.media.manifest.segments[-1]
            self.pipeline.submit(stream.id, resolve_url(outcome.media.url, latest.uri))

            scores = HealthScorer.score(stream)
            await self.recorder.record(stream, scores)
            logger.info(f"[OK] {stream.name}: seq={stream.health.media_sequence}, "
                        f"segments={stream.health.segment_count}")

        self.emitter.publish(EventKind.UPDATE, stream.to_document())
        return stream

    async def _mark_failed(self, stream_id: str, error: Exception):
        """Best-effort error status for a stream whose check raised."""
        try:
            async with self.store.entity_lock(stream_id):
                stream = await self.store.find_by_id(stream_id)
                if stream is None:
                    return
                stream.status = StreamStatus.ERROR
                self.ledger.append(stream, ErrorType.MANIFEST_RETRIEVAL, str(error) or type(error).__name__)
                await self.store.save(stream)
        except Exception as e:
            logger.error(f"[FATAL] {stream_id}: could not record failure: {e}")

    async def _fetch(self, stream: Stream) -> _FetchOutcome:
        try:
            return _FetchOutcome(media=await self.fetcher.fetch_media_playlist(stream.url))
        except (FetchError, ParseError) as e:
            return _FetchOutcome(error=e)
        except Exception as e:
            logger.exception(f"[FATAL] {stream.name}: unexpected fetch failure")
            return _FetchOutcome(error=e)

    def _apply(self, stream: Stream, outcome: _FetchOutcome) -> bool:
        """
        Apply a fetch outcome to the stream record.

        Returns:
            True when the cycle reached its normal completion point
        """
        error = outcome.error
        if isinstance(error, FetchError):
            level = "variant" if error.media_type == MediaType.VIDEO.value else "manifest"
            self.ledger.record(stream, error, f"Failed to fetch {level}: {error.message}")
            stream.status = StreamStatus.ERROR
            return False
        if isinstance(error, ParseError):
            self.ledger.record(stream, error)
            stream.status = StreamStatus.ERROR
            return False
        if error is not None:
            raise error

        media = outcome.media
        if media.variant is not None:
            if media.variant.bandwidth:
                stream.stats.bandwidth = media.variant.bandwidth
            if media.variant.resolution:
                stream.stats.resolution = media.variant.resolution

        now = self.clock()
        state = self.poll_states.get(stream.id)
        try:
            current = self.analyzer.analyze(stream, media.manifest, state, now)
        except ParseError:
            return False

        self.poll_states.commit(stream.id, current, now)
        stream.last_checked = datetime.fromtimestamp(now / 1000, tz=timezone.utc)
        return True

    async def _log_new_errors(self, stream: Stream, errors_before: int):
        if self.log_service is None:
            return
        new_count = stream.health.total_errors - errors_before
        for error in self.ledger.recent(stream, new_count):
            await self.log_service.write_stream_event(
                stream.id,
                "ledger_error",
                error.details,
                severity="warning",
                metadata={
                    "error_id": error.id,
                    "error_type": error.error_type.value,
                    "media_type": error.media_type,
                    "code": error.code
                }
            )

    async def add_stream(self, stream: Stream) -> Stream:
        """Register a new stream; it is picked up by the next cycle."""
        stream = await self.store.add(stream)
        self.emitter.publish(EventKind.ADDED, stream.to_document())
        if self.log_service:
            await self.log_service.write_stream_event(
                stream.id, "stream_added", f"Started monitoring stream: {stream.name}",
                metadata={"url": stream.url}
            )
        logger.info(f"Started monitoring stream: {stream.name} ({stream.id})")
        return stream

    async def remove_stream(self, stream_id: str) -> bool:
        """Delete a stream and tear down its transient state."""
        async with self.store.entity_lock(stream_id):
            removed = await self.store.delete(stream_id)
        self.poll_states.discard(stream_id)
        if not removed:
            return False

        self.pipeline.thumbnailer.cleanup_stream_thumbnails(stream_id)
        if self.log_service:
            self.log_service.cleanup_stream_logs(stream_id)
        self.emitter.publish(EventKind.DELETED, {"id": stream_id})
        logger.info(f"Stopped monitoring stream: {stream_id}")
        return True


# Global instances
deep_analysis = DeepAnalysisPipeline(stream_store, event_emitter)
stream_monitor = StreamMonitor(stream_store, event_emitter, pipeline=deep_analysis, log_service=log_service)

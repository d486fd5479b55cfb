import asyncio
import json
import logging
from datetime import timedelta
from pathlib import Path
from typing import Dict, List, Optional

import aiofiles

from streamwatch.config import settings
from streamwatch.errors import DuplicateStreamError, StreamNotFoundError
from streamwatch.models import MetricsSnapshot, Stream, utcnow

logger = logging.getLogger(__name__)


class StreamStore:
    """
    In-memory persistence for stream records and metrics snapshots.

    Records are handed out as copies: a writer loads, mutates and saves, and
    must hold entity_lock(stream_id) across that sequence when another task
    may write the same record. Stream documents are mirrored to a JSON file
    so the monitored set survives restarts; snapshots are memory-only and
    expire after the retention window.
    """

    def __init__(self, streams_file: Optional[Path] = None,
                 retention_days: int = settings.METRICS_RETENTION_DAYS):
        self.streams_file = Path(streams_file) if streams_file else None
        self.retention = timedelta(days=retention_days)
        self._streams: Dict[str, Stream] = {}
        self._metrics: Dict[str, List[MetricsSnapshot]] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._file_lock = asyncio.Lock()

    def entity_lock(self, stream_id: str) -> asyncio.Lock:
        """Get or create the single-writer lock for a stream record."""
        if stream_id not in self._locks:
            self._locks[stream_id] = asyncio.Lock()
        return self._locks[stream_id]

    # Streams

    async def list_streams(self) -> List[Stream]:
        """All streams in creation order."""
        return [s.model_copy(deep=True) for s in self._streams.values()]

    async def find_by_id(self, stream_id: str) -> Optional[Stream]:
        stream = self._streams.get(stream_id)
        return stream.model_copy(deep=True) if stream else None

    async def add(self, stream: Stream) -> Stream:
        if any(s.url == stream.url for s in self._streams.values()):
            raise DuplicateStreamError(stream.url)
        self._streams[stream.id] = stream.model_copy(deep=True)
        self._metrics.setdefault(stream.id, [])
        await self.persist()
        return stream

    async def save(self, stream: Stream) -> Stream:
        """
        Replace an existing record.

        Raises:
            StreamNotFoundError: the stream was deleted in the meantime
        """
        if stream.id not in self._streams:
            raise StreamNotFoundError(stream.id)
        self._streams[stream.id] = stream.model_copy(deep=True)
        return stream

    async def delete(self, stream_id: str) -> bool:
        if self._streams.pop(stream_id, None) is None:
            return False
        self._metrics.pop(stream_id, None)
        self._locks.pop(stream_id, None)
        await self.persist()
        return True

    # Metrics

    def _prune(self, stream_id: str):
        cutoff = utcnow() - self.retention
        history = self._metrics.get(stream_id)
        if history and history[0].timestamp < cutoff:
            self._metrics[stream_id] = [m for m in history if m.timestamp >= cutoff]

    async def insert_metrics(self, snapshot: MetricsSnapshot) -> MetricsSnapshot:
        """Append-only insert. Snapshots for unknown streams are rejected."""
        if snapshot.stream_id not in self._streams:
            raise StreamNotFoundError(snapshot.stream_id)
        self._metrics.setdefault(snapshot.stream_id, []).append(snapshot)
        self._prune(snapshot.stream_id)
        return snapshot

    async def metrics_for(self, stream_id: str) -> List[MetricsSnapshot]:
        """Snapshots within the retention window, oldest first."""
        self._prune(stream_id)
        return list(self._metrics.get(stream_id, []))

    # File persistence

    async def persist(self):
        """Write all stream documents to the streams file."""
        if not self.streams_file:
            return
        data = [s.model_dump(mode="json", by_alias=True) for s in self._streams.values()]
        async with self._file_lock:
            try:
                self.streams_file.parent.mkdir(parents=True, exist_ok=True)
                async with aiofiles.open(self.streams_file, mode='w', encoding='utf-8') as f:
                    await f.write(json.dumps(data, indent=2))
            except OSError as e:
                logger.error(f"Failed to save streams: {e}")

    async def load(self) -> int:
        """Load stream documents from the streams file."""
        if not self.streams_file or not self.streams_file.exists():
            return 0
        try:
            async with aiofiles.open(self.streams_file, mode='r', encoding='utf-8') as f:
                data = json.loads(await f.read())
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Failed to load streams: {e}")
            return 0

        for item in data:
            stream = Stream.model_validate(item)
            self._streams[stream.id] = stream
            self._metrics.setdefault(stream.id, [])

        logger.info(f"Loaded {len(data)} streams from persistence")
        return len(data)


# Global instance
stream_store = StreamStore(settings.DATA_DIR / "streams.json")

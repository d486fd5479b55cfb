import asyncio
import gzip
import json
import logging
import shutil
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional

import aiofiles

from streamwatch.config import settings

logger = logging.getLogger(__name__)


class LoggerService:
    """
    Per-stream daily event files.

    Each monitored stream gets LOGS_DIR/<stream_id>/<YYYY-MM-DD>.log holding one
    JSON object per line; every event is mirrored to LOGS_DIR/<YYYY-MM-DD>.log.
    Files older than LOG_COMPRESS_DAYS are gzipped and files older than
    LOG_DELETE_DAYS are removed by rotate_logs().
    """

    def __init__(self, logs_dir: Path = settings.LOGS_DIR,
                 compress_days: int = settings.LOG_COMPRESS_DAYS,
                 delete_days: int = settings.LOG_DELETE_DAYS):
        self.logs_dir = Path(logs_dir)
        self.compress_days = compress_days
        self.delete_days = delete_days
        self._file_locks: Dict[str, asyncio.Lock] = {}
        self._local_tz = datetime.now().astimezone().tzinfo

    def _log_file(self, date: datetime, stream_id: Optional[str] = None) -> Path:
        directory = self.logs_dir / stream_id if stream_id else self.logs_dir
        return directory / f"{date.strftime('%Y-%m-%d')}.log"

    def _get_file_lock(self, filepath: Path) -> asyncio.Lock:
        key = str(filepath)
        if key not in self._file_locks:
            self._file_locks[key] = asyncio.Lock()
        return self._file_locks[key]

    async def _append_line(self, log_file: Path, line: str):
        async with self._get_file_lock(log_file):
            try:
                log_file.parent.mkdir(parents=True, exist_ok=True)
                async with aiofiles.open(log_file, mode='a', encoding='utf-8') as f:
                    await f.write(line)
            except OSError as e:
                logger.error(f"Failed to write to log file {log_file}: {e}")

    async def write_stream_event(self, stream_id: str, event_type: str, message: str,
                                 severity: str = "info", metadata: Optional[Dict[str, Any]] = None):
        """
        Write a structured event for a stream.

        Args:
            stream_id: Stream identifier
            event_type: e.g. 'stream_added', 'ledger_error', 'cycle_failed'
            message: Human-readable message
            severity: info, warning or error
            metadata: Additional event data
        """
        now = datetime.now(self._local_tz)
        event = {
            "timestamp": now.isoformat(),
            "stream_id": stream_id,
            "event_type": event_type,
            "message": message,
            "severity": severity,
            "metadata": metadata or {}
        }
        line = json.dumps(event, default=str, ensure_ascii=False) + "\n"

        await self._append_line(self._log_file(now, stream_id), line)
        await self._append_line(self._log_file(now), line)

    async def read_stream_events(self, stream_id: str, days: int = 7, limit: int = 500) -> List[Dict]:
        """Read recent events for a stream, oldest first."""
        now = datetime.now(self._local_tz)
        events: List[Dict] = []
        for offset in range(days - 1, -1, -1):
            log_file = self._log_file(now - timedelta(days=offset), stream_id)
            if not log_file.exists():
                continue
            try:
                async with aiofiles.open(log_file, mode='r', encoding='utf-8') as f:
                    async for line in f:
                        try:
                            events.append(json.loads(line))
                        except json.JSONDecodeError:
                            continue
            except OSError as e:
                logger.error(f"Error reading log file {log_file}: {e}")
        return events[-limit:]

    async def rotate_logs(self):
        """Compress and delete old log files."""
        now = datetime.now(self._local_tz)
        compress_before = now - timedelta(days=self.compress_days)
        delete_before = now - timedelta(days=self.delete_days)

        if not self.logs_dir.exists():
            return

        for log_file in self._all_log_files():
            file_date = self._file_date(log_file)
            if file_date is None:
                continue
            try:
                if file_date < delete_before:
                    log_file.unlink()
                    logger.info(f"Deleted old log file: {log_file}")
                elif file_date < compress_before and log_file.suffix == '.log':
                    await asyncio.to_thread(self._compress, log_file)
            except OSError as e:
                logger.error(f"Error rotating log file {log_file}: {e}")

        logger.info(f"Log rotation completed at {now.isoformat()}")

    def _all_log_files(self) -> List[Path]:
        files = list(self.logs_dir.glob("*.log*"))
        for stream_dir in self.logs_dir.iterdir():
            if stream_dir.is_dir():
                files.extend(stream_dir.glob("*.log*"))
        return files

    def _file_date(self, log_file: Path) -> Optional[datetime]:
        date_str = log_file.name.split('.')[0]
        try:
            return datetime.strptime(date_str, '%Y-%m-%d').replace(tzinfo=self._local_tz)
        except ValueError:
            return None

    @staticmethod
    def _compress(log_file: Path):
        gz_file = log_file.with_suffix('.log.gz')
        if gz_file.exists():
            return
        with open(log_file, 'rb') as f_in, gzip.open(gz_file, 'wb') as f_out:
            shutil.copyfileobj(f_in, f_out)
        log_file.unlink()
        logger.info(f"Compressed log file: {log_file}")

    def cleanup_stream_logs(self, stream_id: str):
        """Remove all log files for a stream (call when stream is deleted)."""
        stream_dir = self.logs_dir / stream_id
        try:
            if stream_dir.exists():
                shutil.rmtree(stream_dir)
                logger.info(f"Cleaned up logs for stream: {stream_id}")
        except OSError as e:
            logger.error(f"Error cleaning up logs for stream {stream_id}: {e}")


# Global instance
log_service = LoggerService()

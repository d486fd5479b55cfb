import asyncio
import logging
import os
import time
import uuid
from pathlib import Path
from typing import Optional, Tuple
from PIL import Image, UnidentifiedImageError
from streamwatch.config import settings
from streamwatch.errors import ThumbnailError

logger = logging.getLogger(__name__)


class ThumbnailGenerator:
    """
    Still-frame extraction for the live preview.

    Features:
    - FFmpeg-based frame extraction straight from the segment URL
    - One image per stream, replaced atomically so a failed run keeps the old one
    - Output validated with Pillow before it is published
    """

    def __init__(self, thumbnails_dir: Path = settings.THUMBNAILS_DIR,
                 width: int = settings.THUMBNAIL_WIDTH,
                 seek: float = settings.THUMBNAIL_SEEK,
                 timeout: Optional[float] = settings.THUMBNAIL_TIMEOUT,
                 binary: str = "ffmpeg"):
        self.thumbnails_dir = Path(thumbnails_dir)
        self.width = width
        self.seek = seek
        self.timeout = timeout
        self.binary = binary

    def _output_path(self, stream_id: str) -> Path:
        return self.thumbnails_dir / f"sprite-{stream_id}.jpg"

    async def extract_thumbnail(self, segment_url: str, output_path: str):
        """
        Extract one frame from a segment using FFmpeg.

        Raises:
            ThumbnailError: ffmpeg failed or timed out
        """
        command = [
            self.binary,
            '-ss', str(self.seek),
            '-i', segment_url,
            '-vframes', '1',
            '-vf', f'scale={self.width}:-1',
            '-q:v', '2',
            '-y',  # Overwrite
            output_path
        ]

        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE
            )
        except OSError as e:
            raise ThumbnailError(f"Could not start {self.binary}: {e}") from e

        try:
            _, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise ThumbnailError(f"{self.binary} timed out after {self.timeout}s")

        if process.returncode != 0:
            raise ThumbnailError(f"FFmpeg error for {segment_url}: {stderr.decode(errors='replace')[:200]}")

    @staticmethod
    def validate_image(path: str) -> Tuple[int, int]:
        """Check that the file is a decodable image and return its size."""
        try:
            with Image.open(path) as img:
                size = img.size
                img.verify()
        except (OSError, UnidentifiedImageError) as e:
            raise ThumbnailError(f"Invalid thumbnail {path}: {e}") from e
        return size

    async def generate_thumbnail(self, stream_id: str, segment_url: str) -> str:
        """
        Produce the preview image for a stream's latest segment.

        Returns:
            Cache-busted URL of the new image

        Raises:
            ThumbnailError: extraction or validation failed; the previous image is kept
        """
        self.thumbnails_dir.mkdir(parents=True, exist_ok=True)
        final_path = self._output_path(stream_id)
        tmp_path = final_path.with_name(f"{final_path.stem}.{uuid.uuid4().hex}.tmp.jpg")

        try:
            await self.extract_thumbnail(segment_url, str(tmp_path))
            width, height = await asyncio.to_thread(self.validate_image, str(tmp_path))
            os.replace(tmp_path, final_path)
        finally:
            if tmp_path.exists():
                tmp_path.unlink()

        logger.debug(f"Thumbnail generated: {final_path} ({width}x{height})")
        return self.get_thumbnail_url(stream_id)

    def cleanup_stream_thumbnails(self, stream_id: str):
        """Remove the thumbnail for a stream (call when stream is removed)."""
        path = self._output_path(stream_id)
        try:
            if path.exists():
                path.unlink()
                logger.info(f"Cleaned up thumbnail for stream: {stream_id}")
        except OSError as e:
            logger.error(f"Error cleaning up thumbnail for {stream_id}: {e}")

    def get_thumbnail_url(self, stream_id: str) -> str:
        """Get the URL path for a thumbnail."""
        return f"/data/thumbnails/sprite-{stream_id}.jpg?t={int(time.time() * 1000)}"


# Global instance
thumbnail_generator = ThumbnailGenerator()

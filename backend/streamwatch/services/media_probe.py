import asyncio
import json
import logging
from fractions import Fraction
from typing import Any, Dict, Optional

from streamwatch.config import settings
from streamwatch.errors import ProbeError
from streamwatch.models import AudioStats, ContainerStats, ProbeResult, VideoStats

logger = logging.getLogger(__name__)

# Audio bitrate assumed when ffprobe does not report one
DEFAULT_AUDIO_BITRATE = 128000
# Share of the container bitrate attributed to video when the track has none
VIDEO_BITRATE_SHARE = 0.85


def _to_int(value: Any) -> int:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return 0


def _to_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def parse_frame_rate(rate: Optional[str]) -> float:
    """Convert an ffprobe rational such as '30000/1001' into fps."""
    if not rate:
        return 0.0
    try:
        fps = Fraction(rate)
    except (ValueError, ZeroDivisionError):
        return 0.0
    return round(float(fps), 3)


class MediaProbe:
    """Container/codec inspection of a single segment using FFprobe."""

    def __init__(self, timeout: Optional[float] = settings.PROBE_TIMEOUT, binary: str = "ffprobe"):
        self.timeout = timeout
        self.binary = binary

    async def probe(self, segment_url: str) -> ProbeResult:
        """
        Probe a segment URL.

        Raises:
            ProbeError: ffprobe failed, timed out or returned unusable output
        """
        metadata = await self._run_ffprobe(segment_url)
        return self.parse_metadata(metadata)

    async def _run_ffprobe(self, segment_url: str) -> Dict[str, Any]:
        command = [
            self.binary,
            '-v', 'error',
            '-print_format', 'json',
            '-show_format',
            '-show_streams',
            segment_url
        ]

        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE
            )
        except OSError as e:
            raise ProbeError(f"Could not start {self.binary}: {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise ProbeError(f"{self.binary} timed out after {self.timeout}s")

        if process.returncode != 0:
            raise ProbeError(f"{self.binary} exited {process.returncode}: {stderr.decode(errors='replace')[:200]}")

        try:
            return json.loads(stdout.decode())
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ProbeError(f"Unreadable {self.binary} output: {e}") from e

    @staticmethod
    def parse_metadata(metadata: Dict[str, Any]) -> ProbeResult:
        """Map ffprobe JSON onto container/video/audio stats."""
        result = ProbeResult()
        fmt = metadata.get('format')
        streams = metadata.get('streams') or []

        if fmt:
            result.container = ContainerStats(
                format_name=fmt.get('format_name'),
                duration=_to_float(fmt.get('duration')),
                size=_to_int(fmt.get('size')),
                bit_rate=_to_int(fmt.get('bit_rate'))
            )

        video = next((s for s in streams if s.get('codec_type') == 'video'), None)
        if video:
            width = video.get('width')
            height = video.get('height')
            bit_rate = _to_int(video.get('bit_rate'))
            if not bit_rate and result.container:
                bit_rate = int(result.container.bit_rate * VIDEO_BITRATE_SHARE)

            level = video.get('level')
            result.resolution = f"{width}x{height}"
            result.fps = parse_frame_rate(video.get('r_frame_rate'))
            result.video = VideoStats(
                codec=video.get('codec_name'),
                profile=video.get('profile'),
                level=str(level) if level is not None else None,
                width=width,
                height=height,
                pix_fmt=video.get('pix_fmt'),
                color_space=video.get('color_space') or video.get('color_primaries') or 'unknown',
                bit_rate=bit_rate
            )

        audio = next((s for s in streams if s.get('codec_type') == 'audio'), None)
        if audio:
            result.audio = AudioStats(
                codec=audio.get('codec_name'),
                channels=audio.get('channels'),
                sample_rate=_to_int(audio.get('sample_rate')),
                bit_rate=_to_int(audio.get('bit_rate')) or DEFAULT_AUDIO_BITRATE
            )

        if result.container is None and result.video is None and result.audio is None:
            raise ProbeError("ffprobe reported no format or streams")

        return result


# Global instance
media_probe = MediaProbe()

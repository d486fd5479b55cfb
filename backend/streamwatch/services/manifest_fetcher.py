import asyncio
import logging
from typing import Optional
from urllib.parse import urljoin

import aiohttp
import m3u8

from streamwatch.config import settings
from streamwatch.errors import FetchError, ParseError
from streamwatch.models import Manifest, MediaPlaylist, MediaType, Segment, VariantPlaylist

logger = logging.getLogger(__name__)


def resolve_url(base_url: str, uri: str) -> str:
    """Resolve a playlist or segment URI against the playlist it came from."""
    if uri.startswith(("http://", "https://")):
        return uri
    return urljoin(base_url, uri)


class ManifestFetcher:
    """
    HLS manifest retrieval.

    Downloads playlist text over HTTP(S) and hands it to the m3u8 parser.
    Master playlists are followed to their first variant.
    """

    def __init__(self, session: Optional[aiohttp.ClientSession] = None,
                 timeout: float = settings.MANIFEST_TIMEOUT):
        self.session = session
        self.timeout = timeout

    async def fetch(self, url: str, media_type: str = MediaType.MASTER.value) -> Manifest:
        """
        Fetch and parse a single playlist.

        Raises:
            FetchError: network failure, timeout or non-200 status
            ParseError: the body is not an HLS playlist
        """
        if self.session is None:
            raise FetchError("HTTP session not started", media_type=media_type)

        try:
            async with self.session.get(url, timeout=aiohttp.ClientTimeout(total=self.timeout)) as response:
                if response.status != 200:
                    raise FetchError(
                        f"HTTP {response.status} for {url}",
                        status=response.status,
                        media_type=media_type
                    )
                text = await response.text()
        except asyncio.TimeoutError:
            raise FetchError(f"Timed out after {self.timeout}s fetching {url}", media_type=media_type)
        except aiohttp.ClientError as e:
            raise FetchError(f"{type(e).__name__}: {e}", media_type=media_type)

        return self.parse(text, url)

    @staticmethod
    def parse(text: str, url: str) -> Manifest:
        """Convert playlist text into a Manifest."""
        text = (text or "").lstrip("\ufeff \t\r\n")
        if not text.startswith("#EXTM3U"):
            raise ParseError(f"Not an HLS playlist: {url}")

        try:
            playlist = m3u8.loads(text, uri=url)
        except Exception as e:
            raise ParseError(f"Malformed playlist {url}: {e}") from e

        variants = []
        for variant in playlist.playlists:
            info = variant.stream_info
            resolution = None
            if info.resolution:
                resolution = f"{info.resolution[0]}x{info.resolution[1]}"
            variants.append(VariantPlaylist(
                uri=variant.uri,
                bandwidth=info.bandwidth,
                resolution=resolution
            ))

        segments = [
            Segment(uri=seg.uri, discontinuity=bool(seg.discontinuity), duration=seg.duration)
            for seg in playlist.segments
        ]

        playlist_type = playlist.playlist_type.upper() if playlist.playlist_type else None

        return Manifest(
            playlists=variants,
            segments=segments,
            media_sequence=playlist.media_sequence or 0,
            target_duration=playlist.target_duration or 0,
            playlist_type=playlist_type,
            discontinuity_sequence=playlist.discontinuity_sequence,
        )

    async def fetch_media_playlist(self, url: str) -> MediaPlaylist:
        """
        Fetch the media playlist for a stream URL.

        A master playlist is resolved to its first listed variant. That choice
        is fixed; other renditions are not monitored.
        """
        manifest = await self.fetch(url, MediaType.MASTER.value)

        if not manifest.is_master:
            return MediaPlaylist(manifest=manifest, url=url)

        variant = manifest.playlists[0]
        variant_url = resolve_url(url, variant.uri)
        logger.debug(f"Master playlist {url} -> variant {variant_url} ({variant.bandwidth} bps)")

        media = await self.fetch(variant_url, MediaType.VIDEO.value)
        return MediaPlaylist(manifest=media, url=variant_url, variant=variant)

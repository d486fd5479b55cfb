import asyncio
import unittest

import aiohttp

from fakes import FakeSession
from streamwatch.errors import FetchError, ParseError
from streamwatch.services.manifest_fetcher import ManifestFetcher, resolve_url

MASTER_URL = "http://cdn.test/live/master.m3u8"

MASTER = """#EXTM3U
#EXT-X-STREAM-INF:BANDWIDTH=2000000,RESOLUTION=1280x720
hd/index.m3u8
#EXT-X-STREAM-INF:BANDWIDTH=800000,RESOLUTION=640x360
sd/index.m3u8
"""

MEDIA = """#EXTM3U
#EXT-X-VERSION:3
#EXT-X-TARGETDURATION:6
#EXT-X-MEDIA-SEQUENCE:100
#EXTINF:6.0,
seg100.ts
#EXT-X-DISCONTINUITY
#EXTINF:6.0,
seg101.ts
#EXTINF:6.0,
http://edge.test/seg102.ts
"""


class TestResolveUrl(unittest.TestCase):
    def test_relative(self):
        self.assertEqual(resolve_url(MASTER_URL, "hd/index.m3u8"), "http://cdn.test/live/hd/index.m3u8")
        self.assertEqual(resolve_url(MASTER_URL, "/other/seg.ts"), "http://cdn.test/other/seg.ts")

    def test_absolute(self):
        self.assertEqual(resolve_url(MASTER_URL, "https://edge.test/a.ts"), "https://edge.test/a.ts")


class TestParse(unittest.TestCase):
    def test_media_playlist(self):
        manifest = ManifestFetcher.parse(MEDIA, "http://cdn.test/live/hd/index.m3u8")

        self.assertFalse(manifest.is_master)
        self.assertEqual(manifest.media_sequence, 100)
        self.assertEqual(manifest.target_duration, 6)
        self.assertEqual([s.uri for s in manifest.segments],
                         ["seg100.ts", "seg101.ts", "http://edge.test/seg102.ts"])
        self.assertEqual([s.discontinuity for s in manifest.segments], [False, True, False])

    def test_master_playlist(self):
        manifest = ManifestFetcher.parse(MASTER, MASTER_URL)

        self.assertTrue(manifest.is_master)
        self.assertEqual(manifest.playlists[0].uri, "hd/index.m3u8")
        self.assertEqual(manifest.playlists[0].bandwidth, 2000000)
        self.assertEqual(manifest.playlists[0].resolution, "1280x720")

    def test_not_a_playlist(self):
        with self.assertRaises(ParseError):
            ManifestFetcher.parse("<html>Not found</html>", MASTER_URL)
        with self.assertRaises(ParseError):
            ManifestFetcher.parse("", MASTER_URL)


class TestFetch(unittest.IsolatedAsyncioTestCase):
    async def test_master_resolves_to_first_variant(self):
        session = FakeSession({
            MASTER_URL: (200, MASTER),
            "http://cdn.test/live/hd/index.m3u8": (200, MEDIA),
        })
        media = await ManifestFetcher(session).fetch_media_playlist(MASTER_URL)

        self.assertEqual(media.url, "http://cdn.test/live/hd/index.m3u8")
        self.assertEqual(media.variant.bandwidth, 2000000)
        self.assertEqual(media.manifest.media_sequence, 100)
        self.assertNotIn("http://cdn.test/live/sd/index.m3u8", session.requested)

    async def test_media_url_used_directly(self):
        session = FakeSession({MASTER_URL: (200, MEDIA)})
        media = await ManifestFetcher(session).fetch_media_playlist(MASTER_URL)

        self.assertIsNone(media.variant)
        self.assertEqual(media.url, MASTER_URL)
        self.assertEqual(session.requested, [MASTER_URL])

    async def test_http_status(self):
        session = FakeSession({MASTER_URL: (404, "")})
        with self.assertRaises(FetchError) as ctx:
            await ManifestFetcher(session).fetch_media_playlist(MASTER_URL)

        self.assertEqual(ctx.exception.status, 404)
        self.assertEqual(ctx.exception.media_type, "MASTER")

    async def test_variant_failure_is_video(self):
        session = FakeSession({
            MASTER_URL: (200, MASTER),
            "http://cdn.test/live/hd/index.m3u8": (503, ""),
        })
        with self.assertRaises(FetchError) as ctx:
            await ManifestFetcher(session).fetch_media_playlist(MASTER_URL)

        self.assertEqual(ctx.exception.status, 503)
        self.assertEqual(ctx.exception.media_type, "VIDEO")

    async def test_timeout(self):
        session = FakeSession({MASTER_URL: asyncio.TimeoutError()})
        with self.assertRaises(FetchError) as ctx:
            await ManifestFetcher(session, timeout=10).fetch(MASTER_URL)

        self.assertIsNone(ctx.exception.status)
        self.assertIn("Timed out", ctx.exception.message)

    async def test_connection_error(self):
        session = FakeSession({MASTER_URL: aiohttp.ClientConnectionError("refused")})
        with self.assertRaises(FetchError):
            await ManifestFetcher(session).fetch(MASTER_URL)

    async def test_no_session(self):
        with self.assertRaises(FetchError):
            await ManifestFetcher().fetch(MASTER_URL)

    async def test_garbage_body(self):
        session = FakeSession({MASTER_URL: (200, "hello")})
        with self.assertRaises(ParseError):
            await ManifestFetcher(session).fetch(MASTER_URL)


class TestParseByteOrderMark(unittest.TestCase):
    def test_leading_bom_accepted(self):
        manifest = ManifestFetcher.parse("\ufeff" + MEDIA, "http://cdn.test/live/hd/index.m3u8")

        self.assertEqual(manifest.media_sequence, 100)
        self.assertEqual(len(manifest.segments), 3)

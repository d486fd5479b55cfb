import asyncio
import json
import unittest
from unittest.mock import AsyncMock, MagicMock, patch

from streamwatch.errors import ProbeError
from streamwatch.services.media_probe import MediaProbe, parse_frame_rate

FFPROBE_OUTPUT = {
    "streams": [
        {
            "codec_type": "video",
            "codec_name": "h264",
            "profile": "High",
            "level": 31,
            "width": 1280,
            "height": 720,
            "pix_fmt": "yuv420p",
            "r_frame_rate": "30000/1001"
        },
        {
            "codec_type": "audio",
            "codec_name": "aac",
            "channels": 2,
            "sample_rate": "48000",
            "bit_rate": "96000"
        }
    ],
    "format": {
        "format_name": "mpegts",
        "duration": "6.006",
        "size": "1500000",
        "bit_rate": "2000000"
    }
}


class TestParseMetadata(unittest.TestCase):
    def test_full_output(self):
        result = MediaProbe.parse_metadata(FFPROBE_OUTPUT)

        self.assertEqual(result.container.format_name, "mpegts")
        self.assertAlmostEqual(result.container.duration, 6.006)
        self.assertEqual(result.container.bit_rate, 2000000)
        self.assertEqual(result.video.codec, "h264")
        self.assertEqual(result.video.level, "31")
        self.assertEqual(result.video.color_space, "unknown")
        # No per-track bitrate: 85% of the container bitrate
        self.assertEqual(result.video.bit_rate, 1700000)
        self.assertEqual(result.resolution, "1280x720")
        self.assertAlmostEqual(result.fps, 29.97)
        self.assertEqual(result.audio.sample_rate, 48000)
        self.assertEqual(result.audio.bit_rate, 96000)

    def test_audio_bitrate_default(self):
        metadata = {"streams": [{"codec_type": "audio", "codec_name": "aac"}]}
        result = MediaProbe.parse_metadata(metadata)

        self.assertIsNone(result.video)
        self.assertEqual(result.audio.bit_rate, 128000)

    def test_nothing_found(self):
        with self.assertRaises(ProbeError):
            MediaProbe.parse_metadata({})

    def test_frame_rate(self):
        self.assertEqual(parse_frame_rate("25/1"), 25.0)
        self.assertEqual(parse_frame_rate("0/0"), 0.0)
        self.assertEqual(parse_frame_rate(None), 0.0)
        self.assertEqual(parse_frame_rate("abc"), 0.0)


class TestProbe(unittest.IsolatedAsyncioTestCase):
    def make_process(self, stdout=b"", stderr=b"", returncode=0):
        process = MagicMock()
        process.communicate = AsyncMock(return_value=(stdout, stderr))
        process.wait = AsyncMock(return_value=returncode)
        process.returncode = returncode
        return process

    async def test_success(self):
        process = self.make_process(json.dumps(FFPROBE_OUTPUT).encode())

        with patch("asyncio.create_subprocess_exec", return_value=process) as exec_mock:
            result = await MediaProbe().probe("http://cdn.test/seg.ts")

        self.assertEqual(result.video.codec, "h264")
        args = exec_mock.call_args[0]
        self.assertEqual(args[0], "ffprobe")
        self.assertEqual(args[-1], "http://cdn.test/seg.ts")
        self.assertIn("-show_streams", args)

    async def test_nonzero_exit(self):
        process = self.make_process(stderr=b"Invalid data found", returncode=1)

        with patch("asyncio.create_subprocess_exec", return_value=process):
            with self.assertRaises(ProbeError) as ctx:
                await MediaProbe().probe("http://cdn.test/seg.ts")
        self.assertIn("Invalid data found", str(ctx.exception))

    async def test_bad_json(self):
        process = self.make_process(b"not json")

        with patch("asyncio.create_subprocess_exec", return_value=process):
            with self.assertRaises(ProbeError):
                await MediaProbe().probe("http://cdn.test/seg.ts")

    async def test_missing_binary(self):
        with patch("asyncio.create_subprocess_exec", side_effect=FileNotFoundError("ffprobe")):
            with self.assertRaises(ProbeError):
                await MediaProbe().probe("http://cdn.test/seg.ts")

    async def test_timeout_kills_process(self):
        async def hang():
            await asyncio.sleep(10)

        process = self.make_process()
        process.communicate = AsyncMock(side_effect=hang)

        with patch("asyncio.create_subprocess_exec", return_value=process):
            with self.assertRaises(ProbeError) as ctx:
                await MediaProbe(timeout=0.01).probe("http://cdn.test/seg.ts")

        self.assertIn("timed out", str(ctx.exception))
        process.kill.assert_called_once()
        process.wait.assert_awaited()

import asyncio
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from PIL import Image

from streamwatch.errors import ThumbnailError
from streamwatch.services.thumbnail_generator import ThumbnailGenerator


def write_jpeg(segment_url, output_path):
    Image.new("RGB", (64, 36), color=(20, 120, 200)).save(output_path, "JPEG")


def write_garbage(segment_url, output_path):
    Path(output_path).write_bytes(b"not an image")


class TestThumbnailGenerator(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.generator = ThumbnailGenerator(thumbnails_dir=Path(self.tmp.name) / "thumbnails")

    def tearDown(self):
        self.tmp.cleanup()

    async def test_generate(self):
        with patch.object(self.generator, "extract_thumbnail", side_effect=write_jpeg):
            url = await self.generator.generate_thumbnail("abc", "http://cdn.test/seg.ts")

        self.assertTrue(url.startswith("/data/thumbnails/sprite-abc.jpg?t="))
        files = sorted(p.name for p in self.generator.thumbnails_dir.iterdir())
        self.assertEqual(files, ["sprite-abc.jpg"])

    async def test_invalid_image_keeps_previous(self):
        with patch.object(self.generator, "extract_thumbnail", side_effect=write_jpeg):
            await self.generator.generate_thumbnail("abc", "http://cdn.test/seg.ts")
        previous = (self.generator.thumbnails_dir / "sprite-abc.jpg").read_bytes()

        with patch.object(self.generator, "extract_thumbnail", side_effect=write_garbage):
            with self.assertRaises(ThumbnailError):
                await self.generator.generate_thumbnail("abc", "http://cdn.test/seg.ts")

        files = sorted(p.name for p in self.generator.thumbnails_dir.iterdir())
        self.assertEqual(files, ["sprite-abc.jpg"])
        self.assertEqual((self.generator.thumbnails_dir / "sprite-abc.jpg").read_bytes(), previous)

    async def test_ffmpeg_failure(self):
        with patch("asyncio.create_subprocess_exec", side_effect=FileNotFoundError("ffmpeg")):
            with self.assertRaises(ThumbnailError):
                await self.generator.generate_thumbnail("abc", "http://cdn.test/seg.ts")

    async def test_cleanup(self):
        with patch.object(self.generator, "extract_thumbnail", side_effect=write_jpeg):
            await self.generator.generate_thumbnail("abc", "http://cdn.test/seg.ts")

        self.generator.cleanup_stream_thumbnails("abc")
        self.assertEqual(list(self.generator.thumbnails_dir.iterdir()), [])

    async def test_overlapping_jobs_for_one_stream(self):
        async def slow_extract(segment_url, output_path):
            write_jpeg(segment_url, output_path)
            # ffmpeg still running after the frame is on disk
            await asyncio.sleep(0.05)

        with patch.object(self.generator, "extract_thumbnail", side_effect=slow_extract):
            results = await asyncio.gather(
                self.generator.generate_thumbnail("abc", "http://cdn.test/seg1.ts"),
                self.generator.generate_thumbnail("abc", "http://cdn.test/seg2.ts"),
                return_exceptions=True
            )

        for result in results:
            self.assertIsInstance(result, str)
            self.assertTrue(result.startswith("/data/thumbnails/sprite-abc.jpg?t="))
        files = sorted(p.name for p in self.generator.thumbnails_dir.iterdir())
        self.assertEqual(files, ["sprite-abc.jpg"])

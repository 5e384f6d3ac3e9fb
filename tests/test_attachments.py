"""Tests for JPEG transcoding and the on-disk attachment store."""

from __future__ import annotations

from io import BytesIO
from pathlib import Path
import tempfile
import unittest

from PIL import Image

from handybot.attachments import AttachmentStore, encode_jpeg, read_image_file
from handybot.exceptions import EncodingError
from handybot.models import Attachment, AttachmentType

JPEG_MAGIC = b"\xff\xd8"


def _png_bytes(mode: str = "RGB", size: tuple[int, int] = (8, 6)) -> bytes:
    buffer = BytesIO()
    color = (200, 30, 30, 128) if mode == "RGBA" else (200, 30, 30)
    Image.new(mode, size, color).save(buffer, format="PNG")
    return buffer.getvalue()


class EncodeJpegTests(unittest.TestCase):
    def test_png_is_transcoded_to_jpeg(self) -> None:
        data = encode_jpeg(_png_bytes())
        self.assertTrue(data.startswith(JPEG_MAGIC))
        with Image.open(BytesIO(data)) as decoded:
            self.assertEqual(decoded.format, "JPEG")
            self.assertEqual(decoded.size, (8, 6))

    def test_alpha_channel_is_flattened(self) -> None:
        data = encode_jpeg(_png_bytes("RGBA"))
        with Image.open(BytesIO(data)) as decoded:
            self.assertEqual(decoded.mode, "RGB")

    def test_pillow_image_is_accepted(self) -> None:
        data = encode_jpeg(Image.new("P", (4, 4)))
        self.assertTrue(data.startswith(JPEG_MAGIC))

    def test_undecodable_input_raises_encoding_error(self) -> None:
        with self.assertRaises(EncodingError):
            encode_jpeg(b"definitely not an image")


class AttachmentStoreTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.directory = Path(self._tmp.name) / "attachments"
        self.store = AttachmentStore(self.directory, quality=0.5)

    async def asyncTearDown(self) -> None:
        self._tmp.cleanup()

    async def test_store_writes_jpeg_under_unique_name(self) -> None:
        first = await self.store.store(_png_bytes())
        second = await self.store.store(_png_bytes())

        self.assertIs(first.type, AttachmentType.IMAGE)
        self.assertNotEqual(first.filename, second.filename)
        self.assertTrue(first.filename.endswith(".jpg"))
        self.assertEqual(Path(first.local_path), self.directory / first.filename)
        self.assertTrue(Path(first.local_path).read_bytes().startswith(JPEG_MAGIC))
        self.assertEqual(list(self.directory.glob("*.tmp")), [])

    async def test_load_returns_stored_bytes(self) -> None:
        attachment = await self.store.store(_png_bytes())
        data = self.store.load(attachment)
        self.assertEqual(data, Path(attachment.local_path).read_bytes())
        self.assertEqual(self.store.load(attachment.local_path), data)

    async def test_store_rejects_bad_input_without_writing(self) -> None:
        with self.assertRaises(EncodingError):
            await self.store.store(b"\x00\x01\x02")
        self.assertFalse(self.directory.exists())

    async def test_missing_file_loads_as_none(self) -> None:
        attachment = await self.store.store(_png_bytes())
        Path(attachment.local_path).unlink()
        self.assertIsNone(self.store.load(attachment))

    async def test_corrupt_file_loads_as_none(self) -> None:
        attachment = await self.store.store(_png_bytes())
        Path(attachment.local_path).write_bytes(b"garbage")
        self.assertIsNone(self.store.load(attachment))

    async def test_unknown_reference_loads_as_none(self) -> None:
        ghost = Attachment(filename="ghost.jpg", local_path=str(self.directory / "x"))
        self.assertIsNone(self.store.load(ghost))

    async def test_discard_removes_file_and_tolerates_repeats(self) -> None:
        attachment = await self.store.store(_png_bytes())
        self.store.discard(attachment)
        self.assertFalse(Path(attachment.local_path).exists())
        self.store.discard(attachment)


class ReadImageFileTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_reads_valid_image(self) -> None:
        path = self.root / "leak.PNG"
        path.write_bytes(_png_bytes())
        self.assertEqual(read_image_file(path), path.read_bytes())

    def test_rejects_missing_directory_wrong_type_and_oversize(self) -> None:
        text_file = self.root / "notes.txt"
        text_file.write_text("hi", encoding="utf-8")
        big = self.root / "big.jpg"
        big.write_bytes(b"0" * 32)

        cases = {
            "missing": (self.root / "nope.png", 1024),
            "directory": (self.root, 1024),
            "extension": (text_file, 1024),
            "size": (big, 16),
        }
        for label, (path, limit) in cases.items():
            with self.subTest(label):
                with self.assertRaises(EncodingError):
                    read_image_file(path, max_bytes=limit)


if __name__ == "__main__":
    unittest.main()

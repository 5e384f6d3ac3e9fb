"""Local image storage for message attachments.

Images are re-encoded to JPEG before they are written so that every stored
attachment has the same media type and a bounded size for the completion
request. Reads are lazy and degrade to ``None``: an attachment whose file
was pruned behind our back simply stops being sent.
"""

from __future__ import annotations

import asyncio
from io import BytesIO
import logging
import os
from pathlib import Path
from uuid import uuid4

from PIL import Image, UnidentifiedImageError

from .exceptions import EncodingError, PersistenceError
from .models import Attachment, AttachmentType

LOGGER = logging.getLogger(__name__)

DEFAULT_JPEG_QUALITY = 0.8

ImageInput = bytes | bytearray | Image.Image


def _pillow_quality(quality: float) -> int:
    """Map a 0.0-1.0 compression factor onto Pillow's 1-95 JPEG scale."""
    return max(1, min(95, round(quality * 100)))


def encode_jpeg(image: ImageInput, quality: float = DEFAULT_JPEG_QUALITY) -> bytes:
    """Transcode ``image`` to JPEG bytes.

    Raises:
        EncodingError: the input is not a decodable image or cannot be
            written as JPEG.
    """
    try:
        if isinstance(image, Image.Image):
            source = image
        else:
            source = Image.open(BytesIO(bytes(image)))
            source.load()
        # JPEG has no alpha channel or palette.
        if source.mode not in ("RGB", "L"):
            source = source.convert("RGB")
        buffer = BytesIO()
        source.save(buffer, format="JPEG", quality=_pillow_quality(quality))
    except (UnidentifiedImageError, OSError, ValueError, TypeError) as exc:
        raise EncodingError(f"Unable to encode image as JPEG: {exc}") from exc
    return buffer.getvalue()


class AttachmentStore:
    """Directory of JPEG files keyed by generated unique filenames."""

    def __init__(
        self, directory: str | Path, quality: float = DEFAULT_JPEG_QUALITY
    ) -> None:
        self.directory = Path(directory).expanduser()
        self.quality = quality

    def _ensure_directory(self) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)

    def _write_atomic(self, target: Path, data: bytes) -> None:
        self._ensure_directory()
        tmp = target.with_suffix(target.suffix + ".tmp")
        try:
            tmp.write_bytes(data)
            os.replace(tmp, target)
        except OSError as exc:
            tmp.unlink(missing_ok=True)
            raise PersistenceError(
                f"Unable to write attachment {target.name}: {exc}"
            ) from exc

    async def store(self, image: ImageInput) -> Attachment:
        """Encode and durably write ``image``, then return its reference."""
        data = encode_jpeg(image, self.quality)
        filename = f"{uuid4()}.jpg"
        target = self.directory / filename
        await asyncio.to_thread(self._write_atomic, target, data)
        LOGGER.debug(
            "attachment.stored",
            extra={
                "event": "attachment.stored",
                "filename": filename,
                "bytes": len(data),
            },
        )
        return Attachment(
            type=AttachmentType.IMAGE, filename=filename, local_path=str(target)
        )

    def load(self, reference: Attachment | str | Path) -> bytes | None:
        """Return the stored JPEG bytes, or ``None`` when missing or corrupt."""
        if isinstance(reference, Attachment):
            if reference.type is not AttachmentType.IMAGE:
                LOGGER.warning(
                    "attachment.load.unsupported_type",
                    extra={
                        "event": "attachment.load.unsupported_type",
                        "type": str(reference.type.value),
                    },
                )
                return None
            path = Path(reference.local_path)
        else:
            path = Path(reference)

        try:
            data = path.read_bytes()
            with Image.open(BytesIO(data)) as decoded:
                decoded.verify()
        except Exception as exc:  # noqa: BLE001 - unreadable means absent.
            LOGGER.warning(
                "attachment.load.failed",
                extra={
                    "event": "attachment.load.failed",
                    "path": str(path),
                    "error": str(exc),
                },
            )
            return None
        return data

    def discard(self, reference: Attachment) -> None:
        """Remove an attachment file that no message references any more."""
        try:
            Path(reference.local_path).unlink(missing_ok=True)
        except OSError as exc:
            LOGGER.warning(
                "attachment.discard.failed",
                extra={
                    "event": "attachment.discard.failed",
                    "path": reference.local_path,
                    "error": str(exc),
                },
            )


# Image file extensions accepted from the command line.
IMAGE_EXTENSIONS: frozenset[str] = frozenset(
    {".png", ".jpg", ".jpeg", ".gif", ".bmp", ".webp", ".tiff", ".tif"}
)
MAX_IMAGE_BYTES = 10 * 1024 * 1024


def read_image_file(path: str | Path, max_bytes: int = MAX_IMAGE_BYTES) -> bytes:
    """Validate an image path (existence, type, size) and return its bytes.

    Raises:
        EncodingError: the path is missing, not an image file, or too large.
    """
    resolved = Path(path).expanduser().resolve()
    if not resolved.exists():
        raise EncodingError(f"Image not found: {path}")
    if not resolved.is_file():
        raise EncodingError(f"Not a file: {path}")
    if resolved.suffix.lower() not in IMAGE_EXTENSIONS:
        exts = ", ".join(sorted(IMAGE_EXTENSIONS))
        raise EncodingError(f"Invalid image type. Allowed: {exts}")
    size = resolved.stat().st_size
    if size > max_bytes:
        max_mb = max_bytes / (1024 * 1024)
        raise EncodingError(f"Image too large (max {max_mb:.1f}MB)")
    return resolved.read_bytes()

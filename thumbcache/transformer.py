"""
Image resizing for thumbnails.

Policy: fit inside the requested box, preserve aspect ratio, never enlarge
beyond the source's native size. Output is deterministic for identical
inputs.
"""
from __future__ import annotations

import asyncio
import io
from pathlib import Path
from typing import Optional, Tuple

import numpy as np
import pillow_heif
import rawpy
from PIL import Image

from thumbcache.errors import TransformError

# Supported RAW formats
RAW_EXTS = {
    ".arw", ".cr2", ".cr3", ".nef",
    ".rw2", ".orf", ".raf", ".dng", ".srw", ".pef",
}

# Formats written back in their own encoding; everything else becomes JPEG
WRITABLE_FORMATS = {"JPEG", "PNG", "GIF", "WEBP", "BMP", "TIFF"}
FALLBACK_FORMAT = "JPEG"


def _load_raw_as_rgb(data: bytes) -> np.ndarray:
    """Decode RAW bytes into an RGB uint8 numpy array."""
    with rawpy.imread(io.BytesIO(data)) as raw:
        return raw.postprocess(
            use_auto_wb=True,
            no_auto_bright=True,
            output_bps=8,
        )


def fit_inside(
    native: Tuple[int, int],
    width: int,
    height: Optional[int] = None,
) -> Tuple[int, int]:
    """
    Bounding box passed to Image.thumbnail for a request.

    With no height the box is bounded only by width; the native height keeps
    the box from ever forcing a taller image.
    """
    _, h0 = native
    return width, (height if height is not None else h0)


class ImageTransformer:
    """
    Resizes encoded images with Pillow.

    HEIC/HEIF decode through pillow-heif, camera RAW through rawpy.
    """

    def __init__(self, jpeg_quality: int = 85):
        self.jpeg_quality = jpeg_quality

    def init(self) -> None:
        pillow_heif.register_heif_opener()

    def shutdown(self) -> None:
        pass

    def _decode(self, data: bytes, format_hint: str | None) -> Tuple[Image.Image, str]:
        ext = Path(format_hint).suffix.lower() if format_hint else ""
        if ext in RAW_EXTS:
            return Image.fromarray(_load_raw_as_rgb(data)).convert("RGB"), FALLBACK_FORMAT
        img = Image.open(io.BytesIO(data))
        img.load()
        fmt = img.format if img.format in WRITABLE_FORMATS else FALLBACK_FORMAT
        return img, fmt

    def _encode(self, img: Image.Image, fmt: str) -> bytes:
        save_kwargs = {}
        if fmt == "JPEG":
            if img.mode not in ("RGB", "L"):
                img = img.convert("RGB")
            save_kwargs["quality"] = self.jpeg_quality
        elif fmt == "WEBP":
            save_kwargs["quality"] = self.jpeg_quality
        buf = io.BytesIO()
        img.save(buf, fmt, **save_kwargs)
        return buf.getvalue()

    def resize(
        self,
        data: bytes,
        width: int,
        height: Optional[int] = None,
        format_hint: str | None = None,
    ) -> bytes:
        """
        Resize encoded image bytes.

        Args:
            data: Encoded source image
            width: Maximum output width
            height: Maximum output height, or None to bound by width only
            format_hint: Source identifier or filename, used to spot RAW files

        Returns:
            Encoded thumbnail bytes

        Raises:
            TransformError: If the image cannot be decoded, resized or encoded
        """
        try:
            img, fmt = self._decode(data, format_hint)
            img.thumbnail(fit_inside(img.size, width, height), Image.Resampling.LANCZOS)
            return self._encode(img, fmt)
        except Exception as e:
            raise TransformError(f"Thumbnail generation failed: {e}") from e

    async def resize_async(
        self,
        data: bytes,
        width: int,
        height: Optional[int] = None,
        format_hint: str | None = None,
    ) -> bytes:
        """Resize in the default executor (CPU-bound)."""
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, self.resize, data, width, height, format_hint)

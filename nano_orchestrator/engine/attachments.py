"""Attachment preprocessing — image decode/resize to pixel buffers, and image fetch."""

from __future__ import annotations

import asyncio
import base64
import io
import logging
from typing import Iterable
from urllib.parse import urlparse

import httpx
from PIL import Image, UnidentifiedImageError

from nano_orchestrator.engine.errors import ImageDecodeError, ImageFetchError
from nano_orchestrator.engine.models import Attachment, PixelBuffer

logger = logging.getLogger(__name__)

ALLOWED_IMAGE_SCHEMES = ("http", "https")
IMAGE_CONTENT_TYPE_PREFIX = "image/"


def compute_target_size(width: int, height: int, max_width: int) -> tuple[int, int]:
    """Scale down to *max_width* preserving aspect ratio; never upscale."""
    if width <= max_width:
        return width, height
    scaled_height = max(1, round(height * max_width / width))
    return max_width, scaled_height


def decode_to_pixel_buffer(data: bytes, max_width: int) -> PixelBuffer:
    """Blocking decode + resize. Run via ``AttachmentPreprocessor`` off the loop."""
    image = None
    rendered = None
    try:
        image = Image.open(io.BytesIO(data))
        image.load()
        width, height = compute_target_size(image.width, image.height, max_width)
        rendered = image.convert("RGBA")
        if (width, height) != rendered.size:
            resized = rendered.resize((width, height), Image.Resampling.LANCZOS)
            rendered.close()
            rendered = resized
        return PixelBuffer(width=width, height=height, mode="RGBA", data=rendered.tobytes())
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as exc:
        raise ImageDecodeError(f"cannot decode image: {exc}") from exc
    finally:
        # Release decoded intermediates even on error
        if rendered is not None:
            rendered.close()
        if image is not None:
            image.close()


def encode_png_data_url(buffer: PixelBuffer) -> str:
    """PNG ``data:`` URL for engines that take images over a text protocol."""
    image = Image.frombytes(buffer.mode, (buffer.width, buffer.height), buffer.data)
    try:
        out = io.BytesIO()
        image.save(out, format="PNG")
    finally:
        image.close()
    return "data:image/png;base64," + base64.b64encode(out.getvalue()).decode("ascii")


class AttachmentPreprocessor:
    """Turns image attachments into pixel buffers; text attachments pass through."""

    def __init__(self, max_width: int = 1024) -> None:
        self._max_width = max_width

    @property
    def max_width(self) -> int:
        return self._max_width

    async def to_pixel_buffer(self, data: bytes) -> PixelBuffer:
        return await asyncio.to_thread(decode_to_pixel_buffer, data, self._max_width)

    async def prepare_images(self, attachments: Iterable[Attachment]) -> list[PixelBuffer]:
        images = [att for att in attachments if att.is_image]
        if not images:
            return []
        buffers = await asyncio.gather(*(self.to_pixel_buffer(att.data) for att in images))  # type: ignore[arg-type]
        logger.debug("Prepared %d image attachment(s)", len(buffers))
        return list(buffers)


async def fetch_image(
    url: str,
    timeout: float = 5.0,
    client: httpx.AsyncClient | None = None,
) -> tuple[bytes, str]:
    """Download an image over http(s) with a bounded wait.

    Returns ``(content, mime_type)``.
    """
    parsed = urlparse(url)
    if parsed.scheme not in ALLOWED_IMAGE_SCHEMES or not parsed.netloc:
        raise ImageFetchError(
            f"unsupported image url {url!r}",
            user_message="Invalid image URL. Only HTTP/HTTPS images are supported.",
        )

    owns_client = client is None
    http = client or httpx.AsyncClient(timeout=timeout, follow_redirects=True)
    try:
        response = await http.get(url, timeout=timeout)
        response.raise_for_status()
        content_type = response.headers.get("content-type", "").split(";", 1)[0].strip().lower()
        if not content_type.startswith(IMAGE_CONTENT_TYPE_PREFIX):
            raise ImageFetchError(f"not an image: content-type={content_type!r}")
        return response.content, content_type
    except httpx.HTTPError as exc:
        logger.warning("Image fetch failed for %s: %s", url, exc)
        raise ImageFetchError(f"image fetch failed: {exc}") from exc
    finally:
        if owns_client:
            await http.aclose()

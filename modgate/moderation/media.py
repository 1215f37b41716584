
import asyncio
import base64
import binascii
import contextlib
import io
import logging
import mimetypes
import os
import tempfile
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Optional, Tuple, Union

import httpx
from PIL import Image, UnidentifiedImageError

from modgate.errors import FetchError
from modgate.schemas import MediaReference

logger = logging.getLogger(__name__)

DEFAULT_IMAGE_MIME = "image/jpeg"
DEFAULT_VIDEO_MIME = "video/mp4"
_CHUNK_SIZE = 64 * 1024


@dataclass(frozen=True)
class TemporaryMediaFile:
    """A downloaded/decoded media file owned by exactly one fetch context."""
    path: str
    mime: str
    size_bytes: int


@dataclass(frozen=True)
class ImagePayload:
    """An image ready for the vision API: a pass-through URL or inline bytes."""
    data: Optional[bytes] = None
    mime: str = DEFAULT_IMAGE_MIME
    url: Optional[str] = None

    def to_image_url(self) -> str:
        if self.url:
            return self.url
        encoded = base64.b64encode(self.data or b"").decode("utf-8")
        return f"data:{self.mime};base64,{encoded}"


def limited(limiter: Optional[asyncio.Semaphore]):
    """Acquire the per-request call limiter if one is given."""
    return limiter if limiter is not None else contextlib.nullcontext()


def decode_base64_payload(payload: str) -> Tuple[bytes, Optional[str]]:
    """
    Decode an inline payload. A leading data URI header is accepted and its
    mime type returned alongside the bytes.
    """
    mime = None
    if payload.startswith("data:"):
        header, _, payload = payload.partition(",")
        mime = header[5:].split(";")[0] or None
    try:
        data = base64.b64decode("".join(payload.split()), validate=True)
    except (binascii.Error, ValueError) as e:
        raise FetchError("Invalid base64 payload", cause="decode_failure") from e
    if not data:
        raise FetchError("Empty inline payload", cause="decode_failure")
    return data, mime


def optimize_image(source: Union[bytes, Image.Image], max_size: int = 1024, quality: int = 90) -> Tuple[bytes, int, int]:
    """
    Downscale to max_size and re-encode as RGB JPEG.
    Returns (jpeg_bytes, original_width, original_height).
    """
    if isinstance(source, (bytes, bytearray)):
        img = Image.open(io.BytesIO(source))
        img.load()
    else:
        img = source

    orig_w, orig_h = img.size
    if max(orig_w, orig_h) > max_size:
        img = img.copy()
        img.thumbnail((max_size, max_size))
    if img.mode != "RGB":
        img = img.convert("RGB")

    buffer = io.BytesIO()
    img.save(buffer, format="JPEG", quality=quality)
    return buffer.getvalue(), orig_w, orig_h


def remove_temp_file(path: str) -> None:
    try:
        if os.path.exists(path):
            os.remove(path)
            logger.debug(f"[CLEANUP] Removed {path}")
    except OSError as e:
        logger.error(f"[CLEANUP] Could not remove {path}: {e}")


def _suffix_for(ref: MediaReference, default_mime: str) -> str:
    if ref.filename:
        ext = os.path.splitext(ref.filename)[1].lower()
        if ext:
            return ext
    return mimetypes.guess_extension(ref.content_type or default_mime) or ""


class MediaFetcher:
    """Resolves media references into scoped temporary files or image payloads."""

    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
        max_bytes: int = 100 * 1024 * 1024,
        image_max_dimension: int = 640,
    ):
        self.http_client = http_client
        self.timeout = timeout
        self.max_bytes = max_bytes
        self.image_max_dimension = image_max_dimension

    @asynccontextmanager
    async def fetch(
        self,
        ref: MediaReference,
        default_mime: str = DEFAULT_VIDEO_MIME,
        limiter: Optional[asyncio.Semaphore] = None,
    ) -> AsyncIterator[TemporaryMediaFile]:
        """
        Materialize a reference as a temporary file. The file is removed when
        the context exits, whatever the exit path.
        """
        tmp_file = tempfile.NamedTemporaryFile(delete=False, prefix="modgate_", suffix=_suffix_for(ref, default_mime))
        temp_path = tmp_file.name
        try:
            try:
                if ref.base64:
                    data, prefix_mime = decode_base64_payload(ref.base64)
                    if len(data) > self.max_bytes:
                        raise FetchError(f"Inline payload exceeds {self.max_bytes} bytes", cause="too_large")
                    tmp_file.write(data)
                    size, mime = len(data), ref.content_type or prefix_mime or default_mime
                elif not ref.url:
                    raise FetchError("Media reference has neither url nor base64", cause="empty_reference")
                else:
                    async with limited(limiter):
                        size, header_mime = await self._download(ref.url, tmp_file)
                    mime = ref.content_type or header_mime or default_mime
            finally:
                tmp_file.close()

            logger.info(f"[FETCH] Stored {size} bytes ({mime}) at {temp_path}")
            yield TemporaryMediaFile(path=temp_path, mime=mime, size_bytes=size)
        finally:
            remove_temp_file(temp_path)

    async def _download(self, url: str, fh) -> Tuple[int, Optional[str]]:
        if not url.lower().startswith(("http://", "https://")):
            raise FetchError(f"Unsupported URL scheme: {url}", cause="unsupported_scheme")

        client = self.http_client
        owns_client = client is None
        if owns_client:
            client = httpx.AsyncClient(timeout=self.timeout, follow_redirects=True)
        try:
            async with client.stream("GET", url) as response:
                if not 200 <= response.status_code < 300:
                    raise FetchError(f"Failed to download file: {response.status_code}", cause=f"http_{response.status_code}")
                size = 0
                async for chunk in response.aiter_bytes(_CHUNK_SIZE):
                    size += len(chunk)
                    if size > self.max_bytes:
                        raise FetchError(f"Download exceeds {self.max_bytes} bytes", cause="too_large")
                    fh.write(chunk)
                content_type = response.headers.get("content-type")
        except httpx.HTTPError as e:
            raise FetchError(f"Failed to download {url}: {e}", cause="transport") from e
        finally:
            if owns_client:
                await client.aclose()

        header_mime = content_type.split(";")[0].strip() if content_type else None
        return size, header_mime or None

    def resolve_image(self, ref: MediaReference) -> ImagePayload:
        """URL images pass through to the vision API; inline images are decoded and downscaled."""
        if ref.url:
            return ImagePayload(url=ref.url, mime=ref.content_type or DEFAULT_IMAGE_MIME)

        data, _ = decode_base64_payload(ref.base64)
        try:
            jpeg, width, height = optimize_image(data, max_size=self.image_max_dimension)
        except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as e:
            raise FetchError("Inline image could not be decoded", cause="decode_failure") from e
        logger.debug(f"[FETCH] Inline image {width}x{height} re-encoded ({len(jpeg)} bytes)")
        return ImagePayload(data=jpeg, mime="image/jpeg")

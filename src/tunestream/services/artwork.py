"""Thumbnail artwork fetching (aiohttp) and decoding (Pillow)."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from io import BytesIO

import aiohttp
from PIL import Image

from tunestream.utils.async_utils import run_blocking

logger = logging.getLogger(__name__)

MAX_ARTWORK_BYTES = 5_000_000
ARTWORK_ERRORS: tuple[type[BaseException], ...] = (
    aiohttp.ClientError,
    asyncio.TimeoutError,
    OSError,
    ValueError,
    Image.DecompressionBombError,
)


@dataclass(frozen=True)
class Artwork:
    """Fetched artwork bytes plus decoded image dimensions."""

    url: str
    width: int
    height: int
    image_format: str | None
    data: bytes


def decode_artwork(url: str, data: bytes) -> Artwork:
    """Decode image bytes fully; raises `OSError` for unreadable data."""
    with Image.open(BytesIO(data)) as image:
        image.load()
        width, height = image.size
        image_format = image.format
    return Artwork(
        url=url, width=width, height=height, image_format=image_format, data=data
    )


class ArtworkLoader:
    """Loads artwork by URL with a lazily created aiohttp session."""

    def __init__(
        self,
        *,
        fetch_bytes: Callable[[str], Awaitable[bytes]] | None = None,
        timeout_s: float = 10.0,
        max_bytes: int = MAX_ARTWORK_BYTES,
    ) -> None:
        self._fetch_bytes = fetch_bytes or self._fetch_with_aiohttp
        self._timeout = aiohttp.ClientTimeout(total=timeout_s)
        self._max_bytes = max_bytes
        self._session: aiohttp.ClientSession | None = None

    async def load(self, url: str) -> Artwork:
        data = await self._fetch_bytes(url)
        if len(data) > self._max_bytes:
            raise ValueError(f"Artwork exceeds {self._max_bytes} bytes: {url}")
        return await run_blocking(decode_artwork, url, data)

    async def aclose(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def _fetch_with_aiohttp(self, url: str) -> bytes:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        async with self._session.get(url) as response:
            response.raise_for_status()
            data = await response.read()
        logger.debug("Fetched %d artwork bytes from %s", len(data), url)
        return data

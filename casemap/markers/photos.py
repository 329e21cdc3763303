"""
Marker photo loader.

Fetches case photos and turns them into small circular PNG medallions
(data URIs) for the marker inset. Decoding is best-effort: any fetch or
decode failure raises PhotoDecodeError and the marker keeps its default
avatar.
"""

import base64
import logging
from typing import Dict, Optional
from urllib.parse import urljoin

import aiohttp
import cv2
import numpy as np

from ..errors import PhotoDecodeError

logger = logging.getLogger(__name__)

MEDALLION_SIZE = 64


def make_medallion(data: bytes, size: int = MEDALLION_SIZE) -> str:
    """Decode image bytes into a circular PNG data URI."""
    nparr = np.frombuffer(data, np.uint8)
    image = cv2.imdecode(nparr, cv2.IMREAD_COLOR) if nparr.size else None
    if image is None:
        raise PhotoDecodeError("Failed to decode image")

    # Centre square crop
    h, w = image.shape[:2]
    side = min(h, w)
    y0 = (h - side) // 2
    x0 = (w - side) // 2
    square = image[y0:y0 + side, x0:x0 + side]
    square = cv2.resize(square, (size, size), interpolation=cv2.INTER_AREA)

    mask = np.zeros((size, size), dtype=np.uint8)
    cv2.circle(mask, (size // 2, size // 2), size // 2, 255, thickness=-1)
    rgba = cv2.cvtColor(square, cv2.COLOR_BGR2BGRA)
    rgba[:, :, 3] = mask

    ok, encoded = cv2.imencode(".png", rgba)
    if not ok:
        raise PhotoDecodeError("Failed to encode medallion")
    return "data:image/png;base64," + base64.b64encode(encoded.tobytes()).decode("ascii")


class PhotoLoader:
    """
    Loads case photos into marker medallions.

    Usage:
        photos = PhotoLoader(base_url="http://localhost:8000")
        uri = await photos.load("/media/cases/7.jpg")
        ...
        await photos.close()
    """

    def __init__(
        self,
        base_url: str = "",
        timeout: float = 10.0,
        size: int = MEDALLION_SIZE,
        cache_size: int = 256,
    ):
        self.base_url = base_url
        self.timeout = timeout
        self.size = size
        self.cache_size = cache_size

        self._session: Optional[aiohttp.ClientSession] = None
        self._cache: Dict[str, str] = {}

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
        return self._session

    async def close(self):
        if self._session and not self._session.closed:
            await self._session.close()

    def resolve_url(self, photo: str) -> str:
        if photo.startswith(("http://", "https://", "data:")):
            return photo
        return urljoin(self.base_url.rstrip("/") + "/", photo.lstrip("/"))

    async def fetch(self, url: str) -> bytes:
        session = await self._get_session()
        try:
            async with session.get(url) as resp:
                if resp.status != 200:
                    raise PhotoDecodeError(f"Photo fetch failed: HTTP {resp.status}")
                return await resp.read()
        except aiohttp.ClientError as e:
            raise PhotoDecodeError(f"Photo fetch failed: {e}") from e

    async def load(self, photo: str) -> str:
        """Return a medallion data URI for photo, fetching it if needed."""
        url = self.resolve_url(photo)
        cached = self._cache.get(url)
        if cached is not None:
            return cached

        if url.startswith("data:"):
            try:
                data = base64.b64decode(url.split(",", 1)[1])
            except (IndexError, ValueError) as e:
                raise PhotoDecodeError(f"Malformed data URI: {e}") from e
        else:
            data = await self.fetch(url)

        uri = make_medallion(data, self.size)

        if len(self._cache) >= self.cache_size:
            # Drop the oldest entry
            self._cache.pop(next(iter(self._cache)))
        self._cache[url] = uri
        logger.debug(f"Decoded photo medallion for {url}")
        return uri

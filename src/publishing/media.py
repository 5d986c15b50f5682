"""Hero image download.

Images are fetched over HTTPS only, with a bounded timeout. When the URL
path carries no file extension, a HEAD probe maps the Content-Type to one.
"""

from __future__ import annotations

import logging
import posixpath
from dataclasses import dataclass
from urllib.parse import unquote, urlsplit

import httpx

logger = logging.getLogger(__name__)

MIME_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
}
DEFAULT_FILENAME = "image"
MAX_REDIRECTS = 5


class ImageFetchError(Exception):
    """The image could not be downloaded."""


@dataclass
class FetchedImage:
    data: bytes
    filename: str
    content_type: str | None = None


def is_https_url(url: str) -> bool:
    """True for well-formed URLs with the https scheme and a host."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return False
    return parts.scheme.lower() == "https" and bool(parts.netloc)


def filename_from_url(url: str) -> str:
    """Last path segment of ``url``, or a generic name when the path is empty."""
    path = unquote(urlsplit(url).path)
    name = posixpath.basename(path.rstrip("/"))
    return name or DEFAULT_FILENAME


def extension_for_content_type(content_type: str | None) -> str | None:
    if not content_type:
        return None
    return MIME_EXTENSIONS.get(content_type.split(";")[0].strip().lower())


class ImageFetcher:
    """Downloads hero images.

    Args:
        download_timeout: Seconds allowed for the download.
        probe_timeout: Seconds allowed for the HEAD probe.
        transport: Optional httpx transport, used by tests.
    """

    def __init__(
        self,
        download_timeout: float = 300.0,
        probe_timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.download_timeout = download_timeout
        self.probe_timeout = probe_timeout
        self._transport = transport

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=True,
            max_redirects=MAX_REDIRECTS,
            transport=self._transport,
        )

    async def fetch(self, url: str) -> FetchedImage:
        """Download ``url``.

        Raises:
            ImageFetchError: Insecure URL, transport failure, error status,
                or an empty body.
        """
        if not is_https_url(url):
            raise ImageFetchError("Image URL must use HTTPS.")

        try:
            async with self._client(self.download_timeout) as client:
                response = await client.get(url)
        except httpx.HTTPError as exc:
            raise ImageFetchError(f"Image download failed: {exc}") from exc

        if response.status_code >= 400:
            raise ImageFetchError(f"Image download failed with HTTP {response.status_code}")
        if not is_https_url(str(response.url)):
            raise ImageFetchError("Image download was redirected to an insecure URL.")
        if not response.content:
            raise ImageFetchError("Downloaded image is empty.")

        content_type = response.headers.get("content-type")
        filename = filename_from_url(url)
        if not posixpath.splitext(filename)[1]:
            extension = await self._probe_extension(url)
            if extension:
                filename = f"{filename}.{extension}"

        logger.info("Downloaded image %s (%d bytes)", filename, len(response.content))
        return FetchedImage(data=response.content, filename=filename, content_type=content_type)

    async def _probe_extension(self, url: str) -> str | None:
        """Ask the origin for the Content-Type with a HEAD request."""
        try:
            async with self._client(self.probe_timeout) as client:
                response = await client.head(url)
        except httpx.HTTPError as exc:
            logger.warning("HEAD probe for %s failed: %s", url, exc)
            return None
        return extension_for_content_type(response.headers.get("content-type"))

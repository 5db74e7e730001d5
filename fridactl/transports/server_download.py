"""Frida server binary provider backed by the GitHub release downloads."""

from __future__ import annotations

import io
import logging
import lzma
from typing import BinaryIO

import httpx

from fridactl.core.config import DEFAULT_DOWNLOAD_URL
from fridactl.core.errors import ServerDownloadError

LOGGER = logging.getLogger(__name__)


class FridaServerDownloader:
    """Download and decompress ``frida-server`` builds.

    ``url_template`` is formatted with ``version``, ``platform`` and ``arch``.
    """

    def __init__(
        self,
        *,
        url_template: str = DEFAULT_DOWNLOAD_URL,
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url_template = url_template
        self.timeout = timeout
        self._transport = transport

    async def fetch(self, *, version: str, platform: str, arch: str) -> BinaryIO:
        url = self.url_template.format(version=version, platform=platform, arch=arch)
        LOGGER.info("Downloading Frida server from %s", url)

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=True,
                transport=self._transport,
            ) as client:
                resp = await client.get(url)
                resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise ServerDownloadError(
                f"Frida server download failed with HTTP {exc.response.status_code}: {url}"
            ) from exc
        except httpx.HTTPError as exc:
            raise ServerDownloadError(f"Frida server download failed: {exc}") from exc

        try:
            binary = lzma.decompress(resp.content)
        except lzma.LZMAError as exc:
            raise ServerDownloadError(f"Frida server download from {url} is not valid xz data") from exc

        return io.BytesIO(binary)

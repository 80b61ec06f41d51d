"""Link preview enrichment: page title and image for a target URL.

The fetch is bounded by ``PREVIEW_TIMEOUT_SECONDS``. Any failure (timeout,
connection error, non-HTML body) yields an empty ``LinkPreview`` so link
creation proceeds without the enrichment. The body is streamed and reading
stops at ``PREVIEW_MAX_BYTES``, so large pages are never downloaded in full.
"""

import asyncio
import logging
import re
from dataclasses import dataclass

import httpx

from shortlink.config import Settings

__all__ = ["LinkPreview", "PreviewFetcher", "extract_preview"]

logger = logging.getLogger(__name__)

USER_AGENT = "Mozilla/5.0 (compatible; LinkPreviewBot/1.0)"

_TITLE_PATTERNS = (
    re.compile(r"<title[^>]*>([^<]+)</title>", re.IGNORECASE),
    re.compile(r'<meta[^>]*property="og:title"[^>]*content="([^"]+)"', re.IGNORECASE),
    re.compile(r'<meta[^>]*content="([^"]+)"[^>]*property="og:title"', re.IGNORECASE),
)
_IMAGE_PATTERNS = (
    re.compile(r'<meta[^>]*property="og:image"[^>]*content="([^"]+)"', re.IGNORECASE),
    re.compile(r'<meta[^>]*content="([^"]+)"[^>]*property="og:image"', re.IGNORECASE),
    re.compile(r'<meta[^>]*name="twitter:image"[^>]*content="([^"]+)"', re.IGNORECASE),
)


@dataclass(frozen=True)
class LinkPreview:
    title: str | None = None
    image: str | None = None


def _first_match(patterns: tuple[re.Pattern, ...], html: str) -> str | None:
    for pattern in patterns:
        match = pattern.search(html)
        if match:
            return match.group(1).strip()
    return None


def extract_preview(html: str) -> LinkPreview:
    return LinkPreview(title=_first_match(_TITLE_PATTERNS, html), image=_first_match(_IMAGE_PATTERNS, html))


class PreviewFetcher:
    def __init__(self, settings: Settings, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._enabled = settings.PREVIEW_ENABLED
        self._timeout = settings.PREVIEW_TIMEOUT_SECONDS
        self._max_bytes = settings.PREVIEW_MAX_BYTES
        self._transport = transport

    async def fetch(self, url: str) -> LinkPreview:
        if not self._enabled:
            return LinkPreview()
        try:
            # httpx timeouts are per phase; wait_for bounds the whole fetch.
            html = await asyncio.wait_for(self._read_html(url), self._timeout)
        except (httpx.HTTPError, asyncio.TimeoutError) as exc:
            logger.info(f"Preview fetch failed for {url}: {exc!r}")
            return LinkPreview()

        if html is None:
            return LinkPreview()
        return extract_preview(html)

    async def _read_html(self, url: str) -> str | None:
        """Stream the page body, stopping once ``PREVIEW_MAX_BYTES`` have arrived."""
        async with httpx.AsyncClient(
            timeout=self._timeout,
            follow_redirects=True,
            headers={"User-Agent": USER_AGENT},
            transport=self._transport,
        ) as client:
            async with client.stream("GET", url) as response:
                response.raise_for_status()
                if "html" not in response.headers.get("content-type", "html"):
                    return None
                encoding = response.charset_encoding or "utf-8"
                body = bytearray()
                async for chunk in response.aiter_bytes():
                    body.extend(chunk)
                    if len(body) >= self._max_bytes:
                        break

        try:
            return body[: self._max_bytes].decode(encoding, errors="replace")
        except LookupError:
            return body[: self._max_bytes].decode("utf-8", errors="replace")

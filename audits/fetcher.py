"""HTTP retrieval of product pages for the audit pipeline."""
from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Dict, Optional

import httpx
from bs4 import UnicodeDammit

from shared.config import get_settings

from .errors import FetchError


@dataclass
class FetchedPage:
    """Markup and transport metadata for one retrieved URL."""

    url: str
    final_url: str
    status: int
    latency_ms: int
    headers: Dict[str, str]
    body: str


class PageFetcher:
    """Blocking fetcher shared by the audit worker threads.

    ``httpx.Client`` is thread-safe, so a single instance serves a whole batch.
    There are no retries: a failed fetch fails the run.
    """

    def __init__(
        self,
        *,
        client: Optional[httpx.Client] = None,
        user_agent: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        settings = get_settings()
        self.user_agent = user_agent or settings.user_agent
        self.timeout = timeout if timeout is not None else settings.fetch_timeout
        self._owns_client = client is None
        self._client = client or httpx.Client(
            headers={"User-Agent": self.user_agent},
            timeout=self.timeout,
            follow_redirects=True,
            transport=transport,
        )

    def __enter__(self) -> "PageFetcher":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # type: ignore[override]
        self.close()

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def fetch(self, url: str) -> FetchedPage:
        start = time.perf_counter()
        try:
            response = self._client.get(url)
            raw = response.content
        except httpx.TimeoutException as exc:
            raise FetchError(url, f"timed out after {self.timeout}s") from exc
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise FetchError(url, str(exc) or exc.__class__.__name__) from exc
        latency_ms = int(round((time.perf_counter() - start) * 1000))

        return FetchedPage(
            url=url,
            final_url=str(response.url),
            status=response.status_code,
            latency_ms=latency_ms,
            headers=dict(response.headers),
            body=decode_body(url, raw, response.charset_encoding),
        )


def decode_body(url: str, raw: bytes, charset: Optional[str]) -> str:
    """Decode markup with the header charset, else the document's own declaration.

    Without a header charset, ``UnicodeDammit`` honours BOMs and
    ``<meta charset>`` before falling back to utf-8 and windows-1252.
    """

    if charset:
        try:
            return raw.decode(charset)
        except (LookupError, UnicodeDecodeError) as exc:
            raise FetchError(url, f"undecodable body ({exc})") from exc

    dammit = UnicodeDammit(raw, is_html=True)
    if dammit.unicode_markup is None:
        raise FetchError(url, "undecodable body (no usable encoding)")
    return dammit.unicode_markup

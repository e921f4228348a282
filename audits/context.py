"""Per-page input snapshot handed to every catalogue check."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, Mapping

from bs4 import BeautifulSoup

from .fetcher import FetchedPage


class HeaderView(Mapping[str, str]):
    """Read-only, case-insensitive view over response headers."""

    def __init__(self, headers: Mapping[str, str]) -> None:
        self._items = {key.lower(): value for key, value in headers.items()}

    def __getitem__(self, key: str) -> str:
        return self._items[key.lower()]

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and key.lower() in self._items

    def __iter__(self) -> Iterator[str]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __repr__(self) -> str:
        return f"HeaderView({self._items!r})"


@dataclass(frozen=True)
class AuditContext:
    """Everything the checks may read about one fetched page.

    One instance is built per run and shared by reference with every
    evaluator; evaluators must treat ``document`` as read-only.
    """

    url: str
    http_status: int
    response_time: int
    html: str
    document: BeautifulSoup
    headers: HeaderView

    @classmethod
    def from_fetch(cls, url: str, page: FetchedPage) -> "AuditContext":
        # Checks see the requested URL, not the post-redirect one.
        return cls(
            url=url,
            http_status=page.status,
            response_time=page.latency_ms,
            html=page.body,
            document=BeautifulSoup(page.body, "html.parser"),
            headers=HeaderView(page.headers),
        )

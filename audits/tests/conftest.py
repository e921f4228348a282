from __future__ import annotations

import json
import sys
import uuid
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional, Union

PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from audits.context import AuditContext
from audits.errors import FetchError
from audits.fetcher import FetchedPage
from audits.store import AuditStore
from shared.models import Base, ProductPage, Project


PAGE_URL = "https://shop.example.com/products/trail-runner"

DESCRIPTION = (
    "Lightweight trail running shoe with a grippy outsole, breathable mesh upper and "
    "a cushioned midsole built for long days on rocky mountain paths."
)


def product_html(
    *,
    url: str = PAGE_URL,
    title: str = "Trail Runner X2 Shoes | Example Outdoor Shop",
    description: Optional[str] = DESCRIPTION,
    body_words: int = 320,
    images: str = '<img src="/a.jpg" alt="Side view"><img src="/b.jpg" alt="Sole">',
    json_ld: Optional[object] = None,
    extra_head: str = "",
    extra_body: str = "",
) -> str:
    """Return product markup that passes every catalogue check unless overridden."""

    if json_ld is None:
        json_ld = {
            "@context": "https://schema.org",
            "@type": "Product",
            "name": "Trail Runner X2",
            "brand": {"@type": "Brand", "name": "Example"},
            "offers": {
                "@type": "Offer",
                "price": "129.00",
                "priceCurrency": "USD",
                "availability": "https://schema.org/InStock",
            },
            "aggregateRating": {"ratingValue": "4.7", "reviewCount": "212"},
        }
    description_tag = (
        f'<meta name="description" content="{description}">' if description is not None else ""
    )
    words = " ".join(["grip"] * body_words)
    return f"""<!doctype html>
<html>
<head>
<title>{title}</title>
{description_tag}
<link rel="canonical" href="{url}">
<script type="application/ld+json">{json.dumps(json_ld)}</script>
{extra_head}
</head>
<body>
<h1>Trail Runner X2</h1>
{images}
<p>{words}</p>
<table class="specs"><tr><th>Weight</th><td>280g</td></tr></table>
<section id="faq"><h2>Questions</h2></section>
{extra_body}
</body>
</html>"""


def fetched(
    body: str,
    *,
    url: str = PAGE_URL,
    status: int = 200,
    latency_ms: int = 180,
    headers: Optional[Mapping[str, str]] = None,
) -> FetchedPage:
    return FetchedPage(
        url=url,
        final_url=url,
        status=status,
        latency_ms=latency_ms,
        headers=dict(headers or {"Content-Type": "text/html; charset=utf-8"}),
        body=body,
    )


@pytest.fixture()
def make_context() -> Callable[..., AuditContext]:
    def factory(html: Optional[str] = None, *, url: str = PAGE_URL, **kwargs) -> AuditContext:
        body = html if html is not None else product_html(url=url)
        return AuditContext.from_fetch(url, fetched(body, url=url, **kwargs))

    return factory


class StaticFetcher:
    """Serves canned pages (or raises canned errors) keyed by URL."""

    def __init__(self, pages: Dict[str, Union[FetchedPage, Exception]]) -> None:
        self.pages = pages
        self.calls: List[str] = []

    def fetch(self, url: str) -> FetchedPage:
        self.calls.append(url)
        outcome = self.pages.get(url)
        if outcome is None:
            raise FetchError(url, "connection refused")
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@pytest.fixture()
def session_factory(tmp_path: Path) -> sessionmaker[Session]:
    engine = create_engine(
        f"sqlite:///{tmp_path / 'audits.db'}",
        connect_args={"check_same_thread": False},
        future=True,
    )
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine, expire_on_commit=False, future=True)
    engine.dispose()


@pytest.fixture()
def store(session_factory: sessionmaker[Session]) -> AuditStore:
    return AuditStore(session_factory)


@pytest.fixture()
def seed_pages(session_factory: sessionmaker[Session]) -> Callable[..., List[ProductPage]]:
    def factory(urls: List[str], project_id: Optional[uuid.UUID] = None) -> List[ProductPage]:
        project_id = project_id or uuid.uuid4()
        with session_factory() as session:
            if session.get(Project, project_id) is None:
                session.add(Project(id=project_id, name="Example Outdoor"))
            pages = [
                ProductPage(
                    id=uuid.uuid4(),
                    project_id=project_id,
                    url=url,
                    normalized_url=url.lower().rstrip("/"),
                )
                for url in urls
            ]
            session.add_all(pages)
            session.commit()
        return pages

    return factory

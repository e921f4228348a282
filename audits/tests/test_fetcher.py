from __future__ import annotations

import httpx
import pytest

from audits.errors import FetchError
from audits.fetcher import PageFetcher

from conftest import PAGE_URL


def _fetcher(handler) -> PageFetcher:
    return PageFetcher(
        transport=httpx.MockTransport(handler),
        user_agent="ProductPageIntelligence/1.0 (SEO Audit Bot)",
        timeout=2.0,
    )


def test_fetch_returns_body_status_and_headers() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["user_agent"] = request.headers["user-agent"]
        return httpx.Response(
            200,
            headers={"Content-Type": "text/html; charset=utf-8", "X-Robots-Tag": "all"},
            content="<html><title>Café</title></html>".encode("utf-8"),
        )

    with _fetcher(handler) as fetcher:
        page = fetcher.fetch(PAGE_URL)

    assert seen["user_agent"] == "ProductPageIntelligence/1.0 (SEO Audit Bot)"
    assert page.status == 200
    assert page.body == "<html><title>Café</title></html>"
    assert page.final_url == PAGE_URL
    assert page.headers["x-robots-tag"] == "all"
    assert page.latency_ms >= 0


def test_non_success_status_is_returned_not_raised() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="maintenance")

    with _fetcher(handler) as fetcher:
        page = fetcher.fetch(PAGE_URL)

    assert page.status == 503
    assert page.body == "maintenance"


def test_redirects_are_followed() -> None:
    target = "https://shop.example.com/p/trail-runner"

    def handler(request: httpx.Request) -> httpx.Response:
        if str(request.url) == PAGE_URL:
            return httpx.Response(301, headers={"Location": target})
        return httpx.Response(200, text="<html></html>")

    with _fetcher(handler) as fetcher:
        page = fetcher.fetch(PAGE_URL)

    assert page.url == PAGE_URL
    assert page.final_url == target
    assert page.status == 200


@pytest.mark.parametrize(
    ("error", "reason"),
    [
        (httpx.ReadTimeout, "timed out after 2.0s"),
        (httpx.ConnectError, "connection refused"),
    ],
)
def test_transport_errors_become_fetch_errors(error, reason) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise error("connection refused", request=request)

    with _fetcher(handler) as fetcher:
        with pytest.raises(FetchError) as excinfo:
            fetcher.fetch(PAGE_URL)

    assert excinfo.value.url == PAGE_URL
    assert excinfo.value.reason == reason
    assert str(excinfo.value) == f"Failed to fetch {PAGE_URL}: {reason}"


def test_undecodable_body_is_a_fetch_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            headers={"Content-Type": "text/html; charset=utf-8"},
            content=b"<html>\xff\xfe\xfa</html>",
        )

    with _fetcher(handler) as fetcher:
        with pytest.raises(FetchError, match="undecodable body"):
            fetcher.fetch(PAGE_URL)


def test_meta_charset_is_honoured_without_header_charset() -> None:
    markup = '<html><head><meta charset="windows-1252"><title>Café</title></head></html>'

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            headers={"Content-Type": "text/html"},
            content=markup.encode("cp1252"),
        )

    with _fetcher(handler) as fetcher:
        page = fetcher.fetch(PAGE_URL)

    assert "<title>Café</title>" in page.body


def test_malformed_url_is_a_fetch_error() -> None:
    url = f"{PAGE_URL}\x00"

    with _fetcher(lambda request: httpx.Response(200)) as fetcher:
        with pytest.raises(FetchError) as excinfo:
            fetcher.fetch(url)

    assert excinfo.value.url == url


def test_injected_client_is_not_closed() -> None:
    client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(200)))

    with PageFetcher(client=client):
        pass

    assert not client.is_closed
    client.close()

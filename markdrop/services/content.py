from __future__ import annotations

import warnings

import httpx
from bs4 import BeautifulSoup, XMLParsedAsHTMLWarning

from markdrop.errors import TransientDeliveryError

DEFAULT_HEADERS = {
    "User-Agent": "markdrop/1.0 (+https://github.com/markdrop/markdrop)",
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
}

TITLE_MAX_LENGTH = 255


def _normalize_error(exc: Exception) -> str:
    message = str(exc).strip()
    if message:
        return message
    return exc.__class__.__name__


def fetch_html(
    url: str,
    timeout: float,
    max_bytes: int,
    transport: httpx.BaseTransport | None = None,
) -> tuple[str, str, int]:
    with httpx.Client(
        follow_redirects=True,
        timeout=timeout,
        headers=DEFAULT_HEADERS,
        transport=transport,
    ) as client:
        with client.stream("GET", url) as response:
            status_code = response.status_code
            chunks = []
            total = 0
            for chunk in response.iter_bytes():
                total += len(chunk)
                if total > max_bytes:
                    break
                chunks.append(chunk)
            data = b"".join(chunks)
            encoding = response.encoding or "utf-8"
            return (
                data.decode(encoding, errors="ignore"),
                str(response.url),
                status_code,
            )


def extract_title(html: str) -> str | None:
    if not html:
        return None
    with warnings.catch_warnings():
        warnings.filterwarnings("ignore", category=XMLParsedAsHTMLWarning)
        soup = BeautifulSoup(html, "lxml")

    og_title = soup.find("meta", attrs={"property": "og:title"})
    if og_title and (og_title.get("content") or "").strip():
        return _clean_title(og_title["content"])
    if soup.title and soup.title.string:
        return _clean_title(soup.title.string)
    return None


def _clean_title(value: str) -> str | None:
    title = " ".join(value.split())
    if not title:
        return None
    return title[:TITLE_MAX_LENGTH]


def fetch_page_title(
    url: str,
    timeout: float,
    max_bytes: int,
    transport: httpx.BaseTransport | None = None,
) -> str | None:
    try:
        html, _final_url, status_code = fetch_html(
            url, timeout=timeout, max_bytes=max_bytes, transport=transport
        )
    except httpx.HTTPError as exc:
        raise TransientDeliveryError(_normalize_error(exc)) from exc
    if not 200 <= status_code < 300:
        return None
    return extract_title(html)

from __future__ import annotations

import logging
from dataclasses import dataclass

import requests
from bs4 import BeautifulSoup

from jobcodex.errors import DocumentReadError

logger = logging.getLogger(__name__)


USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
    "AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)

TEXT_TYPES = frozenset({"text/plain", "text/markdown", "text/x-markdown"})
HTML_TYPES = frozenset({"text/html", "application/xhtml+xml"})


@dataclass(slots=True)
class DocumentText:
    text: str
    page_count: int = 1


def _decode(data: bytes | str) -> str:
    if isinstance(data, str):
        return data
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        return data.decode("latin-1")


def _clean_lines(text: str) -> str:
    lines = [line.strip() for line in text.splitlines() if line.strip()]
    return "\n".join(lines)


def html_to_text(html: str) -> str:
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "noscript"]):
        tag.extract()
    return _clean_lines(soup.get_text("\n"))


def read_document(data: bytes | str, mime_type: str, *, min_chars: int = 0) -> DocumentText:
    mime = mime_type.split(";", 1)[0].strip().lower()
    if mime in TEXT_TYPES:
        text = _clean_lines(_decode(data))
    elif mime in HTML_TYPES:
        text = html_to_text(_decode(data))
    else:
        raise DocumentReadError(f"unsupported document type '{mime_type}'")

    if len(text) < min_chars:
        raise DocumentReadError(f"document yielded {len(text)} characters, at least {min_chars} required")
    return DocumentText(text=text, page_count=1)


def fetch_url_text(url: str, timeout_sec: int = 30, *, min_chars: int = 0) -> str:
    try:
        response = requests.get(url, timeout=timeout_sec, headers={"User-Agent": USER_AGENT})
        response.raise_for_status()
    except requests.RequestException as exc:
        logger.warning("Failed to fetch URL %s: %s", url, exc)
        raise DocumentReadError(f"could not fetch {url}: {exc}") from exc

    content_type = response.headers.get("Content-Type", "text/html")
    if "html" not in content_type and not content_type.startswith("text/"):
        raise DocumentReadError(f"unsupported content type '{content_type}' at {url}")
    mime = "text/plain" if content_type.startswith("text/plain") else "text/html"
    return read_document(response.text, mime, min_chars=min_chars).text

from __future__ import annotations

import pytest
import requests

from jobcodex.core import document_reader
from jobcodex.core.document_reader import fetch_url_text, html_to_text, read_document
from jobcodex.errors import DocumentReadError


class FakeResponse:
    def __init__(self, text: str, content_type: str = "text/html; charset=utf-8", status: int = 200):
        self.text = text
        self.headers = {"Content-Type": content_type}
        self.status_code = status

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")


def test_html_to_text_drops_scripts_and_blank_lines() -> None:
    html = "<html><head><style>p{}</style><script>track()</script></head><body><h1>Data Engineer</h1>\n\n<p>Spark  </p></body></html>"
    assert html_to_text(html) == "Data Engineer\nSpark"


def test_read_document_handles_text_and_markdown() -> None:
    assert read_document(b"  Line one \n\n Line two ", "text/plain").text == "Line one\nLine two"
    assert read_document("# Title\n- item", "text/markdown; charset=utf-8").text == "# Title\n- item"


def test_read_document_decodes_latin1_fallback() -> None:
    assert read_document("Kø".encode("latin-1"), "text/plain").text == "Kø"


def test_read_document_rejects_unsupported_or_short_input() -> None:
    with pytest.raises(DocumentReadError, match="unsupported document type"):
        read_document(b"%PDF-1.7", "application/pdf")
    with pytest.raises(DocumentReadError, match="at least 50 required"):
        read_document(b"too short", "text/plain", min_chars=50)


def test_fetch_url_text_reads_html(monkeypatch: pytest.MonkeyPatch) -> None:
    seen: dict = {}

    def fake_get(url, timeout, headers):
        seen.update(url=url, timeout=timeout)
        return FakeResponse("<p>Platform Engineer</p><p>Kubernetes</p>")

    monkeypatch.setattr(document_reader.requests, "get", fake_get)

    assert fetch_url_text("https://jobs.example/1", 5) == "Platform Engineer\nKubernetes"
    assert seen == {"url": "https://jobs.example/1", "timeout": 5}


def test_fetch_url_text_wraps_http_and_type_errors(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(document_reader.requests, "get", lambda url, timeout, headers: FakeResponse("", status=404))
    with pytest.raises(DocumentReadError, match="could not fetch"):
        fetch_url_text("https://jobs.example/missing")

    monkeypatch.setattr(
        document_reader.requests,
        "get",
        lambda url, timeout, headers: FakeResponse("{}", content_type="application/json"),
    )
    with pytest.raises(DocumentReadError, match="unsupported content type"):
        fetch_url_text("https://jobs.example/api")

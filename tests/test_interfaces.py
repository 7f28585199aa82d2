"""Tests for request parsing and signed references."""

from datetime import datetime, timezone

import pytest

from pdf_service.conversion import ConversionRequest, MalformedRequest, SignedBlobReference


def test_parse_valid_body():
    """A JSON object with a url string is accepted."""
    req = ConversionRequest.from_body(b'{"url": " https://example.com/a.docx "}')
    assert req.url == "https://example.com/a.docx"


def test_parse_ignores_extra_fields():
    req = ConversionRequest.from_body(b'{"url": "https://example.com/a.docx", "other": 1}')
    assert req.url == "https://example.com/a.docx"


@pytest.mark.parametrize(
    "body",
    [
        b"",
        b"not json",
        b"[1, 2]",
        b'"https://example.com"',
        b"{}",
        b'{"url": 42}',
        b'{"url": ""}',
        b'{"url": null}',
        b"\xff\xfe",
    ],
)
def test_parse_malformed_body(body):
    """Invalid JSON or a missing url field is a MalformedRequest (HTTP 400)."""
    with pytest.raises(MalformedRequest) as exc_info:
        ConversionRequest.from_body(body)
    assert exc_info.value.status_code == 400


def test_signed_reference_url():
    """The link is the blob URI followed by the SAS query string."""
    ref = SignedBlobReference(
        blob_uri="https://acct.blob.core.windows.net/converted-files/x.pdf",
        token="sv=2024&sig=abc",
        expiry=datetime(2030, 1, 1, tzinfo=timezone.utc),
    )
    assert ref.url == "https://acct.blob.core.windows.net/converted-files/x.pdf?sv=2024&sig=abc"

"""Tests for the Streamlit client's request helper."""

from unittest.mock import MagicMock, patch

import requests

from pdf_service.streamlit_app import request_conversion


def _resp(status, text, headers=None):
    resp = MagicMock()
    resp.status_code = status
    resp.text = text
    resp.headers = headers or {}
    return resp


def test_success_returns_link():
    with patch("pdf_service.streamlit_app.requests.post", return_value=_resp(200, "https://x/y.pdf?sig=1\n")) as post:
        ok, text = request_conversion("https://example.com/a.docx", api_base="http://api")

    assert ok is True
    assert text == "https://x/y.pdf?sig=1"
    post.assert_called_once()
    assert post.call_args.args[0] == "http://api/"
    assert post.call_args.kwargs["json"] == {"url": "https://example.com/a.docx"}


def test_error_returns_status_and_text():
    with patch("pdf_service.streamlit_app.requests.post", return_value=_resp(404, "Source file not found")):
        ok, text = request_conversion("https://example.com/a.docx", api_base="http://api")

    assert ok is False
    assert text == "404 Source file not found"


def test_open_circuit_mentions_retry():
    resp = _resp(503, "Source downloads temporarily suspended", {"Retry-After": "7"})
    with patch("pdf_service.streamlit_app.requests.post", return_value=resp):
        ok, text = request_conversion("https://example.com/a.docx", api_base="http://api")

    assert ok is False
    assert "retry in 7s" in text


def test_connection_error():
    with patch("pdf_service.streamlit_app.requests.post", side_effect=requests.ConnectionError("refused")):
        ok, text = request_conversion("https://example.com/a.docx", api_base="http://api")

    assert ok is False
    assert "Failed to connect to API" in text

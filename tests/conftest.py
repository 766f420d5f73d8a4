"""
Pytest configuration and shared fixtures for all tests.

This module provides shared fixtures and configuration for the test suite,
including:
- Real ``requests.Response`` objects for simulated HTTP exchanges
- A temporary SQLite webmention store
- Rate limiting cache cleanup between tests

HTTP is never performed: tests patch the module-level ``build_session`` of
the module under test and hand back a MagicMock session whose get/head/post
return responses built by ``make_response``.
"""

import io
from http import HTTPStatus
from unittest.mock import MagicMock

import pytest
from requests import Response
from requests.structures import CaseInsensitiveDict
from requests.utils import get_encoding_from_headers

from storage import WebmentionStore


SOURCE = "https://source.example/post"
TARGET = "https://target.example/article"


def make_response(status_code=200, body=b"", headers=None, url=SOURCE):
    """Build a streamed requests.Response with the given status, body and headers."""
    if isinstance(body, str):
        body = body.encode("utf-8")
    response = Response()
    response.status_code = status_code
    response.headers = CaseInsensitiveDict(headers or {})
    response.raw = io.BytesIO(body)
    response.encoding = get_encoding_from_headers(response.headers)
    response.url = url
    try:
        response.reason = HTTPStatus(status_code).phrase
    except ValueError:
        response.reason = ""
    return response


def html_response(html, status_code=200, url=SOURCE, headers=None):
    all_headers = {"Content-Type": "text/html; charset=utf-8"}
    all_headers.update(headers or {})
    return make_response(status_code, html, all_headers, url)


def fake_session(get=None, head=None, post=None):
    """MagicMock session; each argument is a Response, an exception or a list of them."""
    session = MagicMock()
    for name, value in (("get", get), ("head", head), ("post", post)):
        method = getattr(session, name)
        if isinstance(value, list):
            method.side_effect = value
        elif isinstance(value, BaseException):
            method.side_effect = value
        elif value is not None:
            method.return_value = value
    return session


@pytest.fixture
def store(tmp_path):
    """Temporary WebmentionStore."""
    return WebmentionStore(str(tmp_path))


@pytest.fixture(autouse=True)
def clear_rate_limiting_caches():
    """Clear the per-IP request rate cache before and after each test.

    The cache is module-level in web.app and persists across tests.
    """
    from web.app import clear_rate_limit_caches

    clear_rate_limit_caches()
    yield
    clear_rate_limit_caches()

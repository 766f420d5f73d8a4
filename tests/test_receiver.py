"""
Tests for the framework-agnostic webmention Receiver.

Covers:
- Request validation (method, body, content type, URLs, extensions)
- Target domain allow-list
- Source fetching and verification (HTML, JSON, text)
- Storage side effects (insert on success, delete on 410 and on failed
  verification)

Running Tests:
    $ PYTHONPATH=src python -m pytest tests/test_receiver.py -v
"""
from unittest.mock import MagicMock, patch
from urllib.parse import urlencode

import pytest
import requests

from conftest import SOURCE, TARGET, fake_session, html_response, make_response
from indieweb.extensions import LIKE, ExtensionKind, ParsedWebmention
from indieweb.net import DEFAULT_RECEIVER_USER_AGENT
from indieweb.receiver import FORM_CONTENT_TYPE, Receiver, parse_url
from indieweb.results import Err, ErrorKind, Received

LINKING_HTML = f'<html><body><a href="{TARGET}" webmention>reply</a></body></html>'


def form(**fields):
    return urlencode(fields).encode("utf-8")


@pytest.fixture
def mock_store():
    return MagicMock()


@pytest.fixture
def receiver(mock_store):
    return Receiver(mock_store)


class TestParseUrl:
    def test_valid(self):
        assert parse_url(" https://a.example/x ", "source", ["https:"]) == "https://a.example/x"

    def test_international_host(self):
        assert parse_url("https://bücher.example/", "target", ["https:"]) == "https://bücher.example/"

    @pytest.mark.parametrize("value", [None, "", "   "])
    def test_missing(self, value):
        result = parse_url(value, "target", ["https:"])
        assert result.kind == ErrorKind.MISSING_URL
        assert result.message == "Missing target URL"

    @pytest.mark.parametrize(
        "value",
        [
            "not-a-url",
            "https://",
            "http://a.example:notaport/",
            "http://exa mple.com/",
            "http://a.example|b/",
            "https://*.example/",
        ],
    )
    def test_invalid(self, value):
        assert parse_url(value, "source", ["http:", "https:"]).kind == ErrorKind.INVALID_URL

    def test_too_long(self):
        assert parse_url("https://a.example/" + "x" * 3000, "source", ["https:"]).kind == ErrorKind.INVALID_URL

    def test_unsupported_protocol(self):
        result = parse_url("ftp://a.example/file", "source", ["http:", "https:"])
        assert result.kind == ErrorKind.UNSUPPORTED_PROTOCOL
        assert result.message == "source URL protocol ftp: is not accepted"


class TestRequestValidation:
    def test_method_must_be_post(self, receiver):
        result = receiver.receive("GET", FORM_CONTENT_TYPE, form(source=SOURCE, target=TARGET))
        assert result == Err(ErrorKind.METHOD_NOT_ALLOWED, "Webmention request must be POST", 405)

    def test_empty_body(self, receiver):
        result = receiver.receive("POST", FORM_CONTENT_TYPE, b"")
        assert result.kind == ErrorKind.MISSING_BODY
        assert result.status == 400

    def test_wrong_content_type(self, receiver):
        result = receiver.receive("POST", "application/json", b'{"source": "x"}')
        assert result.kind == ErrorKind.UNSUPPORTED_MEDIA_TYPE
        assert result.status == 400

    def test_missing_content_type(self, receiver):
        result = receiver.receive("POST", None, form(source=SOURCE, target=TARGET))
        assert result.kind == ErrorKind.UNSUPPORTED_MEDIA_TYPE

    def test_malformed_body(self, receiver):
        result = receiver.receive("POST", FORM_CONTENT_TYPE, b"\xff\xfe")
        assert result.kind == ErrorKind.MALFORMED_BODY

    def test_field_without_value(self, receiver):
        result = receiver.receive("POST", FORM_CONTENT_TYPE, b"source")
        assert result.kind == ErrorKind.MISSING_URL
        assert result.message == "Missing source URL"

    @patch("indieweb.receiver.build_session")
    def test_trailing_separator(self, mock_build, receiver):
        mock_build.return_value = fake_session(get=html_response(LINKING_HTML))
        result = receiver.receive("POST", FORM_CONTENT_TYPE, form(source=SOURCE, target=TARGET) + b"&")
        assert isinstance(result, Received)

    def test_missing_source(self, receiver):
        result = receiver.receive("POST", FORM_CONTENT_TYPE, form(target=TARGET))
        assert result.message == "Missing source URL"

    def test_missing_target(self, receiver):
        result = receiver.receive("POST", FORM_CONTENT_TYPE, form(source=SOURCE))
        assert result.message == "Missing target URL"

    def test_same_url(self, receiver):
        result = receiver.receive(
            "POST", FORM_CONTENT_TYPE, form(source="https://A.example/post", target="https://a.example:443/post")
        )
        assert result.kind == ErrorKind.SAME_URL
        assert result.status == 400

    def test_payload_without_definition(self, receiver):
        result = receiver.receive("POST", FORM_CONTENT_TYPE, form(source=SOURCE, target=TARGET, payload="{}"))
        assert result.kind == ErrorKind.PAYLOAD_WITHOUT_DEFINITION

    def test_unknown_extension_banned(self, mock_store):
        receiver = Receiver(mock_store, ban_unknown_extensions=True)
        body = form(source=SOURCE, target=TARGET, definition="https://ext.example/x/", payload="{}")
        result = receiver.receive("POST", FORM_CONTENT_TYPE, body)
        assert result.kind == ErrorKind.UNSUPPORTED_EXTENSION

    def test_target_domain_not_accepted(self, mock_store):
        receiver = Receiver(mock_store, accepted_target_domains=["*.blog.example"])
        result = receiver.receive("POST", FORM_CONTENT_TYPE, form(source=SOURCE, target=TARGET))
        assert result.kind == ErrorKind.TARGET_DOMAIN_NOT_ACCEPTED
        assert "target.example" in result.message

    def test_validation_does_not_fetch(self, receiver):
        with patch("indieweb.receiver.build_session") as mock_build:
            receiver.receive("POST", FORM_CONTENT_TYPE, form(source=SOURCE, target=SOURCE))
        mock_build.return_value.get.assert_not_called()


class TestSourceVerification:
    @patch("indieweb.receiver.build_session")
    def test_html_mention_is_stored(self, mock_build, receiver, mock_store):
        mock_build.return_value = fake_session(get=html_response(LINKING_HTML))

        result = receiver.receive("POST", FORM_CONTENT_TYPE, form(source=SOURCE, target=TARGET))

        assert result == Received(ParsedWebmention(SOURCE, TARGET, ExtensionKind.BASIC, None))
        mock_store.insert.assert_called_once_with(ParsedWebmention(SOURCE, TARGET, ExtensionKind.BASIC, None))
        mock_store.delete.assert_not_called()

    @patch("indieweb.receiver.build_session")
    def test_fetch_request(self, mock_build, receiver):
        session = fake_session(get=html_response(LINKING_HTML))
        mock_build.return_value = session

        receiver.receive("POST", FORM_CONTENT_TYPE, form(source=SOURCE, target=TARGET))

        mock_build.assert_called_once_with(DEFAULT_RECEIVER_USER_AGENT)
        args, kwargs = session.get.call_args
        assert args == (SOURCE,)
        assert kwargs["headers"]["Accept"] == "text/html, application/json, text/plain"
        assert kwargs["timeout"] == 10
        assert kwargs["stream"] is True

    @patch("indieweb.receiver.build_session")
    def test_content_type_with_charset_accepted(self, mock_build, receiver):
        mock_build.return_value = fake_session(get=html_response(LINKING_HTML))
        result = receiver.receive(
            "POST", "application/x-www-form-urlencoded; charset=utf-8", form(source=SOURCE, target=TARGET)
        )
        assert isinstance(result, Received)

    @patch("indieweb.receiver.build_session")
    def test_extension_is_stored_with_kind(self, mock_build, receiver, mock_store):
        mock_build.return_value = fake_session(get=html_response(LINKING_HTML))
        body = form(source=SOURCE, target=TARGET, definition=LIKE.definition, payload="{}")

        result = receiver.receive("POST", FORM_CONTENT_TYPE, body)

        assert result.webmention.kind == ExtensionKind.LIKE
        mock_store.insert.assert_called_once_with(ParsedWebmention(SOURCE, TARGET, ExtensionKind.LIKE, {}))

    @patch("indieweb.receiver.build_session")
    def test_first_value_of_repeated_field_wins(self, mock_build, receiver, mock_store):
        mock_build.return_value = fake_session(get=html_response(LINKING_HTML))
        body = f"source={SOURCE}&target={TARGET}&target=https://other.example/".encode()

        receiver.receive("POST", FORM_CONTENT_TYPE, body)

        assert mock_store.insert.call_args[0][0].target == TARGET

    @patch("indieweb.receiver.build_session")
    def test_text_source_with_target(self, mock_build, receiver):
        mock_build.return_value = fake_session(
            get=make_response(200, f"Replying to {TARGET}", {"Content-Type": "text/plain"})
        )
        assert receiver.handle("POST", FORM_CONTENT_TYPE, form(source=SOURCE, target=TARGET)) == ("OK", 200)

    @patch("indieweb.receiver.build_session")
    def test_text_source_without_target(self, mock_build, receiver, mock_store):
        mock_build.return_value = fake_session(
            get=make_response(200, "Nothing to see", {"Content-Type": "text/plain"})
        )
        text, status = receiver.handle("POST", FORM_CONTENT_TYPE, form(source=SOURCE, target=TARGET))
        assert (text, status) == ("Text body does not contain target", 400)
        mock_store.delete.assert_called_once_with(SOURCE, TARGET)
        mock_store.insert.assert_not_called()

    @patch("indieweb.receiver.build_session")
    def test_json_source(self, mock_build, receiver):
        mock_build.return_value = fake_session(
            get=make_response(200, f'{{"links": ["{TARGET}"]}}', {"Content-Type": "application/json"})
        )
        result = receiver.receive("POST", FORM_CONTENT_TYPE, form(source=SOURCE, target=TARGET))
        assert isinstance(result, Received)

    @patch("indieweb.receiver.build_session")
    def test_html_without_attribute(self, mock_build, receiver):
        mock_build.return_value = fake_session(get=html_response(f'<a href="{TARGET}">x</a>'))
        result = receiver.receive("POST", FORM_CONTENT_TYPE, form(source=SOURCE, target=TARGET))
        assert result == Err(ErrorKind.TARGET_NOT_FOUND, "HTML body does not contain target", 400)

    @patch("indieweb.receiver.build_session")
    def test_source_gone_deletes(self, mock_build, receiver, mock_store):
        mock_build.return_value = fake_session(get=make_response(410, "Gone"))

        text, status = receiver.handle("POST", FORM_CONTENT_TYPE, form(source=SOURCE, target=TARGET))

        assert (text, status) == ("Source is gone, webmention deleted", 200)
        mock_store.delete.assert_called_once_with(SOURCE, TARGET)
        mock_store.insert.assert_not_called()

    @patch("indieweb.receiver.build_session")
    def test_source_error_status(self, mock_build, receiver, mock_store):
        mock_build.return_value = fake_session(get=make_response(500, "upstream exploded"))

        result = receiver.receive("POST", FORM_CONTENT_TYPE, form(source=SOURCE, target=TARGET))

        assert result.kind == ErrorKind.SOURCE_ERROR_STATUS
        assert result.status == 400
        assert result.message == "Failed to fetch source: 500\nupstream exploded"
        mock_store.delete.assert_not_called()

    @patch("indieweb.receiver.build_session")
    def test_source_error_without_body_uses_reason(self, mock_build, receiver):
        mock_build.return_value = fake_session(get=make_response(404, b""))
        result = receiver.receive("POST", FORM_CONTENT_TYPE, form(source=SOURCE, target=TARGET))
        assert result.message == "Failed to fetch source: 404\nNot Found"

    @patch("indieweb.receiver.build_session")
    def test_empty_source_body(self, mock_build, receiver):
        mock_build.return_value = fake_session(get=make_response(204, b""))
        result = receiver.receive("POST", FORM_CONTENT_TYPE, form(source=SOURCE, target=TARGET))
        assert result.kind == ErrorKind.EMPTY_SOURCE_BODY

    @patch("indieweb.receiver.build_session")
    def test_unsupported_source_content_type(self, mock_build, receiver):
        mock_build.return_value = fake_session(get=make_response(200, b"\x89PNG", {"Content-Type": "image/png"}))
        result = receiver.receive("POST", FORM_CONTENT_TYPE, form(source=SOURCE, target=TARGET))
        assert result.kind == ErrorKind.UNSUPPORTED_CONTENT_TYPE
        assert result.status == 400

    @patch("indieweb.receiver.build_session")
    def test_custom_content_type_check(self, mock_build, mock_store):
        check = MagicMock(return_value=True)
        receiver = Receiver(mock_store, check_custom_content_type_body=check)
        mock_build.return_value = fake_session(get=make_response(200, b"<feed/>", {"Content-Type": "application/atom+xml"}))

        result = receiver.receive("POST", FORM_CONTENT_TYPE, form(source=SOURCE, target=TARGET))

        assert isinstance(result, Received)
        assert check.call_args[0][1] == "application/atom+xml"

    @pytest.mark.parametrize(
        "error",
        [requests.exceptions.Timeout("slow"), requests.exceptions.ConnectionError("refused")],
    )
    def test_fetch_failure(self, receiver, error):
        with patch("indieweb.receiver.build_session", return_value=fake_session(get=error)):
            result = receiver.receive("POST", FORM_CONTENT_TYPE, form(source=SOURCE, target=TARGET))
        assert result.kind == ErrorKind.FETCH_FAILED
        assert result.status == 500

    @patch("indieweb.receiver.build_session")
    @patch("indieweb.receiver.is_private_or_loopback", return_value=True)
    def test_private_source_blocked(self, mock_private, mock_build, mock_store):
        receiver = Receiver(mock_store, block_private_networks=True)
        result = receiver.receive("POST", FORM_CONTENT_TYPE, form(source="http://127.0.0.1/", target=TARGET))
        assert result.kind == ErrorKind.BLOCKED_ADDRESS
        mock_build.return_value.get.assert_not_called()

    @patch("indieweb.receiver.build_session")
    @patch("indieweb.receiver.is_private_or_loopback", side_effect=[False, True])
    def test_redirect_to_private_source_blocked(self, mock_private, mock_build, mock_store):
        mock_build.return_value = fake_session(
            get=make_response(302, headers={"Location": "http://127.0.0.1/admin"})
        )
        receiver = Receiver(mock_store, block_private_networks=True)

        result = receiver.receive("POST", FORM_CONTENT_TYPE, form(source=SOURCE, target=TARGET))

        assert result.kind == ErrorKind.BLOCKED_ADDRESS
        assert mock_private.call_args[0][0] == "http://127.0.0.1/admin"
        assert mock_build.return_value.get.call_count == 1
        mock_store.insert.assert_not_called()

    @patch("indieweb.receiver.build_session")
    @patch("indieweb.receiver.is_private_or_loopback", return_value=False)
    def test_redirect_followed_when_blocking_private(self, mock_private, mock_build, mock_store):
        session = fake_session(
            get=[
                make_response(301, headers={"Location": "/moved"}),
                html_response(LINKING_HTML, url="https://source.example/moved"),
            ]
        )
        mock_build.return_value = session
        receiver = Receiver(mock_store, block_private_networks=True)

        result = receiver.receive("POST", FORM_CONTENT_TYPE, form(source=SOURCE, target=TARGET))

        assert isinstance(result, Received)
        assert session.get.call_args_list[1][0][0] == "https://source.example/moved"
        assert session.get.call_args[1]["allow_redirects"] is False
        mock_store.insert.assert_called_once()

    @patch("indieweb.receiver.build_session")
    @patch("indieweb.receiver.is_private_or_loopback", return_value=False)
    def test_redirect_loop_when_blocking_private(self, mock_private, mock_build, mock_store):
        mock_build.return_value = MagicMock()
        mock_build.return_value.get.side_effect = lambda url, **kwargs: make_response(
            302, headers={"Location": url}
        )
        receiver = Receiver(mock_store, block_private_networks=True)

        result = receiver.receive("POST", FORM_CONTENT_TYPE, form(source=SOURCE, target=TARGET))

        assert result.kind == ErrorKind.FETCH_FAILED
        assert result.status == 500

    @patch("indieweb.receiver.build_session")
    def test_works_without_store(self, mock_build):
        mock_build.return_value = fake_session(get=make_response(410))
        result = Receiver().receive("POST", FORM_CONTENT_TYPE, form(source=SOURCE, target=TARGET))
        assert result.deleted is True


class TestReceiverWithStore:
    @patch("indieweb.receiver.build_session")
    def test_receive_then_gone(self, mock_build, store):
        receiver = Receiver(store)
        body = form(source=SOURCE, target=TARGET)

        mock_build.return_value = fake_session(get=html_response(LINKING_HTML))
        assert receiver.handle("POST", FORM_CONTENT_TYPE, body) == ("OK", 200)
        assert store.get(SOURCE, TARGET)["kind"] == ExtensionKind.BASIC

        mock_build.return_value = fake_session(get=make_response(410))
        assert receiver.handle("POST", FORM_CONTENT_TYPE, body)[1] == 200
        assert store.get(SOURCE, TARGET) is None

    @patch("indieweb.receiver.build_session")
    def test_link_removed_deletes(self, mock_build, store):
        receiver = Receiver(store)
        body = form(source=SOURCE, target=TARGET)

        mock_build.return_value = fake_session(get=html_response(LINKING_HTML))
        receiver.handle("POST", FORM_CONTENT_TYPE, body)

        mock_build.return_value = fake_session(get=html_response("<p>edited</p>"))
        assert receiver.handle("POST", FORM_CONTENT_TYPE, body)[1] == 400
        assert store.count() == 0


class TestFromConfig:
    def test_reads_receiver_section(self, mock_store):
        config = {
            "receiver": {
                "require_attribute": None,
                "accepted_protocols": ["https"],
                "accepted_target_domains": ["blog.example"],
                "timeout": 5,
                "ban_unknown_extensions": True,
            }
        }
        receiver = Receiver.from_config(config, mock_store)
        assert receiver.store is mock_store
        assert receiver.accepted_protocols == ["https:"]
        assert receiver.accepted_target_domains == ["blog.example"]
        assert receiver.timeout == 5
        assert receiver.ban_unknown_extensions is True
        assert receiver.verifier.require_attribute is None
        assert receiver.user_agent == DEFAULT_RECEIVER_USER_AGENT

    def test_empty_config_uses_defaults(self):
        receiver = Receiver.from_config({})
        assert receiver.accepted_protocols == ["http:", "https:"]
        assert receiver.accepted_target_domains is None
        assert receiver.verifier.require_attribute == "webmention"

"""
Source verification: does a fetched document really mention the target?

The strategy depends on the source's content type:
    - text/html: an <a href> or <img|audio|video src> equal to the target,
      on a tag carrying the required attribute (``webmention`` by default)
    - application/json: any string value anywhere in the document equal to
      the target
    - text/plain: the target appearing anywhere in the text
    - anything else: a caller-supplied check, if configured

HTML is parsed incrementally while the body streams in, and reading stops
at the first match.

Usage:
    >>> verifier = ContentVerifier()
    >>> result = verifier.verify(response, "https://blog.example.com/post")
    >>> if isinstance(result, Err):
    ...     print(result.message)
"""

import json
import logging
from html.parser import HTMLParser
from typing import Any, Callable, Iterable, Optional, Sequence, Set, Union

import requests

from indieweb.net import (
    MAX_RESPONSE_BYTES,
    iter_bounded_text,
    normalize_content_type,
    normalize_url,
    read_bounded_text,
)
from indieweb.results import Err, ErrorKind


logger = logging.getLogger(__name__)

HTML = "text/html"
JSON = "application/json"
PLAIN_TEXT = "text/plain"

DEFAULT_ACCEPTED_CONTENT_TYPES = (HTML, JSON, PLAIN_TEXT)
DEFAULT_REQUIRE_ATTRIBUTE = "webmention"

MEDIA_TAGS = ("img", "audio", "video")

# check(response, content_type) -> bool
CustomCheck = Callable[[requests.Response, str], bool]


def target_forms(target: str) -> Set[str]:
    """The strings that count as "the target": as given and normalised."""
    return {target, normalize_url(target)}


class TargetLinkParser(HTMLParser):
    """HTML parser that looks for a single link to the target.

    A tag matches when it is an <a> whose href, or an <img>, <audio> or
    <video> whose src, is one of ``targets``, and it carries
    ``require_attribute`` (any value, including none).
    """

    def __init__(self, targets: Set[str], require_attribute: Optional[str] = DEFAULT_REQUIRE_ATTRIBUTE):
        super().__init__(convert_charrefs=True)
        self.targets = targets
        self.require_attribute = require_attribute
        self.found = False

    def handle_starttag(self, tag: str, attrs: list) -> None:
        if self.found:
            return

        attrs_dict = dict(attrs)
        if self.require_attribute and self.require_attribute not in attrs_dict:
            return

        if tag == "a":
            value = attrs_dict.get("href")
        elif tag in MEDIA_TAGS:
            value = attrs_dict.get("src")
        else:
            return

        if value is not None and value.strip() in self.targets:
            self.found = True


def html_mentions_target(
    chunks: Iterable[str],
    target: str,
    require_attribute: Optional[str] = DEFAULT_REQUIRE_ATTRIBUTE,
) -> bool:
    """Feed HTML chunks to a parser until the target is found."""
    parser = TargetLinkParser(target_forms(target), require_attribute)
    for chunk in chunks:
        parser.feed(chunk)
        if parser.found:
            return True
    parser.close()
    return parser.found


def json_mentions_target(document: Any, target: str) -> bool:
    """Recursively search a decoded JSON document for a string equal to the target."""
    targets = target_forms(target)
    pending = [document]
    while pending:
        value = pending.pop()
        if isinstance(value, str):
            if value in targets:
                return True
        elif isinstance(value, dict):
            pending.extend(value.values())
        elif isinstance(value, list):
            pending.extend(value)
    return False


def text_mentions_target(text: str, target: str) -> bool:
    """Check whether the target URL appears as a substring of plain text."""
    return any(form in text for form in target_forms(target))


class ContentVerifier:
    """Verifies that a fetched source document mentions a target URL.

    Args:
        require_attribute: Attribute an HTML tag must carry to count as a
            link; None accepts any <a>/<img>/<audio>/<video>
        accepted_content_types: Content types handled by the built-in
            strategies
        custom_check: Fallback for every other content type, called with the
            source response and its normalised content type
        max_bytes: Upper bound on the body size that is read
    """

    def __init__(
        self,
        require_attribute: Optional[str] = DEFAULT_REQUIRE_ATTRIBUTE,
        accepted_content_types: Sequence[str] = DEFAULT_ACCEPTED_CONTENT_TYPES,
        custom_check: Optional[CustomCheck] = None,
        max_bytes: int = MAX_RESPONSE_BYTES,
    ):
        self.require_attribute = require_attribute
        self.accepted_content_types = [normalize_content_type(t) for t in accepted_content_types]
        self.custom_check = custom_check
        self.max_bytes = max_bytes

    def verify(
        self,
        response: requests.Response,
        target: str,
        content_type: Optional[str] = None,
    ) -> Union[bool, Err]:
        """Check the response body for the target.

        Args:
            response: Streamed response for the source URL
            target: Target URL that should be mentioned
            content_type: Overrides the response's Content-Type header

        Returns:
            True or False, or Err if the body cannot be read or parsed, or
            its content type is not supported
        """
        if content_type is None:
            content_type = response.headers.get("Content-Type")
        media_type = normalize_content_type(content_type)

        if media_type in self.accepted_content_types:
            if media_type == HTML:
                return self._verify_html(response, target)
            if media_type == JSON:
                return self._verify_json(response, target)
            if media_type == PLAIN_TEXT:
                return self._verify_text(response, target)

        if self.custom_check is not None:
            try:
                return bool(self.custom_check(response, media_type))
            except Exception as e:
                logger.exception(f"Custom content check failed for {media_type}: {e}")
                return Err(ErrorKind.CUSTOM_CHECK_FAILED, f"Error checking {media_type} body", 500)

        return Err(
            ErrorKind.UNSUPPORTED_CONTENT_TYPE,
            f"Unsupported source content type: {media_type or 'none'}",
            400,
        )

    def _verify_html(self, response: requests.Response, target: str) -> Union[bool, Err]:
        try:
            return html_mentions_target(
                iter_bounded_text(response, self.max_bytes), target, self.require_attribute
            )
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.warning(f"Error parsing HTML body of {response.url}: {e}")
            return Err(ErrorKind.INVALID_HTML, "Error parsing HTML body", 400)

    def _verify_json(self, response: requests.Response, target: str) -> Union[bool, Err]:
        try:
            document = json.loads(read_bounded_text(response, self.max_bytes))
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.warning(f"Error parsing JSON body of {response.url}: {e}")
            return Err(ErrorKind.INVALID_JSON, "Error parsing JSON body", 400)
        return json_mentions_target(document, target)

    def _verify_text(self, response: requests.Response, target: str) -> Union[bool, Err]:
        try:
            text = read_bounded_text(response, self.max_bytes)
        except requests.exceptions.RequestException as e:
            logger.warning(f"Error reading text body of {response.url}: {e}")
            return Err(ErrorKind.INVALID_TEXT, "Error reading text body", 400)
        return text_mentions_target(text, target)

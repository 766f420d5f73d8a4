"""
Webmention receiver: validate an inbound webmention and verify its source.

Receiving flow (terminal at the first failure):
    1. Request must be a POST with a form-encoded, non-empty body
    2. Parse source, target and optional extension fields
    3. Validate URLs, protocols, source != target, target domain allow-list
    4. Fetch the source and verify it mentions the target
    5. Hand the webmention to storage (insert, or delete on 410 Gone)

The receiver is framework-agnostic: ``receive()`` takes the request method,
content type and raw body and returns a result value; ``handle()`` turns that
into a plain-text HTTP response. The Flask route in ``web.app`` is a thin
adapter around ``handle()``.

Storage:
    Any object with ``insert(webmention)`` and ``delete(source, target)``.
    ``insert`` must upsert on (source, target).

References:
    - W3C Webmention: https://www.w3.org/TR/webmention/#receiving-webmentions
"""

import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union
from urllib.parse import parse_qsl, urljoin, urlparse

import requests

from indieweb.domain import matches_any
from indieweb.extensions import DEFAULT_REGISTRY, ExtensionRegistry, ParsedWebmention
from indieweb.net import (
    DEFAULT_RECEIVER_USER_AGENT,
    MAX_REDIRECTS,
    build_session,
    error_text,
    is_private_or_loopback,
    normalize_content_type,
    normalize_url,
)
from indieweb.results import Err, ErrorKind, Received
from indieweb.verifier import (
    DEFAULT_ACCEPTED_CONTENT_TYPES,
    DEFAULT_REQUIRE_ATTRIBUTE,
    ContentVerifier,
    CustomCheck,
)

logger = logging.getLogger(__name__)

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"
DEFAULT_ACCEPTED_PROTOCOLS = ("http:", "https:")
SOURCE_FETCH_TIMEOUT = 10
MAX_URL_LENGTH = 2048
FORBIDDEN_HOST_CHARACTERS = frozenset("\x00#%/<>?@[\\]^|")


def _protocol(value: str) -> str:
    """Normalise "https" and "https:" to "https:"."""
    value = value.strip().lower()
    return value if value.endswith(":") else f"{value}:"


def _valid_host(hostname: str) -> bool:
    # ":" only appears in IPv6 literals, which urlparse has already unbracketed
    return not any(ch.isspace() or ch in FORBIDDEN_HOST_CHARACTERS for ch in hostname)


def parse_url(value: Optional[str], name: str, accepted_protocols: Sequence[str]) -> Union[str, Err]:
    """Validate a source or target form field.

    Args:
        value: Raw form value
        name: Field name used in error messages
        accepted_protocols: Protocols in "scheme:" form

    Returns:
        The stripped URL, or Err naming the field
    """
    if not value or not value.strip():
        return Err(ErrorKind.MISSING_URL, f"Missing {name} URL", 400)

    url = value.strip()
    if len(url) > MAX_URL_LENGTH:
        return Err(ErrorKind.INVALID_URL, f"Invalid {name} URL", 400)

    try:
        parsed = urlparse(url)
        parsed.port  # raises ValueError on a malformed port
    except ValueError:
        return Err(ErrorKind.INVALID_URL, f"Invalid {name} URL", 400)

    if not parsed.scheme or not parsed.hostname:
        return Err(ErrorKind.INVALID_URL, f"Invalid {name} URL", 400)

    if not _valid_host(parsed.hostname):
        return Err(ErrorKind.INVALID_URL, f"Invalid {name} URL", 400)

    try:
        requests.models.PreparedRequest().prepare_url(url, None)
    except requests.exceptions.RequestException:
        return Err(ErrorKind.INVALID_URL, f"Invalid {name} URL", 400)

    protocol = f"{parsed.scheme.lower()}:"
    if protocol not in accepted_protocols:
        return Err(
            ErrorKind.UNSUPPORTED_PROTOCOL,
            f"{name} URL protocol {protocol} is not accepted",
            400,
        )

    return url


class Receiver:
    """Validates and verifies inbound webmentions.

    Args:
        store: Storage collaborator with insert() and delete(); optional
        user_agent: User-Agent used when fetching the source
        require_attribute: Attribute an HTML link must carry to count
        accepted_protocols: Source/target protocols, "http:" style
        accepted_target_domains: Wildcard patterns the target host must
            match; None accepts every domain
        accepted_content_types: Source content types verified by the
            built-in strategies, also sent as the Accept header
        check_custom_content_type_body: Verification callback for other
            content types
        ban_unknown_extensions: Reject unregistered extension definitions
        timeout: Source fetch timeout in seconds
        block_private_networks: Refuse to fetch sources on private addresses
        registry: Extension registry

    Example:
        >>> receiver = Receiver(store, accepted_target_domains=["blog.example.com"])
        >>> text, status = receiver.handle("POST", FORM_CONTENT_TYPE, body)
    """

    def __init__(
        self,
        store: Optional[Any] = None,
        user_agent: str = DEFAULT_RECEIVER_USER_AGENT,
        require_attribute: Optional[str] = DEFAULT_REQUIRE_ATTRIBUTE,
        accepted_protocols: Sequence[str] = DEFAULT_ACCEPTED_PROTOCOLS,
        accepted_target_domains: Optional[List[str]] = None,
        accepted_content_types: Sequence[str] = DEFAULT_ACCEPTED_CONTENT_TYPES,
        check_custom_content_type_body: Optional[CustomCheck] = None,
        ban_unknown_extensions: bool = False,
        timeout: float = SOURCE_FETCH_TIMEOUT,
        block_private_networks: bool = False,
        registry: ExtensionRegistry = DEFAULT_REGISTRY,
    ):
        self.store = store
        self.user_agent = user_agent
        self.accepted_protocols = [_protocol(p) for p in accepted_protocols]
        self.accepted_target_domains = accepted_target_domains
        self.accepted_content_types = list(accepted_content_types)
        self.ban_unknown_extensions = ban_unknown_extensions
        self.timeout = timeout
        self.block_private_networks = block_private_networks
        self.registry = registry
        self.verifier = ContentVerifier(
            require_attribute=require_attribute,
            accepted_content_types=self.accepted_content_types,
            custom_check=check_custom_content_type_body,
        )

    @classmethod
    def from_config(cls, config: Dict[str, Any], store: Optional[Any] = None) -> "Receiver":
        """Create a receiver from the ``receiver`` section of config.yml.

        Example:
            >>> config = load_config()
            >>> receiver = Receiver.from_config(config, store)
        """
        rc = config.get("receiver", {}) or {}
        return cls(
            store=store,
            user_agent=rc.get("user_agent") or DEFAULT_RECEIVER_USER_AGENT,
            require_attribute=rc.get("require_attribute", DEFAULT_REQUIRE_ATTRIBUTE),
            accepted_protocols=rc.get("accepted_protocols") or DEFAULT_ACCEPTED_PROTOCOLS,
            accepted_target_domains=rc.get("accepted_target_domains"),
            accepted_content_types=rc.get("accepted_content_types") or DEFAULT_ACCEPTED_CONTENT_TYPES,
            ban_unknown_extensions=rc.get("ban_unknown_extensions", False),
            timeout=rc.get("timeout", SOURCE_FETCH_TIMEOUT),
            block_private_networks=rc.get("block_private_networks", False),
        )

    def handle(self, method: str, content_type: Optional[str], body: Optional[bytes]) -> Tuple[str, int]:
        """Process a request and render the outcome as (text, status)."""
        result = self.receive(method, content_type, body)
        if isinstance(result, Err):
            return result.message, result.status
        if result.deleted:
            return "Source is gone, webmention deleted", 200
        return "OK", 200

    def receive(
        self, method: str, content_type: Optional[str], body: Optional[bytes]
    ) -> Union[Received, Err]:
        """Validate, verify and store one inbound webmention.

        Args:
            method: HTTP method of the request
            content_type: Content-Type header of the request
            body: Raw request body

        Returns:
            Received on success, Err on the first failing step
        """
        if method.upper() != "POST":
            return Err(ErrorKind.METHOD_NOT_ALLOWED, "Webmention request must be POST", 405)
        if not body:
            return Err(ErrorKind.MISSING_BODY, "Request body must not be empty", 400)
        if normalize_content_type(content_type) != FORM_CONTENT_TYPE:
            return Err(
                ErrorKind.UNSUPPORTED_MEDIA_TYPE,
                f"Content-Type must be {FORM_CONTENT_TYPE}",
                400,
            )

        form = self._parse_form(body)
        if isinstance(form, Err):
            return form

        source = parse_url(form.get("source"), "source", self.accepted_protocols)
        if isinstance(source, Err):
            return source
        target = parse_url(form.get("target"), "target", self.accepted_protocols)
        if isinstance(target, Err):
            return target

        webmention = self.registry.parse(
            source,
            target,
            definition=form.get("definition"),
            payload=form.get("payload"),
            ban_unknown=self.ban_unknown_extensions,
        )
        if isinstance(webmention, Err):
            return webmention

        if normalize_url(source) == normalize_url(target):
            return Err(ErrorKind.SAME_URL, "Source and target must be different URLs", 400)

        if self.accepted_target_domains is not None:
            hostname = urlparse(target).hostname or ""
            if not matches_any(self.accepted_target_domains, hostname):
                logger.info(f"Rejected webmention: target domain {hostname} is not accepted")
                return Err(
                    ErrorKind.TARGET_DOMAIN_NOT_ACCEPTED,
                    f"Target domain {hostname} is not accepted by this receiver",
                    400,
                )

        logger.info(f"Received webmention: source={source}, target={target}")
        return self._verify(webmention)

    def _parse_form(self, body: bytes) -> Union[Dict[str, str], Err]:
        try:
            pairs = parse_qsl(body.decode("utf-8"), keep_blank_values=True)
        except (UnicodeDecodeError, ValueError):
            return Err(ErrorKind.MALFORMED_BODY, "Malformed payload. Could not parse request body", 400)

        form: Dict[str, str] = {}
        for key, value in pairs:
            form.setdefault(key, value)
        return form

    def _fetch_source(self, session: requests.Session, source: str) -> Union[requests.Response, Err]:
        """GET the source, checking every redirect hop when private networks are blocked."""
        headers = {"Accept": ", ".join(self.accepted_content_types)}
        if not self.block_private_networks:
            return session.get(source, headers=headers, timeout=self.timeout, allow_redirects=True, stream=True)

        url = source
        for _ in range(MAX_REDIRECTS + 1):
            if is_private_or_loopback(url):
                logger.warning(f"Refusing to fetch private or loopback source: {url}")
                return Err(
                    ErrorKind.BLOCKED_ADDRESS,
                    "Source URL resolves to a private or loopback address",
                    400,
                )

            response = session.get(url, headers=headers, timeout=self.timeout, allow_redirects=False, stream=True)
            if not response.is_redirect:
                return response

            url = urljoin(url, response.headers["Location"])
            response.close()
            logger.debug(f"Source redirected to {url}")

        raise requests.exceptions.TooManyRedirects(f"Exceeded {MAX_REDIRECTS} redirects fetching {source}")

    def _verify(self, webmention: ParsedWebmention) -> Union[Received, Err]:
        source, target = webmention.source, webmention.target

        session = build_session(self.user_agent)
        try:
            response = self._fetch_source(session, source)
        except requests.exceptions.Timeout:
            logger.error(f"Timed out fetching webmention source: {source}")
            return Err(ErrorKind.FETCH_FAILED, "Failed to fetch source: timed out", 500)
        except requests.exceptions.RequestException as e:
            logger.error(f"Failed to fetch webmention source: source={source}, error={e}")
            return Err(ErrorKind.FETCH_FAILED, "Failed to fetch source", 500)

        if isinstance(response, Err):
            return response

        try:
            # Source gone: remove any stored webmention for this pair
            if response.status_code == 410:
                logger.info(f"Source returned 410, deleting webmention: source={source}, target={target}")
                if self.store is not None:
                    self.store.delete(source, target)
                return Received(webmention=webmention, deleted=True)

            if not response.ok:
                logger.warning(f"Source returned {response.status_code}: {source}")
                return Err(
                    ErrorKind.SOURCE_ERROR_STATUS,
                    f"Failed to fetch source: {response.status_code}\n{error_text(response)}",
                    400,
                )

            if response.raw is None or response.status_code == 204:
                return Err(ErrorKind.EMPTY_SOURCE_BODY, "Source response body is empty", 400)

            verified = self.verifier.verify(response, target)
        finally:
            response.close()

        if isinstance(verified, Err):
            return verified

        if not verified:
            media_type = normalize_content_type(response.headers.get("Content-Type"))
            logger.info(f"Source does not mention target: source={source}, target={target}")
            if self.store is not None:
                self.store.delete(source, target)
            return Err(
                ErrorKind.TARGET_NOT_FOUND,
                f"{_describe(media_type)} body does not contain target",
                400,
            )

        if self.store is not None:
            self.store.insert(webmention)
        logger.info(
            f"Webmention verified and stored: source={source}, target={target}, kind={webmention.kind.name}"
        )
        return Received(webmention=webmention)


def _describe(media_type: str) -> str:
    return {
        "text/html": "HTML",
        "application/json": "JSON",
        "text/plain": "Text",
    }.get(media_type, media_type or "Source")

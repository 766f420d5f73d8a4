"""
Webmention endpoint discovery.

Follows the W3C discovery algorithm for a target URL:
    1. HEAD the target and look for a Link header with rel="webmention"
    2. Otherwise GET the target; check the Link header again, then parse
       the HTML for the first <link> or <a> with rel="webmention"
    3. Resolve the endpoint (which may be relative) against the target
    4. Apply the sender's cross-origin policy to the resolved endpoint

Cross-origin policies:
    - cross-origin: any endpoint is accepted
    - same-origin: endpoint must share protocol, host and port with the target
    - same-site: endpoint must share the protocol and sit on the target's
      host or one of its subdomains

Origins listed in ``allowed_origins`` (e.g. a hosted receiver such as
webmention.io) are exempt from the same-origin and same-site policies.

References:
    - https://www.w3.org/TR/webmention/#sender-discovers-receiver-webmention-endpoint
"""

import logging
from html.parser import HTMLParser
from typing import Iterable, List, Optional, Union
from urllib.parse import urljoin, urlparse

import requests
from requests.utils import parse_header_links

from indieweb.net import (
    DEFAULT_SENDER_USER_AGENT,
    build_session,
    is_private_or_loopback,
    iter_bounded_text,
    normalize_content_type,
    origin_of,
)
from indieweb.results import CrossOriginPolicyViolation, DiscoveredEndpoint, Err, ErrorKind


logger = logging.getLogger(__name__)

SAME_ORIGIN = "same-origin"
SAME_SITE = "same-site"
CROSS_ORIGIN = "cross-origin"
POLICIES = (SAME_ORIGIN, SAME_SITE, CROSS_ORIGIN)

DEFAULT_CROSS_ORIGIN_POLICY = CROSS_ORIGIN
DEFAULT_ALLOWED_ORIGINS = ["https://webmention.io"]
DISCOVERY_TIMEOUT = 30.0

HTML_CONTENT_TYPES = ("text/html", "application/xhtml+xml")


def _has_webmention_rel(rel: Optional[str]) -> bool:
    return bool(rel) and "webmention" in rel.lower().split()


def find_link_header_endpoint(header: Optional[str]) -> Optional[str]:
    """Return the first rel="webmention" URL in a Link header value.

    >>> find_link_header_endpoint('<https://a.example/wm>; rel="webmention"')
    'https://a.example/wm'
    """
    if not header:
        return None
    for link in parse_header_links(header):
        if _has_webmention_rel(link.get("rel")):
            return link.get("url", "")
    return None


class EndpointLinkParser(HTMLParser):
    """HTML parser that stops at the first <link>/<a> with rel="webmention"."""

    def __init__(self):
        super().__init__(convert_charrefs=True)
        self.endpoint: Optional[str] = None

    def handle_starttag(self, tag: str, attrs: list) -> None:
        if self.endpoint is not None or tag not in ("link", "a"):
            return
        attrs_dict = dict(attrs)
        if "href" not in attrs_dict or not _has_webmention_rel(attrs_dict.get("rel")):
            return
        # An empty href is valid: it resolves to the target itself
        self.endpoint = (attrs_dict["href"] or "").strip()


def find_html_endpoint(chunks: Iterable[str]) -> Optional[str]:
    """Feed HTML chunks to a parser until a webmention endpoint is found."""
    parser = EndpointLinkParser()
    for chunk in chunks:
        parser.feed(chunk)
        if parser.endpoint is not None:
            return parser.endpoint
    parser.close()
    return parser.endpoint


def _normalize_hostname(hostname: str) -> str:
    return hostname.lower().rstrip(".")


def is_same_site(check: str, relative: str) -> bool:
    """Check whether ``check`` is ``relative`` or one of its subdomains.

    >>> is_same_site("sub.example.com", "example.com")
    True
    >>> is_same_site("example.com", "sub.example.com")
    False
    """
    check = _normalize_hostname(check)
    relative = _normalize_hostname(relative)

    if check == relative:
        return True

    check_parts = check.split(".")
    relative_parts = relative.split(".")
    if len(check_parts) <= len(relative_parts):
        return False

    return check_parts[-len(relative_parts):] == relative_parts


def check_cross_origin_policy(
    target: str,
    endpoint: str,
    policy: str,
    allowed_origins: Iterable[str] = (),
) -> Optional[CrossOriginPolicyViolation]:
    """Check a resolved endpoint against a cross-origin policy.

    Args:
        target: The target URL the endpoint was discovered from
        endpoint: Absolute endpoint URL
        policy: "same-origin", "same-site" or "cross-origin"
        allowed_origins: Origins exempt from the policy

    Returns:
        None if the endpoint is acceptable, otherwise the violation
    """
    if policy == CROSS_ORIGIN:
        return None

    endpoint_origin = origin_of(endpoint)
    if endpoint_origin in {origin_of(o.rstrip("/")) for o in allowed_origins}:
        logger.debug(f"Endpoint origin {endpoint_origin} is explicitly allowed")
        return None

    original = urlparse(origin_of(target))
    found = urlparse(endpoint_origin)

    if original.scheme != found.scheme:
        return CrossOriginPolicyViolation.create(policy, "protocol", f"{original.scheme}:", f"{found.scheme}:")

    if policy == SAME_ORIGIN:
        if original.netloc != found.netloc:
            return CrossOriginPolicyViolation.create(policy, "host", original.netloc, found.netloc)
        return None

    if policy == SAME_SITE:
        if not is_same_site(found.hostname or "", original.hostname or ""):
            return CrossOriginPolicyViolation.create(policy, "host", original.hostname or "", found.hostname or "")
        return None

    raise ValueError(f"Unknown cross-origin policy: {policy}")


class EndpointDiscoverer:
    """Discovers and vets the webmention endpoint of a target URL.

    Args:
        cross_origin_policy: "same-origin", "same-site" or "cross-origin"
        allowed_origins: Origins exempt from the policy
        user_agent: User-Agent for the HEAD and GET requests
        timeout: Per-request timeout in seconds
        block_private_networks: Refuse targets and endpoints on private
            or loopback addresses

    Example:
        >>> discoverer = EndpointDiscoverer(cross_origin_policy="same-site")
        >>> result = discoverer.discover("https://blog.example.com/post")
        >>> if isinstance(result, DiscoveredEndpoint):
        ...     print(result.endpoint)
    """

    def __init__(
        self,
        cross_origin_policy: str = DEFAULT_CROSS_ORIGIN_POLICY,
        allowed_origins: Optional[List[str]] = None,
        user_agent: str = DEFAULT_SENDER_USER_AGENT,
        timeout: float = DISCOVERY_TIMEOUT,
        block_private_networks: bool = False,
    ):
        if cross_origin_policy not in POLICIES:
            raise ValueError(f"Unknown cross-origin policy: {cross_origin_policy}")
        self.cross_origin_policy = cross_origin_policy
        self.allowed_origins = list(DEFAULT_ALLOWED_ORIGINS if allowed_origins is None else allowed_origins)
        self.user_agent = user_agent
        self.timeout = timeout
        self.block_private_networks = block_private_networks

    def discover(self, target: str) -> Union[DiscoveredEndpoint, Err]:
        """Discover the webmention endpoint for a target URL.

        Returns:
            DiscoveredEndpoint with an absolute URL, or Err: ENDPOINT_NOT_FOUND
            (carrying the last HTTP status seen), FETCH_FAILED,
            BLOCKED_ADDRESS or a CrossOriginPolicyViolation
        """
        if self.block_private_networks and is_private_or_loopback(target):
            logger.warning(f"Blocked discovery for private/loopback URL: {target}")
            return Err(ErrorKind.BLOCKED_ADDRESS, f"Target resolves to a private or loopback address: {target}", 0)

        session = build_session(self.user_agent)
        last_status = 0

        endpoint, status = self._try_head(session, target)
        if status:
            last_status = status

        if endpoint is None:
            try:
                endpoint, status = self._try_get(session, target)
            except requests.exceptions.RequestException as e:
                logger.error(f"Failed to fetch target for webmention discovery: {target}, error={e}")
                return Err(ErrorKind.FETCH_FAILED, f"Failed to fetch target: {e}", last_status)
            last_status = status

        if endpoint is None:
            logger.info(f"No webmention endpoint found for: {target}")
            return Err(ErrorKind.ENDPOINT_NOT_FOUND, "No webmention endpoint found", last_status)

        resolved = urljoin(target, endpoint)
        logger.debug(f"Webmention discovery: {target} -> {resolved}")

        violation = check_cross_origin_policy(target, resolved, self.cross_origin_policy, self.allowed_origins)
        if violation is not None:
            logger.warning(f"Rejected webmention endpoint {resolved} for {target}: {violation.message}")
            return violation

        if self.block_private_networks and is_private_or_loopback(resolved):
            return Err(
                ErrorKind.BLOCKED_ADDRESS,
                f"Endpoint resolves to a private or loopback address: {resolved}",
                0,
            )

        return DiscoveredEndpoint(endpoint=resolved, status_code=last_status)

    def _try_head(self, session: requests.Session, target: str):
        """HEAD the target and check its Link header. Returns (endpoint, status)."""
        try:
            response = session.head(target, timeout=self.timeout, allow_redirects=True)
        except requests.exceptions.RequestException as e:
            logger.debug(f"HEAD request failed during webmention discovery: {target}, error={e}")
            return None, 0

        try:
            if not response.ok:
                return None, response.status_code
            endpoint = find_link_header_endpoint(response.headers.get("Link"))
            if endpoint is not None:
                logger.debug(f"Webmention discovery: endpoint in HEAD Link header: {endpoint}")
            return endpoint, response.status_code
        finally:
            response.close()

    def _try_get(self, session: requests.Session, target: str):
        """GET the target, check its Link header then its HTML. Returns (endpoint, status)."""
        response = session.get(
            target,
            headers={"Accept": "text/html"},
            timeout=self.timeout,
            allow_redirects=True,
            stream=True,
        )
        try:
            if not response.ok:
                return None, response.status_code

            endpoint = find_link_header_endpoint(response.headers.get("Link"))
            if endpoint is not None:
                logger.debug(f"Webmention discovery: endpoint in GET Link header: {endpoint}")
                return endpoint, response.status_code

            if normalize_content_type(response.headers.get("Content-Type")) not in HTML_CONTENT_TYPES:
                return None, response.status_code

            endpoint = find_html_endpoint(iter_bounded_text(response))
            if endpoint is not None:
                logger.debug(f"Webmention discovery: endpoint in HTML: {endpoint}")
            return endpoint, response.status_code
        finally:
            response.close()

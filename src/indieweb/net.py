"""
HTTP helpers shared by the Webmention receiver and sender.

Covers the pieces of fetching that both sides need to agree on:
    - a requests Session with a "Webmention" User-Agent and a redirect cap
    - bounded body reading so a hostile source cannot exhaust memory
    - content type and URL normalisation
    - SSRF protection (rejecting private and loopback addresses)

References:
    - W3C Webmention: https://www.w3.org/TR/webmention/
"""

import codecs
import ipaddress
import logging
import socket
from typing import Iterator, Optional
from urllib.parse import urlparse, urlunparse

import requests


logger = logging.getLogger(__name__)

VERSION = "0.1.0"

# "it is recommended to include the string "Webmention" in the User Agent"
DEFAULT_RECEIVER_USER_AGENT = f"Webmention Receiver (mentions {VERSION})"
DEFAULT_SENDER_USER_AGENT = f"Webmention Sender (mentions {VERSION})"

MAX_RESPONSE_BYTES = 1_048_576  # 1 MB
MAX_REDIRECTS = 20  # W3C Webmention spec recommendation
CHUNK_SIZE = 8192

DEFAULT_PORTS = {"http": 80, "https": 443}


def build_session(user_agent: str) -> requests.Session:
    """Build a requests Session with webmention-appropriate settings.

    Args:
        user_agent: User-Agent header sent with every request
    """
    session = requests.Session()
    session.headers["User-Agent"] = user_agent
    session.max_redirects = MAX_REDIRECTS
    return session


def is_private_or_loopback(url: str) -> bool:
    """Check if a URL resolves to a private or loopback address.

    Prevents SSRF by rejecting URLs whose hostname resolves to
    localhost, loopback, or private network ranges.

    Args:
        url: The URL to check.

    Returns:
        True if the URL resolves to a private/loopback address, or cannot
        be resolved at all.
    """
    try:
        hostname = urlparse(url).hostname
        if not hostname:
            return True

        infos = socket.getaddrinfo(hostname, None, socket.AF_UNSPEC, socket.SOCK_STREAM)
        for family, _, _, _, sockaddr in infos:
            ip_str = sockaddr[0]
            addr = ipaddress.ip_address(ip_str)
            if addr.is_private or addr.is_loopback or addr.is_reserved or addr.is_link_local:
                logger.warning(
                    f"Blocked request to private/loopback address: url={url}, resolved={ip_str}"
                )
                return True
    except (socket.gaierror, ValueError, OSError) as e:
        logger.warning(f"DNS resolution failed for URL {url}: {e}")
        return True

    return False


def iter_bounded(response: requests.Response, max_bytes: int = MAX_RESPONSE_BYTES) -> Iterator[bytes]:
    """Yield raw body chunks until the body ends or ``max_bytes`` is reached.

    Raises:
        requests.exceptions.RequestException: If reading the body fails.
    """
    bytes_read = 0
    for chunk in response.iter_content(chunk_size=CHUNK_SIZE, decode_unicode=False):
        if not chunk:
            continue
        remaining = max_bytes - bytes_read
        if len(chunk) >= remaining:
            yield chunk[:remaining]
            logger.warning(f"Response body truncated at {max_bytes} bytes: {response.url}")
            return
        bytes_read += len(chunk)
        yield chunk


def iter_bounded_text(response: requests.Response, max_bytes: int = MAX_RESPONSE_BYTES) -> Iterator[str]:
    """Like ``iter_bounded`` but incrementally decoded, as UTF-8 unless a charset is declared."""
    decoder = _incremental_decoder(_text_encoding(response))
    for chunk in iter_bounded(response, max_bytes):
        text = decoder.decode(chunk)
        if text:
            yield text
    tail = decoder.decode(b"", final=True)
    if tail:
        yield tail


def read_bounded_text(response: requests.Response, max_bytes: int = MAX_RESPONSE_BYTES) -> str:
    """Read a whole (bounded) body as text."""
    return "".join(iter_bounded_text(response, max_bytes))


def _text_encoding(response: requests.Response) -> str:
    # requests assumes ISO-8859-1 for text/* when no charset is declared
    content_type = response.headers.get("Content-Type") or ""
    if "charset=" in content_type.lower() and response.encoding:
        return response.encoding
    return "utf-8"


def _incremental_decoder(encoding: Optional[str]) -> codecs.IncrementalDecoder:
    # Decode with response encoding (fall back to utf-8)
    try:
        return codecs.getincrementaldecoder(encoding or "utf-8")(errors="replace")
    except LookupError:
        return codecs.getincrementaldecoder("utf-8")(errors="replace")


def normalize_content_type(content_type: Optional[str]) -> str:
    """Strip parameters from a Content-Type value and lower-case it.

    >>> normalize_content_type("text/HTML; charset=utf-8")
    'text/html'
    """
    if not content_type:
        return ""
    return content_type.split(";", 1)[0].strip().lower()


def normalize_url(url: str) -> str:
    """Return the canonical string form of an absolute URL.

    Lower-cases scheme and host, drops the scheme's default port and turns
    an empty path into "/":

    >>> normalize_url("HTTPS://A.Example:443")
    'https://a.example/'
    """
    parsed = urlparse(url)
    scheme = parsed.scheme.lower()
    netloc = (parsed.hostname or "").lower()
    if ":" in netloc:
        netloc = f"[{netloc}]"
    try:
        port = parsed.port
    except ValueError:
        port = None
    if port is not None and DEFAULT_PORTS.get(scheme) != port:
        netloc = f"{netloc}:{port}"
    if parsed.username or parsed.password:
        userinfo = parsed.username or ""
        if parsed.password:
            userinfo = f"{userinfo}:{parsed.password}"
        netloc = f"{userinfo}@{netloc}"
    path = parsed.path or "/"
    return urlunparse((scheme, netloc, path, parsed.params, parsed.query, parsed.fragment))


def origin_of(url: str) -> str:
    """Return ``scheme://host[:port]`` of a URL, normalised and without userinfo."""
    parsed = urlparse(normalize_url(url))
    host = parsed.hostname or ""
    if ":" in host:
        host = f"[{host}]"
    if parsed.port is not None:
        host = f"{host}:{parsed.port}"
    return f"{parsed.scheme}://{host}"


def error_text(response: requests.Response, limit: int = 500) -> str:
    """Best-effort error text from a response: body if readable, else the reason."""
    try:
        text = read_bounded_text(response, limit).strip()
    except requests.exceptions.RequestException:
        text = ""
    return text or (response.reason or "")

"""
IndieWeb Module: the Webmention protocol engine.

This module implements both sides of the W3C Webmention protocol, plus the
extension model that classifies webmention payloads.

Features:
    - Receiver: validates inbound webmentions and verifies the source
      mentions the target (HTML, JSON, plain text, custom content types)
    - Sender: W3C endpoint discovery (Link header, HTML) with
      cross-origin policies, then the notification itself
    - Extensions: typed payloads (like, comment, mention) validated with
      JSON Schema and stored under stable ordinals

Usage:
    >>> from indieweb import Receiver, Sender, Err
    >>>
    >>> receiver = Receiver(store, accepted_target_domains=["*.example.com"])
    >>> text, status = receiver.handle("POST", content_type, body)
    >>>
    >>> result = Sender().send(source_url, target_url)
    >>> if isinstance(result, Err):
    ...     print(result.message)

Configuration (config.yml):
    receiver:
      require_attribute: "webmention"
      accepted_target_domains: ["blog.example.com"]
    sender:
      cross_origin_policy: "same-site"
      allowed_origins: ["https://webmention.io"]
"""

from indieweb.domain import match_domain, matches_any
from indieweb.extensions import (
    ExtensionDefinition,
    ExtensionKind,
    ExtensionRegistry,
    NormalisedWebmention,
    ParsedWebmention,
    DEFAULT_REGISTRY,
    parse_extension,
    reparse_extension,
)
from indieweb.results import (
    Accepted,
    CrossOriginPolicyViolation,
    DiscoveredEndpoint,
    Err,
    ErrorKind,
    Received,
)
from indieweb.verifier import ContentVerifier
from indieweb.receiver import Receiver
from indieweb.discovery import EndpointDiscoverer
from indieweb.sender import Sender, send_webmention

__all__ = [
    "Accepted",
    "ContentVerifier",
    "CrossOriginPolicyViolation",
    "DEFAULT_REGISTRY",
    "DiscoveredEndpoint",
    "EndpointDiscoverer",
    "Err",
    "ErrorKind",
    "ExtensionDefinition",
    "ExtensionKind",
    "ExtensionRegistry",
    "NormalisedWebmention",
    "ParsedWebmention",
    "Received",
    "Receiver",
    "Sender",
    "match_domain",
    "matches_any",
    "parse_extension",
    "reparse_extension",
    "send_webmention",
]

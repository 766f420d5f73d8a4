"""
Result types for the Webmention receiver and sender.

Protocol outcomes are returned as values rather than raised: every
operation returns either a success dataclass or an ``Err``. This keeps
every failure path enumerable and lets callers branch with a plain
``isinstance`` check:

    >>> result = sender.send(source, target)
    >>> if isinstance(result, Err):
    ...     print(result.kind, result.status, result.message)

Error kinds map onto HTTP status codes the receiver answers with:
    - Client input errors (bad body, bad URL, bad extension): 400
    - Upstream errors caused by the remote source: 400
    - Transport errors (timeouts, connection failures): 500
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from indieweb.extensions import ParsedWebmention


class ErrorKind(str, Enum):
    """Every way a receive, discovery or send can fail."""

    # Inbound request
    METHOD_NOT_ALLOWED = "method_not_allowed"
    MISSING_BODY = "missing_body"
    UNSUPPORTED_MEDIA_TYPE = "unsupported_media_type"
    MALFORMED_BODY = "malformed_body"
    MISSING_URL = "missing_url"
    INVALID_URL = "invalid_url"
    UNSUPPORTED_PROTOCOL = "unsupported_protocol"
    SAME_URL = "same_url"
    TARGET_DOMAIN_NOT_ACCEPTED = "target_domain_not_accepted"

    # Extensions
    INVALID_PAYLOAD_JSON = "invalid_payload_json"
    INVALID_PAYLOAD = "invalid_payload"
    UNSUPPORTED_EXTENSION = "unsupported_extension"
    PAYLOAD_WITHOUT_DEFINITION = "payload_without_definition"
    INVALID_KIND = "invalid_kind"

    # Fetching and verification
    BLOCKED_ADDRESS = "blocked_address"
    FETCH_FAILED = "fetch_failed"
    SOURCE_ERROR_STATUS = "source_error_status"
    EMPTY_SOURCE_BODY = "empty_source_body"
    UNSUPPORTED_CONTENT_TYPE = "unsupported_content_type"
    INVALID_HTML = "invalid_html"
    INVALID_JSON = "invalid_json"
    INVALID_TEXT = "invalid_text"
    CUSTOM_CHECK_FAILED = "custom_check_failed"
    TARGET_NOT_FOUND = "target_not_found"

    # Sending
    ENDPOINT_NOT_FOUND = "endpoint_not_found"
    POLICY_VIOLATION = "policy_violation"
    SEND_FAILED = "send_failed"


@dataclass
class Err:
    """A failed operation.

    Attributes:
        kind: Machine readable failure category
        message: Human readable reason, returned verbatim to HTTP clients
        status: HTTP status code (for the receiver, the status to answer
                with; for the sender, the status the remote returned, 0 when
                no response was received)
    """
    kind: ErrorKind
    message: str
    status: int = 400


@dataclass
class CrossOriginPolicyViolation(Err):
    """A discovered endpoint that breaks the configured cross-origin policy.

    Attributes:
        policy: The policy that was applied ("same-origin" or "same-site")
        violation: Which dimension failed ("protocol" or "host")
        expected: The value taken from the target URL
        found: The value taken from the discovered endpoint
    """
    policy: str = ""
    violation: str = ""
    expected: str = ""
    found: str = ""

    @classmethod
    def create(cls, policy: str, violation: str, expected: str, found: str) -> "CrossOriginPolicyViolation":
        return cls(
            kind=ErrorKind.POLICY_VIOLATION,
            message=f"{policy} policy violation ({violation}): expected {expected}, found {found}",
            status=0,
            policy=policy,
            violation=violation,
            expected=expected,
            found=found,
        )


@dataclass
class Received:
    """A verified inbound webmention.

    Attributes:
        webmention: The validated webmention that was handed to storage
        deleted: True when the source answered 410 Gone and the stored
                 mention was deleted instead of inserted
    """
    webmention: "ParsedWebmention"
    deleted: bool = False


@dataclass
class DiscoveredEndpoint:
    """A resolved, policy-checked webmention endpoint.

    Attributes:
        endpoint: Absolute endpoint URL
        status_code: Status of the response the endpoint was found in
    """
    endpoint: str
    status_code: int = 200


@dataclass
class Accepted:
    """A webmention accepted by the remote endpoint.

    Attributes:
        status_code: 2xx status returned by the endpoint
        location: Status URL from a 201 response's Location header
        endpoint: The endpoint the webmention was posted to
    """
    status_code: int = 202
    location: Optional[str] = None
    endpoint: Optional[str] = None

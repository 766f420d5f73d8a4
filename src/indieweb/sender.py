"""
Webmention sending with endpoint discovery.

Webmention is a W3C standard for notifying a URL when you link to it.
Once the target's endpoint is discovered, sending is a single request:

    POST {webmention-endpoint}
    Content-Type: application/x-www-form-urlencoded

    source={your-post-url}&target={linked-url}

Usage:
    >>> from indieweb.sender import Sender, send_webmention
    >>> result = send_webmention("https://blog.example.com/post", "https://other.example.com/article")
    >>> sender = Sender(cross_origin_policy="same-site")
    >>> result = sender.send("https://blog.example.com/post", "https://other.example.com/article")
    >>> if isinstance(result, Accepted):
    ...     print("Webmention sent!", result.location)

References:
    - https://www.w3.org/TR/webmention/#sender-notifies-receiver
"""

import logging
from typing import Any, Dict, List, Optional, Union

import requests

from indieweb.discovery import (
    DEFAULT_CROSS_ORIGIN_POLICY,
    DISCOVERY_TIMEOUT,
    EndpointDiscoverer,
)
from indieweb.net import DEFAULT_SENDER_USER_AGENT, build_session, error_text
from indieweb.results import Accepted, Err, ErrorKind


logger = logging.getLogger(__name__)


class Sender:
    """Sends webmentions to discovered endpoints.

    Args:
        cross_origin_policy: Which discovered endpoints to trust
        allowed_origins: Origins exempt from the policy
        user_agent: User-Agent for discovery and the notification itself
        timeout: Per-request timeout in seconds
        block_private_networks: Refuse private or loopback targets/endpoints
    """

    def __init__(
        self,
        cross_origin_policy: str = DEFAULT_CROSS_ORIGIN_POLICY,
        allowed_origins: Optional[List[str]] = None,
        user_agent: Optional[str] = None,
        timeout: float = DISCOVERY_TIMEOUT,
        block_private_networks: bool = False,
    ):
        if user_agent is None:
            user_agent = DEFAULT_SENDER_USER_AGENT
        elif "Webmention" not in user_agent:
            logger.warning(
                f"Custom User-Agent {user_agent!r} does not contain \"Webmention\"; "
                f"receivers are recommended to look for it"
            )
        self.user_agent = user_agent
        self.timeout = timeout
        self.discoverer = EndpointDiscoverer(
            cross_origin_policy=cross_origin_policy,
            allowed_origins=allowed_origins,
            user_agent=user_agent,
            timeout=timeout,
            block_private_networks=block_private_networks,
        )

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "Sender":
        """Create a sender from the ``sender`` section of config.yml.

        Example:
            >>> config = load_config()
            >>> sender = Sender.from_config(config)
        """
        sc = config.get("sender", {}) or {}
        return cls(
            cross_origin_policy=sc.get("cross_origin_policy", DEFAULT_CROSS_ORIGIN_POLICY),
            allowed_origins=sc.get("allowed_origins"),
            user_agent=sc.get("user_agent"),
            timeout=sc.get("timeout", DISCOVERY_TIMEOUT),
            block_private_networks=sc.get("block_private_networks", False),
        )

    def send(self, source: str, target: str) -> Union[Accepted, Err]:
        """Send a webmention from source to target.

        Args:
            source: The URL of the page that mentions the target.
            target: The URL being mentioned.

        Returns:
            Accepted (with the status URL for 201 responses), or Err: the
            discovery error unchanged, SEND_FAILED with the endpoint's
            status and message, or FETCH_FAILED for transport errors
        """
        discovered = self.discoverer.discover(target)
        if isinstance(discovered, Err):
            return discovered

        endpoint = discovered.endpoint
        logger.info(f"Sending webmention: source={source}, target={target}, endpoint={endpoint}")

        session = build_session(self.user_agent)
        try:
            response = session.post(
                endpoint,
                data={"source": source, "target": target},
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout:
            logger.error(f"Webmention request timed out: endpoint={endpoint}")
            return Err(ErrorKind.FETCH_FAILED, "Request timed out", 0)
        except requests.exceptions.RequestException as e:
            logger.error(f"Webmention request failed: endpoint={endpoint}, error={e}")
            return Err(ErrorKind.FETCH_FAILED, f"Request failed: {e}", 0)

        try:
            if response.status_code == 201 and response.headers.get("Location"):
                location = response.headers["Location"]
                logger.info(f"Webmention accepted: source={source}, target={target}, location={location}")
                return Accepted(status_code=201, location=location, endpoint=endpoint)

            if response.ok:
                logger.info(
                    f"Webmention accepted: source={source}, target={target}, "
                    f"status_code={response.status_code}"
                )
                return Accepted(status_code=response.status_code, endpoint=endpoint)

            message = error_text(response)
            logger.warning(
                f"Webmention rejected: source={source}, target={target}, "
                f"status_code={response.status_code}, error={message}"
            )
            return Err(ErrorKind.SEND_FAILED, message, response.status_code)
        finally:
            response.close()


def send_webmention(
    source: str,
    target: str,
    cross_origin_policy: str = DEFAULT_CROSS_ORIGIN_POLICY,
    allowed_origins: Optional[List[str]] = None,
    user_agent: Optional[str] = None,
    timeout: float = DISCOVERY_TIMEOUT,
) -> Union[Accepted, Err]:
    """Send a webmention from source to target with automatic endpoint discovery.

    Example:
        >>> result = send_webmention(
        ...     "https://reply.example.com/reply/abc123",
        ...     "https://blog.example.com/my-post",
        ...     cross_origin_policy="same-site",
        ... )
    """
    sender = Sender(
        cross_origin_policy=cross_origin_policy,
        allowed_origins=allowed_origins,
        user_agent=user_agent,
        timeout=timeout,
    )
    return sender.send(source, target)

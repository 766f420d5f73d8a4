"""
Wildcard domain matching.

Used by the receiver's target-domain allow-list. A pattern is a hostname
in which ``*`` stands for any run of characters, dots included:

    >>> match_domain("*.example.com", "sub.sub.example.com")
    True
    >>> match_domain("*.example.com", "example.com")
    False
    >>> match_domain("*.example.*", "sub.example.co.uk")
    True
"""

import re
from typing import Iterable


def match_domain(pattern: str, domain: str) -> bool:
    """Check whether a domain matches a wildcard pattern.

    Matching is case-insensitive and anchored at both ends.

    Args:
        pattern: Hostname pattern, optionally containing ``*`` wildcards
        domain: Hostname to test

    Returns:
        True if the domain matches the pattern
    """
    if pattern == domain:
        return True

    pattern = pattern.lower()
    domain = domain.lower()

    escaped = "".join(".*?" if char == "*" else re.escape(char) for char in pattern)
    return re.fullmatch(escaped, domain) is not None


def matches_any(patterns: Iterable[str], domain: str) -> bool:
    """Check whether a domain matches at least one of the given patterns."""
    return any(match_domain(pattern, domain) for pattern in patterns)

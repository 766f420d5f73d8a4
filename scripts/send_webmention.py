#!/usr/bin/env python3
"""Send a single webmention from SOURCE to TARGET.

Usage:
    python scripts/send_webmention.py <source> <target> [--policy same-site]

The sender settings (user agent, timeout, allowed origins) come from
config.yml; --policy overrides sender.cross_origin_policy.
"""

import argparse
import logging
import sys

from config import load_config
from indieweb.discovery import POLICIES
from indieweb.results import Accepted, CrossOriginPolicyViolation
from indieweb.sender import Sender


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("source", help="URL of the page that links to the target")
    parser.add_argument("target", help="URL being mentioned")
    parser.add_argument("--policy", choices=POLICIES, help="Cross-origin policy for the discovered endpoint")
    parser.add_argument("--config", help="Path to config.yml")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log discovery steps")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    config = load_config(args.config)
    if args.policy:
        config["sender"]["cross_origin_policy"] = args.policy

    result = Sender.from_config(config).send(args.source, args.target)

    if isinstance(result, Accepted):
        print(f"Accepted by {result.endpoint} ({result.status_code})")
        if result.location:
            print(f"Status: {result.location}")
        return 0

    if isinstance(result, CrossOriginPolicyViolation):
        print(f"Refused: {result.message}", file=sys.stderr)
        return 2

    status = f" ({result.status})" if result.status else ""
    print(f"Failed [{result.kind.value}]{status}: {result.message}", file=sys.stderr)
    return 1


if __name__ == "__main__":
    sys.exit(main())

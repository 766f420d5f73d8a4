"""
Webmention Receiver - Flask Application.

This module exposes the framework-agnostic ``indieweb.Receiver`` over HTTP
and serves the stored webmentions back as JSON.

Routes:
    POST /webmention            W3C Webmention receiving endpoint
    GET  /api/webmentions       Stored webmentions for a target or source
    GET  /health                Liveness probe

Every response advertises the endpoint for discovery:

    Link: </webmention>; rel="webmention"

Error Handling:
    The receiving endpoint answers in plain text, as the W3C spec expects:
    - 200: Webmention verified and stored (or deleted, for a 410 source)
    - 400: Invalid request, unverifiable source
    - 405: Method other than POST
    - 429: Per-IP rate limit exceeded
    - 500: Source could not be fetched

Security Considerations:
    - Per-IP rate limiting on the receiving endpoint (in-memory)
    - Optional private/loopback address blocking for source fetches
      (receiver.block_private_networks)
    - CORS only for configured origins
"""
import logging
import time
from collections import defaultdict
from dataclasses import asdict
from typing import Any, Dict, Optional

from flask import Flask, Response, current_app, jsonify, request
from flask_cors import CORS

from config import load_config
from indieweb.extensions import DEFAULT_REGISTRY
from indieweb.receiver import Receiver
from indieweb.results import Err
from storage import WebmentionStore, row_to_webmention

# Logging is configured in mentions.main() - this module uses the configured logger
logger = logging.getLogger(__name__)

# Request rate limiting per IP (in-memory, consider Redis for production)
_request_rate_cache: Dict[str, list] = defaultdict(list)
REQUEST_RATE_LIMIT = 60  # Max requests per IP per window
REQUEST_RATE_WINDOW_SECONDS = 60  # 1 minute window

WEBMENTION_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE"]


def clear_rate_limit_caches() -> None:
    """
    Clear all rate limiting caches.

    This is primarily useful for testing to ensure clean state between tests.
    Should not be called in production code.
    """
    _request_rate_cache.clear()


def check_request_rate_limit(client_ip: str, limit: int = REQUEST_RATE_LIMIT,
                             window_seconds: int = REQUEST_RATE_WINDOW_SECONDS) -> bool:
    """
    Check if request rate limit has been exceeded for a client IP.

    Args:
        client_ip: The client's IP address
        limit: Max requests per window
        window_seconds: Window length

    Returns:
        True if limit exceeded (should reject), False if allowed
    """
    cutoff_time = time.time() - window_seconds

    # Clean up old timestamps
    _request_rate_cache[client_ip] = [
        ts for ts in _request_rate_cache[client_ip] if ts > cutoff_time
    ]

    return len(_request_rate_cache[client_ip]) >= limit


def record_request(client_ip: str, window_seconds: int = REQUEST_RATE_WINDOW_SECONDS) -> None:
    """Record a request for rate limiting."""
    _request_rate_cache[client_ip].append(time.time())

    # Periodic cleanup of stale IPs to prevent memory growth
    if len(_request_rate_cache) > 10000:
        cutoff_time = time.time() - window_seconds
        stale_ips = [
            ip for ip, timestamps in _request_rate_cache.items()
            if not timestamps or max(timestamps) < cutoff_time
        ]
        for ip in stale_ips:
            del _request_rate_cache[ip]


def serialize_webmention(row: Dict[str, Any]) -> Dict[str, Any]:
    """Render a stored row as definition + payload, the way it was received."""
    normalised = DEFAULT_REGISTRY.reparse(row_to_webmention(row))
    if isinstance(normalised, Err):
        logger.warning(f"Stored webmention {row['id']} has an invalid kind: {row['kind']}")
        return {
            "source": row["source"],
            "target": row["target"],
            "error": normalised.message,
            "created_at": row["created_at"],
            "updated_at": row["updated_at"],
        }
    data = asdict(normalised)
    data["created_at"] = row["created_at"]
    data["updated_at"] = row["updated_at"]
    return data


def create_app(config: Optional[Dict[str, Any]] = None, store: Optional[WebmentionStore] = None,
               receiver: Optional[Receiver] = None) -> Flask:
    """Factory function to create and configure the Flask application.

    Args:
        config: Optional configuration dictionary (if None, will be loaded from config.yml)
        store: Optional WebmentionStore (if None, opened at storage.path)
        receiver: Optional Receiver (if None, built from the receiver config)

    Returns:
        Configured Flask application instance

    Example:
        >>> app = create_app(config, store=WebmentionStore(tmp_dir))
        >>> client = app.test_client()
    """
    app = Flask(__name__)

    if config is None:
        config = load_config()

    # Configure CORS to allow requests from the blog domain(s)
    cors_config = config.get("cors", {})
    if cors_config.get("enabled", False):
        cors_origins = cors_config.get("origins", [])
        if cors_origins:
            CORS(app, origins=cors_origins)
            logger.info(f"CORS enabled for origins: {cors_origins}")
        else:
            logger.warning("CORS enabled but no origins configured")
    else:
        logger.info("CORS is disabled in configuration")

    if store is None:
        storage_path = config.get("storage", {}).get("path", "./data/webmentions")
        store = WebmentionStore(storage_path)
    if receiver is None:
        receiver = Receiver.from_config(config, store)

    app.config["WEBMENTION_STORE"] = store
    app.config["WEBMENTION_RECEIVER"] = receiver

    security_config = config.get("security", {})
    app.config["RATE_LIMIT_ENABLED"] = security_config.get("rate_limit_enabled", True)
    app.config["RATE_LIMIT_REQUESTS"] = security_config.get("rate_limit_requests", REQUEST_RATE_LIMIT)
    app.config["RATE_LIMIT_WINDOW"] = security_config.get("rate_limit_window_seconds", REQUEST_RATE_WINDOW_SECONDS)

    # Per W3C Webmention spec section 3.1.2: senders discover the
    # endpoint via a Link header or <link> element.
    @app.after_request
    def add_webmention_link_header(response):
        """Add Link header advertising the webmention endpoint."""
        response.headers.setdefault("Link", '</webmention>; rel="webmention"')
        return response

    @app.route("/webmention", methods=WEBMENTION_METHODS)
    def receive_webmention():
        """W3C Webmention receiving endpoint.

        Accepts application/x-www-form-urlencoded POST requests with
        ``source`` and ``target`` and the optional extension fields
        ``definition`` and ``payload``. The source is fetched and verified
        before this handler returns.

        Returns:
            Plain-text response with 200, 400, 405, 429 or 500
        """
        if app.config["RATE_LIMIT_ENABLED"] and request.method == "POST":
            client_ip = request.remote_addr or "unknown"
            if check_request_rate_limit(client_ip, app.config["RATE_LIMIT_REQUESTS"],
                                        app.config["RATE_LIMIT_WINDOW"]):
                logger.warning(f"Rate limit exceeded for webmention from {client_ip}")
                return Response("Too many requests", status=429, mimetype="text/plain")
            record_request(client_ip, app.config["RATE_LIMIT_WINDOW"])

        text, status = current_app.config["WEBMENTION_RECEIVER"].handle(
            request.method,
            request.headers.get("Content-Type"),
            request.get_data(cache=False),
        )
        if status != 200:
            logger.info(f"Webmention rejected with {status}: {text.splitlines()[0] if text else ''}")
        return Response(text, status=status, mimetype="text/plain")

    @app.route("/api/webmentions", methods=["GET"])
    def list_webmentions():
        """Retrieve stored webmentions for a target and/or source.

        Query parameters:
            target: Target URL
            source: Source URL

        Returns:
            JSON with the matching webmentions, newest first, each with
            source, target, definition, payload, created_at, updated_at
        """
        target = request.args.get("target", "").strip()
        source = request.args.get("source", "").strip()
        if not target and not source:
            return jsonify({
                "status": "error",
                "message": "Missing required query parameter: target or source"
            }), 400

        rows = current_app.config["WEBMENTION_STORE"].list(source=source or None, target=target or None)
        webmentions = [serialize_webmention(row) for row in rows]
        return jsonify({
            "target": target or None,
            "source": source or None,
            "webmentions": webmentions,
            "count": len(webmentions),
        }), 200

    @app.route("/health", methods=["GET"])
    def health_check():
        """Health check endpoint for monitoring and load balancers.

        Example:
            $ curl http://localhost:5000/health
            {"status": "healthy"}
        """
        return jsonify({"status": "healthy"}), 200

    return app

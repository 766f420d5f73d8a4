"""Gunicorn configuration for the webmention receiver.

Receiving is synchronous: the worker fetches and verifies the source before
answering, so the worker timeout has to stay above the receiver's source
fetch timeout (receiver.timeout, 10 seconds by default). Logs go to
stdout/stderr for `docker compose logs`.
"""

import sys

bind = "0.0.0.0:5000"

# Threads let one slow source fetch not block other senders
workers = 2
worker_class = "gthread"
threads = 4
timeout = 30
keepalive = 2

accesslog = "-"
errorlog = "-"
loglevel = "info"

# Remote IP, request line, status, size, user agent, request time (us)
access_log_format = '%(h)s %(t)s "%(r)s" %(s)s %(b)s "%(a)s" %(D)s'

capture_output = True
enable_stdio_inheritance = True


def on_starting(server):
    """Called just before the master process is initialized."""
    server.log.info("Starting webmention receiver")


def when_ready(server):
    """Called just after the server is started."""
    server.log.info(f"Webmention receiver listening on {bind}")


def on_exit(server):
    """Called just before exiting Gunicorn."""
    server.log.info("Shutting down webmention receiver")


def worker_abort(worker):
    """Called when a worker receives a SIGABRT signal."""
    worker.log.error("Worker received SIGABRT signal - likely a source fetch outlived the worker timeout")


preload_app = False
reload = False
daemon = False
pidfile = None

# Webmention requests are small form posts
limit_request_line = 4096
limit_request_fields = 100
limit_request_field_size = 8190

logconfig_dict = {
    "version": 1,
    "disable_existing_loggers": False,
    "root": {
        "level": "INFO",
        "handlers": ["console"],
    },
    "loggers": {
        "gunicorn.error": {
            "level": "INFO",
            "handlers": ["error_console"],
            "propagate": False,
            "qualname": "gunicorn.error",
        },
        "gunicorn.access": {
            "level": "INFO",
            "handlers": ["console"],
            "propagate": False,
            "qualname": "gunicorn.access",
        },
        "indieweb": {
            "level": "INFO",
            "handlers": [],
            "propagate": True,
            "qualname": "indieweb",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "generic",
            "stream": sys.stdout,
        },
        "error_console": {
            "class": "logging.StreamHandler",
            "formatter": "generic",
            "stream": sys.stderr,
        },
    },
    "formatters": {
        "generic": {
            "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            "datefmt": "%Y-%m-%d %H:%M:%S",
            "class": "logging.Formatter",
        }
    },
}

"""
Mentions Core Module.

The mentions entry point embeds Gunicorn to run the webmention receiver as a
production-ready WSGI application, which:
1. Accepts webmentions (POST /webmention)
2. Fetches and verifies each source before answering
3. Stores verified webmentions in SQLite, deleting them when a source is gone
4. Serves stored webmentions (GET /api/webmentions)

Functions:
    main() -> None:
        Entry point for the console script. Starts Gunicorn with the
        webmention receiver Flask app on port 5000.

Example:
    Run via console script:
        $ mentions
        Starting webmention receiver
        Webmention receiver listening on 0.0.0.0:5000
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler

logger = logging.getLogger(__name__)

LOG_FILE = "mentions.log"
LOG_MAX_BYTES = 10 * 1024 * 1024  # 10MB
LOG_BACKUP_COUNT = 3
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def is_debug_requested(argv=None) -> bool:
    """Debug mode from the MENTIONS_DEBUG environment variable or a --debug flag."""
    argv = sys.argv if argv is None else argv
    if os.environ.get("MENTIONS_DEBUG", "").lower() in ("true", "1", "yes"):
        return True
    return "--debug" in argv[1:]


def configure_logging(debug: bool = False, log_file: str = LOG_FILE) -> None:
    """Send all logging to a rotating file and stdout.

    Args:
        debug: Log at DEBUG instead of INFO
        log_file: Path of the rotating log file
    """
    log_level = logging.DEBUG if debug else logging.INFO

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Clear any existing handlers to avoid duplicates (e.g., from gunicorn)
    root_logger.handlers.clear()

    formatter = logging.Formatter(LOG_FORMAT)

    log_handler = RotatingFileHandler(log_file, maxBytes=LOG_MAX_BYTES, backupCount=LOG_BACKUP_COUNT)
    log_handler.setLevel(log_level)
    log_handler.setFormatter(formatter)
    root_logger.addHandler(log_handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)


def main(debug: bool = False) -> None:
    """Main entry point for the mentions console command.

    Args:
        debug: Enable debug mode with verbose logging and no worker timeout.
               Can be set via --debug flag or MENTIONS_DEBUG environment variable.

    Architecture:
        mentions main() -> Gunicorn -> Flask app -> Receiver -> WebmentionStore

    Gunicorn Configuration (src/web/gunicorn_config.py):
        - Threaded workers, since every request fetches its source
        - 30s worker timeout, above the receiver's source fetch timeout
        - All logs to stdout/stderr for Docker visibility
    """
    from gunicorn.app.base import BaseApplication
    from config import load_config
    from indieweb.receiver import Receiver
    from storage import WebmentionStore
    from web import create_app

    if not debug:
        debug = is_debug_requested()

    configure_logging(debug)

    if debug:
        logger.info("Debug mode enabled: verbose logging and worker timeout disabled for breakpoint debugging")

    logger.info("Loading configuration from config.yml")
    config = load_config()

    storage_path = config["storage"]["path"]
    logger.info(f"Opening webmention store at {storage_path}")
    store = WebmentionStore(storage_path)
    logger.info(f"  - {store.count()} webmention(s) stored")

    receiver = Receiver.from_config(config, store)
    if receiver.accepted_target_domains:
        logger.info(f"  - Accepting targets on: {', '.join(receiver.accepted_target_domains)}")
    else:
        logger.warning("  - No receiver.accepted_target_domains configured, accepting any target domain")

    app = create_app(config=config, store=store, receiver=receiver)

    gunicorn_config_path = os.path.join(os.path.dirname(__file__), "..", "web", "gunicorn_config.py")

    class StandaloneApplication(BaseApplication):
        """Custom Gunicorn application for embedding within the mentions entry point."""

        def __init__(self, app, options=None):
            self.options = options or {}
            self.application = app
            super().__init__()

        def load_config(self):
            config_file = self.options.get("config")
            if config_file:
                self.cfg.set("config", config_file)
                with open(config_file, "r") as f:
                    config_code = f.read()
                config_namespace = {}
                exec(config_code, config_namespace)
                for key, value in config_namespace.items():
                    if key in self.cfg.settings and value is not None:
                        self.cfg.set(key.lower(), value)

            if self.options.get("debug"):
                self.cfg.set("timeout", 0)
                self.cfg.set("loglevel", "debug")

        def load(self):
            return self.application

    options = {
        "config": gunicorn_config_path,
        "debug": debug,
    }
    StandaloneApplication(app, options).run()


# Allow running as a script for development/testing
if __name__ == "__main__":
    main()

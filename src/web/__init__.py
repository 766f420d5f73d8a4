"""Flask front end for the webmention receiver.

Exported Functions:
    create_app: Application factory wiring the Receiver and WebmentionStore
"""
from .app import create_app

__all__ = ["create_app"]

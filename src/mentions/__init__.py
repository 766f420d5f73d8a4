"""Mentions: a self-hosted Webmention receiver and sender.

The package wires the ``indieweb`` protocol engine, the SQLite store and the
Flask receiver into a single console command.

Exported Functions:
    main: Entry point for the mentions console command
"""
from .mentions import main

__all__ = ["main"]

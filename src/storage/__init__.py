"""Webmention storage.

The receiver hands verified webmentions to a storage collaborator with this
contract:
    insert(webmention)        upsert on (source, target)
    delete(source, target)    remove a pair (410 Gone, link removed)
    list(source=, target=)    newest first

WebmentionStore implements it on SQLite.
"""
from .store import WebmentionStore, row_to_webmention

__all__ = ["WebmentionStore", "row_to_webmention"]

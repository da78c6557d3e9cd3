"""
tiddlypom - a single-user TiddlyWeb sync server.

Stores tiddlers in a self-migrating SQLite database and guards the wiki with
a small file-backed credential store.
"""

__version__ = "0.1.0"
__author__ = "tiddlypom authors"

"""Storage layer components for tiddlers, users and schema migrations."""

from .database import DatabaseManager, StorageError, NotFoundError
from .migrations import MigrationManager, MigrationError, migrate_database
from .tiddler_store import TiddlerStore
from .user_store import UserStore, InvalidCredentialError

__all__ = [
    'DatabaseManager',
    'StorageError',
    'NotFoundError',
    'MigrationManager',
    'MigrationError',
    'migrate_database',
    'TiddlerStore',
    'UserStore',
    'InvalidCredentialError',
]

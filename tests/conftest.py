"""Test configuration and fixtures."""

import pytest
import tempfile
import shutil
from pathlib import Path

from tiddlypom.core.models import User
from tiddlypom.core.security import hash_password
from tiddlypom.storage.database import DatabaseManager
from tiddlypom.storage.migrations import MigrationManager
from tiddlypom.storage.tiddler_store import TiddlerStore
from tiddlypom.storage.user_store import UserStore

PEPPER = "test-pepper"
EMAIL = "user@site.com"
PASSWORD = "fancy-password"


@pytest.fixture
def temp_project():
    """Create a temporary project directory."""
    temp_dir = Path(tempfile.mkdtemp())

    try:
        (temp_dir / "database").mkdir()
        (temp_dir / "index.html").write_text("<html><body>wiki</body></html>")

        yield temp_dir
    finally:
        shutil.rmtree(temp_dir)


@pytest.fixture
def db_manager(temp_project):
    """Create a database manager on a migrated database."""
    manager = DatabaseManager(temp_project / "database" / "tiddly.db")
    MigrationManager(manager).migrate()
    return manager


@pytest.fixture
def tiddler_store(db_manager):
    """Create a tiddler store."""
    return TiddlerStore(db_manager)


@pytest.fixture(scope="session")
def password_hash():
    """Hash the test password once; bcrypt is slow on purpose."""
    return hash_password(PASSWORD, PEPPER)


@pytest.fixture
def user_store(temp_project, password_hash):
    """Create a user store holding one user."""
    store = UserStore(
        temp_project / "users.json",
        temp_project / "usertokens.json",
        PEPPER,
    )
    store.create(User(email=EMAIL, password_hash=password_hash))
    return store

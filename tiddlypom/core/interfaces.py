"""Core interfaces and abstract base classes for tiddlypom."""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional, Dict, Any

from .models import Tiddler, Title, User, RememberToken


class ITiddlerStore(ABC):
    """Interface for revisioned tiddler storage."""

    @abstractmethod
    def get(self, title: Title) -> Tiddler:
        """Retrieve a tiddler by title, raising NotFoundError if absent."""
        pass

    @abstractmethod
    def list(self) -> List[Tiddler]:
        """List metadata of all non-system tiddlers."""
        pass

    @abstractmethod
    def upsert(self, title: Title, tiddler: Tiddler) -> Tiddler:
        """Insert or update a tiddler, assigning its next revision."""
        pass

    @abstractmethod
    def delete(self, title: Title) -> None:
        """Delete a tiddler; deleting a missing tiddler is not an error."""
        pass


class IUserStore(ABC):
    """Interface for users and remember tokens."""

    @abstractmethod
    def authenticate(self, email: str, password: str) -> User:
        """Authenticate a user by email and password."""
        pass

    @abstractmethod
    def create(self, user: User) -> None:
        """Add or replace a user."""
        pass

    @abstractmethod
    def by_email(self, email: str) -> User:
        """Find a user by email address."""
        pass

    @abstractmethod
    def by_remember_token(self, token: RememberToken) -> User:
        """Find the user a remember token was issued to."""
        pass

    @abstractmethod
    def create_remember_token(self, user: User) -> RememberToken:
        """Issue and persist a new remember token."""
        pass

    @abstractmethod
    def clear_remember_token(self, token: RememberToken) -> None:
        """Forget a remember token."""
        pass


class IConfigManager(ABC):
    """Interface for configuration management."""

    @abstractmethod
    def load_config(self, config_path: Optional[Path] = None) -> Dict[str, Any]:
        """Load configuration from file."""
        pass

    @abstractmethod
    def save_config(self, config: Dict[str, Any], config_path: Optional[Path] = None) -> bool:
        """Save configuration to file."""
        pass

    @abstractmethod
    def get_default_config(self) -> Dict[str, Any]:
        """Get default configuration values."""
        pass

    @abstractmethod
    def validate_config(self, config: Dict[str, Any]) -> List[str]:
        """Validate configuration and return any errors."""
        pass

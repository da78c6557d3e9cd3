"""File-backed storage for users and remember tokens.

Both collections are small, so each one lives in a single JSON file that is
rewritten as a whole on every change. Every read-modify-write sequence holds
the collection's lock for its full duration.
"""

import json
import logging
import os
import threading
from pathlib import Path
from typing import List, Union

from ..core.interfaces import IUserStore
from ..core.models import User, UserToken, RememberToken
from ..core.security import check_password, generate_token
from .database import StorageError, NotFoundError


logger = logging.getLogger(__name__)


class InvalidCredentialError(Exception):
    """Exception raised when a password does not match."""
    pass


class UserStore(IUserStore):
    """Manages users and remember tokens stored as JSON files."""

    def __init__(self, users_path: Union[str, Path], tokens_path: Union[str, Path],
                 pepper: str):
        """Initialize user store.

        Args:
            users_path: JSON file holding the user list
            tokens_path: JSON file holding the remember tokens
            pepper: Server-wide secret appended to every password
        """
        self.users_path = Path(users_path)
        self.tokens_path = Path(tokens_path)
        self.pepper = pepper
        self._users_lock = threading.Lock()
        self._tokens_lock = threading.Lock()

    def authenticate(self, email: str, password: str) -> User:
        """Authenticate a user based on email and password.

        Raises:
            NotFoundError: If no user has this email
            InvalidCredentialError: If the password does not match
        """
        user = self.by_email(email)
        if not check_password(password, self.pepper, user.password_hash):
            raise InvalidCredentialError(f"invalid password for {user.email}")
        return user

    def create(self, user: User) -> None:
        """Add a user, replacing any user with the same email.

        The users file is created when it does not exist yet.
        """
        with self._users_lock:
            existing = self._read_users() if self.users_path.exists() else []
            users = [
                u for u in existing
                if u.email.lower() != user.email.lower()
            ]
            users.append(user)
            self._write(self.users_path, [u.to_dict() for u in users])
        logger.info(f"Saved user {user.email}")

    def by_email(self, email: str) -> User:
        """Retrieve a user by email address, ignoring case."""
        with self._users_lock:
            users = self._read_users()
        for user in users:
            if user.email.lower() == email.lower():
                return user
        raise NotFoundError(f"user not found: {email}")

    def by_remember_token(self, token: RememberToken) -> User:
        """Retrieve the user a remember token belongs to."""
        with self._tokens_lock:
            tokens = self._read_tokens()
        for user_token in tokens:
            if user_token.remember_token.lower() == token.lower():
                return self.by_email(user_token.email)
        raise NotFoundError("remember token not found")

    def create_remember_token(self, user: User) -> RememberToken:
        """Issue a new remember token for a user.

        Earlier tokens of the same user stay valid; each device keeps its own.
        """
        token = generate_token()
        with self._tokens_lock:
            tokens = self._read_tokens()
            tokens.append(UserToken(email=user.email, remember_token=token))
            self._write(self.tokens_path, [t.to_dict() for t in tokens])
        logger.debug(f"Issued remember token for {user.email}")
        return token

    def clear_remember_token(self, token: RememberToken) -> None:
        """Remove a remember token. Unknown tokens are ignored."""
        with self._tokens_lock:
            tokens = self._read_tokens()
            for i, user_token in enumerate(tokens):
                if user_token.remember_token.lower() == token.lower():
                    # Token order does not matter.
                    tokens[i] = tokens[-1]
                    tokens.pop()
                    break
            else:
                return
            self._write(self.tokens_path, [t.to_dict() for t in tokens])

    def list_users(self) -> List[User]:
        """Get all users."""
        with self._users_lock:
            return self._read_users()

    def list_tokens(self) -> List[UserToken]:
        """Get all remember tokens."""
        with self._tokens_lock:
            return self._read_tokens()

    # Callers must hold the matching lock for the helpers below.

    def _read_users(self) -> List[User]:
        try:
            return [User.from_dict(item) for item in self._read(self.users_path)]
        except KeyError as e:
            raise StorageError(f"{self.users_path.name} record is missing {e}")

    def _read_tokens(self) -> List[UserToken]:
        # A tokens file that was never written simply means nobody has
        # logged in yet.
        if not self.tokens_path.exists():
            return []
        try:
            return [UserToken.from_dict(item) for item in self._read(self.tokens_path)]
        except KeyError as e:
            raise StorageError(f"{self.tokens_path.name} record is missing {e}")

    def _read(self, path: Path) -> list:
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.error(f"Failed to read {path}: {e}")
            raise StorageError(f"Failed to read {path.name}: {e}")

        if not isinstance(data, list) or not all(isinstance(item, dict) for item in data):
            raise StorageError(f"{path.name} does not hold a list of records")
        for item in data:
            if not all(isinstance(v, str) for v in item.values()):
                raise StorageError(f"{path.name} holds a malformed record")
        return data

    def _write(self, path: Path, records: list) -> None:
        # Write to temporary file first, then rename for atomicity
        temp_path = path.with_suffix(path.suffix + '.tmp')
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(temp_path, 'w', encoding='utf-8') as f:
                json.dump(records, f, indent=2)
            os.replace(temp_path, path)
        except OSError as e:
            if temp_path.exists():
                temp_path.unlink()
            logger.error(f"Failed to write {path}: {e}")
            raise StorageError(f"Failed to write {path.name}: {e}")

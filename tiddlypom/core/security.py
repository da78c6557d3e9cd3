"""Password hashing and random token helpers."""

import secrets

import bcrypt


# bcrypt only looks at the first 72 bytes of its input.
BCRYPT_MAX_BYTES = 72


class PasswordTooLongError(ValueError):
    """Raised when a password plus pepper does not fit into bcrypt's input."""
    pass


def generate_token(nbytes: int = 32) -> str:
    """Generate a URL-safe random string.

    Used both for remember tokens and for server peppers.
    """
    return secrets.token_urlsafe(nbytes)


def _peppered(password: str, pepper: str) -> bytes:
    data = (password + pepper).encode('utf-8')
    if len(data) > BCRYPT_MAX_BYTES:
        raise PasswordTooLongError(
            f"password and pepper together exceed {BCRYPT_MAX_BYTES} bytes"
        )
    return data


def hash_password(password: str, pepper: str) -> str:
    """Hash a password mixed with the server pepper.

    Raises:
        PasswordTooLongError: If the peppered password is longer than bcrypt accepts
    """
    return bcrypt.hashpw(_peppered(password, pepper), bcrypt.gensalt()).decode('ascii')


def check_password(password: str, pepper: str, password_hash: str) -> bool:
    """Check a password against a stored bcrypt hash.

    A malformed stored hash or an over-long password never matches.
    """
    try:
        return bcrypt.checkpw(_peppered(password, pepper), password_hash.encode('ascii'))
    except ValueError:
        return False

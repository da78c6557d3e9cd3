"""Core data models and type definitions for tiddlypom."""

import json
from dataclasses import dataclass
from typing import Any, Dict, Optional
from urllib.parse import quote_plus


# Type aliases for better readability
Title = str
RememberToken = str

# Every tiddler is written into this single bag.
BAG_NAME = "bag"

# Fields the store owns inside the metadata blob. Everything else is
# passed through untouched.
REVISION_FIELD = "revision"
BAG_FIELD = "bag"
TEXT_FIELD = "text"

# Titles starting with any of these are bookkeeping tiddlers and are hidden
# from the tiddler list. "$:/themes/" is intentionally missing: the wiki
# would lose appearance changes on the next reload otherwise.
SYSTEM_PREFIXES = (
    "$:/boot/",
    "$:/core",
    "$:/HistoryList",
    "$:/isEncrypted",
    "$:/library/",
    "$:/plugins/",
    "$:/state/",
    "$:/status/",
    "$:/StoryList",
    "$:/temp/",
)


class ValidationError(Exception):
    """Exception raised for malformed protocol input."""
    pass


def is_system_tiddler(title: Title) -> bool:
    """Check whether a title belongs to a system namespace."""
    return title.startswith(SYSTEM_PREFIXES)


@dataclass
class Tiddler:
    """A single tiddler as stored in the database.

    The metadata is kept as the JSON text that was written to the database,
    so listings can be streamed out without re-parsing every row.
    """
    title: Title
    meta_json: str = "{}"
    text: str = ""
    revision: int = 0
    is_system: bool = False

    @property
    def meta(self) -> Dict[str, Any]:
        """Parsed metadata fields."""
        return json.loads(self.meta_json)

    @classmethod
    def from_fields(cls, title: Title, fields: Any) -> "Tiddler":
        """Build a tiddler from a decoded PUT body.

        Args:
            title: Tiddler title taken from the request path
            fields: Decoded JSON body

        Returns:
            Tiddler with text split out of the metadata

        Raises:
            ValidationError: If the body is not a JSON object or text is not a string
        """
        if not isinstance(fields, dict):
            raise ValidationError("tiddler body must be a JSON object")

        meta = dict(fields)
        text = meta.pop(TEXT_FIELD, "")
        if text is None:
            text = ""
        if not isinstance(text, str):
            raise ValidationError("tiddler text must be a string")

        # NaN and Infinity would be stored as text no JSON client can parse.
        try:
            meta_json = json.dumps(meta, allow_nan=False)
        except ValueError as e:
            raise ValidationError(f"tiddler fields are not valid JSON: {e}")

        return cls(title=title, meta_json=meta_json, text=text)

    def to_fields(self) -> Dict[str, Any]:
        """Merge metadata and text into one wire object."""
        fields = self.meta
        fields[TEXT_FIELD] = self.text
        return fields


@dataclass
class User:
    """A user allowed to log in."""
    email: str
    password_hash: str

    def to_dict(self) -> Dict[str, str]:
        return {'email': self.email, 'password_hash': self.password_hash}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "User":
        return cls(email=data['email'], password_hash=data['password_hash'])


@dataclass
class UserToken:
    """A remember token issued to a user at login."""
    email: str
    remember_token: RememberToken

    def to_dict(self) -> Dict[str, str]:
        return {'email': self.email, 'remember_token': self.remember_token}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UserToken":
        return cls(email=data['email'], remember_token=data['remember_token'])


def format_etag(title: Title, revision: int, digest: Optional[str] = None) -> str:
    """Format the ETag returned after a tiddler write.

    Args:
        title: Tiddler title
        revision: Revision assigned by the store
        digest: Optional content digest placed after the colon

    Returns:
        Quoted ETag string, e.g. ``"default/Foo/2:"``
    """
    return f'"default/{quote_plus(title)}/{revision}:{digest or ""}"'

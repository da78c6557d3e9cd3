"""Revisioned tiddler storage on top of the SQLite database."""

import json
import logging
from typing import List, Tuple

from ..core.interfaces import ITiddlerStore
from ..core.models import (
    Tiddler, Title, ValidationError, BAG_NAME, BAG_FIELD, REVISION_FIELD,
    is_system_tiddler
)
from .database import DatabaseManager, NotFoundError


logger = logging.getLogger(__name__)


class TiddlerStore(ITiddlerStore):
    """Stores tiddlers, one row per title.

    Each operation runs in its own transaction. Writers racing on the same
    title are serialized by SQLite's write lock, so the last writer wins and
    every successful write gets the next revision number.
    """

    def __init__(self, db_manager: DatabaseManager):
        self.db_manager = db_manager

    def get(self, title: Title) -> Tiddler:
        """Retrieve a tiddler by title.

        Args:
            title: Tiddler title

        Returns:
            The stored tiddler with its current revision

        Raises:
            NotFoundError: If no tiddler has this title
        """
        with self.db_manager.transaction() as conn:
            row = conn.execute(
                "SELECT title, rev, meta, text, is_system FROM tiddler WHERE title = ?",
                (title,),
            ).fetchone()

        if row is None:
            raise NotFoundError(f"tiddler not found: {title}")

        return Tiddler(
            title=row['title'],
            meta_json=row['meta'],
            text=row['text'],
            revision=row['rev'],
            is_system=bool(row['is_system']),
        )

    def list(self) -> List[Tiddler]:
        """List all non-system tiddlers without their text."""
        with self.db_manager.transaction() as conn:
            rows = conn.execute(
                "SELECT title, rev, meta FROM tiddler WHERE is_system = 0"
            ).fetchall()

        return [
            Tiddler(title=row['title'], meta_json=row['meta'], revision=row['rev'])
            for row in rows
        ]

    def upsert(self, title: Title, tiddler: Tiddler) -> Tiddler:
        """Insert or update a tiddler.

        The caller's revision and system flag are ignored: the next revision
        is read and written inside the same write transaction, and the
        system flag is derived from the title.

        Args:
            title: Tiddler title
            tiddler: Tiddler carrying the new metadata and text

        Returns:
            The tiddler as stored, with its new revision

        Raises:
            ValidationError: If the metadata holds NaN or Infinity
        """
        meta = tiddler.meta
        is_system = is_system_tiddler(title)

        with self.db_manager.transaction(write=True) as conn:
            row = conn.execute(
                "SELECT rev FROM tiddler WHERE title = ?", (title,)
            ).fetchone()
            revision = row['rev'] + 1 if row else 1

            meta[BAG_FIELD] = BAG_NAME
            meta[REVISION_FIELD] = revision
            # Listings stream this blob verbatim, so it must be strict JSON.
            try:
                meta_json = json.dumps(meta, allow_nan=False)
            except ValueError as e:
                raise ValidationError(f"tiddler fields are not valid JSON: {e}")

            conn.execute("""
                INSERT INTO tiddler (title, rev, meta, text, is_system)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(title) DO UPDATE SET
                    rev = excluded.rev,
                    meta = excluded.meta,
                    text = excluded.text,
                    is_system = excluded.is_system
            """, (title, revision, meta_json, tiddler.text, int(is_system)))

        logger.debug(f"Stored tiddler {title!r} at revision {revision}")

        return Tiddler(
            title=title,
            meta_json=meta_json,
            text=tiddler.text,
            revision=revision,
            is_system=is_system,
        )

    def delete(self, title: Title) -> None:
        """Delete a tiddler. Deleting a missing tiddler succeeds silently."""
        with self.db_manager.transaction(write=True) as conn:
            cursor = conn.execute("DELETE FROM tiddler WHERE title = ?", (title,))
            deleted = cursor.rowcount > 0

        if deleted:
            logger.debug(f"Deleted tiddler {title!r}")

    def count(self) -> Tuple[int, int]:
        """Count stored tiddlers.

        Returns:
            Tuple of (total, system) tiddler counts
        """
        with self.db_manager.transaction() as conn:
            row = conn.execute(
                "SELECT COUNT(*), COALESCE(SUM(is_system), 0) FROM tiddler"
            ).fetchone()
        return row[0], row[1]

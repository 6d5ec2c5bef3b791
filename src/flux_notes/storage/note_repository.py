"""Repository for note storage and retrieval."""
import logging
from typing import List, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.orm import sessionmaker

from flux_notes.exceptions import ErrorCode, NoteValidationError
from flux_notes.models.db_models import FTS_TABLES, DBNote
from flux_notes.models.schema import Note, ensure_timezone_aware, utc_now
from flux_notes.storage.base import Repository
from flux_notes.storage.fts_index import FtsIndex

logger = logging.getLogger(__name__)


def _validate_title(title: Optional[str]) -> str:
    if title is None or not title.strip():
        raise NoteValidationError(
            "Note title is required",
            field="title",
            code=ErrorCode.NOTE_TITLE_REQUIRED,
        )
    return title


class NoteRepository(Repository):
    """Repository for notes.

    Tag associations and wiki-links derived from a note's body are kept
    by TagRepository and LinkRepository; FluxService calls them after
    writes here.
    """

    def __init__(self, session_factory: sessionmaker):
        super().__init__(session_factory)
        self._fts = FtsIndex(session_factory, DBNote, FTS_TABLES["notes"])

    @staticmethod
    def _db_note_to_model(db_note: DBNote) -> Note:
        """Convert a database row to a Note."""
        return Note(
            id=db_note.id,
            title=db_note.title,
            body=db_note.body or "",
            created_at=ensure_timezone_aware(db_note.created_at),
            updated_at=ensure_timezone_aware(db_note.updated_at),
        )

    def create(self, title: str, body: str = "") -> Note:
        """Create a new note.

        Raises:
            NoteValidationError: If the title is empty.
        """
        _validate_title(title)
        now = utc_now()
        note = Note(title=title, body=body or "", created_at=now, updated_at=now)

        with self._transaction("create_note") as session:
            session.add(
                DBNote(
                    id=note.id,
                    title=note.title,
                    body=note.body,
                    created_at=note.created_at,
                    updated_at=note.updated_at,
                )
            )

        logger.debug(f"Created note {note.id}")
        return note

    def get(self, note_id: str) -> Optional[Note]:
        """Get a note by ID, or None if it does not exist."""
        with self.session_factory() as session:
            db_note = session.get(DBNote, note_id)
            return self._db_note_to_model(db_note) if db_note else None

    def get_by_title(self, title: str) -> Optional[Note]:
        """Get a note by exact title, ignoring case."""
        with self.session_factory() as session:
            db_note = session.scalar(
                select(DBNote)
                .where(DBNote.title.collate("NOCASE") == title)
                .limit(1)
            )
            return self._db_note_to_model(db_note) if db_note else None

    def list(self) -> List[Note]:
        """List all notes, most recently updated first."""
        with self.session_factory() as session:
            db_notes = session.scalars(
                select(DBNote).order_by(DBNote.updated_at.desc())
            ).all()
            return [self._db_note_to_model(n) for n in db_notes]

    def update(
        self,
        note_id: str,
        title: Optional[str] = None,
        body: Optional[str] = None,
    ) -> Optional[Note]:
        """Update the given fields of a note.

        Fields left as None are not touched. When neither is given the
        current note is returned unchanged and updated_at is not bumped.

        Returns:
            The updated note, or None if it does not exist.
        """
        if title is None and body is None:
            return self.get(note_id)

        values = {}
        if title is not None:
            values["title"] = _validate_title(title)
        if body is not None:
            values["body"] = body
        values["updated_at"] = utc_now()

        with self._transaction("update_note") as session:
            result = session.execute(
                update(DBNote).where(DBNote.id == note_id).values(**values)
            )
            if result.rowcount == 0:
                return None

        return self.get(note_id)

    def delete(self, note_id: str) -> bool:
        """Delete a note. Returns False if it did not exist."""
        with self._transaction("delete_note") as session:
            result = session.execute(delete(DBNote).where(DBNote.id == note_id))
            deleted = result.rowcount > 0

        if deleted:
            logger.debug(f"Deleted note {note_id}")
        return deleted

    def search(self, query: str) -> List[Note]:
        """Prefix full-text search over title and body, best match first."""
        return [self._db_note_to_model(n) for n in self._fts.search(query)]

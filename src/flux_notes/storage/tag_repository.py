"""Repository for tags derived from note bodies."""
import logging
import re
from typing import List

from sqlalchemy import delete, func, insert, select, text

from flux_notes.models.db_models import DBNote, DBTag, note_tags
from flux_notes.models.schema import Note, TagCount, generate_id
from flux_notes.storage.base import Repository
from flux_notes.storage.note_repository import NoteRepository

logger = logging.getLogger(__name__)

# "#project" hashtags and "@alice" mentions; names are ASCII [A-Za-z0-9_]
TAG_PATTERN = re.compile(r"[#@](\w+)", re.ASCII)


def extract_tags(body: str) -> List[str]:
    """Extract hashtag and mention names from text.

    Names are lowercased and deduplicated, and come back in the order
    they first appear.

    Example:
        >>> extract_tags("Meet @alice re #Project and #project")
        ['alice', 'project']
        >>> extract_tags("#café")
        ['caf']
    """
    seen = set()
    tags: List[str] = []
    for match in TAG_PATTERN.finditer(body or ""):
        name = match.group(1).lower()
        if name not in seen:
            seen.add(name)
            tags.append(name)
    return tags


class TagRepository(Repository):
    """Repository for tags and the note-tag association.

    Tags are created lazily by sync_note_tags and never deleted: a tag
    whose last note drops it stays in the table with a zero count.
    """

    def sync_note_tags(self, note_id: str, body: str) -> List[str]:
        """Replace a note's tag associations with the tags found in body.

        Runs as one transaction: existing associations are deleted, then
        each extracted tag is inserted if absent and associated. If any
        step fails the prior associations are left intact.

        Returns:
            The tag names now associated with the note.

        Raises:
            ConstraintViolationError: If the note does not exist.
        """
        tag_names = extract_tags(body)

        with self._transaction("sync_note_tags") as session:
            session.execute(delete(note_tags).where(note_tags.c.note_id == note_id))
            for tag_name in tag_names:
                # INSERT OR IGNORE keeps the existing row (and id) for known names
                session.execute(
                    text("INSERT OR IGNORE INTO tags (id, name) VALUES (:id, :name)"),
                    {"id": generate_id(), "name": tag_name},
                )
                tag_id = session.scalar(select(DBTag.id).where(DBTag.name == tag_name))
                session.execute(
                    insert(note_tags).values(note_id=note_id, tag_id=tag_id)
                )

        logger.debug(f"Synced {len(tag_names)} tags for note {note_id}")
        return tag_names

    def get_all_tags(self) -> List[TagCount]:
        """Get all tags with their usage counts.

        Ordered by count descending, then name ascending. Orphaned tags
        are included with a count of zero.
        """
        usage = func.count(note_tags.c.note_id).label("count")
        with self.session_factory() as session:
            result = session.execute(
                select(DBTag.name, usage)
                .select_from(DBTag)
                .outerjoin(note_tags, DBTag.id == note_tags.c.tag_id)
                .group_by(DBTag.id)
                .order_by(usage.desc(), DBTag.name.asc())
            ).all()

            return [TagCount(name=name, count=count) for name, count in result]

    def get_notes_by_tag(self, tag_name: str) -> List[Note]:
        """Get the notes carrying a tag, most recently updated first.

        The tag name is matched case-insensitively.
        """
        with self.session_factory() as session:
            db_notes = session.scalars(
                select(DBNote)
                .join(note_tags, DBNote.id == note_tags.c.note_id)
                .join(DBTag, note_tags.c.tag_id == DBTag.id)
                .where(DBTag.name == tag_name.lower())
                .order_by(DBNote.updated_at.desc())
            ).all()

            return [NoteRepository._db_note_to_model(n) for n in db_notes]

    def get_tags_for_note(self, note_id: str) -> List[str]:
        """Get the tag names associated with a note, alphabetically."""
        with self.session_factory() as session:
            result = session.execute(
                select(DBTag.name)
                .select_from(DBTag)
                .join(note_tags, DBTag.id == note_tags.c.tag_id)
                .where(note_tags.c.note_id == note_id)
                .order_by(DBTag.name)
            ).all()

            return [row[0] for row in result]

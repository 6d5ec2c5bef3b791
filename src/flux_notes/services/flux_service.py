"""Service layer coordinating the Flux Notes stores."""

import logging
from typing import Dict, List, Optional

from sqlalchemy.engine import Engine

from flux_notes.exceptions import ErrorCode, ValidationError
from flux_notes.models.db_models import get_session_factory, rebuild_fts_index
from flux_notes.models.schema import EntityType, FocusSession, Link, Note
from flux_notes.storage.focus_repository import FocusRepository
from flux_notes.storage.link_repository import LinkRepository
from flux_notes.storage.note_repository import NoteRepository
from flux_notes.storage.tag_repository import TagRepository
from flux_notes.storage.todo_repository import TodoRepository

logger = logging.getLogger(__name__)


class FluxService:
    """Service for notes, todos, tags, links and focus sessions.

    Each store is exposed as an attribute (``notes``, ``todos``, ``tags``,
    ``links``, ``focus``) for plain reads and writes. The methods here
    cover the operations that span several stores: keeping tags and
    wiki-links in step with note bodies, and removing links before the
    entities they point at.
    """

    def __init__(self, engine: Engine):
        """Initialize the service.

        Args:
            engine: Engine returned by init_db. Every store shares it.
        """
        self.engine = engine
        session_factory = get_session_factory(engine)
        self.notes = NoteRepository(session_factory)
        self.todos = TodoRepository(session_factory)
        self.tags = TagRepository(session_factory)
        self.links = LinkRepository(session_factory)
        self.focus = FocusRepository(session_factory)

    # ========== Notes ==========

    def create_note(self, title: str, body: str = "") -> Note:
        """Create a note and index the tags found in its body.

        Wiki-links in the body are not resolved on creation; they are
        picked up the next time the body is updated.
        """
        note = self.notes.create(title, body)
        self.tags.sync_note_tags(note.id, note.body)
        return note

    def update_note(
        self,
        note_id: str,
        title: Optional[str] = None,
        body: Optional[str] = None,
    ) -> Optional[Note]:
        """Update a note.

        When a body is supplied the note's tags are resynced and its
        ``[[Title]]`` references are turned into links. Title-only
        updates leave both untouched.

        Returns:
            The updated note, or None if it does not exist.
        """
        note = self.notes.update(note_id, title=title, body=body)
        if note is None:
            return None

        if body is not None:
            self.tags.sync_note_tags(note.id, note.body)
            self.links.create_links_from_content(note.id, note.body)
        return note

    def delete_note(self, note_id: str) -> bool:
        """Delete a note along with every link touching it."""
        self.links.delete_links_for_entity(EntityType.NOTE, note_id)
        return self.notes.delete(note_id)

    def get_note_links(self, note_id: str) -> List[Link]:
        return self.links.get_all_links(EntityType.NOTE, note_id)

    # ========== Todos ==========

    def delete_todo(self, todo_id: str) -> bool:
        """Delete a todo, its subtasks, and every link touching any of them."""
        subtree = self.todos.get_subtree_ids(todo_id)
        for subtree_id in subtree:
            self.links.delete_links_for_entity(EntityType.TODO, subtree_id)
        return self.todos.delete(todo_id)

    # ========== Focus ==========

    def start_focus_session(
        self, duration: int, todo_id: Optional[str] = None
    ) -> FocusSession:
        """Start a focus session unless one is already running.

        Raises:
            ValidationError: If a session is running, or the duration is
                negative.
        """
        running = self.focus.get_running_session()
        if running is not None:
            raise ValidationError(
                f"Focus session {running.id} is already running",
                field="status",
                value=running.status.value,
                code=ErrorCode.VALIDATION_FAILED,
            )
        return self.focus.start_session(duration, todo_id)

    # ========== Maintenance ==========

    def rebuild_search_index(self) -> Dict[str, int]:
        """Rebuild the full-text indexes from the notes and todos tables."""
        counts = rebuild_fts_index(self.engine)
        logger.info(f"Rebuilt search index: {counts}")
        return counts

    def close(self) -> None:
        """Release the database connections."""
        self.engine.dispose()

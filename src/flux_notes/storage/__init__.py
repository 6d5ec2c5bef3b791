"""Storage layer for Flux Notes."""

from flux_notes.storage.base import Repository
from flux_notes.storage.focus_repository import FocusRepository
from flux_notes.storage.link_repository import LinkRepository
from flux_notes.storage.note_repository import NoteRepository
from flux_notes.storage.tag_repository import TagRepository
from flux_notes.storage.todo_repository import TodoRepository

__all__ = [
    "Repository",
    "NoteRepository",
    "TodoRepository",
    "TagRepository",
    "LinkRepository",
    "FocusRepository",
]

"""Common test fixtures for Flux Notes."""

import tempfile
from pathlib import Path

import pytest

from flux_notes.config import config
from flux_notes.models.db_models import get_session_factory, init_db
from flux_notes.services.flux_service import FluxService
from flux_notes.storage.focus_repository import FocusRepository
from flux_notes.storage.link_repository import LinkRepository
from flux_notes.storage.note_repository import NoteRepository
from flux_notes.storage.tag_repository import TagRepository
from flux_notes.storage.todo_repository import TodoRepository


@pytest.fixture
def temp_dir():
    """Create a temporary directory for the database."""
    with tempfile.TemporaryDirectory() as db_dir:
        yield Path(db_dir)


@pytest.fixture
def test_config(temp_dir, monkeypatch):
    """Point the global config at a throwaway database (auto-restored)."""
    monkeypatch.setattr(config, "database_path", temp_dir / "test_flux_notes.db")
    yield config


@pytest.fixture
def engine(test_config):
    """Initialized engine on the temporary database."""
    engine = init_db()
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return get_session_factory(engine)


@pytest.fixture
def note_repository(session_factory):
    return NoteRepository(session_factory)


@pytest.fixture
def todo_repository(session_factory):
    return TodoRepository(session_factory)


@pytest.fixture
def tag_repository(session_factory):
    return TagRepository(session_factory)


@pytest.fixture
def link_repository(session_factory):
    return LinkRepository(session_factory)


@pytest.fixture
def focus_repository(session_factory):
    return FocusRepository(session_factory)


@pytest.fixture
def flux_service(engine):
    """FluxService sharing the test engine."""
    return FluxService(engine)

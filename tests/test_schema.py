"""Tests for schema setup: pragmas, idempotent init, FTS triggers and CHECK constraints."""
import uuid

import pytest
from sqlalchemy import inspect, text
from sqlalchemy.exc import IntegrityError

from flux_notes.exceptions import ConstraintViolationError, ErrorCode, StorageError
from flux_notes.models.db_models import init_db, rebuild_fts_index
from flux_notes.models.schema import generate_id


class TestConnectionSettings:
    """Tests for the per-connection SQLite settings."""

    def test_wal_mode_enabled(self, session_factory):
        """Verify WAL mode is enabled on database connections."""
        with session_factory() as session:
            result = session.execute(text("PRAGMA journal_mode")).fetchone()
            assert result[0].lower() == "wal"

    def test_synchronous_normal(self, session_factory):
        with session_factory() as session:
            result = session.execute(text("PRAGMA synchronous")).fetchone()
            # NORMAL = 1
            assert result[0] == 1

    def test_foreign_keys_enforced(self, session_factory):
        with session_factory() as session:
            assert session.execute(text("PRAGMA foreign_keys")).scalar() == 1

    def test_busy_timeout_from_config(self, session_factory, test_config):
        with session_factory() as session:
            timeout = session.execute(text("PRAGMA busy_timeout")).scalar()
            assert timeout == test_config.sqlite_busy_timeout_ms


class TestInitDb:
    """Tests for init_db."""

    def test_creates_all_tables(self, engine):
        tables = set(inspect(engine).get_table_names())
        assert {
            "notes", "todos", "tags", "note_tags", "links", "focus_sessions",
            "notes_fts", "todos_fts",
        } <= tables

    def test_init_is_idempotent(self, engine, note_repository, test_config):
        """Running init_db again keeps existing data."""
        note = note_repository.create("Survivor", "still here")

        second = init_db()
        try:
            with second.connect() as conn:
                count = conn.execute(text("SELECT COUNT(*) FROM notes")).scalar()
                triggers = conn.execute(
                    text("SELECT COUNT(*) FROM sqlite_master WHERE type = 'trigger'")
                ).scalar()
        finally:
            second.dispose()

        assert count == 1
        # insert/delete/update triggers for notes and todos
        assert triggers == 6
        assert note_repository.get(note.id) is not None

    def test_unopenable_location_raises_storage_error(self, temp_dir):
        """A database path under a regular file cannot be created."""
        blocker = temp_dir / "not-a-directory"
        blocker.write_text("x")

        with pytest.raises(StorageError) as exc_info:
            init_db(blocker / "nested" / "flux.db")
        assert exc_info.value.code == ErrorCode.STORAGE_CONNECTION_FAILED

    def test_corrupt_file_raises_storage_error(self, temp_dir):
        bad = temp_dir / "garbage.db"
        bad.write_bytes(b"this is definitely not a sqlite database" * 100)

        with pytest.raises(StorageError):
            init_db(bad)


class TestFtsTriggers:
    """The FTS index follows inserts, updates and deletes of its source table."""

    @staticmethod
    def _fts_count(session_factory, term):
        with session_factory() as session:
            return session.execute(
                text("SELECT COUNT(*) FROM notes_fts WHERE notes_fts MATCH :q"),
                {"q": term},
            ).scalar()

    def test_insert_update_delete_keep_index_in_sync(self, note_repository, session_factory):
        note = note_repository.create("Quarterly planning", "budget review")
        assert self._fts_count(session_factory, "budget") == 1

        note_repository.update(note.id, body="hiring review")
        assert self._fts_count(session_factory, "budget") == 0
        assert self._fts_count(session_factory, "hiring") == 1

        note_repository.delete(note.id)
        assert self._fts_count(session_factory, "hiring") == 0

    def test_rebuild_reports_row_counts(self, engine, note_repository, todo_repository):
        note_repository.create("One")
        note_repository.create("Two")
        todo_repository.create("Task")

        assert rebuild_fts_index(engine) == {"notes": 2, "todos": 1}
        assert [n.title for n in note_repository.search("one")] == ["One"]


class TestCheckConstraints:
    """Values outside the closed enumerations are rejected by the database."""

    def test_invalid_todo_status(self, todo_repository):
        with pytest.raises(ConstraintViolationError) as exc_info:
            todo_repository.create("Bad status", status="blocked")
        assert exc_info.value.code == ErrorCode.CONSTRAINT_VIOLATION

    def test_invalid_todo_priority(self, todo_repository):
        with pytest.raises(ConstraintViolationError):
            todo_repository.create("Bad priority", priority="urgent")

    def test_invalid_link_type(self, link_repository):
        with pytest.raises(ConstraintViolationError):
            link_repository.create("note", generate_id(), "note", generate_id(), "blocks")

    def test_invalid_entity_type(self, link_repository):
        with pytest.raises(ConstraintViolationError):
            link_repository.create("project", generate_id(), "note", generate_id())

    def test_invalid_focus_status(self, session_factory):
        with session_factory() as session:
            with pytest.raises(IntegrityError) as exc_info:
                session.execute(
                    text(
                        "INSERT INTO focus_sessions "
                        "(id, start_time, duration, actual_duration, status, created_at) "
                        "VALUES (:id, '2024-01-01 10:00:00', 60, 0, 'paused', "
                        "'2024-01-01 10:00:00')"
                    ),
                    {"id": str(uuid.uuid4())},
                )
            assert "CHECK constraint failed" in str(exc_info.value)


class TestIdentifiers:
    def test_ids_are_unique_uuid_strings(self):
        ids = {generate_id() for _ in range(1000)}
        assert len(ids) == 1000
        for value in list(ids)[:10]:
            assert str(uuid.UUID(value)) == value

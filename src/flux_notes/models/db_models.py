"""SQLAlchemy database models and schema setup for Flux Notes."""
import logging
import sqlite3
from enum import Enum
from pathlib import Path
from typing import Dict, Optional, Type

from sqlalchemy import (CheckConstraint, Column, DateTime, ForeignKey, Index,
                        Integer, String, Table, Text, create_engine, event,
                        text)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DatabaseError, OperationalError
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import QueuePool

from flux_notes.config import config
from flux_notes.exceptions import ErrorCode, StorageError
from flux_notes.models.schema import (EntityType, FocusStatus, LinkType,
                                      TodoPriority, TodoStatus)

logger = logging.getLogger(__name__)

# Create base class for SQLAlchemy models
Base = declarative_base()

ID_LENGTH = 36


def _in_check(column: str, enum_cls: Type[Enum], name: str) -> CheckConstraint:
    """CHECK constraint restricting a column to the values of a closed enum."""
    values = ", ".join(f"'{member.value}'" for member in enum_cls)
    return CheckConstraint(f"{column} IN ({values})", name=name)


# Association table for tags and notes
note_tags = Table(
    "note_tags",
    Base.metadata,
    Column(
        "note_id", String(ID_LENGTH),
        ForeignKey("notes.id", ondelete="CASCADE"), primary_key=True,
    ),
    Column(
        "tag_id", String(ID_LENGTH),
        ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True,
    ),
)


class DBNote(Base):
    """Database model for a note."""
    __tablename__ = "notes"
    id = Column(String(ID_LENGTH), primary_key=True)
    title = Column(Text, nullable=False)
    body = Column(Text, nullable=False, default="", server_default="")
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)

    __table_args__ = (
        Index("idx_notes_updated", "updated_at"),
        Index("idx_notes_created", "created_at"),
    )

    def __repr__(self) -> str:
        """Return string representation of note."""
        return f"<Note(id='{self.id}', title='{self.title}')>"


class DBTodo(Base):
    """Database model for a todo."""
    __tablename__ = "todos"
    id = Column(String(ID_LENGTH), primary_key=True)
    title = Column(Text, nullable=False)
    description = Column(Text, nullable=False, default="", server_default="")
    status = Column(
        String(20), nullable=False,
        default=TodoStatus.PENDING.value, server_default=TodoStatus.PENDING.value,
    )
    priority = Column(
        String(20), nullable=False,
        default=TodoPriority.MEDIUM.value, server_default=TodoPriority.MEDIUM.value,
    )
    due_date = Column(DateTime, nullable=True)
    note_id = Column(
        String(ID_LENGTH), ForeignKey("notes.id", ondelete="SET NULL"), nullable=True
    )
    parent_id = Column(
        String(ID_LENGTH), ForeignKey("todos.id", ondelete="CASCADE"), nullable=True
    )
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)

    __table_args__ = (
        _in_check("status", TodoStatus, "ck_todos_status"),
        _in_check("priority", TodoPriority, "ck_todos_priority"),
        Index("idx_todos_status", "status"),
        Index("idx_todos_priority", "priority"),
        Index("idx_todos_due_date", "due_date"),
        Index("idx_todos_note_id", "note_id"),
        Index("idx_todos_parent_id", "parent_id"),
    )

    def __repr__(self) -> str:
        """Return string representation of todo."""
        return f"<Todo(id='{self.id}', title='{self.title}', status='{self.status}')>"


class DBTag(Base):
    """Database model for a tag."""
    __tablename__ = "tags"
    id = Column(String(ID_LENGTH), primary_key=True)
    name = Column(String(255), unique=True, nullable=False)

    def __repr__(self) -> str:
        """Return string representation of tag."""
        return f"<Tag(id='{self.id}', name='{self.name}')>"


class DBLink(Base):
    """Database model for a link between two entities.

    Endpoints are (type, id) pairs with no foreign keys: a link may point
    at a note or a todo, and cleanup on entity deletion is explicit.
    """
    __tablename__ = "links"
    id = Column(String(ID_LENGTH), primary_key=True)
    source_type = Column(String(10), nullable=False)
    source_id = Column(String(ID_LENGTH), nullable=False)
    target_type = Column(String(10), nullable=False)
    target_id = Column(String(ID_LENGTH), nullable=False)
    link_type = Column(
        String(20), nullable=False,
        default=LinkType.RELATED.value, server_default=LinkType.RELATED.value,
    )
    created_at = Column(DateTime, nullable=False)

    __table_args__ = (
        _in_check("source_type", EntityType, "ck_links_source_type"),
        _in_check("target_type", EntityType, "ck_links_target_type"),
        _in_check("link_type", LinkType, "ck_links_link_type"),
        Index("idx_links_source", "source_type", "source_id"),
        Index("idx_links_target", "target_type", "target_id"),
    )

    def __repr__(self) -> str:
        """Return string representation of link."""
        return (
            f"<Link(id='{self.id}', source='{self.source_type}:{self.source_id}', "
            f"target='{self.target_type}:{self.target_id}', type='{self.link_type}')>"
        )


class DBFocusSession(Base):
    """Database model for a focus session."""
    __tablename__ = "focus_sessions"
    id = Column(String(ID_LENGTH), primary_key=True)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=True)
    duration = Column(Integer, nullable=False)
    actual_duration = Column(Integer, nullable=False, default=0, server_default="0")
    status = Column(
        String(20), nullable=False,
        default=FocusStatus.RUNNING.value, server_default=FocusStatus.RUNNING.value,
    )
    todo_id = Column(
        String(ID_LENGTH), ForeignKey("todos.id", ondelete="SET NULL"), nullable=True
    )
    created_at = Column(DateTime, nullable=False)

    __table_args__ = (
        _in_check("status", FocusStatus, "ck_focus_sessions_status"),
        Index("idx_focus_sessions_status", "status"),
        Index("idx_focus_sessions_start", "start_time"),
    )

    def __repr__(self) -> str:
        """Return string representation of focus session."""
        return f"<FocusSession(id='{self.id}', status='{self.status}')>"


# FTS5 mirrors: source table -> indexed columns
FTS_TABLES: Dict[str, tuple] = {
    "notes": ("title", "body"),
    "todos": ("title", "description"),
}


def init_db(database_path: Optional[Path] = None) -> Engine:
    """Initialize the database with hardened configuration.

    Applies SQLite settings on every connection:
    - WAL (Write-Ahead Logging) so readers are not blocked by a writer
    - NORMAL synchronous mode (good balance of safety vs speed)
    - foreign_keys=ON so SET NULL / CASCADE rules are enforced
    - busy_timeout so a second writer waits instead of failing

    Safe to call on every startup: all objects are created only if absent.

    Raises:
        StorageError: If the database location cannot be created or opened.
    """
    db_path = config.get_database_path(database_path)
    try:
        db_url = config.get_db_url(database_path)
    except OSError as e:
        raise StorageError(
            "Cannot create database directory",
            operation="init_db",
            path=str(db_path),
            code=ErrorCode.STORAGE_CONNECTION_FAILED,
            original_error=e,
        ) from e

    # SQLite is single-writer, so a small pool is ideal
    engine = create_engine(
        db_url,
        poolclass=QueuePool,
        pool_size=5,
        max_overflow=10,
        pool_timeout=30,
        pool_pre_ping=True,
    )

    cache_size_kb = config.sqlite_cache_size_kb
    busy_timeout_ms = config.sqlite_busy_timeout_ms

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute(f"PRAGMA cache_size=-{int(cache_size_kb)}")
        cursor.execute(f"PRAGMA busy_timeout={int(busy_timeout_ms)}")
        cursor.close()

    try:
        Base.metadata.create_all(engine)
        init_fts5(engine)
    except (OperationalError, DatabaseError, sqlite3.DatabaseError) as e:
        engine.dispose()
        raise StorageError(
            "Failed to open or initialize database",
            operation="init_db",
            path=str(db_path),
            code=ErrorCode.STORAGE_CONNECTION_FAILED,
            original_error=e,
        ) from e

    logger.info(f"Database initialized at {db_path}")
    return engine


def init_fts5(engine: Engine) -> None:
    """Initialize the FTS5 full-text search tables and their triggers.

    Each FTS table is an external-content index over its source table,
    keyed by rowid. Triggers keep it in sync: insert indexes the new row,
    delete retracts the old row, update retracts the old text before
    indexing the new text.
    """
    with engine.connect() as conn:
        for table, columns in FTS_TABLES.items():
            fts = f"{table}_fts"
            cols = ", ".join(columns)
            new_cols = ", ".join(f"NEW.{c}" for c in columns)
            old_cols = ", ".join(f"OLD.{c}" for c in columns)

            conn.execute(text(f"""
                CREATE VIRTUAL TABLE IF NOT EXISTS {fts} USING fts5(
                    {cols},
                    content='{table}',
                    content_rowid='rowid',
                    tokenize='porter unicode61'
                )
            """))

            # Trigger for INSERT - add to FTS
            conn.execute(text(f"""
                CREATE TRIGGER IF NOT EXISTS {table}_ai AFTER INSERT ON {table} BEGIN
                    INSERT INTO {fts}(rowid, {cols}) VALUES (NEW.rowid, {new_cols});
                END
            """))

            # Trigger for DELETE - remove from FTS
            conn.execute(text(f"""
                CREATE TRIGGER IF NOT EXISTS {table}_ad AFTER DELETE ON {table} BEGIN
                    INSERT INTO {fts}({fts}, rowid, {cols})
                    VALUES ('delete', OLD.rowid, {old_cols});
                END
            """))

            # Trigger for UPDATE - retract old text, then index new text
            conn.execute(text(f"""
                CREATE TRIGGER IF NOT EXISTS {table}_au AFTER UPDATE ON {table} BEGIN
                    INSERT INTO {fts}({fts}, rowid, {cols})
                    VALUES ('delete', OLD.rowid, {old_cols});
                    INSERT INTO {fts}(rowid, {cols}) VALUES (NEW.rowid, {new_cols});
                END
            """))

        conn.commit()


def rebuild_fts_index(engine: Engine) -> Dict[str, int]:
    """Rebuild both FTS5 indexes from their source tables.

    Useful when an index gets out of sync (e.g. rows written with
    triggers disabled).

    Returns:
        Number of rows indexed, per source table.
    """
    counts: Dict[str, int] = {}
    with engine.connect() as conn:
        for table in FTS_TABLES:
            fts = f"{table}_fts"
            conn.execute(text(f"INSERT INTO {fts}({fts}) VALUES('rebuild')"))
            counts[table] = conn.execute(
                text(f"SELECT COUNT(*) FROM {table}")
            ).scalar() or 0
        conn.commit()
    return counts


def get_session_factory(engine: Engine) -> sessionmaker:
    """Get a session factory bound to the one shared engine."""
    return sessionmaker(bind=engine, expire_on_commit=False)

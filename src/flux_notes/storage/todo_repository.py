"""Repository for todo storage and retrieval."""
import datetime
import logging
from enum import Enum
from typing import Any, List, Optional, Union

from sqlalchemy import case, delete, func, select, update
from sqlalchemy.orm import Session, sessionmaker

from flux_notes.exceptions import ErrorCode, TodoValidationError
from flux_notes.models.db_models import FTS_TABLES, DBTodo
from flux_notes.models.schema import (Todo, TodoFilter, TodoPriority,
                                      TodoStats, TodoStatus,
                                      ensure_timezone_aware, generate_id,
                                      to_utc, utc_now)
from flux_notes.storage.base import Repository
from flux_notes.storage.fts_index import FtsIndex
from flux_notes.utils import local_midnight

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = frozenset(
    {"title", "description", "status", "priority", "due_date", "note_id", "parent_id"}
)

# Sort ranks: lower sorts first
STATUS_RANK = case(
    (DBTodo.status == TodoStatus.IN_PROGRESS.value, 0),
    (DBTodo.status == TodoStatus.PENDING.value, 1),
    else_=2,
)
PRIORITY_RANK = case(
    (DBTodo.priority == TodoPriority.HIGH.value, 0),
    (DBTodo.priority == TodoPriority.MEDIUM.value, 1),
    else_=2,
)


def _enum_value(value: Union[Enum, str]) -> str:
    """Pass enum members as their value and anything else through as given.

    Strings are deliberately not checked here: the CHECK constraints
    reject values outside the enumeration.
    """
    return value.value if isinstance(value, Enum) else value


def _validate_title(title: Optional[str]) -> str:
    if title is None or not title.strip():
        raise TodoValidationError(
            "Todo title is required",
            field="title",
            code=ErrorCode.TODO_TITLE_REQUIRED,
        )
    return title


class TodoRepository(Repository):
    """Repository for todos and their subtask trees."""

    def __init__(self, session_factory: sessionmaker):
        super().__init__(session_factory)
        self._fts = FtsIndex(session_factory, DBTodo, FTS_TABLES["todos"])

    @staticmethod
    def _db_todo_to_model(db_todo: DBTodo) -> Todo:
        """Convert a database row to a Todo."""
        return Todo(
            id=db_todo.id,
            title=db_todo.title,
            description=db_todo.description or "",
            status=TodoStatus(db_todo.status),
            priority=TodoPriority(db_todo.priority),
            due_date=ensure_timezone_aware(db_todo.due_date),
            note_id=db_todo.note_id,
            parent_id=db_todo.parent_id,
            created_at=ensure_timezone_aware(db_todo.created_at),
            updated_at=ensure_timezone_aware(db_todo.updated_at),
        )

    def create(
        self,
        title: str,
        description: str = "",
        status: Union[TodoStatus, str] = TodoStatus.PENDING,
        priority: Union[TodoPriority, str] = TodoPriority.MEDIUM,
        due_date: Optional[datetime.datetime] = None,
        note_id: Optional[str] = None,
        parent_id: Optional[str] = None,
    ) -> Todo:
        """Create a new todo.

        Raises:
            TodoValidationError: If the title is empty.
            ConstraintViolationError: For a status or priority outside the
                enumeration, or a note_id/parent_id that does not exist.
        """
        _validate_title(title)
        now = utc_now()
        db_todo = DBTodo(
            id=generate_id(),
            title=title,
            description=description or "",
            status=_enum_value(status),
            priority=_enum_value(priority),
            due_date=to_utc(due_date),
            note_id=note_id,
            parent_id=parent_id,
            created_at=now,
            updated_at=now,
        )

        with self._transaction("create_todo") as session:
            session.add(db_todo)
            session.flush()
            todo = self._db_todo_to_model(db_todo)

        logger.debug(f"Created todo {todo.id}")
        return todo

    def get(self, todo_id: str) -> Optional[Todo]:
        """Get a todo by ID, or None if it does not exist."""
        with self.session_factory() as session:
            db_todo = session.get(DBTodo, todo_id)
            return self._db_todo_to_model(db_todo) if db_todo else None

    @staticmethod
    def _apply_filter(query: Any, todo_filter: TodoFilter) -> Any:
        """Add WHERE clauses for each predicate present in the filter."""
        statuses = todo_filter.status_values()
        if statuses:
            query = query.where(DBTodo.status.in_(statuses))

        priorities = todo_filter.priority_values()
        if priorities:
            query = query.where(DBTodo.priority.in_(priorities))

        if todo_filter.note_id is not None:
            query = query.where(DBTodo.note_id == todo_filter.note_id)

        if todo_filter.filters_parent:
            if todo_filter.parent_id is None:
                query = query.where(DBTodo.parent_id.is_(None))
            else:
                query = query.where(DBTodo.parent_id == todo_filter.parent_id)

        if todo_filter.has_due_date is not None:
            if todo_filter.has_due_date:
                query = query.where(DBTodo.due_date.is_not(None))
            else:
                query = query.where(DBTodo.due_date.is_(None))

        now = utc_now()
        if todo_filter.overdue:
            query = query.where(
                DBTodo.due_date < now,
                DBTodo.status != TodoStatus.COMPLETED.value,
            )

        if todo_filter.due_today:
            start_of_day = local_midnight(now)
            end_of_day = (
                start_of_day
                + datetime.timedelta(days=1)
                - datetime.timedelta(milliseconds=1)
            )
            query = query.where(
                DBTodo.due_date >= start_of_day, DBTodo.due_date <= end_of_day
            )

        if todo_filter.due_soon:
            soon = now + datetime.timedelta(days=todo_filter.due_soon)
            query = query.where(DBTodo.due_date > now, DBTodo.due_date <= soon)

        return query

    def list(self, todo_filter: Optional[TodoFilter] = None) -> List[Todo]:
        """List todos matching every predicate of the filter.

        Ordered by status (in progress, pending, completed), then priority
        (high first), then due date with undated todos last, then newest
        first.
        """
        query = select(DBTodo)
        if todo_filter is not None:
            query = self._apply_filter(query, todo_filter)
        query = query.order_by(
            STATUS_RANK,
            PRIORITY_RANK,
            DBTodo.due_date.asc().nulls_last(),
            DBTodo.created_at.desc(),
        )

        with self.session_factory() as session:
            return [self._db_todo_to_model(t) for t in session.scalars(query).all()]

    def update(self, todo_id: str, **changes: Any) -> Optional[Todo]:
        """Update the provided fields of a todo.

        A keyword that is present counts as provided, so ``due_date=None``
        clears the due date while omitting it leaves the date alone.
        Without any keyword the current todo is returned and updated_at
        is not bumped.

        Returns:
            The updated todo, or None if it does not exist.

        Raises:
            TodoValidationError: For unknown fields or an empty title.
            ConstraintViolationError: For values the schema rejects.
        """
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise TodoValidationError(
                f"Unknown todo field(s): {', '.join(sorted(unknown))}",
                field=sorted(unknown)[0],
                code=ErrorCode.INVALID_FIELD,
            )
        if not changes:
            return self.get(todo_id)

        values = dict(changes)
        if "title" in values:
            _validate_title(values["title"])
        if "description" in values:
            values["description"] = values["description"] or ""
        for key in ("status", "priority"):
            if key in values:
                values[key] = _enum_value(values[key])
        if "due_date" in values:
            values["due_date"] = to_utc(values["due_date"])
        values["updated_at"] = utc_now()

        with self._transaction("update_todo") as session:
            result = session.execute(
                update(DBTodo).where(DBTodo.id == todo_id).values(**values)
            )
            if result.rowcount == 0:
                return None

        return self.get(todo_id)

    @staticmethod
    def _collect_subtree(session: Session, todo_id: str) -> List[str]:
        """Breadth-first walk of the parent_id adjacency, root included."""
        subtree = [todo_id]
        frontier = [todo_id]
        while frontier:
            children = session.scalars(
                select(DBTodo.id).where(DBTodo.parent_id.in_(frontier))
            ).all()
            frontier = [c for c in children if c not in subtree]
            subtree.extend(frontier)
        return subtree

    def get_subtree_ids(self, todo_id: str) -> List[str]:
        """IDs of a todo and all of its descendants (empty if absent)."""
        with self.session_factory() as session:
            if session.get(DBTodo, todo_id) is None:
                return []
            return self._collect_subtree(session, todo_id)

    def delete(self, todo_id: str) -> bool:
        """Delete a todo together with its whole subtask subtree.

        Returns:
            False if the todo did not exist.
        """
        with self._transaction("delete_todo") as session:
            if session.get(DBTodo, todo_id) is None:
                return False
            subtree = self._collect_subtree(session, todo_id)
            session.execute(delete(DBTodo).where(DBTodo.id.in_(subtree)))

        logger.debug(f"Deleted todo {todo_id} and {len(subtree) - 1} subtasks")
        return True

    def get_subtasks(self, parent_id: str) -> List[Todo]:
        """Direct subtasks of a todo."""
        return self.list(TodoFilter(parent_id=parent_id))

    def get_todos_by_note(self, note_id: str) -> List[Todo]:
        """Todos attached to a note."""
        return self.list(TodoFilter(note_id=note_id))

    def search(self, query: str) -> List[Todo]:
        """Prefix full-text search over title and description, best match first."""
        return [self._db_todo_to_model(t) for t in self._fts.search(query)]

    def get_stats(self) -> TodoStats:
        """Count todos by status plus overdue ones, in a single query."""
        now = utc_now()

        def _count_where(condition):
            return func.coalesce(func.sum(case((condition, 1), else_=0)), 0)

        with self.session_factory() as session:
            row = session.execute(
                select(
                    func.count(DBTodo.id),
                    _count_where(DBTodo.status == TodoStatus.PENDING.value),
                    _count_where(DBTodo.status == TodoStatus.IN_PROGRESS.value),
                    _count_where(DBTodo.status == TodoStatus.COMPLETED.value),
                    _count_where(
                        (DBTodo.due_date < now)
                        & (DBTodo.status != TodoStatus.COMPLETED.value)
                    ),
                )
            ).one()

        return TodoStats(
            total=row[0],
            pending=row[1],
            in_progress=row[2],
            completed=row[3],
            overdue=row[4],
        )

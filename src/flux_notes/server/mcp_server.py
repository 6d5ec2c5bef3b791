"""MCP server implementation for Flux Notes."""

import atexit
import datetime
import json
import logging
import uuid
from enum import Enum
from typing import Any, Dict, List, Optional, Type

from mcp.server.fastmcp import FastMCP
from pydantic import BaseModel

from flux_notes.config import config
from flux_notes.exceptions import ErrorCode, FluxNotesError, ValidationError
from flux_notes.models.schema import TodoFilter, TodoPriority, TodoStatus
from flux_notes.observability import timed_operation
from flux_notes.services.flux_service import FluxService

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 500
MAX_BODY_LENGTH = 1_000_000  # 1 MB

SERVER_INSTRUCTIONS = (
    "Local notes, todos, links and focus sessions. Notes pick up #tags and "
    "@mentions from their body, and [[Title]] references become links when "
    "a note body is updated. Dates are ISO-8601 strings."
)


def _validate_input_lengths(
    title: Optional[str] = None, body: Optional[str] = None
) -> None:
    """Validate input string lengths at the MCP boundary."""
    if title and len(title) > MAX_TITLE_LENGTH:
        raise ValidationError(
            f"Title exceeds maximum length of {MAX_TITLE_LENGTH} characters",
            field="title",
        )
    if body and len(body) > MAX_BODY_LENGTH:
        raise ValidationError(
            f"Body exceeds maximum length of {MAX_BODY_LENGTH} characters",
            field="body",
        )


def _parse_datetime(value: str, field: str) -> datetime.datetime:
    """Parse an ISO-8601 date or datetime. A trailing Z means UTC."""
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.datetime.fromisoformat(text)
    except ValueError as e:
        raise ValidationError(
            f"Invalid {field}: {value!r} is not an ISO-8601 date",
            field=field,
            value=value,
            code=ErrorCode.INVALID_FIELD,
        ) from e


def _parse_enum_list(value: Optional[str], enum_cls: Type[Enum], field: str) -> List[Any]:
    """Parse a comma-separated list of enum values."""
    if not value:
        return []
    members = []
    for item in (v.strip().lower() for v in value.split(",")):
        if not item:
            continue
        try:
            members.append(enum_cls(item))
        except ValueError:
            valid = ", ".join(m.value for m in enum_cls)
            raise ValidationError(
                f"Invalid {field}: {item}. Valid values are: {valid}",
                field=field,
                value=item,
                code=ErrorCode.INVALID_FIELD,
            ) from None
    return members


def _to_json(value: Any) -> str:
    """Render models (or lists/dicts of them) as JSON text."""
    def _plain(item: Any) -> Any:
        if isinstance(item, BaseModel):
            return item.model_dump(mode="json")
        if isinstance(item, list):
            return [_plain(i) for i in item]
        if isinstance(item, dict):
            return {k: _plain(v) for k, v in item.items()}
        return item

    return json.dumps(_plain(value), indent=2, ensure_ascii=False)


class FluxNotesMcpServer:
    """MCP server for Flux Notes."""

    def __init__(self, engine):
        """Initialize the MCP server.

        Args:
            engine: Engine returned by init_db, shared by every store.
        """
        self.mcp = FastMCP(config.server_name, instructions=SERVER_INSTRUCTIONS)
        self.service = FluxService(engine)
        atexit.register(self._shutdown)
        self._register_note_tools()
        self._register_todo_tools()
        self._register_focus_tools()
        self._register_link_tools()
        logger.info("Flux Notes MCP server initialized")

    def _shutdown(self) -> None:
        """Clean up resources on server exit."""
        self.service.close()

    def format_error_response(self, error: Exception) -> str:
        """Format an error response in a consistent way.

        Domain errors are reported with their message; anything else is
        logged with its traceback and reported by reference id only.
        """
        error_id = uuid.uuid4().hex[:8]

        if isinstance(error, FluxNotesError):
            logger.error(
                f"[{error.code.name}] [{error_id}]: {error.message}",
                extra={"error_details": error.details},
            )
            return f"Error: {error.message}"
        elif isinstance(error, ValueError):
            logger.error(f"Validation error [{error_id}]: {error}")
            return f"Error: Invalid input (ref: {error_id})"
        else:
            logger.error(f"Unexpected error [{error_id}]: {error}", exc_info=True)
            return f"Error: An unexpected error occurred (ref: {error_id})"

    # =========================================================================
    # Notes and tags
    # =========================================================================

    def _register_note_tools(self) -> None:
        service = self.service

        @self.mcp.tool(name="flux_create_note")
        def flux_create_note(title: str, body: str = "") -> str:
            """Create a note. #tags and @mentions in the body are indexed.
            Args:
                title: The title of the note
                body: The note text (optional)
            """
            with timed_operation("flux_create_note", title=title[:30]) as op:
                try:
                    _validate_input_lengths(title=title, body=body)
                    note = service.create_note(title, body)
                    op["note_id"] = note.id
                    return _to_json(note)
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="flux_list_notes")
        def flux_list_notes() -> str:
            """List all notes, most recently updated first."""
            with timed_operation("flux_list_notes") as op:
                try:
                    notes = service.notes.list()
                    op["result_count"] = len(notes)
                    return _to_json(notes)
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="flux_get_note")
        def flux_get_note(identifier: str) -> str:
            """Retrieve a note by ID or, failing that, by title.
            Args:
                identifier: The ID or title of the note
            Returns:
                The note with its tags, links and attached todos.
            """
            with timed_operation("flux_get_note", identifier=identifier[:30]) as op:
                try:
                    note = service.notes.get(identifier) or service.notes.get_by_title(
                        identifier
                    )
                    if note is None:
                        op["found"] = False
                        return f"Note not found: {identifier}"
                    op["found"] = True
                    result: Dict[str, Any] = note.model_dump(mode="json")
                    result["tags"] = service.tags.get_tags_for_note(note.id)
                    result["links"] = _plain_list(service.get_note_links(note.id))
                    result["todos"] = _plain_list(service.todos.get_todos_by_note(note.id))
                    return json.dumps(result, indent=2, ensure_ascii=False)
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="flux_update_note")
        def flux_update_note(
            note_id: str, title: Optional[str] = None, body: Optional[str] = None
        ) -> str:
            """Update a note's title and/or body.
            Updating the body resyncs tags and links [[Title]] references.
            Args:
                note_id: The ID of the note
                title: New title (optional)
                body: New body (optional)
            """
            with timed_operation("flux_update_note", note_id=note_id) as op:
                try:
                    _validate_input_lengths(title=title, body=body)
                    note = service.update_note(note_id, title=title, body=body)
                    if note is None:
                        op["found"] = False
                        return f"Note not found: {note_id}"
                    op["found"] = True
                    return _to_json(note)
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="flux_delete_note")
        def flux_delete_note(note_id: str) -> str:
            """Delete a note and every link touching it.
            Args:
                note_id: The ID of the note
            """
            with timed_operation("flux_delete_note", note_id=note_id) as op:
                try:
                    deleted = service.delete_note(note_id)
                    op["deleted"] = deleted
                    if not deleted:
                        return f"Note not found: {note_id}"
                    return f"Note {note_id} deleted successfully"
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="flux_search_notes")
        def flux_search_notes(query: str) -> str:
            """Full-text search over note titles and bodies (prefix match).
            Args:
                query: Search text
            """
            with timed_operation("flux_search_notes", query=query[:30]) as op:
                try:
                    notes = service.notes.search(query)
                    op["result_count"] = len(notes)
                    return _to_json(notes)
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="flux_list_tags")
        def flux_list_tags() -> str:
            """List all tags with the number of notes using each."""
            with timed_operation("flux_list_tags") as op:
                try:
                    tags = service.tags.get_all_tags()
                    op["result_count"] = len(tags)
                    return _to_json(tags)
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="flux_notes_by_tag")
        def flux_notes_by_tag(tag: str) -> str:
            """List the notes carrying a tag.
            Args:
                tag: Tag name, with or without the leading # or @
            """
            with timed_operation("flux_notes_by_tag", tag=tag) as op:
                try:
                    notes = service.tags.get_notes_by_tag(tag.strip().lstrip("#@"))
                    op["result_count"] = len(notes)
                    return _to_json(notes)
                except Exception as e:
                    return self.format_error_response(e)

    # =========================================================================
    # Todos
    # =========================================================================

    def _register_todo_tools(self) -> None:
        service = self.service

        @self.mcp.tool(name="flux_create_todo")
        def flux_create_todo(
            title: str,
            description: str = "",
            status: str = "pending",
            priority: str = "medium",
            due_date: Optional[str] = None,
            note_id: Optional[str] = None,
            parent_id: Optional[str] = None,
        ) -> str:
            """Create a todo.
            Args:
                title: The title of the todo
                description: Longer description (optional)
                status: pending, in_progress or completed
                priority: low, medium or high
                due_date: ISO-8601 due date (optional)
                note_id: Note to attach the todo to (optional)
                parent_id: Parent todo, making this a subtask (optional)
            """
            with timed_operation("flux_create_todo", title=title[:30]) as op:
                try:
                    _validate_input_lengths(title=title, body=description)
                    todo = service.todos.create(
                        title=title,
                        description=description,
                        status=status,
                        priority=priority,
                        due_date=_parse_datetime(due_date, "due_date") if due_date else None,
                        note_id=note_id or None,
                        parent_id=parent_id or None,
                    )
                    op["todo_id"] = todo.id
                    return _to_json(todo)
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="flux_list_todos")
        def flux_list_todos(
            status: Optional[str] = None,
            priority: Optional[str] = None,
            note_id: Optional[str] = None,
            parent_id: Optional[str] = None,
            top_level_only: bool = False,
            has_due_date: Optional[bool] = None,
            overdue: bool = False,
            due_today: bool = False,
            due_soon_days: Optional[int] = None,
        ) -> str:
            """List todos matching all given filters.
            Ordered by status, priority, due date (undated last), newest first.
            Args:
                status: Comma-separated statuses (pending, in_progress, completed)
                priority: Comma-separated priorities (low, medium, high)
                note_id: Only todos attached to this note
                parent_id: Only subtasks of this todo
                top_level_only: Only todos without a parent
                has_due_date: Only todos with (true) or without (false) a due date
                overdue: Only unfinished todos past their due date
                due_today: Only todos due today (local time)
                due_soon_days: Only todos due within this many days
            """
            with timed_operation("flux_list_todos") as op:
                try:
                    filter_args: Dict[str, Any] = {
                        "status": _parse_enum_list(status, TodoStatus, "status") or None,
                        "priority": _parse_enum_list(priority, TodoPriority, "priority") or None,
                        "note_id": note_id or None,
                        "has_due_date": has_due_date,
                        "overdue": overdue,
                        "due_today": due_today,
                        "due_soon": due_soon_days,
                    }
                    if parent_id:
                        filter_args["parent_id"] = parent_id
                    elif top_level_only:
                        filter_args["parent_id"] = None
                    todos = service.todos.list(TodoFilter(**filter_args))
                    op["result_count"] = len(todos)
                    return _to_json(todos)
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="flux_get_todo")
        def flux_get_todo(todo_id: str) -> str:
            """Retrieve a todo with its direct subtasks.
            Args:
                todo_id: The ID of the todo
            """
            with timed_operation("flux_get_todo", todo_id=todo_id) as op:
                try:
                    todo = service.todos.get(todo_id)
                    if todo is None:
                        op["found"] = False
                        return f"Todo not found: {todo_id}"
                    op["found"] = True
                    result = todo.model_dump(mode="json")
                    result["subtasks"] = _plain_list(service.todos.get_subtasks(todo_id))
                    return json.dumps(result, indent=2, ensure_ascii=False)
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="flux_update_todo")
        def flux_update_todo(
            todo_id: str,
            title: Optional[str] = None,
            description: Optional[str] = None,
            status: Optional[str] = None,
            priority: Optional[str] = None,
            due_date: Optional[str] = None,
            note_id: Optional[str] = None,
            parent_id: Optional[str] = None,
        ) -> str:
            """Update a todo. Only the fields given are changed.
            Args:
                todo_id: The ID of the todo
                title: New title
                description: New description
                status: pending, in_progress or completed
                priority: low, medium or high
                due_date: ISO-8601 due date; an empty string clears it
                note_id: Note to attach to; an empty string detaches
                parent_id: New parent todo; an empty string makes it top-level
            """
            with timed_operation("flux_update_todo", todo_id=todo_id) as op:
                try:
                    _validate_input_lengths(title=title, body=description)
                    changes: Dict[str, Any] = {
                        key: value
                        for key, value in (
                            ("title", title),
                            ("description", description),
                            ("status", status),
                            ("priority", priority),
                        )
                        if value is not None
                    }
                    if due_date is not None:
                        changes["due_date"] = (
                            _parse_datetime(due_date, "due_date") if due_date.strip() else None
                        )
                    if note_id is not None:
                        changes["note_id"] = note_id or None
                    if parent_id is not None:
                        if parent_id == todo_id:
                            raise ValidationError(
                                "A todo cannot be its own parent",
                                field="parent_id",
                                value=parent_id,
                            )
                        changes["parent_id"] = parent_id or None

                    todo = service.todos.update(todo_id, **changes)
                    if todo is None:
                        op["found"] = False
                        return f"Todo not found: {todo_id}"
                    op["found"] = True
                    return _to_json(todo)
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="flux_delete_todo")
        def flux_delete_todo(todo_id: str) -> str:
            """Delete a todo together with all of its subtasks.
            Args:
                todo_id: The ID of the todo
            """
            with timed_operation("flux_delete_todo", todo_id=todo_id) as op:
                try:
                    deleted = service.delete_todo(todo_id)
                    op["deleted"] = deleted
                    if not deleted:
                        return f"Todo not found: {todo_id}"
                    return f"Todo {todo_id} and its subtasks deleted successfully"
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="flux_search_todos")
        def flux_search_todos(query: str) -> str:
            """Full-text search over todo titles and descriptions (prefix match).
            Args:
                query: Search text
            """
            with timed_operation("flux_search_todos", query=query[:30]) as op:
                try:
                    todos = service.todos.search(query)
                    op["result_count"] = len(todos)
                    return _to_json(todos)
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="flux_todo_stats")
        def flux_todo_stats() -> str:
            """Count todos by status, plus overdue ones."""
            with timed_operation("flux_todo_stats"):
                try:
                    return _to_json(service.todos.get_stats())
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="flux_get_subtasks")
        def flux_get_subtasks(parent_id: str) -> str:
            """List the direct subtasks of a todo.
            Args:
                parent_id: The ID of the parent todo
            """
            with timed_operation("flux_get_subtasks", parent_id=parent_id) as op:
                try:
                    todos = service.todos.get_subtasks(parent_id)
                    op["result_count"] = len(todos)
                    return _to_json(todos)
                except Exception as e:
                    return self.format_error_response(e)

    # =========================================================================
    # Focus sessions
    # =========================================================================

    def _register_focus_tools(self) -> None:
        service = self.service

        @self.mcp.tool(name="flux_start_focus")
        def flux_start_focus(duration: int, todo_id: Optional[str] = None) -> str:
            """Start a focus session. Fails if one is already running.
            Args:
                duration: Target length in seconds
                todo_id: Todo being worked on (optional)
            """
            with timed_operation("flux_start_focus", duration=duration) as op:
                try:
                    session = service.start_focus_session(duration, todo_id or None)
                    op["session_id"] = session.id
                    return _to_json(session)
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="flux_running_focus")
        def flux_running_focus() -> str:
            """Show the running focus session, if any."""
            with timed_operation("flux_running_focus") as op:
                try:
                    session = service.focus.get_running_session()
                    op["found"] = session is not None
                    if session is None:
                        return "No focus session is running"
                    return _to_json(session)
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="flux_update_focus")
        def flux_update_focus(session_id: str, actual_duration: int) -> str:
            """Record the focused seconds of a running session.
            Args:
                session_id: The ID of the session
                actual_duration: Seconds focused so far
            """
            with timed_operation("flux_update_focus", session_id=session_id) as op:
                try:
                    session = service.focus.update_session_duration(
                        session_id, actual_duration
                    )
                    op["found"] = session is not None
                    if session is None:
                        return f"Focus session not found: {session_id}"
                    return _to_json(session)
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="flux_complete_focus")
        def flux_complete_focus(session_id: str) -> str:
            """Complete a running focus session, timing it by wall clock.
            Args:
                session_id: The ID of the session
            """
            with timed_operation("flux_complete_focus", session_id=session_id) as op:
                try:
                    session = service.focus.complete_session(session_id)
                    op["found"] = session is not None
                    if session is None:
                        return f"Focus session not found: {session_id}"
                    return _to_json(session)
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="flux_cancel_focus")
        def flux_cancel_focus(session_id: str) -> str:
            """Cancel a running focus session.
            Args:
                session_id: The ID of the session
            """
            with timed_operation("flux_cancel_focus", session_id=session_id) as op:
                try:
                    session = service.focus.cancel_session(session_id)
                    op["found"] = session is not None
                    if session is None:
                        return f"Focus session not found: {session_id}"
                    return _to_json(session)
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="flux_focus_stats")
        def flux_focus_stats() -> str:
            """Focus totals, today/this-week focus time and day streaks."""
            with timed_operation("flux_focus_stats"):
                try:
                    return _to_json(service.focus.get_stats())
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="flux_list_focus_sessions")
        def flux_list_focus_sessions(limit: int = 100) -> str:
            """List focus sessions, newest first.
            Args:
                limit: Maximum number of sessions (default: 100)
            """
            with timed_operation("flux_list_focus_sessions", limit=limit) as op:
                try:
                    sessions = service.focus.list_sessions(limit)
                    op["result_count"] = len(sessions)
                    return _to_json(sessions)
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="flux_focus_sessions_for_todo")
        def flux_focus_sessions_for_todo(todo_id: str) -> str:
            """List the focus sessions spent on a todo.
            Args:
                todo_id: The ID of the todo
            """
            with timed_operation("flux_focus_sessions_for_todo", todo_id=todo_id) as op:
                try:
                    sessions = service.focus.get_sessions_for_todo(todo_id)
                    op["result_count"] = len(sessions)
                    return _to_json(sessions)
                except Exception as e:
                    return self.format_error_response(e)

    # =========================================================================
    # Links and graph
    # =========================================================================

    def _register_link_tools(self) -> None:
        service = self.service

        @self.mcp.tool(name="flux_create_link")
        def flux_create_link(
            source_type: str,
            source_id: str,
            target_type: str,
            target_id: str,
            link_type: str = "related",
        ) -> str:
            """Link two entities. Returns the existing link if the pair is
            already linked in either direction.
            Args:
                source_type: note or todo
                source_id: ID of the source entity
                target_type: note or todo
                target_id: ID of the target entity
                link_type: related, contains or references
            """
            with timed_operation(
                "flux_create_link", source_id=source_id, target_id=target_id
            ) as op:
                try:
                    link = service.links.create(
                        source_type.lower(),
                        source_id,
                        target_type.lower(),
                        target_id,
                        link_type.lower(),
                    )
                    op["link_id"] = link.id
                    return _to_json(link)
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="flux_links_from")
        def flux_links_from(entity_type: str, entity_id: str) -> str:
            """List links going out of an entity.
            Args:
                entity_type: note or todo
                entity_id: ID of the entity
            """
            with timed_operation("flux_links_from", entity_id=entity_id) as op:
                try:
                    links = service.links.get_links_from(entity_type.lower(), entity_id)
                    op["result_count"] = len(links)
                    return _to_json(links)
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="flux_backlinks")
        def flux_backlinks(entity_type: str, entity_id: str) -> str:
            """List links pointing at an entity.
            Args:
                entity_type: note or todo
                entity_id: ID of the entity
            """
            with timed_operation("flux_backlinks", entity_id=entity_id) as op:
                try:
                    links = service.links.get_backlinks(entity_type.lower(), entity_id)
                    op["result_count"] = len(links)
                    return _to_json(links)
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="flux_all_links")
        def flux_all_links(entity_type: str, entity_id: str) -> str:
            """List links touching an entity in either direction.
            Args:
                entity_type: note or todo
                entity_id: ID of the entity
            """
            with timed_operation("flux_all_links", entity_id=entity_id) as op:
                try:
                    links = service.links.get_all_links(entity_type.lower(), entity_id)
                    op["result_count"] = len(links)
                    return _to_json(links)
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="flux_delete_link")
        def flux_delete_link(link_id: str) -> str:
            """Delete a link.
            Args:
                link_id: The ID of the link
            """
            with timed_operation("flux_delete_link", link_id=link_id) as op:
                try:
                    deleted = service.links.delete(link_id)
                    op["deleted"] = deleted
                    if not deleted:
                        return f"Link not found: {link_id}"
                    return f"Link {link_id} deleted successfully"
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="flux_graph_data")
        def flux_graph_data() -> str:
            """All notes and todos as nodes and all links as edges."""
            with timed_operation("flux_graph_data") as op:
                try:
                    graph = service.links.get_graph_data()
                    op["node_count"] = len(graph.nodes)
                    op["edge_count"] = len(graph.edges)
                    return _to_json(graph)
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="flux_rebuild_index")
        def flux_rebuild_index() -> str:
            """Rebuild the full-text search index from the stored notes and todos."""
            with timed_operation("flux_rebuild_index"):
                try:
                    counts = service.rebuild_search_index()
                    return (
                        f"Search index rebuilt: {counts.get('notes', 0)} notes, "
                        f"{counts.get('todos', 0)} todos"
                    )
                except Exception as e:
                    return self.format_error_response(e)

    def run(self) -> None:
        """Run the MCP server over stdio."""
        self.mcp.run()


def _plain_list(items: List[BaseModel]) -> List[Dict[str, Any]]:
    return [item.model_dump(mode="json") for item in items]

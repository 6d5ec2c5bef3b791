"""Data models for Flux Notes.

These are the plain-data values returned by every repository. Database
rows live in :mod:`flux_notes.models.db_models`.
"""

import datetime
import uuid
from datetime import timezone
from enum import Enum
from typing import List, Optional, Union

from pydantic import BaseModel, Field, field_validator


def utc_now() -> datetime.datetime:
    """Get current UTC time as timezone-aware datetime.

    Returns:
        Current time with UTC timezone info attached.
    """
    return datetime.datetime.now(timezone.utc)


def ensure_timezone_aware(dt_value: Optional[datetime.datetime]) -> Optional[datetime.datetime]:
    """Ensure a datetime read from SQLite is timezone-aware.

    SQLite stores datetimes without an offset; every value is written in
    UTC, so naive values coming back are tagged as UTC. ``None`` passes
    through for nullable columns.
    """
    if dt_value is None:
        return None
    if dt_value.tzinfo is None:
        return dt_value.replace(tzinfo=timezone.utc)
    return dt_value


def to_utc(dt_value: Optional[datetime.datetime]) -> Optional[datetime.datetime]:
    """Normalize a caller-supplied datetime to UTC before it is stored.

    Naive datetimes are treated as UTC; aware ones are converted.
    """
    if dt_value is None:
        return None
    if dt_value.tzinfo is None:
        return dt_value.replace(tzinfo=timezone.utc)
    return dt_value.astimezone(timezone.utc)


def generate_id() -> str:
    """Generate an opaque identifier for any entity.

    A random UUID4 rendered as text: 122 random bits inside a 128-bit
    space, so no coordination or shared state is needed.
    """
    return str(uuid.uuid4())


class TodoStatus(str, Enum):
    """Lifecycle state of a todo."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class TodoPriority(str, Enum):
    """Priority of a todo."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class EntityType(str, Enum):
    """Kinds of entities that can be linked."""

    NOTE = "note"
    TODO = "todo"


class LinkType(str, Enum):
    """Types of links between entities."""

    RELATED = "related"  # Entities are related in some way
    CONTAINS = "contains"  # Source contains the target
    REFERENCES = "references"  # Source mentions the target (wiki-links)


class FocusStatus(str, Enum):
    """State of a focus session. Completed and cancelled are terminal."""

    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class Note(BaseModel):
    """A note."""

    id: str = Field(default_factory=generate_id, description="Unique ID of the note")
    title: str = Field(..., description="Title of the note")
    body: str = Field(default="", description="Body text of the note")
    created_at: datetime.datetime = Field(
        default_factory=utc_now, description="When the note was created (UTC)"
    )
    updated_at: datetime.datetime = Field(
        default_factory=utc_now, description="When the note was last updated (UTC)"
    )

    model_config = {"validate_assignment": True, "extra": "forbid"}

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        """Validate that the title is not empty."""
        if not v.strip():
            raise ValueError("Title cannot be empty")
        return v


class Todo(BaseModel):
    """A todo, optionally attached to a note and optionally a subtask."""

    id: str = Field(default_factory=generate_id, description="Unique ID of the todo")
    title: str = Field(..., description="Title of the todo")
    description: str = Field(default="", description="Longer description")
    status: TodoStatus = Field(default=TodoStatus.PENDING)
    priority: TodoPriority = Field(default=TodoPriority.MEDIUM)
    due_date: Optional[datetime.datetime] = Field(default=None)
    note_id: Optional[str] = Field(default=None, description="Attached note")
    parent_id: Optional[str] = Field(default=None, description="Parent todo")
    created_at: datetime.datetime = Field(default_factory=utc_now)
    updated_at: datetime.datetime = Field(default_factory=utc_now)

    model_config = {"validate_assignment": True, "extra": "forbid"}


class TagCount(BaseModel):
    """A tag name with the number of notes using it."""

    name: str
    count: int = 0

    model_config = {"frozen": True}

    def __str__(self) -> str:
        """Return string representation of tag."""
        return self.name


class EntityRef(BaseModel):
    """A tagged reference to a note or a todo."""

    kind: EntityType
    id: str

    model_config = {"frozen": True}


class Link(BaseModel):
    """A directed, typed edge between two entities."""

    id: str = Field(default_factory=generate_id, description="Unique ID of the link")
    source_type: EntityType
    source_id: str
    target_type: EntityType
    target_id: str
    link_type: LinkType = Field(default=LinkType.RELATED, description="Type of link")
    created_at: datetime.datetime = Field(
        default_factory=utc_now, description="When the link was created (UTC)"
    )

    model_config = {
        "validate_assignment": True,
        "extra": "forbid",
        "frozen": True,  # Links are immutable
    }

    @property
    def source(self) -> EntityRef:
        return EntityRef(kind=self.source_type, id=self.source_id)

    @property
    def target(self) -> EntityRef:
        return EntityRef(kind=self.target_type, id=self.target_id)


class GraphNode(BaseModel):
    """A node of the knowledge graph."""

    id: str
    type: EntityType
    label: str


class GraphEdge(BaseModel):
    """An edge of the knowledge graph."""

    source: str
    target: str
    type: LinkType


class GraphData(BaseModel):
    """Snapshot of every note, todo and link."""

    nodes: List[GraphNode] = Field(default_factory=list)
    edges: List[GraphEdge] = Field(default_factory=list)


class FocusSession(BaseModel):
    """A timed focus session."""

    id: str = Field(default_factory=generate_id)
    start_time: datetime.datetime
    end_time: Optional[datetime.datetime] = None
    duration: int = Field(..., description="Requested target length in seconds")
    actual_duration: int = Field(default=0, description="Focused seconds")
    status: FocusStatus = Field(default=FocusStatus.RUNNING)
    todo_id: Optional[str] = None
    created_at: datetime.datetime = Field(default_factory=utc_now)


class FocusStats(BaseModel):
    """Aggregate focus statistics. Times are in seconds, streaks in days."""

    total_sessions: int = 0
    completed_sessions: int = 0
    total_focus_time: int = 0
    average_session_length: float = 0.0
    current_streak: int = 0
    longest_streak: int = 0
    today_focus_time: int = 0
    this_week_focus_time: int = 0


class TodoStats(BaseModel):
    """Aggregate todo counts taken from one query."""

    total: int = 0
    pending: int = 0
    in_progress: int = 0
    completed: int = 0
    overdue: int = 0


class TodoFilter(BaseModel):
    """Predicates for listing todos. All given predicates must hold.

    ``parent_id`` is special: leaving it out applies no parent filter,
    while passing ``parent_id=None`` explicitly selects top-level todos.
    """

    status: Optional[Union[TodoStatus, List[TodoStatus]]] = None
    priority: Optional[Union[TodoPriority, List[TodoPriority]]] = None
    note_id: Optional[str] = None
    parent_id: Optional[str] = None
    has_due_date: Optional[bool] = None
    overdue: bool = False
    due_today: bool = False
    due_soon: Optional[int] = Field(
        default=None, description="Due within this many days from now"
    )

    model_config = {"extra": "forbid"}

    @property
    def filters_parent(self) -> bool:
        """Whether a parent filter (possibly "no parent") was requested."""
        return "parent_id" in self.model_fields_set

    @staticmethod
    def _as_list(value) -> List[str]:
        if value is None:
            return []
        values = value if isinstance(value, list) else [value]
        return [v.value if isinstance(v, Enum) else v for v in values]

    def status_values(self) -> List[str]:
        return self._as_list(self.status)

    def priority_values(self) -> List[str]:
        return self._as_list(self.priority)

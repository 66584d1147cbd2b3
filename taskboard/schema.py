"""
Task board schema.

Lanes:
  Upcoming → Todo → Completed

Any lane may move to any other lane by drag. Membership is exactly
``task.lane``; ordering inside a lane comes from fetch order (no stored rank).
"""
from enum import Enum
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Optional, List, Dict, Any

from .errors import ValidationFailed


class Lane(Enum):
    """The three fixed board lanes, in display order."""
    UPCOMING = "Upcoming"
    TODO = "Todo"
    COMPLETED = "Completed"

    @property
    def title(self) -> str:
        return self.value

    @classmethod
    def from_str(cls, value) -> "Lane":
        """Parse a lane by value ("Todo") or name ("TODO"). Unknown lanes raise."""
        if isinstance(value, cls):
            return value
        text = str(value or "").strip()
        for lane in cls:
            if text == lane.value or text.upper() == lane.name:
                return lane
        raise ValidationFailed(f"Unknown lane: {value!r}")


LANES = tuple(Lane)


def parse_date(value) -> Optional[date]:
    """Accept a date, a datetime, or an ISO string ("2023-06-15")."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        raise ValidationFailed(f"Invalid due date: {value!r}")


@dataclass(frozen=True)
class Person:
    """A selectable assignee or a task creator."""
    id: str
    name: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name}

    @classmethod
    def from_dict(cls, data) -> "Person":
        if isinstance(data, Person):
            return data
        if isinstance(data, str):
            return cls(id=data, name="")
        return cls(
            id=str(data.get("id", "")),
            name=data.get("name") or data.get("full_name") or "",
        )


@dataclass
class Task:
    """One card on the board."""

    task_id: str
    title: str
    description: str = ""
    due_date: Optional[date] = None
    lane: Lane = Lane.UPCOMING
    progress: int = 0                     # 0-100, shown in the expanded detail
    assignees: List[Person] = field(default_factory=list)
    created_by: Optional[Person] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def with_lane(self, lane: Lane) -> "Task":
        """Copy of this task placed in another lane."""
        return Task(
            task_id=self.task_id,
            title=self.title,
            description=self.description,
            due_date=self.due_date,
            lane=lane,
            progress=self.progress,
            assignees=list(self.assignees),
            created_by=self.created_by,
            created_at=self.created_at,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.task_id,
            "title": self.title,
            "description": self.description,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "lane": self.lane.value,
            "progress": self.progress,
            "assignees": [p.to_dict() for p in self.assignees],
            "created_by": self.created_by.to_dict() if self.created_by else None,
            "created_at": self.created_at.isoformat() if isinstance(self.created_at, datetime) else self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Task":
        """Deserialize from an API/row dict. Accepts ``status`` as an alias of ``lane``."""
        created_at = data.get("created_at")
        if isinstance(created_at, str) and created_at:
            created_at = datetime.fromisoformat(created_at.replace("Z", "+00:00"))
        elif not isinstance(created_at, datetime):
            created_at = datetime.now(timezone.utc)

        creator = data.get("created_by")
        return cls(
            task_id=str(data.get("id", "")),
            title=data.get("title", ""),
            description=data.get("description") or "",
            due_date=parse_date(data.get("due_date")),
            lane=Lane.from_str(data.get("lane") or data.get("status") or Lane.UPCOMING),
            progress=int(data.get("progress") or 0),
            assignees=[Person.from_dict(p) for p in data.get("assignees") or []],
            created_by=Person.from_dict(creator) if creator else None,
            created_at=created_at,
        )


@dataclass(frozen=True)
class DragEvent:
    """A finished drag gesture: which task, where it started, where it ended."""

    task_id: str
    source_lane: Lane
    source_index: int
    destination_lane: Optional[Lane] = None
    destination_index: Optional[int] = None

    @property
    def abandoned(self) -> bool:
        return self.destination_lane is None or self.destination_index is None

    @property
    def is_noop(self) -> bool:
        return (
            self.destination_lane == self.source_lane
            and self.destination_index == self.source_index
        )

    @property
    def changes_lane(self) -> bool:
        return not self.abandoned and self.destination_lane != self.source_lane

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DragEvent":
        """
        Build from either the flat shape::

            {"task_id", "source_lane", "source_index",
             "destination_lane", "destination_index"}

        or the drag library result shape::

            {"draggableId", "source": {"droppableId", "index"},
             "destination": {"droppableId", "index"} | None}

        Raises ValidationFailed on unknown lanes or missing fields.
        """
        if not isinstance(data, dict):
            raise ValidationFailed(f"Drag event must be an object, got {type(data).__name__}")
        if "draggableId" in data or "source" in data:
            source = data.get("source") or {}
            destination = data.get("destination") or {}
            if not isinstance(source, dict) or not isinstance(destination, dict):
                raise ValidationFailed("Drag source and destination must be objects",
                                       task_id=str(data.get("draggableId") or ""))
            task_id = data.get("draggableId")
            source_lane = source.get("droppableId")
            source_index = source.get("index")
            dest_lane = destination.get("droppableId")
            dest_index = destination.get("index")
        else:
            task_id = data.get("task_id")
            source_lane = data.get("source_lane")
            source_index = data.get("source_index")
            dest_lane = data.get("destination_lane")
            dest_index = data.get("destination_index")

        if not task_id:
            raise ValidationFailed("Drag event has no task id")
        if source_lane is None or source_index is None:
            raise ValidationFailed("Drag event has no source", task_id=str(task_id))

        try:
            source_index = int(source_index)
            dest_index = int(dest_index) if dest_index is not None else None
        except (TypeError, ValueError):
            raise ValidationFailed("Drag indexes must be integers", task_id=str(task_id))

        return cls(
            task_id=str(task_id),
            source_lane=Lane.from_str(source_lane),
            source_index=source_index,
            destination_lane=Lane.from_str(dest_lane) if dest_lane else None,
            destination_index=dest_index if dest_lane else None,
        )


@dataclass
class TaskDraft:
    """Create-task dialog input, kept intact until a submit succeeds."""

    title: str = ""
    description: str = ""
    due_date: Any = None        # date or ISO string as typed
    lane: Any = Lane.UPCOMING
    progress: Any = 0
    assignee_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        lane = self.lane.value if isinstance(self.lane, Lane) else self.lane
        due = self.due_date.isoformat() if isinstance(self.due_date, date) else self.due_date
        return {
            "title": self.title,
            "description": self.description,
            "due_date": due,
            "lane": lane,
            "progress": self.progress,
            "assignee_ids": list(self.assignee_ids),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TaskDraft":
        return cls(
            title=data.get("title") or "",
            description=data.get("description") or "",
            due_date=data.get("due_date"),
            lane=data.get("lane") or data.get("status") or Lane.UPCOMING,
            progress=data.get("progress", 0),
            assignee_ids=[str(u) for u in data.get("assignee_ids") or []],
        )

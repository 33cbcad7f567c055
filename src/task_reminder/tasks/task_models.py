# src/task_reminder/tasks/task_models.py

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class TaskStatus(StrEnum):
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @classmethod
    def from_db(cls, raw: str | None) -> TaskStatus:
        if not raw:
            return cls.PENDING
        try:
            return cls(raw)
        except Exception:
            return cls.PENDING


class Priority(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class Category(StrEnum):
    WORK = "work"
    PERSONAL = "personal"
    HEALTH = "health"
    FINANCE = "finance"
    EDUCATION = "education"
    SHOPPING = "shopping"
    OTHER = "other"


class RecurrenceType(StrEnum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


# Named offsets offered by the mobile client's reminder picker.
REMINDER_PRESETS: dict[str, float] = {
    "10min": 10 * 60.0,
    "15min": 15 * 60.0,
    "30min": 30 * 60.0,
    "1hour": 60 * 60.0,
    "24hour": 24 * 60 * 60.0,
}

TITLE_MAX = 200
DESCRIPTION_MAX = 1000
NOTES_MAX = 2000
LOCATION_MAX = 200
TAG_MAX = 50


def parse_reminder_offset(raw: str | int | float | None) -> float | None:
    """
    Accept a preset name ("15min") or a number of seconds.

    Returns None for "no reminder". Raises ValueError for anything else.
    """
    if raw is None:
        return None
    if isinstance(raw, bool):
        raise ValueError(f"invalid reminder offset: {raw!r}")
    if isinstance(raw, (int, float)):
        if raw < 0:
            raise ValueError("reminder offset must be >= 0")
        return float(raw)

    s = str(raw).strip().lower()
    if not s or s == "none":
        return None
    if s in REMINDER_PRESETS:
        return REMINDER_PRESETS[s]
    try:
        val = float(s)
    except ValueError:
        raise ValueError(f"invalid reminder offset: {raw!r}") from None
    if val < 0:
        raise ValueError("reminder offset must be >= 0")
    return val


def compute_trigger_at(
    due_at: float | None,
    reminder_offset: float | None,
    reminder_time: float | None,
) -> float | None:
    """
    When the reminder for the current occurrence fires.

    An explicit reminder_time wins over the offset. Without a due date there is
    no reminder at all.
    """
    if due_at is None:
        return None
    if reminder_time is not None:
        return float(reminder_time)
    if reminder_offset is not None:
        return float(due_at) - float(reminder_offset)
    return None


@dataclass(slots=True)
class RecurrencePattern:
    """
    days_of_week uses 0=Sunday .. 6=Saturday (the mobile client's convention).
    anchor_day pins monthly/yearly recurrences to the original day-of-month so
    clamping in short months does not drift (Jan 31 -> Feb 28 -> Mar 31).
    """

    type: RecurrenceType
    interval: int = 1
    days_of_week: tuple[int, ...] = ()
    end_at: float | None = None
    anchor_day: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "interval": int(self.interval),
            "days_of_week": list(self.days_of_week),
            "end_at": self.end_at,
            "anchor_day": self.anchor_day,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> RecurrencePattern | None:
        if not data or not data.get("type"):
            return None
        try:
            rtype = RecurrenceType(str(data["type"]))
        except ValueError:
            return None
        end_at = data.get("end_at")
        anchor = data.get("anchor_day")
        return cls(
            type=rtype,
            interval=int(data.get("interval") or 1),
            days_of_week=tuple(sorted({int(d) for d in data.get("days_of_week") or []})),
            end_at=float(end_at) if end_at is not None else None,
            anchor_day=int(anchor) if anchor is not None else None,
        )


@dataclass(slots=True)
class Subtask:
    title: str
    completed: bool = False
    completed_at: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"title": self.title, "completed": self.completed, "completed_at": self.completed_at}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Subtask:
        ca = data.get("completed_at")
        return cls(
            title=str(data.get("title") or ""),
            completed=bool(data.get("completed")),
            completed_at=float(ca) if ca is not None else None,
        )


@dataclass(slots=True)
class Task:
    id: int
    owner: str
    title: str
    due_at: float
    created_at: float
    updated_at: float

    description: str = ""
    status: TaskStatus = TaskStatus.PENDING
    priority: Priority = Priority.MEDIUM
    category: Category = Category.OTHER

    reminder_offset: float | None = None
    reminder_time: float | None = None

    is_recurring: bool = False
    recurrence: RecurrencePattern | None = None

    # Append-only audit of trigger times that already fired, across all occurrences.
    reminders_sent: list[float] = field(default_factory=list)
    completed_at: float | None = None
    subtasks: list[Subtask] = field(default_factory=list)

    tags: list[str] = field(default_factory=list)
    location: str | None = None
    notes: str | None = None
    estimated_minutes: int | None = None
    is_archived: bool = False

    @property
    def trigger_at(self) -> float | None:
        return compute_trigger_at(self.due_at, self.reminder_offset, self.reminder_time)

    @property
    def has_reminder(self) -> bool:
        return self.trigger_at is not None

    @property
    def progress(self) -> int:
        if not self.subtasks:
            return 100 if self.status == TaskStatus.COMPLETED else 0
        done = sum(1 for s in self.subtasks if s.completed)
        return round(done / len(self.subtasks) * 100)

    def is_overdue(self, now_ts: float) -> bool:
        if self.status in (TaskStatus.COMPLETED, TaskStatus.CANCELLED):
            return False
        return float(now_ts) > self.due_at

import uuid
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo

from pydantic import BaseModel, ConfigDict, Field, model_validator

from board_recurrence.errors import RecursionNotAllowedError


class SeriesState(str, Enum):
    ACTIVE = "active"
    TERMINATED = "terminated"


class TerminationReason(str, Enum):
    NOT_RECURRING = "not_recurring"
    INVALID_RULE = "invalid_rule"
    COUNT_EXHAUSTED = "count_exhausted"
    END_DATE_PASSED = "end_date_passed"
    NO_NEXT_OCCURRENCE = "no_next_occurrence"


class TaskRecord(BaseModel):
    """
    A task row as the recurrence engine sees it.

    A template carries `is_recurring=True` and a serialized rule. A generated
    instance points back at its template through `parent_recurring_id` and is
    never recurring itself. Fields the engine does not own (assignee, labels,
    column and so on) travel in `meta`.
    """
    model_config = ConfigDict(validate_assignment=True)

    id: str = Field(default_factory=lambda: f"tsk_{uuid.uuid4().hex[:8]}", description="Unique task identifier")
    title: str = Field(..., description="Task title")
    description: Optional[str] = Field(None, description="Task description")
    due_date: Optional[date] = Field(None, description="Due date; anchors the first occurrence of a series")
    is_recurring: bool = Field(default=False, description="Whether this task is an active recurring template")
    recurrence_rule: Optional[str] = Field(None, description="Serialized recurrence rule")
    last_recurrence: Optional[date] = Field(None, description="Due date of the most recently fired occurrence")
    recurrence_count: int = Field(default=0, ge=0, description="Number of occurrences fired so far")
    parent_recurring_id: Optional[str] = Field(None, description="Template this task was generated from")
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(ZoneInfo("UTC")),
        description="Task creation timestamp with UTC timezone"
    )
    meta: Dict[str, Any] = Field(default_factory=dict, description="Task fields owned by the surrounding board")

    @model_validator(mode="after")
    def check_instance_not_recurring(self) -> "TaskRecord":
        if self.parent_recurring_id is not None and self.is_recurring:
            raise ValueError("A generated instance cannot itself be recurring")
        return self

    @property
    def is_instance(self) -> bool:
        return self.parent_recurring_id is not None

    @property
    def is_template(self) -> bool:
        return self.is_recurring and self.parent_recurring_id is None

    def enable_recurrence(self, serialized_rule: str) -> None:
        if self.is_instance:
            raise RecursionNotAllowedError(f"Task '{self.id}' was generated by a series and cannot recur")
        self.is_recurring = True
        self.recurrence_rule = serialized_rule
        self.last_recurrence = None
        self.recurrence_count = 0


class GeneratedInstanceSpec(BaseModel):
    """
    Instruction to materialize one occurrence of a series as a new task.
    """
    model_config = ConfigDict(frozen=True)

    title: str
    description: Optional[str] = None
    due_date: date
    parent_recurring_id: str

    @classmethod
    def for_template(cls, template: TaskRecord, due_date: date) -> "GeneratedInstanceSpec":
        return cls(
            title=template.title,
            description=template.description,
            due_date=due_date,
            parent_recurring_id=template.id,
        )

    def to_task(self, meta: Optional[Dict[str, Any]] = None) -> TaskRecord:
        return TaskRecord(
            title=self.title,
            description=self.description,
            due_date=self.due_date,
            is_recurring=False,
            parent_recurring_id=self.parent_recurring_id,
            meta=dict(meta or {}),
        )


class FireResult(BaseModel):
    """
    Outcome of one firing attempt.

    `created` is None and `terminated` False when another writer fired the same
    occurrence first.
    """
    created: Optional[GeneratedInstanceSpec] = None
    terminated: bool = False
    instance_id: Optional[str] = None
    reason: Optional[TerminationReason] = None

    @property
    def fired(self) -> bool:
        return self.created is not None

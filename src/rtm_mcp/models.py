from __future__ import annotations

from pydantic import BaseModel, Field


class RtmList(BaseModel):
    id: str
    name: str
    archived: bool = False
    smart: bool = False


class Note(BaseModel):
    id: str
    title: str | None = None
    body: str = ""
    created: str | None = None
    modified: str | None = None


class RecurrenceRule(BaseModel):
    every: bool = True
    rule: str = ""


class TaskInstance(BaseModel):
    id: str
    completed: str | None = None
    deleted: bool = False
    due: str | None = None
    has_due_time: bool = False
    start: str | None = None
    has_start_time: bool = False
    estimate: str | None = None
    priority: str = "N"
    postponed: int = 0

    @property
    def is_open(self) -> bool:
        return not self.completed and not self.deleted


class TaskSeries(BaseModel):
    id: str
    name: str = ""
    priority: str = "N"
    tags: list[str] = Field(default_factory=list)
    notes: list[Note] = Field(default_factory=list)
    rrule: RecurrenceRule | None = None
    tasks: list[TaskInstance] = Field(default_factory=list)
    url: str | None = None
    parent_task_id: str | None = None

    @property
    def first_task(self) -> TaskInstance | None:
        return self.tasks[0] if self.tasks else None


class TaskList(BaseModel):
    id: str
    series: list[TaskSeries] = Field(default_factory=list)

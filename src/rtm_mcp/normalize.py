"""Normalization of RTM JSON into always-a-list shapes and pydantic models.

RTM collapses a one-element collection to a bare object at every level
(lists, task series, task instances, tags and notes), and uses ``[]`` for an
empty collection. Everything that reads a collection out of a response goes
through :func:`ensure_list`.
"""

from __future__ import annotations

from typing import Any

from .models import Note, RecurrenceRule, RtmList, TaskInstance, TaskList, TaskSeries


def ensure_list(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def _unwrap(value: Any, key: str) -> list[Any]:
    # {"tag": [...]} / {"note": {...}} wrappers, or an already flat collection
    if isinstance(value, dict):
        return ensure_list(value.get(key))
    return ensure_list(value)


def normalize_tags(value: Any) -> list[str]:
    tags: list[str] = []
    for tag in _unwrap(value, "tag"):
        if isinstance(tag, dict):
            tag = tag.get("$t") or tag.get("name")
        if tag is None:
            continue
        tag = str(tag).strip()
        if tag and tag not in tags:
            tags.append(tag)
    return tags


def _flag(value: Any) -> bool:
    return str(value) in {"1", "true", "True"}


def _text(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


def parse_note(raw: dict[str, Any]) -> Note:
    return Note(
        id=str(raw.get("id", "")),
        title=_text(raw.get("title")),
        body=str(raw.get("$t") or raw.get("text") or ""),
        created=_text(raw.get("created")),
        modified=_text(raw.get("modified")),
    )


def parse_task(raw: dict[str, Any]) -> TaskInstance:
    try:
        postponed = int(raw.get("postponed") or 0)
    except (TypeError, ValueError):
        postponed = 0
    return TaskInstance(
        id=str(raw.get("id", "")),
        completed=_text(raw.get("completed")),
        deleted=bool(_text(raw.get("deleted"))),
        due=_text(raw.get("due")),
        has_due_time=_flag(raw.get("has_due_time")),
        start=_text(raw.get("start")),
        has_start_time=_flag(raw.get("has_start_time")),
        estimate=_text(raw.get("estimate")),
        priority=_text(raw.get("priority")) or "N",
        postponed=postponed,
    )


def parse_rrule(raw: Any) -> RecurrenceRule | None:
    if not isinstance(raw, dict):
        return None
    rule = raw.get("$t") or ""
    if not rule:
        return None
    return RecurrenceRule(every=str(raw.get("every", "1")) != "0", rule=rule)


def parse_taskseries(raw: dict[str, Any]) -> TaskSeries:
    tasks = [parse_task(item) for item in ensure_list(raw.get("task")) if isinstance(item, dict)]
    notes = [parse_note(item) for item in _unwrap(raw.get("notes"), "note") if isinstance(item, dict)]
    priority = _text(raw.get("priority")) or (tasks[0].priority if tasks else "N")
    return TaskSeries(
        id=str(raw.get("id", "")),
        name=raw.get("name") or "",
        priority=priority,
        tags=normalize_tags(raw.get("tags")),
        notes=notes,
        rrule=parse_rrule(raw.get("rrule")),
        tasks=tasks,
        url=_text(raw.get("url")),
        parent_task_id=_text(raw.get("parent_task_id")),
    )


def parse_list(raw: dict[str, Any]) -> RtmList:
    return RtmList(
        id=str(raw.get("id", "")),
        name=raw.get("name") or "",
        archived=_flag(raw.get("archived")),
        smart=_flag(raw.get("smart")),
    )


def extract_lists(rsp: dict[str, Any]) -> list[RtmList]:
    """``rsp.lists.list`` from ``rtm.lists.getList``."""
    lists = rsp.get("lists") or {}
    return [parse_list(item) for item in _unwrap(lists, "list") if isinstance(item, dict)]


def extract_list(rsp: dict[str, Any]) -> RtmList | None:
    """The single ``rsp.list`` returned by list mutations."""
    for item in ensure_list(rsp.get("list")):
        if isinstance(item, dict):
            return parse_list(item)
    return None


def extract_task_lists(rsp: dict[str, Any]) -> list[TaskList]:
    """``rsp.tasks.list`` from ``rtm.tasks.getList``."""
    task_lists: list[TaskList] = []
    for item in _unwrap(rsp.get("tasks") or {}, "list"):
        if not isinstance(item, dict):
            continue
        series = [parse_taskseries(ts) for ts in ensure_list(item.get("taskseries")) if isinstance(ts, dict)]
        task_lists.append(TaskList(id=str(item.get("id", "")), series=series))
    return task_lists


def extract_changed_series(rsp: dict[str, Any]) -> tuple[str | None, TaskSeries | None]:
    """``(list_id, first task series)`` from the ``rsp.list`` of a task mutation."""
    for item in ensure_list(rsp.get("list")):
        if not isinstance(item, dict):
            continue
        for ts in ensure_list(item.get("taskseries")):
            if isinstance(ts, dict):
                return _text(item.get("id")), parse_taskseries(ts)
        return _text(item.get("id")), None
    return None, None


def extract_note(rsp: dict[str, Any]) -> Note | None:
    for item in ensure_list(rsp.get("note")):
        if isinstance(item, dict):
            return parse_note(item)
    return None


def count_series(task_lists: list[TaskList]) -> int:
    return sum(len(task_list.series) for task_list in task_lists)

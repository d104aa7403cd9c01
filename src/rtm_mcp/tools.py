from __future__ import annotations

import json
import logging
import time
from functools import partial
from typing import Any, Callable

from .formatting import (
    api_error,
    format_ids,
    format_lists,
    format_note_summary,
    format_notes,
    format_task_line,
    format_tasks,
    permalink,
    priority_display,
    time_hint,
)
from .models import TaskList, TaskSeries
from .normalize import (
    count_series,
    extract_changed_series,
    extract_list,
    extract_lists,
    extract_note,
    extract_task_lists,
)
from .registry import ToolRegistry, build_registry, string_param, tool
from .rtm_client import RTMClient, failure_message

logger = logging.getLogger(__name__)

TOOL_NAMES = (
    "test_connection",
    "list_all_lists",
    "create_list",
    "rename_list",
    "archive_list",
    "unarchive_list",
    "delete_list",
    "list_tasks",
    "create_task",
    "complete_task",
    "uncomplete_task",
    "delete_task",
    "set_task_priority",
    "add_task_tags",
    "remove_task_tags",
    "set_due_date",
    "set_task_start_date",
    "set_task_recurrence",
    "clear_task_recurrence",
    "add_task_note",
    "edit_task_note",
    "delete_task_note",
    "read_task_notes",
    "create_subtask",
    "list_subtasks",
    "move_task",
    "postpone_task",
    "set_task_estimate",
    "set_task_name",
    "get_task_permalink",
)

PRIORITY_VALUES = ("1", "2", "3", "")
DATE_EXAMPLES = '"today", "tomorrow", "next week", "June 15", "2025-06-20", "3pm", "tomorrow at 2pm"'

TASK_REF = {
    "list_id": string_param("List ID containing the task"),
    "taskseries_id": string_param("Task series ID"),
    "task_id": string_param("Task ID"),
}
TASK_REF_REQUIRED = ("list_id", "taskseries_id", "task_id")
PRIORITY_PARAM = string_param(
    "Priority level: 1 (High), 2 (Medium), 3 (Low), or empty string (None)", enum=list(PRIORITY_VALUES)
)
SUBTASK_SCAN_LIMIT = 10


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _truthy(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() not in ("", "false", "0", "no")
    return bool(value)


def _required_error(fields: list[str]) -> str | None:
    if not fields:
        return None
    if len(fields) == 1:
        return f"Error: {fields[0]} is required"
    return f"Error: {', '.join(fields[:-1])} and {fields[-1]} are required"


def require(**values: Any) -> str | None:
    """Error text for arguments that are missing or empty."""
    return _required_error([name for name, value in values.items() if _blank(value)])


def require_present(**values: Any) -> str | None:
    """Error text for arguments that are missing; an empty string is allowed (it clears)."""
    return _required_error([name for name, value in values.items() if value is None])


def _parse_tags(tags: str) -> list[str]:
    return [tag.strip() for tag in tags.split(",") if tag.strip()]


def _task_params(list_id: str, taskseries_id: str, task_id: str, **extra: Any) -> dict[str, Any]:
    return {"list_id": list_id, "taskseries_id": taskseries_id, "task_id": task_id, **extra}


def _find_series(task_lists: list[TaskList], series_id: str, list_id: str | None = None) -> TaskSeries | None:
    for task_list in task_lists:
        if list_id and task_list.id != list_id:
            continue
        for series in task_list.series:
            if series.id == series_id:
                return series
    return None


def _describe_due(requested: str, changed: TaskSeries | None) -> str:
    task = changed.first_task if changed else None
    if task and task.due:
        return f"📅 {task.due}{time_hint(task.has_due_time)}"
    return requested


def _describe_start(requested: str, changed: TaskSeries | None) -> str:
    task = changed.first_task if changed else None
    if task and task.start:
        return f"🏁 {task.start}{time_hint(task.has_start_time)}"
    return requested


def _describe_tags(requested: list[str], changed: TaskSeries | None) -> str:
    tags = changed.tags if changed and changed.tags else requested
    return "🏷️ " + ", ".join(tags)


def _describe_estimate(requested: str, changed: TaskSeries | None) -> str:
    task = changed.first_task if changed else None
    return f"⏱️ {task.estimate if task and task.estimate else requested}"


class RtmTools:
    """Tool handlers. Every handler returns the text shown to the caller."""

    def __init__(
        self,
        client: RTMClient,
        follow_up_delay: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.client = client
        self.follow_up_delay = follow_up_delay
        self._sleep = sleep

    # helpers

    def _pause(self) -> None:
        if self.follow_up_delay > 0:
            self._sleep(self.follow_up_delay)

    def _fetch_list_names(self) -> dict[str, str] | None:
        result = self.client.call("rtm.lists.getList")
        if failure_message(result):
            return None
        return {item.id: item.name for item in extract_lists(result.rsp)}

    def list_name(self, list_id: str | None) -> str:
        if not list_id:
            return "Default List"
        return self.client.session.list_name(list_id, self._fetch_list_names) or "Unknown List"

    def _task_lists(self, **params: Any) -> tuple[list[TaskList] | None, str | None]:
        result = self.client.call("rtm.tasks.getList", params)
        error = failure_message(result)
        if error:
            return None, error
        return extract_task_lists(result.rsp), None

    def _mutate_task(self, method: str, params: dict[str, Any]) -> tuple[TaskSeries | None, str | None]:
        result = self.client.call(method, params)
        error = failure_message(result)
        if error:
            return None, error
        _, series = extract_changed_series(result.rsp)
        return series, None

    def _simple_list_call(self, method: str, list_id: str | None, verb: str) -> str:
        error = require(list_id=list_id)
        if error:
            return error
        result = self.client.call(method, {"list_id": list_id})
        message = failure_message(result)
        if message:
            return api_error(message)
        changed = extract_list(result.rsp)
        if changed:
            return f"✅ {verb} list: {changed.name} (ID: {changed.id})"
        return f"✅ List {verb.lower()} successfully!"

    # connectivity

    @tool("test_connection", "Test basic connectivity to RTM API")
    def test_connection(self) -> str:
        result = self.client.call("rtm.test.echo", {"test": "hello"})
        error = failure_message(result)
        if error:
            return api_error(error)
        return f"✅ RTM API connection successful!\n\nResponse: {json.dumps(result.payload, indent=2)}"

    # lists

    @tool("list_all_lists", "Get all RTM lists")
    def list_all_lists(self) -> str:
        result = self.client.call("rtm.lists.getList")
        error = failure_message(result)
        if error:
            return api_error(error)
        lists = extract_lists(result.rsp)
        self.client.session.remember_lists({item.id: item.name for item in lists})
        return format_lists(lists)

    @tool(
        "create_list",
        "Create a new RTM list",
        {"name": string_param("Name of the new list")},
        required=["name"],
    )
    def create_list(self, name: str | None = None) -> str:
        error = require(name=name)
        if error:
            return error
        result = self.client.call("rtm.lists.add", {"name": name})
        message = failure_message(result)
        if message:
            return api_error(message)
        created = extract_list(result.rsp)
        if not created:
            return "❌ List created but couldn't parse response"
        self.client.session.remember_lists({created.id: created.name})
        return f"✅ Created list: {created.name} (ID: {created.id})"

    @tool(
        "rename_list",
        "Rename an RTM list",
        {"list_id": string_param("ID of the list to rename"), "name": string_param("New list name")},
        required=["list_id", "name"],
    )
    def rename_list(self, list_id: str | None = None, name: str | None = None) -> str:
        error = require(list_id=list_id, name=name)
        if error:
            return error
        result = self.client.call("rtm.lists.setName", {"list_id": list_id, "name": name})
        message = failure_message(result)
        if message:
            return api_error(message)
        renamed = extract_list(result.rsp)
        new_name = renamed.name if renamed else name
        self.client.session.remember_lists({list_id: new_name})
        return f"✅ Renamed list to: {new_name} (ID: {list_id})"

    @tool(
        "archive_list",
        "Archive an RTM list",
        {"list_id": string_param("ID of the list to archive")},
        required=["list_id"],
    )
    def archive_list(self, list_id: str | None = None) -> str:
        return self._simple_list_call("rtm.lists.archive", list_id, "Archived")

    @tool(
        "unarchive_list",
        "Restore an archived RTM list",
        {"list_id": string_param("ID of the list to unarchive")},
        required=["list_id"],
    )
    def unarchive_list(self, list_id: str | None = None) -> str:
        return self._simple_list_call("rtm.lists.unarchive", list_id, "Unarchived")

    @tool(
        "delete_list",
        "Delete an RTM list (its tasks move to Inbox)",
        {"list_id": string_param("ID of the list to delete")},
        required=["list_id"],
    )
    def delete_list(self, list_id: str | None = None) -> str:
        return self._simple_list_call("rtm.lists.delete", list_id, "Deleted")

    # task queries

    def _parent_series_ids(self, list_id: str | None, original_filter: str | None) -> set[str]:
        parent_filter = "hasSubtasks:true"
        if original_filter and "status:incomplete" in original_filter:
            parent_filter += " AND status:incomplete"
        task_lists, _ = self._task_lists(filter=parent_filter, list_id=list_id, v=2)
        return {series.id for task_list in task_lists or [] for series in task_list.series}

    @staticmethod
    def expand_filter(original: str) -> str | None:
        """A broader filter to retry with when ``original`` matched nothing."""
        if " AND " in original:
            if "status:incomplete" in original:
                return "status:incomplete"
            return original.split(" AND ")[0].strip()
        if original != "status:incomplete":
            return "status:incomplete"
        return None

    @tool(
        "list_tasks",
        "Get tasks from RTM with optional filtering",
        {
            "list_id": string_param("Filter by specific list ID (optional)"),
            "filter": string_param(
                "RTM search filter (e.g., 'status:incomplete', 'dueWithin:\"1 week\"')"
            ),
            "show_ids": {"type": "boolean", "description": "Show task IDs for operations (default: false)"},
        },
    )
    def list_tasks(
        self,
        list_id: str | None = None,
        filter: str | None = None,
        show_ids: bool | None = False,
    ) -> str:
        list_id = list_id or None
        search = filter.strip() if filter else None
        task_lists, error = self._task_lists(list_id=list_id, filter=search, v=2)
        if error:
            return api_error(error)

        if search and count_series(task_lists) == 0:
            expanded = self.expand_filter(search)
            if expanded and expanded != search:
                expanded_lists, _ = self._task_lists(list_id=list_id, filter=expanded, v=2)
                if expanded_lists and count_series(expanded_lists) > 0:
                    parent_ids = self._parent_series_ids(list_id, expanded)
                    return (
                        "📋 **Auto-expanded search**\n"
                        f"No tasks matched filter: `{search}`\n"
                        f"Showing results for: `{expanded}`\n\n"
                        + format_tasks(expanded_lists, parent_ids, _truthy(show_ids))
                    )

        parent_ids = self._parent_series_ids(list_id, search)
        return format_tasks(task_lists, parent_ids, _truthy(show_ids))

    # task creation

    def _follow_up(
        self,
        label: str,
        method: str,
        params: dict[str, Any],
        describe: Callable[[TaskSeries | None], str],
    ) -> str:
        self._pause()
        try:
            series, error = self._mutate_task(method, params)
        except Exception as exc:  # noqa: BLE001
            logger.exception("%s follow-up raised", label)
            return f"⚠️ {label} failed: {exc}"
        if error:
            return f"⚠️ {label} failed: {error}"
        return f"✅ {label}: {describe(series)}"

    @tool(
        "create_task",
        "Create a new task in RTM with optional due date, start date, priority, tags, estimate and recurrence",
        {
            "name": string_param("Task name"),
            "list_id": string_param("List ID to create task in (optional, uses default list if not specified)"),
            "due": string_param(f"Due date (optional, e.g., {DATE_EXAMPLES})"),
            "start": string_param(f"Start date (optional, e.g., {DATE_EXAMPLES})"),
            "priority": string_param(
                "Priority level: 1 (High), 2 (Medium), 3 (Low), or empty string (None) (optional)",
                enum=list(PRIORITY_VALUES),
            ),
            "tags": string_param("Comma-separated list of tags to add (optional)"),
            "estimate": string_param('Time estimate (optional, e.g., "30 minutes", "2 hours")'),
            "repeat": string_param('Recurrence pattern (optional, e.g., "every day", "after 1 week")'),
        },
        required=["name"],
    )
    def create_task(
        self,
        name: str | None = None,
        list_id: str | None = None,
        due: str | None = None,
        start: str | None = None,
        priority: str | None = None,
        tags: str | None = None,
        estimate: str | None = None,
        repeat: str | None = None,
    ) -> str:
        error = require(name=name)
        if error:
            return error
        if priority not in (None, *PRIORITY_VALUES):
            return "Error: Priority must be '1' (High), '2' (Medium), '3' (Low), or '' (None)"

        result = self.client.call("rtm.tasks.add", {"name": name, "list_id": list_id or None})
        message = failure_message(result)
        if message:
            return api_error(message)
        created_list_id, series = extract_changed_series(result.rsp)
        task = series.first_task if series else None
        if series is None or task is None:
            return "❌ Task created but couldn't parse response"

        lines = [
            f"✅ Created task: {series.name or name} in {self.list_name(created_list_id)}",
            f"   {format_ids(created_list_id, series.id, task.id)}",
        ]
        ref = _task_params(created_list_id, series.id, task.id)

        follow_ups: list[tuple[str, str, dict[str, Any], Callable[[TaskSeries | None], str]]] = []
        if not _blank(due):
            follow_ups.append(
                ("Due date", "rtm.tasks.setDueDate", {"due": due, "parse": 1}, partial(_describe_due, due))
            )
        if not _blank(start):
            follow_ups.append(
                (
                    "Start date",
                    "rtm.tasks.setStartDate",
                    {"start": start, "parse": 1, "v": 2},
                    partial(_describe_start, start),
                )
            )
        if priority:
            follow_ups.append(
                ("Priority", "rtm.tasks.setPriority", {"priority": priority}, lambda _: priority_display(priority))
            )
        if not _blank(tags):
            tag_list = _parse_tags(tags)
            follow_ups.append(
                ("Tags", "rtm.tasks.addTags", {"tags": ",".join(tag_list)}, partial(_describe_tags, tag_list))
            )
        if not _blank(estimate):
            follow_ups.append(
                ("Estimate", "rtm.tasks.setEstimate", {"estimate": estimate}, partial(_describe_estimate, estimate))
            )
        if not _blank(repeat):
            follow_ups.append(("Recurrence", "rtm.tasks.setRecurrence", {"repeat": repeat}, lambda _: f"🔄 {repeat}"))

        for label, method, params, describe in follow_ups:
            lines.append(self._follow_up(label, method, {**ref, **params}, describe))
        return "\n".join(lines)

    @tool(
        "create_subtask",
        "Create a new task as a subtask of an existing task (requires Pro account)",
        {
            "name": string_param("Name of the subtask"),
            "parent_list_id": string_param("List ID of the parent task"),
            "parent_taskseries_id": string_param("Task series ID of the parent task"),
            "parent_task_id": string_param("Task ID of the parent task"),
        },
        required=["name", "parent_list_id", "parent_taskseries_id", "parent_task_id"],
    )
    def create_subtask(
        self,
        name: str | None = None,
        parent_list_id: str | None = None,
        parent_taskseries_id: str | None = None,
        parent_task_id: str | None = None,
    ) -> str:
        error = require(
            name=name,
            parent_list_id=parent_list_id,
            parent_taskseries_id=parent_taskseries_id,
            parent_task_id=parent_task_id,
        )
        if error:
            return error

        result = self.client.call("rtm.tasks.add", {"name": name, "list_id": parent_list_id})
        message = failure_message(result)
        if message:
            return f"❌ Error creating task: {message}"
        created_list_id, series = extract_changed_series(result.rsp)
        task = series.first_task if series else None
        if series is None or task is None:
            return "❌ Task created but couldn't parse response"
        ids = format_ids(created_list_id, series.id, task.id)
        task_name = series.name or name

        self._pause()
        _, parent_error = self._mutate_task(
            "rtm.tasks.setParentTask",
            _task_params(created_list_id, series.id, task.id, parent_task_id=parent_task_id, v=2),
        )
        if parent_error:
            return (
                f"⚠️ Task created but couldn't set as subtask: {parent_error}\n"
                f"Created task: {task_name}\n{ids}"
            )
        return f"✅ Created subtask: {task_name}\n{ids}"

    # task state

    def _task_state_call(
        self, method: str, done: str, list_id: str | None, taskseries_id: str | None, task_id: str | None
    ) -> str:
        error = require(list_id=list_id, taskseries_id=taskseries_id, task_id=task_id)
        if error:
            return error
        _, message = self._mutate_task(method, _task_params(list_id, taskseries_id, task_id))
        if message:
            return api_error(message)
        return done

    @tool("complete_task", "Mark a task as complete", TASK_REF, required=TASK_REF_REQUIRED)
    def complete_task(
        self,
        list_id: str | None = None,
        taskseries_id: str | None = None,
        task_id: str | None = None,
    ) -> str:
        return self._task_state_call(
            "rtm.tasks.complete", "✅ Task completed successfully!", list_id, taskseries_id, task_id
        )

    @tool("uncomplete_task", "Mark a completed task as incomplete", TASK_REF, required=TASK_REF_REQUIRED)
    def uncomplete_task(
        self,
        list_id: str | None = None,
        taskseries_id: str | None = None,
        task_id: str | None = None,
    ) -> str:
        return self._task_state_call(
            "rtm.tasks.uncomplete", "✅ Task marked incomplete!", list_id, taskseries_id, task_id
        )

    @tool(
        "delete_task",
        "Permanently delete a task (stops recurrence, unlike complete_task)",
        TASK_REF,
        required=TASK_REF_REQUIRED,
    )
    def delete_task(
        self,
        list_id: str | None = None,
        taskseries_id: str | None = None,
        task_id: str | None = None,
    ) -> str:
        return self._task_state_call(
            "rtm.tasks.delete", "✅ Task deleted permanently!", list_id, taskseries_id, task_id
        )

    @tool(
        "set_task_priority",
        "Set the priority of a task",
        {**TASK_REF, "priority": PRIORITY_PARAM},
        required=[*TASK_REF_REQUIRED, "priority"],
    )
    def set_task_priority(
        self,
        list_id: str | None = None,
        taskseries_id: str | None = None,
        task_id: str | None = None,
        priority: str | None = None,
    ) -> str:
        error = require(list_id=list_id, taskseries_id=taskseries_id, task_id=task_id) or require_present(
            priority=priority
        )
        if error:
            return error
        if priority not in PRIORITY_VALUES:
            return "Error: Priority must be '1' (High), '2' (Medium), '3' (Low), or '' (None)"
        series, message = self._mutate_task(
            "rtm.tasks.setPriority", _task_params(list_id, taskseries_id, task_id, priority=priority)
        )
        if message:
            return api_error(message)
        task = series.first_task if series else None
        if task is None:
            return "✅ Task priority updated successfully!"
        return f"✅ Task priority set to: {priority_display(task.priority)}"

    # tags

    def _tag_call(
        self,
        method: str,
        verb: str,
        list_id: str | None,
        taskseries_id: str | None,
        task_id: str | None,
        tags: str | None,
    ) -> str:
        error = require(list_id=list_id, taskseries_id=taskseries_id, task_id=task_id, tags=tags)
        if error:
            return error
        series, message = self._mutate_task(
            method, _task_params(list_id, taskseries_id, task_id, tags=",".join(_parse_tags(tags)))
        )
        if message:
            return api_error(message)
        if series is None:
            return f"✅ Tags {verb} successfully!"
        current = ", ".join(series.tags) if series.tags else "none"
        return f"✅ Tags {verb}! Current tags: {current}"

    @tool(
        "add_task_tags",
        "Add tags to a task",
        {**TASK_REF, "tags": string_param("Comma-separated list of tags to add")},
        required=[*TASK_REF_REQUIRED, "tags"],
    )
    def add_task_tags(
        self,
        list_id: str | None = None,
        taskseries_id: str | None = None,
        task_id: str | None = None,
        tags: str | None = None,
    ) -> str:
        return self._tag_call("rtm.tasks.addTags", "added", list_id, taskseries_id, task_id, tags)

    @tool(
        "remove_task_tags",
        "Remove tags from a task",
        {**TASK_REF, "tags": string_param("Comma-separated list of tags to remove")},
        required=[*TASK_REF_REQUIRED, "tags"],
    )
    def remove_task_tags(
        self,
        list_id: str | None = None,
        taskseries_id: str | None = None,
        task_id: str | None = None,
        tags: str | None = None,
    ) -> str:
        return self._tag_call("rtm.tasks.removeTags", "removed", list_id, taskseries_id, task_id, tags)

    # dates and estimates

    @tool(
        "set_due_date",
        "Set or update the due date of a task",
        {**TASK_REF, "due": string_param(f"Due date (e.g., {DATE_EXAMPLES}). Use empty string to clear.")},
        required=[*TASK_REF_REQUIRED, "due"],
    )
    def set_due_date(
        self,
        list_id: str | None = None,
        taskseries_id: str | None = None,
        task_id: str | None = None,
        due: str | None = None,
    ) -> str:
        error = require(list_id=list_id, taskseries_id=taskseries_id, task_id=task_id) or require_present(due=due)
        if error:
            return error
        series, message = self._mutate_task(
            "rtm.tasks.setDueDate", _task_params(list_id, taskseries_id, task_id, due=due, parse=1)
        )
        if message:
            return api_error(message)
        if series is None:
            return "✅ Due date cleared successfully!" if not due else "✅ Due date set successfully!"
        if not due:
            return f"✅ Due date cleared for: {series.name}"
        task = series.first_task
        if task and task.due:
            return f"✅ Due date set for: {series.name}\n📅 Due: {task.due}{time_hint(task.has_due_time)}"
        return f"✅ Due date updated for: {series.name}"

    @tool(
        "set_task_start_date",
        "Set or update the start date of a task",
        {**TASK_REF, "start": string_param(f"Start date (e.g., {DATE_EXAMPLES}). Use empty string to clear.")},
        required=[*TASK_REF_REQUIRED, "start"],
    )
    def set_task_start_date(
        self,
        list_id: str | None = None,
        taskseries_id: str | None = None,
        task_id: str | None = None,
        start: str | None = None,
    ) -> str:
        error = require(list_id=list_id, taskseries_id=taskseries_id, task_id=task_id) or require_present(
            start=start
        )
        if error:
            return error
        series, message = self._mutate_task(
            "rtm.tasks.setStartDate", _task_params(list_id, taskseries_id, task_id, start=start, parse=1, v=2)
        )
        if message:
            return api_error(message)
        if series is None:
            return "✅ Start date cleared successfully!" if not start else "✅ Start date set successfully!"
        if not start:
            return f"✅ Start date cleared for: {series.name}"
        task = series.first_task
        if task and task.start:
            return f"✅ Start date set for: {series.name}\n🏁 Start: {task.start}{time_hint(task.has_start_time)}"
        return f"✅ Start date updated for: {series.name}"

    @tool(
        "set_task_estimate",
        "Set or clear the time estimate for a task",
        {
            **TASK_REF,
            "estimate": string_param(
                'Time estimate (e.g., "30 minutes", "2 hours", "1 day", "30m", "2h", "1d") or empty string to clear'
            ),
        },
        required=[*TASK_REF_REQUIRED, "estimate"],
    )
    def set_task_estimate(
        self,
        list_id: str | None = None,
        taskseries_id: str | None = None,
        task_id: str | None = None,
        estimate: str | None = None,
    ) -> str:
        error = require(list_id=list_id, taskseries_id=taskseries_id, task_id=task_id) or require_present(
            estimate=estimate
        )
        if error:
            return error
        series, message = self._mutate_task(
            "rtm.tasks.setEstimate", _task_params(list_id, taskseries_id, task_id, estimate=estimate)
        )
        if message:
            return api_error(message)
        if series is None:
            return "✅ Estimate cleared successfully!" if not estimate else "✅ Estimate set successfully!"
        if not estimate:
            return f"✅ Estimate cleared for: {series.name}"
        task = series.first_task
        value = task.estimate if task and task.estimate else estimate
        return f"✅ Estimate set for: {series.name}\n⏱️ Estimate: {value}"

    @tool(
        "postpone_task",
        "Postpone a task (delays the due date)",
        TASK_REF,
        required=TASK_REF_REQUIRED,
    )
    def postpone_task(
        self,
        list_id: str | None = None,
        taskseries_id: str | None = None,
        task_id: str | None = None,
    ) -> str:
        error = require(list_id=list_id, taskseries_id=taskseries_id, task_id=task_id)
        if error:
            return error
        series, message = self._mutate_task("rtm.tasks.postpone", _task_params(list_id, taskseries_id, task_id))
        if message:
            return api_error(message)
        name = series.name if series and series.name else "Task"
        task = series.first_task if series else None
        text = f"✅ Task '{name}' postponed to {task.due}" if task and task.due else f"✅ Task '{name}' postponed"
        if task and task.postponed:
            text += f" (postponed {task.postponed} time{'s' if task.postponed != 1 else ''})"
        return text

    # series identity

    @tool(
        "set_task_name",
        "Rename a task",
        {**TASK_REF, "name": string_param("New name for the task")},
        required=[*TASK_REF_REQUIRED, "name"],
    )
    def set_task_name(
        self,
        list_id: str | None = None,
        taskseries_id: str | None = None,
        task_id: str | None = None,
        name: str | None = None,
    ) -> str:
        error = require(list_id=list_id, taskseries_id=taskseries_id, task_id=task_id, name=name)
        if error:
            return error
        series, message = self._mutate_task(
            "rtm.tasks.setName", _task_params(list_id, taskseries_id, task_id, name=name)
        )
        if message:
            return api_error(message)
        if series is None:
            return "✅ Task renamed successfully!"
        return f"✅ Task renamed to: {series.name}"

    @tool(
        "get_task_permalink",
        "Get the RTM web app link for a task",
        {"task_id": string_param("Task ID")},
        required=["task_id"],
    )
    def get_task_permalink(self, task_id: str | None = None) -> str:
        error = require(task_id=task_id)
        if error:
            return error
        return f"🔗 Task permalink: {permalink(task_id)}"

    @tool(
        "set_task_recurrence",
        "Set or update recurrence rules for a task",
        {
            **TASK_REF,
            "repeat": string_param(
                'Recurrence pattern (e.g., "every day", "every 2 weeks", "every month", '
                '"every monday", "every weekday", "after 1 week")'
            ),
        },
        required=[*TASK_REF_REQUIRED, "repeat"],
    )
    def set_task_recurrence(
        self,
        list_id: str | None = None,
        taskseries_id: str | None = None,
        task_id: str | None = None,
        repeat: str | None = None,
    ) -> str:
        error = require(list_id=list_id, taskseries_id=taskseries_id, task_id=task_id, repeat=repeat)
        if error:
            return error
        series, message = self._mutate_task(
            "rtm.tasks.setRecurrence", _task_params(list_id, taskseries_id, task_id, repeat=repeat)
        )
        if message:
            return api_error(message)
        if series is None:
            return "✅ Recurrence set successfully!"
        if series.rrule is None:
            return f"✅ Recurrence updated for: {series.name}"
        pattern = repeat if series.rrule.every else f"{repeat} (after completion)"
        return f"✅ Recurrence set for: {series.name}\n🔄 Pattern: {pattern}\n📋 RRULE: {series.rrule.rule}"

    @tool("clear_task_recurrence", "Clear/remove recurrence from a task", TASK_REF, required=TASK_REF_REQUIRED)
    def clear_task_recurrence(
        self,
        list_id: str | None = None,
        taskseries_id: str | None = None,
        task_id: str | None = None,
    ) -> str:
        error = require(list_id=list_id, taskseries_id=taskseries_id, task_id=task_id)
        if error:
            return error
        series, message = self._mutate_task("rtm.tasks.setRecurrence", _task_params(list_id, taskseries_id, task_id))
        if message:
            return api_error(message)
        if series is None:
            return "✅ Recurrence cleared successfully!"
        if series.rrule is not None:
            return f"❌ Recurrence still active for: {series.name}\n📋 RRULE: {series.rrule.rule}"
        return f"✅ Recurrence cleared for: {series.name}"

    @tool(
        "move_task",
        "Move a task to a different list",
        {**TASK_REF, "to_list_id": string_param("Destination list ID to move the task to")},
        required=[*TASK_REF_REQUIRED, "to_list_id"],
    )
    def move_task(
        self,
        list_id: str | None = None,
        taskseries_id: str | None = None,
        task_id: str | None = None,
        to_list_id: str | None = None,
    ) -> str:
        error = require(list_id=list_id, taskseries_id=taskseries_id, task_id=task_id, to_list_id=to_list_id)
        if error:
            return error
        series, message = self._mutate_task(
            "rtm.tasks.moveTo",
            {"from_list_id": list_id, "to_list_id": to_list_id, "taskseries_id": taskseries_id, "task_id": task_id},
        )
        if message:
            return api_error(message)
        name = series.name if series and series.name else "Task"
        return f"✅ Task '{name}' moved to {self.list_name(to_list_id)}"

    # notes

    @tool(
        "add_task_note",
        "Add a note to a task",
        {
            **TASK_REF,
            "text": string_param("Note text content"),
            "title": string_param("Note title (optional)"),
        },
        required=[*TASK_REF_REQUIRED, "text"],
    )
    def add_task_note(
        self,
        list_id: str | None = None,
        taskseries_id: str | None = None,
        task_id: str | None = None,
        text: str | None = None,
        title: str | None = None,
    ) -> str:
        error = require(list_id=list_id, taskseries_id=taskseries_id, task_id=task_id, text=text)
        if error:
            return error
        params = _task_params(list_id, taskseries_id, task_id, note_text=text, note_title=title or "")
        result = self.client.call("rtm.tasks.notes.add", params)
        message = failure_message(result)
        if message:
            return api_error(message)
        note = extract_note(result.rsp)
        if note is None:
            return "✅ Note added successfully!"
        return format_note_summary(note, "added")

    @tool(
        "edit_task_note",
        "Edit an existing note on a task",
        {
            "note_id": string_param("Note ID to edit"),
            "text": string_param("New note text content"),
            "title": string_param("New note title (optional)"),
        },
        required=["note_id", "text"],
    )
    def edit_task_note(
        self, note_id: str | None = None, text: str | None = None, title: str | None = None
    ) -> str:
        error = require(note_id=note_id, text=text)
        if error:
            return error
        result = self.client.call(
            "rtm.tasks.notes.edit", {"note_id": note_id, "note_text": text, "note_title": title or ""}
        )
        message = failure_message(result)
        if message:
            return api_error(message)
        note = extract_note(result.rsp)
        if note is None:
            return "✅ Note updated successfully!"
        return format_note_summary(note, "updated")

    @tool(
        "delete_task_note",
        "Delete a note from a task",
        {"note_id": string_param("Note ID to delete")},
        required=["note_id"],
    )
    def delete_task_note(self, note_id: str | None = None) -> str:
        error = require(note_id=note_id)
        if error:
            return error
        message = failure_message(self.client.call("rtm.tasks.notes.delete", {"note_id": note_id}))
        if message:
            return api_error(message)
        return "✅ Note deleted successfully!"

    @tool("read_task_notes", "Read all notes attached to a task", TASK_REF, required=TASK_REF_REQUIRED)
    def read_task_notes(
        self,
        list_id: str | None = None,
        taskseries_id: str | None = None,
        task_id: str | None = None,
    ) -> str:
        error = require(list_id=list_id, taskseries_id=taskseries_id, task_id=task_id)
        if error:
            return error
        task_lists, message = self._task_lists(list_id=list_id, filter="")
        if message:
            return api_error(message)
        series = _find_series(task_lists or [], taskseries_id, list_id)
        if series is None or not any(task.id == task_id for task in series.tasks):
            return "Task not found"
        return format_notes(series)

    # subtasks

    @tool(
        "list_subtasks",
        "List the subtasks of a parent task",
        {
            "parent_list_id": string_param("List ID of the parent task"),
            "parent_taskseries_id": string_param("Task series ID of the parent task"),
            "parent_name": string_param("Name of the parent task (optional, helps identify subtasks)"),
        },
        required=["parent_list_id", "parent_taskseries_id"],
    )
    def list_subtasks(
        self,
        parent_list_id: str | None = None,
        parent_taskseries_id: str | None = None,
        parent_name: str | None = None,
    ) -> str:
        error = require(parent_list_id=parent_list_id, parent_taskseries_id=parent_taskseries_id)
        if error:
            return error
        lines = ["📋 **Subtasks**", ""]
        if parent_name:
            lines.append(f"Parent task: {parent_name}")
        lines.append(f"Parent IDs: list={parent_list_id}, series={parent_taskseries_id}")
        lines.append("")

        parents, message = self._task_lists(list_id=parent_list_id, filter="hasSubtasks:true", v=2)
        if message:
            return api_error(message)
        if _find_series(parents or [], parent_taskseries_id) is None:
            lines.append("⚠️ This task doesn't appear to have any subtasks")
            return "\n".join(lines)

        task_lists, message = self._task_lists(list_id=parent_list_id, filter="status:incomplete", v=2)
        if message:
            return api_error(message)
        task_lists = task_lists or []
        parent = _find_series(task_lists, parent_taskseries_id)
        parent_task_ids = {task.id for task in parent.tasks} if parent else set()

        children = [
            (task_list.id, series, task)
            for task_list in task_lists
            for series in task_list.series
            if series.parent_task_id and series.parent_task_id in parent_task_ids
            for task in series.tasks
            if task.is_open
        ]
        if children:
            lines.append(f"✅ {len(children)} subtask(s):")
            for child_list_id, series, task in children:
                lines.append(format_task_line(series, task))
                lines.append(f"   {format_ids(child_list_id, series.id, task.id)}")
            return "\n".join(lines)

        # Without parent links in the response, show the tasks that follow the parent.
        lines.append("✅ Parent task confirmed to have subtasks")
        lines.append("Subtask links were not returned; tasks listed after the parent:")
        found_parent = False
        shown = 0
        for task_list in task_lists:
            for series in task_list.series:
                for task in series.tasks:
                    if not task.is_open:
                        continue
                    if series.id == parent_taskseries_id:
                        found_parent = True
                        lines.append(f"→ Parent: {series.name}")
                    elif found_parent and shown < SUBTASK_SCAN_LIMIT:
                        lines.append(f"  🔲 {series.name}")
                        shown += 1
        return "\n".join(lines)


def build_tools(tools: RtmTools) -> ToolRegistry:
    return build_registry(tools, TOOL_NAMES)

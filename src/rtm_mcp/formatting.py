from __future__ import annotations

from datetime import datetime
from typing import Iterable

from .models import Note, RtmList, TaskInstance, TaskList, TaskSeries

PRIORITY_DISPLAY = {"1": "🔴 High", "2": "🟡 Medium", "3": "🔵 Low", "N": "None"}
PRIORITY_MARKERS = {"1": " 🔴", "2": " 🟡", "3": " 🔵"}
NOTE_PREVIEW_CHARS = 80
PERMALINK_BASE = "https://www.rememberthemilk.com/app/#tasks/"


def api_error(message: str) -> str:
    return f"❌ RTM API Error: {message}"


def priority_display(priority: str | None) -> str:
    if not priority:
        return "None"
    return PRIORITY_DISPLAY.get(priority, priority)


def format_ids(list_id: str | None, series_id: str | None, task_id: str | None) -> str:
    return f"IDs: list={list_id}, series={series_id}, task={task_id}"


def permalink(task_id: str | None) -> str | None:
    """Web app link to a task instance."""
    if not task_id or not task_id.strip():
        return None
    return f"{PERMALINK_BASE}{task_id.strip()}"


def format_time(value: str | None) -> str:
    if not value:
        return ""
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).strftime("%Y-%m-%d %H:%M")
    except ValueError:
        return value


def time_hint(has_time: bool) -> str:
    return " (includes time)" if has_time else " (date only)"


def preview(text: str, limit: int = 50) -> str:
    first_line = text.split("\n", 1)[0] if text else ""
    if len(first_line) > limit:
        return first_line[:limit] + "..."
    if len(text) > len(first_line):
        return first_line + "..."
    return first_line


def format_lists(lists: Iterable[RtmList]) -> str:
    lines = []
    for item in lists:
        line = f"• {item.name} (ID: {item.id})"
        if item.archived:
            line += " [archived]"
        if item.smart:
            line += " [smart]"
        lines.append(line)
    return "📝 RTM Lists:\n\n" + ("\n".join(lines) if lines else "(no lists)")


def format_note_summary(note: Note, verb: str) -> str:
    title = note.title or "(No title)"
    lines = [f"✅ Note {verb} successfully!", f"📝 Title: {title}", f"📄 Text: {preview(note.body)}"]
    if verb == "added":
        lines.append(f"🆔 Note ID: {note.id}")
    return "\n".join(lines)


def format_notes(series: TaskSeries) -> str:
    if not series.notes:
        return "No notes found for this task"
    lines = [f"📝 **Notes for task: {series.name}**", ""]
    for index, note in enumerate(series.notes, start=1):
        lines.append(f"**Note {index}** (ID: {note.id})")
        if note.title:
            lines.append(f"Title: {note.title}")
        lines.append(f"Created: {format_time(note.created)}")
        if note.modified and note.modified != note.created:
            lines.append(f"Modified: {format_time(note.modified)}")
        lines.extend(["", note.body, ""])
        if index < len(series.notes):
            lines.extend(["---", ""])
    return "\n".join(lines).strip()


def _note_preview_lines(series: TaskSeries) -> list[str]:
    lines = []
    for note in series.notes:
        text = note.body.replace("\n", " ")
        if not text:
            continue
        if len(text) > NOTE_PREVIEW_CHARS:
            text = text[: NOTE_PREVIEW_CHARS - 2] + "..."
        lines.append(f"   📝 {text}")
    return lines


def format_task_line(series: TaskSeries, task: TaskInstance, has_subtasks: bool = False) -> str:
    priority = task.priority if task.priority != "N" else series.priority
    line = f"🔲 {series.name}{PRIORITY_MARKERS.get(priority, '')}"
    if task.due:
        line += f" (due: {task.due})"
    if task.start:
        line += f" 🏁{task.start}"
    if task.estimate:
        line += f" ⏱️{task.estimate}"
    if has_subtasks:
        line += " [has subtasks]"
    if series.url:
        line += f" 🌐 {series.url}"
    return line


def format_tasks(
    task_lists: Iterable[TaskList],
    parent_ids: set[str] | None = None,
    show_ids: bool = False,
) -> str:
    parent_ids = parent_ids or set()
    lines: list[str] = []
    count = 0
    for task_list in task_lists:
        for series in task_list.series:
            for task in series.tasks:
                if not task.is_open:
                    continue
                lines.append(format_task_line(series, task, series.id in parent_ids))
                if show_ids:
                    lines.append(f"   {format_ids(task_list.id, series.id, task.id)}")
                    link = permalink(task.id)
                    if link:
                        lines.append(f"   🔗 {link}")
                lines.extend(_note_preview_lines(series))
                count += 1
    if not lines:
        return "📋 No incomplete tasks found."
    return f"📋 **Tasks** ({count} total):\n\n" + "\n".join(lines)

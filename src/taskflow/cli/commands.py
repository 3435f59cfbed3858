# src/taskflow/cli/commands.py

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import cast

from ..core.errors import TaskflowError, ValidationError
from ..core.state import AppState
from ..tasks.task_models import RecurrenceType, Task, TaskPriority

CommandEmitter = Callable[[str], None]
CommandHandler2 = Callable[[AppState, list[str]], Awaitable[str]]
CommandHandler3 = Callable[[AppState, list[str], CommandEmitter | None], Awaitable[str]]
CommandHandler = CommandHandler2 | CommandHandler3

logger = logging.getLogger(__name__)

SHORT_ID = 8


class CommandRegistry:
    """Simple slash-command registry used by connectors (/help, /add, /list, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    async def handle(
        self,
        state: AppState,
        line: str,
        emit: CommandEmitter | None = None,
    ) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.
        """
        if not line.startswith("/"):
            return None

        parts = line[1:].split()
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        try:
            nparams = len(inspect.signature(handler).parameters)
        except (TypeError, ValueError):
            nparams = 3

        try:
            if nparams >= 3:
                h3 = cast(CommandHandler3, handler)
                return await h3(state, args, emit)
            h2 = cast(CommandHandler2, handler)
            return await h2(state, args)
        except TaskflowError as e:
            logger.info("/%s rejected: %s", name, e)
            return f"Error: {e}"

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


# ---- helpers ----

def _split_options(args: list[str]) -> tuple[list[str], dict[str, str]]:
    """Separate key=value options from free words."""
    words: list[str] = []
    opts: dict[str, str] = {}
    for a in args:
        key, sep, value = a.partition("=")
        if sep and key.isidentifier():
            opts[key.lower()] = value
        else:
            words.append(a)
    return words, opts


def _parse_due(raw: str, state: AppState) -> datetime | None:
    if raw.lower() in ("", "none", "-"):
        return None
    try:
        dt = datetime.fromisoformat(raw)
    except ValueError as e:
        raise ValidationError(f"bad date {raw!r}; use YYYY-MM-DD or YYYY-MM-DDTHH:MM") from e
    return dt if dt.tzinfo is not None else dt.replace(tzinfo=state.settings.timezone)


def _parse_priority(raw: str) -> TaskPriority:
    try:
        return TaskPriority[raw.upper()]
    except KeyError as e:
        raise ValidationError(f"unknown priority {raw!r}; use low, medium or high") from e


def _parse_recurrence(raw: str) -> RecurrenceType:
    try:
        return RecurrenceType(raw.lower())
    except ValueError as e:
        raise ValidationError(f"unknown repeat {raw!r}; use daily, weekly, monthly or yearly") from e


async def _resolve_task(state: AppState, prefix: str) -> Task:
    matches = [t for t in await state.store.query_tasks() if t.id.startswith(prefix)]
    if not matches:
        raise ValidationError(f"no task with id {prefix!r}")
    if len(matches) > 1:
        raise ValidationError(f"id {prefix!r} is ambiguous ({len(matches)} tasks)")
    return matches[0]


async def _resolve_category(state: AppState, prefix: str) -> str:
    ids = [c.id for c in await state.repository.list_categories() if c.id.startswith(prefix)]
    if len(ids) != 1:
        raise ValidationError(f"no unique category with id {prefix!r}")
    return ids[0]


def _format_task(task: Task) -> str:
    box = "[x]" if task.is_completed else "[ ]"
    parts = [f"{box} {task.id[:SHORT_ID]} {task.title}", f"({task.priority.title})"]
    if task.due_date is not None:
        parts.append(f"due {task.due_date:%Y-%m-%d %H:%M}")
    if task.has_recurrence:
        parts.append(f"repeats {task.recurrence_type.value}")
    if task.parent_id:
        parts.append(f"sub of {task.parent_id[:SHORT_ID]}")
    return " ".join(parts)


def _format_list(title: str, tasks: list[Task]) -> str:
    if not tasks:
        return f"{title}: nothing here."
    return "\n".join([f"{title}:"] + [f"  {_format_task(t)}" for t in tasks])


# ---- handlers ----

async def cmd_help(state: AppState, args: list[str]) -> str:
    return registry.build_help()


async def cmd_add(state: AppState, args: list[str]) -> str:
    """
    /add <title...> [due=YYYY-MM-DDTHH:MM] [priority=high] [repeat=daily] [cat=<id>] [parent=<id>]
    """
    words, opts = _split_options(args)
    parent_id = (await _resolve_task(state, opts["parent"])).id if "parent" in opts else None
    category_id = await _resolve_category(state, opts["cat"]) if "cat" in opts else None
    task = await state.repository.create_task(
        " ".join(words),
        notes=opts.get("notes"),
        priority=_parse_priority(opts["priority"]) if "priority" in opts else TaskPriority.MEDIUM,
        due_date=_parse_due(opts["due"], state) if "due" in opts else None,
        category_id=category_id,
        parent_id=parent_id,
        recurrence_type=_parse_recurrence(opts["repeat"]) if "repeat" in opts else RecurrenceType.NONE,
    )
    return f"Added {_format_task(task)}"


_LISTS = {
    "all": ("All tasks", "all_tasks"),
    "open": ("Open tasks", "incomplete_tasks"),
    "done": ("Completed tasks", "completed_tasks"),
    "overdue": ("Overdue tasks", "overdue_tasks"),
    "today": ("Due today", "tasks_due_today"),
    "tomorrow": ("Due tomorrow", "tasks_due_tomorrow"),
}


async def cmd_list(state: AppState, args: list[str]) -> str:
    """
    /list [all|open|done|overdue|today|tomorrow]
    /list cat <id>
    """
    sub = args[0].lower() if args else "all"
    if sub == "cat":
        if len(args) < 2:
            return "Usage: /list cat <category-id>"
        category_id = await _resolve_category(state, args[1])
        return _format_list("Tasks in category", await state.repository.tasks_for_category(category_id))

    if sub not in _LISTS:
        return "Usage: /list [all|open|done|overdue|today|tomorrow] | /list cat <id>"
    title, method = _LISTS[sub]
    return _format_list(title, await getattr(state.repository, method)())


async def cmd_done(state: AppState, args: list[str]) -> str:
    if not args:
        return "Usage: /done <task-id>"
    task = await _resolve_task(state, args[0])
    result = await state.repository.toggle_completion(task.id)
    lines = [_format_task(result.task)]
    for t in result.spawned:
        lines.append(f"  next: {_format_task(t)}")
    others = len(result.completed_ids) + len(result.reopened_ids) - 1
    if others > 0:
        lines.append(f"  ({others} related task(s) updated)")
    return "\n".join(lines)


async def cmd_due(state: AppState, args: list[str]) -> str:
    if len(args) < 2:
        return "Usage: /due <task-id> <YYYY-MM-DDTHH:MM|none>"
    task = await _resolve_task(state, args[0])
    updated = await state.repository.update_task(task.id, due_date=_parse_due(args[1], state))
    return f"Updated {_format_task(updated)}"


async def cmd_rename(state: AppState, args: list[str]) -> str:
    if len(args) < 2:
        return "Usage: /rename <task-id> <new title...>"
    task = await _resolve_task(state, args[0])
    updated = await state.repository.update_task(task.id, title=" ".join(args[1:]))
    return f"Updated {_format_task(updated)}"


async def cmd_rm(state: AppState, args: list[str]) -> str:
    if not args:
        return "Usage: /rm <task-id>"
    task = await _resolve_task(state, args[0])
    orphans = await state.repository.delete_task(task.id)
    suffix = f" ({len(orphans)} subtask(s) moved to top level)" if orphans else ""
    return f"Deleted {task.title}{suffix}"


async def cmd_search(state: AppState, args: list[str]) -> str:
    if not args:
        return "Usage: /search <text>"
    text = " ".join(args)
    return _format_list(f"Matches for {text!r}", await state.repository.search_tasks(text))


async def cmd_cat(state: AppState, args: list[str]) -> str:
    """
    /cat             -> list categories
    /cat add <name>  -> create a category
    /cat rm <id>     -> delete a category (its tasks are kept)
    """
    sub = args[0].lower() if args else "list"

    if sub == "list":
        cats = await state.repository.list_categories()
        if not cats:
            return "No categories."
        return "\n".join(["Categories:"] + [f"  {c.id[:SHORT_ID]} {c.name} ({c.icon}, {c.color_hex})" for c in cats])

    if sub == "add":
        cat = await state.repository.create_category(" ".join(args[1:]))
        return f"Category {cat.name} created ({cat.id[:SHORT_ID]})."

    if sub == "rm" and len(args) >= 2:
        category_id = await _resolve_category(state, args[1])
        detached = await state.repository.delete_category(category_id)
        return f"Category deleted; {len(detached)} task(s) kept without a category."

    return "Usage: /cat | /cat add <name> | /cat rm <id>"


async def cmd_reminders(state: AppState, args: list[str]) -> str:
    ids = await state.repository.pending_reminder_ids()
    if not ids:
        return "No pending reminders."
    return "Pending reminders:\n" + "\n".join(f"  {i[:SHORT_ID]}" for i in ids)


async def cmd_status(state: AppState, args: list[str]) -> str:
    total = len(await state.repository.all_tasks())
    open_n = len(await state.repository.incomplete_tasks())
    overdue = await state.repository.overdue_count()
    perm = state.reminders.permission_granted
    return (
        "Status:\n"
        f"  Tasks: {total} ({open_n} open, {overdue} overdue)\n"
        f"  Reminders: {'ON' if perm else 'OFF'}"
    )


async def cmd_clear(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    """
    /clear tasks  -> delete every task (categories stay)
    /clear all    -> delete every task and category
    """
    sub = args[0].lower() if args else ""
    if sub not in ("tasks", "all"):
        return "Usage: /clear tasks | /clear all"
    if emit:
        emit("Clearing data and cancelling reminders...")
    if sub == "tasks":
        n = await state.repository.clear_all_tasks()
        return f"Deleted {n} task(s)."
    await state.repository.clear_all_data()
    return "All tasks and categories deleted."


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register(
    "add",
    cmd_add,
    help_text="Add a task: /add <title> [due=..] [priority=..] [repeat=..] [cat=..] [parent=..].",
)
registry.register("list", cmd_list, help_text="List tasks: /list [open|done|overdue|today|tomorrow].", aliases=["ls"])
registry.register("done", cmd_done, help_text="Toggle completion: /done <id>.", aliases=["toggle"])
registry.register("due", cmd_due, help_text="Set or clear a due date: /due <id> <date|none>.")
registry.register("rename", cmd_rename, help_text="Rename a task: /rename <id> <title>.")
registry.register("rm", cmd_rm, help_text="Delete a task: /rm <id>.")
registry.register("search", cmd_search, help_text="Search titles and notes: /search <text>.")
registry.register("cat", cmd_cat, help_text="Categories: /cat | /cat add <name> | /cat rm <id>.")
registry.register("reminders", cmd_reminders, help_text="Show pending reminder ids.")
registry.register("status", cmd_status, help_text="Show task counts and reminder state.")
registry.register("clear", cmd_clear, help_text="Bulk delete: /clear tasks | /clear all.")

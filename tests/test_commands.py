# tests/test_commands.py

from __future__ import annotations

import pytest

from taskflow.cli.commands import CommandRegistry, registry
from taskflow.core.errors import ValidationError
from taskflow.core.state import AppState


@pytest.mark.asyncio
async def test_command_registry_routes_2_and_3_params(state: AppState) -> None:
    reg = CommandRegistry()
    called = {"h2": 0, "h3": 0}
    notes: list[str] = []

    async def h2(state, args):
        called["h2"] += 1
        return "h2"

    async def h3(state, args, emit):
        called["h3"] += 1
        if emit is not None:
            emit("note")
        return "h3"

    reg.register("a", h2, "a")
    reg.register("b", h3, "b")

    assert await reg.handle(state, "/a x") == "h2"
    assert await reg.handle(state, "/b y", emit=notes.append) == "h3"
    assert called == {"h2": 1, "h3": 1}
    assert notes == ["note"]


@pytest.mark.asyncio
async def test_command_registry_unknown_and_non_command(state: AppState) -> None:
    reg = CommandRegistry()
    assert await reg.handle(state, "hello") is None
    assert "Unknown command" in (await reg.handle(state, "/nope") or "")


@pytest.mark.asyncio
async def test_domain_errors_become_replies(state: AppState) -> None:
    reg = CommandRegistry()

    async def bad(state, args):
        raise ValidationError("title is required")

    reg.register("bad", bad, "bad")
    assert await reg.handle(state, "/bad") == "Error: title is required"


@pytest.mark.asyncio
async def test_add_and_list(state: AppState) -> None:
    reply = await registry.handle(state, "/add Buy milk priority=high due=2025-01-16T10:00")

    assert reply is not None
    assert reply.startswith("Added [ ] ")
    assert "Buy milk (High) due 2025-01-16 10:00" in reply

    listing = await registry.handle(state, "/list open")
    assert listing is not None and "Buy milk" in listing
    assert await registry.handle(state, "/list done") == "Completed tasks: nothing here."
    assert await registry.handle(state, "/add") == "Error: title is required"


@pytest.mark.asyncio
async def test_done_reports_next_instance(state: AppState) -> None:
    await registry.handle(state, "/add Stretch repeat=daily due=2025-01-16T07:00")
    (task,) = await state.repository.all_tasks()

    reply = await registry.handle(state, f"/done {task.id[:8]}")

    assert reply is not None
    assert reply.startswith("[x] ")
    assert "next: [ ] " in reply
    assert "due 2025-01-17 07:00" in reply


@pytest.mark.asyncio
async def test_categories_and_clear(state: AppState) -> None:
    reply = await registry.handle(state, "/cat add Work")
    assert reply is not None and reply.startswith("Category Work created")
    (cat,) = await state.repository.list_categories()

    await registry.handle(state, f"/add Slides cat={cat.id[:8]}")
    assert [t.category_id for t in await state.repository.all_tasks()] == [cat.id]

    notes: list[str] = []
    assert await registry.handle(state, "/clear all", emit=notes.append) == "All tasks and categories deleted."
    assert notes
    assert await state.repository.all_tasks() == []
    assert await registry.handle(state, "/cat") == "No categories."

# tests/test_lifecycle.py

from __future__ import annotations

import sqlite3
from dataclasses import replace
from datetime import timedelta

import pytest

from taskflow.core.errors import NotFoundError, StorageError, ValidationError
from taskflow.tasks.lifecycle import TaskLifecycle
from taskflow.tasks.task_models import RecurrenceType, TaskPriority
from taskflow.tasks.task_store import StoreTransaction, TaskStore

from .conftest import NOW
from .fakes import FakeClock, FakeNotificationCenter

DUE = NOW + timedelta(days=1)


@pytest.mark.asyncio
async def test_create_task_defaults(lifecycle: TaskLifecycle) -> None:
    task = await lifecycle.create_task(title="Buy milk")

    assert task.priority == TaskPriority.MEDIUM
    assert task.is_completed is False
    assert task.created_at == task.updated_at == NOW
    assert task.series_id is None
    assert task.is_recurring is False


@pytest.mark.asyncio
async def test_recurring_task_starts_its_own_series(lifecycle: TaskLifecycle) -> None:
    task = await lifecycle.create_task(title="Stretch", due_date=DUE, recurrence_type=RecurrenceType.DAILY)
    assert task.is_recurring is True
    assert task.series_id == task.id


@pytest.mark.asyncio
async def test_create_rejects_missing_references(lifecycle: TaskLifecycle, store: TaskStore) -> None:
    with pytest.raises(NotFoundError):
        await lifecycle.create_task(title="x", parent_id="missing")
    with pytest.raises(NotFoundError):
        await lifecycle.create_task(title="x", category_id="missing")
    with pytest.raises(NotFoundError):
        await lifecycle.toggle_completion("missing")

    assert await store.count_tasks() == 0


@pytest.mark.asyncio
async def test_completing_daily_task_spawns_exactly_once(lifecycle: TaskLifecycle, store: TaskStore) -> None:
    task = await lifecycle.create_task(title="Water plants", due_date=DUE, recurrence_type=RecurrenceType.DAILY)

    result = await lifecycle.toggle_completion(task.id)

    assert result.task.is_completed is True
    assert len(result.spawned) == 1
    nxt = result.spawned[0]
    assert nxt.id != task.id
    assert nxt.due_date == DUE + timedelta(days=1)
    assert nxt.series_id == task.id
    assert nxt.is_completed is False

    # Uncomplete then complete again: the series already has that date.
    await lifecycle.toggle_completion(task.id)
    again = await lifecycle.toggle_completion(task.id)

    assert again.spawned == []
    series = await store.query_tasks(lambda t: t.series_id == task.id)
    assert len(series) == 2


@pytest.mark.asyncio
async def test_spawned_instance_copies_fields_and_is_top_level(lifecycle: TaskLifecycle) -> None:
    cat = await lifecycle.create_category(name="Home")
    parent = await lifecycle.create_task(title="Chores")
    task = await lifecycle.create_task(
        title="Vacuum",
        notes="living room",
        priority=TaskPriority.HIGH,
        due_date=DUE,
        category_id=cat.id,
        parent_id=parent.id,
        recurrence_type=RecurrenceType.WEEKLY,
    )

    result = await lifecycle.toggle_completion(task.id)

    (nxt,) = result.spawned
    assert (nxt.title, nxt.notes, nxt.priority, nxt.category_id) == ("Vacuum", "living room", TaskPriority.HIGH, cat.id)
    assert nxt.recurrence_type == RecurrenceType.WEEKLY
    assert nxt.parent_id is None
    assert nxt.due_date == DUE + timedelta(days=7)
    # The only subtask is done, so the parent completed in the same cascade.
    assert parent.id in result.completed_ids


@pytest.mark.asyncio
async def test_moving_instance_onto_taken_series_date_is_rejected(
    lifecycle: TaskLifecycle, store: TaskStore
) -> None:
    first = await lifecycle.create_task(title="Water plants", due_date=DUE, recurrence_type=RecurrenceType.DAILY)
    (nxt,) = (await lifecycle.toggle_completion(first.id)).spawned
    version = store.feed.version

    with pytest.raises(ValidationError):
        await lifecycle.update_task(nxt.id, due_date=DUE)

    same_day = await store.query_tasks(lambda t: t.series_id == first.id and t.due_date == DUE)
    assert [t.id for t in same_day] == [first.id]
    assert store.feed.version == version

    # Moving to a free date, or re-saving the same date, is fine.
    moved = await lifecycle.update_task(nxt.id, due_date=DUE + timedelta(days=3))
    assert moved.due_date == DUE + timedelta(days=3)
    await lifecycle.update_task(nxt.id, due_date=DUE + timedelta(days=3), title="Water all plants")


@pytest.mark.asyncio
async def test_joining_a_series_on_a_taken_date_is_rejected(lifecycle: TaskLifecycle, store: TaskStore) -> None:
    first = await lifecycle.create_task(title="Standup", due_date=DUE, recurrence_type=RecurrenceType.DAILY)
    other = await lifecycle.create_task(title="Standup copy", due_date=DUE)
    await store.write(lambda tx: tx.update_task(replace(other, series_id=first.id)))

    with pytest.raises(ValidationError):
        await lifecycle.update_task(other.id, recurrence_type=RecurrenceType.DAILY)

    got = await store.get_task(other.id)
    assert got is not None and got.is_recurring is False


@pytest.mark.asyncio
async def test_recurring_without_due_date_spawns_nothing(lifecycle: TaskLifecycle) -> None:
    task = await lifecycle.create_task(title="Someday", recurrence_type=RecurrenceType.MONTHLY)
    result = await lifecycle.toggle_completion(task.id)
    assert result.spawned == []


@pytest.mark.asyncio
async def test_parent_follows_its_subtasks(lifecycle: TaskLifecycle, store: TaskStore) -> None:
    parent = await lifecycle.create_task(title="Trip")
    subs = [await lifecycle.create_task(title=f"step {i}", parent_id=parent.id) for i in range(3)]

    await lifecycle.toggle_completion(subs[0].id)
    await lifecycle.toggle_completion(subs[1].id)
    p = await store.get_task(parent.id)
    assert p is not None and p.is_completed is False

    result = await lifecycle.toggle_completion(subs[2].id)
    p = await store.get_task(parent.id)
    assert p is not None and p.is_completed is True
    assert parent.id in result.completed_ids

    result = await lifecycle.toggle_completion(subs[1].id)
    p = await store.get_task(parent.id)
    assert p is not None and p.is_completed is False
    assert parent.id in result.reopened_ids


@pytest.mark.asyncio
async def test_completing_parent_forces_all_descendants(lifecycle: TaskLifecycle, store: TaskStore) -> None:
    parent = await lifecycle.create_task(title="Release")
    a = await lifecycle.create_task(title="a", parent_id=parent.id)
    b = await lifecycle.create_task(title="b", parent_id=parent.id)
    b1 = await lifecycle.create_task(title="b1", parent_id=b.id)

    result = await lifecycle.toggle_completion(parent.id)

    assert set(result.completed_ids) == {parent.id, a.id, b.id, b1.id}
    assert all(t.is_completed for t in await store.query_tasks())


@pytest.mark.asyncio
async def test_cascade_walks_whole_ancestor_chain(lifecycle: TaskLifecycle, store: TaskStore) -> None:
    grand = await lifecycle.create_task(title="grand")
    parent = await lifecycle.create_task(title="parent", parent_id=grand.id)
    child = await lifecycle.create_task(title="child", parent_id=parent.id)

    await lifecycle.toggle_completion(child.id)
    assert all(t.is_completed for t in await store.query_tasks())

    result = await lifecycle.toggle_completion(child.id)
    assert set(result.reopened_ids) == {grand.id, parent.id, child.id}
    assert not any(t.is_completed for t in await store.query_tasks())


@pytest.mark.asyncio
async def test_tasks_without_subtasks_are_left_alone(lifecycle: TaskLifecycle, store: TaskStore) -> None:
    x = await lifecycle.create_task(title="x")
    y = await lifecycle.create_task(title="y")

    result = await lifecycle.toggle_completion(x.id)

    assert result.completed_ids == [x.id]
    other = await store.get_task(y.id)
    assert other is not None and other.is_completed is False


@pytest.mark.asyncio
async def test_recurring_parent_completed_by_cascade_spawns(lifecycle: TaskLifecycle) -> None:
    parent = await lifecycle.create_task(title="Weekly review", due_date=DUE, recurrence_type=RecurrenceType.WEEKLY)
    child = await lifecycle.create_task(title="inbox zero", parent_id=parent.id)

    result = await lifecycle.toggle_completion(child.id)

    assert len(result.spawned) == 1
    assert result.spawned[0].series_id == parent.id


@pytest.mark.asyncio
async def test_reparent_rejects_cycles_without_writing(lifecycle: TaskLifecycle, store: TaskStore) -> None:
    a = await lifecycle.create_task(title="a")
    b = await lifecycle.create_task(title="b", parent_id=a.id)
    c = await lifecycle.create_task(title="c", parent_id=b.id)
    version = store.feed.version

    with pytest.raises(ValidationError):
        await lifecycle.update_task(a.id, parent_id=c.id)
    with pytest.raises(ValidationError):
        await lifecycle.update_task(a.id, parent_id=a.id)

    got = await store.get_task(a.id)
    assert got is not None and got.parent_id is None
    assert store.feed.version == version


@pytest.mark.asyncio
async def test_reparent_reevaluates_old_and_new_parent(lifecycle: TaskLifecycle, store: TaskStore) -> None:
    old = await lifecycle.create_task(title="old")
    done = await lifecycle.create_task(title="done", parent_id=old.id)
    moving = await lifecycle.create_task(title="moving", parent_id=old.id)
    await lifecycle.toggle_completion(done.id)

    new = await lifecycle.create_task(title="new")
    sub = await lifecycle.create_task(title="sub", parent_id=new.id)
    await lifecycle.toggle_completion(sub.id)

    await lifecycle.update_task(moving.id, parent_id=new.id)

    old_now = await store.get_task(old.id)
    new_now = await store.get_task(new.id)
    assert old_now is not None and old_now.is_completed is True
    assert new_now is not None and new_now.is_completed is False


@pytest.mark.asyncio
async def test_new_open_subtask_reopens_completed_parent(lifecycle: TaskLifecycle, store: TaskStore) -> None:
    parent = await lifecycle.create_task(title="parent")
    await lifecycle.toggle_completion(parent.id)

    await lifecycle.create_task(title="late addition", parent_id=parent.id)

    got = await store.get_task(parent.id)
    assert got is not None and got.is_completed is False


@pytest.mark.asyncio
async def test_update_bumps_updated_at_only(lifecycle: TaskLifecycle, clock: FakeClock) -> None:
    task = await lifecycle.create_task(title="draft")
    later = clock.advance(minutes=5)

    updated = await lifecycle.update_task(task.id, title="final", priority=TaskPriority.LOW)

    assert updated.title == "final"
    assert updated.priority == TaskPriority.LOW
    assert updated.created_at == NOW
    assert updated.updated_at == later


@pytest.mark.asyncio
async def test_delete_orphans_subtasks_and_keeps_successors(
    lifecycle: TaskLifecycle, store: TaskStore, center: FakeNotificationCenter
) -> None:
    parent = await lifecycle.create_task(title="parent", due_date=DUE)
    c1 = await lifecycle.create_task(title="c1", parent_id=parent.id)
    c2 = await lifecycle.create_task(title="c2", parent_id=parent.id)

    orphans = await lifecycle.delete_task(parent.id)

    assert sorted(orphans) == sorted([c1.id, c2.id])
    assert center.pending_for(parent.id) == []
    for cid in (c1.id, c2.id):
        got = await store.get_task(cid)
        assert got is not None and got.parent_id is None

    rec = await lifecycle.create_task(title="daily", due_date=DUE, recurrence_type=RecurrenceType.DAILY)
    (nxt,) = (await lifecycle.toggle_completion(rec.id)).spawned
    await lifecycle.delete_task(rec.id)
    assert await store.get_task(nxt.id) is not None


@pytest.mark.asyncio
async def test_delete_category_keeps_its_tasks(lifecycle: TaskLifecycle, store: TaskStore) -> None:
    cat = await lifecycle.create_category(name="Work")
    tasks = [await lifecycle.create_task(title=f"t{i}", category_id=cat.id) for i in range(5)]

    detached = await lifecycle.delete_category(cat.id)

    assert sorted(detached) == sorted(t.id for t in tasks)
    assert await store.get_category(cat.id) is None
    remaining = await store.query_tasks()
    assert len(remaining) == 5
    assert all(t.category_id is None for t in remaining)


@pytest.mark.asyncio
async def test_delete_tasks_in_category(lifecycle: TaskLifecycle, store: TaskStore) -> None:
    cat = await lifecycle.create_category(name="Errands")
    for i in range(3):
        await lifecycle.create_task(title=f"t{i}", category_id=cat.id)
    keep = await lifecycle.create_task(title="other")

    assert await lifecycle.delete_tasks_in_category(cat.id) == 3
    assert [t.id for t in await store.query_tasks()] == [keep.id]
    assert await store.get_category(cat.id) is not None


@pytest.mark.asyncio
async def test_storage_failure_during_toggle_changes_nothing(
    lifecycle: TaskLifecycle,
    store: TaskStore,
    center: FakeNotificationCenter,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    task = await lifecycle.create_task(title="Daily standup", due_date=DUE, recurrence_type=RecurrenceType.DAILY)
    version = store.feed.version

    def _fail_insert(self: StoreTransaction, task) -> None:
        raise sqlite3.OperationalError("database is locked")

    monkeypatch.setattr(StoreTransaction, "insert_task", _fail_insert)
    with pytest.raises(StorageError):
        await lifecycle.toggle_completion(task.id)
    monkeypatch.undo()

    got = await store.get_task(task.id)
    assert got is not None and got.is_completed is False
    assert await store.count_tasks() == 1
    assert store.feed.version == version
    assert len(center.pending_for(task.id)) == 1


@pytest.mark.asyncio
async def test_reminders_follow_the_lifecycle(
    lifecycle: TaskLifecycle, center: FakeNotificationCenter, clock: FakeClock
) -> None:
    task = await lifecycle.create_task(title="Call mom", due_date=DUE, recurrence_type=RecurrenceType.DAILY)
    assert await center.pending_ids() == [task.id]

    result = await lifecycle.toggle_completion(task.id)
    (nxt,) = result.spawned
    assert await center.pending_ids() == [nxt.id]

    # Reopening re-arms the reminder.
    await lifecycle.toggle_completion(task.id)
    assert len(center.pending_for(task.id)) == 1

    await lifecycle.update_task(task.id, title="Call mum")
    (req,) = center.pending_for(task.id)
    assert req.title == "Call mum"

    await lifecycle.update_task(task.id, due_date=clock.now - timedelta(hours=1))
    assert center.pending_for(task.id) == []

    await lifecycle.update_task(nxt.id, due_date=None)
    assert await center.pending_ids() == []

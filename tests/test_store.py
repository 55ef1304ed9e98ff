from __future__ import annotations

import threading
from dataclasses import replace
from typing import List, Tuple

import pytest

from devcontext.models import AppSnapshot, Project, Task
from devcontext.persistence import Mutation, SnapshotRepo, seed_snapshot
from devcontext.store import (
    AddProject,
    AppStore,
    DeleteFile,
    DeleteProject,
    DeleteTask,
    InitSnapshot,
    MoveTask,
    SaveFile,
    SaveTask,
    TickTimers,
    TimerClock,
    UpdateProject,
    UpdateSettings,
    apply,
    describe,
)


def _snapshot() -> AppSnapshot:
    projects = (Project(id="p1", name="One"), Project(id="p2", name="Two"))
    tasks = (
        Task(id="t1", project_id="p1", title="a"),
        Task(id="t2", project_id="p1", title="b", is_timer_running=True),
        Task(id="t3", project_id="p2", title="c", time_spent=5),
    )
    return AppSnapshot(projects=projects, tasks=tasks)


class _RecordingRepo(SnapshotRepo):
    def __init__(self) -> None:
        self.writes: List[Tuple[Mutation, AppSnapshot]] = []

    def load(self) -> AppSnapshot:
        return AppSnapshot()

    def save(self, snapshot: AppSnapshot) -> None:  # pragma: no cover - persist is overridden
        raise AssertionError("save should not be called")

    def persist(self, mutation: Mutation, snapshot: AppSnapshot) -> None:
        self.writes.append((mutation, snapshot))


def test_apply_is_deterministic_and_does_not_mutate_input():
    before = _snapshot()
    action = SaveTask(Task(id="t9", project_id="p2", title="new"))

    first = apply(before, action)
    second = apply(before, action)

    assert first == second
    assert len(before.tasks) == 3
    assert len(first.tasks) == 4


def test_delete_project_cascades_to_its_tasks():
    after = apply(_snapshot(), DeleteProject("p1"))

    assert [p.id for p in after.projects] == ["p2"]
    assert [t.id for t in after.tasks] == ["t3"]


def test_save_task_replaces_in_place_or_appends():
    snapshot = _snapshot()
    edited = replace(snapshot.task("t2"), title="renamed")

    replaced = apply(snapshot, SaveTask(edited))
    appended = apply(snapshot, SaveTask(Task(id="t4", project_id="p2", title="d")))

    assert [t.id for t in replaced.tasks] == ["t1", "t2", "t3"]
    assert replaced.task("t2").title == "renamed"
    assert [t.id for t in appended.tasks] == ["t1", "t2", "t3", "t4"]


def test_unknown_ids_are_pure_no_ops():
    snapshot = _snapshot()

    assert apply(snapshot, MoveTask("missing", "DONE")) is snapshot
    assert apply(snapshot, DeleteTask("missing")) is snapshot
    assert apply(snapshot, DeleteProject("missing")) is snapshot
    assert apply(snapshot, UpdateProject(Project(id="missing", name="x"))) is snapshot
    assert apply(snapshot, SaveFile("missing", "f1", {"name": "a.md"})) is snapshot
    assert apply(snapshot, AddProject(Project(id="p1", name="dup"))) is snapshot


def test_move_task_sets_status_and_timestamp():
    after = apply(_snapshot(), MoveTask("t1", "DONE", at=123))

    moved = after.task("t1")
    assert moved.status == "DONE"
    assert moved.updated_at == 123


def test_tick_timers_only_advances_running_tasks():
    snapshot = _snapshot()
    for _ in range(7):
        snapshot = apply(snapshot, TickTimers())

    assert snapshot.task("t1").time_spent == 0
    assert snapshot.task("t2").time_spent == 7
    assert snapshot.task("t3").time_spent == 5


def test_tick_without_running_timers_returns_same_snapshot():
    snapshot = AppSnapshot(tasks=(Task(id="t", project_id="p", title="idle"),))

    assert apply(snapshot, TickTimers()) is snapshot


def test_save_file_merges_existing_and_appends_new():
    snapshot = seed_snapshot(now=1)

    edited = apply(snapshot, SaveFile("p-demo", "f-1", {"content": "changed"}, at=50))
    created = apply(snapshot, SaveFile("p-demo", "f-9", {"name": "new.md", "path": "/notes"}, at=60))

    assert edited.project("p-demo").file("f-1").content == "changed"
    assert edited.project("p-demo").file("f-1").name == "README.md"
    assert edited.project("p-demo").updated_at == 50
    new_file = created.project("p-demo").file("f-9")
    assert new_file.full_path == "/notes/new.md"


def test_delete_file_removes_entry():
    after = apply(seed_snapshot(now=1), DeleteFile("p-demo", "f-2", at=5))

    assert [f.id for f in after.project("p-demo").files] == ["f-1"]


def test_update_settings_ignores_unknown_keys():
    snapshot = AppSnapshot()

    after = apply(snapshot, UpdateSettings({"user_name": "Ana", "bogus": 1}))

    assert after.settings.user_name == "Ana"
    assert apply(snapshot, UpdateSettings({"bogus": 1})) is snapshot


def test_init_snapshot_replaces_everything():
    replacement = seed_snapshot(now=1)

    assert apply(_snapshot(), InitSnapshot(replacement)) is replacement


def test_apply_rejects_unknown_actions():
    with pytest.raises(TypeError):
        apply(AppSnapshot(), object())


def test_describe_maps_actions_to_entities():
    assert describe(AddProject(Project(id="p", name="x"))) == Mutation("project", "insert", "p")
    assert describe(DeleteFile("p", "f")) == Mutation("file", "delete", "f", "p")
    assert describe(MoveTask("t", "DONE")) == Mutation("task", "upsert", "t")
    assert describe(UpdateSettings({})) == Mutation("settings", "update")
    assert describe(InitSnapshot(AppSnapshot())) == Mutation("snapshot", "replace")


def test_store_persists_mutations_but_not_ticks():
    repo = _RecordingRepo()
    store = AppStore(_snapshot(), repo=repo)
    try:
        store.dispatch(TickTimers())
        store.dispatch(MoveTask("missing", "DONE"))
        store.flush(timeout=2)
        assert repo.writes == []

        store.dispatch(DeleteTask("t1"))
        store.flush(timeout=2)
    finally:
        store.close()

    assert len(repo.writes) == 1
    mutation, written = repo.writes[0]
    assert mutation == Mutation("task", "delete", "t1")
    assert written.task("t1") is None


def test_store_persist_flag_overrides_default():
    repo = _RecordingRepo()
    store = AppStore(AppSnapshot(), repo=repo)
    try:
        store.dispatch(InitSnapshot(seed_snapshot(now=1)), persist=True)
        store.flush(timeout=2)
    finally:
        store.close()

    assert [m.entity for m, _ in repo.writes] == ["snapshot"]


def test_timer_clock_ticks_running_tasks():
    store = AppStore(_snapshot())
    clock = TimerClock(store, interval=0.01)
    clock.start()
    try:
        deadline = threading.Event()
        for _ in range(200):
            if store.snapshot.task("t2").time_spent >= 2:
                break
            deadline.wait(0.01)
    finally:
        clock.stop()

    assert not clock.running
    assert store.snapshot.task("t2").time_spent >= 2
    assert store.snapshot.task("t1").time_spent == 0


def test_timer_clock_rejects_non_positive_interval():
    with pytest.raises(ValueError):
        TimerClock(AppStore(), interval=0)

from __future__ import annotations

import itertools

import pytest

from devcontext.dispatcher import AUDIT_MAX_ENTRIES, ToolDispatcher, parse_timestamp, resolve_status
from devcontext.errors import ToolError
from devcontext.models import AppSnapshot, KanbanColumn, Project, Task
from devcontext.persistence import seed_snapshot
from devcontext.store import AppStore


def _dispatcher(snapshot: AppSnapshot | None = None, *, strict: bool = False) -> ToolDispatcher:
    counter = itertools.count(1)
    return ToolDispatcher(
        AppStore(snapshot if snapshot is not None else seed_snapshot(now=1)),
        strict=strict,
        clock=lambda: 1000,
        id_factory=lambda prefix: f"{prefix}-new{next(counter)}",
    )


def test_parse_timestamp_accepts_seconds_millis_and_iso():
    assert parse_timestamp(1_700_000_000) == 1_700_000_000_000
    assert parse_timestamp(1_700_000_000_000) == 1_700_000_000_000
    assert parse_timestamp("1700000000") == 1_700_000_000_000
    assert parse_timestamp("2024-01-02T00:00:00Z") == 1_704_153_600_000
    assert parse_timestamp("2024-01-02") == 1_704_153_600_000
    assert parse_timestamp("next week") is None
    assert parse_timestamp(None) is None
    assert parse_timestamp(True) is None


def test_resolve_status_matches_ids_and_titles():
    project = Project(id="p", name="P", columns=(KanbanColumn("TODO", "To Do"), KanbanColumn("IN_PROGRESS", "Doing")))

    assert resolve_status(project, "TODO") == "TODO"
    assert resolve_status(project, "in progress") == "IN_PROGRESS"
    assert resolve_status(project, "doing") == "IN_PROGRESS"
    assert resolve_status(project, "Shipped") is None
    assert resolve_status(None, "anything") == "anything"


def test_create_project_with_default_board():
    dispatcher = _dispatcher(AppSnapshot())

    result = dispatcher.dispatch("MANAGE_PROJECT", {"action": "create", "name": "API", "tags": "a, b"})

    assert result == "Project 'API' created (id: p-new1)."
    project = dispatcher.store.snapshot.project("p-new1")
    assert project.tags == ("a", "b")
    assert [c.id for c in project.columns] == ["TODO", "IN_PROGRESS", "DONE"]
    assert project.created_at == 1000


def test_update_project_uses_active_project_and_validates_status():
    dispatcher = _dispatcher()

    result = dispatcher.dispatch(
        "manage_project",
        {"action": "UPDATE", "status": "paused", "columns": ["Backlog", {"id": "DONE", "title": "Done"}]},
        active_project_id="p-demo",
    )
    bad = dispatcher.dispatch("MANAGE_PROJECT", {"id": "p-demo", "status": "nope"})

    assert result == "Project 'DevContext Architecture' updated (columns, status)."
    project = dispatcher.store.snapshot.project("p-demo")
    assert project.status == "PAUSED"
    assert [c.id for c in project.columns] == ["BACKLOG", "DONE"]
    assert bad == "Error: Invalid project status 'nope'"


def test_delete_project_reports_cascaded_tasks():
    dispatcher = _dispatcher()

    result = dispatcher.dispatch("MANAGE_PROJECT", {"action": "DELETE", "id": "p-demo"})

    assert result == "Project 'DevContext Architecture' deleted with 1 task(s)."
    assert dispatcher.store.snapshot.tasks == ()


def test_create_task_in_active_project_with_title_status():
    dispatcher = _dispatcher()

    result = dispatcher.dispatch(
        "MANAGE_TASK",
        {"title": "Write docs", "status": "In Progress", "priority": "high", "subtasks": ["outline"], "dueDate": "2024-05-01"},
        active_project_id="p-demo",
    )

    assert result == "Task 'Write docs' created in 'DevContext Architecture' (id: t-new1)."
    task = dispatcher.store.snapshot.task("t-new1")
    assert task.status == "IN_PROGRESS"
    assert task.priority == "HIGH"
    assert [s.title for s in task.subtasks] == ["outline"]
    assert task.due_date == parse_timestamp("2024-05-01")


def test_create_task_with_unknown_status_lands_in_first_column():
    dispatcher = _dispatcher()

    dispatcher.dispatch("MANAGE_TASK", {"title": "x", "status": "LIMBO", "projectId": "p-demo"})

    assert dispatcher.store.snapshot.task("t-new1").status == "TODO"


def test_create_task_without_project_is_an_error():
    dispatcher = _dispatcher()

    result = dispatcher.dispatch("MANAGE_TASK", {"action": "CREATE", "title": "orphan"})

    assert result == "Error: No projectId given and no project is active"
    assert len(dispatcher.store.snapshot.tasks) == 1


def test_update_task_inferred_from_id_rejects_unknown_status():
    dispatcher = _dispatcher()

    ok = dispatcher.dispatch("MANAGE_TASK", {"id": "t-1", "status": "todo", "title": "Renamed"})
    bad = dispatcher.dispatch("MANAGE_TASK", {"id": "t-1", "status": "LIMBO"})

    assert ok == "Task 'Renamed' updated (status, title)."
    task = dispatcher.store.snapshot.task("t-1")
    assert task.status == "TODO"
    assert task.updated_at == 1000
    assert bad.startswith("Error: Unknown status 'LIMBO'")


def test_delete_unknown_task_is_an_error():
    dispatcher = _dispatcher()

    assert dispatcher.dispatch("MANAGE_TASK", {"action": "DELETE", "id": "nope"}) == "Error: Task 'nope' not found"
    assert dispatcher.dispatch("MANAGE_TASK", {"action": "DELETE", "id": "t-1"}) == "Task 'Implement OpenRouter API' deleted."


def test_strict_mode_requires_explicit_action():
    dispatcher = _dispatcher(strict=True)

    result = dispatcher.dispatch("MANAGE_TASK", {"title": "x"}, active_project_id="p-demo")

    assert result.startswith("Error: Missing 'action'")


def test_inference_needs_id_or_creation_field():
    dispatcher = _dispatcher()

    with pytest.raises(ToolError):
        dispatcher.infer_action({}, "title")
    with pytest.raises(ToolError):
        dispatcher.infer_action({"action": "archive"}, "title")
    assert dispatcher.infer_action({"id": "t", "title": "x"}, "title") == "UPDATE"


def test_batch_create_skips_unresolvable_items():
    dispatcher = _dispatcher()

    result = dispatcher.dispatch(
        "BATCH_CREATE_TASKS",
        {"tasks": [{"title": "a"}, {"title": "b", "projectId": "ghost"}, {"title": " "}, "junk"]},
        active_project_id="p-demo",
    )

    assert result == "Created 1 task(s). Skipped 3 without a resolvable project or title."
    assert [t.title for t in dispatcher.store.snapshot.tasks] == ["Implement OpenRouter API", "a"]


def test_manage_file_creates_updates_and_deletes():
    dispatcher = _dispatcher()

    created = dispatcher.dispatch(
        "MANAGE_FILE", {"name": "docs/api/auth.md", "content": "# Auth"}, active_project_id="p-demo"
    )
    updated = dispatcher.dispatch(
        "MANAGE_DOC", {"name": "docs/api/auth.md", "content": "# Auth v2"}, active_project_id="p-demo"
    )

    assert created == "File '/docs/api/auth.md' created in 'DevContext Architecture'."
    assert updated == "File '/docs/api/auth.md' updated in 'DevContext Architecture'."
    entry = dispatcher.store.snapshot.project("p-demo").file("f-new1")
    assert entry.content == "# Auth v2"
    assert entry.type == "md"

    deleted = dispatcher.dispatch("MANAGE_FILE", {"action": "DELETE", "id": "f-new1"}, active_project_id="p-demo")
    assert deleted == "File '/docs/api/auth.md' deleted."
    assert dispatcher.store.snapshot.project("p-demo").file("f-new1") is None


def test_manage_file_requires_active_project():
    dispatcher = _dispatcher()

    result = dispatcher.dispatch("MANAGE_FILE", {"name": "a.md"})

    assert result.startswith("Error: Open a project first")


def test_unknown_tool_and_non_dict_args_are_reported():
    dispatcher = _dispatcher()

    assert dispatcher.dispatch("LAUNCH_ROCKET", {}) == "Error: Unknown tool: LAUNCH_ROCKET"
    assert dispatcher.dispatch("MANAGE_TASK", ["x"]).startswith("Error: Cannot infer action")


def test_audit_log_is_capped():
    dispatcher = _dispatcher()

    for _ in range(AUDIT_MAX_ENTRIES + 5):
        dispatcher.dispatch("MANAGE_TASK", {"action": "DELETE", "id": "missing"})

    assert len(dispatcher.audit_log) == AUDIT_MAX_ENTRIES
    assert "MANAGE_TASK" in dispatcher.audit_log[-1]
    assert dispatcher.audit_log[-1].endswith("-> Error: Task 'missing' not found")


def test_subtasks_given_as_text_become_one_entry_per_line():
    dispatcher = _dispatcher()

    dispatcher.dispatch("MANAGE_TASK", {"title": "T", "subtasks": "Write docs"}, active_project_id="p-demo")
    dispatcher.dispatch("MANAGE_TASK", {"id": "t-1", "subtasks": "Outline\nDraft\n"})
    bad = dispatcher.dispatch("MANAGE_TASK", {"id": "t-1", "subtasks": {"title": "nested"}})

    assert [s.title for s in dispatcher.store.snapshot.task("t-new1").subtasks] == ["Write docs"]
    assert [s.title for s in dispatcher.store.snapshot.task("t-1").subtasks] == ["Outline", "Draft"]
    assert bad == "Error: 'subtasks' must be a list of titles or subtask objects"


def test_timer_flag_strings_are_parsed():
    dispatcher = _dispatcher()

    dispatcher.dispatch("MANAGE_TASK", {"id": "t-1", "isTimerRunning": "true"})
    assert dispatcher.store.snapshot.task("t-1").is_timer_running is True

    dispatcher.dispatch("MANAGE_TASK", {"id": "t-1", "isTimerRunning": "false"})
    assert dispatcher.store.snapshot.task("t-1").is_timer_running is False


def test_renaming_file_by_id_keeps_its_folder():
    dispatcher = _dispatcher()

    result = dispatcher.dispatch(
        "MANAGE_FILE", {"id": "f-2", "name": "roadmap.md", "content": "new"}, active_project_id="p-demo"
    )

    entry = dispatcher.store.snapshot.project("p-demo").file("f-2")
    assert result == "File '/docs/roadmap.md' updated in 'DevContext Architecture'."
    assert (entry.path, entry.name, entry.content) == ("/docs", "roadmap.md", "new")


def test_file_moves_only_with_slash_name_or_explicit_path():
    dispatcher = _dispatcher()

    dispatcher.dispatch("MANAGE_FILE", {"id": "f-2", "path": "guides"}, active_project_id="p-demo")
    assert dispatcher.store.snapshot.project("p-demo").file("f-2").path == "/guides"

    dispatcher.dispatch("MANAGE_FILE", {"id": "f-2", "name": "spec/features.md"}, active_project_id="p-demo")
    entry = dispatcher.store.snapshot.project("p-demo").file("f-2")
    assert (entry.path, entry.name) == ("/spec", "features.md")

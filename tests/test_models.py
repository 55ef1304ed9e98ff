from __future__ import annotations

from devcontext.models import (
    DEFAULT_COLUMNS,
    AppSettings,
    AppSnapshot,
    DocFile,
    Project,
    Subtask,
    Task,
    build_subtasks,
    file_type_for,
    parse_bool,
    split_file_name,
)


def test_split_file_name_handles_nested_and_plain_names():
    assert split_file_name("docs/api/auth.md") == ("/docs/api", "auth.md")
    assert split_file_name("README.md") == ("/", "README.md")
    assert split_file_name("/notes//todo.txt") == ("/notes", "todo.txt")
    assert split_file_name("") == ("/", "untitled.md")


def test_file_type_falls_back_to_markdown():
    assert file_type_for("schema.json") == "json"
    assert file_type_for("notes.TXT") == "txt"
    assert file_type_for("diagram.png") == "md"
    assert file_type_for("Makefile") == "md"


def test_doc_file_full_path():
    assert DocFile(id="f", name="a.md").full_path == "/a.md"
    assert DocFile(id="f", name="a.md", path="/docs").full_path == "/docs/a.md"


def test_project_from_dict_defaults_columns_and_file_paths():
    project = Project.from_dict(
        {"id": "p1", "name": "Legacy", "files": [{"id": "f1", "name": "x.md", "content": "hi"}]}
    )

    assert project.columns == DEFAULT_COLUMNS
    assert project.files[0].path == "/"
    assert project.status == "ACTIVE"


def test_task_round_trip_keeps_camel_case_keys():
    task = Task(
        id="t1",
        project_id="p1",
        title="Ship",
        subtasks=(Subtask(id="s1", title="tests", completed=True),),
        due_date=1_700_000_000_000,
        time_spent=42,
        is_timer_running=True,
    )

    data = task.to_dict()

    assert data["projectId"] == "p1"
    assert data["dueDate"] == 1_700_000_000_000
    assert data["isTimerRunning"] is True
    assert "startDate" not in data
    assert Task.from_dict(data) == task


def test_settings_merge_onto_defaults_and_accept_legacy_keys():
    settings = AppSettings.from_dict(
        {"openRouterKey": "sk-1", "supabaseUrl": "postgresql://db", "language": "xx"}
    )

    assert settings.openrouter_key == "sk-1"
    assert settings.remote_url == "postgresql://db"
    assert settings.language == "en"
    assert settings.user_name == "Developer"
    assert settings.default_model == AppSettings().default_model


def test_snapshot_from_dict_tolerates_missing_sections():
    snapshot = AppSnapshot.from_dict({"settings": {"userName": "Ana"}})

    assert snapshot.projects == ()
    assert snapshot.tasks == ()
    assert snapshot.settings.user_name == "Ana"


def test_build_subtasks_accepts_strings_and_mappings():
    subtasks = build_subtasks(["Write docs", "  ", {"title": "Review", "completed": True}])

    assert [s.title for s in subtasks] == ["Write docs", "Review"]
    assert [s.completed for s in subtasks] == [False, True]
    assert all(s.id for s in subtasks)


def test_from_dict_skips_badly_shaped_nested_values():
    snapshot = AppSnapshot.from_dict(
        {
            "projects": [{"id": "p", "tags": 5, "columns": "TODO", "files": {"id": "f"}}],
            "tasks": [
                {"id": "t", "tags": 5, "subtasks": [None, 3, "Draft", {"title": "Review"}], "timeSpent": 1e400},
                {"id": "u", "tags": ["a", None, {"x": 1}, 2], "subtasks": {"title": "x"}},
            ],
            "settings": ["not", "a", "mapping"],
        }
    )

    project = snapshot.project("p")
    assert project.tags == ()
    assert project.columns == DEFAULT_COLUMNS
    assert project.files == ()
    task = snapshot.task("t")
    assert task.tags == ()
    assert [s.title for s in task.subtasks] == ["Draft", "Review"]
    assert task.time_spent == 0
    assert snapshot.task("u").tags == ("a", "2")
    assert snapshot.task("u").subtasks == ()
    assert snapshot.settings == AppSettings()


def test_flags_read_false_strings_as_false():
    assert parse_bool("false") is False
    assert parse_bool(" No ") is False
    assert parse_bool("0") is False
    assert parse_bool("true") is True
    assert parse_bool(1) is True
    task = Task.from_dict({"id": "t", "isTimerRunning": "false", "subtasks": [{"title": "s", "completed": "0"}]})
    assert task.is_timer_running is False
    assert task.subtasks[0].completed is False

#!/usr/bin/env python3

# Copyright (c) 2025 James Baker VA7ODR
#
# Permission is hereby granted, free of charge, to any person obtaining a copy of this software
# and associated documentation files (the “Software”), to deal in the Software without
# restriction, including without limitation the rights to use, copy, modify, merge, publish,
# distribute, sublicense, and/or sell copies of the Software, and to permit persons to whom the
# Software is furnished to do so, subject to the following conditions:
#
# The above copyright notice and this permission notice shall be included in all copies or
# substantial portions of the Software.
#
# THE SOFTWARE IS PROVIDED “AS IS”, WITHOUT WARRANTY OF ANY KIND, EXPRESS OR
# IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF MERCHANTABILITY,
# FITNESS FOR A PARTICULAR PURPOSE AND NONINFRINGEMENT. IN NO EVENT SHALL
# THE AUTHORS OR COPYRIGHT HOLDERS BE LIABLE FOR ANY CLAIM, DAMAGES OR
# OTHER LIABILITY, WHETHER IN AN ACTION OF CONTRACT, TORT OR OTHERWISE,
# ARISING FROM, OUT OF OR IN CONNECTION WITH THE SOFTWARE OR THE USE OR
# OTHER DEALINGS IN THE SOFTWARE.

from __future__ import annotations

import logging
import re
import tempfile
import time
from dataclasses import dataclass, replace
from datetime import date, datetime
from pathlib import Path
from typing import Any, Callable, Dict, Generator, List, Optional, Tuple

import gradio as gr

import devcontext.config as devcontext_config
from devcontext.assistant import INITIAL_GREETING, MISSING_GROQ_KEY_MESSAGE, ChatAssistant
from devcontext.context import CONTEXT_FORMATS, generate_project_context
from devcontext.dispatcher import ToolDispatcher, parse_timestamp, resolve_status
from devcontext.errors import DevContextError
from devcontext.github import GitHubClient, parse_repo_slug, tree_to_doc_files
from devcontext.model_engine import OpenRouterEngine
from devcontext.models import (
    PRIORITIES,
    PROJECT_STATUSES,
    AppSnapshot,
    KanbanColumn,
    Project,
    Subtask,
    Task,
    file_type_for,
    new_id,
    now_ms,
    split_file_name,
)
from devcontext.persistence import SnapshotRepo, export_snapshot, import_snapshot, make_repo
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
    TimerClock,
    UpdateProject,
    UpdateSettings,
)
from devcontext.transcription import GroqTranscriber
from devcontext.ui_utils import NullContainer, component_factory, dropdown_update, safe_component
from devcontext.views import (
    doc_choices,
    format_duration,
    render_calendar,
    render_dashboard,
    render_docs_tree,
    render_kanban,
    shift_month,
    task_rows,
)


devcontext_config.reload_from_environment()

_safe_component = safe_component
_component_factory = component_factory

log = logging.getLogger("devcontext.app")


@dataclass
class AppDependencies:
    repo: SnapshotRepo
    store: AppStore
    engine: OpenRouterEngine
    dispatcher: ToolDispatcher
    assistant: ChatAssistant
    transcriber: GroqTranscriber
    github_factory: Callable[[Optional[str]], GitHubClient]
    clock: TimerClock


store: AppStore
engine: OpenRouterEngine
dispatcher: ToolDispatcher
assistant: ChatAssistant
transcriber: GroqTranscriber
github_factory: Callable[[Optional[str]], GitHubClient]
clock: TimerClock
_dependencies: AppDependencies | None = None


def build_dependencies(
    *,
    storage: str | None = None,
    base_dir: Path | None = None,
    engine_factory: Optional[Callable[[], OpenRouterEngine]] = None,
    transcriber_factory: Optional[Callable[[], GroqTranscriber]] = None,
    github_client_factory: Optional[Callable[[Optional[str]], GitHubClient]] = None,
    start_clock: bool = False,
) -> AppDependencies:
    repo = make_repo(storage=storage, base_dir=base_dir)
    app_store = AppStore(repo.load(), repo=repo)
    engine_instance = engine_factory() if engine_factory else OpenRouterEngine()
    tool_dispatcher = ToolDispatcher(app_store)
    timer = TimerClock(app_store, interval=devcontext_config.TIMER_INTERVAL)
    if start_clock:
        timer.start()
    return AppDependencies(
        repo=repo,
        store=app_store,
        engine=engine_instance,
        dispatcher=tool_dispatcher,
        assistant=ChatAssistant(app_store, engine_instance, tool_dispatcher),
        transcriber=transcriber_factory() if transcriber_factory else GroqTranscriber(),
        github_factory=github_client_factory or (lambda token: GitHubClient(token)),
        clock=timer,
    )


def get_dependencies() -> AppDependencies:
    if _dependencies is None:
        raise RuntimeError("App dependencies have not been configured")
    return _dependencies


def configure_dependencies(deps: AppDependencies) -> AppDependencies:
    global store, engine, dispatcher, assistant, transcriber, github_factory, clock, _dependencies
    previous = _dependencies
    if previous is not None and previous is not deps:
        previous.clock.stop()
        previous.store.close()
    _dependencies = deps
    store = deps.store
    engine = deps.engine
    dispatcher = deps.dispatcher
    assistant = deps.assistant
    transcriber = deps.transcriber
    github_factory = deps.github_factory
    clock = deps.clock
    return deps


configure_dependencies(build_dependencies())


# ---------------------------------------------------------------------------
# Per-session state and the event log
# ---------------------------------------------------------------------------

_LOG_MAX_ENTRIES = 200
_LOG_DISPLAY_TAIL = 80
PENDING_TEXT = "_Thinking…_"


def _append_event_log(state: Dict[str, Any], message: str) -> List[str]:
    entries = list(state.get("event_log", []))
    timestamp = time.strftime("%H:%M:%S")
    entries.append(f"[{timestamp}] {message}")
    if len(entries) > _LOG_MAX_ENTRIES:
        entries = entries[-_LOG_MAX_ENTRIES:]
    state["event_log"] = entries
    return entries


def _event_log_text(state: Dict[str, Any]) -> str:
    entries = state.get("event_log", [])
    if not isinstance(entries, list):
        return ""
    return "\n".join(entries[-_LOG_DISPLAY_TAIL:])


def _audit_log_text() -> str:
    return "\n".join(dispatcher.audit_log[-_LOG_DISPLAY_TAIL:])


def _initial_state() -> Dict[str, Any]:
    today = date.today()
    state: Dict[str, Any] = {
        "active_project_id": None,
        "history": [{"role": "assistant", "content": INITIAL_GREETING}],
        "event_log": [],
        "show_archived": False,
        "calendar_year": today.year,
        "calendar_month": today.month,
    }
    _append_event_log(state, "Session initialized.")
    return state


def _active_project(state: Dict[str, Any]) -> Optional[Project]:
    return store.snapshot.project(state.get("active_project_id"))


def _history_for_display(state: Dict[str, Any]) -> List[Dict[str, Any]]:
    return [dict(entry) for entry in state.get("history", [])]


# ---------------------------------------------------------------------------
# View refresh
# ---------------------------------------------------------------------------

def _project_choices(snapshot: AppSnapshot) -> List[Tuple[str, str]]:
    return [(f"{p.name} [{p.status}]", p.id) for p in snapshot.projects]


def _task_choices(snapshot: AppSnapshot, project_id: Optional[str]) -> List[Tuple[str, str]]:
    return [(t.title, t.id) for t in snapshot.tasks_for(project_id)]


def _column_choices(project: Optional[Project]) -> List[Tuple[str, str]]:
    if project is None:
        return []
    return [(c.title, c.id) for c in project.columns]


def _workspace_outputs(state: Dict[str, Any]) -> Tuple[Any, ...]:
    """Values for every panel that renders the shared snapshot."""

    snapshot = store.snapshot
    project = _active_project(state)
    if project is None and state.get("active_project_id"):
        state["active_project_id"] = None
    project_id = project.id if project else None
    tasks = snapshot.tasks_for(project_id)
    if project is not None:
        kanban = f"## {project.name}\n{project.description}\n\n" + render_kanban(project, tasks)
        docs = render_docs_tree(project)
    else:
        kanban = "_Select a project to see its board._"
        docs = "_Select a project to browse its documentation._"
    calendar_tasks = tasks if project is not None else list(snapshot.tasks)
    return (
        render_dashboard(snapshot, show_archived=bool(state.get("show_archived"))),
        dropdown_update(_project_choices(snapshot), project_id),
        kanban,
        task_rows(tasks),
        dropdown_update(_task_choices(snapshot, project_id)),
        gr.update(choices=_column_choices(project)),
        docs,
        dropdown_update(doc_choices(project)),
        render_calendar(state["calendar_year"], state["calendar_month"], calendar_tasks),
        _event_log_text(state),
        _audit_log_text(),
    )


# ---------------------------------------------------------------------------
# Chat
# ---------------------------------------------------------------------------

def on_chat(message: str, state: Dict[str, Any]) -> Generator[Tuple[Any, ...], None, None]:
    text = (message or "").strip()
    if not text:
        yield state, _history_for_display(state), "", _event_log_text(state)
        return

    history = list(state.get("history", []))
    history.append({"role": "user", "content": text})
    state["history"] = history
    _append_event_log(state, "User input received.")
    pending = history + [{"role": "assistant", "content": PENDING_TEXT}]
    yield state, pending, "", _event_log_text(state)

    turn = assistant.respond(history, active_project_id=state.get("active_project_id"))
    if turn.meta:
        _append_event_log(
            state,
            f"Model {turn.meta.get('model')} answered in {turn.meta.get('elapsed_sec')}s.",
        )
    if turn.tool:
        _append_event_log(state, f"Tool {turn.tool}: {turn.result}")
    state["history"] = history + [{"role": "assistant", "content": turn.reply}]
    yield state, _history_for_display(state), "", _event_log_text(state)


def on_transcribe(audio_path: Optional[str], current_text: str, state: Dict[str, Any]):
    """Append the transcript of ``audio_path`` to the message box."""

    if not audio_path:
        return state, _history_for_display(state), current_text, _event_log_text(state)
    api_key = store.snapshot.settings.groq_api_key
    if not api_key:
        state["history"] = list(state.get("history", [])) + [
            {"role": "assistant", "content": MISSING_GROQ_KEY_MESSAGE}
        ]
        return state, _history_for_display(state), current_text, _event_log_text(state)
    try:
        transcript = transcriber.transcribe(audio_path, api_key=api_key)
    except (DevContextError, OSError) as exc:
        _append_event_log(state, f"Transcription failed: {exc}")
        return state, _history_for_display(state), current_text, _event_log_text(state)
    _append_event_log(state, f"Transcribed {len(transcript)} characters.")
    combined = f"{current_text} {transcript}".strip() if current_text else transcript
    return state, _history_for_display(state), combined, _event_log_text(state)


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------

def _split_tags(text: str) -> Tuple[str, ...]:
    return tuple(tag.strip() for tag in (text or "").split(",") if tag.strip())


def _parse_columns(text: str, existing: Tuple[KanbanColumn, ...]) -> Tuple[KanbanColumn, ...]:
    """One column per line, ``ID: Title`` or just a title.

    Columns whose id or title is already on the board keep their id and
    colour.
    """

    by_key = {c.id: c for c in existing}
    by_key.update({c.title.lower(): c for c in existing})
    columns: List[KanbanColumn] = []
    for line in (text or "").splitlines():
        line = line.strip()
        if not line:
            continue
        if ":" in line:
            column_id, title = (part.strip() for part in line.split(":", 1))
        else:
            column_id, title = "", line
        match = by_key.get(column_id) or by_key.get(title.lower())
        if match is not None:
            columns.append(replace(match, title=title or match.title))
            continue
        column_id = column_id or re.sub(r"\W+", "_", title.upper()).strip("_") or new_id("col")
        columns.append(KanbanColumn(id=column_id, title=title or column_id))
    return tuple(columns)


def _format_columns(project: Project) -> str:
    return "\n".join(f"{c.id}: {c.title}" for c in project.columns)


def _project_form_values(state: Dict[str, Any]) -> Tuple[Any, ...]:
    project = _active_project(state)
    if project is None:
        return "", "", "ACTIVE", "", "", "", "", ""
    return (
        project.name,
        project.description,
        project.status,
        ", ".join(project.tags),
        _format_columns(project),
        project.github_repo or "",
        project.github_branch or "",
        project.github_token or "",
    )


def on_select_project(project_id: Optional[str], state: Dict[str, Any]):
    project = store.snapshot.project(project_id)
    state["active_project_id"] = project.id if project else None
    if project is not None:
        _append_event_log(state, f"Opened project '{project.name}'.")
    return state, _event_log_text(state)


def on_create_project(name: str, description: str, tags: str, state: Dict[str, Any]):
    title = (name or "").strip()
    if not title:
        _append_event_log(state, "Project name is required.")
        return state, _event_log_text(state)
    at = now_ms()
    project = Project(
        id=new_id("p"),
        name=title,
        description=(description or "").strip(),
        tags=_split_tags(tags),
        created_at=at,
        updated_at=at,
    )
    store.dispatch(AddProject(project))
    state["active_project_id"] = project.id
    _append_event_log(state, f"Created project '{project.name}'.")
    return state, _event_log_text(state)


def on_save_project_settings(
    name: str,
    description: str,
    status: str,
    tags: str,
    columns_text: str,
    github_repo: str,
    github_branch: str,
    github_token: str,
    state: Dict[str, Any],
):
    project = _active_project(state)
    if project is None:
        _append_event_log(state, "No active project to update.")
        return state, _event_log_text(state)
    columns = _parse_columns(columns_text, project.columns) or project.columns
    updated = replace(
        project,
        name=(name or "").strip() or project.name,
        description=description or "",
        status=status if status in PROJECT_STATUSES else project.status,
        tags=_split_tags(tags),
        columns=columns,
        github_repo=(github_repo or "").strip() or None,
        github_branch=(github_branch or "").strip() or None,
        github_token=(github_token or "").strip() or None,
        updated_at=now_ms(),
    )
    store.dispatch(UpdateProject(updated))
    _append_event_log(state, f"Saved settings for '{updated.name}'.")
    return state, _event_log_text(state)


def on_delete_project(state: Dict[str, Any]):
    project = _active_project(state)
    if project is None:
        _append_event_log(state, "No active project to delete.")
        return state, _event_log_text(state)
    store.dispatch(DeleteProject(project.id))
    state["active_project_id"] = None
    _append_event_log(state, f"Deleted project '{project.name}' and its tasks.")
    return state, _event_log_text(state)


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------

_SUBTASK_RE = re.compile(r"^\s*(?:[-*]\s*)?(?:\[(?P<mark>[ xX])\]\s*)?(?P<title>.+?)\s*$")


def _parse_subtasks(text: str, existing: Tuple[Subtask, ...] = ()) -> Tuple[Subtask, ...]:
    """``[x] title`` lines; titles already present keep their id."""

    known = {s.title: s for s in existing}
    subtasks: List[Subtask] = []
    for line in (text or "").splitlines():
        match = _SUBTASK_RE.match(line)
        if not match or not line.strip():
            continue
        title = match.group("title")
        completed = (match.group("mark") or " ").lower() == "x"
        previous = known.get(title)
        subtasks.append(Subtask(id=previous.id if previous else new_id("st"), title=title, completed=completed))
    return tuple(subtasks)


def _parse_due_date(text: str) -> Optional[int]:
    """``YYYY-MM-DD`` is read as local midnight; anything else as a timestamp."""

    value = (text or "").strip()
    if not value:
        return None
    try:
        return int(datetime.strptime(value, "%Y-%m-%d").timestamp() * 1000)
    except ValueError:
        return parse_timestamp(value)


def _format_subtasks(task: Task) -> str:
    return "\n".join(f"[{'x' if s.completed else ' '}] {s.title}" for s in task.subtasks)


def _task_timer_value(task_id: Optional[str]) -> str:
    task = store.snapshot.task(task_id)
    if task is None:
        return format_duration(0)
    return format_duration(task.time_spent) + (" (running)" if task.is_timer_running else "")


def _task_form_values(task_id: Optional[str]) -> Tuple[Any, ...]:
    task = store.snapshot.task(task_id)
    if task is None:
        return "", "", None, "MEDIUM", "", "", "", format_duration(0)
    due = datetime.fromtimestamp(task.due_date / 1000).strftime("%Y-%m-%d") if task.due_date else ""
    timer = _task_timer_value(task_id)
    return (
        task.title,
        task.description,
        task.status,
        task.priority,
        due,
        ", ".join(task.tags),
        _format_subtasks(task),
        timer,
    )


def on_save_task(
    task_id: Optional[str],
    title: str,
    description: str,
    status: Optional[str],
    priority: str,
    due_date: str,
    tags: str,
    subtasks_text: str,
    state: Dict[str, Any],
):
    project = _active_project(state)
    if project is None:
        _append_event_log(state, "Select a project before saving tasks.")
        return state, _event_log_text(state)
    if not (title or "").strip():
        _append_event_log(state, "Task title is required.")
        return state, _event_log_text(state)
    existing = store.snapshot.task(task_id)
    resolved = resolve_status(project, status) or (existing.status if existing else project.columns[0].id)
    fields = dict(
        title=title.strip(),
        description=description or "",
        status=resolved,
        priority=priority if priority in PRIORITIES else "MEDIUM",
        due_date=_parse_due_date(due_date),
        tags=_split_tags(tags),
        subtasks=_parse_subtasks(subtasks_text, existing.subtasks if existing else ()),
        updated_at=now_ms(),
    )
    if existing is not None:
        task = replace(existing, **fields)
    else:
        task = Task(id=new_id("t"), project_id=project.id, created_at=fields["updated_at"], **fields)
    store.dispatch(SaveTask(task))
    _append_event_log(state, f"Saved task '{task.title}'.")
    return state, _event_log_text(state)


def on_move_task(task_id: Optional[str], status: Optional[str], state: Dict[str, Any]):
    task = store.snapshot.task(task_id)
    project = _active_project(state)
    column = resolve_status(project, status) if project else None
    if task is None or column is None:
        _append_event_log(state, "Pick a task and a column to move it.")
        return state, _event_log_text(state)
    store.dispatch(MoveTask(task.id, column))
    _append_event_log(state, f"Moved '{task.title}' to {column}.")
    return state, _event_log_text(state)


def on_delete_task(task_id: Optional[str], state: Dict[str, Any]):
    task = store.snapshot.task(task_id)
    if task is None:
        _append_event_log(state, "No task selected.")
        return state, _event_log_text(state)
    store.dispatch(DeleteTask(task.id))
    _append_event_log(state, f"Deleted task '{task.title}'.")
    return state, _event_log_text(state)


def on_toggle_timer(task_id: Optional[str], state: Dict[str, Any]):
    task = store.snapshot.task(task_id)
    if task is None:
        _append_event_log(state, "No task selected.")
        return state, _event_log_text(state)
    running = not task.is_timer_running
    store.dispatch(SaveTask(replace(task, is_timer_running=running, updated_at=now_ms())))
    verb = "Started" if running else "Stopped"
    _append_event_log(state, f"{verb} timer for '{task.title}' at {format_duration(task.time_spent)}.")
    return state, _event_log_text(state)


# ---------------------------------------------------------------------------
# Documentation and GitHub
# ---------------------------------------------------------------------------

def on_open_doc(file_id: Optional[str], state: Dict[str, Any]):
    project = _active_project(state)
    entry = project.file(file_id) if project and file_id else None
    if entry is None:
        return "", "", ""
    content = entry.content
    if entry.source == "github" and not content and project.github_repo:
        try:
            owner, repo = parse_repo_slug(project.github_repo)
            with github_factory(project.github_token) as client:
                content = client.fetch_file_content(
                    owner, repo, entry.full_path.lstrip("/"), project.github_branch or "main"
                )
        except (DevContextError, ValueError) as exc:
            _append_event_log(state, f"GitHub file fetch failed: {exc}")
        else:
            store.dispatch(SaveFile(project.id, entry.id, {"content": content}))
    name = entry.full_path.lstrip("/")
    return name, content, content


def on_save_doc(file_id: Optional[str], name: str, content: str, state: Dict[str, Any]):
    project = _active_project(state)
    if project is None:
        _append_event_log(state, "Select a project before saving documentation.")
        return state, _event_log_text(state)
    if not (name or "").strip():
        _append_event_log(state, "File name is required.")
        return state, _event_log_text(state)
    folder, base = split_file_name(name)
    existing = project.file(file_id) if file_id else None
    if existing is None:
        existing = next((f for f in project.files if f.name == base and f.path == folder), None)
    target_id = existing.id if existing is not None else new_id("f")
    fields = {"name": base, "path": folder, "type": file_type_for(base), "content": content or ""}
    store.dispatch(SaveFile(project.id, target_id, fields))
    _append_event_log(state, f"Saved {folder.rstrip('/')}/{base}.")
    return state, _event_log_text(state)


def on_delete_doc(file_id: Optional[str], state: Dict[str, Any]):
    project = _active_project(state)
    entry = project.file(file_id) if project and file_id else None
    if entry is None:
        _append_event_log(state, "No document selected.")
        return state, _event_log_text(state)
    store.dispatch(DeleteFile(project.id, entry.id))
    _append_event_log(state, f"Deleted {entry.full_path}.")
    return state, _event_log_text(state)


def on_github_sync(state: Dict[str, Any]):
    """Mirror the repository tree into the project's documentation list."""

    project = _active_project(state)
    if project is None or not project.github_repo:
        _append_event_log(state, "Link a GitHub repository in the project settings first.")
        return state, "", _event_log_text(state)
    branch = project.github_branch or "main"
    try:
        owner, repo = parse_repo_slug(project.github_repo)
        with github_factory(project.github_token) as client:
            entries = client.fetch_tree(owner, repo, branch)
            commits = client.fetch_commits(owner, repo)
    except (DevContextError, ValueError) as exc:
        _append_event_log(state, f"GitHub sync failed: {exc}")
        return state, "", _event_log_text(state)

    known = {f.id: f for f in project.files}
    for entry in tree_to_doc_files(entries):
        previous = known.get(entry.id)
        if previous is not None and previous.sha == entry.sha:
            continue
        fields = entry.to_dict()
        fields.pop("id")
        store.dispatch(SaveFile(project.id, entry.id, fields))
    commit_lines = [
        f"- `{c['sha'][:7]}` {c['message']} ({c['author']}, {c['date'][:10]})" for c in commits
    ]
    _append_event_log(state, f"Synced {len(entries)} GitHub entries from {owner}/{repo}@{branch}.")
    return state, "\n".join(commit_lines) or "_No commits found._", _event_log_text(state)


def on_export_context(fmt: str, state: Dict[str, Any]) -> str:
    project = _active_project(state)
    if project is None:
        return "Select a project first."
    return generate_project_context(project, store.snapshot.tasks_for(project.id), fmt)


# ---------------------------------------------------------------------------
# Calendar and dashboard
# ---------------------------------------------------------------------------

def on_calendar_shift(delta: int, state: Dict[str, Any]):
    year, month = shift_month(state["calendar_year"], state["calendar_month"], delta)
    state["calendar_year"], state["calendar_month"] = year, month
    return state


def on_toggle_archived(show: bool, state: Dict[str, Any]):
    state["show_archived"] = bool(show)
    return state


# ---------------------------------------------------------------------------
# Settings, import and export
# ---------------------------------------------------------------------------

def _settings_form_values() -> Tuple[Any, ...]:
    settings = store.snapshot.settings
    models = [(m.name, m.id) for m in settings.available_models] or [settings.default_model]
    return (
        settings.openrouter_key,
        settings.groq_api_key,
        gr.update(choices=models, value=settings.default_model),
        settings.user_name,
        settings.custom_system_prompt,
        settings.remote_url,
        settings.remote_key,
        settings.remote_schema,
        settings.language,
    )


def on_save_settings(
    openrouter_key: str,
    groq_api_key: str,
    default_model: str,
    user_name: str,
    custom_system_prompt: str,
    remote_url: str,
    remote_key: str,
    remote_schema: str,
    language: str,
    state: Dict[str, Any],
):
    before = store.snapshot.settings
    store.dispatch(
        UpdateSettings(
            {
                "openrouter_key": (openrouter_key or "").strip(),
                "groq_api_key": (groq_api_key or "").strip(),
                "default_model": default_model or before.default_model,
                "user_name": (user_name or "").strip() or before.user_name,
                "custom_system_prompt": custom_system_prompt or before.custom_system_prompt,
                "remote_url": (remote_url or "").strip(),
                "remote_key": remote_key or "",
                "remote_schema": (remote_schema or "").strip() or "public",
                "language": language or before.language,
            }
        )
    )
    after = store.snapshot.settings
    message = "Settings saved."
    if (after.remote_url, after.remote_key, after.remote_schema) != (
        before.remote_url,
        before.remote_key,
        before.remote_schema,
    ):
        message += " Restart the app to switch the database connection."
    _append_event_log(state, message)
    return state, _event_log_text(state)


def on_refresh_models(state: Dict[str, Any]):
    models = engine.fetch_models()
    if not models:
        _append_event_log(state, "Could not fetch the OpenRouter model list.")
        return state, gr.update(), _event_log_text(state)
    store.dispatch(UpdateSettings({"available_models": models}))
    current = store.snapshot.settings.default_model
    _append_event_log(state, f"Loaded {len(models)} models from OpenRouter.")
    return state, gr.update(choices=[(m.name, m.id) for m in models], value=current), _event_log_text(state)


def on_export_snapshot(state: Dict[str, Any]):
    target = Path(tempfile.mkdtemp(prefix="devcontext-")) / f"devcontext-backup-{date.today().isoformat()}.json"
    target.write_text(export_snapshot(store.snapshot), encoding="utf-8")
    _append_event_log(state, f"Exported snapshot to {target.name}.")
    return state, str(target), _event_log_text(state)


def on_import_snapshot(upload: Any, state: Dict[str, Any]):
    if not upload:
        _append_event_log(state, "Choose a backup file to import.")
        return state, _event_log_text(state)
    path = Path(getattr(upload, "name", upload))
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        _append_event_log(state, f"Import failed: {exc}")
        return state, _event_log_text(state)
    snapshot = import_snapshot(text)
    if snapshot is None:
        _append_event_log(state, "Import failed: not a DevContext backup.")
        return state, _event_log_text(state)
    store.dispatch(InitSnapshot(snapshot), persist=True)
    state["active_project_id"] = None
    _append_event_log(
        state, f"Imported {len(snapshot.projects)} project(s) and {len(snapshot.tasks)} task(s)."
    )
    return state, _event_log_text(state)


# ---------------------------------------------------------------------------
# Layout
# ---------------------------------------------------------------------------

with gr.Blocks(title="DevContext") as demo:
    gr.Markdown("# DevContext")

    initial_state = _initial_state()
    state = gr.State(value=initial_state)
    Accordion = _component_factory("Accordion", NullContainer)
    Tabs = _component_factory("Tabs", NullContainer)
    Tab = _component_factory("Tab", NullContainer)

    with gr.Row():
        with gr.Column(scale=3):
            with Tabs():
                with Tab("Dashboard"):
                    archived_toggle = gr.Checkbox(label="Show archived projects", value=False)
                    dashboard_md = gr.Markdown(render_dashboard(store.snapshot))

                with Tab("Projects"):
                    project_selector = gr.Dropdown(
                        label="Active project",
                        choices=_project_choices(store.snapshot),
                        value=None,
                        interactive=True,
                    )
                    with Accordion("New project", open=False):
                        new_project_name = gr.Textbox(label="Name")
                        new_project_description = gr.Textbox(label="Description", lines=2)
                        new_project_tags = gr.Textbox(label="Tags", placeholder="react, api")
                        create_project_btn = gr.Button("Create project", variant="primary")
                    kanban_md = gr.Markdown("_Select a project to see its board._")
                    task_table = gr.Dataframe(
                        headers=["ID", "Title", "Status", "Priority", "Due", "Time"],
                        value=[],
                        interactive=False,
                    )
                    with Accordion("Task editor", open=True):
                        task_selector = gr.Dropdown(label="Task (empty = new)", choices=[], value=None, interactive=True)
                        task_title = gr.Textbox(label="Title")
                        task_description = gr.Textbox(label="Description", lines=3)
                        with gr.Row():
                            task_status = gr.Dropdown(label="Status", choices=[], value=None, interactive=True)
                            task_priority = gr.Dropdown(label="Priority", choices=list(PRIORITIES), value="MEDIUM")
                            task_due = gr.Textbox(label="Due date", placeholder="YYYY-MM-DD")
                        task_tags = gr.Textbox(label="Tags")
                        task_subtasks = gr.Textbox(label="Subtasks", lines=4, placeholder="[ ] Write tests\n[x] Draft API")
                        task_timer = gr.Markdown(format_duration(0))
                        with gr.Row():
                            save_task_btn = gr.Button("Save task", variant="primary")
                            move_task_btn = gr.Button("Move to status")
                            timer_btn = gr.Button("Start / stop timer")
                            delete_task_btn = gr.Button("Delete task", variant="stop")
                    with Accordion("Project settings", open=False):
                        ps_name = gr.Textbox(label="Name")
                        ps_description = gr.Textbox(label="Description", lines=2)
                        ps_status = gr.Dropdown(label="Status", choices=list(PROJECT_STATUSES), value="ACTIVE")
                        ps_tags = gr.Textbox(label="Tags")
                        ps_columns = gr.Textbox(label="Board columns (ID: Title per line)", lines=4)
                        ps_repo = gr.Textbox(label="GitHub repository", placeholder="owner/repo")
                        ps_branch = gr.Textbox(label="Branch", placeholder="main")
                        ps_token = gr.Textbox(label="GitHub token", type="password")
                        with gr.Row():
                            save_project_btn = gr.Button("Save project", variant="primary")
                            delete_project_btn = gr.Button("Delete project", variant="stop")
                    with Accordion("GitHub", open=False):
                        github_sync_btn = gr.Button("Sync repository tree")
                        commits_md = gr.Markdown()

                with Tab("Docs"):
                    docs_tree_md = gr.Markdown("_Select a project to browse its documentation._")
                    doc_selector = gr.Dropdown(label="Document", choices=[], value=None, interactive=True)
                    doc_name = gr.Textbox(label="Path", placeholder="docs/api.md")
                    with gr.Row():
                        doc_content = gr.Textbox(label="Content", lines=16)
                        doc_preview = gr.Markdown()
                    with gr.Row():
                        save_doc_btn = gr.Button("Save document", variant="primary")
                        delete_doc_btn = gr.Button("Delete document", variant="stop")

                with Tab("Context"):
                    context_format = gr.Radio(label="Format", choices=list(CONTEXT_FORMATS), value="MARKDOWN")
                    context_btn = gr.Button("Generate")
                    context_output = _safe_component(
                        gr.Textbox,
                        label="Project context",
                        lines=20,
                        show_copy_button=True,
                    )

                with Tab("Calendar"):
                    with gr.Row():
                        prev_month_btn = gr.Button("◀ Previous")
                        next_month_btn = gr.Button("Next ▶")
                    calendar_md = gr.Markdown()

                with Tab("Settings"):
                    openrouter_key_box = gr.Textbox(label="OpenRouter API key", type="password")
                    groq_key_box = gr.Textbox(label="Groq API key", type="password")
                    with gr.Row():
                        model_selector = gr.Dropdown(label="Model", choices=[], allow_custom_value=True)
                        refresh_models_btn = gr.Button("Refresh models")
                    user_name_box = gr.Textbox(label="Your name")
                    system_prompt_box = gr.Textbox(label="System prompt", lines=8)
                    remote_url_box = gr.Textbox(label="PostgreSQL URL")
                    remote_key_box = gr.Textbox(label="PostgreSQL password", type="password")
                    remote_schema_box = gr.Textbox(label="Schema")
                    language_box = gr.Dropdown(label="Language", choices=["en", "pt"], value="en")
                    save_settings_btn = gr.Button("Save settings", variant="primary")
                    with gr.Row():
                        export_btn = gr.Button("Export backup")
                        export_file = gr.File(label="Backup", interactive=False)
                    with gr.Row():
                        import_file = gr.File(label="Import backup", file_types=[".json"], type="filepath")
                        import_btn = gr.Button("Import")

                with Tab("Debug"):
                    event_log_box = gr.Textbox(label="Event log", lines=14, value=_event_log_text(initial_state))
                    audit_log_box = gr.Textbox(label="Tool audit log", lines=14)

        with gr.Column(scale=2):
            chat = _safe_component(
                gr.Chatbot,
                value=initial_state["history"],
                height=520,
                type="messages",
                elem_id="devcontext-chat",
            )
            user_box = gr.Textbox(label="Message", placeholder="Tell me what changed…")
            with gr.Row():
                send_btn = gr.Button("Send", variant="primary")
            audio_input = _safe_component(
                gr.Audio,
                label="Voice note",
                sources=["microphone", "upload"],
                type="filepath",
                optional_keys=("sources",),
            )
            transcribe_btn = gr.Button("Transcribe")

    workspace_outputs = [
        dashboard_md,
        project_selector,
        kanban_md,
        task_table,
        task_selector,
        task_status,
        docs_tree_md,
        doc_selector,
        calendar_md,
        event_log_box,
        audit_log_box,
    ]
    project_form = [ps_name, ps_description, ps_status, ps_tags, ps_columns, ps_repo, ps_branch, ps_token]
    task_form = [task_title, task_description, task_status, task_priority, task_due, task_tags, task_subtasks, task_timer]
    settings_form = [
        openrouter_key_box,
        groq_key_box,
        model_selector,
        user_name_box,
        system_prompt_box,
        remote_url_box,
        remote_key_box,
        remote_schema_box,
        language_box,
    ]

    demo.load(_workspace_outputs, inputs=state, outputs=workspace_outputs)
    demo.load(_settings_form_values, inputs=None, outputs=settings_form)

    for trigger in (send_btn.click, user_box.submit):
        trigger(on_chat, inputs=[user_box, state], outputs=[state, chat, user_box, event_log_box]).then(
            _workspace_outputs, inputs=state, outputs=workspace_outputs
        )

    transcribe_btn.click(
        on_transcribe,
        inputs=[audio_input, user_box, state],
        outputs=[state, chat, user_box, event_log_box],
    )

    archived_toggle.change(on_toggle_archived, inputs=[archived_toggle, state], outputs=state).then(
        _workspace_outputs, inputs=state, outputs=workspace_outputs
    )

    project_selector.input(on_select_project, inputs=[project_selector, state], outputs=[state, event_log_box]).then(
        _workspace_outputs, inputs=state, outputs=workspace_outputs
    ).then(_project_form_values, inputs=state, outputs=project_form)

    create_project_btn.click(
        on_create_project,
        inputs=[new_project_name, new_project_description, new_project_tags, state],
        outputs=[state, event_log_box],
    ).then(_workspace_outputs, inputs=state, outputs=workspace_outputs).then(
        _project_form_values, inputs=state, outputs=project_form
    )

    save_project_btn.click(
        on_save_project_settings,
        inputs=project_form + [state],
        outputs=[state, event_log_box],
    ).then(_workspace_outputs, inputs=state, outputs=workspace_outputs)

    delete_project_btn.click(on_delete_project, inputs=state, outputs=[state, event_log_box]).then(
        _workspace_outputs, inputs=state, outputs=workspace_outputs
    ).then(_project_form_values, inputs=state, outputs=project_form)

    task_selector.change(_task_form_values, inputs=task_selector, outputs=task_form)

    save_task_btn.click(
        on_save_task,
        inputs=[task_selector, task_title, task_description, task_status, task_priority, task_due, task_tags, task_subtasks, state],
        outputs=[state, event_log_box],
    ).then(_workspace_outputs, inputs=state, outputs=workspace_outputs)

    move_task_btn.click(on_move_task, inputs=[task_selector, task_status, state], outputs=[state, event_log_box]).then(
        _workspace_outputs, inputs=state, outputs=workspace_outputs
    )

    timer_btn.click(on_toggle_timer, inputs=[task_selector, state], outputs=[state, event_log_box]).then(
        _task_timer_value, inputs=task_selector, outputs=task_timer
    )

    delete_task_btn.click(on_delete_task, inputs=[task_selector, state], outputs=[state, event_log_box]).then(
        _workspace_outputs, inputs=state, outputs=workspace_outputs
    )

    doc_selector.change(on_open_doc, inputs=[doc_selector, state], outputs=[doc_name, doc_content, doc_preview])
    doc_content.change(lambda text: text, inputs=doc_content, outputs=doc_preview)

    save_doc_btn.click(
        on_save_doc,
        inputs=[doc_selector, doc_name, doc_content, state],
        outputs=[state, event_log_box],
    ).then(_workspace_outputs, inputs=state, outputs=workspace_outputs)

    delete_doc_btn.click(on_delete_doc, inputs=[doc_selector, state], outputs=[state, event_log_box]).then(
        _workspace_outputs, inputs=state, outputs=workspace_outputs
    )

    github_sync_btn.click(on_github_sync, inputs=state, outputs=[state, commits_md, event_log_box]).then(
        _workspace_outputs, inputs=state, outputs=workspace_outputs
    )

    context_btn.click(on_export_context, inputs=[context_format, state], outputs=context_output)

    prev_month_btn.click(lambda s: on_calendar_shift(-1, s), inputs=state, outputs=state).then(
        _workspace_outputs, inputs=state, outputs=workspace_outputs
    )
    next_month_btn.click(lambda s: on_calendar_shift(1, s), inputs=state, outputs=state).then(
        _workspace_outputs, inputs=state, outputs=workspace_outputs
    )

    save_settings_btn.click(
        on_save_settings,
        inputs=settings_form + [state],
        outputs=[state, event_log_box],
    ).then(_workspace_outputs, inputs=state, outputs=workspace_outputs)

    refresh_models_btn.click(on_refresh_models, inputs=state, outputs=[state, model_selector, event_log_box])

    export_btn.click(on_export_snapshot, inputs=state, outputs=[state, export_file, event_log_box])

    import_btn.click(on_import_snapshot, inputs=[import_file, state], outputs=[state, event_log_box]).then(
        _workspace_outputs, inputs=state, outputs=workspace_outputs
    ).then(_settings_form_values, inputs=None, outputs=settings_form)

    Timer = _component_factory("Timer", None)
    if Timer is not None:
        refresh_timer = Timer(5)
        refresh_timer.tick(_task_timer_value, inputs=task_selector, outputs=task_timer)


if __name__ == "__main__":
    logging.basicConfig(
        level=getattr(logging, devcontext_config.LOG_LEVEL, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    configure_dependencies(build_dependencies(start_clock=True))
    log.info("Serving DevContext with %s storage", type(get_dependencies().repo).__name__)
    demo.launch(server_name="0.0.0.0", server_port=7860, show_error=True)

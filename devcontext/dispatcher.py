"""Translate assistant tool commands into store actions.

Every tool receives the raw ``args`` object from the model (camelCase keys)
and returns a short status string for the chat transcript.  Bad arguments
and unknown ids raise ``ToolError`` inside the tool; ``ToolDispatcher``
turns every exception into an ``Error: ...`` string so nothing escapes to
the caller.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from . import config
from .errors import ToolError
from .models import (
    DEFAULT_COLUMNS,
    PRIORITIES,
    PROJECT_STATUSES,
    KanbanColumn,
    Project,
    Subtask,
    Task,
    build_subtasks,
    file_type_for,
    new_id,
    normalize_folder,
    now_ms,
    parse_bool,
    split_file_name,
)
from .store import (
    AddProject,
    AppStore,
    DeleteFile,
    DeleteProject,
    DeleteTask,
    SaveFile,
    SaveTask,
    UpdateProject,
)
from .tool_utils import ToolRegistry

AUDIT_MAX_ENTRIES = 200
ACTIONS = ("CREATE", "UPDATE", "DELETE")


def parse_timestamp(value: Any) -> Optional[int]:
    """Accept epoch milliseconds, epoch seconds or an ISO date string."""

    if value is None or value == "" or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = int(value)
        return number * 1000 if abs(number) < 10**11 else number
    text = str(value).strip()
    if text.lstrip("-").isdigit():
        return parse_timestamp(int(text))
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp() * 1000)


def _tags(value: Any) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        value = value.split(",")
    if not isinstance(value, (list, tuple)):
        raise ToolError("'tags' must be a list of strings")
    return tuple(str(tag).strip() for tag in value if str(tag).strip())


def _subtasks(value: Any) -> Tuple[Subtask, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        value = value.splitlines()
    if not isinstance(value, (list, tuple)):
        raise ToolError("'subtasks' must be a list of titles or subtask objects")
    return build_subtasks(value)


def _columns(value: Any) -> Tuple[KanbanColumn, ...]:
    if not isinstance(value, list) or not value:
        raise ToolError("'columns' must be a non-empty list")
    columns: List[KanbanColumn] = []
    for item in value:
        if isinstance(item, str):
            item = {"id": item.strip().upper().replace(" ", "_"), "title": item.strip()}
        if not isinstance(item, Mapping) or not (item.get("id") or item.get("title")):
            raise ToolError("Each column needs an 'id' or 'title'")
        if not item.get("id"):
            item = dict(item, id=str(item["title"]).strip().upper().replace(" ", "_"))
        columns.append(KanbanColumn.from_dict(item))
    return tuple(columns)


def resolve_status(project: Optional[Project], value: Any) -> Optional[str]:
    """Map a status given by id or column title onto the project's column id."""

    if value is None or value == "":
        return None
    text = str(value).strip()
    if project is None:
        return text
    for column in project.columns:
        if column.id == text:
            return column.id
    lowered = text.lower().replace("_", " ")
    for column in project.columns:
        if column.id.lower().replace("_", " ") == lowered or column.title.lower() == lowered:
            return column.id
    return None


class ToolDispatcher:
    """Executes ``MANAGE_*`` tool commands against an ``AppStore``."""

    def __init__(
        self,
        store: AppStore,
        *,
        registry: Optional[ToolRegistry] = None,
        strict: Optional[bool] = None,
        clock: Callable[[], int] = now_ms,
        id_factory: Callable[[str], str] = new_id,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.store = store
        self.strict = config.STRICT_TOOL_ACTIONS if strict is None else strict
        self._clock = clock
        self._new_id = id_factory
        self._logger = logger or logging.getLogger(__name__)
        self.audit_log: List[str] = []
        self.registry = self._register_default_tools(registry or ToolRegistry())

    def _register_default_tools(self, registry: ToolRegistry) -> ToolRegistry:
        registry.register("MANAGE_PROJECT", self.manage_project)
        registry.register("MANAGE_TASK", self.manage_task)
        registry.register("BATCH_CREATE_TASKS", self.batch_create_tasks)
        registry.register("MANAGE_FILE", self.manage_file)
        registry.alias("MANAGE_DOC", "MANAGE_FILE")
        registry.alias("MANAGE_TASKS", "BATCH_CREATE_TASKS")
        return registry

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------
    def dispatch(self, tool: str, args: Any, *, active_project_id: Optional[str] = None) -> str:
        if not isinstance(args, dict):
            args = {}
        try:
            result = str(self.registry.run(tool, args, active_project_id=active_project_id))
        except ToolError as exc:
            result = f"Error: {exc}"
        except Exception as exc:
            self._logger.exception("Tool %s failed", tool)
            result = f"Error: {exc}"
        self._audit(tool, args, result)
        return result

    def _audit(self, tool: str, args: Dict[str, Any], result: str) -> None:
        try:
            rendered = json.dumps(args, ensure_ascii=False, sort_keys=True)
        except (TypeError, ValueError):
            rendered = repr(args)
        if len(rendered) > 240:
            rendered = rendered[:239] + "…"
        timestamp = time.strftime("%H:%M:%S")
        self.audit_log.append(f"[{timestamp}] {tool} {rendered} -> {result}")
        if len(self.audit_log) > AUDIT_MAX_ENTRIES:
            del self.audit_log[: len(self.audit_log) - AUDIT_MAX_ENTRIES]
        self._logger.info("Tool %s -> %s", tool, result)

    def infer_action(self, args: Mapping[str, Any], creation_field: str) -> str:
        """Explicit ``action`` wins; otherwise ``id`` means UPDATE and the
        creation field means CREATE.  Strict mode requires the action."""

        raw = str(args.get("action") or "").strip().upper()
        if raw:
            if raw not in ACTIONS:
                raise ToolError(f"Unsupported action '{raw}' (expected CREATE, UPDATE or DELETE)")
            return raw
        if self.strict:
            raise ToolError("Missing 'action' (expected CREATE, UPDATE or DELETE)")
        if args.get("id"):
            return "UPDATE"
        if args.get(creation_field):
            return "CREATE"
        raise ToolError(f"Cannot infer action: provide 'action', 'id' or '{creation_field}'")

    def _require_project(self, project_id: Optional[str]) -> Project:
        project = self.store.snapshot.project(project_id)
        if project is None:
            raise ToolError(f"Project '{project_id}' not found")
        return project

    # ------------------------------------------------------------------
    # MANAGE_PROJECT
    # ------------------------------------------------------------------
    def manage_project(self, args: Dict[str, Any], *, active_project_id: Optional[str] = None) -> str:
        action = self.infer_action(args, "name")
        if action == "CREATE":
            name = str(args.get("name") or "").strip()
            if not name:
                raise ToolError("MANAGE_PROJECT CREATE requires 'name'")
            at = self._clock()
            project = Project(
                id=self._new_id("p"),
                name=name,
                description=str(args.get("description") or ""),
                status=self._project_status(args.get("status"), "ACTIVE"),
                columns=_columns(args["columns"]) if args.get("columns") else DEFAULT_COLUMNS,
                files=(),
                tags=_tags(args.get("tags")),
                github_repo=args.get("githubRepo") or None,
                github_branch=args.get("githubBranch") or None,
                created_at=at,
                updated_at=at,
            )
            self.store.dispatch(AddProject(project))
            return f"Project '{project.name}' created (id: {project.id})."

        project = self._require_project(args.get("id") or active_project_id)
        if action == "DELETE":
            removed = len(self.store.snapshot.tasks_for(project.id))
            self.store.dispatch(DeleteProject(project.id))
            return f"Project '{project.name}' deleted with {removed} task(s)."

        changes: Dict[str, Any] = {}
        if "name" in args and str(args["name"]).strip():
            changes["name"] = str(args["name"]).strip()
        if "description" in args:
            changes["description"] = str(args["description"] or "")
        if "status" in args:
            changes["status"] = self._project_status(args["status"], project.status)
        if "tags" in args:
            changes["tags"] = _tags(args["tags"])
        if "columns" in args:
            changes["columns"] = _columns(args["columns"])
        if "githubRepo" in args:
            changes["github_repo"] = args["githubRepo"] or None
        if "githubBranch" in args:
            changes["github_branch"] = args["githubBranch"] or None
        updated = replace(project, updated_at=self._clock(), **changes)
        self.store.dispatch(UpdateProject(updated))
        fields = ", ".join(sorted(changes)) or "no fields"
        return f"Project '{updated.name}' updated ({fields})."

    @staticmethod
    def _project_status(value: Any, default: str) -> str:
        if value is None:
            return default
        status = str(value).strip().upper()
        if status not in PROJECT_STATUSES:
            raise ToolError(f"Invalid project status '{value}'")
        return status

    # ------------------------------------------------------------------
    # MANAGE_TASK / BATCH_CREATE_TASKS
    # ------------------------------------------------------------------
    def _build_task(self, args: Mapping[str, Any], project: Project) -> Task:
        title = str(args.get("title") or "").strip()
        if not title:
            raise ToolError("A task requires 'title'")
        status = resolve_status(project, args.get("status")) or project.columns[0].id
        priority = str(args.get("priority") or "MEDIUM").strip().upper()
        at = self._clock()
        return Task(
            id=self._new_id("t"),
            project_id=project.id,
            title=title,
            description=str(args.get("description") or ""),
            status=status,
            priority=priority if priority in PRIORITIES else "MEDIUM",
            tags=_tags(args.get("tags")),
            subtasks=_subtasks(args.get("subtasks")),
            start_date=parse_timestamp(args.get("startDate")),
            due_date=parse_timestamp(args.get("dueDate")),
            created_at=at,
            updated_at=at,
        )

    def manage_task(self, args: Dict[str, Any], *, active_project_id: Optional[str] = None) -> str:
        action = self.infer_action(args, "title")
        if action == "CREATE":
            project_id = args.get("projectId") or active_project_id
            if not project_id:
                raise ToolError("No projectId given and no project is active")
            project = self._require_project(project_id)
            task = self._build_task(args, project)
            self.store.dispatch(SaveTask(task))
            return f"Task '{task.title}' created in '{project.name}' (id: {task.id})."

        snapshot = self.store.snapshot
        task = snapshot.task(args.get("id"))
        if task is None:
            raise ToolError(f"Task '{args.get('id')}' not found")
        if action == "DELETE":
            self.store.dispatch(DeleteTask(task.id))
            return f"Task '{task.title}' deleted."

        project = snapshot.project(task.project_id)
        changes: Dict[str, Any] = {}
        if args.get("projectId") and args["projectId"] != task.project_id:
            project = self._require_project(args["projectId"])
            changes["project_id"] = project.id
        if "title" in args and str(args["title"]).strip():
            changes["title"] = str(args["title"]).strip()
        if "description" in args:
            changes["description"] = str(args["description"] or "")
        if "status" in args:
            status = resolve_status(project, args["status"])
            if status is None:
                raise ToolError(f"Unknown status '{args['status']}' for project '{project.name if project else task.project_id}'")
            changes["status"] = status
        if "priority" in args:
            priority = str(args["priority"] or "").strip().upper()
            if priority not in PRIORITIES:
                raise ToolError(f"Invalid priority '{args['priority']}'")
            changes["priority"] = priority
        if "tags" in args:
            changes["tags"] = _tags(args["tags"])
        if "subtasks" in args:
            changes["subtasks"] = _subtasks(args["subtasks"])
        if "dueDate" in args:
            changes["due_date"] = parse_timestamp(args["dueDate"])
        if "startDate" in args:
            changes["start_date"] = parse_timestamp(args["startDate"])
        if "isTimerRunning" in args:
            changes["is_timer_running"] = parse_bool(args["isTimerRunning"])
        updated = replace(task, updated_at=self._clock(), **changes)
        self.store.dispatch(SaveTask(updated))
        fields = ", ".join(sorted(changes)) or "no fields"
        return f"Task '{updated.title}' updated ({fields})."

    def batch_create_tasks(self, args: Dict[str, Any], *, active_project_id: Optional[str] = None) -> str:
        items = args.get("tasks")
        if not isinstance(items, list):
            raise ToolError("BATCH_CREATE_TASKS requires a 'tasks' list")
        fallback_id = args.get("projectId") or active_project_id
        created: List[Task] = []
        skipped = 0
        for item in items:
            if not isinstance(item, Mapping):
                skipped += 1
                continue
            project = self.store.snapshot.project(item.get("projectId") or fallback_id)
            if project is None or not str(item.get("title") or "").strip():
                skipped += 1
                continue
            task = self._build_task(item, project)
            self.store.dispatch(SaveTask(task))
            created.append(task)
        message = f"Created {len(created)} task(s)."
        if skipped:
            message += f" Skipped {skipped} without a resolvable project or title."
        return message

    # ------------------------------------------------------------------
    # MANAGE_FILE
    # ------------------------------------------------------------------
    def manage_file(self, args: Dict[str, Any], *, active_project_id: Optional[str] = None) -> str:
        action = self.infer_action(args, "name")
        project_id = args.get("projectId") or active_project_id
        if not project_id:
            raise ToolError("Open a project first: files are stored under the active project")
        project = self._require_project(project_id)

        folder, name = split_file_name(args.get("name") or "")
        if args.get("path"):
            folder = normalize_folder(args["path"])
        existing = project.file(args["id"]) if args.get("id") else None
        if existing is None and args.get("name"):
            existing = next(
                (f for f in project.files if f.name == name and f.path == folder),
                None,
            )

        if action == "DELETE":
            if existing is None:
                raise ToolError(f"File '{args.get('id') or args.get('name')}' not found")
            self.store.dispatch(DeleteFile(project.id, existing.id, at=self._clock()))
            return f"File '{existing.full_path}' deleted."

        if existing is None and not args.get("name"):
            raise ToolError("MANAGE_FILE requires 'name' for a new file")
        fields: Dict[str, Any] = {}
        if args.get("name"):
            fields.update(name=name, type=file_type_for(name))
            # A bare name renames in place; only a slash or explicit path moves the entry.
            if existing is None or "/" in str(args["name"]) or args.get("path"):
                fields["path"] = folder
        elif existing is not None and args.get("path"):
            fields["path"] = folder
        if "content" in args:
            fields["content"] = str(args["content"] or "")
        if args.get("kind") == "folder":
            fields.update(kind="folder", content="")
        file_id = existing.id if existing is not None else self._new_id("f")
        self.store.dispatch(SaveFile(project.id, file_id, fields, at=self._clock()))
        saved = self.store.snapshot.project(project.id)
        entry = saved.file(file_id) if saved else None
        label = entry.full_path if entry else name
        verb = "updated" if existing is not None else "created"
        return f"File '{label}' {verb} in '{project.name}'."


__all__ = ["AUDIT_MAX_ENTRIES", "ToolDispatcher", "parse_timestamp", "resolve_status"]

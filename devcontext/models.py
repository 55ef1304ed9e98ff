"""Domain records for the DevContext snapshot.

Every record is a frozen dataclass so that the store can share unchanged
records between snapshots.  ``to_dict``/``from_dict`` translate to the
camelCase JSON document that is written to disk and exchanged through
import/export.  ``from_dict`` is lenient: missing keys fall back to defaults
so that snapshots written by older versions keep loading.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from . import config

PROJECT_STATUSES = ("ACTIVE", "PAUSED", "COMPLETED", "ARCHIVED")
PRIORITIES = ("LOW", "MEDIUM", "HIGH")
FILE_TYPES = ("md", "json", "txt")
LANGUAGES = ("en", "pt")


def now_ms() -> int:
    return int(time.time() * 1000)


def new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


def _as_list(value: Any) -> List[Any]:
    return list(value) if isinstance(value, (list, tuple)) else []


def _str_tuple(values: Any) -> Tuple[str, ...]:
    if isinstance(values, str):
        values = values.split(",")
    items = (str(v).strip() for v in _as_list(values) if isinstance(v, (str, int, float)))
    return tuple(item for item in items if item)


def parse_bool(value: Any) -> bool:
    """Read a JSON flag; the strings ``false``, ``0``, ``no`` and ``off`` are false."""

    if isinstance(value, str):
        return value.strip().lower() not in ("", "false", "0", "no", "off")
    return bool(value)


def _opt_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return None


def known_fields(cls: type, values: Mapping[str, Any]) -> Dict[str, Any]:
    """Return the subset of ``values`` whose keys are fields of ``cls``."""

    names = {f.name for f in fields(cls)}
    return {key: value for key, value in values.items() if key in names}


@dataclass(frozen=True)
class Subtask:
    id: str
    title: str
    completed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "title": self.title, "completed": self.completed}

    @classmethod
    def from_dict(cls, data: Any) -> "Subtask":
        if isinstance(data, str):
            return cls(id=new_id("st"), title=data)
        return cls(
            id=str(data.get("id") or new_id("st")),
            title=str(data.get("title") or ""),
            completed=parse_bool(data.get("completed", False)),
        )


@dataclass(frozen=True)
class KanbanColumn:
    id: str
    title: str
    color: str = "border-slate-500"

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "title": self.title, "color": self.color}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "KanbanColumn":
        col_id = str(data.get("id") or new_id("col"))
        return cls(
            id=col_id,
            title=str(data.get("title") or col_id),
            color=str(data.get("color") or "border-slate-500"),
        )


DEFAULT_COLUMNS: Tuple[KanbanColumn, ...] = (
    KanbanColumn("TODO", "To Do", "border-slate-500"),
    KanbanColumn("IN_PROGRESS", "In Progress", "border-blue-500"),
    KanbanColumn("DONE", "Done", "border-green-500"),
)


@dataclass(frozen=True)
class DocFile:
    id: str
    name: str
    type: str = "md"
    kind: str = "file"
    content: str = ""
    path: str = "/"
    source: str = "local"
    sha: Optional[str] = None

    @property
    def full_path(self) -> str:
        base = self.path.rstrip("/")
        return f"{base}/{self.name}"

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "kind": self.kind,
            "content": self.content,
            "path": self.path,
            "source": self.source,
        }
        if self.sha:
            data["sha"] = self.sha
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "DocFile":
        return cls(
            id=str(data.get("id") or new_id("f")),
            name=str(data.get("name") or "untitled.md"),
            type=str(data.get("type") or "md"),
            kind="folder" if data.get("kind") == "folder" else "file",
            content=str(data.get("content") or ""),
            path=normalize_folder(data.get("path")),
            source="github" if data.get("source") == "github" else "local",
            sha=data.get("sha") or None,
        )


def normalize_folder(path: Any) -> str:
    text = str(path or "").strip().strip("/")
    return "/" + text if text else "/"


def split_file_name(name: str) -> Tuple[str, str]:
    """Split ``docs/api/auth.md`` into (``/docs/api``, ``auth.md``)."""

    parts = [part for part in str(name).strip().split("/") if part]
    if not parts:
        return "/", "untitled.md"
    return normalize_folder("/".join(parts[:-1])), parts[-1]


def file_type_for(name: str) -> str:
    ext = name.rsplit(".", 1)[-1].lower() if "." in name else ""
    return ext if ext in FILE_TYPES else "md"


@dataclass(frozen=True)
class Project:
    id: str
    name: str
    description: str = ""
    status: str = "ACTIVE"
    columns: Tuple[KanbanColumn, ...] = DEFAULT_COLUMNS
    files: Tuple[DocFile, ...] = ()
    tags: Tuple[str, ...] = ()
    github_repo: Optional[str] = None
    github_branch: Optional[str] = None
    github_token: Optional[str] = None
    created_at: int = 0
    updated_at: int = 0

    def file(self, file_id: str) -> Optional[DocFile]:
        for entry in self.files:
            if entry.id == file_id:
                return entry
        return None

    def column_ids(self) -> List[str]:
        return [col.id for col in self.columns]

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "status": self.status,
            "columns": [col.to_dict() for col in self.columns],
            "files": [f.to_dict() for f in self.files],
            "tags": list(self.tags),
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }
        if self.github_repo:
            data["githubRepo"] = self.github_repo
        if self.github_branch:
            data["githubBranch"] = self.github_branch
        if self.github_token:
            data["githubToken"] = self.github_token
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Project":
        status = str(data.get("status") or "ACTIVE").upper()
        raw_columns = _as_list(data.get("columns"))
        columns = (
            tuple(KanbanColumn.from_dict(c) for c in raw_columns if isinstance(c, Mapping))
            if raw_columns
            else DEFAULT_COLUMNS
        )
        return cls(
            id=str(data.get("id") or new_id("p")),
            name=str(data.get("name") or "Untitled project"),
            description=str(data.get("description") or ""),
            status=status if status in PROJECT_STATUSES else "ACTIVE",
            columns=columns or DEFAULT_COLUMNS,
            files=tuple(DocFile.from_dict(f) for f in _as_list(data.get("files")) if isinstance(f, Mapping)),
            tags=_str_tuple(data.get("tags")),
            github_repo=data.get("githubRepo") or None,
            github_branch=data.get("githubBranch") or None,
            github_token=data.get("githubToken") or None,
            created_at=_opt_int(data.get("createdAt")) or 0,
            updated_at=_opt_int(data.get("updatedAt")) or 0,
        )


@dataclass(frozen=True)
class Task:
    id: str
    project_id: str
    title: str
    description: str = ""
    status: str = "TODO"
    priority: str = "MEDIUM"
    tags: Tuple[str, ...] = ()
    subtasks: Tuple[Subtask, ...] = ()
    start_date: Optional[int] = None
    due_date: Optional[int] = None
    time_spent: int = 0
    is_timer_running: bool = False
    created_at: int = 0
    updated_at: int = 0

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "projectId": self.project_id,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "priority": self.priority,
            "tags": list(self.tags),
            "subtasks": [s.to_dict() for s in self.subtasks],
            "timeSpent": self.time_spent,
            "isTimerRunning": self.is_timer_running,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }
        if self.start_date is not None:
            data["startDate"] = self.start_date
        if self.due_date is not None:
            data["dueDate"] = self.due_date
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Task":
        priority = str(data.get("priority") or "MEDIUM").upper()
        return cls(
            id=str(data.get("id") or new_id("t")),
            project_id=str(data.get("projectId") or ""),
            title=str(data.get("title") or "New Task"),
            description=str(data.get("description") or ""),
            status=str(data.get("status") or "TODO"),
            priority=priority if priority in PRIORITIES else "MEDIUM",
            tags=_str_tuple(data.get("tags")),
            subtasks=tuple(
                Subtask.from_dict(s) for s in _as_list(data.get("subtasks")) if isinstance(s, (str, Mapping))
            ),
            start_date=_opt_int(data.get("startDate")),
            due_date=_opt_int(data.get("dueDate")),
            time_spent=_opt_int(data.get("timeSpent")) or 0,
            is_timer_running=parse_bool(data.get("isTimerRunning", False)),
            created_at=_opt_int(data.get("createdAt")) or 0,
            updated_at=_opt_int(data.get("updatedAt")) or 0,
        )


@dataclass(frozen=True)
class OpenRouterModel:
    id: str
    name: str
    description: str = ""
    context_length: Optional[int] = None
    pricing: Optional[Dict[str, str]] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"id": self.id, "name": self.name, "description": self.description}
        if self.context_length is not None:
            data["context_length"] = self.context_length
        if self.pricing:
            data["pricing"] = dict(self.pricing)
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "OpenRouterModel":
        model_id = str(data.get("id") or "")
        pricing = data.get("pricing")
        return cls(
            id=model_id,
            name=str(data.get("name") or model_id),
            description=str(data.get("description") or ""),
            context_length=_opt_int(data.get("context_length")),
            pricing={str(k): str(v) for k, v in pricing.items()} if isinstance(pricing, Mapping) else None,
        )


_SETTINGS_KEYS = {
    "openrouter_key": "openRouterKey",
    "groq_api_key": "groqApiKey",
    "default_model": "defaultModel",
    "user_name": "userName",
    "custom_system_prompt": "customSystemPrompt",
    "remote_url": "remoteUrl",
    "remote_key": "remoteKey",
    "remote_schema": "remoteSchema",
    "language": "language",
}

# Documents exported by the browser build used Supabase naming.
_LEGACY_SETTINGS_KEYS = {
    "supabaseUrl": "remote_url",
    "supabaseKey": "remote_key",
    "supabaseSchema": "remote_schema",
}


def _default_model() -> str:
    return config.DEFAULT_MODEL


def _default_prompt() -> str:
    return config.DEFAULT_SYSTEM_PROMPT


@dataclass(frozen=True)
class AppSettings:
    openrouter_key: str = ""
    groq_api_key: str = ""
    default_model: str = field(default_factory=_default_model)
    user_name: str = "Developer"
    available_models: Tuple[OpenRouterModel, ...] = ()
    custom_system_prompt: str = field(default_factory=_default_prompt)
    remote_url: str = ""
    remote_key: str = ""
    remote_schema: str = "public"
    language: str = "en"

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {json_key: getattr(self, attr) for attr, json_key in _SETTINGS_KEYS.items()}
        data["availableModels"] = [m.to_dict() for m in self.available_models]
        return data

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "AppSettings":
        """Merge ``data`` onto the defaults key by key."""

        defaults = cls()
        if not data or not isinstance(data, Mapping):
            return defaults
        values: Dict[str, Any] = {}
        for legacy_key, attr in _LEGACY_SETTINGS_KEYS.items():
            if data.get(legacy_key) is not None:
                values[attr] = str(data[legacy_key])
        for attr, json_key in _SETTINGS_KEYS.items():
            if data.get(json_key) is not None:
                values[attr] = str(data[json_key])
        if values.get("language") not in (None, *LANGUAGES):
            values.pop("language")
        models = data.get("availableModels")
        if isinstance(models, list):
            values["available_models"] = tuple(
                OpenRouterModel.from_dict(m) for m in models if isinstance(m, Mapping)
            )
        return replace(defaults, **values)


@dataclass(frozen=True)
class AppSnapshot:
    projects: Tuple[Project, ...] = ()
    tasks: Tuple[Task, ...] = ()
    settings: AppSettings = field(default_factory=AppSettings)

    def project(self, project_id: Optional[str]) -> Optional[Project]:
        if not project_id:
            return None
        for project in self.projects:
            if project.id == project_id:
                return project
        return None

    def task(self, task_id: Optional[str]) -> Optional[Task]:
        if not task_id:
            return None
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None

    def tasks_for(self, project_id: Optional[str]) -> List[Task]:
        return [t for t in self.tasks if t.project_id == project_id]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "projects": [p.to_dict() for p in self.projects],
            "tasks": [t.to_dict() for t in self.tasks],
            "settings": self.settings.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AppSnapshot":
        return cls(
            projects=tuple(
                Project.from_dict(p) for p in _as_list(data.get("projects")) if isinstance(p, Mapping)
            ),
            tasks=tuple(Task.from_dict(t) for t in _as_list(data.get("tasks")) if isinstance(t, Mapping)),
            settings=AppSettings.from_dict(data.get("settings")),
        )


def build_subtasks(values: Optional[Iterable[Any]]) -> Tuple[Subtask, ...]:
    """Turn a list of titles or subtask mappings into ``Subtask`` records."""

    result: List[Subtask] = []
    for value in values or []:
        if isinstance(value, Subtask):
            result.append(value)
        elif isinstance(value, str):
            if value.strip():
                result.append(Subtask(id=new_id("st"), title=value.strip()))
        elif isinstance(value, Mapping) and value.get("title"):
            result.append(Subtask.from_dict(value))
    return tuple(result)


__all__ = [
    "AppSettings",
    "AppSnapshot",
    "DEFAULT_COLUMNS",
    "DocFile",
    "FILE_TYPES",
    "KanbanColumn",
    "LANGUAGES",
    "OpenRouterModel",
    "PRIORITIES",
    "PROJECT_STATUSES",
    "Project",
    "Subtask",
    "Task",
    "build_subtasks",
    "file_type_for",
    "known_fields",
    "new_id",
    "normalize_folder",
    "now_ms",
    "parse_bool",
    "split_file_name",
]

"""Application store: the snapshot, its actions and the transition function.

``apply`` is pure: it never mutates the snapshot it is given and returns the
very same object when an action does not change anything.  Side effects
(persistence, the ticking clock) live in ``AppStore`` and ``TimerClock``.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from .models import AppSettings, AppSnapshot, DocFile, Project, Task, known_fields, now_ms
from .persistence import Mutation, PersistenceWorker, SnapshotRepo


@dataclass(frozen=True)
class InitSnapshot:
    snapshot: AppSnapshot


@dataclass(frozen=True)
class AddProject:
    project: Project


@dataclass(frozen=True)
class UpdateProject:
    project: Project


@dataclass(frozen=True)
class DeleteProject:
    project_id: str


@dataclass(frozen=True)
class SaveFile:
    """Merge ``fields`` into file ``file_id`` of the project, or append it."""

    project_id: str
    file_id: str
    fields: Mapping[str, Any]
    at: int = field(default_factory=now_ms)


@dataclass(frozen=True)
class DeleteFile:
    project_id: str
    file_id: str
    at: int = field(default_factory=now_ms)


@dataclass(frozen=True)
class SaveTask:
    task: Task


@dataclass(frozen=True)
class MoveTask:
    task_id: str
    status: str
    at: int = field(default_factory=now_ms)


@dataclass(frozen=True)
class DeleteTask:
    task_id: str


@dataclass(frozen=True)
class UpdateSettings:
    changes: Mapping[str, Any]


@dataclass(frozen=True)
class TickTimers:
    pass


def _init(snapshot: AppSnapshot, action: InitSnapshot) -> AppSnapshot:
    return action.snapshot


def _add_project(snapshot: AppSnapshot, action: AddProject) -> AppSnapshot:
    if snapshot.project(action.project.id) is not None:
        return snapshot
    return replace(snapshot, projects=snapshot.projects + (action.project,))


def _update_project(snapshot: AppSnapshot, action: UpdateProject) -> AppSnapshot:
    target = action.project
    if snapshot.project(target.id) is None:
        return snapshot
    projects = tuple(target if p.id == target.id else p for p in snapshot.projects)
    return replace(snapshot, projects=projects)


def _delete_project(snapshot: AppSnapshot, action: DeleteProject) -> AppSnapshot:
    if snapshot.project(action.project_id) is None:
        return snapshot
    return replace(
        snapshot,
        projects=tuple(p for p in snapshot.projects if p.id != action.project_id),
        tasks=tuple(t for t in snapshot.tasks if t.project_id != action.project_id),
    )


def _save_file(snapshot: AppSnapshot, action: SaveFile) -> AppSnapshot:
    project = snapshot.project(action.project_id)
    if project is None:
        return snapshot
    values = known_fields(DocFile, action.fields)
    values.pop("id", None)
    existing = project.file(action.file_id)
    if existing is not None:
        merged = replace(existing, **values)
        files = tuple(merged if f.id == action.file_id else f for f in project.files)
    else:
        values.setdefault("name", "untitled.md")
        files = project.files + (DocFile(id=action.file_id, **values),)
    updated = replace(project, files=files, updated_at=action.at)
    return _update_project(snapshot, UpdateProject(updated))


def _delete_file(snapshot: AppSnapshot, action: DeleteFile) -> AppSnapshot:
    project = snapshot.project(action.project_id)
    if project is None:
        return snapshot
    files = tuple(f for f in project.files if f.id != action.file_id)
    updated = replace(project, files=files, updated_at=action.at)
    return _update_project(snapshot, UpdateProject(updated))


def _save_task(snapshot: AppSnapshot, action: SaveTask) -> AppSnapshot:
    target = action.task
    if snapshot.task(target.id) is None:
        return replace(snapshot, tasks=snapshot.tasks + (target,))
    return replace(snapshot, tasks=tuple(target if t.id == target.id else t for t in snapshot.tasks))


def _move_task(snapshot: AppSnapshot, action: MoveTask) -> AppSnapshot:
    task = snapshot.task(action.task_id)
    if task is None:
        return snapshot
    moved = replace(task, status=action.status, updated_at=action.at)
    return _save_task(snapshot, SaveTask(moved))


def _delete_task(snapshot: AppSnapshot, action: DeleteTask) -> AppSnapshot:
    if snapshot.task(action.task_id) is None:
        return snapshot
    return replace(snapshot, tasks=tuple(t for t in snapshot.tasks if t.id != action.task_id))


def _update_settings(snapshot: AppSnapshot, action: UpdateSettings) -> AppSnapshot:
    changes = known_fields(AppSettings, action.changes)
    if "available_models" in changes:
        changes["available_models"] = tuple(changes["available_models"] or ())
    if not changes:
        return snapshot
    return replace(snapshot, settings=replace(snapshot.settings, **changes))


def _tick_timers(snapshot: AppSnapshot, action: TickTimers) -> AppSnapshot:
    if not any(t.is_timer_running for t in snapshot.tasks):
        return snapshot
    tasks = tuple(
        replace(t, time_spent=t.time_spent + 1) if t.is_timer_running else t for t in snapshot.tasks
    )
    return replace(snapshot, tasks=tasks)


_REDUCERS: Dict[type, Callable[[AppSnapshot, Any], AppSnapshot]] = {
    InitSnapshot: _init,
    AddProject: _add_project,
    UpdateProject: _update_project,
    DeleteProject: _delete_project,
    SaveFile: _save_file,
    DeleteFile: _delete_file,
    SaveTask: _save_task,
    MoveTask: _move_task,
    DeleteTask: _delete_task,
    UpdateSettings: _update_settings,
    TickTimers: _tick_timers,
}

# Actions whose result is not written back to storage.
_TRANSIENT_ACTIONS: Tuple[type, ...] = (InitSnapshot, TickTimers)


def describe(action: Any) -> Mutation:
    """Summarise which stored entity ``action`` touches."""

    if isinstance(action, AddProject):
        return Mutation("project", "insert", action.project.id)
    if isinstance(action, UpdateProject):
        return Mutation("project", "update", action.project.id)
    if isinstance(action, DeleteProject):
        return Mutation("project", "delete", action.project_id)
    if isinstance(action, SaveFile):
        return Mutation("file", "upsert", action.file_id, action.project_id)
    if isinstance(action, DeleteFile):
        return Mutation("file", "delete", action.file_id, action.project_id)
    if isinstance(action, SaveTask):
        return Mutation("task", "upsert", action.task.id)
    if isinstance(action, MoveTask):
        return Mutation("task", "upsert", action.task_id)
    if isinstance(action, DeleteTask):
        return Mutation("task", "delete", action.task_id)
    if isinstance(action, UpdateSettings):
        return Mutation("settings", "update")
    return Mutation("snapshot", "replace")


def apply(snapshot: AppSnapshot, action: Any) -> AppSnapshot:
    """Return the snapshot that results from applying ``action``."""

    reducer = _REDUCERS.get(type(action))
    if reducer is None:
        raise TypeError(f"Unsupported action: {action!r}")
    return reducer(snapshot, action)


class AppStore:
    """Owns the live snapshot and mirrors mutations to a ``SnapshotRepo``."""

    def __init__(
        self,
        snapshot: Optional[AppSnapshot] = None,
        *,
        repo: Optional[SnapshotRepo] = None,
        worker: Optional[PersistenceWorker] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._snapshot = snapshot or AppSnapshot()
        self._lock = threading.Lock()
        self._logger = logger or logging.getLogger(__name__)
        if worker is None and repo is not None:
            worker = PersistenceWorker(repo, logger=self._logger)
        self._worker = worker

    @property
    def snapshot(self) -> AppSnapshot:
        return self._snapshot

    def dispatch(self, action: Any, *, persist: Optional[bool] = None) -> AppSnapshot:
        """Apply ``action`` and hand the result to the persistence worker.

        ``persist`` overrides the default, which writes every mutating action
        except ``InitSnapshot`` and ``TickTimers``.  Unchanged snapshots are
        never written.
        """

        with self._lock:
            before = self._snapshot
            after = apply(before, action)
            self._snapshot = after
        should_persist = persist if persist is not None else not isinstance(action, _TRANSIENT_ACTIONS)
        if should_persist and after is not before and self._worker is not None:
            self._worker.submit(describe(action), after)
        return after

    def flush(self, timeout: Optional[float] = None) -> None:
        if self._worker is not None:
            self._worker.flush(timeout)

    def close(self) -> None:
        if self._worker is not None:
            self._worker.close()


class TimerClock:
    """Background thread that dispatches ``TickTimers`` on a fixed interval."""

    def __init__(
        self,
        store: AppStore,
        *,
        interval: float = 1.0,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._store = store
        self.interval = interval
        self._logger = logger or logging.getLogger(__name__)
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> "TimerClock":
        if self.running:
            return self
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="devcontext-timer", daemon=True)
        self._thread.start()
        return self

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=self.interval * 2)
            self._thread = None

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                self._store.dispatch(TickTimers())
            except Exception as exc:
                self._logger.error("Timer tick failed: %s", exc)


__all__ = [
    "AddProject",
    "AppStore",
    "DeleteFile",
    "DeleteProject",
    "DeleteTask",
    "InitSnapshot",
    "MoveTask",
    "SaveFile",
    "SaveTask",
    "TickTimers",
    "TimerClock",
    "UpdateProject",
    "UpdateSettings",
    "apply",
    "describe",
]

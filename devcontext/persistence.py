"""Snapshot persistence: a local JSON document with an optional PostgreSQL mirror.

The local repository keeps the whole snapshot in one JSON file named after a
versioned key.  Writes are atomic (temporary file plus ``os.replace``) and a
file that cannot be decoded is moved aside as ``<name>.corrupt-<timestamp>``
so that the application can start from the seeded snapshot instead.

The PostgreSQL repository mirrors projects, columns, files and tasks into
four tables with per-entity statements.  Settings never leave the local file,
and whenever the database is unconfigured or unreachable the local snapshot
is used.
"""

from __future__ import annotations

import json
import logging
import os
import queue
import shutil
import tempfile
import threading
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from . import config
from .models import (
    DEFAULT_COLUMNS,
    AppSettings,
    AppSnapshot,
    DocFile,
    KanbanColumn,
    Project,
    Subtask,
    Task,
    now_ms,
)


def _atomic_write(path: Path, data: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile("w", delete=False, dir=str(path.parent), encoding="utf-8") as tmp:
        tmp.write(data)
        tmp.flush()
        os.fsync(tmp.fileno())
        tmp_path = tmp.name
    os.replace(tmp_path, path)


@dataclass(frozen=True)
class Mutation:
    """Which stored entity a store action touched.

    ``entity`` is one of ``project``, ``file``, ``task``, ``settings`` or
    ``snapshot``; ``op`` is ``insert``, ``update``, ``upsert``, ``delete`` or
    ``replace``.
    """

    entity: str
    op: str
    entity_id: Optional[str] = None
    project_id: Optional[str] = None


def seed_snapshot(now: Optional[int] = None) -> AppSnapshot:
    """The demo snapshot written on first start."""

    stamp = now if now is not None else now_ms()
    project = Project(
        id="p-demo",
        name="DevContext Architecture",
        description="Self-hosting project management for AI context generation.",
        status="ACTIVE",
        columns=DEFAULT_COLUMNS,
        files=(
            DocFile(
                id="f-1",
                name="README.md",
                type="md",
                content=(
                    "# Architecture\n\n- **Frontend**: Gradio\n- **State**: Store + actions\n"
                    "- **AI**: OpenRouter Integration\n- **DB**: PostgreSQL (Optional)"
                ),
                path="/",
            ),
            DocFile(
                id="f-2",
                name="features.md",
                type="md",
                content="# Features\n\n1. AI Chat\n2. Kanban\n3. Docs",
                path="/docs",
            ),
        ),
        tags=("meta", "gradio"),
        created_at=stamp,
        updated_at=stamp,
    )
    task = Task(
        id="t-1",
        project_id="p-demo",
        title="Implement OpenRouter API",
        description="Create a generic service to handle chat completions.",
        status="DONE",
        priority="HIGH",
        tags=("backend", "ai"),
        subtasks=(
            Subtask(id="st-1", title="Setup HTTP session wrapper", completed=True),
            Subtask(id="st-2", title="Handle streaming", completed=False),
        ),
        time_spent=3600,
        created_at=stamp,
        updated_at=stamp,
    )
    return AppSnapshot(projects=(project,), tasks=(task,), settings=AppSettings())


def snapshot_from_document(raw: Mapping[str, Any]) -> AppSnapshot:
    """Build a snapshot from a stored document, filling in newer fields.

    Files without a folder land in ``/``, projects without columns get the
    default board and settings are merged key by key onto the defaults.
    """

    return AppSnapshot.from_dict(raw)


def export_snapshot(snapshot: AppSnapshot) -> str:
    return json.dumps(snapshot.to_dict(), ensure_ascii=False, indent=2)


def import_snapshot(text: str, *, logger: Optional[logging.Logger] = None) -> Optional[AppSnapshot]:
    """Parse an exported snapshot; ``None`` when it is not a usable export."""

    log = logger or logging.getLogger(__name__)
    try:
        raw = json.loads(text)
    except (TypeError, ValueError) as exc:
        log.warning("Rejected snapshot import: %s", exc)
        return None
    if not isinstance(raw, dict) or not isinstance(raw.get("projects"), list) or not isinstance(
        raw.get("tasks"), list
    ):
        log.warning("Rejected snapshot import: 'projects' and 'tasks' lists are required")
        return None
    try:
        return snapshot_from_document(raw)
    except (TypeError, ValueError, AttributeError) as exc:
        log.warning("Rejected snapshot import: %s", exc)
        return None


class SnapshotRepo(ABC):
    @abstractmethod
    def load(self) -> AppSnapshot:
        raise NotImplementedError

    @abstractmethod
    def save(self, snapshot: AppSnapshot) -> None:
        raise NotImplementedError

    def persist(self, mutation: Mutation, snapshot: AppSnapshot) -> None:
        """Write the outcome of one store action; defaults to a full save."""

        self.save(snapshot)


class FsSnapshotRepo(SnapshotRepo):
    """Filesystem-backed implementation of the ``SnapshotRepo`` interface."""

    def __init__(
        self,
        base_dir: Optional[Path] = None,
        *,
        key: str = config.STORAGE_KEY,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.base_dir = Path(base_dir or config.DATA_DIR).expanduser().resolve()
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self.key = key
        self._lock = threading.Lock()
        self._logger = logger or logging.getLogger(__name__)

    @property
    def path(self) -> Path:
        return self.base_dir / f"{self.key}.json"

    def _quarantine_corrupt(self, path: Path, exc: Exception) -> None:
        ts = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
        quarantined = path.with_suffix(path.suffix + f".corrupt-{ts}")
        try:
            shutil.move(str(path), str(quarantined))
            self._logger.warning("Quarantined corrupt snapshot file %s: %s", path, exc)
        except OSError as move_exc:  # pragma: no cover - filesystem specific
            self._logger.error("Failed to quarantine %s: %s", path, move_exc)

    def load(self) -> AppSnapshot:
        path = self.path
        with self._lock:
            if not path.exists():
                seed = seed_snapshot()
                _atomic_write(path, export_snapshot(seed))
                self._logger.info("Seeded new snapshot at %s", path)
                return seed
            try:
                raw = json.loads(path.read_text(encoding="utf-8"))
            except (UnicodeDecodeError, json.JSONDecodeError) as exc:
                self._quarantine_corrupt(path, exc)
                return seed_snapshot()
            if not isinstance(raw, dict):
                self._quarantine_corrupt(path, ValueError("snapshot root is not an object"))
                return seed_snapshot()
            try:
                return snapshot_from_document(raw)
            except (TypeError, ValueError, AttributeError) as exc:
                self._quarantine_corrupt(path, exc)
                return seed_snapshot()

    def save(self, snapshot: AppSnapshot) -> None:
        with self._lock:
            _atomic_write(self.path, export_snapshot(snapshot))


def _to_ms(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return int(value.timestamp() * 1000)
    if isinstance(value, (int, float)):
        return int(value)
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    return _to_ms(parsed)


def _from_ms(value: Optional[int]) -> Optional[str]:
    if value is None:
        return None
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc).isoformat()


def _json_value(value: Any, default: Any) -> Any:
    if value is None:
        return default
    if isinstance(value, (str, bytes)):
        try:
            return json.loads(value)
        except ValueError:
            return default
    return value


SCHEMA_STATEMENTS: Tuple[str, ...] = (
    """
    CREATE TABLE IF NOT EXISTS projects (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        status TEXT NOT NULL DEFAULT 'ACTIVE',
        tags JSONB NOT NULL DEFAULT '[]'::jsonb,
        github_repo TEXT NULL,
        github_branch TEXT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS kanban_columns (
        id TEXT NOT NULL,
        project_id TEXT NOT NULL,
        title TEXT NOT NULL,
        color TEXT NOT NULL DEFAULT 'border-slate-500',
        position INTEGER NOT NULL DEFAULT 0,
        PRIMARY KEY (project_id, id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS files (
        id TEXT PRIMARY KEY,
        project_id TEXT NOT NULL,
        name TEXT NOT NULL,
        type TEXT NOT NULL DEFAULT 'md',
        kind TEXT NOT NULL DEFAULT 'file',
        path TEXT NOT NULL DEFAULT '/',
        source TEXT NOT NULL DEFAULT 'local',
        sha TEXT NULL,
        content TEXT NOT NULL DEFAULT '',
        updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS tasks (
        id TEXT PRIMARY KEY,
        project_id TEXT NOT NULL,
        title TEXT NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        status TEXT NOT NULL,
        priority TEXT NOT NULL DEFAULT 'MEDIUM',
        tags JSONB NOT NULL DEFAULT '[]'::jsonb,
        subtasks JSONB NOT NULL DEFAULT '[]'::jsonb,
        start_date TIMESTAMPTZ NULL,
        due_date TIMESTAMPTZ NULL,
        time_spent INTEGER NOT NULL DEFAULT 0,
        is_timer_running BOOLEAN NOT NULL DEFAULT FALSE,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    "CREATE INDEX IF NOT EXISTS tasks_project_idx ON tasks (project_id)",
    "CREATE INDEX IF NOT EXISTS files_project_idx ON files (project_id)",
)


class PgSnapshotRepo(SnapshotRepo):
    """PostgreSQL mirror of projects, columns, files and tasks.

    ``local`` keeps receiving every write so that settings survive and the
    application can fall back to the last known snapshot.
    """

    def __init__(
        self,
        local: FsSnapshotRepo,
        *,
        url: Optional[str],
        key: Optional[str] = None,
        schema: Optional[str] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._local = local
        self.url = url
        self.schema = schema
        self._logger = logger or logging.getLogger(__name__)
        self._pool = None
        self._sql = None
        self._dict_row = None

        if not url:
            self._logger.warning(
                "Remote storage requested but no database URL is configured; using the local snapshot."
            )
            return

        try:
            from psycopg import sql as pg_sql  # type: ignore
            from psycopg.rows import dict_row  # type: ignore
            from psycopg_pool import ConnectionPool  # type: ignore
        except ImportError as exc:  # pragma: no cover - depends on environment
            self._logger.error("psycopg is required for remote storage: %s", exc)
            return

        connect_kwargs: Dict[str, Any] = {"autocommit": True}
        if key:
            connect_kwargs["password"] = key
        try:
            self._pool = ConnectionPool(conninfo=url, min_size=1, max_size=5, kwargs=connect_kwargs)
            self._pool.wait()
        except Exception as exc:  # pragma: no cover - connection issues are environment specific
            self._logger.error("Failed to initialise Postgres connection pool: %s", exc)
            self._pool = None
            return

        self._sql = pg_sql
        self._dict_row = dict_row

        try:
            self._ensure_schema()
        except Exception as exc:  # pragma: no cover - depends on external DB state
            self._logger.error("Failed to ensure Postgres tables: %s", exc)
            self._pool = None

    @property
    def connected(self) -> bool:
        return self._pool is not None

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _with_connection(self):
        if self._pool is None:
            raise RuntimeError("Postgres connection pool is not initialised")
        return self._pool.connection()

    @contextmanager
    def _cursor(self, conn):
        if self._dict_row is not None:
            with conn.cursor(row_factory=self._dict_row) as cur:
                yield cur
        else:  # pragma: no cover - dict_row always present with psycopg 3
            with conn.cursor() as cur:
                yield cur

    @staticmethod
    def _coerce_rows(cur, rows) -> List[Dict[str, Any]]:
        if not rows:
            return []
        if isinstance(rows[0], dict):
            return list(rows)
        columns = [desc[0] for desc in cur.description or []]
        return [dict(zip(columns, row)) for row in rows]

    def _prepare_connection(self, conn) -> None:
        if not self.schema or self._sql is None:
            return
        conn.execute(
            self._sql.SQL("SET search_path TO {}, public").format(self._sql.Identifier(self.schema))
        )

    def _ensure_schema(self) -> None:
        with self._with_connection() as conn:
            if self.schema and self._sql is not None:
                conn.execute(
                    self._sql.SQL("CREATE SCHEMA IF NOT EXISTS {}").format(self._sql.Identifier(self.schema))
                )
            self._prepare_connection(conn)
            for statement in SCHEMA_STATEMENTS:
                conn.execute(statement)

    def _select(self, cur, query: str) -> List[Dict[str, Any]]:
        cur.execute(query)
        return self._coerce_rows(cur, cur.fetchall())

    # ------------------------------------------------------------------
    # Row mapping
    # ------------------------------------------------------------------
    @staticmethod
    def _project_params(project: Project) -> Dict[str, Any]:
        return {
            "id": project.id,
            "name": project.name,
            "description": project.description,
            "status": project.status,
            "tags": json.dumps(list(project.tags)),
            "github_repo": project.github_repo,
            "github_branch": project.github_branch,
            "created_at": _from_ms(project.created_at or now_ms()),
            "updated_at": _from_ms(project.updated_at or now_ms()),
        }

    @staticmethod
    def _file_params(project_id: str, entry: DocFile) -> Dict[str, Any]:
        return {
            "id": entry.id,
            "project_id": project_id,
            "name": entry.name,
            "type": entry.type,
            "kind": entry.kind,
            "path": entry.path,
            "source": entry.source,
            "sha": entry.sha,
            "content": entry.content,
            "updated_at": _from_ms(now_ms()),
        }

    @staticmethod
    def _task_params(task: Task) -> Dict[str, Any]:
        return {
            "id": task.id,
            "project_id": task.project_id,
            "title": task.title,
            "description": task.description,
            "status": task.status,
            "priority": task.priority,
            "tags": json.dumps(list(task.tags)),
            "subtasks": json.dumps([s.to_dict() for s in task.subtasks]),
            "start_date": _from_ms(task.start_date),
            "due_date": _from_ms(task.due_date),
            "time_spent": task.time_spent,
            "is_timer_running": task.is_timer_running,
            "created_at": _from_ms(task.created_at or now_ms()),
            "updated_at": _from_ms(task.updated_at or now_ms()),
        }

    @staticmethod
    def _rows_to_projects(
        project_rows: Iterable[Dict[str, Any]],
        column_rows: Iterable[Dict[str, Any]],
        file_rows: Iterable[Dict[str, Any]],
    ) -> Tuple[Project, ...]:
        columns: Dict[str, List[KanbanColumn]] = {}
        for row in sorted(column_rows, key=lambda r: r.get("position") or 0):
            columns.setdefault(row["project_id"], []).append(
                KanbanColumn(id=row["id"], title=row.get("title") or row["id"], color=row.get("color") or "border-slate-500")
            )
        files: Dict[str, List[DocFile]] = {}
        for row in file_rows:
            files.setdefault(row["project_id"], []).append(
                DocFile.from_dict({key: value for key, value in row.items() if key != "project_id"})
            )
        projects: List[Project] = []
        for row in project_rows:
            projects.append(
                Project(
                    id=row["id"],
                    name=row.get("name") or "",
                    description=row.get("description") or "",
                    status=row.get("status") or "ACTIVE",
                    columns=tuple(columns.get(row["id"], ())) or DEFAULT_COLUMNS,
                    files=tuple(files.get(row["id"], ())),
                    tags=tuple(_json_value(row.get("tags"), [])),
                    github_repo=row.get("github_repo") or None,
                    github_branch=row.get("github_branch") or None,
                    created_at=_to_ms(row.get("created_at")) or 0,
                    updated_at=_to_ms(row.get("updated_at")) or 0,
                )
            )
        return tuple(projects)

    @staticmethod
    def _row_to_task(row: Dict[str, Any]) -> Task:
        return Task(
            id=row["id"],
            project_id=row.get("project_id") or "",
            title=row.get("title") or "",
            description=row.get("description") or "",
            status=row.get("status") or "TODO",
            priority=row.get("priority") or "MEDIUM",
            tags=tuple(_json_value(row.get("tags"), [])),
            subtasks=tuple(
                Subtask.from_dict(s) for s in _json_value(row.get("subtasks"), []) if isinstance(s, (str, Mapping))
            ),
            start_date=_to_ms(row.get("start_date")),
            due_date=_to_ms(row.get("due_date")),
            time_spent=int(row.get("time_spent") or 0),
            is_timer_running=bool(row.get("is_timer_running")),
            created_at=_to_ms(row.get("created_at")) or 0,
            updated_at=_to_ms(row.get("updated_at")) or 0,
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    def _write_project(self, cur, project: Project, *, with_files: bool) -> None:
        cur.execute(
            """
            INSERT INTO projects (
                id, name, description, status, tags, github_repo, github_branch, created_at, updated_at
            ) VALUES (
                %(id)s, %(name)s, %(description)s, %(status)s, %(tags)s::jsonb,
                %(github_repo)s, %(github_branch)s, %(created_at)s::timestamptz, %(updated_at)s::timestamptz
            )
            ON CONFLICT (id) DO UPDATE SET
                name = EXCLUDED.name,
                description = EXCLUDED.description,
                status = EXCLUDED.status,
                tags = EXCLUDED.tags,
                github_repo = EXCLUDED.github_repo,
                github_branch = EXCLUDED.github_branch,
                updated_at = EXCLUDED.updated_at
            """,
            self._project_params(project),
        )
        cur.execute("DELETE FROM kanban_columns WHERE project_id = %(project_id)s", {"project_id": project.id})
        for position, column in enumerate(project.columns):
            cur.execute(
                """
                INSERT INTO kanban_columns (id, project_id, title, color, position)
                VALUES (%(id)s, %(project_id)s, %(title)s, %(color)s, %(position)s)
                """,
                {
                    "id": column.id,
                    "project_id": project.id,
                    "title": column.title,
                    "color": column.color,
                    "position": position,
                },
            )
        if with_files:
            for entry in project.files:
                self._write_file(cur, project.id, entry)

    def _write_file(self, cur, project_id: str, entry: DocFile) -> None:
        cur.execute(
            """
            INSERT INTO files (id, project_id, name, type, kind, path, source, sha, content, updated_at)
            VALUES (
                %(id)s, %(project_id)s, %(name)s, %(type)s, %(kind)s, %(path)s,
                %(source)s, %(sha)s, %(content)s, %(updated_at)s::timestamptz
            )
            ON CONFLICT (id) DO UPDATE SET
                project_id = EXCLUDED.project_id,
                name = EXCLUDED.name,
                type = EXCLUDED.type,
                kind = EXCLUDED.kind,
                path = EXCLUDED.path,
                source = EXCLUDED.source,
                sha = EXCLUDED.sha,
                content = EXCLUDED.content,
                updated_at = EXCLUDED.updated_at
            """,
            self._file_params(project_id, entry),
        )

    def _write_task(self, cur, task: Task) -> None:
        cur.execute(
            """
            INSERT INTO tasks (
                id, project_id, title, description, status, priority, tags, subtasks,
                start_date, due_date, time_spent, is_timer_running, created_at, updated_at
            ) VALUES (
                %(id)s, %(project_id)s, %(title)s, %(description)s, %(status)s, %(priority)s,
                %(tags)s::jsonb, %(subtasks)s::jsonb, %(start_date)s::timestamptz, %(due_date)s::timestamptz,
                %(time_spent)s, %(is_timer_running)s, %(created_at)s::timestamptz, %(updated_at)s::timestamptz
            )
            ON CONFLICT (id) DO UPDATE SET
                project_id = EXCLUDED.project_id,
                title = EXCLUDED.title,
                description = EXCLUDED.description,
                status = EXCLUDED.status,
                priority = EXCLUDED.priority,
                tags = EXCLUDED.tags,
                subtasks = EXCLUDED.subtasks,
                start_date = EXCLUDED.start_date,
                due_date = EXCLUDED.due_date,
                time_spent = EXCLUDED.time_spent,
                is_timer_running = EXCLUDED.is_timer_running,
                updated_at = EXCLUDED.updated_at
            """,
            self._task_params(task),
        )

    def _delete_project(self, cur, project_id: str) -> None:
        params = {"project_id": project_id}
        cur.execute("DELETE FROM tasks WHERE project_id = %(project_id)s", params)
        cur.execute("DELETE FROM files WHERE project_id = %(project_id)s", params)
        cur.execute("DELETE FROM kanban_columns WHERE project_id = %(project_id)s", params)
        cur.execute("DELETE FROM projects WHERE id = %(project_id)s", params)

    def _apply_mutation(self, cur, mutation: Mutation, snapshot: AppSnapshot) -> None:
        entity, op = mutation.entity, mutation.op
        if entity == "project":
            if op == "delete":
                self._delete_project(cur, mutation.entity_id or "")
                return
            project = snapshot.project(mutation.entity_id)
            if project is not None:
                self._write_project(cur, project, with_files=(op == "insert"))
        elif entity == "file":
            if op == "delete":
                cur.execute("DELETE FROM files WHERE id = %(id)s", {"id": mutation.entity_id})
                return
            project = snapshot.project(mutation.project_id)
            entry = project.file(mutation.entity_id or "") if project else None
            if project is not None and entry is not None:
                self._write_file(cur, project.id, entry)
        elif entity == "task":
            if op == "delete":
                cur.execute("DELETE FROM tasks WHERE id = %(id)s", {"id": mutation.entity_id})
                return
            task = snapshot.task(mutation.entity_id)
            if task is not None:
                self._write_task(cur, task)
        elif entity == "snapshot":
            for table in ("tasks", "files", "kanban_columns", "projects"):
                cur.execute(f"DELETE FROM {table}")
            for project in snapshot.projects:
                self._write_project(cur, project, with_files=True)
            for task in snapshot.tasks:
                self._write_task(cur, task)

    # ------------------------------------------------------------------
    # SnapshotRepo interface
    # ------------------------------------------------------------------
    def load(self) -> AppSnapshot:
        local = self._local.load()
        if self._pool is None:
            return local
        try:
            with self._with_connection() as conn:
                self._prepare_connection(conn)
                with self._cursor(conn) as cur:
                    project_rows = self._select(
                        cur,
                        "SELECT id, name, description, status, tags, github_repo, github_branch, "
                        "created_at, updated_at FROM projects ORDER BY updated_at DESC",
                    )
                    column_rows = self._select(
                        cur, "SELECT id, project_id, title, color, position FROM kanban_columns ORDER BY position"
                    )
                    file_rows = self._select(
                        cur, "SELECT id, project_id, name, type, kind, path, source, sha, content FROM files"
                    )
                    task_rows = self._select(
                        cur,
                        "SELECT id, project_id, title, description, status, priority, tags, subtasks, "
                        "start_date, due_date, time_spent, is_timer_running, created_at, updated_at FROM tasks",
                    )
        except Exception as exc:
            self._logger.error("Remote snapshot load failed, using local snapshot: %s", exc)
            return local
        projects = self._rows_to_projects(project_rows, column_rows, file_rows)
        # Tokens never leave the local document.
        tokens = {p.id: p.github_token for p in local.projects if p.github_token}
        projects = tuple(
            replace(p, github_token=tokens[p.id]) if p.id in tokens else p for p in projects
        )
        tasks = tuple(self._row_to_task(row) for row in task_rows)
        return AppSnapshot(projects=projects, tasks=tasks, settings=local.settings)

    def save(self, snapshot: AppSnapshot) -> None:
        self.persist(Mutation("snapshot", "replace"), snapshot)

    def persist(self, mutation: Mutation, snapshot: AppSnapshot) -> None:
        self._local.save(snapshot)
        if self._pool is None or mutation.entity == "settings":
            return
        with self._with_connection() as conn:
            self._prepare_connection(conn)
            with conn.cursor() as cur:
                self._apply_mutation(cur, mutation, snapshot)


class PersistenceWorker:
    """Single background thread that writes store mutations in order.

    Failures are logged and never reach the code that dispatched the action.
    """

    def __init__(self, repo: SnapshotRepo, *, logger: Optional[logging.Logger] = None) -> None:
        self._repo = repo
        self._logger = logger or logging.getLogger(__name__)
        self._queue: "queue.Queue[Optional[Tuple[Mutation, AppSnapshot]]]" = queue.Queue()
        self._closed = False
        self._thread = threading.Thread(target=self._run, name="devcontext-persist", daemon=True)
        self._thread.start()

    def submit(self, mutation: Mutation, snapshot: AppSnapshot) -> None:
        if self._closed:
            self._write(mutation, snapshot)
            return
        self._queue.put((mutation, snapshot))

    def flush(self, timeout: Optional[float] = None) -> None:
        """Block until every submitted write has been attempted."""

        if timeout is None:
            self._queue.join()
            return
        deadline = time.monotonic() + timeout
        while self._queue.unfinished_tasks and time.monotonic() < deadline:
            time.sleep(0.01)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put(None)
        self._thread.join(timeout=5)

    def _write(self, mutation: Mutation, snapshot: AppSnapshot) -> None:
        try:
            self._repo.persist(mutation, snapshot)
        except Exception as exc:
            self._logger.error("Failed to persist %s %s: %s", mutation.entity, mutation.op, exc)

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is None:
                    return
                self._write(*item)
            finally:
                self._queue.task_done()


def make_repo(
    *,
    storage: Optional[str] = None,
    base_dir: Optional[Path] = None,
    logger: Optional[logging.Logger] = None,
) -> SnapshotRepo:
    """Pick the snapshot repository.

    ``fs`` always uses the local file, ``pg`` always mirrors to PostgreSQL and
    ``auto`` mirrors only when a database URL is configured in the stored
    settings or through ``DEVCONTEXT_PG_DSN``.
    """

    mode = (storage or config.STORAGE or "auto").lower()
    log = logger or logging.getLogger(__name__)
    local = FsSnapshotRepo(base_dir, logger=log)
    if mode == "fs":
        return local
    settings = local.load().settings
    url = settings.remote_url or config.PG_DSN
    if mode == "pg" or url:
        return PgSnapshotRepo(
            local,
            url=url,
            key=settings.remote_key or None,
            schema=settings.remote_schema or config.PG_SCHEMA,
            logger=log,
        )
    return local


__all__ = [
    "FsSnapshotRepo",
    "Mutation",
    "PersistenceWorker",
    "PgSnapshotRepo",
    "SCHEMA_STATEMENTS",
    "SnapshotRepo",
    "export_snapshot",
    "import_snapshot",
    "make_repo",
    "seed_snapshot",
    "snapshot_from_document",
]

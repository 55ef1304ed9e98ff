"""Prompt context for the assistant and shareable project summaries."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from . import config
from .models import AppSnapshot, Project, Subtask, Task

CONTEXT_FORMATS = ("MARKDOWN", "PROMPT", "SUMMARY", "TECHNICAL")
NO_PROJECT_LINE = "User is on Dashboard (No active project)."


def iso_timestamp(value: Optional[int]) -> Optional[str]:
    if value is None:
        return None
    stamp = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    return stamp.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _file_excerpt(path: str, content: str, limit: int) -> str:
    excerpt = content[:limit]
    suffix = "..." if len(content) > limit else ""
    return f"[{path}]:\n{excerpt}{suffix}"


def build_context(
    snapshot: AppSnapshot,
    active_project_id: Optional[str],
    custom_instructions: str,
    *,
    now: Optional[datetime] = None,
    file_char_limit: Optional[int] = None,
) -> str:
    """Render the system prompt sent ahead of the conversation.

    Each documentation file contributes at most ``file_char_limit``
    characters; there is no ceiling on the total.
    """

    limit = file_char_limit if file_char_limit is not None else config.CONTEXT_FILE_CHARS
    summary = {
        "all_projects": [{"id": p.id, "name": p.name, "status": p.status} for p in snapshot.projects]
    }
    project = snapshot.project(active_project_id)
    if project is not None:
        current: Dict[str, Any] = {
            "id": project.id,
            "name": project.name,
            "description": project.description,
            "documentation_files": "\n\n".join(
                _file_excerpt(f.full_path, f.content, limit) for f in project.files if f.kind == "file"
            ),
            "tasks": [
                {
                    "id": t.id,
                    "title": t.title,
                    "status": t.status,
                    "priority": t.priority,
                    "tags": list(t.tags),
                    "dueDate": iso_timestamp(t.due_date),
                }
                for t in snapshot.tasks_for(project.id)
            ],
        }
        current_text = json.dumps(current, ensure_ascii=False, indent=2)
    else:
        current_text = NO_PROJECT_LINE

    moment = now or datetime.now().astimezone()
    return (
        f"{custom_instructions}\n\n"
        "GLOBAL DATABASE CONTEXT:\n"
        f"{json.dumps(summary, ensure_ascii=False, indent=2)}\n\n"
        "CURRENT ACTIVE VIEW CONTEXT:\n"
        f"{current_text}\n\n"
        "DATE CONTEXT:\n"
        f"Today is {moment.strftime('%A, %d %B %Y %H:%M:%S %Z').strip()}.\n"
    )


def _subtask_lines(subtasks: Sequence[Subtask]) -> str:
    return "\n".join(f"    - [{'x' if s.completed else ' '}] {s.title}" for s in subtasks)


def _task_lines(tasks: Sequence[Task]) -> str:
    lines: List[str] = []
    for task in tasks:
        line = f"- [{task.priority}] **{task.title}** (Status: {task.status})"
        if task.description:
            line += f": {task.description}"
        lines.append(line)
        if task.subtasks:
            lines.append(_subtask_lines(task.subtasks))
    return "\n".join(lines) or "_None_"


def _docs_block(project: Project) -> str:
    blocks = [f"=== FILE: {f.full_path} ===\n{f.content}" for f in project.files if f.kind == "file"]
    return "\n\n".join(blocks) or "_No documentation yet._"


def split_by_stage(project: Project, tasks: Sequence[Task]) -> Dict[str, List[Task]]:
    """Bucket tasks into todo / active / done by board position.

    The first column is the backlog, the last one is done and everything in
    between counts as in progress.
    """

    column_ids = project.column_ids()
    buckets: Dict[str, List[Task]] = {"todo": [], "active": [], "done": []}
    if not column_ids:
        return buckets
    first, last = column_ids[0], column_ids[-1]
    for task in tasks:
        if task.status == last:
            buckets["done"].append(task)
        elif task.status == first:
            buckets["todo"].append(task)
        elif task.status in column_ids:
            buckets["active"].append(task)
    return buckets


def progress_percent(project: Project, tasks: Sequence[Task]) -> int:
    if not tasks:
        return 0
    done = len(split_by_stage(project, tasks)["done"])
    return round(done / len(tasks) * 100)


def generate_project_context(project: Project, tasks: Sequence[Task], fmt: str = "MARKDOWN") -> str:
    """Render a copy-pasteable project brief in one of ``CONTEXT_FORMATS``."""

    fmt = (fmt or "MARKDOWN").upper()
    stages = split_by_stage(project, tasks)
    progress = progress_percent(project, tasks)
    docs = _docs_block(project)

    if fmt == "PROMPT":
        lines = [
            "# CONTEXT FOR AI ASSISTANT",
            "",
            f'**Role**: You are a Senior Software Architect and Developer working on "{project.name}".',
            "**Goal**: Help complete the active tasks and provide technical guidance based on the documentation.",
            "",
            "## Project Snapshot",
            f"- **Description**: {project.description}",
            f"- **Progress**: {progress}% Complete",
            f"- **Stack/Tags**: {', '.join(project.tags)}",
        ]
        if project.github_repo:
            lines.append(
                f"- **Repository**: https://github.com/{project.github_repo} "
                f"(Branch: {project.github_branch or 'main'})"
            )
        lines += [
            "",
            "## Current Focus (Active Tasks)",
            _task_lines(stages["active"]),
            "",
            "## Pending Tasks (Backlog)",
            _task_lines(stages["todo"]),
            "",
            "## Technical Documentation",
            docs,
            "",
            "---",
            "*Please use the context above to answer my next question. Assume I have this codebase open.*",
        ]
        return "\n".join(lines)

    if fmt == "TECHNICAL":
        return "\n".join(
            [
                f"# Technical Specification: {project.name}",
                "",
                "## Overview",
                project.description,
                "",
                "## Documentation Files",
                docs,
                "",
                "## Work Breakdown Structure",
                f"### In Progress ({len(stages['active'])})",
                _task_lines(stages["active"]),
                "",
                f"### To Do ({len(stages['todo'])})",
                _task_lines(stages["todo"]),
                "",
                f"### Completed ({len(stages['done'])})",
                _task_lines(stages["done"]),
            ]
        )

    lines = [
        f"# {project.name}",
        f"> {project.description}",
        "",
        f"**Status**: {project.status} | **Progress**: {progress}%",
    ]
    if fmt == "MARKDOWN" and project.tags:
        lines.append(f"**Tags**: {', '.join(project.tags)}")
    lines += [
        "",
        "## Documentation",
        docs,
        "",
        "## Tasks",
        "### Doing",
        _task_lines(stages["active"]),
        "### Todo",
        _task_lines(stages["todo"]),
    ]
    if fmt == "MARKDOWN":
        lines += ["### Done", _task_lines(stages["done"])]
    return "\n".join(lines)


__all__ = [
    "CONTEXT_FORMATS",
    "NO_PROJECT_LINE",
    "build_context",
    "generate_project_context",
    "iso_timestamp",
    "progress_percent",
    "split_by_stage",
]

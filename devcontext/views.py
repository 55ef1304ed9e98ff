"""Read-only projections of the snapshot used by the Gradio panels."""

from __future__ import annotations

import calendar
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Dict, List, Optional, Sequence, Tuple

from .context import progress_percent
from .models import AppSnapshot, DocFile, KanbanColumn, Project, Task

UPCOMING_LIMIT = 5


def format_duration(seconds: int) -> str:
    seconds = max(int(seconds or 0), 0)
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    return f"{hours}h {minutes}m {secs}s"


def format_date(value: Optional[int]) -> str:
    if value is None:
        return ""
    return datetime.fromtimestamp(value / 1000).strftime("%Y-%m-%d")


def is_done(task: Task) -> bool:
    return task.status == "DONE" or "DONE" in task.status


@dataclass
class DashboardSummary:
    projects: List[Project]
    total_projects: int
    total_tasks: int
    completed_tasks: int
    upcoming: List[Task] = field(default_factory=list)

    @property
    def completion_rate(self) -> int:
        if not self.total_tasks:
            return 0
        return round(self.completed_tasks / self.total_tasks * 100)


def dashboard_summary(snapshot: AppSnapshot, *, show_archived: bool = False) -> DashboardSummary:
    """Workspace metrics.  ``show_archived`` lists only archived projects."""

    if show_archived:
        visible = [p for p in snapshot.projects if p.status == "ARCHIVED"]
    else:
        visible = [p for p in snapshot.projects if p.status != "ARCHIVED"]
    upcoming = sorted(
        (t for t in snapshot.tasks if t.due_date and t.status != "DONE"),
        key=lambda t: t.due_date or 0,
    )[:UPCOMING_LIMIT]
    return DashboardSummary(
        projects=visible,
        total_projects=len(snapshot.projects),
        total_tasks=len(snapshot.tasks),
        completed_tasks=sum(1 for t in snapshot.tasks if is_done(t)),
        upcoming=upcoming,
    )


def render_dashboard(snapshot: AppSnapshot, *, show_archived: bool = False) -> str:
    summary = dashboard_summary(snapshot, show_archived=show_archived)
    names = {p.id: p.name for p in snapshot.projects}
    lines = [
        "## Workspace Overview",
        f"Welcome back, {snapshot.settings.user_name}",
        "",
        "| Projects | Tasks | Completed | Rate |",
        "|---|---|---|---|",
        f"| {summary.total_projects} | {summary.total_tasks} | {summary.completed_tasks} | {summary.completion_rate}% |",
        "",
        "### Upcoming Deadlines",
    ]
    if summary.upcoming:
        for task in summary.upcoming:
            lines.append(f"- {format_date(task.due_date)} **{task.title}** ({names.get(task.project_id, '?')})")
    else:
        lines.append("_No upcoming deadlines._")
    lines += ["", "### Archived Projects" if show_archived else "### Projects"]
    if not summary.projects:
        lines.append("_No projects found._")
    for project in summary.projects:
        tasks = snapshot.tasks_for(project.id)
        lines.append(
            f"- **{project.name}** [{project.status}] {len(tasks)} task(s), "
            f"{progress_percent(project, tasks)}% done"
        )
    return "\n".join(lines)


def kanban_board(project: Project, tasks: Sequence[Task]) -> List[Tuple[KanbanColumn, List[Task]]]:
    """Tasks grouped per column in board order.

    Tasks whose status matches no column are left out, the same as the
    board shows them.
    """

    board: List[Tuple[KanbanColumn, List[Task]]] = []
    for column in project.columns:
        board.append((column, [t for t in tasks if t.status == column.id]))
    return board


def orphaned_tasks(project: Project, tasks: Sequence[Task]) -> List[Task]:
    column_ids = set(project.column_ids())
    return [t for t in tasks if t.status not in column_ids]


def render_kanban(project: Project, tasks: Sequence[Task]) -> str:
    sections: List[str] = []
    for column, items in kanban_board(project, tasks):
        lines = [f"### {column.title} ({len(items)})"]
        for task in items:
            line = f"- `{task.priority}` **{task.title}**"
            done = sum(1 for s in task.subtasks if s.completed)
            if task.subtasks:
                line += f" [{done}/{len(task.subtasks)}]"
            if task.due_date:
                line += f" due {format_date(task.due_date)}"
            if task.is_timer_running:
                line += " ⏱ Running"
            lines.append(line)
        if not items:
            lines.append("_Empty_")
        sections.append("\n".join(lines))
    orphans = orphaned_tasks(project, tasks)
    if orphans:
        sections.append(
            "### Unassigned\n" + "\n".join(f"- **{t.title}** (status `{t.status}`)" for t in orphans)
        )
    return "\n\n".join(sections)


def task_rows(tasks: Sequence[Task]) -> List[List[str]]:
    return [
        [t.id, t.title, t.status, t.priority, format_date(t.due_date), format_duration(t.time_spent)]
        for t in tasks
    ]


def docs_tree(project: Project) -> Dict[str, List[DocFile]]:
    """Documents grouped by folder path, folders sorted, names sorted."""

    tree: Dict[str, List[DocFile]] = {}
    for entry in project.files:
        tree.setdefault(entry.path, []).append(entry)
    return {path: sorted(tree[path], key=lambda f: f.name.lower()) for path in sorted(tree)}


def render_docs_tree(project: Project) -> str:
    lines: List[str] = []
    for path, entries in docs_tree(project).items():
        lines.append(f"- 📁 {'root' if path == '/' else path.rsplit('/', 1)[-1]} (`{path}`)")
        for entry in entries:
            icon = "📁" if entry.kind == "folder" else "📄"
            suffix = " (GitHub)" if entry.source == "github" else ""
            lines.append(f"    - {icon} {entry.name}{suffix}")
    return "\n".join(lines) or "_No documentation yet._"


def doc_choices(project: Optional[Project]) -> List[Tuple[str, str]]:
    if project is None:
        return []
    return [(f.full_path, f.id) for f in project.files if f.kind == "file"]


@dataclass
class CalendarDay:
    day: date
    tasks: List[Task]
    is_today: bool = False


def month_grid(
    year: int, month: int, tasks: Sequence[Task], *, today: Optional[date] = None
) -> List[List[Optional[CalendarDay]]]:
    """Weeks of the month starting on Sunday; padding cells are ``None``."""

    today = today or date.today()
    by_day: Dict[date, List[Task]] = {}
    for task in tasks:
        if task.due_date is None:
            continue
        due = datetime.fromtimestamp(task.due_date / 1000).date()
        if due.year == year and due.month == month:
            by_day.setdefault(due, []).append(task)
    weeks: List[List[Optional[CalendarDay]]] = []
    for week in calendar.Calendar(firstweekday=calendar.SUNDAY).monthdatescalendar(year, month):
        weeks.append(
            [
                CalendarDay(d, by_day.get(d, []), d == today) if d.month == month else None
                for d in week
            ]
        )
    return weeks


def render_calendar(year: int, month: int, tasks: Sequence[Task], *, today: Optional[date] = None) -> str:
    header = f"### {calendar.month_name[month]} {year}"
    rows = ["| Sun | Mon | Tue | Wed | Thu | Fri | Sat |", "|---|---|---|---|---|---|---|"]
    for week in month_grid(year, month, tasks, today=today):
        cells = []
        for cell in week:
            if cell is None:
                cells.append(" ")
                continue
            label = f"**{cell.day.day}**" if cell.is_today else str(cell.day.day)
            titles = "<br>".join(("✅ " if is_done(t) else "• ") + t.title for t in cell.tasks)
            cells.append(f"{label}<br>{titles}" if titles else label)
        rows.append("| " + " | ".join(cells) + " |")
    return header + "\n\n" + "\n".join(rows)


def shift_month(year: int, month: int, delta: int) -> Tuple[int, int]:
    index = year * 12 + (month - 1) + delta
    return index // 12, index % 12 + 1


__all__ = [
    "CalendarDay",
    "DashboardSummary",
    "dashboard_summary",
    "doc_choices",
    "docs_tree",
    "format_date",
    "format_duration",
    "kanban_board",
    "month_grid",
    "orphaned_tasks",
    "render_calendar",
    "render_dashboard",
    "render_docs_tree",
    "render_kanban",
    "shift_month",
    "task_rows",
]

"""
TaskFlow — Analytics aggregation

Pure, single-pass aggregation over a snapshot of tasks, users and workspaces.
Nothing here touches the database; the query engine loads the snapshot and
hands it in, so the same inputs always produce the same summary.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from models import TaskStatus, as_utc

SECONDS_PER_DAY = 86400


@dataclass(frozen=True)
class DateRange:
    """Closed interval [start, end]; both ends inclusive."""
    start: datetime
    end: datetime

    def contains(self, moment: Optional[datetime]) -> bool:
        if moment is None:
            return False
        moment = as_utc(moment)
        return as_utc(self.start) <= moment <= as_utc(self.end)

    @property
    def is_empty(self) -> bool:
        return as_utc(self.start) > as_utc(self.end)


@dataclass
class UserTaskStats:
    user: Any
    total_tasks: int = 0
    completed_tasks: int = 0


@dataclass
class WorkspaceTaskStats:
    workspace: Any
    total_tasks: int = 0
    completed_tasks: int = 0


@dataclass
class AnalyticsSummary:
    total_tasks: int = 0
    completed_tasks: int = 0
    in_progress_tasks: int = 0
    overdue_tasks: int = 0
    avg_completion_time: float = 0.0
    total_hours: int = 0
    tasks_by_user: List[UserTaskStats] = field(default_factory=list)
    tasks_by_workspace: List[WorkspaceTaskStats] = field(default_factory=list)

    def productivity_snapshot(self, period: str) -> Dict[str, Any]:
        return {
            "completed": self.completed_tasks,
            "inProgress": self.in_progress_tasks,
            "overdue": self.overdue_tasks,
            "totalHours": self.total_hours,
            "period": period,
        }


def _is_done(task) -> bool:
    return task.status is not None and TaskStatus(task.status) == TaskStatus.DONE


def in_scope(task, date_range: Optional[DateRange]) -> bool:
    """A task counts when it was created or completed inside the range."""
    if date_range is None:
        return True
    return date_range.contains(task.created_at) or date_range.contains(task.completed_at)


def is_overdue(task, now: datetime) -> bool:
    return task.due_date is not None and as_utc(task.due_date) < as_utc(now) and not _is_done(task)


def completion_days(task) -> Optional[float]:
    if task.completed_at is None or task.created_at is None:
        return None
    delta = as_utc(task.completed_at) - as_utc(task.created_at)
    return delta.total_seconds() / SECONDS_PER_DAY


def summarize_tasks(
    tasks: Iterable[Any],
    users: Iterable[Any],
    workspaces: Iterable[Any],
    now: datetime,
    date_range: Optional[DateRange] = None,
) -> AnalyticsSummary:
    """Aggregate the snapshot.

    ``users`` and ``workspaces`` are listed in full, so members of the team with
    no tasks still show up with zero counts. An inverted range (start > end)
    selects nothing and yields an all-zero summary.
    """
    by_user = {u.id: UserTaskStats(user=u) for u in users}
    by_workspace = {w.id: WorkspaceTaskStats(workspace=w) for w in workspaces}
    summary = AnalyticsSummary(
        tasks_by_user=list(by_user.values()),
        tasks_by_workspace=list(by_workspace.values()),
    )

    durations: List[float] = []
    for task in tasks:
        if not in_scope(task, date_range):
            continue
        done = _is_done(task)

        summary.total_tasks += 1
        if done:
            summary.completed_tasks += 1
            days = completion_days(task)
            if days is not None:
                durations.append(days)
        elif TaskStatus(task.status) == TaskStatus.IN_PROGRESS:
            summary.in_progress_tasks += 1
        if is_overdue(task, now):
            summary.overdue_tasks += 1
        summary.total_hours += task.actual_hours or 0

        user_stats = by_user.get(task.assignee_id)
        if user_stats is not None:
            user_stats.total_tasks += 1
            user_stats.completed_tasks += int(done)
        ws_stats = by_workspace.get(task.workspace_id)
        if ws_stats is not None:
            ws_stats.total_tasks += 1
            ws_stats.completed_tasks += int(done)

    if durations:
        summary.avg_completion_time = round(sum(durations) / len(durations), 1)
    return summary

# routers/analytics.py — Admin dashboard aggregates
from datetime import datetime, time
from typing import Optional, List

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from access_policy import Action
from analytics import AnalyticsSummary, DateRange
from auth import get_current_user, CurrentUser
from exceptions import ValidationError
from models import as_utc
from query_engine import AccessScopedQueryEngine, get_query_engine
from schemas import UserOut, WorkspaceOut, user_to_out, workspace_to_out, iso

router = APIRouter(prefix="/api/v1/analytics", tags=["Analytics"])


# --- Schemas ---

class UserStatsOut(BaseModel):
    user: UserOut
    total_tasks: int
    completed_tasks: int


class WorkspaceStatsOut(BaseModel):
    workspace: WorkspaceOut
    total_tasks: int
    completed_tasks: int


class AnalyticsOut(BaseModel):
    total_tasks: int
    completed_tasks: int
    in_progress_tasks: int
    overdue_tasks: int
    avg_completion_time: float
    total_hours: int
    tasks_by_user: List[UserStatsOut]
    tasks_by_workspace: List[WorkspaceStatsOut]
    date_from: Optional[str] = None
    date_to: Optional[str] = None


# --- Helpers ---

def _parse_bound(field: str, value: str, end_of_day: bool) -> datetime:
    """ISO date or datetime; a bare date as the upper bound covers the whole day."""
    raw = value.strip()
    try:
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        raise ValidationError.for_field(field, f"Invalid date: {value}")
    if end_of_day and len(raw) == 10:
        parsed = datetime.combine(parsed.date(), time.max)
    return as_utc(parsed)


def parse_date_range(date_from: Optional[str], date_to: Optional[str]) -> Optional[DateRange]:
    if date_from is None and date_to is None:
        return None
    if date_from is None or date_to is None:
        raise ValidationError(
            "Both 'from' and 'to' are required for a date range",
            errors=[{"field": "from" if date_from is None else "to", "message": "Field required", "type": "missing"}],
        )
    return DateRange(
        start=_parse_bound("from", date_from, end_of_day=False),
        end=_parse_bound("to", date_to, end_of_day=True),
    )


def summary_to_out(summary: AnalyticsSummary, date_range: Optional[DateRange]) -> AnalyticsOut:
    return AnalyticsOut(
        total_tasks=summary.total_tasks,
        completed_tasks=summary.completed_tasks,
        in_progress_tasks=summary.in_progress_tasks,
        overdue_tasks=summary.overdue_tasks,
        avg_completion_time=summary.avg_completion_time,
        total_hours=summary.total_hours,
        tasks_by_user=[
            UserStatsOut(user=user_to_out(s.user), total_tasks=s.total_tasks, completed_tasks=s.completed_tasks)
            for s in summary.tasks_by_user
        ],
        tasks_by_workspace=[
            WorkspaceStatsOut(
                workspace=workspace_to_out(s.workspace),
                total_tasks=s.total_tasks,
                completed_tasks=s.completed_tasks,
            )
            for s in summary.tasks_by_workspace
        ],
        date_from=iso(date_range.start) if date_range else None,
        date_to=iso(date_range.end) if date_range else None,
    )


# --- Endpoints ---

@router.get("", response_model=AnalyticsOut)
async def get_analytics(
    date_from: Optional[str] = Query(None, alias="from", description="ISO date/datetime, inclusive"),
    date_to: Optional[str] = Query(None, alias="to", description="ISO date/datetime, inclusive"),
    user: CurrentUser = Depends(get_current_user),
    engine: AccessScopedQueryEngine = Depends(get_query_engine),
):
    """Task counts, overdue work and completion time across the whole team (admin)"""
    await engine.authorize_mutation(user.id, user.role, Action.VIEW_ANALYTICS)
    date_range = parse_date_range(date_from, date_to)
    summary = await engine.compute_analytics_summary(date_range)
    return summary_to_out(summary, date_range)

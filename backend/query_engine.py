# query_engine.py — Workspace-scoped reads and write authorization
"""
AccessScopedQueryEngine answers two questions for a caller identified by
(user_id, role):

* what may they read: workspaces, tasks, analytics
* may they perform a given write action

The role is always the one stored on the User row (see auth.get_current_user);
the engine never reads request or session state itself.

Visibility rules:
    admin   sees every workspace (archived included) and every task
    worker  sees a workspace only through a WorkspaceMember row, and a task
            only through its workspace
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Union

from fastapi import Depends
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

import access_policy
from access_policy import AccessPolicy, Action, NonMemberTaskListing, Rule
from analytics import AnalyticsSummary, DateRange, summarize_tasks
from database import get_db_session
from exceptions import Forbidden, NotFound
from models import (
    User, Workspace, WorkspaceMember, Task, Comment, UserRole, utcnow,
)

logger = logging.getLogger("taskflow.engine")

RoleLike = Union[UserRole, str]


@dataclass
class WorkspaceListing:
    workspace: Workspace
    member_count: int
    task_count: int


def task_detail_options():
    """Eager loads for the read-time task join."""
    return (
        selectinload(Task.workspace),
        selectinload(Task.assignee),
        selectinload(Task.creator),
        selectinload(Task.comments).selectinload(Comment.author),
        selectinload(Task.attachments),
    )


class AccessScopedQueryEngine:

    def __init__(self, db: AsyncSession, policy: Optional[AccessPolicy] = None):
        self.db = db
        self.policy = policy or access_policy.ACTIVE_POLICY

    @staticmethod
    def is_admin(role: RoleLike) -> bool:
        return UserRole(role) == UserRole.ADMIN

    # ------------------------------------------------------------
    # Membership
    # ------------------------------------------------------------

    async def is_member(self, user_id: str, workspace_id: int) -> bool:
        stmt = select(WorkspaceMember.id).where(
            WorkspaceMember.workspace_id == workspace_id,
            WorkspaceMember.user_id == user_id,
        )
        result = await self.db.execute(stmt)
        return result.first() is not None

    async def require_workspace(self, workspace_id: int) -> Workspace:
        workspace = await self.db.get(Workspace, workspace_id)
        if workspace is None:
            raise NotFound("Workspace not found")
        return workspace

    async def _member_workspace_ids(self, user_id: str) -> List[int]:
        stmt = select(WorkspaceMember.workspace_id).where(WorkspaceMember.user_id == user_id)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def _count_by(self, column) -> Dict[int, int]:
        result = await self.db.execute(select(column, func.count()).group_by(column))
        return {key: count for key, count in result.all()}

    # ------------------------------------------------------------
    # Workspaces
    # ------------------------------------------------------------

    async def list_visible_workspaces(
        self, user_id: str, role: RoleLike, include_archived: bool = True,
    ) -> List[WorkspaceListing]:
        """Workspaces in creation order, annotated with member and task counts."""
        stmt = select(Workspace).order_by(Workspace.id)
        if not self.is_admin(role):
            stmt = stmt.join(
                WorkspaceMember, WorkspaceMember.workspace_id == Workspace.id,
            ).where(WorkspaceMember.user_id == user_id)
        if not include_archived:
            stmt = stmt.where(Workspace.is_archived.is_(False))

        result = await self.db.execute(stmt)
        workspaces = result.scalars().all()
        if not workspaces:
            return []

        member_counts = await self._count_by(WorkspaceMember.workspace_id)
        task_counts = await self._count_by(Task.workspace_id)
        return [
            WorkspaceListing(
                workspace=w,
                member_count=member_counts.get(w.id, 0),
                task_count=task_counts.get(w.id, 0),
            )
            for w in workspaces
        ]

    async def get_visible_workspace(self, user_id: str, role: RoleLike, workspace_id: int) -> WorkspaceListing:
        """Single workspace with creator and members loaded."""
        stmt = (
            select(Workspace)
            .where(Workspace.id == workspace_id)
            .options(
                selectinload(Workspace.creator),
                selectinload(Workspace.members).selectinload(WorkspaceMember.user),
            )
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        workspace = result.scalar_one_or_none()
        if workspace is None:
            raise NotFound("Workspace not found")
        if not self.is_admin(role) and not any(m.user_id == user_id for m in workspace.members):
            raise Forbidden("You are not a member of this workspace")

        count_stmt = select(func.count(Task.id)).where(Task.workspace_id == workspace_id)
        task_count = (await self.db.execute(count_stmt)).scalar() or 0
        return WorkspaceListing(
            workspace=workspace, member_count=len(workspace.members), task_count=task_count,
        )

    # ------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------

    async def list_visible_tasks(
        self,
        user_id: str,
        role: RoleLike,
        workspace_id: Optional[int] = None,
        assigned_only: bool = False,
    ) -> List[Task]:
        """Tasks the caller may see, newest first, with the read-time join loaded.

        A worker filtering by a workspace they do not belong to gets whatever
        the policy's non_member_task_listing says: an empty list by default.
        """
        stmt = (
            select(Task)
            .options(*task_detail_options())
            .order_by(Task.created_at.desc(), Task.id.desc())
        )

        if workspace_id is not None:
            await self.require_workspace(workspace_id)
            if not self.is_admin(role) and not await self.is_member(user_id, workspace_id):
                if self.policy.non_member_task_listing == NonMemberTaskListing.FORBIDDEN:
                    raise Forbidden("You are not a member of this workspace")
                return []
            stmt = stmt.where(Task.workspace_id == workspace_id)
        elif not self.is_admin(role):
            workspace_ids = await self._member_workspace_ids(user_id)
            if not workspace_ids:
                return []
            stmt = stmt.where(Task.workspace_id.in_(workspace_ids))

        if assigned_only:
            stmt = stmt.where(Task.assignee_id == user_id)

        result = await self.db.execute(stmt)
        return list(result.scalars().unique().all())

    async def load_task(self, task_id: int) -> Task:
        """Fetch one task with the read-time join, bypassing visibility."""
        stmt = (
            select(Task)
            .where(Task.id == task_id)
            .options(*task_detail_options())
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        task = result.scalar_one_or_none()
        if task is None:
            raise NotFound("Task not found")
        return task

    async def get_visible_task(self, user_id: str, role: RoleLike, task_id: int) -> Task:
        task = await self.load_task(task_id)
        if not self.is_admin(role) and not await self.is_member(user_id, task.workspace_id):
            raise Forbidden("You are not a member of this task's workspace")
        return task

    # ------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------

    async def authorize_mutation(
        self,
        user_id: str,
        role: RoleLike,
        action: Action,
        workspace_id: Optional[int] = None,
    ) -> Rule:
        """Raise Forbidden unless the caller may perform ``action``.

        Makes no writes; callers run it before touching anything.
        """
        rule = self.policy.check_role(role, action)
        if rule.requires_membership and not self.is_admin(role):
            if workspace_id is None or not await self.is_member(user_id, workspace_id):
                raise Forbidden(
                    "Workspace membership required",
                    details={"action": Action(action).value},
                )
        return rule

    # ------------------------------------------------------------
    # Analytics
    # ------------------------------------------------------------

    async def compute_analytics_summary(
        self, date_range: Optional[DateRange] = None, now: Optional[datetime] = None,
    ) -> AnalyticsSummary:
        """Admin-only aggregate; callers authorize VIEW_ANALYTICS first."""
        tasks = (await self.db.execute(select(Task).order_by(Task.id))).scalars().all()
        users = (await self.db.execute(
            select(User).where(User.deleted_at.is_(None)).order_by(User.created_at, User.id)
        )).scalars().all()
        workspaces = (await self.db.execute(select(Workspace).order_by(Workspace.id))).scalars().all()

        summary = summarize_tasks(tasks, users, workspaces, now=now or utcnow(), date_range=date_range)
        logger.debug(
            f"Analytics over {summary.total_tasks} tasks "
            f"(range={'all' if date_range is None else f'{date_range.start}..{date_range.end}'})"
        )
        return summary


async def get_query_engine(db: AsyncSession = Depends(get_db_session)) -> AccessScopedQueryEngine:
    """FastAPI dependency"""
    return AccessScopedQueryEngine(db)

# routers/workspaces.py — Workspaces and their membership
import logging
from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select, update, delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from access_policy import Action
from auth import get_current_user, CurrentUser
from database import get_db_session, transaction
from exceptions import NotFound
from models import (
    User, Workspace, WorkspaceMember, Task, Comment, Attachment, BrainConversation,
    LINK_ATTACHMENT_TYPE,
)
from query_engine import AccessScopedQueryEngine, get_query_engine
from schemas import (
    WorkspaceOut, WorkspaceDetailOut, WorkspaceCreate, WorkspaceUpdate, MemberAdd, UserOut,
    workspace_to_out, workspace_to_detail, user_to_out,
)
import storage

router = APIRouter(prefix="/api/v1/workspaces", tags=["Workspaces"])
logger = logging.getLogger("taskflow.workspaces")


# ============================================================
# WORKSPACES
# ============================================================

@router.get("", response_model=List[WorkspaceOut])
async def list_workspaces(
    user: CurrentUser = Depends(get_current_user),
    engine: AccessScopedQueryEngine = Depends(get_query_engine),
    active_only: bool = Query(default=False, description="Hide archived workspaces"),
):
    """Admins see every workspace; workers see the ones they belong to"""
    listings = await engine.list_visible_workspaces(
        user.id, user.role, include_archived=not active_only,
    )
    return [workspace_to_out(l.workspace, l.member_count, l.task_count) for l in listings]


@router.post("", response_model=WorkspaceOut, status_code=201)
async def create_workspace(
    data: WorkspaceCreate,
    user: CurrentUser = Depends(get_current_user),
    engine: AccessScopedQueryEngine = Depends(get_query_engine),
    db: AsyncSession = Depends(get_db_session),
):
    """Create a workspace; the creator becomes its first member"""
    await engine.authorize_mutation(user.id, user.role, Action.CREATE_WORKSPACE)

    async with transaction(db):
        workspace = Workspace(
            name=data.name,
            description=data.description,
            color=data.color,
            icon=data.icon,
            created_by=user.id,
        )
        db.add(workspace)
        await db.flush()
        db.add(WorkspaceMember(workspace_id=workspace.id, user_id=user.id))

    logger.info(f"Workspace {workspace.id} created by {user.id}")
    return workspace_to_out(workspace, member_count=1, task_count=0)


@router.get("/{workspace_id}", response_model=WorkspaceDetailOut)
async def get_workspace(
    workspace_id: int,
    user: CurrentUser = Depends(get_current_user),
    engine: AccessScopedQueryEngine = Depends(get_query_engine),
):
    listing = await engine.get_visible_workspace(user.id, user.role, workspace_id)
    return workspace_to_detail(listing.workspace, listing.task_count)


@router.patch("/{workspace_id}", response_model=WorkspaceOut)
async def update_workspace(
    workspace_id: int,
    data: WorkspaceUpdate,
    user: CurrentUser = Depends(get_current_user),
    engine: AccessScopedQueryEngine = Depends(get_query_engine),
    db: AsyncSession = Depends(get_db_session),
):
    """Partial update, archiving included (admin)"""
    await engine.authorize_mutation(user.id, user.role, Action.UPDATE_WORKSPACE, workspace_id)
    workspace = await engine.require_workspace(workspace_id)

    for field, value in data.model_dump(exclude_unset=True).items():
        if value is None and field != "description":
            continue
        setattr(workspace, field, value)

    await db.commit()
    listing = await engine.get_visible_workspace(user.id, user.role, workspace_id)
    return workspace_to_out(listing.workspace, listing.member_count, listing.task_count)


@router.delete("/{workspace_id}")
async def delete_workspace(
    workspace_id: int,
    user: CurrentUser = Depends(get_current_user),
    engine: AccessScopedQueryEngine = Depends(get_query_engine),
    db: AsyncSession = Depends(get_db_session),
):
    """Delete a workspace with its tasks, comments, attachments and memberships.

    All rows go in one transaction. Uploaded files are removed from disk
    only once that transaction has committed.
    """
    await engine.authorize_mutation(user.id, user.role, Action.DELETE_WORKSPACE, workspace_id)
    await engine.require_workspace(workspace_id)

    task_ids = select(Task.id).where(Task.workspace_id == workspace_id)
    result = await db.execute(
        select(Attachment.file_name)
        .where(Attachment.task_id.in_(task_ids))
        .where(Attachment.file_type != LINK_ATTACHMENT_TYPE)
    )
    stored_files = list(result.scalars().all())

    async with transaction(db):
        for stmt in (
            delete(Comment).where(Comment.task_id.in_(task_ids)),
            delete(Attachment).where(Attachment.task_id.in_(task_ids)),
            update(BrainConversation).where(BrainConversation.task_id.in_(task_ids)).values(task_id=None),
            update(BrainConversation).where(BrainConversation.workspace_id == workspace_id).values(workspace_id=None),
            delete(Task).where(Task.workspace_id == workspace_id),
            delete(WorkspaceMember).where(WorkspaceMember.workspace_id == workspace_id),
            delete(Workspace).where(Workspace.id == workspace_id),
        ):
            await db.execute(stmt.execution_options(synchronize_session=False))

    for file_name in stored_files:
        storage.remove_stored(file_name)

    logger.info(
        f"Workspace {workspace_id} deleted by {user.id} "
        f"({len(stored_files)} stored files removed)"
    )
    return {"status": "deleted", "workspace_id": workspace_id}


# ============================================================
# MEMBERS
# ============================================================

@router.get("/{workspace_id}/members", response_model=List[UserOut])
async def list_members(
    workspace_id: int,
    user: CurrentUser = Depends(get_current_user),
    engine: AccessScopedQueryEngine = Depends(get_query_engine),
):
    listing = await engine.get_visible_workspace(user.id, user.role, workspace_id)
    return [user_to_out(m.user) for m in listing.workspace.members]


@router.post("/{workspace_id}/members", response_model=UserOut, status_code=201)
async def add_member(
    workspace_id: int,
    data: MemberAdd,
    user: CurrentUser = Depends(get_current_user),
    engine: AccessScopedQueryEngine = Depends(get_query_engine),
    db: AsyncSession = Depends(get_db_session),
):
    """Add a user to a workspace; adding an existing member changes nothing"""
    await engine.authorize_mutation(user.id, user.role, Action.MANAGE_MEMBERS, workspace_id)
    await engine.require_workspace(workspace_id)

    member = await db.get(User, data.user_id)
    if not member or member.deleted_at is not None:
        raise NotFound("User not found")

    if not await engine.is_member(data.user_id, workspace_id):
        db.add(WorkspaceMember(workspace_id=workspace_id, user_id=data.user_id))
        try:
            await db.commit()
        except IntegrityError:
            # a concurrent request added the same membership first
            await db.rollback()
            await db.refresh(member)
        else:
            logger.info(f"User {data.user_id} added to workspace {workspace_id}")
    return user_to_out(member)


@router.delete("/{workspace_id}/members/{user_id}")
async def remove_member(
    workspace_id: int,
    user_id: str,
    user: CurrentUser = Depends(get_current_user),
    engine: AccessScopedQueryEngine = Depends(get_query_engine),
    db: AsyncSession = Depends(get_db_session),
):
    await engine.authorize_mutation(user.id, user.role, Action.MANAGE_MEMBERS, workspace_id)
    await engine.require_workspace(workspace_id)

    result = await db.execute(
        delete(WorkspaceMember)
        .where(WorkspaceMember.workspace_id == workspace_id, WorkspaceMember.user_id == user_id)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise NotFound("User is not a member of this workspace")
    await db.commit()
    logger.info(f"User {user_id} removed from workspace {workspace_id}")
    return {"status": "removed", "workspace_id": workspace_id, "user_id": user_id}

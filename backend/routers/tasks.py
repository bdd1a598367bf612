# routers/tasks.py — Tasks with comments, attachments and links
import os
import logging
from typing import List, Optional, Sequence

from fastapi import APIRouter, Depends, Query, UploadFile, File as FastAPIFile, Form
from fastapi.exceptions import RequestValidationError
from fastapi.responses import FileResponse, RedirectResponse
from sqlalchemy import select, update, delete
from sqlalchemy.ext.asyncio import AsyncSession
from pydantic import ValidationError as PydanticValidationError

from access_policy import Action
from auth import get_current_user, CurrentUser
from database import get_db_session, transaction
from exceptions import NotFound, ValidationError
from models import (
    User, Task, Comment, Attachment, BrainConversation, LINK_ATTACHMENT_TYPE, as_utc,
)
from query_engine import AccessScopedQueryEngine, get_query_engine
from schemas import (
    TaskOut, TaskCreate, TaskUpdate, CommentOut, CommentCreate, AttachmentOut, LinkCreate,
    task_to_out, comment_to_out, attachment_to_out,
)
import storage

router = APIRouter(prefix="/api/v1/tasks", tags=["Tasks"])
logger = logging.getLogger("taskflow.tasks")

# Columns a PATCH may set to null
NULLABLE_FIELDS = {"description", "assignee_id", "due_date", "estimated_hours", "actual_hours"}
MAX_CREATE_ATTACHMENTS = 10


# --- Helpers ---

async def _get_task(task_id: int, db: AsyncSession) -> Task:
    task = await db.get(Task, task_id)
    if not task:
        raise NotFound("Task not found")
    return task


async def _check_assignee(assignee_id: Optional[str], db: AsyncSession) -> None:
    if assignee_id is None:
        return
    assignee = await db.get(User, assignee_id)
    if not assignee or assignee.deleted_at is not None:
        raise ValidationError.for_field("assignee_id", "Assignee does not exist")


def _link_attachment(task_id: int, url: str, uploaded_by: str, name: Optional[str] = None) -> Attachment:
    return Attachment(
        task_id=task_id,
        file_name=url,
        original_name=name or url,
        file_type=LINK_ATTACHMENT_TYPE,
        file_size=0,
        file_url=url,
        uploaded_by=uploaded_by,
    )


# ============================================================
# TASKS
# ============================================================

@router.get("", response_model=List[TaskOut])
async def list_tasks(
    workspace_id: Optional[int] = Query(None),
    assigned_to_me: bool = Query(False, description="Only tasks assigned to the caller"),
    user: CurrentUser = Depends(get_current_user),
    engine: AccessScopedQueryEngine = Depends(get_query_engine),
):
    """Visible tasks, newest first"""
    tasks = await engine.list_visible_tasks(
        user.id, user.role, workspace_id=workspace_id, assigned_only=assigned_to_me,
    )
    return [task_to_out(t) for t in tasks]


async def _create_task(
    data: TaskCreate,
    user: CurrentUser,
    engine: AccessScopedQueryEngine,
    db: AsyncSession,
    uploads: Sequence[UploadFile] = (),
) -> Task:
    """Create a task with its link and file attachments in one transaction.

    Uploads are written to disk first and removed again if the rows fail.
    """
    if len(uploads) > MAX_CREATE_ATTACHMENTS:
        raise ValidationError.for_field(
            "attachments", f"At most {MAX_CREATE_ATTACHMENTS} files per task",
        )
    await engine.authorize_mutation(user.id, user.role, Action.CREATE_TASK, data.workspace_id)
    await engine.require_workspace(data.workspace_id)
    await _check_assignee(data.assignee_id, db)

    saved = []
    try:
        for upload in uploads:
            saved.append(await storage.save_upload(upload))

        async with transaction(db):
            task = Task(
                title=data.title,
                description=data.description,
                priority=data.priority,
                workspace_id=data.workspace_id,
                assignee_id=data.assignee_id,
                created_by=user.id,
                due_date=as_utc(data.due_date),
                tags=list(data.tags),
                links=list(data.links),
                estimated_hours=data.estimated_hours,
                actual_hours=data.actual_hours,
            )
            task.set_status(data.status)
            db.add(task)
            await db.flush()
            for url in data.attachment_urls:
                db.add(_link_attachment(task.id, url, user.id))
            for stored in saved:
                db.add(Attachment(
                    task_id=task.id,
                    file_name=stored.file_name,
                    original_name=stored.original_name,
                    file_type=stored.file_type,
                    file_size=stored.file_size,
                    file_url=stored.file_url,
                    uploaded_by=user.id,
                ))
    except Exception:
        for stored in saved:
            storage.remove_stored(stored.file_name)
        raise

    logger.info(
        f"Task {task.id} created in workspace {data.workspace_id} by {user.id} "
        f"({len(saved)} files)"
    )
    return await engine.load_task(task.id)


@router.post("", response_model=TaskOut, status_code=201)
async def create_task(
    data: TaskCreate,
    user: CurrentUser = Depends(get_current_user),
    engine: AccessScopedQueryEngine = Depends(get_query_engine),
    db: AsyncSession = Depends(get_db_session),
):
    return task_to_out(await _create_task(data, user, engine, db))


@router.post("/with-attachments", response_model=TaskOut, status_code=201)
async def create_task_with_attachments(
    title: str = Form(...),
    workspace_id: int = Form(...),
    description: Optional[str] = Form(None),
    status: Optional[str] = Form(None),
    priority: Optional[str] = Form(None),
    assignee_id: Optional[str] = Form(None),
    due_date: Optional[str] = Form(None),
    tags: Optional[List[str]] = Form(None),
    links: Optional[List[str]] = Form(None),
    urls: Optional[List[str]] = Form(None),
    estimated_hours: Optional[int] = Form(None),
    actual_hours: Optional[int] = Form(None),
    attachments: Optional[List[UploadFile]] = FastAPIFile(None),
    user: CurrentUser = Depends(get_current_user),
    engine: AccessScopedQueryEngine = Depends(get_query_engine),
    db: AsyncSession = Depends(get_db_session),
):
    """Multipart task creation: form fields, up to 10 files and extra URLs"""
    fields = {
        "title": title,
        "workspace_id": workspace_id,
        "description": description,
        "status": status or None,
        "priority": priority or None,
        "assignee_id": assignee_id or None,
        "due_date": due_date or None,
        "tags": tags or [],
        "links": links or [],
        "attachment_urls": [u for u in (urls or []) if u.strip()],
        "estimated_hours": estimated_hours,
        "actual_hours": actual_hours,
    }
    try:
        data = TaskCreate(**{k: v for k, v in fields.items() if v is not None})
    except PydanticValidationError as e:
        raise RequestValidationError(e.errors())

    task = await _create_task(data, user, engine, db, uploads=attachments or [])
    return task_to_out(task)


@router.get("/{task_id}", response_model=TaskOut)
async def get_task(
    task_id: int,
    user: CurrentUser = Depends(get_current_user),
    engine: AccessScopedQueryEngine = Depends(get_query_engine),
):
    return task_to_out(await engine.get_visible_task(user.id, user.role, task_id))


@router.patch("/{task_id}", response_model=TaskOut)
async def update_task(
    task_id: int,
    data: TaskUpdate,
    user: CurrentUser = Depends(get_current_user),
    engine: AccessScopedQueryEngine = Depends(get_query_engine),
    db: AsyncSession = Depends(get_db_session),
):
    """Partial update; moving to done stamps completed_at, leaving done clears it"""
    task = await _get_task(task_id, db)
    await engine.authorize_mutation(user.id, user.role, Action.UPDATE_TASK, task.workspace_id)

    changes = data.model_dump(exclude_unset=True)
    new_workspace = changes.get("workspace_id")
    if new_workspace is not None and new_workspace != task.workspace_id:
        await engine.authorize_mutation(user.id, user.role, Action.UPDATE_TASK, new_workspace)
        await engine.require_workspace(new_workspace)
    if "assignee_id" in changes:
        await _check_assignee(changes["assignee_id"], db)

    status = changes.pop("status", None)
    for field, value in changes.items():
        if value is None and field not in NULLABLE_FIELDS:
            continue
        if field == "due_date":
            value = as_utc(value)
        setattr(task, field, value)
    if status is not None:
        task.set_status(status)

    await db.commit()
    return task_to_out(await engine.load_task(task_id))


@router.delete("/{task_id}")
async def delete_task(
    task_id: int,
    user: CurrentUser = Depends(get_current_user),
    engine: AccessScopedQueryEngine = Depends(get_query_engine),
    db: AsyncSession = Depends(get_db_session),
):
    """Delete a task with its comments and attachments (admin)"""
    await engine.authorize_mutation(user.id, user.role, Action.DELETE_TASK)
    task = await _get_task(task_id, db)

    result = await db.execute(
        select(Attachment.file_name)
        .where(Attachment.task_id == task_id, Attachment.file_type != LINK_ATTACHMENT_TYPE)
    )
    stored_files = list(result.scalars().all())

    async with transaction(db):
        for stmt in (
            delete(Comment).where(Comment.task_id == task_id),
            delete(Attachment).where(Attachment.task_id == task_id),
            update(BrainConversation).where(BrainConversation.task_id == task_id).values(task_id=None),
            delete(Task).where(Task.id == task.id),
        ):
            await db.execute(stmt.execution_options(synchronize_session=False))

    for file_name in stored_files:
        storage.remove_stored(file_name)

    logger.info(f"Task {task_id} deleted by {user.id}")
    return {"status": "deleted", "task_id": task_id}


# ============================================================
# COMMENTS
# ============================================================

@router.get("/{task_id}/comments", response_model=List[CommentOut])
async def list_comments(
    task_id: int,
    user: CurrentUser = Depends(get_current_user),
    engine: AccessScopedQueryEngine = Depends(get_query_engine),
):
    task = await engine.get_visible_task(user.id, user.role, task_id)
    return [comment_to_out(c) for c in task.comments]


@router.post("/{task_id}/comments", response_model=CommentOut, status_code=201)
async def add_comment(
    task_id: int,
    data: CommentCreate,
    user: CurrentUser = Depends(get_current_user),
    engine: AccessScopedQueryEngine = Depends(get_query_engine),
    db: AsyncSession = Depends(get_db_session),
):
    task = await _get_task(task_id, db)
    await engine.authorize_mutation(user.id, user.role, Action.ADD_COMMENT, task.workspace_id)

    comment = Comment(task_id=task_id, author_id=user.id, content=data.content)
    db.add(comment)
    await db.commit()
    return comment_to_out(comment, author=await db.get(User, user.id))


# ============================================================
# ATTACHMENTS
# ============================================================

@router.post("/{task_id}/attachments", response_model=AttachmentOut, status_code=201)
async def upload_attachment(
    task_id: int,
    file: UploadFile = FastAPIFile(...),
    user: CurrentUser = Depends(get_current_user),
    engine: AccessScopedQueryEngine = Depends(get_query_engine),
    db: AsyncSession = Depends(get_db_session),
):
    """Attach an uploaded file (20 MB max) to a task"""
    task = await _get_task(task_id, db)
    await engine.authorize_mutation(user.id, user.role, Action.UPLOAD_ATTACHMENT, task.workspace_id)

    saved = await storage.save_upload(file)
    attachment = Attachment(
        task_id=task_id,
        file_name=saved.file_name,
        original_name=saved.original_name,
        file_type=saved.file_type,
        file_size=saved.file_size,
        file_url=saved.file_url,
        uploaded_by=user.id,
    )
    try:
        async with transaction(db):
            db.add(attachment)
    except Exception:
        storage.remove_stored(saved.file_name)
        raise
    return attachment_to_out(attachment)


@router.post("/{task_id}/links", response_model=AttachmentOut, status_code=201)
async def add_link(
    task_id: int,
    data: LinkCreate,
    user: CurrentUser = Depends(get_current_user),
    engine: AccessScopedQueryEngine = Depends(get_query_engine),
    db: AsyncSession = Depends(get_db_session),
):
    """Attach a URL to a task"""
    task = await _get_task(task_id, db)
    await engine.authorize_mutation(user.id, user.role, Action.UPLOAD_ATTACHMENT, task.workspace_id)

    attachment = _link_attachment(task_id, data.url, user.id, data.name)
    db.add(attachment)
    await db.commit()
    return attachment_to_out(attachment)


@router.get("/{task_id}/attachments/{attachment_id}/download")
async def download_attachment(
    task_id: int,
    attachment_id: int,
    user: CurrentUser = Depends(get_current_user),
    engine: AccessScopedQueryEngine = Depends(get_query_engine),
):
    task = await engine.get_visible_task(user.id, user.role, task_id)
    attachment = next((a for a in task.attachments if a.id == attachment_id), None)
    if attachment is None:
        raise NotFound("Attachment not found")
    if attachment.is_link:
        return RedirectResponse(attachment.file_url)

    path = storage.path_for(attachment.file_name)
    if not os.path.exists(path):
        logger.warning(f"Attachment {attachment_id} is missing from storage")
        raise NotFound("File not found")
    return FileResponse(path, media_type=attachment.file_type, filename=attachment.original_name)

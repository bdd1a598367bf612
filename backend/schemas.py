# schemas.py — Request and response models, ORM → response converters
from datetime import datetime
from typing import Optional, List

from pydantic import (
    AnyHttpUrl, BaseModel, EmailStr, Field, TypeAdapter, field_validator,
    ValidationError as PydanticValidationError,
)

from models import (
    User, Workspace, Task, Comment, Attachment, UserRole, TaskStatus, TaskPriority, as_utc,
)


def iso(dt: Optional[datetime]) -> Optional[str]:
    if dt is None:
        return None
    return as_utc(dt).isoformat() if isinstance(dt, datetime) else str(dt)


def enum_value(value) -> Optional[str]:
    if value is None:
        return None
    return value.value if hasattr(value, "value") else str(value)


# ============================================================
# RESPONSE MODELS
# ============================================================

class UserOut(BaseModel):
    id: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    display_name: str
    role: str
    is_active: bool
    last_login_at: Optional[str] = None
    created_at: Optional[str] = None


class WorkspaceOut(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    color: str
    icon: str
    is_archived: bool
    created_by: str
    created_at: Optional[str] = None
    member_count: Optional[int] = None
    task_count: Optional[int] = None


class WorkspaceDetailOut(WorkspaceOut):
    creator: Optional[UserOut] = None
    members: List[UserOut] = []


class CommentOut(BaseModel):
    id: int
    task_id: int
    author_id: str
    author: Optional[UserOut] = None
    content: str
    created_at: Optional[str] = None


class AttachmentOut(BaseModel):
    id: int
    task_id: int
    file_name: str
    original_name: str
    file_type: str
    file_size: int
    file_url: str
    uploaded_by: str
    is_link: bool
    created_at: Optional[str] = None


class TaskOut(BaseModel):
    id: int
    title: str
    description: Optional[str] = None
    status: str
    priority: str
    due_date: Optional[str] = None
    workspace_id: int
    assignee_id: Optional[str] = None
    created_by: str
    tags: List[str] = []
    links: List[str] = []
    estimated_hours: Optional[int] = None
    actual_hours: Optional[int] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    completed_at: Optional[str] = None
    workspace: Optional[WorkspaceOut] = None
    assignee: Optional[UserOut] = None
    creator: Optional[UserOut] = None
    comments: List[CommentOut] = []
    attachments: List[AttachmentOut] = []


# ============================================================
# CONVERTERS
# ============================================================

def user_to_out(u: User) -> UserOut:
    return UserOut(
        id=u.id,
        email=u.email,
        first_name=u.first_name,
        last_name=u.last_name,
        display_name=u.display_name,
        role=enum_value(u.role) or UserRole.WORKER.value,
        is_active=bool(u.is_active) and u.deleted_at is None,
        last_login_at=iso(u.last_login_at),
        created_at=iso(u.created_at),
    )


def workspace_to_out(
    w: Workspace, member_count: Optional[int] = None, task_count: Optional[int] = None,
) -> WorkspaceOut:
    return WorkspaceOut(
        id=w.id,
        name=w.name,
        description=w.description,
        color=w.color,
        icon=w.icon,
        is_archived=bool(w.is_archived),
        created_by=w.created_by,
        created_at=iso(w.created_at),
        member_count=member_count,
        task_count=task_count,
    )


def workspace_to_detail(w: Workspace, task_count: int) -> WorkspaceDetailOut:
    """Requires creator and members (with their users) to be loaded."""
    base = workspace_to_out(w, member_count=len(w.members), task_count=task_count)
    return WorkspaceDetailOut(
        **base.model_dump(),
        creator=user_to_out(w.creator) if w.creator else None,
        members=[user_to_out(m.user) for m in w.members],
    )


def comment_to_out(c: Comment, author: Optional[User] = None) -> CommentOut:
    author = author or c.author
    return CommentOut(
        id=c.id,
        task_id=c.task_id,
        author_id=c.author_id,
        author=user_to_out(author) if author else None,
        content=c.content,
        created_at=iso(c.created_at),
    )


def attachment_to_out(a: Attachment) -> AttachmentOut:
    return AttachmentOut(
        id=a.id,
        task_id=a.task_id,
        file_name=a.file_name,
        original_name=a.original_name,
        file_type=a.file_type,
        file_size=a.file_size or 0,
        file_url=a.file_url,
        uploaded_by=a.uploaded_by,
        is_link=a.is_link,
        created_at=iso(a.created_at),
    )


def task_to_out(t: Task) -> TaskOut:
    """Requires the read-time join (workspace, people, comments, attachments) to be loaded."""
    return TaskOut(
        id=t.id,
        title=t.title,
        description=t.description,
        status=enum_value(t.status) or TaskStatus.TODO.value,
        priority=enum_value(t.priority) or TaskPriority.MEDIUM.value,
        due_date=iso(t.due_date),
        workspace_id=t.workspace_id,
        assignee_id=t.assignee_id,
        created_by=t.created_by,
        tags=list(t.tags or []),
        links=list(t.links or []),
        estimated_hours=t.estimated_hours,
        actual_hours=t.actual_hours,
        created_at=iso(t.created_at),
        updated_at=iso(t.updated_at),
        completed_at=iso(t.completed_at),
        workspace=workspace_to_out(t.workspace) if t.workspace else None,
        assignee=user_to_out(t.assignee) if t.assignee else None,
        creator=user_to_out(t.creator) if t.creator else None,
        comments=[comment_to_out(c) for c in t.comments],
        attachments=[attachment_to_out(a) for a in t.attachments],
    )


# ============================================================
# REQUEST MODELS
# ============================================================

_URL = TypeAdapter(AnyHttpUrl)


def _validate_urls(values: List[str]) -> List[str]:
    """Check each URL but keep the caller's spelling (no trailing-slash rewrite)."""
    cleaned = []
    for value in values:
        value = value.strip()
        try:
            _URL.validate_python(value)
        except PydanticValidationError:
            raise ValueError(f"Invalid URL: {value}")
        cleaned.append(value)
    return cleaned


class WorkspaceCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    color: str = Field(..., min_length=1, max_length=7)
    icon: str = Field(..., min_length=1, max_length=50)


class WorkspaceUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    color: Optional[str] = Field(None, min_length=1, max_length=7)
    icon: Optional[str] = Field(None, min_length=1, max_length=50)
    is_archived: Optional[bool] = None


class MemberAdd(BaseModel):
    user_id: str = Field(..., min_length=1)


class TaskCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    status: TaskStatus = TaskStatus.TODO
    priority: TaskPriority = TaskPriority.MEDIUM
    workspace_id: int
    assignee_id: Optional[str] = None
    due_date: Optional[datetime] = None
    tags: List[str] = Field(default_factory=list)
    links: List[str] = Field(default_factory=list)
    estimated_hours: Optional[int] = Field(None, ge=0)
    actual_hours: Optional[int] = Field(None, ge=0)
    attachment_urls: List[str] = Field(default_factory=list)

    @field_validator("links", "attachment_urls")
    @classmethod
    def validate_urls(cls, v: List[str]) -> List[str]:
        return _validate_urls(v)


class TaskUpdate(BaseModel):
    """Partial update; only fields present in the body are applied."""
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    workspace_id: Optional[int] = None
    assignee_id: Optional[str] = None
    due_date: Optional[datetime] = None
    tags: Optional[List[str]] = None
    links: Optional[List[str]] = None
    estimated_hours: Optional[int] = Field(None, ge=0)
    actual_hours: Optional[int] = Field(None, ge=0)

    @field_validator("links")
    @classmethod
    def validate_urls(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        return None if v is None else _validate_urls(v)


class CommentCreate(BaseModel):
    content: str = Field(..., min_length=1, max_length=10000)


class LinkCreate(BaseModel):
    url: str = Field(..., min_length=1, max_length=2048)
    name: Optional[str] = Field(None, max_length=255)

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        return _validate_urls([v])[0]


class UserCreate(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=6)
    first_name: Optional[str] = Field(None, max_length=100)
    last_name: Optional[str] = Field(None, max_length=100)
    role: UserRole = UserRole.WORKER


class UserUpdate(BaseModel):
    first_name: Optional[str] = Field(None, max_length=100)
    last_name: Optional[str] = Field(None, max_length=100)
    password: Optional[str] = Field(None, min_length=6)
    role: Optional[UserRole] = None
    is_active: Optional[bool] = None

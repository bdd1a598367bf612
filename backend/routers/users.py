# routers/users.py — Team directory and admin user management
import logging
from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select, update, delete
from sqlalchemy.ext.asyncio import AsyncSession

from access_policy import Action
from auth import get_current_user, AuthService, CurrentUser
from database import get_db_session, transaction
from exceptions import NotFound, ValidationError
from models import User, Task, WorkspaceMember, utcnow
from query_engine import AccessScopedQueryEngine, get_query_engine
from schemas import UserOut, UserCreate, UserUpdate, user_to_out

router = APIRouter(prefix="/api/v1/users", tags=["Users"])
logger = logging.getLogger("taskflow.users")


async def _get_live_user(user_id: str, db: AsyncSession) -> User:
    user = await db.get(User, user_id)
    if not user or user.deleted_at is not None:
        raise NotFound("User not found")
    return user


@router.get("", response_model=List[UserOut])
async def list_users(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    active_only: bool = Query(default=False),
):
    """Everyone on the team, ordered by name (used for assignee pickers)"""
    stmt = (
        select(User)
        .where(User.deleted_at.is_(None))
        .order_by(User.first_name, User.last_name, User.email)
    )
    if active_only:
        stmt = stmt.where(User.is_active.is_(True))
    result = await db.execute(stmt)
    return [user_to_out(u) for u in result.scalars().all()]


@router.get("/{user_id}", response_model=UserOut)
async def get_user(
    user_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    return user_to_out(await _get_live_user(user_id, db))


@router.post("", response_model=UserOut, status_code=201)
async def create_user(
    data: UserCreate,
    user: CurrentUser = Depends(get_current_user),
    engine: AccessScopedQueryEngine = Depends(get_query_engine),
    db: AsyncSession = Depends(get_db_session),
):
    """Create a user with any role (admin)"""
    await engine.authorize_mutation(user.id, user.role, Action.MANAGE_USERS)

    new_user = await AuthService.create_user(
        db,
        email=data.email,
        password=data.password,
        first_name=data.first_name,
        last_name=data.last_name,
        role=data.role,
    )
    await db.commit()
    await db.refresh(new_user)
    logger.info(f"User {new_user.id} created by {user.id} with role {data.role.value}")
    return user_to_out(new_user)


@router.patch("/{user_id}", response_model=UserOut)
async def update_user(
    user_id: str,
    data: UserUpdate,
    user: CurrentUser = Depends(get_current_user),
    engine: AccessScopedQueryEngine = Depends(get_query_engine),
    db: AsyncSession = Depends(get_db_session),
):
    """Users may edit their own profile; role, status and other people need an admin"""
    changes = data.model_dump(exclude_unset=True)
    privileged = "role" in changes or "is_active" in changes
    if user_id != user.id or privileged:
        await engine.authorize_mutation(user.id, user.role, Action.MANAGE_USERS)

    target = await _get_live_user(user_id, db)

    password = changes.pop("password", None)
    if password:
        target.password_hash = AuthService.hash_password(password)
    for field, value in changes.items():
        if field in ("role", "is_active") and value is None:
            continue
        setattr(target, field, value)

    await db.commit()
    await db.refresh(target)
    return user_to_out(target)


@router.delete("/{user_id}")
async def delete_user(
    user_id: str,
    user: CurrentUser = Depends(get_current_user),
    engine: AccessScopedQueryEngine = Depends(get_query_engine),
    db: AsyncSession = Depends(get_db_session),
):
    """Soft-delete a user: unassign their tasks and drop their memberships"""
    await engine.authorize_mutation(user.id, user.role, Action.DELETE_USER)
    if user_id == user.id:
        raise ValidationError.for_field("user_id", "You cannot delete your own account")

    target = await _get_live_user(user_id, db)

    async with transaction(db):
        await db.execute(
            update(Task).where(Task.assignee_id == user_id)
            .values(assignee_id=None).execution_options(synchronize_session=False)
        )
        await db.execute(
            delete(WorkspaceMember).where(WorkspaceMember.user_id == user_id)
            .execution_options(synchronize_session=False)
        )
        target.deleted_at = utcnow()
        target.is_active = False

    logger.info(f"User {user_id} deleted by {user.id}")
    return {"status": "deleted", "user_id": user_id}

# tests/test_users.py — User management router tests
import pytest
from httpx import AsyncClient
from sqlalchemy import select

from models import Task, User, WorkspaceMember
from tests.conftest import get_auth_headers, make_workspace, make_task


@pytest.mark.asyncio
async def test_list_users_ordered_by_name(client: AsyncClient, admin_user, worker_user, other_worker):
    """Any authenticated user can list the team, ordered by first name"""
    resp = await client.get("/api/v1/users", headers=get_auth_headers(worker_user))
    assert resp.status_code == 200
    names = [u["first_name"] for u in resp.json()]
    assert names == ["Ada", "Olive", "Wes"]


@pytest.mark.asyncio
async def test_get_user_by_id(client: AsyncClient, admin_user, worker_user):
    resp = await client.get(f"/api/v1/users/{worker_user.id}", headers=get_auth_headers(admin_user))
    assert resp.status_code == 200
    assert resp.json()["email"] == worker_user.email


@pytest.mark.asyncio
async def test_get_unknown_user(client: AsyncClient, admin_user):
    resp = await client.get("/api/v1/users/does-not-exist", headers=get_auth_headers(admin_user))
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_admin_creates_admin(client: AsyncClient, admin_user):
    resp = await client.post(
        "/api/v1/users",
        json={"email": "lead@taskflow.dev", "password": "secret1", "first_name": "Lee", "role": "admin"},
        headers=get_auth_headers(admin_user),
    )
    assert resp.status_code == 201
    assert resp.json()["role"] == "admin"


@pytest.mark.asyncio
async def test_worker_cannot_create_user(client: AsyncClient, worker_user):
    resp = await client.post(
        "/api/v1/users",
        json={"email": "sneaky@taskflow.dev", "password": "secret1"},
        headers=get_auth_headers(worker_user),
    )
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_user_updates_own_name(client: AsyncClient, worker_user):
    resp = await client.patch(
        f"/api/v1/users/{worker_user.id}",
        json={"first_name": "Wendy"},
        headers=get_auth_headers(worker_user),
    )
    assert resp.status_code == 200
    assert resp.json()["display_name"] == "Wendy Worker"


@pytest.mark.asyncio
async def test_worker_cannot_promote_self(client: AsyncClient, worker_user):
    resp = await client.patch(
        f"/api/v1/users/{worker_user.id}",
        json={"role": "admin"},
        headers=get_auth_headers(worker_user),
    )
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_worker_cannot_edit_others(client: AsyncClient, worker_user, other_worker):
    resp = await client.patch(
        f"/api/v1/users/{other_worker.id}",
        json={"first_name": "Hacked"},
        headers=get_auth_headers(worker_user),
    )
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_role_change_takes_effect_immediately(client: AsyncClient, admin_user, worker_user):
    """Roles are read from the user row on every request, not from the token"""
    worker_headers = get_auth_headers(worker_user)
    assert (await client.get("/api/v1/analytics", headers=worker_headers)).status_code == 403

    resp = await client.patch(
        f"/api/v1/users/{worker_user.id}",
        json={"role": "admin"},
        headers=get_auth_headers(admin_user),
    )
    assert resp.status_code == 200
    assert (await client.get("/api/v1/analytics", headers=worker_headers)).status_code == 200


@pytest.mark.asyncio
async def test_delete_user_unassigns_and_removes_memberships(
    client: AsyncClient, db_session, admin_user, worker_user,
):
    workspace = await make_workspace(db_session, admin_user, members=[worker_user])
    task = await make_task(db_session, workspace, admin_user, assignee_id=worker_user.id)

    resp = await client.delete(f"/api/v1/users/{worker_user.id}", headers=get_auth_headers(admin_user))
    assert resp.status_code == 200

    db_session.expire_all()
    assert (await db_session.get(Task, task.id)).assignee_id is None
    memberships = await db_session.execute(
        select(WorkspaceMember).where(WorkspaceMember.user_id == worker_user.id)
    )
    assert memberships.scalars().all() == []
    deleted = await db_session.get(User, worker_user.id)
    assert deleted.deleted_at is not None

    listing = await client.get("/api/v1/users", headers=get_auth_headers(admin_user))
    assert worker_user.id not in [u["id"] for u in listing.json()]


@pytest.mark.asyncio
async def test_admin_cannot_delete_self(client: AsyncClient, admin_user):
    resp = await client.delete(f"/api/v1/users/{admin_user.id}", headers=get_auth_headers(admin_user))
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_worker_cannot_delete_user(client: AsyncClient, worker_user, other_worker):
    resp = await client.delete(f"/api/v1/users/{other_worker.id}", headers=get_auth_headers(worker_user))
    assert resp.status_code == 403

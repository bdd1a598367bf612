# tests/test_tasks.py — Tasks, comments, attachments and links
import pytest
from httpx import AsyncClient
from sqlalchemy import select

import storage
from models import Attachment, Comment, Task, TaskStatus
from tests.conftest import get_auth_headers, make_workspace, make_task, utc


@pytest.mark.asyncio
class TestTaskCrud:
    async def test_create_task_roundtrips_fields(self, client: AsyncClient, db_session, admin_user, worker_user):
        workspace = await make_workspace(db_session, admin_user, members=[worker_user])
        resp = await client.post("/api/v1/tasks", json={
            "title": "Write release notes",
            "description": "For 1.0",
            "priority": "high",
            "workspace_id": workspace.id,
            "assignee_id": worker_user.id,
            "due_date": "2030-01-15T12:00:00Z",
            "tags": ["a", "b"],
            "links": ["http://x"],
            "estimated_hours": 3,
        }, headers=get_auth_headers(worker_user))
        assert resp.status_code == 201
        data = resp.json()
        assert data["status"] == "todo"
        assert data["priority"] == "high"
        assert data["tags"] == ["a", "b"]
        assert data["links"] == ["http://x"]
        assert data["due_date"].startswith("2030-01-15T12:00:00")
        assert data["completed_at"] is None
        assert data["assignee"]["id"] == worker_user.id
        assert data["creator"]["id"] == worker_user.id
        assert data["workspace"]["id"] == workspace.id

    async def test_create_with_attachment_urls(self, client: AsyncClient, db_session, admin_user):
        workspace = await make_workspace(db_session, admin_user)
        resp = await client.post("/api/v1/tasks", json={
            "title": "Read these",
            "workspace_id": workspace.id,
            "attachment_urls": ["https://example.com/brief.pdf"],
        }, headers=get_auth_headers(admin_user))
        assert resp.status_code == 201
        attachments = resp.json()["attachments"]
        assert len(attachments) == 1
        assert attachments[0]["is_link"] is True
        assert attachments[0]["file_url"] == "https://example.com/brief.pdf"

    async def test_create_done_task_stamps_completed_at(self, client: AsyncClient, db_session, admin_user):
        workspace = await make_workspace(db_session, admin_user)
        resp = await client.post("/api/v1/tasks", json={
            "title": "Already done", "workspace_id": workspace.id, "status": "done",
        }, headers=get_auth_headers(admin_user))
        assert resp.json()["completed_at"] is not None

    async def test_create_in_missing_workspace(self, client: AsyncClient, admin_user):
        resp = await client.post("/api/v1/tasks", json={
            "title": "Lost", "workspace_id": 999,
        }, headers=get_auth_headers(admin_user))
        assert resp.status_code == 404

    async def test_create_with_unknown_assignee(self, client: AsyncClient, db_session, admin_user):
        workspace = await make_workspace(db_session, admin_user)
        resp = await client.post("/api/v1/tasks", json={
            "title": "Nobody", "workspace_id": workspace.id, "assignee_id": "ghost",
        }, headers=get_auth_headers(admin_user))
        assert resp.status_code == 400
        assert resp.json()["errors"][0]["field"] == "assignee_id"

    @pytest.mark.parametrize("payload", [
        {"title": ""},
        {"title": "x" * 201},
        {"title": "Bad status", "status": "blocked"},
        {"title": "Bad link", "links": ["not a url"]},
        {"title": "Negative", "estimated_hours": -1},
    ])
    async def test_create_validation(self, client: AsyncClient, db_session, admin_user, payload):
        workspace = await make_workspace(db_session, admin_user)
        resp = await client.post(
            "/api/v1/tasks", json={**payload, "workspace_id": workspace.id}, headers=get_auth_headers(admin_user),
        )
        assert resp.status_code == 400
        assert resp.json()["code"] == "VALIDATION_ERROR"

    async def test_create_requires_token(self, client: AsyncClient, db_session, admin_user):
        workspace = await make_workspace(db_session, admin_user)
        resp = await client.post("/api/v1/tasks", json={"title": "Anon", "workspace_id": workspace.id})
        assert resp.status_code == 401

    async def test_get_task(self, client: AsyncClient, db_session, admin_user, worker_user):
        workspace = await make_workspace(db_session, admin_user, members=[worker_user])
        task = await make_task(db_session, workspace, admin_user, title="Visible")
        resp = await client.get(f"/api/v1/tasks/{task.id}", headers=get_auth_headers(worker_user))
        assert resp.status_code == 200
        assert resp.json()["title"] == "Visible"

    async def test_get_task_outside_membership(self, client: AsyncClient, db_session, admin_user, worker_user):
        workspace = await make_workspace(db_session, admin_user)
        task = await make_task(db_session, workspace, admin_user)
        resp = await client.get(f"/api/v1/tasks/{task.id}", headers=get_auth_headers(worker_user))
        assert resp.status_code == 403

    async def test_get_missing_task(self, client: AsyncClient, admin_user):
        resp = await client.get("/api/v1/tasks/999", headers=get_auth_headers(admin_user))
        assert resp.status_code == 404


@pytest.mark.asyncio
class TestTaskListing:
    async def test_newest_first(self, client: AsyncClient, db_session, admin_user):
        workspace = await make_workspace(db_session, admin_user)
        await make_task(db_session, workspace, admin_user, title="old", created_at=utc(2024, 1, 1))
        await make_task(db_session, workspace, admin_user, title="new", created_at=utc(2024, 6, 1))
        await make_task(db_session, workspace, admin_user, title="mid", created_at=utc(2024, 3, 1))

        resp = await client.get("/api/v1/tasks", headers=get_auth_headers(admin_user))
        assert [t["title"] for t in resp.json()] == ["new", "mid", "old"]

    async def test_worker_sees_member_workspaces_only(self, client: AsyncClient, db_session, admin_user, worker_user):
        mine = await make_workspace(db_session, admin_user, name="Mine", members=[worker_user])
        other = await make_workspace(db_session, admin_user, name="Other")
        await make_task(db_session, mine, admin_user, title="visible")
        await make_task(db_session, other, admin_user, title="hidden")

        resp = await client.get("/api/v1/tasks", headers=get_auth_headers(worker_user))
        assert [t["title"] for t in resp.json()] == ["visible"]

    async def test_scenario_non_member_filter_is_empty(self, client: AsyncClient, db_session, admin_user, worker_user):
        """Filtering by a workspace the worker is not in yields nothing, not an error"""
        other = await make_workspace(db_session, admin_user)
        await make_task(db_session, other, admin_user)

        resp = await client.get(f"/api/v1/tasks?workspace_id={other.id}", headers=get_auth_headers(worker_user))
        assert resp.status_code == 200
        assert resp.json() == []

    async def test_filter_by_missing_workspace(self, client: AsyncClient, admin_user):
        resp = await client.get("/api/v1/tasks?workspace_id=999", headers=get_auth_headers(admin_user))
        assert resp.status_code == 404

    async def test_assigned_to_me(self, client: AsyncClient, db_session, admin_user, worker_user):
        workspace = await make_workspace(db_session, admin_user, members=[worker_user])
        await make_task(db_session, workspace, admin_user, title="mine", assignee_id=worker_user.id)
        await make_task(db_session, workspace, admin_user, title="theirs", assignee_id=admin_user.id)

        resp = await client.get("/api/v1/tasks?assigned_to_me=true", headers=get_auth_headers(worker_user))
        assert [t["title"] for t in resp.json()] == ["mine"]

    async def test_list_includes_comments_and_attachments(self, client: AsyncClient, db_session, admin_user):
        workspace = await make_workspace(db_session, admin_user)
        task = await make_task(db_session, workspace, admin_user)
        db_session.add(Comment(task_id=task.id, author_id=admin_user.id, content="first"))
        await db_session.commit()

        data = (await client.get("/api/v1/tasks", headers=get_auth_headers(admin_user))).json()[0]
        assert [c["content"] for c in data["comments"]] == ["first"]
        assert data["comments"][0]["author"]["display_name"] == "Ada Admin"
        assert data["attachments"] == []


@pytest.mark.asyncio
class TestTaskUpdates:
    async def test_completed_at_follows_status(self, client: AsyncClient, db_session, admin_user, worker_user):
        workspace = await make_workspace(db_session, admin_user, members=[worker_user])
        task = await make_task(db_session, workspace, admin_user)
        headers = get_auth_headers(worker_user)
        url = f"/api/v1/tasks/{task.id}"

        done = await client.patch(url, json={"status": "done"}, headers=headers)
        assert done.status_code == 200
        completed_at = done.json()["completed_at"]
        assert completed_at is not None

        again = await client.patch(url, json={"status": "done", "title": "Renamed"}, headers=headers)
        assert again.json()["completed_at"] == completed_at
        assert again.json()["title"] == "Renamed"

        reopened = await client.patch(url, json={"status": "in-progress"}, headers=headers)
        assert reopened.json()["status"] == "in-progress"
        assert reopened.json()["completed_at"] is None

    async def test_partial_update_keeps_other_fields(self, client: AsyncClient, db_session, admin_user):
        workspace = await make_workspace(db_session, admin_user)
        task = await make_task(
            db_session, workspace, admin_user, description="keep me", tags=["x"], assignee_id=admin_user.id,
        )
        resp = await client.patch(
            f"/api/v1/tasks/{task.id}", json={"priority": "low"}, headers=get_auth_headers(admin_user),
        )
        data = resp.json()
        assert data["priority"] == "low"
        assert data["description"] == "keep me"
        assert data["tags"] == ["x"]
        assert data["assignee_id"] == admin_user.id

    async def test_tags_are_stored_as_sent(self, client: AsyncClient, db_session, admin_user):
        workspace = await make_workspace(db_session, admin_user)
        task = await make_task(db_session, workspace, admin_user, tags=["x"])
        resp = await client.patch(
            f"/api/v1/tasks/{task.id}", json={"tags": [" b ", "", "a"]}, headers=get_auth_headers(admin_user),
        )
        assert resp.json()["tags"] == [" b ", "", "a"]

        fetched = await client.get(f"/api/v1/tasks/{task.id}", headers=get_auth_headers(admin_user))
        assert fetched.json()["tags"] == [" b ", "", "a"]

    async def test_unassign_with_null(self, client: AsyncClient, db_session, admin_user):
        workspace = await make_workspace(db_session, admin_user)
        task = await make_task(db_session, workspace, admin_user, assignee_id=admin_user.id)
        resp = await client.patch(
            f"/api/v1/tasks/{task.id}", json={"assignee_id": None}, headers=get_auth_headers(admin_user),
        )
        assert resp.json()["assignee_id"] is None
        assert resp.json()["assignee"] is None

    async def test_move_to_missing_workspace(self, client: AsyncClient, db_session, admin_user):
        workspace = await make_workspace(db_session, admin_user)
        task = await make_task(db_session, workspace, admin_user)
        resp = await client.patch(
            f"/api/v1/tasks/{task.id}", json={"workspace_id": 999}, headers=get_auth_headers(admin_user),
        )
        assert resp.status_code == 404

    async def test_update_missing_task(self, client: AsyncClient, admin_user):
        resp = await client.patch("/api/v1/tasks/999", json={"title": "x"}, headers=get_auth_headers(admin_user))
        assert resp.status_code == 404


@pytest.mark.asyncio
class TestTaskDeletion:
    async def test_worker_cannot_delete(self, client: AsyncClient, db_session, admin_user, worker_user):
        workspace = await make_workspace(db_session, admin_user, members=[worker_user])
        task = await make_task(db_session, workspace, admin_user)
        resp = await client.delete(f"/api/v1/tasks/{task.id}", headers=get_auth_headers(worker_user))
        assert resp.status_code == 403

        db_session.expire_all()
        assert await db_session.get(Task, task.id) is not None

    async def test_admin_delete_cascades(self, client: AsyncClient, db_session, admin_user):
        workspace = await make_workspace(db_session, admin_user)
        task = await make_task(db_session, workspace, admin_user)
        db_session.add(Comment(task_id=task.id, author_id=admin_user.id, content="bye"))
        await db_session.commit()

        resp = await client.delete(f"/api/v1/tasks/{task.id}", headers=get_auth_headers(admin_user))
        assert resp.status_code == 200
        assert resp.json() == {"status": "deleted", "task_id": task.id}

        db_session.expire_all()
        assert await db_session.get(Task, task.id) is None
        assert (await db_session.execute(select(Comment))).scalars().all() == []

    async def test_delete_missing_task(self, client: AsyncClient, admin_user):
        resp = await client.delete("/api/v1/tasks/999", headers=get_auth_headers(admin_user))
        assert resp.status_code == 404


@pytest.mark.asyncio
class TestCommentsAndAttachments:
    async def test_add_and_list_comments(self, client: AsyncClient, db_session, admin_user, worker_user):
        workspace = await make_workspace(db_session, admin_user, members=[worker_user])
        task = await make_task(db_session, workspace, admin_user)
        headers = get_auth_headers(worker_user)

        resp = await client.post(f"/api/v1/tasks/{task.id}/comments", json={"content": "On it"}, headers=headers)
        assert resp.status_code == 201
        assert resp.json()["author"]["id"] == worker_user.id

        listing = await client.get(f"/api/v1/tasks/{task.id}/comments", headers=headers)
        assert [c["content"] for c in listing.json()] == ["On it"]

    async def test_empty_comment_rejected(self, client: AsyncClient, db_session, admin_user):
        workspace = await make_workspace(db_session, admin_user)
        task = await make_task(db_session, workspace, admin_user)
        resp = await client.post(
            f"/api/v1/tasks/{task.id}/comments", json={"content": ""}, headers=get_auth_headers(admin_user),
        )
        assert resp.status_code == 400

    async def test_add_link_and_follow_it(self, client: AsyncClient, db_session, admin_user):
        workspace = await make_workspace(db_session, admin_user)
        task = await make_task(db_session, workspace, admin_user)
        headers = get_auth_headers(admin_user)

        resp = await client.post(
            f"/api/v1/tasks/{task.id}/links",
            json={"url": "https://example.com/board", "name": "Board"},
            headers=headers,
        )
        assert resp.status_code == 201
        link = resp.json()
        assert link["is_link"] is True
        assert link["original_name"] == "Board"

        download = await client.get(
            f"/api/v1/tasks/{task.id}/attachments/{link['id']}/download", headers=headers,
        )
        assert download.status_code in (302, 307)
        assert download.headers["location"] == "https://example.com/board"

    async def test_upload_and_download_attachment(self, client: AsyncClient, db_session, admin_user, worker_user):
        workspace = await make_workspace(db_session, admin_user, members=[worker_user])
        task = await make_task(db_session, workspace, admin_user)
        headers = get_auth_headers(worker_user)

        resp = await client.post(
            f"/api/v1/tasks/{task.id}/attachments",
            files={"file": ("notes.txt", b"hello world", "text/plain")},
            headers=headers,
        )
        assert resp.status_code == 201
        attachment = resp.json()
        assert attachment["original_name"] == "notes.txt"
        assert attachment["file_size"] == 11
        assert attachment["is_link"] is False
        assert attachment["file_url"].startswith("/uploads/notes-")

        download = await client.get(
            f"/api/v1/tasks/{task.id}/attachments/{attachment['id']}/download", headers=headers,
        )
        assert download.status_code == 200
        assert download.content == b"hello world"

        stored = (await db_session.execute(select(Attachment))).scalar_one()
        assert stored.uploaded_by == worker_user.id

    async def test_download_unknown_attachment(self, client: AsyncClient, db_session, admin_user):
        workspace = await make_workspace(db_session, admin_user)
        task = await make_task(db_session, workspace, admin_user)
        resp = await client.get(
            f"/api/v1/tasks/{task.id}/attachments/42/download", headers=get_auth_headers(admin_user),
        )
        assert resp.status_code == 404

    async def test_comment_on_completed_task_leaves_status(self, client: AsyncClient, db_session, admin_user):
        workspace = await make_workspace(db_session, admin_user)
        task = await make_task(
            db_session, workspace, admin_user, status=TaskStatus.DONE, completed_at=utc(2024, 5, 1),
        )
        await client.post(
            f"/api/v1/tasks/{task.id}/comments", json={"content": "nice"}, headers=get_auth_headers(admin_user),
        )
        data = (await client.get(f"/api/v1/tasks/{task.id}", headers=get_auth_headers(admin_user))).json()
        assert data["status"] == "done"
        assert data["completed_at"].startswith("2024-05-01")

    async def test_create_with_uploaded_files(self, client: AsyncClient, db_session, admin_user, worker_user):
        workspace = await make_workspace(db_session, admin_user, members=[worker_user])
        headers = get_auth_headers(worker_user)
        resp = await client.post(
            "/api/v1/tasks/with-attachments",
            data={
                "title": "Review mockups",
                "workspace_id": str(workspace.id),
                "priority": "high",
                "tags": ["design", "q3"],
                "urls": ["https://example.com/board", ""],
            },
            files=[
                ("attachments", ("home.png", b"png-bytes", "image/png")),
                ("attachments", ("notes.txt", b"hello", "text/plain")),
            ],
            headers=headers,
        )
        assert resp.status_code == 201
        data = resp.json()
        assert data["priority"] == "high"
        assert data["tags"] == ["design", "q3"]
        by_name = {a["original_name"]: a for a in data["attachments"]}
        assert set(by_name) == {"home.png", "notes.txt", "https://example.com/board"}
        assert by_name["https://example.com/board"]["is_link"] is True
        assert by_name["notes.txt"]["file_size"] == 5

        download = await client.get(
            f"/api/v1/tasks/{data['id']}/attachments/{by_name['notes.txt']['id']}/download", headers=headers,
        )
        assert download.content == b"hello"

    async def test_create_with_too_many_files(self, client: AsyncClient, db_session, admin_user):
        workspace = await make_workspace(db_session, admin_user)
        files = [("attachments", (f"f{i}.txt", b"x", "text/plain")) for i in range(11)]
        resp = await client.post(
            "/api/v1/tasks/with-attachments",
            data={"title": "Too much", "workspace_id": str(workspace.id)},
            files=files,
            headers=get_auth_headers(admin_user),
        )
        assert resp.status_code == 400
        assert resp.json()["errors"][0]["field"] == "attachments"
        assert (await db_session.execute(select(Task))).scalars().all() == []

    async def test_multipart_create_validates_fields(self, client: AsyncClient, db_session, admin_user):
        workspace = await make_workspace(db_session, admin_user)
        resp = await client.post(
            "/api/v1/tasks/with-attachments",
            data={"title": "Bad status", "workspace_id": str(workspace.id), "status": "someday"},
            files=[("attachments", ("a.txt", b"a", "text/plain"))],
            headers=get_auth_headers(admin_user),
        )
        assert resp.status_code == 400
        assert resp.json()["code"] == "VALIDATION_ERROR"
        assert resp.json()["errors"][0]["field"] == "status"

    async def test_multipart_create_in_missing_workspace_stores_nothing(self, client: AsyncClient, db_session, admin_user):
        resp = await client.post(
            "/api/v1/tasks/with-attachments",
            data={"title": "Lost", "workspace_id": "999"},
            files=[("attachments", ("a.txt", b"a", "text/plain"))],
            headers=get_auth_headers(admin_user),
        )
        assert resp.status_code == 404
        assert not storage.os.path.exists(storage.STORAGE_ROOT) or storage.os.listdir(storage.STORAGE_ROOT) == []

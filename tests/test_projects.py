import asyncio
import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from fake_backend import FakeBackend, make_workspace

from coventure.core.errors import (
    BackendError,
    ClientValidationError,
    InvalidTransition,
    PermissionDenied,
)
from coventure.schemas.project import ProjectCreate


def project_in(**overrides):
    data = {"title": "Solar drones", "description": "Autonomous solar drones",
            "required_skills": ["python", "hardware"], "team_size": 3, "timeline": "6 months"}
    data.update(overrides)
    return ProjectCreate(**data)


def test_create_project_adds_creator_membership():
    backend = FakeBackend()
    workspace = make_workspace(backend)

    project = asyncio.run(workspace.projects.create_project(project_in()))

    assert project.status == "open"
    assert project.creator_id == "user-1"
    members = list(backend.tables["project_members"].values())
    assert [(m["project_id"], m["role"]) for m in members] == [(project.id, "creator")]
    assert workspace.notices[-1].message == "Project created successfully!"


def test_membership_failure_keeps_project_and_warns():
    backend = FakeBackend()
    backend.fail("insert", "project_members", BackendError("permission denied", status=403))
    workspace = make_workspace(backend)

    project = asyncio.run(workspace.projects.create_project(project_in()))

    assert project.id in backend.tables["projects"]
    assert workspace.notices[-1].message == "Project created but failed to add you as a member"
    assert workspace.projects.members(project.id) == []


@pytest.mark.parametrize("overrides", [
    {"title": "  "},
    {"timeline": ""},
    {"required_skills": []},
    {"team_size": 0},
])
def test_invalid_project_never_reaches_backend(overrides):
    backend = FakeBackend()
    workspace = make_workspace(backend)

    with pytest.raises(ClientValidationError):
        asyncio.run(workspace.projects.create_project(project_in(**overrides)))

    assert backend.calls_to("insert", "projects") == 0


def test_feed_excludes_own_and_applied_projects_newest_first():
    async def scenario():
        backend = FakeBackend()
        older = backend.seed("projects", creator_id="user-2", title="Older", description="d", timeline="t")
        applied = backend.seed("projects", creator_id="user-3", title="Applied", description="d", timeline="t")
        backend.seed("projects", creator_id="user-1", title="Mine", description="d", timeline="t")
        newer = backend.seed("projects", creator_id="user-4", title="Newer", description="d", timeline="t")
        backend.seed("projects", creator_id="user-5", title="Busy", description="d", timeline="t",
                     status="in_progress")
        backend.seed("project_applications", project_id=applied["id"], applicant_id="user-1")
        workspace = make_workspace(backend)
        feed = await workspace.projects.open_feed()
        return feed, older, newer

    feed, older, newer = asyncio.run(scenario())

    assert [p.id for p in feed] == [newer["id"], older["id"]]


def test_feed_follows_realtime_changes():
    async def scenario():
        backend = FakeBackend()
        existing = backend.seed("projects", creator_id="user-2", title="Existing", description="d", timeline="t")
        workspace = make_workspace(backend)
        await workspace.projects.open_feed()

        backend.push("projects", "insert", {
            "id": "p-new", "creator_id": "user-3", "title": "Fresh", "description": "d", "timeline": "t",
            "status": "open", "created_at": "2030-01-01T00:00:00+00:00",
        })
        backend.push("projects", "update", {
            **existing, "status": "in_progress", "updated_at": "2030-01-01T00:00:00+00:00",
        })
        return workspace.projects.feed()

    feed = asyncio.run(scenario())

    assert [p.id for p in feed] == ["p-new"]


def test_status_only_moves_forward():
    async def scenario():
        backend = FakeBackend()
        project = backend.seed("projects", creator_id="user-1", title="T", description="d", timeline="t")
        workspace = make_workspace(backend)
        moved = await workspace.projects.set_status(project["id"], "in_progress")
        with pytest.raises(InvalidTransition):
            await workspace.projects.set_status(project["id"], "open")
        return backend, project, moved

    backend, project, moved = asyncio.run(scenario())

    assert moved.status == "in_progress"
    assert backend.tables["projects"][project["id"]]["status"] == "in_progress"


def test_failed_status_change_rolls_back():
    async def scenario():
        backend = FakeBackend()
        project = backend.seed("projects", creator_id="user-1", title="T", description="d", timeline="t")
        workspace = make_workspace(backend)
        backend.fail("update", "projects", BackendError("boom", status=500))
        with pytest.raises(BackendError):
            await workspace.projects.set_status(project["id"], "completed")
        return workspace, project

    workspace, project = asyncio.run(scenario())

    assert workspace.store.get("projects", project["id"]).status == "open"
    assert workspace.notices[-1].message == "Failed to update project status"


def test_only_creator_changes_status():
    backend = FakeBackend()
    project = backend.seed("projects", creator_id="user-2", title="T", description="d", timeline="t")
    workspace = make_workspace(backend)

    with pytest.raises(PermissionDenied):
        asyncio.run(workspace.projects.set_status(project["id"], "completed"))


def test_remove_member_but_never_the_creator():
    async def scenario():
        backend = FakeBackend()
        project = backend.seed("projects", creator_id="user-1", title="T", description="d", timeline="t")
        creator = backend.seed("project_members", project_id=project["id"], user_id="user-1", role="creator")
        member = backend.seed("project_members", project_id=project["id"], user_id="user-2", role="member")
        workspace = make_workspace(backend)

        await workspace.projects.remove_member(project["id"], member["id"])
        with pytest.raises(InvalidTransition):
            await workspace.projects.remove_member(project["id"], creator["id"])
        return backend, workspace, project

    backend, workspace, project = asyncio.run(scenario())

    assert [m["user_id"] for m in backend.tables["project_members"].values()] == ["user-1"]
    assert [m.user_id for m in workspace.projects.members(project["id"])] == ["user-1"]
